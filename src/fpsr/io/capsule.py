from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from fpsr.core import constants
from fpsr.core.generators.base import get_generator_by_code, is_int, is_number
from fpsr.core.generators.quantised_switching import QSParams
from fpsr.core.generators.stacked_modulo import SMParams
from fpsr.io.formats import read_json, write_json
from fpsr.orchestrator.pipeline import generate_trace
from fpsr.utils.logging import get_logger

logger = get_logger(__name__)

REQUIRED_FIELDS = ("name", "author", "URL", "created")
SETTINGS_CORE = ("type", "seed", "inner_mod_dur", "outer_mod_dur", "clip_time")


class CapsuleError(ValueError):
    """Raised when a capsule record is malformed. Carries the offending field and value."""

    def __init__(self, field: str, value: Any, reason: str):
        self.field = field
        self.value = value
        super().__init__(f"{field}={value!r}: {reason}")


class ReproducibilityError(CapsuleError):
    """Raised when a regenerated trace drifts from the stored preview_trace."""

    def __init__(self, coordinate: int, stored: float, regenerated: float, tolerance: float, mismatches: int):
        self.coordinate = coordinate
        self.stored = stored
        self.regenerated = regenerated
        self.tolerance = tolerance
        self.mismatches = mismatches
        super().__init__(
            "preview_trace",
            stored,
            f"regenerated value {regenerated!r} at coordinate {coordinate} differs by more than "
            f"{tolerance} ({mismatches} mismatching samples)",
        )


@dataclass(frozen=True)
class CapsuleSettings:
    type: int
    seed: int
    inner_mod_dur: int
    outer_mod_dur: int
    clip_time: Optional[Tuple[int, int]] = None
    # Generator-specific keys (min_hold, base_wave_freq, precision, ...)
    extras: Dict[str, Any] = field(default_factory=dict)

    @property
    def precision(self) -> str:
        return self.extras.get("precision", constants.DEFAULT_PRECISION)


@dataclass(frozen=True)
class Capsule:
    name: str
    author: str
    url: str
    created: str
    settings: CapsuleSettings
    description: Optional[str] = None
    tags: Tuple[str, ...] = ()
    platforms: Tuple[str, ...] = ()
    preview_trace: Optional[Tuple[float, ...]] = None


# -------------------------
# Field validation
# -------------------------


def _require(mapping: Dict[str, Any], key: str, prefix: str = "") -> Any:
    if key not in mapping:
        raise CapsuleError(f"{prefix}{key}", None, "missing required field")
    return mapping[key]


def _require_str(mapping: Dict[str, Any], key: str) -> str:
    value = _require(mapping, key)
    if not isinstance(value, str):
        raise CapsuleError(key, value, "must be a string")
    return value


def _require_int(mapping: Dict[str, Any], key: str, prefix: str = "settings.") -> int:
    value = _require(mapping, key, prefix)
    if not is_int(value):
        raise CapsuleError(f"{prefix}{key}", value, "must be an integer")
    return value


def _str_list(mapping: Dict[str, Any], key: str) -> Tuple[str, ...]:
    value = mapping.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise CapsuleError(key, value, "must be a list of strings")
    return tuple(value)


def _int_pair(value: Any, field_name: str) -> Tuple[int, int]:
    if not isinstance(value, (list, tuple)) or len(value) != 2 or not all(is_int(v) for v in value):
        raise CapsuleError(field_name, value, "must be a pair of integers")
    return int(value[0]), int(value[1])


def _parse_clip_time(value: Any) -> Tuple[int, int]:
    start, end = _int_pair(value, "settings.clip_time")
    if start > end:
        raise CapsuleError("settings.clip_time", value, "start must be <= end")
    return start, end


# Optional settings keys per capsule type
_EXTRA_KEYS = {
    constants.SM_TYPE_CODE: ("min_hold", "seed_outer"),
    constants.QS_TYPE_CODE: ("base_wave_freq", "stream2_freq_mult", "stream2_quant_dur", "quant_levels", "streams_offset"),
}


def _parse_extras(settings: Dict[str, Any], type_code: int) -> Dict[str, Any]:
    generator = get_generator_by_code(type_code)
    allowed = _EXTRA_KEYS[type_code]
    extras: Dict[str, Any] = {}
    for key, value in settings.items():
        if key in SETTINGS_CORE:
            continue
        if key == "precision":
            if value not in constants.PRECISIONS:
                raise CapsuleError("settings.precision", value, f"must be one of {list(constants.PRECISIONS)}")
        elif key not in allowed:
            raise CapsuleError(
                f"settings.{key}", value, f"not a {generator.name} setting. Available: {sorted(allowed) + ['precision']}"
            )
        elif not generator.checks[key](value):
            raise CapsuleError(f"settings.{key}", value, "has the wrong type")
        elif key == "base_wave_freq" and not value > 0:
            raise CapsuleError("settings.base_wave_freq", value, "must be > 0")
        extras[key] = list(value) if isinstance(value, tuple) else value
    return extras


def parse_settings(settings: Any) -> CapsuleSettings:
    if not isinstance(settings, dict):
        raise CapsuleError("settings", settings, "must be a mapping")
    type_code = _require(settings, "type", "settings.")
    if not is_int(type_code) or type_code not in (constants.SM_TYPE_CODE, constants.QS_TYPE_CODE):
        raise CapsuleError(
            "settings.type",
            type_code,
            f"must be {constants.SM_TYPE_CODE} (SM) or {constants.QS_TYPE_CODE} (QS)",
        )
    clip_time = None
    if settings.get("clip_time") is not None:
        clip_time = _parse_clip_time(settings["clip_time"])
    return CapsuleSettings(
        type=type_code,
        seed=_require_int(settings, "seed"),
        inner_mod_dur=_require_int(settings, "inner_mod_dur"),
        outer_mod_dur=_require_int(settings, "outer_mod_dur"),
        clip_time=clip_time,
        extras=_parse_extras(settings, type_code),
    )


def parse_capsule(record: Any) -> Capsule:
    """Validate a decoded capsule mapping and build a ``Capsule``."""
    if not isinstance(record, dict):
        raise CapsuleError("capsule", record, "top-level JSON must be an object")
    for key in REQUIRED_FIELDS:
        _require_str(record, key)
    settings = parse_settings(_require(record, "settings"))

    description = record.get("description")
    if description is not None and not isinstance(description, str):
        raise CapsuleError("description", description, "must be a string")

    preview_trace = None
    if record.get("preview_trace") is not None:
        raw = record["preview_trace"]
        if not isinstance(raw, list) or not all(is_number(v) for v in raw):
            raise CapsuleError("preview_trace", raw, "must be a list of numbers")
        if settings.clip_time is None:
            raise CapsuleError("preview_trace", len(raw), "requires settings.clip_time")
        start, end = settings.clip_time
        if len(raw) != end - start + 1:
            raise CapsuleError(
                "preview_trace",
                len(raw),
                f"length must equal clip_time span {end - start + 1}",
            )
        preview_trace = tuple(float(v) for v in raw)

    return Capsule(
        name=record["name"],
        author=record["author"],
        url=record["URL"],
        created=record["created"],
        settings=settings,
        description=description,
        tags=_str_list(record, "tags"),
        platforms=_str_list(record, "platforms"),
        preview_trace=preview_trace,
    )


def settings_to_dict(settings: CapsuleSettings) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "type": settings.type,
        "seed": settings.seed,
        "inner_mod_dur": settings.inner_mod_dur,
        "outer_mod_dur": settings.outer_mod_dur,
    }
    if settings.clip_time is not None:
        payload["clip_time"] = list(settings.clip_time)
    payload.update(settings.extras)
    return payload


def capsule_to_dict(capsule: Capsule) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "name": capsule.name,
        "author": capsule.author,
        "URL": capsule.url,
        "created": capsule.created,
    }
    if capsule.description is not None:
        payload["description"] = capsule.description
    if capsule.tags:
        payload["tags"] = list(capsule.tags)
    if capsule.platforms:
        payload["platforms"] = list(capsule.platforms)
    payload["settings"] = settings_to_dict(capsule.settings)
    if capsule.preview_trace is not None:
        payload["preview_trace"] = list(capsule.preview_trace)
    return payload


def load_capsule(path: Path) -> Capsule:
    logger.debug("Loading capsule %s", path)
    return parse_capsule(read_json(path))


def save_capsule(path: Path, capsule: Capsule) -> Path:
    logger.debug("Saving capsule name=%s to %s", capsule.name, path)
    write_json(path, capsule_to_dict(capsule))
    return path


# -------------------------
# Settings -> generator parameters
# -------------------------


def settings_to_params(settings: CapsuleSettings) -> Tuple[str, Any]:
    """Map persisted settings onto the generator name and its parameter record."""
    extras = settings.extras
    generator = get_generator_by_code(settings.type)
    if settings.type == constants.SM_TYPE_CODE:
        params: Any = SMParams(
            min_hold=extras.get("min_hold", settings.outer_mod_dur * 2 // 3),
            max_hold=settings.outer_mod_dur,
            reseed_interval=settings.inner_mod_dur,
            seed_inner=settings.seed,
            seed_outer=extras.get("seed_outer", settings.seed),
        )
    else:
        offsets = extras.get("streams_offset", [settings.seed, settings.seed + constants.DEFAULT_STREAM2_OFFSET])
        params = QSParams(
            base_wave_freq=float(extras.get("base_wave_freq", constants.DEFAULT_BASE_WAVE_FREQ)),
            stream2_freq_mult=extras.get("stream2_freq_mult"),
            quant_levels=tuple(extras.get("quant_levels", constants.DEFAULT_QUANT_LEVELS)),
            streams_offset=(int(offsets[0]), int(offsets[1])),
            stream_switch_dur=settings.outer_mod_dur,
            stream1_quant_dur=settings.inner_mod_dur,
            stream2_quant_dur=extras.get("stream2_quant_dur"),
        )
    return generator.name, params


def regenerate_trace(capsule: Capsule) -> np.ndarray:
    settings = capsule.settings
    if settings.clip_time is None:
        raise CapsuleError("settings.clip_time", None, "required to regenerate a trace")
    name, params = settings_to_params(settings)
    start, end = settings.clip_time
    return generate_trace(name, params, start, end, precision=settings.precision)


def verify_capsule(capsule: Capsule, tolerance: float = constants.TRACE_TOLERANCE) -> Optional[np.ndarray]:
    """
    Regenerate ``preview_trace`` from the settings and compare within ``tolerance``.

    Returns the regenerated trace, or ``None`` when the capsule stores no trace.
    Raises ``ReproducibilityError`` on the first drifting coordinate.
    """
    if capsule.preview_trace is None:
        return None
    regenerated = regenerate_trace(capsule)
    stored = np.asarray(capsule.preview_trace, dtype=np.float64)
    # NaN compares false, so it counts as a mismatch
    bad = np.flatnonzero(~(np.abs(regenerated - stored) <= tolerance))
    if bad.size:
        first = int(bad[0])
        start = capsule.settings.clip_time[0]
        raise ReproducibilityError(
            coordinate=start + first,
            stored=float(stored[first]),
            regenerated=float(regenerated[first]),
            tolerance=tolerance,
            mismatches=int(bad.size),
        )
    logger.debug("Capsule %s reproduced %d samples", capsule.name, stored.size)
    return regenerated


def _timestamp_utc() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def record_capsule(
    name: str,
    author: str,
    url: str,
    settings: CapsuleSettings,
    *,
    description: Optional[str] = None,
    tags: Sequence[str] = (),
    platforms: Sequence[str] = (),
    created: Optional[str] = None,
) -> Capsule:
    """Build a capsule and capture ``preview_trace`` over ``settings.clip_time`` when set."""
    # Round-trip the settings through validation so hand-built values obey the file rules
    settings = parse_settings(settings_to_dict(settings))
    capsule = Capsule(
        name=name,
        author=author,
        url=url,
        created=created or _timestamp_utc(),
        settings=settings,
        description=description,
        tags=tuple(tags),
        platforms=tuple(platforms),
    )
    if settings.clip_time is None:
        return capsule
    trace: List[float] = regenerate_trace(capsule).tolist()
    return replace(capsule, preview_trace=tuple(trace))
