from __future__ import annotations

import csv
import dataclasses
import itertools
import json
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

import numpy as np
import yaml

from fpsr.core import constants
from fpsr.core.generators.base import DomainError, ParameterError, get_generator, list_generators
from fpsr.core.generators.quantised_switching import check_base_wave_freq
from fpsr.orchestrator.pipeline import generate_trace, hold_spans, trace_fingerprint
from fpsr.utils.logging import get_logger

logger = get_logger(__name__)

PAIR_FIELDS = ("quant_levels", "streams_offset")


class ConfigError(Exception):
    """Raised when the analyze config is invalid."""


@dataclass(frozen=True)
class AnalyzeConfig:
    generator: str
    start: int
    end: int
    precision: str


@dataclass(frozen=True)
class MatrixConfig:
    # (field name, candidate values) in parameter declaration order
    axes: Tuple[Tuple[str, Tuple[Any, ...]], ...]


@dataclass(frozen=True)
class MetricsConfig:
    change_rate: bool
    hold_lengths: bool
    value_histogram_enabled: bool
    value_histogram_bins: int
    autocorr_enabled: bool
    autocorr_max_lag: int


@dataclass(frozen=True)
class OutputConfig:
    include_timestamp_utc: bool
    include_trace_sha256: bool
    include_preview: bool
    preview_len: int


@dataclass(frozen=True)
class ValidateConfig:
    assert_deterministic_within_run: bool


@dataclass(frozen=True)
class FullConfig:
    analyze: AnalyzeConfig
    matrix: MatrixConfig
    metrics: MetricsConfig
    output: OutputConfig
    validate: ValidateConfig


# -------------------------
# Config parsing/validation
# -------------------------


def _require(mapping: Dict[str, Any], key: str, expected_type: Tuple[type, ...]):
    if key not in mapping:
        raise ConfigError(f"Missing required key '{key}'")
    val = mapping[key]
    if not isinstance(val, expected_type):
        raise ConfigError(f"Key '{key}' must be of type {expected_type}, got {type(val)}")
    return val


def _optional_section(mapping: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = mapping.get(key) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{key}' must be a mapping if provided.")
    return section


def _as_candidates(name: str, value: Any) -> List[Any]:
    if name in PAIR_FIELDS:
        # A bare pair is a single candidate
        if isinstance(value, (list, tuple)) and len(value) == 2 and not isinstance(value[0], (list, tuple)):
            value = [value]
        if not isinstance(value, (list, tuple)):
            raise ConfigError(f"matrix.{name} must be a pair or a list of pairs")
        return list(value)
    if not isinstance(value, (list, tuple)):
        value = [value]
    return list(value)


def _parse_matrix(generator_name: str, matrix: Dict[str, Any]) -> MatrixConfig:
    gen = get_generator(generator_name)
    fields = dataclasses.fields(gen.params_type)
    known = {f.name for f in fields}
    unknown = sorted(set(matrix) - known)
    if unknown:
        raise ConfigError(f"Unknown matrix keys for '{generator_name}': {unknown}. Available: {sorted(known)}")

    axes = []
    for f in fields:
        if f.name in matrix:
            try:
                candidates = [gen.check_value(f.name, v) for v in _as_candidates(f.name, matrix[f.name])]
            except ParameterError as exc:
                raise ConfigError(f"matrix.{exc}") from exc
        elif f.default is not dataclasses.MISSING:
            candidates = [f.default]
        else:
            raise ConfigError(f"Missing required matrix key '{f.name}'")
        if not candidates:
            raise ConfigError(f"matrix.{f.name} must not be empty")
        axes.append((f.name, tuple(candidates)))

    for name, candidates in axes:
        if name == "base_wave_freq":
            for freq in candidates:
                try:
                    check_base_wave_freq(freq)
                except (DomainError, TypeError, ValueError) as exc:
                    raise ConfigError(f"matrix.base_wave_freq: {exc}") from exc
    return MatrixConfig(axes=tuple(axes))


def parse_config(path: Path) -> FullConfig:
    try:
        data = yaml.safe_load(path.read_text(encoding=constants.ENCODING))
    except Exception as exc:  # noqa: BLE001
        raise ConfigError(f"Failed to read YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Top-level YAML must be a mapping.")

    analyze = _require(data, "analyze", (dict,))
    matrix = _require(data, "matrix", (dict,))
    metrics = _optional_section(data, "metrics")
    output = _optional_section(data, "output")
    validate = _optional_section(data, "validate")

    generator_name = str(_require(analyze, "generator", (str,))).lower()
    if generator_name not in list_generators():
        raise ConfigError(f"Unknown generator '{generator_name}'. Available: {list_generators()}")
    analyze_cfg = AnalyzeConfig(
        generator=generator_name,
        start=int(_require(analyze, "start", (int,))),
        end=int(_require(analyze, "end", (int,))),
        precision=str(analyze.get("precision", constants.DEFAULT_PRECISION)),
    )
    if analyze_cfg.start > analyze_cfg.end:
        raise ConfigError("analyze.start must be <= analyze.end")
    if analyze_cfg.precision not in constants.PRECISIONS:
        raise ConfigError(f"Unknown precision '{analyze_cfg.precision}'. Available: {list(constants.PRECISIONS)}")

    histogram = _optional_section(metrics, "value_histogram")
    autocorr = _optional_section(metrics, "autocorr")
    metrics_cfg = MetricsConfig(
        change_rate=bool(metrics.get("change_rate", True)),
        hold_lengths=bool(metrics.get("hold_lengths", True)),
        value_histogram_enabled=bool(histogram.get("enabled", False)),
        value_histogram_bins=int(histogram.get("bins", 16)),
        autocorr_enabled=bool(autocorr.get("enabled", False)),
        autocorr_max_lag=int(autocorr.get("max_lag", 0)),
    )
    if metrics_cfg.value_histogram_enabled and metrics_cfg.value_histogram_bins < 2:
        raise ConfigError("metrics.value_histogram.bins must be >= 2 when enabled.")
    if metrics_cfg.autocorr_enabled and metrics_cfg.autocorr_max_lag <= 0:
        raise ConfigError("metrics.autocorr.max_lag must be > 0 when enabled.")

    output_cfg = OutputConfig(
        include_timestamp_utc=bool(output.get("include_timestamp_utc", True)),
        include_trace_sha256=bool(output.get("include_trace_sha256", True)),
        include_preview=bool(output.get("include_preview", False)),
        preview_len=int(output.get("preview_len", 16)),
    )
    validate_cfg = ValidateConfig(
        assert_deterministic_within_run=bool(validate.get("assert_deterministic_within_run", True)),
    )

    return FullConfig(
        analyze=analyze_cfg,
        matrix=_parse_matrix(generator_name, matrix),
        metrics=metrics_cfg,
        output=output_cfg,
        validate=validate_cfg,
    )


# -------------------------
# Metrics
# -------------------------


def _change_rate(trace: np.ndarray) -> Dict[str, Any]:
    if trace.size < 2:
        return {"change_count": 0, "change_rate": 0.0}
    changes = int((trace[1:] != trace[:-1]).sum())
    return {"change_count": changes, "change_rate": changes / (trace.size - 1)}


def _hold_stats(spans: Sequence[int]) -> Dict[str, Any]:
    arr = np.asarray(spans, dtype=np.float64)
    return {
        "hold_count": int(arr.size),
        "hold_mean": float(arr.mean()),
        "hold_std": float(arr.std()),
        "hold_min": int(arr.min()),
        "hold_max": int(arr.max()),
    }


def _value_histogram(draws: np.ndarray, bins: int) -> Dict[str, Any]:
    hist, _ = np.histogram(draws, bins=bins, range=(0.0, 1.0))
    total = hist.sum()
    expected = total / bins
    chi2 = float(((hist - expected) ** 2 / expected).sum()) if total else 0.0
    return {
        "draw_mean": float(draws.mean()),
        "draw_chi2": chi2,
        "draw_chi2_norm": chi2 / (bins - 1),
        "draw_histogram": "|".join(str(int(h)) for h in hist),
    }


def _autocorr(trace: np.ndarray, max_lag: int) -> List[float]:
    var = trace.var()
    if trace.size == 0 or var == 0:
        return [0.0 for _ in range(max_lag)]
    mean = trace.mean()
    out = []
    for lag in range(1, max_lag + 1):
        if lag >= trace.size:
            out.append(0.0)
            continue
        cov = ((trace[:-lag] - mean) * (trace[lag:] - mean)).mean()
        out.append(float(cov / var))
    return out


# -------------------------
# Runner
# -------------------------


def _variant_product(matrix: MatrixConfig) -> List[Dict[str, Any]]:
    names = [name for name, _ in matrix.axes]
    return [dict(zip(names, combo)) for combo in itertools.product(*(values for _, values in matrix.axes))]


def _flatten_param(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return "|".join(str(v) for v in value)
    return value


def _analyze_one(cfg: FullConfig, variant: Dict[str, Any]) -> Dict[str, Any]:
    gen = get_generator(cfg.analyze.generator)
    params = gen.build_params(**variant)
    start, end = cfg.analyze.start, cfg.analyze.end
    logger.debug("Analyzing %s variant=%s", gen.name, variant)

    trace = generate_trace(gen, params, start, end, precision=cfg.analyze.precision)
    if cfg.validate.assert_deterministic_within_run:
        again = generate_trace(gen, params, start, end, precision=cfg.analyze.precision)
        if not np.array_equal(trace, again):
            raise RuntimeError(f"Determinism check failed for {gen.name} variant {variant}")

    spans = hold_spans(trace)
    record: Dict[str, Any] = {
        "generator": gen.name,
        "start": start,
        "end": end,
        "samples": int(trace.size),
        "precision": cfg.analyze.precision,
    }
    record.update({name: _flatten_param(value) for name, value in variant.items()})

    if cfg.metrics.change_rate:
        record.update(_change_rate(trace))
    if cfg.metrics.hold_lengths:
        record.update(_hold_stats(spans))
    if cfg.metrics.value_histogram_enabled:
        starts = np.cumsum([0] + spans[:-1])
        record.update(_value_histogram(trace[starts], cfg.metrics.value_histogram_bins))
    if cfg.metrics.autocorr_enabled:
        for lag, val in enumerate(_autocorr(trace, cfg.metrics.autocorr_max_lag), start=1):
            record[f"autocorr_lag_{lag}"] = val

    record["trace_sha256"] = trace_fingerprint(trace) if cfg.output.include_trace_sha256 else None
    if cfg.output.include_preview:
        record["trace_preview"] = "|".join(f"{v:.6f}" for v in trace[: cfg.output.preview_len])
    else:
        record["trace_preview"] = None
    if cfg.output.include_timestamp_utc:
        record["timestamp_utc"] = datetime.now(timezone.utc).isoformat()
    return record


def _sort_value(value: Any) -> Tuple[int, Any]:
    if value is None:
        return (0, "")
    if isinstance(value, str):
        return (2, value)
    return (1, value)


def run_analyze(config: FullConfig, jobs: int = 1) -> List[Dict[str, Any]]:
    variants = _variant_product(config.matrix)
    logger.info("Running %d %s variants over [%d, %d]", len(variants), config.analyze.generator, config.analyze.start, config.analyze.end)
    worker = partial(_analyze_one, config)

    if jobs and jobs > 1:
        with ProcessPoolExecutor(max_workers=jobs) as ex:
            records = list(ex.map(worker, variants))
    else:
        records = [worker(v) for v in variants]

    names = [name for name, _ in config.matrix.axes]
    return sorted(records, key=lambda rec: tuple(_sort_value(rec[name]) for name in names))


CSV_FIELDS_BASE = [
    "timestamp_utc",
    "generator",
    "start",
    "end",
    "samples",
    "precision",
]

CSV_FIELDS_METRICS = [
    "change_count",
    "change_rate",
    "hold_count",
    "hold_mean",
    "hold_std",
    "hold_min",
    "hold_max",
    "draw_mean",
    "draw_chi2",
    "draw_chi2_norm",
    "draw_histogram",
    "trace_sha256",
    "trace_preview",
]


def csv_fields(config: FullConfig) -> List[str]:
    fields = list(CSV_FIELDS_BASE)
    fields.extend(name for name, _ in config.matrix.axes)
    fields.extend(CSV_FIELDS_METRICS)
    if config.metrics.autocorr_enabled:
        fields.extend(f"autocorr_lag_{lag}" for lag in range(1, config.metrics.autocorr_max_lag + 1))
    return fields


def write_csv(path: Path, records: List[Dict[str, Any]], config: FullConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding=constants.ENCODING) as f:
        writer = csv.DictWriter(f, fieldnames=csv_fields(config), extrasaction="ignore")
        writer.writeheader()
        for rec in records:
            writer.writerow(rec)


def write_json_output(path: Path, records: List[Dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding=constants.ENCODING) as f:
        json.dump(records, f, indent=2)
