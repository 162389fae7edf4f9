from __future__ import annotations

import math
from dataclasses import dataclass
from typing import NamedTuple, Optional, Tuple

from fpsr.core.constants import (
    DEFAULT_PRECISION,
    DEFAULT_QUANT_LEVELS,
    DEFAULT_STREAM2_FREQ_MULT,
    QS_HASH_SCALE,
    QS_TYPE_CODE,
    STREAM1_QUANT_DUR_FACTOR,
    STREAM2_QUANT_DUR_FACTOR,
    STREAM2_QUANT_RATIO_MAX,
    STREAM2_QUANT_RATIO_MIN,
    SWITCH_DUR_FACTOR,
)
from fpsr.core.hashing import portable_rand, to_float, wrap_mod

from .base import DomainError, is_int, is_int_pair, is_number, optional, register_generator


@dataclass(frozen=True)
class QSParams:
    """Parameters of the Quantised Switching generator. ``None`` durations are derived from the frequency."""

    base_wave_freq: float
    stream2_freq_mult: Optional[float] = None
    quant_levels: Tuple[int, int] = DEFAULT_QUANT_LEVELS
    streams_offset: Tuple[int, int] = (0, 0)
    stream_switch_dur: Optional[int] = None
    stream1_quant_dur: Optional[int] = None
    stream2_quant_dur: Optional[int] = None


class QSState(NamedTuple):
    switch_dur: int
    stream1_quant_dur: int
    stream2_quant_dur: int
    level1: int
    level2: int
    stream1: float
    stream2: float
    selected_stream: int
    value: float


def check_base_wave_freq(base_wave_freq: float) -> float:
    freq = float(base_wave_freq)
    if not math.isfinite(freq) or freq <= 0:
        raise DomainError("base_wave_freq", base_wave_freq, "must be a finite value > 0")
    if not math.isfinite(1.0 / freq):
        raise DomainError("base_wave_freq", base_wave_freq, "too small to derive durations")
    return freq


def _is_unset(duration: Optional[int]) -> bool:
    # Values below 1 are the legacy "use default" sentinel.
    return duration is None or duration < 1


def _derive(duration: Optional[int], period: float, factor: float) -> int:
    if _is_unset(duration):
        duration = math.floor(period * factor)
    return max(1, int(duration))


def resolve_durations(
    base_wave_freq: float,
    stream_switch_dur: Optional[int] = None,
    stream1_quant_dur: Optional[int] = None,
    stream2_quant_dur: Optional[int] = None,
) -> Tuple[int, int, int]:
    """Fill unset durations from the base frequency and clamp all three to >= 1."""
    period = 1.0 / check_base_wave_freq(base_wave_freq)
    return (
        _derive(stream_switch_dur, period, SWITCH_DUR_FACTOR),
        _derive(stream1_quant_dur, period, STREAM1_QUANT_DUR_FACTOR),
        _derive(stream2_quant_dur, period, STREAM2_QUANT_DUR_FACTOR),
    )


def _in_first_half(position: int, duration: int) -> bool:
    return wrap_mod(position, duration) < duration // 2


def _stepped_sine(phase: float, levels: int) -> float:
    if not math.isfinite(phase):
        return math.nan
    return math.floor(math.sin(phase) * levels) / levels


def qs_components(
    coordinate: int,
    base_wave_freq: float,
    stream2_freq_mult: Optional[float],
    quant_levels: Tuple[int, int],
    streams_offset: Tuple[int, int],
    stream_switch_dur: Optional[int] = None,
    stream1_quant_dur: Optional[int] = None,
    stream2_quant_dur: Optional[int] = None,
    *,
    precision: str = DEFAULT_PRECISION,
) -> QSState:
    """
    Evaluate Quantised Switching and return every intermediate value.

    Two sine waves are quantised into staircases whose step counts toggle
    between a low and a high level on their own clocks. A third clock picks
    which staircase is live, and the picked step is hashed so the output
    does not track the sine phase.

    ``precision`` applies to the final hash only; the frequency and the
    stream values stay float64 in both modes. A coordinate whose phase
    leaves the float range yields NaN streams and a NaN value.
    """
    coordinate = int(coordinate)
    freq = check_base_wave_freq(base_wave_freq)
    switch_dur, quant1_dur, quant2_dur = resolve_durations(
        freq, stream_switch_dur, stream1_quant_dur, stream2_quant_dur
    )
    if stream2_freq_mult is None or stream2_freq_mult < 0:
        stream2_freq_mult = DEFAULT_STREAM2_FREQ_MULT

    low_levels, high_levels = int(quant_levels[0]), int(quant_levels[1])
    pos1 = int(streams_offset[0]) + coordinate
    pos2 = int(streams_offset[1]) + coordinate

    if _in_first_half(pos1, quant1_dur):
        level1 = low_levels
    else:
        level1 = high_levels
    if _in_first_half(pos2, quant2_dur):
        level2 = math.floor(low_levels * STREAM2_QUANT_RATIO_MIN)
    else:
        level2 = math.floor(high_levels * STREAM2_QUANT_RATIO_MAX)
    level1 = max(1, level1)
    level2 = max(1, level2)

    stream1 = _stepped_sine(to_float(pos1) * freq, level1)
    stream2 = _stepped_sine(to_float(pos2) * freq * stream2_freq_mult, level2)

    selected_stream = 1 if _in_first_half(coordinate, switch_dur) else 2
    selected = stream1 if selected_stream == 1 else stream2

    if math.isnan(selected):
        value = math.nan
    else:
        value = portable_rand(int(selected * QS_HASH_SCALE), precision)
    return QSState(
        switch_dur=switch_dur,
        stream1_quant_dur=quant1_dur,
        stream2_quant_dur=quant2_dur,
        level1=level1,
        level2=level2,
        stream1=stream1,
        stream2=stream2,
        selected_stream=selected_stream,
        value=value,
    )


def qs(
    coordinate: int,
    base_wave_freq: float,
    stream2_freq_mult: Optional[float],
    quant_levels: Tuple[int, int],
    streams_offset: Tuple[int, int],
    stream_switch_dur: Optional[int] = None,
    stream1_quant_dur: Optional[int] = None,
    stream2_quant_dur: Optional[int] = None,
    *,
    precision: str = DEFAULT_PRECISION,
) -> float:
    """Quantised Switching value in [0, 1) for one coordinate."""
    return qs_components(
        coordinate,
        base_wave_freq,
        stream2_freq_mult,
        quant_levels,
        streams_offset,
        stream_switch_dur,
        stream1_quant_dur,
        stream2_quant_dur,
        precision=precision,
    ).value


def _evaluate(coordinate: int, params: QSParams, precision: str) -> float:
    return qs(
        coordinate,
        params.base_wave_freq,
        params.stream2_freq_mult,
        params.quant_levels,
        params.streams_offset,
        params.stream_switch_dur,
        params.stream1_quant_dur,
        params.stream2_quant_dur,
        precision=precision,
    )


QS_CHECKS = {
    "base_wave_freq": is_number,
    "stream2_freq_mult": optional(is_number),
    "quant_levels": is_int_pair,
    "streams_offset": is_int_pair,
    "stream_switch_dur": optional(is_int),
    "stream1_quant_dur": optional(is_int),
    "stream2_quant_dur": optional(is_int),
}

register_generator("qs", QS_TYPE_CODE, QSParams, _evaluate, QS_CHECKS)
