from __future__ import annotations

import math
from dataclasses import dataclass
from typing import NamedTuple, Optional

from fpsr.core.constants import (
    DEFAULT_MAX_HOLD,
    DEFAULT_MIN_HOLD,
    DEFAULT_PRECISION,
    DEFAULT_RESEED_INTERVAL,
    SM_TYPE_CODE,
)
from fpsr.core.hashing import portable_rand, wrap_mod

from .base import is_int, register_generator


@dataclass(frozen=True)
class SMParams:
    """Parameters of the Stacked Modulo generator."""

    min_hold: int = DEFAULT_MIN_HOLD
    max_hold: int = DEFAULT_MAX_HOLD
    reseed_interval: int = DEFAULT_RESEED_INTERVAL
    seed_inner: int = 0
    seed_outer: int = 0


class SMState(NamedTuple):
    anchor: int
    # None when the duration draw is NaN
    hold_duration: Optional[int]
    block: Optional[int]
    value: float


def sm_components(
    coordinate: int,
    min_hold: int,
    max_hold: int,
    reseed_interval: int,
    seed_inner: int,
    seed_outer: int,
    *,
    precision: str = DEFAULT_PRECISION,
) -> SMState:
    """
    Evaluate Stacked Modulo and return every intermediate value.

    The hold duration is drawn from a hash keyed on the coordinate floored to
    a multiple of ``reseed_interval``, so it only changes once per interval.
    The block identifier is the outer coordinate floored to a multiple of the
    hold duration; its hash is the output. A duration change at a reseed
    boundary can cut the current block short.

    A coordinate beyond the float range (or beyond float32 in ``"single"``)
    makes the duration draw NaN; the value is then NaN as well.
    """
    coordinate = int(coordinate)
    reseed_interval = max(1, int(reseed_interval))

    anchor = coordinate - wrap_mod(coordinate, reseed_interval)
    t = portable_rand(seed_inner + anchor, precision)
    if math.isnan(t):
        return SMState(anchor=anchor, hold_duration=None, block=None, value=math.nan)
    hold_duration = max(1, math.floor(min_hold + t * (max_hold - min_hold)))

    outer = seed_outer + coordinate
    block = outer - wrap_mod(outer, hold_duration)
    return SMState(anchor=anchor, hold_duration=hold_duration, block=block, value=portable_rand(block, precision))


def sm(
    coordinate: int,
    min_hold: int,
    max_hold: int,
    reseed_interval: int,
    seed_inner: int,
    seed_outer: int,
    *,
    precision: str = DEFAULT_PRECISION,
) -> float:
    """Stacked Modulo value in [0, 1) for one coordinate."""
    return sm_components(
        coordinate, min_hold, max_hold, reseed_interval, seed_inner, seed_outer, precision=precision
    ).value


def _evaluate(coordinate: int, params: SMParams, precision: str) -> float:
    return sm(
        coordinate,
        params.min_hold,
        params.max_hold,
        params.reseed_interval,
        params.seed_inner,
        params.seed_outer,
        precision=precision,
    )


SM_CHECKS = {
    "min_hold": is_int,
    "max_hold": is_int,
    "reseed_interval": is_int,
    "seed_inner": is_int,
    "seed_outer": is_int,
}

register_generator("sm", SM_TYPE_CODE, SMParams, _evaluate, SM_CHECKS)
