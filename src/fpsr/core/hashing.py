from __future__ import annotations

import math

import numpy as np

from fpsr.core.constants import (
    DEFAULT_PRECISION,
    HASH_MULTIPLIER,
    HASH_SCALE,
    PRECISION_DOUBLE,
    PRECISION_SINGLE,
    PRECISIONS,
)


def wrap_mod(value: int, modulus: int) -> int:
    """Euclidean modulo: non-negative for every positive modulus, negative values included."""
    return value % modulus


def to_float(seed) -> float:
    try:
        return float(seed)
    except OverflowError:
        return math.inf if seed > 0 else -math.inf


def _to_single(value: float) -> float:
    with np.errstate(over="ignore"):
        return float(np.float32(value))


def portable_rand(seed, precision: str = DEFAULT_PRECISION) -> float:
    """
    Map an integer seed to a float in [0, 1).

    r = sin(seed * 12.9898) * 43758.5453, result = r - floor(r)

    ``precision="double"`` keeps every step in float64. ``precision="single"``
    reproduces the portable C reference, which casts the seed to float32 and
    stores r as float32 before taking the fractional part.
    Non-finite seeds (and integers beyond float range) yield NaN.
    """
    if precision not in PRECISIONS:
        raise ValueError(f"Unknown precision '{precision}'. Available: {list(PRECISIONS)}")

    x = to_float(seed)
    if precision == PRECISION_SINGLE:
        x = _to_single(x)
    if not math.isfinite(x):
        return math.nan

    r = math.sin(x * HASH_MULTIPLIER) * HASH_SCALE
    if precision != PRECISION_DOUBLE:
        r = _to_single(r)
    frac = r - math.floor(r)
    # r a hair below zero can round the fraction up to 1.0
    if frac >= 1.0:
        return 0.0
    return frac
