from __future__ import annotations

import hashlib
from typing import Any, List

import numpy as np

from fpsr.core.constants import DEFAULT_PRECISION
from fpsr.core.generators.base import Generator, get_generator
from fpsr.core.generators import quantised_switching  # noqa: F401 (registers generators)
from fpsr.core.generators import stacked_modulo  # noqa: F401 (registers generators)
from fpsr.utils.logging import get_logger

logger = get_logger(__name__)


def _resolve(generator: str | Generator) -> Generator:
    if isinstance(generator, Generator):
        return generator
    return get_generator(generator)


def _check_window(start: int, end: int) -> None:
    if start > end:
        raise ValueError(f"Trace window start={start} must be <= end={end}")


def generate_trace(
    generator: str | Generator,
    params: Any,
    start: int,
    end: int,
    precision: str = DEFAULT_PRECISION,
) -> np.ndarray:
    """
    Evaluate a generator over the inclusive window [start, end].

    Each element is a scalar generator call, so traces match single calls bit for bit.
    """
    gen = _resolve(generator)
    _check_window(start, end)
    logger.debug("Generating trace generator=%s start=%d end=%d precision=%s", gen.name, start, end, precision)
    values = [gen.evaluate(c, params, precision) for c in range(start, end + 1)]
    return np.asarray(values, dtype=np.float64)


def value_changed(
    generator: str | Generator,
    params: Any,
    coordinate: int,
    precision: str = DEFAULT_PRECISION,
) -> bool:
    """True when the value at ``coordinate`` differs from the one at ``coordinate - 1``."""
    gen = _resolve(generator)
    return gen.evaluate(coordinate, params, precision) != gen.evaluate(coordinate - 1, params, precision)


def changed_flags(
    generator: str | Generator,
    params: Any,
    start: int,
    end: int,
    precision: str = DEFAULT_PRECISION,
) -> np.ndarray:
    trace = generate_trace(generator, params, start - 1, end, precision)
    return trace[1:] != trace[:-1]


def hold_spans(trace: np.ndarray) -> List[int]:
    """Lengths of the maximal runs of equal consecutive values."""
    values = np.asarray(trace)
    if values.size == 0:
        return []
    boundaries = np.flatnonzero(values[1:] != values[:-1]) + 1
    edges = np.concatenate(([0], boundaries, [values.size]))
    return np.diff(edges).astype(int).tolist()


def trace_fingerprint(trace: np.ndarray) -> str:
    """SHA-256 over the float64 trace bytes (row-major)."""
    return hashlib.sha256(np.asarray(trace, dtype=np.float64).tobytes(order="C")).hexdigest()
