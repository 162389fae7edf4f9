from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Iterable, List

DEFAULT_CAPACITY = 15


@dataclass
class RingBuffer:
    """Fixed-capacity window of the most recent values. Owned by the caller."""

    capacity: int = DEFAULT_CAPACITY
    values: Deque[float] = field(default_factory=deque)

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {self.capacity}")
        self.values = deque(self.values, maxlen=self.capacity)

    def __len__(self) -> int:
        return len(self.values)

    def push(self, value: float) -> None:
        self.values.append(float(value))

    def mean(self) -> float:
        if not self.values:
            raise ValueError("mean of an empty RingBuffer")
        return sum(self.values) / len(self.values)


def push_and_mean(buffer: RingBuffer, value: float) -> float:
    """Append ``value`` (evicting the oldest when full) and return the window mean."""
    buffer.push(value)
    return buffer.mean()


def rolling_mean(values: Iterable[float], capacity: int = DEFAULT_CAPACITY) -> List[float]:
    buffer = RingBuffer(capacity=capacity)
    return [push_and_mean(buffer, v) for v in values]
