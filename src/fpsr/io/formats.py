from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Dict, Sequence

from fpsr.core.constants import ENCODING


def read_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding=ENCODING) as f:
        return json.load(f)


def write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding=ENCODING) as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)
        f.write("\n")


def write_trace_csv(
    path: Path,
    coordinates: Sequence[int],
    values: Sequence[float],
    smoothed: Sequence[float] | None = None,
) -> None:
    """One row per coordinate: coordinate, value[, smoothed]."""
    path.parent.mkdir(parents=True, exist_ok=True)
    header = ["coordinate", "value"] + (["smoothed"] if smoothed is not None else [])
    with path.open("w", newline="", encoding=ENCODING) as f:
        writer = csv.writer(f)
        writer.writerow(header)
        for i, (coord, value) in enumerate(zip(coordinates, values)):
            row = [int(coord), repr(float(value))]
            if smoothed is not None:
                row.append(repr(float(smoothed[i])))
            writer.writerow(row)
