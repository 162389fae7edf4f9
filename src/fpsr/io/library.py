from __future__ import annotations

from pathlib import Path
from typing import List

from fpsr.core.constants import CAPSULE_SUFFIX
from fpsr.io.capsule import Capsule, load_capsule, save_capsule


def capsules_root(home: Path | None = None) -> Path:
    base = home or Path.home()
    return base / ".fpsr" / "capsules"


def _check_name(name: str) -> str:
    if not name or name.startswith(".") or "/" in name or "\\" in name:
        raise ValueError(f"Capsule name '{name}' cannot be used as a file name.")
    return name


def capsule_path(name: str, home: Path | None = None) -> Path:
    return capsules_root(home) / f"{_check_name(name)}{CAPSULE_SUFFIX}"


def capsule_exists(name: str, home: Path | None = None) -> bool:
    return capsule_path(name, home).exists()


def store_capsule(capsule: Capsule, home: Path | None = None, overwrite: bool = False) -> Path:
    path = capsule_path(capsule.name, home)
    if path.exists() and not overwrite:
        raise FileExistsError(f"Capsule '{capsule.name}' already exists at {path}")
    return save_capsule(path, capsule)


def fetch_capsule(name: str, home: Path | None = None) -> Capsule:
    return load_capsule(capsule_path(name, home))


def list_capsules(home: Path | None = None) -> List[str]:
    root = capsules_root(home)
    if not root.exists():
        return []
    return sorted(p.name[: -len(CAPSULE_SUFFIX)] for p in root.iterdir() if p.name.endswith(CAPSULE_SUFFIX))
