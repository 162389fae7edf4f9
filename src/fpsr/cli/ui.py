from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, NamedTuple, Sequence

import typer

from fpsr.io.capsule import Capsule


def _timestamp_utc() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _abs_path(path: Path | None) -> str:
    if path is None:
        return "n/a"
    try:
        return str(path.resolve())
    except OSError:
        return str(path)


def _format_params(params: Any) -> str:
    parts = []
    for f in dataclasses.fields(params):
        value = getattr(params, f.name)
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        parts.append(f"{f.name}={'unset' if value is None else value}")
    return " ".join(parts)


def print_run_header(
    command: str,
    *,
    generator: str,
    params: Any,
    precision: str,
    window: tuple[int, int] | None = None,
    capsule_path: Path | None = None,
) -> None:
    typer.echo(f"[run] command={command} ts_utc={_timestamp_utc()}")
    if capsule_path is not None:
        typer.echo(f"[capsule] path={_abs_path(capsule_path)}")
    typer.echo(f"[{generator}] {_format_params(params)} precision={precision}")
    if window is not None:
        typer.echo(f"[window] start={window[0]} end={window[1]} samples={window[1] - window[0] + 1}")


def print_components(tag: str, state: NamedTuple) -> None:
    for name, value in state._asdict().items():
        typer.echo(f"[{tag}] {name}={value!r}")


def print_trace_preview(values: Sequence[float], n: int = 8, fingerprint: str | None = None) -> None:
    preview = " ".join(f"{v:.6f}" for v in list(values)[:n])
    suffix = f" sha256={fingerprint}" if fingerprint else ""
    typer.echo(f"[trace] preview={preview} total={len(values)}{suffix}")


def print_capsule(capsule: Capsule) -> None:
    settings = capsule.settings
    typer.echo(f"[capsule] name={capsule.name} author={capsule.author} url={capsule.url} created={capsule.created}")
    if capsule.description:
        typer.echo(f"[capsule] description={capsule.description}")
    if capsule.tags or capsule.platforms:
        typer.echo(f"[capsule] tags={','.join(capsule.tags) or 'n/a'} platforms={','.join(capsule.platforms) or 'n/a'}")
    clip = f"{settings.clip_time[0]}..{settings.clip_time[1]}" if settings.clip_time else "n/a"
    typer.echo(
        f"[settings] type={settings.type} seed={settings.seed} inner_mod_dur={settings.inner_mod_dur} "
        f"outer_mod_dur={settings.outer_mod_dur} clip_time={clip} precision={settings.precision}"
    )
    for key, value in sorted(settings.extras.items()):
        if key != "precision":
            typer.echo(f"[settings] {key}={value}")
    trace_len = len(capsule.preview_trace) if capsule.preview_trace is not None else "n/a"
    typer.echo(f"[capsule] preview_trace={trace_len}")


def print_io_write(path: Path) -> None:
    typer.echo(f"[io] Writing output: {_abs_path(path)}")


def print_done(summary: str) -> None:
    typer.echo(f"[done] {summary}")
