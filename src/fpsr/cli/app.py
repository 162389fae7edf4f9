from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Tuple

import typer

from fpsr.analysis.runner import ConfigError, parse_config, run_analyze, write_csv, write_json_output
from fpsr.core import constants
from fpsr.core.generators.base import DomainError, get_generator
from fpsr.core.generators.quantised_switching import QSParams, qs_components
from fpsr.core.generators.stacked_modulo import SMParams, sm_components
from fpsr.core.hashing import portable_rand
from fpsr.io.capsule import (
    CapsuleError,
    CapsuleSettings,
    ReproducibilityError,
    load_capsule,
    parse_capsule,
    capsule_to_dict,
    record_capsule,
    regenerate_trace,
    save_capsule,
    settings_to_params,
    verify_capsule,
)
from fpsr.io.formats import write_trace_csv
from fpsr.io.library import capsule_exists, capsule_path, list_capsules, store_capsule
from fpsr.orchestrator.pipeline import generate_trace, trace_fingerprint, value_changed
from fpsr.utils.logging import resolve_log_level, set_command_context, setup_logging
from fpsr.utils.smoothing import rolling_mean
from fpsr.cli import ui

app = typer.Typer(help="FPS-R: frame-persistent stateless randomisation")
capsule_app = typer.Typer(help="Capsule utilities (record/verify/show/list)")


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def parse_pair(text: str, name: str) -> Tuple[int, int]:
    try:
        if "," in text:
            a_str, b_str = text.split(",", 1)
        else:
            parts = text.split()
            if len(parts) != 2:
                raise ValueError
            a_str, b_str = parts
        return int(a_str.strip()), int(b_str.strip())
    except ValueError as exc:
        raise typer.BadParameter(f"{name} must be provided as 'a,b' or 'a b'") from exc


def parse_params(items: List[str]) -> Dict[str, Any]:
    """Parse repeated ``key=value`` options; values are JSON (``quant_levels=[12,22]``)."""
    values: Dict[str, Any] = {}
    for item in items:
        if "=" not in item:
            raise typer.BadParameter(f"'{item}' must be key=value")
        key, raw = item.split("=", 1)
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            value = raw
        values[key.strip()] = value
    return values


def _check_precision(precision: str) -> str:
    if precision not in constants.PRECISIONS:
        raise typer.BadParameter(f"precision must be one of {list(constants.PRECISIONS)}")
    return precision


def _parse_type(value: str) -> int:
    lookup = {"sm": constants.SM_TYPE_CODE, "qs": constants.QS_TYPE_CODE, "0": 0, "1": 1}
    if value.lower() not in lookup:
        raise typer.BadParameter("type must be sm, qs, 0 or 1")
    return lookup[value.lower()]


def _resolve_capsule(path: Path | None, name: str | None) -> Path:
    if (path is None) == (name is None):
        raise typer.BadParameter("Provide exactly one of --capsule or --name.")
    if path is not None:
        return path
    if not capsule_exists(name):
        _fail(f"Capsule '{name}' not found.")
    return capsule_path(name)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress (INFO)"),
    debug: bool = typer.Option(False, "--debug", help="Log details (DEBUG)"),
):
    """Deterministic hold-and-jump random streams (Stacked Modulo, Quantised Switching)."""
    setup_logging(resolve_log_level(verbose, debug))


@app.command("sm")
def sm_command(
    frame: int = typer.Option(..., "--frame", "-f", help="Coordinate (frame or index)"),
    min_hold: int = typer.Option(constants.DEFAULT_MIN_HOLD, help="Minimum hold duration"),
    max_hold: int = typer.Option(constants.DEFAULT_MAX_HOLD, help="Maximum hold duration"),
    reseed_interval: int = typer.Option(constants.DEFAULT_RESEED_INTERVAL, help="Frames between hold-duration draws"),
    seed_inner: int = typer.Option(0, help="Offset for the duration draw"),
    seed_outer: int = typer.Option(0, help="Offset for the value draw"),
    precision: str = typer.Option(constants.DEFAULT_PRECISION, help="Hash precision: double or single"),
    explain: bool = typer.Option(False, "--explain", help="Print intermediate values"),
    json_out: bool = typer.Option(False, "--json", help="Print value and changed flag as JSON"),
):
    """Evaluate Stacked Modulo at one coordinate."""
    set_command_context("sm")
    precision = _check_precision(precision)
    params = SMParams(min_hold, max_hold, reseed_interval, seed_inner, seed_outer)
    state = sm_components(frame, min_hold, max_hold, reseed_interval, seed_inner, seed_outer, precision=precision)
    changed = value_changed("sm", params, frame, precision)

    if json_out:
        typer.echo(json.dumps({"frame": frame, "value": state.value, "changed": changed}))
        return
    if explain:
        ui.print_run_header("sm", generator="sm", params=params, precision=precision)
        ui.print_components("sm", state)
        typer.echo(f"[sm] changed={int(changed)}")
        return
    typer.echo(repr(state.value))


@app.command("qs")
def qs_command(
    frame: int = typer.Option(..., "--frame", "-f", help="Coordinate (frame or index)"),
    base_freq: float = typer.Option(constants.DEFAULT_BASE_WAVE_FREQ, "--base-freq", help="Base wave frequency (> 0)"),
    stream2_mult: float | None = typer.Option(None, "--stream2-mult", help="Stream 2 frequency multiplier (default 3.7)"),
    quant_levels: str = typer.Option("12,22", "--quant-levels", help="Low,high quantisation levels"),
    offsets: str = typer.Option("0,76", "--offsets", help="Stream 1,2 coordinate offsets"),
    switch_dur: int | None = typer.Option(None, "--switch-dur", help="Stream switch duration (derived if unset)"),
    quant1_dur: int | None = typer.Option(None, "--quant1-dur", help="Stream 1 level toggle duration"),
    quant2_dur: int | None = typer.Option(None, "--quant2-dur", help="Stream 2 level toggle duration"),
    precision: str = typer.Option(constants.DEFAULT_PRECISION, help="Hash precision: double or single"),
    explain: bool = typer.Option(False, "--explain", help="Print intermediate values"),
    json_out: bool = typer.Option(False, "--json", help="Print value and changed flag as JSON"),
):
    """Evaluate Quantised Switching at one coordinate."""
    set_command_context("qs")
    precision = _check_precision(precision)
    params = QSParams(
        base_wave_freq=base_freq,
        stream2_freq_mult=stream2_mult,
        quant_levels=parse_pair(quant_levels, "quant-levels"),
        streams_offset=parse_pair(offsets, "offsets"),
        stream_switch_dur=switch_dur,
        stream1_quant_dur=quant1_dur,
        stream2_quant_dur=quant2_dur,
    )
    try:
        state = qs_components(
            frame,
            params.base_wave_freq,
            params.stream2_freq_mult,
            params.quant_levels,
            params.streams_offset,
            params.stream_switch_dur,
            params.stream1_quant_dur,
            params.stream2_quant_dur,
            precision=precision,
        )
        changed = value_changed("qs", params, frame, precision)
    except DomainError as exc:
        _fail(f"Domain error: {exc}")

    if json_out:
        typer.echo(json.dumps({"frame": frame, "value": state.value, "changed": changed}))
        return
    if explain:
        ui.print_run_header("qs", generator="qs", params=params, precision=precision)
        ui.print_components("qs", state)
        typer.echo(f"[qs] changed={int(changed)}")
        return
    typer.echo(repr(state.value))


@app.command()
def trace(
    capsule: Path | None = typer.Option(None, "--capsule", "-c", exists=True, readable=True, help="Capsule file"),
    generator: str | None = typer.Option(None, "--generator", "-g", help="sm or qs (when no capsule)"),
    param: List[str] = typer.Option([], "--param", "-p", help="Generator parameter key=value (repeatable)"),
    start: int | None = typer.Option(None, "--start", help="First coordinate (defaults to capsule clip start)"),
    end: int | None = typer.Option(None, "--end", help="Last coordinate (defaults to capsule clip end)"),
    precision: str | None = typer.Option(None, help="Hash precision (defaults to capsule or double)"),
    smooth: int = typer.Option(0, "--smooth", help="Append a rolling mean over N values (0 = off)"),
    out: Path | None = typer.Option(None, "--out", "-o", help="Write CSV (coordinate,value[,smoothed])"),
    json_out: bool = typer.Option(False, "--json", help="Print the trace as JSON"),
):
    """Evaluate a generator over an inclusive coordinate window."""
    set_command_context("trace")
    if (capsule is None) == (generator is None):
        _fail("Provide exactly one of --capsule or --generator.")
    if smooth < 0:
        _fail("smooth must be >= 0")

    if capsule is not None:
        try:
            cap = load_capsule(capsule)
            name, params = settings_to_params(cap.settings)
        except (CapsuleError, json.JSONDecodeError) as exc:
            _fail(f"Capsule error: {exc}")
        clip = cap.settings.clip_time
        start = start if start is not None else (clip[0] if clip else None)
        end = end if end is not None else (clip[1] if clip else None)
        precision = precision or cap.settings.precision
    else:
        try:
            gen = get_generator(generator.lower())
            params = gen.build_params(**parse_params(param))
        except ValueError as exc:
            _fail(f"Parameter error: {exc}")
        name = gen.name
        precision = precision or constants.DEFAULT_PRECISION

    if start is None or end is None:
        _fail("A window is required: pass --start and --end (or a capsule with clip_time).")
    if start > end:
        _fail(f"start={start} must be <= end={end}")
    precision = _check_precision(precision)

    try:
        values = generate_trace(name, params, start, end, precision=precision)
    except DomainError as exc:
        _fail(f"Domain error: {exc}")
    smoothed = rolling_mean(values, capacity=smooth) if smooth else None
    coords = list(range(start, end + 1))

    if json_out:
        payload: Dict[str, Any] = {"generator": name, "start": start, "end": end, "values": values.tolist()}
        if smoothed is not None:
            payload["smoothed"] = smoothed
        typer.echo(json.dumps(payload))
        return

    ui.print_run_header("trace", generator=name, params=params, precision=precision, window=(start, end), capsule_path=capsule)
    ui.print_trace_preview(values, fingerprint=trace_fingerprint(values))
    if out is not None:
        ui.print_io_write(out)
        write_trace_csv(out, coords, values, smoothed)
    ui.print_done(f"{len(values)} samples")


@capsule_app.command("record")
def capsule_record(
    name: str = typer.Option(..., "--name", "-n", help="Capsule name"),
    author: str = typer.Option(..., "--author", help="Author"),
    url: str = typer.Option("", "--url", help="Reference URL"),
    type_: str = typer.Option(..., "--type", "-t", help="Generator: sm, qs, 0 or 1"),
    seed: int = typer.Option(..., "--seed", help="Seed"),
    inner: int = typer.Option(..., "--inner", help="inner_mod_dur"),
    outer: int = typer.Option(..., "--outer", help="outer_mod_dur"),
    clip: str | None = typer.Option(None, "--clip", help="Captured window 'start,end'"),
    param: List[str] = typer.Option([], "--param", "-p", help="Extra setting key=value (repeatable)"),
    precision: str = typer.Option(constants.DEFAULT_PRECISION, help="Hash precision stored with the capsule"),
    description: str | None = typer.Option(None, "--description", help="Free text"),
    tag: List[str] = typer.Option([], "--tag", help="Tag (repeatable)"),
    platform: List[str] = typer.Option([], "--platform", help="Platform (repeatable)"),
    out: Path | None = typer.Option(None, "--out", "-o", help="Write here instead of the capsule library"),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace an existing library capsule"),
):
    """Create a capsule and capture its preview trace."""
    set_command_context("capsule")
    extras = parse_params(param)
    extras["precision"] = _check_precision(precision)
    settings = CapsuleSettings(
        type=_parse_type(type_),
        seed=seed,
        inner_mod_dur=inner,
        outer_mod_dur=outer,
        clip_time=parse_pair(clip, "clip") if clip else None,
        extras=extras,
    )
    try:
        cap = record_capsule(
            name,
            author,
            url,
            settings,
            description=description,
            tags=tag,
            platforms=platform,
        )
    except (CapsuleError, DomainError) as exc:
        _fail(f"Capsule error: {exc}")

    if out is not None:
        path = save_capsule(out, cap)
    else:
        try:
            path = store_capsule(cap, overwrite=overwrite)
        except (FileExistsError, ValueError) as exc:
            _fail(str(exc))
    typer.secho(f"Capsule '{cap.name}' → {path}", fg=typer.colors.GREEN)


@capsule_app.command("verify")
def capsule_verify(
    capsule: Path | None = typer.Option(None, "--capsule", "-c", exists=True, readable=True, help="Capsule file"),
    name: str | None = typer.Option(None, "--name", "-n", help="Capsule name in the library"),
    tolerance: float = typer.Option(constants.TRACE_TOLERANCE, help="Absolute tolerance per sample"),
):
    """Validate a capsule and check its preview trace reproduces."""
    set_command_context("capsule")
    path = _resolve_capsule(capsule, name)
    try:
        cap = load_capsule(path)
        regenerated = verify_capsule(cap, tolerance=tolerance)
    except ReproducibilityError as exc:
        _fail(f"Reproducibility failure: {exc}")
    except (CapsuleError, DomainError, json.JSONDecodeError) as exc:
        _fail(f"Capsule error: {exc}")

    if regenerated is None:
        typer.secho(f"Capsule '{cap.name}' valid (no preview_trace to verify).", fg=typer.colors.YELLOW)
        return
    typer.secho(f"Capsule '{cap.name}' reproduced {len(regenerated)} samples.", fg=typer.colors.GREEN)


@capsule_app.command("show")
def capsule_show(
    capsule: Path | None = typer.Option(None, "--capsule", "-c", exists=True, readable=True, help="Capsule file"),
    name: str | None = typer.Option(None, "--name", "-n", help="Capsule name in the library"),
):
    """Show capsule metadata and settings."""
    set_command_context("capsule")
    path = _resolve_capsule(capsule, name)
    try:
        cap = load_capsule(path)
    except (CapsuleError, json.JSONDecodeError) as exc:
        _fail(f"Capsule error: {exc}")
    ui.print_capsule(cap)


@capsule_app.command("list")
def capsule_list():
    """List capsules in the library."""
    names = list_capsules()
    if not names:
        typer.echo("No capsules found.")
        return
    for name in names:
        typer.echo(name)


app.add_typer(capsule_app, name="capsule")


@app.command()
def analyze(
    config: Path = typer.Option(..., "--config", "-c", exists=True, readable=True, help="YAML analyze config"),
    out: Path = typer.Option(..., "--out", "-o", help="CSV output path"),
    out_json: Path | None = typer.Option(None, "--out-json", help="Optional JSON output path"),
    jobs: int = typer.Option(1, "--jobs", "-j", help="Parallel jobs (variants), default 1"),
    json_summary: bool = typer.Option(False, "--json", help="Print summary JSON to stdout"),
):
    """
    Sweep generator parameters from a YAML config and export hold/change statistics.
    """
    set_command_context("analyze")
    try:
        cfg = parse_config(config)
    except ConfigError as exc:
        _fail(f"Config error: {exc}")

    try:
        records = run_analyze(cfg, jobs=jobs)
    except (ValueError, RuntimeError) as exc:
        _fail(f"Analyze failed: {exc}")

    write_csv(out, records, cfg)
    if out_json:
        write_json_output(out_json, records)

    typer.secho(f"Analyze complete. CSV → {out}", fg=typer.colors.GREEN)
    if out_json:
        typer.secho(f"JSON → {out_json}", fg=typer.colors.GREEN)
    if json_summary:
        summary = {
            "generator": cfg.analyze.generator,
            "variants": len(records),
            "csv": str(out),
            "json": str(out_json) if out_json else None,
        }
        typer.echo(json.dumps(summary))


@app.command()
def selftest():
    """
    Run the built-in golden vectors (no filesystem writes).
    """
    set_command_context("selftest")
    sm_params = SMParams(min_hold=16, max_hold=24, reseed_interval=9, seed_inner=-41, seed_outer=23)
    qs_params = QSParams(
        base_wave_freq=0.012,
        stream2_freq_mult=3.1,
        quant_levels=(12, 22),
        streams_offset=(0, 76),
        stream_switch_dur=24,
        stream1_quant_dur=16,
        stream2_quant_dur=20,
    )
    sm_gen = get_generator("sm")
    qs_gen = get_generator("qs")

    checks = [
        ("hash(0) == 0", portable_rand(0) == 0.0),
        ("sm(100) golden", abs(sm_gen.evaluate(100, sm_params) - 0.71686837945890147) < 1e-9),
        ("sm(100) unchanged from sm(99)", not value_changed(sm_gen, sm_params, 100)),
        ("sm(100) single precision", sm_gen.evaluate(100, sm_params, constants.PRECISION_SINGLE) == 0.71875),
        ("qs(103) golden", abs(qs_gen.evaluate(103, qs_params) - 0.87218168212712044) < 1e-9),
        ("qs(108) golden", abs(qs_gen.evaluate(108, qs_params) - 0.99470209462560888) < 1e-9),
    ]
    settings = CapsuleSettings(type=constants.SM_TYPE_CODE, seed=-41, inner_mod_dur=9, outer_mod_dur=24, clip_time=(90, 130))
    cap = record_capsule("selftest", "fpsr", "", settings, created="1970-01-01T00:00:00Z")
    reloaded = parse_capsule(json.loads(json.dumps(capsule_to_dict(cap))))
    checks.append(("capsule round-trip", reloaded == cap and verify_capsule(reloaded) is not None))
    trace_match = bool((regenerate_trace(reloaded) == generate_trace("sm", settings_to_params(settings)[1], 90, 130)).all())
    checks.append(("capsule trace matches scalar calls", trace_match))

    failed = [label for label, ok in checks if not ok]
    for label, ok in checks:
        typer.echo(f"[selftest] {label}: {'ok' if ok else 'FAILED'}")
    if failed:
        typer.secho("Selftest FAILED.", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.secho("Selftest passed (golden vectors).", fg=typer.colors.GREEN)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
