import csv
import json
from pathlib import Path

from typer.testing import CliRunner

from fpsr.cli.app import app


def test_sm_command_golden_value():
    runner = CliRunner()
    res = runner.invoke(
        app,
        [
            "sm",
            "--frame",
            "100",
            "--min-hold",
            "16",
            "--max-hold",
            "24",
            "--reseed-interval",
            "9",
            "--seed-inner=-41",
            "--seed-outer",
            "23",
            "--json",
        ],
    )
    assert res.exit_code == 0, res.output
    payload = json.loads(res.output)
    assert abs(payload["value"] - 0.71686837945890147) < 1e-9
    assert payload["changed"] is False


def test_sm_command_explain():
    runner = CliRunner()
    res = runner.invoke(app, ["sm", "--frame", "103", "--seed-inner=-41", "--seed-outer", "23", "--explain"])
    assert res.exit_code == 0, res.output
    assert "[sm] hold_duration=18" in res.output
    assert "[sm] block=126" in res.output
    assert "[sm] changed=1" in res.output


def test_sm_command_rejects_unknown_precision():
    runner = CliRunner()
    res = runner.invoke(app, ["sm", "--frame", "1", "--precision", "half"])
    assert res.exit_code != 0


def test_qs_command_reference_sample():
    runner = CliRunner()
    args = [
        "qs",
        "--frame",
        "108",
        "--base-freq",
        "0.012",
        "--stream2-mult",
        "3.1",
        "--quant-levels",
        "12,22",
        "--offsets",
        "0,76",
        "--switch-dur",
        "24",
        "--quant1-dur",
        "16",
        "--quant2-dur",
        "20",
    ]
    res = runner.invoke(app, args + ["--json"])
    assert res.exit_code == 0, res.output
    assert abs(json.loads(res.output)["value"] - 0.99470209462560888) < 1e-9

    res = runner.invoke(app, args + ["--explain"])
    assert res.exit_code == 0, res.output
    assert "[qs] selected_stream=2" in res.output


def test_qs_command_domain_error():
    runner = CliRunner()
    res = runner.invoke(app, ["qs", "--frame", "0", "--base-freq", "0"])
    assert res.exit_code == 1
    assert "base_wave_freq" in res.output


def test_trace_command_inline_params(tmp_path):
    runner = CliRunner()
    out = Path(tmp_path) / "trace.csv"
    res = runner.invoke(
        app,
        [
            "trace",
            "--generator",
            "sm",
            "--param",
            "seed_inner=-41",
            "--param",
            "seed_outer=23",
            "--start",
            "99",
            "--end",
            "112",
            "--smooth",
            "4",
            "--out",
            str(out),
        ],
    )
    assert res.exit_code == 0, res.output
    assert "[done] 14 samples" in res.output

    with out.open(newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert [int(r["coordinate"]) for r in rows] == list(range(99, 113))
    assert abs(float(rows[1]["value"]) - 0.71686837945890147) < 1e-9
    assert "smoothed" in rows[0]


def test_trace_command_json_qs():
    runner = CliRunner()
    res = runner.invoke(
        app,
        ["trace", "-g", "qs", "-p", "base_wave_freq=0.012", "-p", "quant_levels=[12,22]", "--start=-3", "--end", "3", "--json"],
    )
    assert res.exit_code == 0, res.output
    payload = json.loads(res.output)
    assert len(payload["values"]) == 7
    assert payload["values"][3] == 0.0


def test_trace_command_requires_source_and_window():
    runner = CliRunner()
    assert runner.invoke(app, ["trace", "--start", "0", "--end", "3"]).exit_code == 1
    assert runner.invoke(app, ["trace", "-g", "sm"]).exit_code == 1
    assert runner.invoke(app, ["trace", "-g", "sm", "--start", "5", "--end", "1"]).exit_code == 1
    res = runner.invoke(app, ["trace", "-g", "sm", "-p", "bogus=1", "--start", "0", "--end", "1"])
    assert res.exit_code == 1
    assert "Parameter error" in res.output


def test_trace_command_rejects_malformed_params():
    runner = CliRunner()
    res = runner.invoke(
        app, ["trace", "-g", "qs", "-p", "base_wave_freq=0.01", "-p", "quant_levels=5", "--start", "0", "--end", "3"]
    )
    assert res.exit_code == 1
    assert "Parameter error" in res.output
    assert "quant_levels" in res.output

    res = runner.invoke(app, ["trace", "-g", "sm", "-p", "min_hold=abc", "--start", "0", "--end", "3"])
    assert res.exit_code == 1
    assert "min_hold" in res.output

    res = runner.invoke(app, ["trace", "-g", "qs", "--start", "0", "--end", "3"])
    assert res.exit_code == 1
    assert "base_wave_freq" in res.output
