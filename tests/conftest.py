"""Shared fixtures: temp-directory settings and a scriptable stand-in for the garak CLI."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Callable

import pytest

from garak_service.scan_graph.settings import ServiceSettings


FAKE_GARAK_SOURCE = r'''
import json
import sys
import time
from pathlib import Path

BEHAVIOR = json.loads(__BEHAVIOR__)


def arg(name):
    argv = sys.argv[1:]
    return argv[argv.index(name) + 1] if name in argv else None


prefix = arg("--report_prefix")
basename = Path(prefix).name
options_file = arg("--generator_option_file")
options = json.loads(Path(options_file).read_text())
uri = options["rest"]["RestGenerator"]["uri"]

print("fake garak starting probes=%s" % arg("--probes"), flush=True)
print("using generator options %s" % options_file, file=sys.stderr, flush=True)

if BEHAVIOR["long_line"]:
    print("L" * BEHAVIOR["long_line"] + "|end-of-long-line", flush=True)

for suffix in BEHAVIOR["early_files"]:
    Path(prefix + suffix).write_text("partial")

time.sleep(BEHAVIOR["delay"])

if BEHAVIOR["write_report"]:
    lines = [json.dumps(dict(record, target=uri)) for record in BEHAVIOR["records"]]
    lines.extend(BEHAVIOR["raw_lines"])
    Path(prefix + ".report.jsonl").write_text("\n".join(lines) + "\n")

runs_dir = BEHAVIOR["runs_dir"]
if runs_dir:
    Path(runs_dir).mkdir(parents=True, exist_ok=True)
    Path(runs_dir, basename + ".hitlog.jsonl").write_text("{}\n")

observe_dir = BEHAVIOR["observe_dir"]
if observe_dir:
    seen = sorted(p.name for p in Path(prefix).parent.iterdir() if basename in p.name)
    Path(observe_dir, basename + ".json").write_text(json.dumps({"uri": uri, "files": seen}))

sys.exit(BEHAVIOR["exit_code"])
'''


def make_records(passed: int, failed: int) -> list[dict[str, Any]]:
    records = [{"probe": "goodside.Tag", "seq": i, "passed": True} for i in range(passed)]
    records.extend({"probe": "goodside.Tag", "seq": passed + i, "passed": False} for i in range(failed))
    return records


@pytest.fixture
def dirs(tmp_path: Path) -> dict[str, Path]:
    return {
        "config": tmp_path / "config",
        "temp": tmp_path / "temp",
        "logs": tmp_path / "logs",
        "runs": tmp_path / "runs",
        "observe": tmp_path / "observe",
        "bin": tmp_path / "bin",
    }


@pytest.fixture
def fake_garak(dirs: dict[str, Path]) -> Callable[..., Path]:
    """Write a fake garak script whose behaviour is baked in at creation time."""
    counter = {"n": 0}

    def _make(
        exit_code: int = 0,
        records: list[dict[str, Any]] | None = None,
        raw_lines: list[str] | None = None,
        write_report: bool = True,
        delay: float = 0.0,
        early_files: list[str] | None = None,
        touch_runs_dir: bool = True,
        observe: bool = False,
        long_line: int = 0,
    ) -> Path:
        behavior = {
            "exit_code": exit_code,
            "records": records if records is not None else make_records(2, 1),
            "raw_lines": raw_lines or [],
            "write_report": write_report,
            "delay": delay,
            "early_files": early_files or [],
            "runs_dir": str(dirs["runs"]) if touch_runs_dir else "",
            "observe_dir": str(dirs["observe"]) if observe else "",
            "long_line": long_line,
        }
        dirs["bin"].mkdir(parents=True, exist_ok=True)
        if observe:
            dirs["observe"].mkdir(parents=True, exist_ok=True)
        counter["n"] += 1
        script = dirs["bin"] / f"fake_garak_{counter['n']}.py"
        script.write_text(FAKE_GARAK_SOURCE.replace("__BEHAVIOR__", repr(json.dumps(behavior))))
        return script

    return _make


@pytest.fixture
def make_settings(dirs: dict[str, Path]) -> Callable[..., ServiceSettings]:
    def _make(script: Path | None = None, **overrides: Any) -> ServiceSettings:
        values: dict[str, Any] = {
            "config_dir": dirs["config"],
            "temp_dir": dirs["temp"],
            "logs_dir": dirs["logs"],
            "runs_dir": dirs["runs"],
            "scan_timeout_seconds": 20.0,
        }
        if script is not None:
            values["garak_command"] = (sys.executable, str(script))
        values.update(overrides)
        return ServiceSettings(**values)

    return _make


@pytest.fixture
def scan_payload() -> dict[str, Any]:
    return {
        "name": "t1",
        "uri": "https://x/api",
        "method": "POST",
        "headers": {},
        "body_template": {"q": "$INPUT"},
        "response_field": "text",
    }


def files_with(directory: Path, fragment: str) -> list[str]:
    if not directory.exists():
        return []
    return sorted(p.name for p in directory.iterdir() if fragment in p.name)
