"""Report discovery and JSONL reduction."""

from __future__ import annotations

import json
import os

import pytest

from conftest import make_records
from garak_service.scan_graph.errors import ReportMissingError
from garak_service.scan_graph.errors import ReportParseError
from garak_service.scan_graph.nodes.result_collector import collect_report
from garak_service.scan_graph.nodes.result_collector import find_report_files
from garak_service.scan_graph.nodes.result_collector import parse_report


def _write_report(path, records, extra_lines=()):
    lines = [json.dumps(record) for record in records] + list(extra_lines)
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.mark.parametrize("passed,failed", [(0, 0), (3, 0), (0, 4), (5, 2)])
def test_summary_counts_add_up(tmp_path, passed, failed):
    _write_report(tmp_path / "abc_output.report.jsonl", make_records(passed, failed))

    report = collect_report("abc", str(tmp_path / "abc_output"), [tmp_path])

    summary = report["scan_summary"]
    assert summary["total_attempts"] == passed + failed
    assert summary["passed"] == passed
    assert summary["failed"] == failed
    assert summary["passed"] + summary["failed"] == summary["total_attempts"]


def test_detailed_results_keep_tool_fields_in_order(tmp_path):
    records = [
        {"passed": True, "probe": "dan.Dan_11_0", "prompt": "hi", "outputs": ["hello"]},
        {"passed": False, "probe": "dan.Dan_11_0", "detector": "mitigation.MitigationBypass"},
    ]
    _write_report(tmp_path / "abc_output.report.jsonl", records)

    report = collect_report("abc", str(tmp_path / "abc_output"), [tmp_path])

    assert report["detailed_results"] == records


def test_missing_pass_field_counts_as_failed(tmp_path):
    path = _write_report(tmp_path / "abc_output.report.jsonl", [{"probe": "x"}, {"passed": 1}])

    records = parse_report(path)

    assert [record["passed"] for record in records] == [False, True]


def test_blank_lines_are_ignored(tmp_path):
    path = tmp_path / "abc_output.report.jsonl"
    path.write_text('{"passed": true}\n\n   \n{"passed": false}\n')

    assert len(parse_report(path)) == 2


def test_no_report_is_report_missing(tmp_path):
    (tmp_path / "abc_output.hitlog.jsonl").write_text("{}\n")
    (tmp_path / "other_output.report.jsonl").write_text('{"passed": true}\n')

    with pytest.raises(ReportMissingError, match="No Garak report files found"):
        collect_report("abc", str(tmp_path / "abc_output"), [tmp_path])


def test_malformed_line_is_parse_error(tmp_path):
    _write_report(tmp_path / "abc_output.report.jsonl", make_records(1, 0), extra_lines=["{not json"])

    with pytest.raises(ReportParseError, match="malformed JSON on line 2"):
        collect_report("abc", str(tmp_path / "abc_output"), [tmp_path])


def test_non_object_line_is_parse_error(tmp_path):
    _write_report(tmp_path / "abc_output.report.jsonl", [], extra_lines=["[1, 2]"])

    with pytest.raises(ReportParseError, match="not a JSON object"):
        collect_report("abc", str(tmp_path / "abc_output"), [tmp_path])


def test_newest_report_wins(tmp_path):
    older = _write_report(tmp_path / "abc_output.report.jsonl", make_records(1, 0))
    newer = _write_report(tmp_path / "garak.abc_output.report.jsonl", make_records(0, 2))
    os.utime(older, (1_000_000, 1_000_000))
    os.utime(newer, (2_000_000, 2_000_000))

    report = collect_report("abc", str(tmp_path / "abc_output"), [tmp_path])

    assert report["scan_summary"] == {"total_attempts": 2, "passed": 0, "failed": 2}


def test_run_directory_is_searched(tmp_path):
    output_dir = tmp_path / "temp"
    runs_dir = tmp_path / "runs"
    output_dir.mkdir()
    runs_dir.mkdir()
    _write_report(runs_dir / "abc_output.report.jsonl", make_records(1, 1))

    matches = find_report_files(str(output_dir / "abc_output"), [output_dir, runs_dir, tmp_path / "absent"])

    assert [match.name for match in matches] == ["abc_output.report.jsonl"]
