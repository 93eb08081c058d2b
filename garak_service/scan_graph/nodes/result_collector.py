from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from typing import Iterable

from langchain_core.runnables import RunnableConfig

from garak_service.scan_graph.errors import ReportMissingError
from garak_service.scan_graph.errors import ReportParseError
from garak_service.scan_graph.errors import ScanError
from garak_service.scan_graph.logger import log_agent
from garak_service.scan_graph.logger import warn_agent
from garak_service.scan_graph.observability import traced
from garak_service.scan_graph.settings import REPORT_SUFFIX
from garak_service.scan_graph.settings import settings_from_config
from garak_service.scan_graph.state import ScanState
from garak_service.scan_graph.state import merge_state
from garak_service.scan_graph.state import record_failure


def find_report_files(report_prefix: str, search_dirs: Iterable[str | Path]) -> list[Path]:
    basename = Path(report_prefix).name
    matches: list[Path] = []
    for directory in search_dirs:
        try:
            entries = sorted(Path(directory).iterdir())
        except OSError:
            continue
        matches.extend(
            entry for entry in entries if basename in entry.name and entry.name.endswith(REPORT_SUFFIX) and entry.is_file()
        )
    return matches


def select_report(candidates: list[Path]) -> Path:
    # Newest wins when the tool leaves more than one report for a prefix.
    return max(candidates, key=lambda candidate: candidate.stat().st_mtime)


def parse_report(report_path: Path) -> list[dict[str, Any]]:
    try:
        content = report_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ReportParseError(f"Failed to parse scan results: cannot read {report_path.name}: {exc}") from exc

    records: list[dict[str, Any]] = []
    for line_number, line in enumerate(content.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as exc:
            raise ReportParseError(
                f"Failed to parse scan results: malformed JSON on line {line_number} of {report_path.name}: {exc.msg}"
            ) from exc
        if not isinstance(record, dict):
            raise ReportParseError(
                f"Failed to parse scan results: line {line_number} of {report_path.name} is not a JSON object"
            )
        records.append({**record, "passed": bool(record.get("passed"))})
    return records


def summarize_attempts(records: list[dict[str, Any]]) -> dict[str, Any]:
    passed = sum(1 for record in records if record["passed"])
    return {
        "scan_summary": {
            "total_attempts": len(records),
            "passed": passed,
            "failed": len(records) - passed,
        },
        "detailed_results": records,
    }


def collect_report(scan_id: str, report_prefix: str, search_dirs: list[Path]) -> dict[str, Any]:
    candidates = find_report_files(report_prefix, search_dirs)
    if not candidates:
        output_dir = Path(report_prefix).parent
        raise ReportMissingError(
            f"Failed to parse scan results: No Garak report files found in {output_dir} "
            f"with prefix {Path(report_prefix).name}"
        )

    report_path = select_report(candidates)
    if len(candidates) > 1:
        skipped = ", ".join(candidate.name for candidate in candidates if candidate != report_path)
        warn_agent(scan_id, "ResultCollector", f"Multiple reports matched; using {report_path.name}, ignoring {skipped}")

    records = parse_report(report_path)
    log_agent(scan_id, "ResultCollector", f"Parsed {len(records)} attempts from {report_path.name}")
    return summarize_attempts(records)


@traced(name="scan.result_collector")
async def result_collector_node(state: ScanState, config: RunnableConfig) -> ScanState:
    scan_id = state["scan_id"]
    report_prefix = state["paths"]["report_prefix"]

    try:
        settings = settings_from_config(config)
        search_dirs = [Path(report_prefix).parent, settings.runs_dir]
        report = collect_report(scan_id, report_prefix, search_dirs)
    except ScanError as exc:
        log_agent(scan_id, "ResultCollector", str(exc))
        return record_failure(state, "collection_failed", str(exc), exc.kind)
    except Exception as exc:  # noqa: BLE001
        log_agent(scan_id, "ResultCollector", f"Unexpected collection error: {exc}")
        return record_failure(state, "collection_failed", f"Failed to parse scan results: {exc}", "internal")

    return merge_state(state, {"phase": "results_collected", "report": report})
