from __future__ import annotations

from copy import deepcopy
from datetime import datetime
from datetime import timezone
from enum import Enum
from typing import Any
from typing import TypedDict

from garak_service.scan_graph.logger import scan_logger
from garak_service.scan_graph.settings import ServiceSettings


class ScanStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TERMINAL_STATUSES = {ScanStatus.COMPLETED.value, ScanStatus.FAILED.value, ScanStatus.TIMED_OUT.value}


class SecurityError(RuntimeError):
    pass


class ScanPaths(TypedDict):
    config_path: str
    output_path: str
    report_prefix: str
    log_path: str


class CleanupStatus(TypedDict):
    invocations: int
    removed: list[str]
    failures: list[dict[str, str]]
    completed: bool


class ScanState(TypedDict):
    # Identity and request shape. Credentials never live here.
    scan_id: str
    name: str
    request: dict[str, Any]

    # Transient file set namespaced by scan_id.
    paths: ScanPaths

    # Routing and status.
    status: str
    phase: str
    errors: list[str]
    error_kind: str | None

    # Stage outputs.
    exit_code: int | None
    report: dict[str, Any] | None
    cleanup_status: CleanupStatus
    phase_timeline: list[dict[str, str]]


def _ensure_no_secret_state_keys(state_like: dict[str, Any]) -> None:
    forbidden_keys = [key for key in state_like.keys() if "token" in key.lower() or "key" in key.lower()]
    if forbidden_keys:
        raise SecurityError(f"Forbidden secret-like key(s) in state: {', '.join(sorted(forbidden_keys))}")


def merge_state(old_state: ScanState, updates: dict[str, Any]) -> ScanState:
    # Nodes treat state as immutable snapshots.
    next_state = deepcopy(old_state)
    for key, value in updates.items():
        if "token" in key.lower() or "key" in key.lower():
            raise SecurityError(f"Forbidden secret-like key in state update: {key}")
        next_state[key] = value
    _ensure_no_secret_state_keys(next_state)
    scan_logger.debug("[scan:%s] [SecurityGuard] Secret persistence check passed", next_state["scan_id"])
    return next_state


def build_scan_paths(scan_id: str, settings: ServiceSettings) -> ScanPaths:
    output_path = settings.temp_dir / f"{scan_id}_output.json"
    return {
        "config_path": str(settings.config_dir / f"{scan_id}_generator_options.json"),
        "output_path": str(output_path),
        "report_prefix": str(output_path.with_suffix("")),
        "log_path": str(settings.logs_dir / f"{scan_id}_garak.log"),
    }


def build_initial_state(scan_id: str, request: dict[str, Any], settings: ServiceSettings) -> ScanState:
    now = datetime.now(timezone.utc).isoformat()
    sanitized_request = {key: value for key, value in request.items() if key != "api_key"}
    initial_state: ScanState = {
        "scan_id": scan_id,
        "name": str(request.get("name", "")),
        "request": sanitized_request,
        "paths": build_scan_paths(scan_id, settings),
        "status": ScanStatus.PENDING.value,
        "phase": "accepted",
        "errors": [],
        "error_kind": None,
        "exit_code": None,
        "report": None,
        "cleanup_status": {
            "invocations": 0,
            "removed": [],
            "failures": [],
            "completed": False,
        },
        "phase_timeline": [
            {
                "phase": "accepted",
                "event": ScanStatus.PENDING.value,
                "at": now,
            }
        ],
    }
    _ensure_no_secret_state_keys(initial_state)
    return initial_state


def append_timeline_event(state: ScanState, phase: str, event: str) -> ScanState:
    entry = {
        "phase": phase,
        "event": event,
        "at": datetime.now(timezone.utc).isoformat(),
    }
    return merge_state(state, {"phase_timeline": [*state["phase_timeline"], entry]})


def transition(state: ScanState, status: ScanStatus, phase: str) -> ScanState:
    if state["status"] in TERMINAL_STATUSES:
        raise RuntimeError(f"Scan already settled with status={state['status']}")
    next_state = merge_state(state, {"status": status.value, "phase": phase})
    return append_timeline_event(next_state, phase, status.value)


def record_failure(state: ScanState, phase: str, message: str, kind: str) -> ScanState:
    return merge_state(
        state,
        {
            "phase": phase,
            "errors": [*state["errors"], message],
            "error_kind": kind,
        },
    )
