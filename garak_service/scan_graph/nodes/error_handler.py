from __future__ import annotations

from garak_service.scan_graph.errors import ScanTimeoutError
from garak_service.scan_graph.logger import log_agent
from garak_service.scan_graph.state import ScanState
from garak_service.scan_graph.state import ScanStatus
from garak_service.scan_graph.state import merge_state
from garak_service.scan_graph.state import transition


async def error_handler_node(state: ScanState) -> ScanState:
    # Unified failure path; runs after cleanup so the outcome reflects the stage error only.
    log_agent(state["scan_id"], "ErrorHandler", f"Entered error handler with {len(state['errors'])} errors")
    errors = list(state["errors"]) or ["Unknown scan error"]

    if state.get("error_kind") == ScanTimeoutError.kind:
        status = ScanStatus.TIMED_OUT
    else:
        status = ScanStatus.FAILED

    settled = transition(merge_state(state, {"errors": errors}), status, "error")
    log_agent(state["scan_id"], "ErrorHandler", f"Scan settled with status={settled['status']}: {errors[0]}")
    return settled
