from __future__ import annotations

from langchain_core.runnables import RunnableConfig

from garak_service.runtime.garak_runtime import GarakRuntime
from garak_service.scan_graph.errors import ScanError
from garak_service.scan_graph.logger import log_agent
from garak_service.scan_graph.observability import traced
from garak_service.scan_graph.settings import settings_from_config
from garak_service.scan_graph.state import ScanState
from garak_service.scan_graph.state import merge_state
from garak_service.scan_graph.state import record_failure


@traced(name="scan.process_runner")
async def process_runner_node(state: ScanState, config: RunnableConfig) -> ScanState:
    scan_id = state["scan_id"]
    paths = state["paths"]
    request = state["request"]
    log_agent(scan_id, "ProcessRunner", "Starting Garak subprocess")

    try:
        runtime = GarakRuntime(scan_id, settings_from_config(config))
        result = await runtime.run(
            options_path=paths["config_path"],
            report_prefix=paths["report_prefix"],
            log_path=paths["log_path"],
            probes=request.get("probes"),
            detectors=request.get("detectors"),
        )
    except ScanError as exc:
        exit_code = getattr(exc, "exit_code", None)
        failed_state = record_failure(state, "process_failed", str(exc), exc.kind)
        return merge_state(failed_state, {"exit_code": exit_code})
    except Exception as exc:  # noqa: BLE001
        log_agent(scan_id, "ProcessRunner", f"Unexpected runner error: {exc}")
        return record_failure(state, "process_failed", f"Garak execution failed: {exc}", "internal")

    return merge_state(state, {"phase": "process_completed", "exit_code": result.exit_code})
