from __future__ import annotations

from typing import Any

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END
from langgraph.graph import START
from langgraph.graph import StateGraph

from garak_service.scan_graph.logger import log_agent
from garak_service.scan_graph.logger import warn_agent
from garak_service.scan_graph.nodes.config_materializer import config_materializer_node
from garak_service.scan_graph.nodes.error_handler import error_handler_node
from garak_service.scan_graph.nodes.process_runner import process_runner_node
from garak_service.scan_graph.nodes.result_collector import result_collector_node
from garak_service.scan_graph.observability import traced
from garak_service.scan_graph.state import ScanState
from garak_service.scan_graph.state import ScanStatus
from garak_service.scan_graph.state import append_timeline_event
from garak_service.scan_graph.state import merge_state
from garak_service.scan_graph.state import transition
from garak_service.scan_graph.subgraphs.cleanup_subgraph import cleanup_subgraph


def route_if_error(state: ScanState) -> str:
    if state["errors"]:
        log_agent(state["scan_id"], "MasterOrchestrator", "Conditional edge selected: error")
        return "error"
    log_agent(state["scan_id"], "MasterOrchestrator", "Conditional edge selected: ok")
    return "ok"


@traced(name="scan.run_cleanup_phase")
async def run_cleanup_phase_node(state: ScanState, config: RunnableConfig) -> ScanState:
    log_agent(state["scan_id"], "MasterOrchestrator", "Delegating to CleanupSubgraph")
    cleanup_status = dict(state["cleanup_status"])
    cleanup_status["invocations"] = int(cleanup_status.get("invocations", 0)) + 1
    started_state = append_timeline_event(merge_state(state, {"cleanup_status": cleanup_status}), "cleanup_phase", "started")

    try:
        next_state = await cleanup_subgraph.ainvoke(started_state, config=config)
    except Exception as exc:  # noqa: BLE001
        # Cleanup never decides the scan outcome.
        warn_agent(state["scan_id"], "MasterOrchestrator", f"Cleanup phase failed (non-blocking): {exc}")
        cleanup_status["failures"] = [*cleanup_status.get("failures", []), {"path": "<cleanup>", "reason": str(exc)}]
        failed_state = merge_state(started_state, {"cleanup_status": cleanup_status})
        return append_timeline_event(failed_state, "cleanup_phase", "failed")

    return append_timeline_event(next_state, "cleanup_phase", "completed")


async def scan_completed_node(state: ScanState) -> ScanState:
    summary = (state.get("report") or {}).get("scan_summary", {})
    log_agent(state["scan_id"], "MasterOrchestrator", f"Scan completed with summary={summary}")
    return transition(state, ScanStatus.COMPLETED, "completed")


def build_master_orchestrator_graph():
    # Every path passes through run_cleanup_phase exactly once before settling.
    graph = StateGraph(ScanState)

    graph.add_node("config_materializer", config_materializer_node)
    graph.add_node("process_runner", process_runner_node)
    graph.add_node("result_collector", result_collector_node)
    graph.add_node("run_cleanup_phase", run_cleanup_phase_node)
    graph.add_node("scan_completed", scan_completed_node)
    graph.add_node("error_handler", error_handler_node)

    graph.add_edge(START, "config_materializer")

    graph.add_conditional_edges(
        "config_materializer",
        route_if_error,
        {
            "ok": "process_runner",
            "error": "run_cleanup_phase",
        },
    )

    graph.add_conditional_edges(
        "process_runner",
        route_if_error,
        {
            "ok": "result_collector",
            "error": "run_cleanup_phase",
        },
    )

    graph.add_edge("result_collector", "run_cleanup_phase")

    graph.add_conditional_edges(
        "run_cleanup_phase",
        route_if_error,
        {
            "ok": "scan_completed",
            "error": "error_handler",
        },
    )

    graph.add_edge("scan_completed", END)
    graph.add_edge("error_handler", END)

    return graph.compile()


master_orchestrator_graph = build_master_orchestrator_graph()


@traced(name="scan.execute_scan_workflow")
async def execute_scan_workflow(state: ScanState, config: dict[str, Any] | None = None) -> ScanState:
    # Entry point used by ScanService.
    log_agent(state["scan_id"], "MasterOrchestrator", "Workflow execution started")
    final_state = await master_orchestrator_graph.ainvoke(state, config=config)
    log_agent(
        final_state["scan_id"],
        "MasterOrchestrator",
        f"Workflow execution finished with status={final_state['status']} errors={len(final_state['errors'])}",
    )
    return final_state
