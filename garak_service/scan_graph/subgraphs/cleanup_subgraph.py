from __future__ import annotations

from langgraph.graph import END
from langgraph.graph import START
from langgraph.graph import StateGraph

from garak_service.scan_graph.nodes.cleanup.cleanup_sweeper import artifact_sweeper_node
from garak_service.scan_graph.nodes.cleanup.cleanup_sweeper import run_dir_sweeper_node
from garak_service.scan_graph.state import ScanState


def build_cleanup_subgraph():
    graph = StateGraph(ScanState)

    graph.add_node("artifact_sweeper", artifact_sweeper_node)
    graph.add_node("run_dir_sweeper", run_dir_sweeper_node)

    graph.add_edge(START, "artifact_sweeper")
    graph.add_edge("artifact_sweeper", "run_dir_sweeper")
    graph.add_edge("run_dir_sweeper", END)

    return graph.compile()


cleanup_subgraph = build_cleanup_subgraph()
