from __future__ import annotations

from collections.abc import Mapping
import json
from pathlib import Path
from typing import Any

from langchain_core.runnables import RunnableConfig

from garak_service.scan_graph.errors import ConfigWriteError
from garak_service.scan_graph.logger import log_agent
from garak_service.scan_graph.observability import traced
from garak_service.scan_graph.settings import credentials_from_config
from garak_service.scan_graph.settings import settings_from_config
from garak_service.scan_graph.state import ScanState
from garak_service.scan_graph.state import ScanStatus
from garak_service.scan_graph.state import merge_state
from garak_service.scan_graph.state import record_failure
from garak_service.scan_graph.state import transition

ROOT_MARKER = "$"


def normalize_response_field(response_field: str) -> str:
    if response_field.startswith(ROOT_MARKER):
        return response_field
    return f"{ROOT_MARKER}.{response_field}"


def merge_auth_header(headers: Mapping[str, str] | None, api_key: str | None) -> dict[str, str]:
    merged = dict(headers or {})
    if api_key:
        merged["Authorization"] = f"Bearer {api_key}"
    return merged


def build_generator_options(
    request: Mapping[str, Any],
    api_key: str | None = None,
    request_timeout: int = 30,
) -> dict[str, Any]:
    return {
        "rest": {
            "RestGenerator": {
                "uri": request["uri"],
                "method": str(request["method"]).lower(),
                "headers": merge_auth_header(request.get("headers"), api_key),
                "req_template_json_object": request["body_template"],
                "response_json": True,
                "response_json_field": normalize_response_field(str(request["response_field"])),
                "request_timeout": request_timeout,
            }
        }
    }


def write_generator_options(config_path: str | Path, options: dict[str, Any]) -> Path:
    path = Path(config_path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(options, indent=2), encoding="utf-8")
    except OSError as exc:
        raise ConfigWriteError(f"Failed to write generator options file: {exc}") from exc
    return path


def prepare_output_dir(output_path: str | Path) -> Path:
    directory = Path(output_path).parent
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigWriteError(f"Failed to prepare output directory {directory}: {exc}") from exc
    return directory


@traced(name="scan.config_materializer")
async def config_materializer_node(state: ScanState, config: RunnableConfig) -> ScanState:
    running_state = transition(state, ScanStatus.RUNNING, "config_materializer")
    log_agent(state["scan_id"], "ConfigMaterializer", "Materializing generator options")

    try:
        settings = settings_from_config(config)
        credentials = credentials_from_config(config)
        options = build_generator_options(
            running_state["request"],
            api_key=credentials.api_key,
            request_timeout=settings.request_timeout_seconds,
        )
        written = write_generator_options(running_state["paths"]["config_path"], options)
        prepare_output_dir(running_state["paths"]["output_path"])
    except ConfigWriteError as exc:
        log_agent(state["scan_id"], "ConfigMaterializer", str(exc))
        return record_failure(running_state, "config_failed", str(exc), exc.kind)
    except Exception as exc:  # noqa: BLE001
        log_agent(state["scan_id"], "ConfigMaterializer", f"Unexpected materialization error: {exc}")
        return record_failure(running_state, "config_failed", f"Failed to prepare scan configuration: {exc}", "internal")

    log_agent(state["scan_id"], "ConfigMaterializer", f"Generator options written to {written}")
    return merge_state(running_state, {"phase": "config_written"})
