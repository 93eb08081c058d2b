from __future__ import annotations

import asyncio
from datetime import datetime
from datetime import timezone
from uuid import uuid4

from fastapi import APIRouter
from fastapi import Depends
from fastapi.responses import JSONResponse

from garak_service.scan_graph.graph import execute_scan_workflow
from garak_service.scan_graph.logger import log_agent
from garak_service.scan_graph.logger import warn_agent
from garak_service.scan_graph.nodes.cleanup.cleanup_sweeper import output_fragment
from garak_service.scan_graph.nodes.cleanup.cleanup_sweeper import sweep_directory
from garak_service.scan_graph.nodes.cleanup.cleanup_sweeper import sweep_output_artifacts
from garak_service.scan_graph.settings import ScanCredentials
from garak_service.scan_graph.settings import ServiceSettings
from garak_service.scan_graph.settings import load_settings
from garak_service.scan_graph.state import ScanState
from garak_service.scan_graph.state import ScanStatus
from garak_service.scan_graph.state import build_initial_state
from garak_service.scan_graph.state import record_failure
from garak_service.scan_graph.state import transition
from models import ScanFailureResponse
from models import ScanReport
from models import ScanRequest
from models import ScanSuccessResponse
from models import ValidationErrorResponse


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ScanService:
    def __init__(self, settings: ServiceSettings) -> None:
        self.settings = settings
        self._active: set[str] = set()
        self._lock = asyncio.Lock()

    async def _claim_scan_id(self) -> str:
        async with self._lock:
            scan_id = str(uuid4())
            while scan_id in self._active:
                scan_id = str(uuid4())
            self._active.add(scan_id)
        return scan_id

    async def _release_scan_id(self, scan_id: str) -> None:
        async with self._lock:
            self._active.discard(scan_id)

    async def active_scan_count(self) -> int:
        async with self._lock:
            return len(self._active)

    async def run_scan(self, request: ScanRequest) -> ScanState:
        scan_id = await self._claim_scan_id()
        log_agent(scan_id, "ScanService", f"Starting scan for {request.name}")
        initial_state = build_initial_state(scan_id, request.model_dump(), self.settings)
        config = {
            "configurable": {
                "settings": self.settings,
                "credentials": ScanCredentials(api_key=request.api_key),
            }
        }

        try:
            return await execute_scan_workflow(initial_state, config=config)
        except Exception as exc:  # noqa: BLE001
            warn_agent(scan_id, "ScanService", f"Workflow aborted unexpectedly: {exc}")
            self._force_cleanup(initial_state)
            failed_state = record_failure(initial_state, "error", "Scan failed due to an internal error", "internal")
            return transition(failed_state, ScanStatus.FAILED, "error")
        finally:
            await self._release_scan_id(scan_id)

    def _force_cleanup(self, state: ScanState) -> None:
        # Only reached when the graph itself broke; sweeping twice is harmless.
        paths = state["paths"]
        result = sweep_output_artifacts(paths["config_path"], paths["output_path"])
        result = result.merge(sweep_directory(self.settings.runs_dir, output_fragment(paths["output_path"])))
        for failure in result.failures:
            warn_agent(state["scan_id"], "ScanService", f"Forced cleanup failed for {failure.path}: {failure.reason}")


scan_service = ScanService(load_settings())
scan_router = APIRouter(tags=["scan"])


def get_scan_service() -> ScanService:
    return scan_service


@scan_router.post(
    "/scan",
    response_model=ScanSuccessResponse,
    responses={400: {"model": ValidationErrorResponse}, 500: {"model": ScanFailureResponse}},
)
async def run_scan(payload: ScanRequest, service: ScanService = Depends(get_scan_service)):
    final_state = await service.run_scan(payload)
    scan_id = final_state["scan_id"]

    if final_state["status"] == ScanStatus.COMPLETED.value and final_state.get("report") is not None:
        log_agent(scan_id, "ScanAPI", "POST /api/scan responded with completed status")
        return ScanSuccessResponse(
            scan_id=scan_id,
            name=payload.name,
            timestamp=utc_timestamp(),
            report=ScanReport.model_validate(final_state["report"]),
        )

    error = final_state["errors"][0] if final_state["errors"] else "Scan failed"
    log_agent(scan_id, "ScanAPI", f"POST /api/scan responded with failed status ({final_state['status']})")
    failure = ScanFailureResponse(
        scan_id=scan_id,
        name=payload.name,
        timestamp=utc_timestamp(),
        error=error,
    )
    return JSONResponse(status_code=500, content=failure.model_dump())
