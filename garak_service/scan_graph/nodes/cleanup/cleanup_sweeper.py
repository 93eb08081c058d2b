from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

from langchain_core.runnables import RunnableConfig

from garak_service.scan_graph.logger import log_agent
from garak_service.scan_graph.logger import warn_agent
from garak_service.scan_graph.settings import settings_from_config
from garak_service.scan_graph.state import ScanState
from garak_service.scan_graph.state import merge_state


@dataclass(frozen=True)
class CleanupFailure:
    path: str
    reason: str


@dataclass
class CleanupResult:
    """Outcome of a best-effort sweep. Failures are data, never raised."""

    removed: list[str] = field(default_factory=list)
    failures: list[CleanupFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def merge(self, other: CleanupResult) -> CleanupResult:
        return CleanupResult(
            removed=[*self.removed, *other.removed],
            failures=[*self.failures, *other.failures],
        )


def remove_file(path: Path) -> CleanupResult:
    try:
        path.unlink()
    except FileNotFoundError:
        return CleanupResult()
    except OSError as exc:
        return CleanupResult(failures=[CleanupFailure(path=str(path), reason=str(exc))])
    return CleanupResult(removed=[str(path)])


def sweep_directory(directory: Path, fragment: str) -> CleanupResult:
    try:
        entries = list(directory.iterdir())
    except FileNotFoundError:
        return CleanupResult()
    except OSError as exc:
        return CleanupResult(failures=[CleanupFailure(path=str(directory), reason=str(exc))])

    result = CleanupResult()
    for entry in entries:
        if fragment not in entry.name or entry.is_dir():
            continue
        result = result.merge(remove_file(entry))
    return result


def output_fragment(output_path: str) -> str:
    return Path(output_path).stem


def sweep_output_artifacts(config_path: str, output_path: str) -> CleanupResult:
    result = remove_file(Path(config_path))
    return result.merge(sweep_directory(Path(output_path).parent, output_fragment(output_path)))


def _apply_result(state: ScanState, component: str, result: CleanupResult, completed: bool) -> ScanState:
    for failure in result.failures:
        warn_agent(state["scan_id"], component, f"Cleanup failed for {failure.path}: {failure.reason}")
    if result.removed:
        log_agent(state["scan_id"], component, f"Removed {len(result.removed)} transient file(s)")

    cleanup_status = dict(state["cleanup_status"])
    cleanup_status["removed"] = [*cleanup_status.get("removed", []), *result.removed]
    cleanup_status["failures"] = [
        *cleanup_status.get("failures", []),
        *({"path": failure.path, "reason": failure.reason} for failure in result.failures),
    ]
    if completed:
        cleanup_status["completed"] = True
    return merge_state(state, {"cleanup_status": cleanup_status})


async def artifact_sweeper_node(state: ScanState) -> ScanState:
    paths = state["paths"]
    result = sweep_output_artifacts(paths["config_path"], paths["output_path"])
    return _apply_result(state, "ArtifactSweeper", result, completed=False)


async def run_dir_sweeper_node(state: ScanState, config: RunnableConfig) -> ScanState:
    try:
        runs_dir = settings_from_config(config).runs_dir
    except RuntimeError as exc:
        failure = CleanupFailure(path="<runs_dir>", reason=str(exc))
        return _apply_result(state, "RunDirSweeper", CleanupResult(failures=[failure]), completed=True)

    fragment = output_fragment(state["paths"]["output_path"])
    result = sweep_directory(runs_dir, fragment)
    return _apply_result(state, "RunDirSweeper", result, completed=True)
