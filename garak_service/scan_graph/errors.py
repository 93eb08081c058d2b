from __future__ import annotations


class ScanError(RuntimeError):
    """Base class for failures that abort a scan and surface to the caller."""

    kind = "scan_error"


class ConfigWriteError(ScanError):
    kind = "config_write"


class ProcessLaunchError(ScanError):
    kind = "process_launch"


class ProcessExecutionError(ScanError):
    kind = "process_execution"

    def __init__(self, message: str, log_path: str, exit_code: int | None) -> None:
        super().__init__(message)
        self.log_path = log_path
        self.exit_code = exit_code


class ScanTimeoutError(ScanError, TimeoutError):
    kind = "timeout"


class ReportMissingError(ScanError):
    kind = "report_missing"


class ReportParseError(ScanError):
    kind = "report_parse"
