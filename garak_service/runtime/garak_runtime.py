from __future__ import annotations

import asyncio
import codecs
from dataclasses import dataclass
import os
from pathlib import Path
import signal
from typing import Sequence

from garak_service.scan_graph.errors import ProcessExecutionError
from garak_service.scan_graph.errors import ProcessLaunchError
from garak_service.scan_graph.errors import ScanTimeoutError
from garak_service.scan_graph.logger import log_agent
from garak_service.scan_graph.logger import redact
from garak_service.scan_graph.logger import warn_agent
from garak_service.scan_graph.settings import ServiceSettings

READ_CHUNK_BYTES = 64 * 1024
LOG_LINE_MAX_CHARS = 4000
TERMINATE_GRACE_SECONDS = 5.0


@dataclass(frozen=True)
class GarakExecutionResult:
    exit_code: int
    stdout: str
    stderr: str
    log_path: str


def format_duration(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"
    return f"{seconds:g} seconds"


class GarakRuntime:
    """Runs the garak CLI as a child process for one scan.

    Only proves that the tool ran to completion: stdout and stderr are
    streamed into the scan log and the log artifact, nothing is parsed.
    """

    # Pumps and reapers of children left running past their deadline.
    _detached: set[asyncio.Task[None]] = set()

    def __init__(self, scan_id: str, settings: ServiceSettings) -> None:
        self.scan_id = scan_id
        self.settings = settings

    def build_command(
        self,
        options_path: str,
        report_prefix: str,
        probes: Sequence[str] | None = None,
        detectors: Sequence[str] | None = None,
    ) -> list[str]:
        command = [
            *self.settings.garak_command,
            "--model_type",
            "rest",
            "--generator_option_file",
            str(options_path),
            "--report_prefix",
            str(report_prefix),
            "--verbose",
        ]

        if probes:
            command.extend(["--probes", ",".join(probes)])
        else:
            command.extend(["--probes", self.settings.default_probe])

        if detectors:
            command.extend(["--detectors", ",".join(detectors)])

        return command

    async def run(
        self,
        options_path: str,
        report_prefix: str,
        log_path: str,
        probes: Sequence[str] | None = None,
        detectors: Sequence[str] | None = None,
    ) -> GarakExecutionResult:
        command = self.build_command(options_path, report_prefix, probes=probes, detectors=detectors)
        log_agent(self.scan_id, "GarakRuntime", f"Executing Garak with args: {' '.join(command)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=dict(os.environ),
                start_new_session=True,
            )
        except OSError as exc:
            log_agent(self.scan_id, "GarakRuntime", f"Failed to start Garak process: {exc}")
            raise ProcessLaunchError(f"Failed to start Garak: {exc}") from exc

        stdout_chunks: list[str] = []
        stderr_chunks: list[str] = []
        pumps = [
            asyncio.create_task(self._pump(process.stdout, stdout_chunks, "stdout")),
            asyncio.create_task(self._pump(process.stderr, stderr_chunks, "stderr")),
        ]

        timeout = self.settings.scan_timeout_seconds
        try:
            exit_code = await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._handle_timeout(process, pumps, stdout_chunks, stderr_chunks, log_path)
            raise ScanTimeoutError(f"Scan timeout after {format_duration(timeout)}")
        except asyncio.CancelledError:
            await self._terminate(process)
            raise

        await asyncio.gather(*pumps)
        stdout = "".join(stdout_chunks)
        stderr = "".join(stderr_chunks)
        self._write_log(log_path, stdout, stderr, exit_code)

        if exit_code != 0:
            log_agent(self.scan_id, "GarakRuntime", f"Garak scan failed with exit code {exit_code}")
            raise ProcessExecutionError(
                f"Garak execution failed with exit code {exit_code}. Check logs at {log_path}",
                log_path=log_path,
                exit_code=exit_code,
            )

        log_agent(self.scan_id, "GarakRuntime", "Garak scan completed successfully")
        return GarakExecutionResult(exit_code=exit_code, stdout=stdout, stderr=stderr, log_path=log_path)

    async def _handle_timeout(
        self,
        process: asyncio.subprocess.Process,
        pumps: list[asyncio.Task[None]],
        stdout_chunks: list[str],
        stderr_chunks: list[str],
        log_path: str,
    ) -> None:
        timeout = self.settings.scan_timeout_seconds
        if self.settings.terminate_on_timeout:
            log_agent(self.scan_id, "GarakRuntime", f"Deadline of {format_duration(timeout)} reached; terminating Garak")
            exit_code = await self._terminate(process)
            await asyncio.gather(*pumps, return_exceptions=True)
            self._write_log(log_path, "".join(stdout_chunks), "".join(stderr_chunks), f"{exit_code} (terminated after timeout)")
            return

        warn_agent(
            self.scan_id,
            "GarakRuntime",
            f"Deadline of {format_duration(timeout)} reached; leaving Garak pid={process.pid} running",
        )
        self._write_log(log_path, "".join(stdout_chunks), "".join(stderr_chunks), "timeout (process still running)")
        reaper = asyncio.create_task(self._reap_detached(process, pumps, stdout_chunks, stderr_chunks, log_path))
        self._track(*pumps, reaper)

    async def _reap_detached(
        self,
        process: asyncio.subprocess.Process,
        pumps: list[asyncio.Task[None]],
        stdout_chunks: list[str],
        stderr_chunks: list[str],
        log_path: str,
    ) -> None:
        exit_code = await process.wait()
        await asyncio.gather(*pumps, return_exceptions=True)
        log_agent(self.scan_id, "GarakRuntime", f"Detached Garak pid={process.pid} exited with code {exit_code}")
        self._write_log(log_path, "".join(stdout_chunks), "".join(stderr_chunks), f"{exit_code} (exited after timeout)")

    def _track(self, *tasks: asyncio.Task[None]) -> None:
        # The event loop only holds weak references to tasks.
        for task in tasks:
            GarakRuntime._detached.add(task)
            task.add_done_callback(GarakRuntime._detached.discard)

    @classmethod
    def detached_count(cls) -> int:
        return len(cls._detached)

    @classmethod
    async def wait_detached(cls) -> None:
        """Wait until every child left running past its deadline has exited and been reaped."""
        loop = asyncio.get_running_loop()
        pending = [task for task in cls._detached if task.get_loop() is loop]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _terminate(self, process: asyncio.subprocess.Process) -> int:
        if process.returncode is not None:
            return process.returncode

        self._signal(process, signal.SIGTERM)
        try:
            return await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE_SECONDS)
        except asyncio.TimeoutError:
            self._signal(process, getattr(signal, "SIGKILL", signal.SIGTERM))
            return await process.wait()

    def _signal(self, process: asyncio.subprocess.Process, sig: int) -> None:
        try:
            if hasattr(os, "killpg"):
                os.killpg(process.pid, sig)
            else:
                process.kill()
        except ProcessLookupError:
            pass

    async def _pump(self, stream: asyncio.StreamReader | None, sink: list[str], label: str) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        partial = ""
        while True:
            chunk = await stream.read(READ_CHUNK_BYTES)
            text = decoder.decode(chunk, final=not chunk)
            if text:
                sink.append(text)
                *lines, partial = (partial + text).split("\n")
                for line in lines:
                    self._relay(label, line)
            if not chunk:
                break
        self._relay(label, partial)

    def _relay(self, label: str, line: str) -> None:
        stripped = line.rstrip()
        if not stripped:
            return
        if len(stripped) > LOG_LINE_MAX_CHARS:
            stripped = f"{stripped[:LOG_LINE_MAX_CHARS]}... [{len(stripped) - LOG_LINE_MAX_CHARS} more chars]"
        log_agent(self.scan_id, "GarakRuntime", f"Garak {label}: {redact(stripped)}")

    def _write_log(self, log_path: str, stdout: str, stderr: str, exit_code: int | str) -> None:
        content = f"STDOUT:\n{stdout}\n\nSTDERR:\n{stderr}\n\nExit Code: {exit_code}"
        try:
            path = Path(log_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as exc:
            warn_agent(self.scan_id, "GarakRuntime", f"Failed to write log file {log_path}: {exc}")
