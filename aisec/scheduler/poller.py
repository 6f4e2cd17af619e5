"""
Cursor-based log polling for one (task, tool) pair.

Timeline of one poller:

    poll -> apply chunk -> [marker seen first time -> fetch -> normalize -> store]
         -> end? complete : sleep(interval) -> poll ...

The first poll happens immediately. Chunks are applied in request
order. Enrichment is handed off through on_findings and never awaited here.
"""

import asyncio
from typing import Callable, List, Optional

from aisec.exceptions import PollFailure, ResultFetchFailure, StreamEndFailure
from aisec.http.models import LogChunk
from aisec.scheduler.log_buffer import LogBuffer
from aisec.scheduler.state import ScanSession
from aisec.scheduler.types import ScanPhase
from aisec.store import FindingsStore
from aisec.tools.registry import ScanAdapter
from aisec.types import Finding, NormalizeContext
from aisec.utils import get_logger

log = get_logger("scheduler.poller")

FindingsCallback = Callable[[ScanSession, List[Finding]], None]


class LogPoller:

    def __init__(
        self,
        *,
        adapter: ScanAdapter,
        transport,
        session: ScanSession,
        store: FindingsStore,
        log_buffer: LogBuffer,
        interval: float = 1.2,
        max_poll_failures: Optional[int] = None,
        on_findings: Optional[FindingsCallback] = None,
    ):
        if session.task_id is None:
            raise ValueError("Session has no task id; start the scan first")

        self.adapter = adapter
        self.transport = transport
        self.session = session
        self.store = store
        self.log_buffer = log_buffer
        self.interval = interval
        self.max_poll_failures = max_poll_failures
        self.on_findings = on_findings

        self.task_id: str = session.task_id
        self.cursor: Optional[str] = None
        self.result_fetched = False
        self.fetch_count = 0
        self.finished = False

        self._consecutive_failures = 0
        self._stopped = False

    @property
    def tool(self):
        return self.adapter.kind

    def stop(self) -> None:
        """Ask the loop to exit after the current step."""
        self._stopped = True

    # ---------------------------------------------------------
    # Main loop
    # ---------------------------------------------------------

    async def run(self) -> None:
        log.info(f"Polling {self.tool.value} logs for task {self.task_id}")

        while not self._stopped and not self.finished:
            try:
                chunk = await self.transport.poll_logs(self.adapter, self.task_id, self.cursor)
            except PollFailure as exc:
                self._on_poll_failure(exc)
            else:
                self._consecutive_failures = 0
                await self.apply_chunk(chunk)

            if self._stopped or self.finished:
                break
            await asyncio.sleep(self.interval)

        log.debug(f"Poller for {self.tool.value}/{self.task_id} exited (finished={self.finished})")

    async def apply_chunk(self, chunk: LogChunk) -> None:
        """
        Apply one log chunk: cursor, log lines, completion marker, end.
        """
        if self.finished:
            return

        # Keep the old position when the server omits a cursor
        self.cursor = chunk.cursor or self.cursor

        if chunk.lines:
            self.log_buffer.extend(self.tool, chunk.lines)

        for line in chunk.lines:
            filename = self.adapter.match_completion(line)
            if filename and not self.result_fetched:
                self.result_fetched = True
                await self.collect_result(filename)

        if chunk.error:
            self._finish_with_error(StreamEndFailure(chunk.error))
            return

        if chunk.end:
            self._finish()

    # ---------------------------------------------------------
    # Result collection
    # ---------------------------------------------------------

    async def collect_result(self, filename: str) -> List[Finding]:
        """
        Fetch, normalize and store one result file. Failures are
        reported on the session and never end the loop.
        """
        self.fetch_count += 1
        self.log_buffer.append(self.tool, f"Result file detected: {filename}. Collecting results...")

        try:
            payload = await self.transport.fetch_result(self.adapter, filename)
        except ResultFetchFailure as exc:
            message = f"Result fetch failed: {exc}"
            log.error(f"[{self.tool.value}] {message}")
            self.session.record_error(message)
            self.log_buffer.append(self.tool, message)
            return []

        context = NormalizeContext(
            repo=self.session.repo,
            created_at=self.session.started_at,
            source_file=filename,
        )
        try:
            findings = self.adapter.normalize(payload, context)
            self.store.add(findings)
        except Exception as exc:
            message = f"Result normalization failed for {filename}: {exc}"
            log.exception(f"[{self.tool.value}] {message}")
            self.session.record_error(message)
            self.log_buffer.append(self.tool, message)
            return []

        self.log_buffer.append(self.tool, f"Collected {len(findings)} findings.")
        log.info(f"[{self.tool.value}] Stored {len(findings)} findings from {filename}")

        if findings and self.on_findings is not None:
            self.on_findings(self.session, findings)

        return findings

    # ---------------------------------------------------------
    # Termination
    # ---------------------------------------------------------

    def _on_poll_failure(self, exc: PollFailure) -> None:
        self._consecutive_failures += 1
        message = f"Log poll failed: {exc}"
        log.warning(f"[{self.tool.value}] {message}")
        self.log_buffer.append(self.tool, message)

        if self.max_poll_failures and self._consecutive_failures >= self.max_poll_failures:
            self._finish_with_error(StreamEndFailure(
                f"{self._consecutive_failures} consecutive log poll failures"
            ))

    def _finish(self) -> None:
        if self.finished:
            return
        self.finished = True
        if self.session.phase == ScanPhase.SCANNING:
            self.session.complete()
        self.log_buffer.append(self.tool, "Done.")
        log.info(f"[{self.tool.value}] Log stream ended for task {self.task_id}")

    def _finish_with_error(self, exc: StreamEndFailure) -> None:
        if self.finished:
            return
        self.finished = True
        message = f"Log stream error: {exc}"
        if self.session.phase == ScanPhase.SCANNING:
            self.session.fail(message)
        self.log_buffer.append(self.tool, message)
        log.error(f"[{self.tool.value}] {message}")
