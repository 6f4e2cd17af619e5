"""
Scan orchestration.

One ScanOrchestrator owns the shared state of a process: the findings
store, the tagged log buffer and one session per tool. Starting a tool:

    begin_start -> POST start -> mark_started -> LogPoller task
                                 (start failure -> error, no polling)

Findings collected by a poller are handed to the enrichment engine as a
background task. Orchestrator operations never raise transport errors;
failures end up on the session and in the log.
"""

import asyncio
from typing import Dict, Iterable, List, Optional

from aisec.ai.enricher import EnrichmentEngine
from aisec.exceptions import StartFailure
from aisec.http.transport import ScanTransport
from aisec.scheduler.log_buffer import LogBuffer
from aisec.scheduler.poller import LogPoller
from aisec.scheduler.registry import SessionRegistry
from aisec.scheduler.state import ScanSession
from aisec.scheduler.types import ScanPhase
from aisec.store import FindingsStore
from aisec.tools.registry import AdapterRegistry, build_registry
from aisec.types import Finding, ToolKind
from aisec.utils import get_logger

log = get_logger("orchestrator")


def canonical_subject(subject: str, github_base_url: str = "https://github.com") -> str:
    """
    owner/repo -> {github_base_url}/owner/repo; trailing '/' and '.git' dropped.
    """
    value = (subject or "").strip()
    while value.endswith("/"):
        value = value[:-1]
    if value.endswith(".git"):
        value = value[:-4]

    if "://" not in value and value.count("/") == 1 and all(value.split("/")):
        value = f"{github_base_url.rstrip('/')}/{value}"
    return value


class ScanOrchestrator:

    def __init__(
        self,
        *,
        registry: AdapterRegistry,
        transport: ScanTransport,
        store: Optional[FindingsStore] = None,
        log_buffer: Optional[LogBuffer] = None,
        sessions: Optional[SessionRegistry] = None,
        enricher: Optional[EnrichmentEngine] = None,
        poll_interval: float = 1.2,
        max_poll_failures: Optional[int] = None,
        github_base_url: str = "https://github.com",
    ):
        self.registry = registry
        self.transport = transport
        self.store = store if store is not None else FindingsStore()
        self.log_buffer = log_buffer if log_buffer is not None else LogBuffer()
        self.sessions = sessions if sessions is not None else SessionRegistry()
        self.enricher = enricher
        self.poll_interval = poll_interval
        self.max_poll_failures = max_poll_failures
        self.github_base_url = github_base_url

        self._pollers: Dict[ToolKind, LogPoller] = {}
        self._tasks: Dict[ToolKind, asyncio.Task] = {}
        # One token per in-flight start; stop() or a newer start invalidates it
        self._start_tokens: Dict[ToolKind, object] = {}

    @classmethod
    def from_settings(cls, settings, *, enable_ai: Optional[bool] = None) -> "ScanOrchestrator":
        store = FindingsStore()

        enricher = None
        ai_enabled = settings.AI_ENABLED if enable_ai is None else enable_ai
        if ai_enabled:
            from aisec.ai.provider import BedrockProvider

            enricher = EnrichmentEngine.from_settings(settings, BedrockProvider.from_settings(settings), store)

        return cls(
            registry=build_registry(settings),
            transport=ScanTransport.from_settings(settings),
            store=store,
            log_buffer=LogBuffer(settings.LOG_BUFFER_MAX_LINES),
            enricher=enricher,
            poll_interval=settings.POLL_INTERVAL_SEC,
            max_poll_failures=settings.MAX_POLL_FAILURES,
            github_base_url=settings.GITHUB_BASE_URL,
        )

    def session(self, kind: ToolKind) -> ScanSession:
        return self.sessions.get(kind)

    # ---------------------------------------------------------
    # Start
    # ---------------------------------------------------------

    async def start_scan(self, kind: ToolKind, subject: str) -> ScanSession:
        kind = ToolKind(kind)
        adapter = self.registry.get_adapter(kind)
        session = self.sessions.get(kind)

        if session.is_active:
            log.warning(f"{kind.value} scan already running (task {session.task_id}); ignoring start")
            return session

        repo = canonical_subject(subject, self.github_base_url)
        session.begin_start(repo)
        token = self._start_tokens[kind] = object()
        self.log_buffer.append(kind, f"Starting {adapter.display_name} scan for {repo}...")

        try:
            started = await self.transport.start_scan(adapter, repo, raw=subject)
        except StartFailure as exc:
            if not self._claim_start(kind, token, session):
                return session
            message = f"Start failed: {exc}"
            log.error(f"[{kind.value}] {message}")
            self.log_buffer.append(kind, message)
            session.fail(message)
            return session

        if not self._claim_start(kind, token, session):
            log.info(f"[{kind.value}] Task {started.task_id} started after the scan was stopped; not polling it")
            return session

        session.mark_started(started.task_id, started.repo or repo, started.started_at)
        self.log_buffer.append(kind, f"Task {started.task_id} started.")
        log.info(f"[{kind.value}] Task {started.task_id} started for {session.repo}")

        poller = LogPoller(
            adapter=adapter,
            transport=self.transport,
            session=session,
            store=self.store,
            log_buffer=self.log_buffer,
            interval=self.poll_interval,
            max_poll_failures=self.max_poll_failures,
            on_findings=self._on_findings,
        )
        task = asyncio.create_task(poller.run(), name=f"aisec-poller-{kind.value}")
        task.add_done_callback(lambda t, s=session: self._on_poller_done(s, t))

        self._pollers[kind] = poller
        self._tasks[kind] = task
        return session

    async def start_all(self, subject: str, kinds: Optional[Iterable[ToolKind]] = None) -> List[ScanSession]:
        kinds = list(kinds) if kinds is not None else list(self.registry)
        return list(await asyncio.gather(*(self.start_scan(kind, subject) for kind in kinds)))

    # ---------------------------------------------------------
    # Stop / clear / wait
    # ---------------------------------------------------------

    def stop(self, kind: ToolKind) -> None:
        """Cancel one tool's poller and return its session to idle."""
        kind = ToolKind(kind)
        self._start_tokens.pop(kind, None)
        poller = self._pollers.pop(kind, None)
        if poller is not None:
            poller.stop()
        task = self._tasks.pop(kind, None)
        if task is not None and not task.done():
            task.cancel()

        session = self.sessions.get(kind)
        for enrichment in session.enrichment_tasks:
            if not enrichment.done():
                enrichment.cancel()
        session.reset()

    def clear(self, kind: ToolKind) -> None:
        """stop() plus dropping that tool's findings and log lines."""
        kind = ToolKind(kind)
        self.stop(kind)
        self.store.clear(kind)
        self.log_buffer.clear(kind)

    async def wait(self, kind: ToolKind, *, include_enrichment: bool = True) -> ScanSession:
        """Wait for one tool's poller (and its enrichment) to finish."""
        kind = ToolKind(kind)
        task = self._tasks.get(kind)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

        session = self.sessions.get(kind)
        if include_enrichment and session.enrichment_tasks:
            await asyncio.gather(*session.enrichment_tasks, return_exceptions=True)
        return session

    async def wait_all(self, *, include_enrichment: bool = True) -> List[ScanSession]:
        return [
            await self.wait(kind, include_enrichment=include_enrichment)
            for kind in list(self._tasks)
        ]

    async def aclose(self) -> None:
        for kind in list(self._tasks):
            task = self._tasks[kind]
            if not task.done():
                task.cancel()
        for session in self.sessions:
            for enrichment in session.enrichment_tasks:
                if not enrichment.done():
                    enrichment.cancel()
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        await self.transport.aclose()

    # ---------------------------------------------------------
    # Callbacks
    # ---------------------------------------------------------

    def _claim_start(self, kind: ToolKind, token: object, session: ScanSession) -> bool:
        """
        True when this start request still owns the session. A start that was
        stopped or superseded while in flight must leave the session alone.
        """
        if self._start_tokens.get(kind) is not token or session.phase != ScanPhase.STARTING:
            return False
        del self._start_tokens[kind]
        return True

    def _on_findings(self, session: ScanSession, findings: List[Finding]) -> None:
        if self.enricher is None:
            return
        session.enrichment_tasks.append(self.enricher.schedule(findings))

    def _on_poller_done(self, session: ScanSession, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        message = f"Poller crashed: {exc}"
        log.error(f"[{session.tool.value}] {message}", exc_info=exc)
        self.log_buffer.append(session.tool, message)
        if session.is_active:
            session.fail(message)
