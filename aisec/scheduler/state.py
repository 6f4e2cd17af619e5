import asyncio
from datetime import datetime, timezone
from typing import Callable, List, Optional

from aisec.exceptions import InvalidTransitionError
from aisec.scheduler.types import ACTIVE_PHASES, TRANSITIONS, ScanPhase
from aisec.types import ToolKind
from aisec.utils import get_logger

log = get_logger("scheduler.state")

PhaseObserver = Callable[["ScanSession", ScanPhase, ScanPhase], None]


class NonPersistent:
    """
    Marker mixin.
    Any subclass must NEVER be persisted or serialized.
    """
    __persistent__ = False


class ScanSession(NonPersistent):
    """
    Runtime state of one tool's scan.

    Mutated only by the orchestrator (on behalf of the caller)
    and by the log poller. Observers are told about every phase change.
    """

    __slots__ = (
        "tool",
        "task_id",
        "repo",
        "phase",
        "started_at",
        "errors",
        "enrichment_tasks",
        "_observers",
    )

    def __init__(self, tool: ToolKind):
        self.tool: ToolKind = tool
        self.task_id: Optional[str] = None
        self.repo: Optional[str] = None
        self.phase: ScanPhase = ScanPhase.IDLE
        self.started_at: Optional[str] = None
        self.errors: List[str] = []
        self.enrichment_tasks: List[asyncio.Task] = []
        self._observers: List[PhaseObserver] = []

    def __repr__(self) -> str:
        return f"ScanSession(tool={self.tool.value}, phase={self.phase.value}, task_id={self.task_id})"

    # ---- observers ----
    def subscribe(self, observer: PhaseObserver) -> Callable[[], None]:
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    # ---- read helpers ----
    @property
    def is_active(self) -> bool:
        return self.phase in ACTIVE_PHASES

    @property
    def last_error(self) -> Optional[str]:
        return self.errors[-1] if self.errors else None

    # ---- transitions ----
    def _move(self, target: ScanPhase) -> None:
        previous = self.phase
        if target != ScanPhase.IDLE and target not in TRANSITIONS[previous]:
            raise InvalidTransitionError(
                f"{self.tool.value}: cannot move from {previous.value} to {target.value}"
            )
        self.phase = target
        log.debug(f"{self.tool.value} session {previous.value} -> {target.value}")
        for observer in list(self._observers):
            observer(self, previous, target)

    def begin_start(self, repo: Optional[str] = None) -> None:
        """A start request is being issued."""
        self.task_id = None
        self.started_at = None
        self.errors = []
        self.enrichment_tasks = []
        self.repo = repo
        self._move(ScanPhase.STARTING)

    def mark_started(self, task_id: str, repo: Optional[str] = None, started_at: Optional[str] = None) -> None:
        """The remote returned a task handle."""
        self.task_id = task_id
        self.repo = repo or self.repo
        self.started_at = started_at or datetime.now(timezone.utc).isoformat()
        self._move(ScanPhase.SCANNING)

    def complete(self) -> None:
        """The log stream ended naturally."""
        self._move(ScanPhase.COMPLETED)

    def fail(self, error: str) -> None:
        """Unrecoverable failure; terminal until the next start."""
        self.record_error(error)
        self._move(ScanPhase.ERROR)

    def record_error(self, error: str) -> None:
        """Error channel for failures that do not end the session."""
        self.errors.append(error)

    def reset(self) -> None:
        self.task_id = None
        self.repo = None
        self.started_at = None
        self.errors = []
        self.enrichment_tasks = []
        self._move(ScanPhase.IDLE)

    def snapshot(self) -> dict:
        return {
            "tool": self.tool.value,
            "taskId": self.task_id,
            "repo": self.repo,
            "phase": self.phase.value,
            "startedAt": self.started_at,
            "errors": list(self.errors),
        }
