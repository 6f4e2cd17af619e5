from typing import Dict, Iterable, Iterator

from aisec.scheduler.state import ScanSession
from aisec.types import ToolKind


class SessionRegistry:
    """
    One ScanSession per tool.

    Sessions are independent state machines; there is no combined
    phase. A dashboard that shows several tools reads each one.
    """

    __slots__ = ("_sessions",)

    def __init__(self, tools: Iterable[ToolKind] = tuple(ToolKind)):
        self._sessions: Dict[ToolKind, ScanSession] = {
            ToolKind(tool): ScanSession(ToolKind(tool)) for tool in tools
        }

    def get(self, tool: ToolKind) -> ScanSession:
        tool = ToolKind(tool)
        if tool not in self._sessions:
            self._sessions[tool] = ScanSession(tool)
        return self._sessions[tool]

    def __iter__(self) -> Iterator[ScanSession]:
        return iter(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def active(self) -> list[ScanSession]:
        return [s for s in self._sessions.values() if s.is_active]

    def snapshot(self) -> Dict[str, dict]:
        return {tool.value: s.snapshot() for tool, s in self._sessions.items()}
