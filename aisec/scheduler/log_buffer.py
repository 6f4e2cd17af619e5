from collections import deque
from typing import Deque, List, Optional, Tuple

from aisec.types import ToolKind


class LogBuffer:
    """
    Process-wide, bounded scan log.

    Every line is tagged with its tool so several tools can
    interleave without clobbering each other. Oldest lines are
    dropped once max_lines is reached.
    """

    def __init__(self, max_lines: int = 5000):
        if max_lines <= 0:
            raise ValueError("max_lines must be > 0")
        self._entries: Deque[Tuple[Optional[ToolKind], str]] = deque(maxlen=max_lines)

    def append(self, tool: Optional[ToolKind], line: str) -> None:
        self._entries.append((tool, line))

    def extend(self, tool: Optional[ToolKind], lines: List[str]) -> None:
        for line in lines:
            self.append(tool, line)

    def lines(self) -> List[str]:
        """All lines, prefixed with their tool."""
        return [self._format(tool, line) for tool, line in self._entries]

    def for_tool(self, tool: ToolKind) -> List[str]:
        return [line for t, line in self._entries if t == tool]

    def clear(self, tool: Optional[ToolKind] = None) -> None:
        if tool is None:
            self._entries.clear()
            return
        kept = [(t, line) for t, line in self._entries if t != tool]
        self._entries.clear()
        self._entries.extend(kept)

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def _format(tool: Optional[ToolKind], line: str) -> str:
        return f"[{tool.value}] {line}" if tool else line
