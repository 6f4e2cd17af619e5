import asyncio
from typing import Callable, List, Optional

from aisec.ai.exceptions import AIEnrichmentError
from aisec.ai.provider import CompletionProvider, Turn
from aisec.types import Finding
from aisec.utils import get_logger

log = get_logger("ai.chat")

DEFAULT_CHAT_PROMPT = (
    "You are a helpful application security assistant. "
    "Answer with concise, actionable guidance and secure code where relevant."
)

FIX_PROMPT = """When replying, please use markdown formatting for headers, please start with heading-2

Please analyze and fix the following vulnerability:

Rule: {rule_id}
Severity: {severity}
Message: {message}
File: {location}
Snippet:
{snippet}

Generate a secure code fix and explain the changes."""

DeltaCallback = Callable[[str], None]


def fix_prompt(finding: Finding) -> str:
    location = finding.location
    return FIX_PROMPT.format(
        rule_id=finding.rule_id,
        severity=finding.severity.value,
        message=finding.message,
        location=finding.location_label() or "unknown",
        snippet=(location.snippet if location and location.snippet else ""),
    )


class ChatSession:
    """
    Conversation with the completion provider.

    Replies stream into the last assistant turn. Only one reply streams
    at a time; stop() cancels it and keeps whatever already arrived.
    """

    def __init__(self, provider: CompletionProvider, system_prompt: str = DEFAULT_CHAT_PROMPT):
        self.provider = provider
        self.system_prompt = system_prompt
        self.turns: List[Turn] = [{"role": "system", "content": system_prompt}]
        self._stream_task: Optional[asyncio.Task] = None

    @property
    def messages(self) -> List[Turn]:
        """Visible turns (system prompt excluded)."""
        return [t for t in self.turns if t["role"] != "system"]

    @property
    def is_streaming(self) -> bool:
        return self._stream_task is not None and not self._stream_task.done()

    async def send(self, text: str, on_delta: Optional[DeltaCallback] = None) -> str:
        """
        Add a user turn and stream the reply. Returns the assistant text,
        partial if the stream was stopped.
        """
        text = (text or "").strip()
        if not text:
            return ""

        if self.is_streaming:
            self.stop()

        self.turns.append({"role": "user", "content": text})
        history = list(self.turns)
        self.turns.append({"role": "assistant", "content": ""})
        reply = self.turns[-1]

        self._stream_task = asyncio.create_task(self._stream(history, reply, on_delta))
        try:
            await self._stream_task
        except asyncio.CancelledError:
            # stop() cancels the stream only; a cancelled caller propagates
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            log.info("Chat stream stopped")
        return reply["content"]

    async def _stream(self, history: List[Turn], reply: Turn, on_delta: Optional[DeltaCallback]) -> None:
        try:
            async for delta in self.provider.stream(history):
                reply["content"] += delta
                if on_delta is not None:
                    on_delta(delta)
        except AIEnrichmentError as exc:
            log.warning(f"Chat stream failed: {exc}")
            reply["content"] += f"\n[Error] {exc}" if reply["content"] else f"[Error] {exc}"

    def stop(self) -> None:
        if self.is_streaming:
            self._stream_task.cancel()

    def clear(self) -> None:
        self.stop()
        self.turns = [{"role": "system", "content": self.system_prompt}]
