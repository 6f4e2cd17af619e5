import asyncio

import pytest

from aisec.ai.chat import ChatSession, fix_prompt
from aisec.ai.exceptions import AIProviderError
from aisec.ai.provider import CompletionProvider
from aisec.types import Location
from tests.fakes import make_finding


class ScriptedProvider(CompletionProvider):
    def __init__(self, deltas, *, fail_after=None, hang=False):
        self.deltas = deltas
        self.fail_after = fail_after
        self.hang = hang
        self.seen_turns = []

    async def stream(self, turns, **options):
        self.seen_turns.append(list(turns))
        for i, delta in enumerate(self.deltas):
            if self.fail_after is not None and i == self.fail_after:
                raise AIProviderError("throttled")
            yield delta
            await asyncio.sleep(0)
        if self.hang:
            await asyncio.sleep(10)


@pytest.mark.asyncio
async def test_send_streams_into_assistant_turn():
    provider = ScriptedProvider(["Use ", "parameterized ", "queries."])
    chat = ChatSession(provider, "be helpful")
    deltas = []

    reply = await chat.send("How do I fix SQL injection?", on_delta=deltas.append)

    assert reply == "Use parameterized queries."
    assert deltas == ["Use ", "parameterized ", "queries."]
    assert chat.messages == [
        {"role": "user", "content": "How do I fix SQL injection?"},
        {"role": "assistant", "content": "Use parameterized queries."},
    ]
    assert provider.seen_turns[0][0] == {"role": "system", "content": "be helpful"}
    assert provider.seen_turns[0][-1]["role"] == "user"


@pytest.mark.asyncio
async def test_blank_message_is_ignored():
    chat = ChatSession(ScriptedProvider(["x"]))
    assert await chat.send("   ") == ""
    assert chat.messages == []


@pytest.mark.asyncio
async def test_provider_error_becomes_error_turn():
    chat = ChatSession(ScriptedProvider(["partial"], fail_after=0))

    reply = await chat.send("hi")

    assert reply == "[Error] throttled"
    assert chat.messages[-1]["content"] == "[Error] throttled"


@pytest.mark.asyncio
async def test_stop_cancels_only_the_stream():
    chat = ChatSession(ScriptedProvider(["Hello", " there"], hang=True))
    other = asyncio.create_task(asyncio.sleep(0.05, result="still running"))

    send = asyncio.create_task(chat.send("hi"))
    for _ in range(10):
        await asyncio.sleep(0)
    chat.stop()

    reply = await send
    assert reply == "Hello there"
    assert not chat.is_streaming
    assert await other == "still running"


@pytest.mark.asyncio
async def test_clear_keeps_system_prompt():
    chat = ChatSession(ScriptedProvider(["ok"]), "system rules")
    await chat.send("hi")

    chat.clear()

    assert chat.messages == []
    assert chat.turns == [{"role": "system", "content": "system rules"}]


def test_fix_prompt_mentions_finding_details():
    finding = make_finding(
        "a",
        location=Location(file="app/db.py", line=42, snippet="cursor.execute(q % user)"),
    )

    prompt = fix_prompt(finding)

    assert prompt.startswith("When replying, please use markdown formatting")
    assert "Rule: python.lang.security.eval" in prompt
    assert "Severity: high" in prompt
    assert "File: app/db.py:42" in prompt
    assert "cursor.execute(q % user)" in prompt
