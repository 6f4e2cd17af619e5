import asyncio
import json
from typing import AsyncIterator, Dict, List, Literal, Optional, TypedDict

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, ReadTimeoutError

from aisec.ai.exceptions import (
    AIInputValidationError,
    AIProviderError,
    AITimeoutError,
    AITokenLimitError,
)
from aisec.utils import get_logger

log = get_logger("ai.provider")

Role = Literal["system", "user", "assistant"]


class Turn(TypedDict):
    role: Role
    content: str


class CompletionOptions(TypedDict, total=False):
    max_tokens: int
    temperature: float
    top_p: float


class CompletionProvider:
    """
    Abstract completion service.

    complete() returns one text blob; stream() yields text deltas
    until the reply ends or the consuming task is cancelled.
    """

    async def complete(self, turns: List[Turn], **options) -> str:
        raise NotImplementedError

    def stream(self, turns: List[Turn], **options) -> AsyncIterator[str]:
        raise NotImplementedError


def build_anthropic_body(
    turns: List[Turn],
    *,
    max_tokens: int = 800,
    temperature: float = 0.2,
    top_p: float = 0.9,
) -> Dict:
    """
    Anthropic messages body for Bedrock. System turns are folded into
    the top-level system prompt; everything else keeps its order.
    """
    if not turns:
        raise AIInputValidationError("Empty conversation")

    system_parts = []
    messages = []
    for turn in turns:
        content = turn.get("content") or ""
        if turn.get("role") == "system":
            if content.strip():
                system_parts.append(content)
            continue
        messages.append({
            "role": "assistant" if turn.get("role") == "assistant" else "user",
            "content": [{"type": "text", "text": content}],
        })

    if not messages:
        raise AIInputValidationError("Conversation has no user turn")

    body = {
        "anthropic_version": "bedrock-2023-05-31",
        "max_tokens": max_tokens,
        "temperature": temperature,
        "top_p": top_p,
        "messages": messages,
    }
    if system_parts:
        body["system"] = "\n".join(system_parts)
    return body


def extract_text(payload: Dict) -> str:
    """Full (non-streaming) reply text."""
    content = payload.get("content")
    if isinstance(content, list):
        text = "".join(c.get("text", "") for c in content if isinstance(c, dict))
        if text:
            return text
    return payload.get("outputText") or ""


def extract_delta(event: Dict) -> str:
    """Deltas usually arrive as delta.text; some models use content[0].text or outputText."""
    delta = event.get("delta")
    if isinstance(delta, dict) and delta.get("text"):
        return delta["text"]
    content = event.get("content")
    if isinstance(content, list) and content and isinstance(content[0], dict):
        return content[0].get("text") or ""
    return event.get("outputText") or ""


class BedrockProvider(CompletionProvider):
    """
    Concrete Bedrock (Anthropic messages) implementation.

    boto3 is blocking, so every call runs in a worker thread.
    Streams are read one event at a time, which lets a cancelled
    consumer stop between events.
    """

    def __init__(
        self,
        client,
        model_id: str,
        *,
        max_tokens: int = 800,
        temperature: float = 0.2,
        top_p: float = 0.9,
    ):
        self.client = client
        self.model_id = model_id
        self.defaults: CompletionOptions = {
            "max_tokens": max_tokens,
            "temperature": temperature,
            "top_p": top_p,
        }

    @classmethod
    def from_settings(cls, settings) -> "BedrockProvider":
        client = boto3.client(
            "bedrock-runtime",
            region_name=settings.AWS_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            config=Config(read_timeout=settings.AI_TIMEOUT_SEC, retries={"max_attempts": 2}),
        )
        return cls(
            client,
            settings.bedrock_model,
            max_tokens=settings.AI_MAX_TOKENS,
            temperature=settings.AI_TEMPERATURE,
            top_p=settings.AI_TOP_P,
        )

    def _body(self, turns: List[Turn], options: Dict) -> str:
        merged = {**self.defaults, **{k: v for k, v in options.items() if v is not None}}
        return json.dumps(build_anthropic_body(turns, **merged))

    def _invoke(self, body: str) -> bytes:
        # Runs in a worker thread: the response body is a blocking network stream
        response = self.client.invoke_model(
            modelId=self.model_id,
            contentType="application/json",
            accept="application/json",
            body=body,
        )
        return response["body"].read()

    async def complete(self, turns: List[Turn], **options) -> str:
        body = self._body(turns, options)

        try:
            raw = await asyncio.to_thread(self._invoke, body)
        except ReadTimeoutError as exc:
            raise AITimeoutError("Bedrock request timed out") from exc
        except (ClientError, BotoCoreError) as exc:
            raise AIProviderError(str(exc)) from exc

        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)
        try:
            payload = json.loads(text)
        except ValueError:
            return text
        if not isinstance(payload, dict):
            return text

        if payload.get("stop_reason") == "max_tokens":
            log.warning("Bedrock reply hit max_tokens; output is truncated")
        if payload.get("type") == "error":
            message = (payload.get("error") or {}).get("message", "unknown error")
            if "token" in message.lower():
                raise AITokenLimitError(message)
            raise AIProviderError(message)

        return extract_text(payload) or text

    async def stream(self, turns: List[Turn], **options) -> AsyncIterator[str]:
        body = self._body(turns, options)

        try:
            response = await asyncio.to_thread(
                self.client.invoke_model_with_response_stream,
                modelId=self.model_id,
                contentType="application/json",
                accept="application/json",
                body=body,
            )
        except ReadTimeoutError as exc:
            raise AITimeoutError("Bedrock stream timed out") from exc
        except (ClientError, BotoCoreError) as exc:
            raise AIProviderError(str(exc)) from exc

        events = iter(response["body"])
        while True:
            try:
                event = await asyncio.to_thread(next, events, None)
            except (ClientError, BotoCoreError) as exc:
                raise AIProviderError(str(exc)) from exc
            if event is None:
                break

            chunk = event.get("chunk") if isinstance(event, dict) else None
            data: Optional[bytes] = chunk.get("bytes") if chunk else None
            if not data:
                continue

            text = data.decode("utf-8", errors="replace")
            try:
                decoded = json.loads(text)
            except ValueError:
                # tolerate partial frames
                decoded = None
            delta = extract_delta(decoded) if isinstance(decoded, dict) else text
            if delta:
                yield delta
