import json

import httpx
import pydantic
import pytest

from aisec.exceptions import PollFailure, ResultFetchFailure, StartFailure
from aisec.http.models import LogChunk, StartScanResponse, unwrap_envelope
from aisec.http.transport import ScanTransport
from aisec.types import ToolKind
from tests.fakes import make_registry

SCANNER = make_registry().get_adapter(ToolKind.SCANNER)


def _transport(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ScanTransport(client), client


@pytest.mark.asyncio
async def test_start_sends_subject_and_unwraps_body_envelope():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["json"] = json.loads(request.content)
        seen["header"] = request.headers.get("X-Target-Repo")
        body = json.dumps({"taskId": "t1", "startedAt": "2024-01-01T00:00:00Z"})
        return httpx.Response(200, request=request, json={"statusCode": 200, "body": body})

    transport, client = _transport(handler)
    try:
        started = await transport.start_scan(SCANNER, "https://github.com/octocat/hello-world", raw="octocat/hello-world")
    finally:
        await client.aclose()

    assert started.task_id == "t1"
    assert started.started_at == "2024-01-01T00:00:00Z"
    assert seen["url"] == "https://scanner.test/start"
    assert seen["json"] == {"repoUrl": "https://github.com/octocat/hello-world", "raw": "octocat/hello-world"}
    assert seen["header"] == "https://github.com/octocat/hello-world"


@pytest.mark.asyncio
async def test_start_without_task_id_fails():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, request=request, json={"status": "queued"})

    transport, client = _transport(handler)
    try:
        with pytest.raises(StartFailure, match="No taskId returned."):
            await transport.start_scan(SCANNER, "repo")
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_start_http_error_uses_server_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, request=request, json={"message": "Repository not allowed"})

    transport, client = _transport(handler)
    try:
        with pytest.raises(StartFailure, match="Repository not allowed"):
            await transport.start_scan(SCANNER, "repo")
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_poll_passes_task_and_cursor():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(200, request=request, json={"lines": ["a", "b"], "end": False, "cursor": "c2"})

    transport, client = _transport(handler)
    try:
        chunk = await transport.poll_logs(SCANNER, "t1", "c1")
    finally:
        await client.aclose()

    assert seen == {"taskId": "t1", "cursor": "c1"}
    assert chunk == LogChunk(lines=["a", "b"], end=False, cursor="c2")


@pytest.mark.asyncio
async def test_poll_network_error_is_a_poll_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    transport, client = _transport(handler)
    try:
        with pytest.raises(PollFailure):
            await transport.poll_logs(SCANNER, "t1")
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_fetch_result_decodes_string_body():
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content) == {"filename": "scanner-results-x.json"}
        return httpx.Response(200, request=request, json={"body": json.dumps({"runs": []})})

    transport, client = _transport(handler)
    try:
        payload = await transport.fetch_result(SCANNER, "scanner-results-x.json")
    finally:
        await client.aclose()

    assert payload == {"runs": []}


@pytest.mark.asyncio
async def test_fetch_result_not_found():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, request=request, text="missing")

    transport, client = _transport(handler)
    try:
        with pytest.raises(ResultFetchFailure, match="HTTP 404"):
            await transport.fetch_result(SCANNER, "scanner-results-x.json")
    finally:
        await client.aclose()


def test_unwrap_envelope_one_level_only():
    inner = json.dumps({"body": json.dumps({"taskId": "deep"})})
    assert unwrap_envelope({"body": inner}) == {"body": json.dumps({"taskId": "deep"})}
    assert unwrap_envelope('{"taskId": "t1"}') == {"taskId": "t1"}
    assert unwrap_envelope({"taskId": "t1"}) == {"taskId": "t1"}


def test_log_chunk_coerces_loose_fields():
    chunk = LogChunk.model_validate({"lines": None, "cursor": ""})
    assert chunk.lines == []
    assert chunk.cursor is None


def test_numeric_task_id_is_accepted_as_text():
    assert StartScanResponse.model_validate({"taskId": 123}).task_id == "123"


@pytest.mark.asyncio
async def test_start_with_numeric_task_id():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, request=request, json={"taskId": 42})

    transport, client = _transport(handler)
    try:
        started = await transport.start_scan(SCANNER, "repo")
    finally:
        await client.aclose()

    assert started.task_id == "42"


def test_log_chunk_rejects_non_list_lines():
    with pytest.raises(pydantic.ValidationError):
        LogChunk.model_validate({"lines": 5})
    with pytest.raises(pydantic.ValidationError):
        LogChunk.model_validate({"lines": {"a": 1}})


@pytest.mark.asyncio
async def test_poll_with_scalar_lines_is_a_poll_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, request=request, json={"lines": 5, "end": False})

    transport, client = _transport(handler)
    try:
        with pytest.raises(PollFailure, match="Malformed log chunk"):
            await transport.poll_logs(SCANNER, "t1")
    finally:
        await client.aclose()
