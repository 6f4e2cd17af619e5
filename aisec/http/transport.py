"""httpx-backed transport to the remote scan endpoints."""

from typing import Any, Optional

import httpx
import pydantic

from aisec.exceptions import PollFailure, ResultFetchFailure, StartFailure
from aisec.http.models import LogChunk, StartScanResponse, unwrap_envelope
from aisec.tools.registry import ScanAdapter
from aisec.utils import get_logger

log = get_logger("http.transport")

USER_AGENT = "aisec-orchestrator/1.0"


class ScanTransport:
    """
    Async client for the three remote calls every tool exposes:
    start, poll logs and fetch result.

    Every method either returns a parsed value or raises the matching
    OrchestrationError subclass; raw httpx errors never escape.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        timeout: float = 30.0,
        target_header: str = "X-Target-Repo",
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
        )
        self.target_header = target_header

    @classmethod
    def from_settings(cls, settings) -> "ScanTransport":
        return cls(timeout=settings.HTTP_TIMEOUT_SEC, target_header=settings.TARGET_HEADER)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ---- start ----
    async def start_scan(self, adapter: ScanAdapter, subject: str, raw: Optional[str] = None) -> StartScanResponse:
        if not adapter.start_endpoint:
            raise StartFailure(f"No start endpoint configured for {adapter.kind.value}")

        try:
            resp = await self._client.post(
                adapter.start_endpoint,
                json={"repoUrl": subject, "raw": raw if raw is not None else subject},
                headers={"Content-Type": "application/json", self.target_header: subject},
            )
            resp.raise_for_status()
            data = unwrap_envelope(resp.json())
        except httpx.HTTPStatusError as exc:
            raise StartFailure(_describe_status_error(exc)) from exc
        except httpx.HTTPError as exc:
            raise StartFailure(f"Start request failed: {exc}") from exc
        except ValueError as exc:
            raise StartFailure("Start response is not JSON") from exc

        try:
            return StartScanResponse.model_validate(data)
        except pydantic.ValidationError as exc:
            raise StartFailure("No taskId returned.") from exc

    # ---- logs ----
    async def poll_logs(self, adapter: ScanAdapter, task_id: str, cursor: Optional[str] = None) -> LogChunk:
        params = {"taskId": task_id}
        if cursor:
            params["cursor"] = cursor

        try:
            resp = await self._client.get(adapter.logs_endpoint, params=params)
            resp.raise_for_status()
            data = unwrap_envelope(resp.json())
            return LogChunk.model_validate(data)
        except httpx.HTTPStatusError as exc:
            raise PollFailure(_describe_status_error(exc)) from exc
        except httpx.HTTPError as exc:
            raise PollFailure(f"Log poll failed: {exc}") from exc
        except (ValueError, pydantic.ValidationError) as exc:
            raise PollFailure(f"Malformed log chunk: {exc}") from exc

    # ---- result ----
    async def fetch_result(self, adapter: ScanAdapter, filename: str) -> Any:
        if not adapter.result_endpoint:
            raise ResultFetchFailure(f"No result endpoint configured for {adapter.kind.value}")

        try:
            resp = await self._client.post(adapter.result_endpoint, json={"filename": filename})
            resp.raise_for_status()
            return unwrap_envelope(resp.json())
        except httpx.HTTPStatusError as exc:
            raise ResultFetchFailure(_describe_status_error(exc)) from exc
        except httpx.HTTPError as exc:
            raise ResultFetchFailure(f"Result fetch failed: {exc}") from exc
        except ValueError as exc:
            raise ResultFetchFailure(f"Result {filename} is not JSON") from exc


def _describe_status_error(exc: httpx.HTTPStatusError) -> str:
    """Prefer the server's own error message when it sends one."""
    message = None
    try:
        body = exc.response.json()
        if isinstance(body, dict):
            message = body.get("message") or body.get("error")
    except ValueError:
        pass
    return str(message or f"HTTP {exc.response.status_code} from {exc.request.url}")
