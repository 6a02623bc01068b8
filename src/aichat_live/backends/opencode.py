"""OpenCode server transport.

Talks to a running ``opencode serve`` instance over HTTP:
- ``GET /event?directory=...`` is a server-sent event stream; every
  ``data:`` payload is one JSON envelope.
- ``POST /session/{id}/prompt_async`` queues a prompt and returns at once;
  the reply arrives through the event stream.
- ``GET /session/{id}/message`` lists stored messages with their parts.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from ..config import (
    get_directory,
    get_reconnect_delay,
    get_reconnect_max_delay,
    get_server_url,
)
from ..provider import EventTransport, SendError, SendRequest, TransportError

logger = logging.getLogger(__name__)

SEND_RETRIES = 3
SEND_RETRY_DELAY = 1.0
SEND_BACKOFF = 2.0


class OpenCodeTransport(EventTransport):
    """Event stream and prompt submission for one opencode working directory."""

    name = "opencode"

    def __init__(
        self,
        base_url: str | None = None,
        directory: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        reconnect_delay: float | None = None,
        reconnect_max_delay: float | None = None,
        max_reconnects: int | None = None,
        send_retries: int = SEND_RETRIES,
        send_retry_delay: float = SEND_RETRY_DELAY,
    ):
        self.base_url = (base_url or get_server_url()).rstrip("/")
        self.directory = directory or get_directory()
        self._client = client
        self._owns_client = client is None
        self._response: httpx.Response | None = None
        self._aborted = False
        self._reconnect_delay = reconnect_delay if reconnect_delay is not None else get_reconnect_delay()
        self._reconnect_max_delay = (
            reconnect_max_delay if reconnect_max_delay is not None else get_reconnect_max_delay()
        )
        self._max_reconnects = max_reconnects
        self._send_retries = send_retries
        self._send_retry_delay = send_retry_delay

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            # No read timeout: the event stream stays open indefinitely.
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=None))
        return self._client

    async def aclose(self) -> None:
        await self.abort()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    # ── Inbound ──────────────────────────────────────────────────

    async def stream(self) -> AsyncIterator[Any]:
        self._aborted = False
        client = self._get_client()
        try:
            async with client.stream(
                "GET",
                f"{self.base_url}/event",
                params={"directory": self.directory},
                headers={"Accept": "text/event-stream"},
            ) as response:
                if not response.is_success:
                    raise TransportError(
                        f"SSE failed: {response.status_code} {response.reason_phrase}"
                    )
                self._response = response
                async for data in iter_sse_data(response.aiter_text()):
                    yield data
        except (httpx.HTTPError, httpx.StreamError) as exc:
            if self._aborted:
                return
            raise TransportError(f"SSE stream failed: {exc}") from exc
        finally:
            self._response = None

    async def abort(self) -> None:
        self._aborted = True
        response = self._response
        if response is not None:
            await response.aclose()

    def reconnect_delay(self, attempt: int) -> float | None:
        if self._max_reconnects is not None and attempt > self._max_reconnects:
            return None
        return min(self._reconnect_max_delay, self._reconnect_delay * 2 ** (attempt - 1))

    # ── Outbound ─────────────────────────────────────────────────

    async def send_message(self, request: SendRequest) -> dict[str, Any]:
        body: dict[str, Any] = {
            "messageID": request.message_id,
            "parts": request.parts or [{"type": "text", "text": request.text}],
        }
        model = split_model(request.model)
        if model:
            body["model"] = model
        if request.system:
            body["system"] = request.system

        url = f"{self.base_url}/session/{request.session_id}/prompt_async"
        last_error: Exception | None = None
        for attempt in range(self._send_retries + 1):
            try:
                response = await self._get_client().post(
                    url, params={"directory": request.directory or self.directory}, json=body,
                )
                response.raise_for_status()
                return _json_or_empty(response)
            except httpx.HTTPError as exc:
                last_error = exc
                if attempt < self._send_retries:
                    delay = self._send_retry_delay * SEND_BACKOFF ** attempt
                    logger.warning("Prompt request failed (%s); retrying in %.1fs", exc, delay)
                    await asyncio.sleep(delay)

        raise SendError(str(last_error) or "opencode request failed") from last_error

    async def fetch_messages(self, session_id: str) -> list[dict[str, Any]]:
        """Return the stored ``{"info", "parts"}`` items of a session."""
        try:
            response = await self._get_client().get(
                f"{self.base_url}/session/{session_id}/message",
                params={"directory": self.directory},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise TransportError(f"Failed to load session {session_id}: {exc}") from exc

        data = _json_or_empty(response)
        return data if isinstance(data, list) else []


# ── Helpers ──────────────────────────────────────────────────────


async def iter_sse_data(chunks: AsyncIterator[str]) -> AsyncIterator[Any]:
    """Yield the JSON value of every event in a server-sent event stream.

    Events are separated by a blank line; the ``data:`` lines of an event
    are joined with newlines. Payloads that are not JSON are skipped.
    """
    buffer = ""
    async for chunk in chunks:
        buffer = _normalize_newlines(buffer + chunk)
        *events, buffer = buffer.split("\n\n")
        for event in events:
            data = _event_data(event)
            if data is None:
                continue
            try:
                yield json.loads(data)
            except json.JSONDecodeError as exc:
                logger.debug("Skipping undecodable SSE payload: %s", exc)


def _normalize_newlines(text: str) -> str:
    # A trailing "\r" may be the first half of a "\r\n" split across chunks.
    if text.endswith("\r"):
        return text[:-1].replace("\r\n", "\n").replace("\r", "\n") + "\r"
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _event_data(event: str) -> str | None:
    lines = [
        line[len("data:"):].lstrip()
        for line in event.split("\n")
        if line.startswith("data:")
    ]
    if not lines:
        return None
    return "\n".join(lines)


def split_model(model: str | None) -> dict[str, str] | None:
    """Turn "provider/model" into opencode's model reference."""
    if not model:
        return None
    provider, sep, model_id = model.partition("/")
    if not sep or not provider or not model_id:
        return None
    return {"providerID": provider, "modelID": model_id}


def _json_or_empty(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {}
