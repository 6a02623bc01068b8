"""Abstract base class for live event transports."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Optional


class TransportError(Exception):
    """The event stream could not be opened or broke while reading."""


class SendError(Exception):
    """An outbound prompt request failed."""


@dataclass
class SendRequest:
    """Everything the server needs to start a turn."""

    session_id: str
    message_id: str  # locally generated; the server adopts it
    text: str
    directory: str
    model: Optional[str] = None  # "provider/model"
    system: Optional[str] = None
    parts: list[dict[str, Any]] = field(default_factory=list)


class EventTransport(ABC):
    """Base class for the connection to a conversational session server.

    The transport opens and re-opens the event stream and carries outbound
    prompts. The reconciler never talks to the network itself; everything
    that results from a send arrives back through ``stream()``.
    """

    name: str

    @abstractmethod
    def stream(self) -> AsyncIterator[Any]:
        """Yield parsed JSON values until the stream ends.

        Raises TransportError when the stream cannot be read.
        """
        ...

    @abstractmethod
    async def abort(self) -> None:
        """Stop any in-progress stream read."""
        ...

    @abstractmethod
    async def send_message(self, request: SendRequest) -> dict[str, Any]:
        """Submit a prompt. Raises SendError on failure."""
        ...

    @abstractmethod
    async def fetch_messages(self, session_id: str) -> list[dict[str, Any]]:
        """Return a session's stored messages as ``{"info": ..., "parts": [...]}`` items."""
        ...

    @abstractmethod
    def reconnect_delay(self, attempt: int) -> float | None:
        """Seconds to wait before reconnect number ``attempt`` (1-based), or None to give up."""
        ...

    async def aclose(self) -> None:
        """Release connections. The transport is not used again afterwards."""
        await self.abort()
