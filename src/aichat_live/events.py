"""Typed events decoded from the opencode event stream."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from .core import PartUpdate, SessionStatus


@dataclass(frozen=True)
class ConnectionEstablished:
    session_id: Optional[str] = None


@dataclass(frozen=True)
class SessionStatusChanged:
    session_id: str
    status: SessionStatus


@dataclass(frozen=True)
class SessionIdle:
    session_id: str


@dataclass(frozen=True)
class SessionError:
    session_id: str
    detail: str


@dataclass(frozen=True)
class PartUpdated:
    session_id: str
    message_id: str
    part_id: str
    update: PartUpdate
    delta: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.message_id, self.part_id)


@dataclass(frozen=True)
class MessageUpdated:
    message_id: str
    session_id: str
    role: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class MessageRemoved:
    message_id: str
    session_id: Optional[str] = None


@dataclass(frozen=True)
class PartRemoved:
    message_id: str
    part_id: str
    session_id: Optional[str] = None


Event = Union[
    ConnectionEstablished,
    SessionStatusChanged,
    SessionIdle,
    SessionError,
    PartUpdated,
    MessageUpdated,
    MessageRemoved,
    PartRemoved,
]
