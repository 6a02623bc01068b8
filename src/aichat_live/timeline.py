"""Ordered, deduplicated list of transcript messages."""

import bisect
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from .core import ChatMessage


def _message_key(message: ChatMessage) -> str:
    return message.id


class Timeline:
    """Messages kept sorted by id; ids are lexicographically time-ordered."""

    def __init__(self, messages: list[ChatMessage] | None = None):
        self._messages: list[ChatMessage] = sorted(messages or [], key=_message_key)

    # ── Queries ──────────────────────────────────────────────────

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    def get(self, message_id: str) -> ChatMessage | None:
        idx = self._index_of(message_id)
        return self._messages[idx] if idx is not None else None

    def pending(self, role: str) -> ChatMessage | None:
        for message in self._messages:
            if message.role == role and message.pending:
                return message
        return None

    def has_pending(self, role: str = "user") -> bool:
        return self.pending(role) is not None

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(list(self._messages))

    def __contains__(self, message_id: str) -> bool:
        return self._index_of(message_id) is not None

    # ── Mutations ────────────────────────────────────────────────

    def insert(self, message: ChatMessage) -> None:
        """Insert at the sorted position, replacing an entry with the same id."""
        self.remove(message.id)
        idx = bisect.bisect_left(self._messages, message.id, key=_message_key)
        self._messages.insert(idx, message)

    def add_pending(self, message_id: str, role: str, text: str) -> ChatMessage:
        if self.has_pending(role):
            raise ValueError(f"a pending {role} message already exists")
        message = ChatMessage(id=message_id, role=role, text=text, pending=True)
        self.insert(message)
        return message

    def upsert(
        self,
        message_id: str,
        *,
        role: Optional[str] = None,
        text: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        pending: Optional[bool] = None,
        require_text: bool = False,
    ) -> ChatMessage | None:
        """Create or update a message.

        A new entry needs a role, and with ``require_text`` non-empty text.
        An existing entry keeps its role; its text changes only when given.
        Returns the stored message, or None when nothing was created.
        """
        idx = self._index_of(message_id)
        if idx is None:
            if require_text and not text:
                return None
            if not role:
                return None
            message = ChatMessage(
                id=message_id,
                role=role,
                text=text or "",
                timestamp=timestamp or datetime.now(timezone.utc),
                pending=bool(pending),
            )
            self.insert(message)
            return message

        current = self._messages[idx]
        updated = replace(
            current,
            text=text if text is not None else current.text,
            timestamp=timestamp or current.timestamp,
            pending=pending if pending is not None else current.pending,
        )
        self._messages[idx] = updated
        return updated

    def confirm(
        self,
        server_id: str,
        role: str = "user",
        timestamp: Optional[datetime] = None,
    ) -> ChatMessage | None:
        """Swap the pending message of ``role`` for its server-confirmed version.

        The confirmed entry is re-inserted under ``server_id`` at its own
        sorted position, so the shown order always follows the server's ids.
        Runs at most once per turn: once confirmed, nothing is pending.
        """
        idx = self._index_of(server_id)
        if idx is not None:
            current = self._messages[idx]
            if current.pending:
                self._messages[idx] = replace(
                    current, pending=False, timestamp=timestamp or current.timestamp,
                )
            return self._messages[idx]

        pending = self.pending(role)
        if pending is None:
            return None
        self.remove(pending.id)
        confirmed = replace(
            pending,
            id=server_id,
            pending=False,
            timestamp=timestamp or pending.timestamp,
        )
        self.insert(confirmed)
        return confirmed

    def remove(self, message_id: str) -> ChatMessage | None:
        idx = self._index_of(message_id)
        if idx is None:
            return None
        return self._messages.pop(idx)

    def clear(self) -> None:
        self._messages.clear()

    def _index_of(self, message_id: str) -> int | None:
        idx = bisect.bisect_left(self._messages, message_id, key=_message_key)
        if idx < len(self._messages) and self._messages[idx].id == message_id:
            return idx
        return None
