"""Decode raw opencode event envelopes into typed events.

The server pushes envelopes shaped like ``{"type": ..., "properties": {...}}``.
Some transports wrap them as ``{"directory": ..., "payload": <envelope>}``;
a wrapped event for another working directory is dropped.

Anything that does not decode cleanly is dropped: the stream is advisory and
the next event will usually carry the same state again.
"""

import json
import logging
from typing import Any

from .core import ROLES, PartUpdate, SessionStatus, ms_to_datetime
from .events import (
    ConnectionEstablished,
    Event,
    MessageRemoved,
    MessageUpdated,
    PartRemoved,
    PartUpdated,
    SessionError,
    SessionIdle,
    SessionStatusChanged,
)

logger = logging.getLogger(__name__)


def decode_event(raw: Any, directory: str | None = None) -> Event | None:
    """Decode one parsed JSON value, or return None to drop it."""
    if not isinstance(raw, dict):
        return None

    if "payload" in raw:
        wrapped_dir = raw.get("directory")
        if isinstance(wrapped_dir, str) and wrapped_dir and directory and wrapped_dir != directory:
            logger.debug("Dropping event for directory %s", wrapped_dir)
            return None
        raw = raw.get("payload")
        if not isinstance(raw, dict):
            return None

    event_type = raw.get("type")
    props = raw.get("properties")
    if not isinstance(props, dict):
        props = {}

    decoder = _DECODERS.get(event_type)
    if decoder is None:
        return None
    event = decoder(props)
    if event is None:
        logger.debug("Dropping malformed %s event", event_type)
    return event


# ── Per-type decoders ────────────────────────────────────────────


def _connected(props: dict) -> Event:
    return ConnectionEstablished()


def _session_status(props: dict) -> Event | None:
    session_id = _str(props.get("sessionID"))
    status = props.get("status")
    if not session_id or not isinstance(status, dict):
        return None

    kind = status.get("type")
    if kind == "retry":
        attempt = status.get("attempt")
        return SessionStatusChanged(session_id, SessionStatus(
            kind="retry",
            attempt=attempt if isinstance(attempt, int) else None,
            message=_str(status.get("message")),
            next_attempt_at=ms_to_datetime(_int(status.get("next"))),
        ))
    if kind in ("idle", "busy"):
        return SessionStatusChanged(session_id, SessionStatus(kind))
    return None


def _session_idle(props: dict) -> Event | None:
    session_id = _str(props.get("sessionID"))
    if not session_id:
        return None
    return SessionIdle(session_id)


def _session_error(props: dict) -> Event | None:
    session_id = _str(props.get("sessionID"))
    if not session_id:
        return None
    detail = _str(props.get("message"))
    if detail is None:
        error = props.get("error")
        if error:
            try:
                detail = json.dumps(error, ensure_ascii=False)
            except (TypeError, ValueError):
                detail = str(error)
        else:
            detail = "Unknown error"
    return SessionError(session_id, detail)


def _part_updated(props: dict) -> Event | None:
    part = props.get("part")
    if not isinstance(part, dict):
        return None
    session_id = _str(part.get("sessionID"))
    message_id = _str(part.get("messageID"))
    part_id = _str(part.get("id"))
    if not session_id or not message_id or not part_id:
        return None

    delta = props.get("delta")
    return PartUpdated(
        session_id=session_id,
        message_id=message_id,
        part_id=part_id,
        update=decode_part(part),
        delta=delta if isinstance(delta, str) else None,
    )


def _message_updated(props: dict) -> Event | None:
    info = props.get("info")
    if not isinstance(info, dict):
        return None
    message_id = _str(info.get("id"))
    session_id = _str(info.get("sessionID"))
    if not message_id or not session_id:
        return None

    time_data = info.get("time")
    if not isinstance(time_data, dict):
        time_data = {}
    role = info.get("role")
    return MessageUpdated(
        message_id=message_id,
        session_id=session_id,
        role=role if role in ROLES else None,
        created_at=ms_to_datetime(_int(time_data.get("created"))),
        completed_at=ms_to_datetime(_int(time_data.get("completed"))),
    )


def _message_removed(props: dict) -> Event | None:
    message_id = _str(props.get("messageID"))
    if not message_id:
        return None
    return MessageRemoved(message_id, _str(props.get("sessionID")))


def _part_removed(props: dict) -> Event | None:
    message_id = _str(props.get("messageID"))
    part_id = _str(props.get("partID"))
    if not message_id or not part_id:
        return None
    return PartRemoved(message_id, part_id, _str(props.get("sessionID")))


_DECODERS = {
    "server.connected": _connected,
    "session.status": _session_status,
    "session.idle": _session_idle,
    "session.error": _session_error,
    "message.part.updated": _part_updated,
    "message.updated": _message_updated,
    "message.removed": _message_removed,
    "message.part.removed": _part_removed,
}


# ── Part field extraction ────────────────────────────────────────


def decode_part(part: dict) -> PartUpdate:
    """Extract the update fields of a wire part.

    opencode nests tool progress in a ``state`` object
    (``{"status": "completed", "input": {...}, "output": "..."}``);
    other producers send a bare status string and top-level fields.
    """
    state = part.get("state")
    if isinstance(state, dict):
        status = _str(state.get("status"))
    else:
        status = _str(state)
        state = {}

    error_text = _str(part.get("errorText"))
    if error_text is None:
        error_text = _str(state.get("errorText")) or _str(state.get("error"))

    time_data = part.get("time")
    if not isinstance(time_data, dict):
        time_data = {}

    role = part.get("role")
    return PartUpdate(
        type=_str(part.get("type")),
        text=_str(part.get("text")),
        status=status,
        input=part.get("input", state.get("input")),
        output=part.get("output", state.get("output")),
        error_text=error_text,
        role=role if role in ROLES else None,
        tool=_str(part.get("tool")),
        tool_name=_str(part.get("toolName")),
        title=_str(part.get("title")) or _str(state.get("title")),
        time_start=_int(time_data.get("start")),
        time_end=_int(time_data.get("end")),
        synthetic=_bool(part.get("synthetic")),
        ignored=_bool(part.get("ignored")),
    )


def _str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def _bool(value: Any) -> bool | None:
    return value if isinstance(value, bool) else None
