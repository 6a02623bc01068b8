"""Core data models for aichat-live."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class ToolState(str, Enum):
    """Canonical lifecycle states of a tool invocation part."""

    INPUT_STREAMING = "input-streaming"
    INPUT_AVAILABLE = "input-available"
    APPROVAL_REQUESTED = "approval-requested"
    APPROVAL_RESPONDED = "approval-responded"
    OUTPUT_AVAILABLE = "output-available"
    OUTPUT_ERROR = "output-error"
    OUTPUT_DENIED = "output-denied"


ACTIVE_TOOL_STATES = frozenset({
    ToolState.INPUT_STREAMING,
    ToolState.INPUT_AVAILABLE,
    ToolState.APPROVAL_REQUESTED,
    ToolState.APPROVAL_RESPONDED,
})

ROLES = ("user", "assistant")


@dataclass
class PartUpdate:
    """Fields carried by one ``message.part.updated`` event.

    ``None`` means the field was absent from the event.
    """

    type: Optional[str] = None
    text: Optional[str] = None
    status: Optional[str] = None  # tool state, already projected to a string
    input: Any = None
    output: Any = None
    error_text: Optional[str] = None
    role: Optional[str] = None
    tool: Optional[str] = None
    tool_name: Optional[str] = None
    title: Optional[str] = None
    time_start: Optional[int] = None
    time_end: Optional[int] = None
    synthetic: Optional[bool] = None
    ignored: Optional[bool] = None

    def merged_over(self, earlier: "PartUpdate") -> "PartUpdate":
        """Combine with an earlier update of the same part; present fields here win."""
        values = {}
        for name in self.__dataclass_fields__:
            value = getattr(self, name)
            values[name] = value if value is not None else getattr(earlier, name)
        return PartUpdate(**values)


@dataclass
class PartSnapshot:
    """Merged state of one message part, identified by (message_id, id)."""

    id: str
    message_id: str
    type: Optional[str] = None  # raw wire type: "text", "reasoning", "tool", "step-start", ...
    text: Optional[str] = None
    status: Optional[str] = None
    input: Any = None
    output: Any = None
    error_text: Optional[str] = None
    role: Optional[str] = None
    tool: Optional[str] = None
    tool_name: Optional[str] = None
    title: Optional[str] = None
    time_start: Optional[int] = None
    time_end: Optional[int] = None
    synthetic: Optional[bool] = None
    ignored: Optional[bool] = None

    def merge(self, update: PartUpdate) -> "PartSnapshot":
        """Return a copy with every present field of ``update`` applied."""
        changes = {
            name: value
            for name, value in vars(update).items()
            if value is not None
        }
        return replace(self, **changes)

    @property
    def is_tool(self) -> bool:
        return (
            self.type in ("tool", "dynamic-tool")
            or bool(self.tool)
            or bool(self.type and self.type.startswith("tool-"))
        )

    @property
    def kind(self) -> str:
        """One of text | reasoning | tool | subtask | other."""
        if self.is_tool:
            return "tool"
        if self.type in ("text", "reasoning", "subtask"):
            return self.type
        return "other"

    @property
    def hidden(self) -> bool:
        return bool(self.synthetic) or bool(self.ignored)

    @property
    def sort_time(self) -> Optional[int]:
        return self.time_start if self.time_start is not None else self.time_end

    def sort_key(self) -> tuple:
        # Timed parts first, by time; untimed after; part id breaks ties.
        when = self.sort_time
        return (when is None, when or 0, self.id)

    @property
    def label(self) -> str:
        """Human-facing tool name."""
        if self.type == "dynamic-tool":
            return self.title or self.tool_name or "Tool"
        if self.type == "tool":
            return self.tool or self.title or self.tool_name or "Tool"
        if self.tool:
            return self.tool
        if self.type and self.type.startswith("tool-"):
            return self.type[len("tool-"):] or "Tool"
        return "Tool"


@dataclass
class ChatMessage:
    """A single transcript entry."""

    id: str  # lexicographically sortable, e.g. "msg_0193a4b2c5d6Ab3xYz9QwErTy0"
    role: str  # "user" | "assistant"
    text: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    pending: bool = False  # locally sent, not yet confirmed by the server


@dataclass(frozen=True)
class ToolActivity:
    """A tool invocation that is still running or waiting on the user."""

    id: str  # part id
    message_id: str
    name: str
    state: ToolState


@dataclass(frozen=True)
class SessionStatus:
    """Server-side session status: idle, busy, or retry with attempt details."""

    kind: str  # "idle" | "busy" | "retry"
    attempt: Optional[int] = None
    message: Optional[str] = None
    next_attempt_at: Optional[datetime] = None

    @classmethod
    def idle(cls) -> "SessionStatus":
        return cls("idle")

    @classmethod
    def busy(cls) -> "SessionStatus":
        return cls("busy")


def ms_to_datetime(ms: int | None) -> datetime | None:
    """Convert millisecond timestamp to datetime, or None."""
    if ms is None:
        return None
    try:
        return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OSError, OverflowError):
        return None
