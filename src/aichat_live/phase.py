"""Collapse the reconciler's signals into one activity phase.

The rules are evaluated as an ordered priority list; the first match wins.
Reordering them changes what the user sees, e.g. a retry during tool
execution shows as "running tools", not "retrying".
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .core import SessionStatus, ToolActivity, ToolState


class ActivityPhase(str, Enum):
    CREATING_SESSION = "creating-session"
    LOADING_SESSION = "loading-session"
    IDLE = "idle"  # no active session
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_APPROVAL = "awaiting-approval"
    RUNNING_TOOLS = "running-tools"
    RETRYING = "retrying"
    STREAMING = "streaming"
    PROCESSING = "processing"
    QUEUED = "queued"
    COMPLETE = "complete"
    READY = "ready"


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class PhaseSignals:
    creating_session: bool = False
    loading_session: bool = False
    has_active_session: bool = False
    connection_state: ConnectionState = ConnectionState.CONNECTING
    awaiting_approval: bool = False
    active_tool_count: int = 0
    session_status: Optional[SessionStatus] = None
    is_streaming: bool = False
    has_pending_user_message: bool = False
    awaiting_response: bool = False
    last_completion: Optional[datetime] = None


def derive_phase(signals: PhaseSignals) -> ActivityPhase:
    status = signals.session_status.kind if signals.session_status else None

    if signals.creating_session:
        return ActivityPhase.CREATING_SESSION
    if signals.loading_session:
        return ActivityPhase.LOADING_SESSION
    if not signals.has_active_session:
        return ActivityPhase.IDLE
    if signals.connection_state is ConnectionState.ERROR:
        return ActivityPhase.DISCONNECTED
    if signals.connection_state is ConnectionState.CONNECTING:
        return ActivityPhase.CONNECTING
    if signals.awaiting_approval:
        return ActivityPhase.AWAITING_APPROVAL
    if signals.active_tool_count > 0:
        return ActivityPhase.RUNNING_TOOLS
    if status == "retry":
        return ActivityPhase.RETRYING
    if signals.is_streaming:
        return ActivityPhase.STREAMING
    if status == "busy":
        return ActivityPhase.PROCESSING
    if signals.has_pending_user_message or signals.awaiting_response:
        return ActivityPhase.QUEUED
    if signals.last_completion is not None and status in (None, "idle"):
        return ActivityPhase.COMPLETE
    return ActivityPhase.READY


@dataclass(frozen=True)
class PhaseMeta:
    phase: ActivityPhase
    label: str
    title: str
    description: str
    is_active: bool


def describe_phase(
    phase: ActivityPhase,
    signals: PhaseSignals,
    tools: list[ToolActivity] | None = None,
    last_event_at: datetime | None = None,
) -> PhaseMeta:
    """Human-facing label and description for a phase."""
    tools = tools or []
    count = len(tools)
    last_update = (
        f"Last update {_clock(last_event_at)}" if last_event_at else "Waiting for opencode updates."
    )

    if phase is ActivityPhase.CREATING_SESSION:
        return PhaseMeta(phase, "Creating session", "Spinning up a new session",
                         "opencode is preparing a fresh workspace.", True)
    if phase is ActivityPhase.LOADING_SESSION:
        return PhaseMeta(phase, "Loading session", "Syncing session history",
                         "Fetching messages from opencode.", True)
    if phase is ActivityPhase.CONNECTING:
        return PhaseMeta(phase, "Connecting", "Connecting to opencode",
                         "Waiting for the server handshake.", True)
    if phase is ActivityPhase.DISCONNECTED:
        return PhaseMeta(phase, "Disconnected", "Connection lost",
                         "Live status updates stopped. The server may still be running.", False)
    if phase is ActivityPhase.QUEUED:
        return PhaseMeta(phase, "Queued", "Queued for processing",
                         "Message received - waiting for the model to start.", True)
    if phase is ActivityPhase.STREAMING:
        return PhaseMeta(phase, "Streaming", "Generating response",
                         f"Streaming tokens from the model. {last_update}", True)
    if phase is ActivityPhase.PROCESSING:
        return PhaseMeta(phase, "Processing", "Working on your request",
                         f"opencode is busy. {last_update}", True)
    if phase is ActivityPhase.AWAITING_APPROVAL:
        waiting = sum(1 for t in tools if t.state is ToolState.APPROVAL_REQUESTED)
        plural = "s" if waiting > 1 else ""
        return PhaseMeta(phase, f"Awaiting approval ({count})", "Waiting for your approval",
                         f"Approve the tool request{plural} to continue.", True)
    if phase is ActivityPhase.RUNNING_TOOLS:
        return PhaseMeta(phase, f"Running tools ({count})", "Executing tools",
                         f"Running {_tool_summary(tools)}. {last_update}", True)
    if phase is ActivityPhase.RETRYING:
        status = signals.session_status
        attempt = status.attempt if status else None
        label = f"Retrying (attempt {attempt})" if attempt is not None else "Retrying"
        message = status.message if status and status.message else "opencode is retrying the request."
        return PhaseMeta(phase, label, "Retrying request", message, True)
    if phase is ActivityPhase.COMPLETE:
        completed = (
            f"Completed at {_clock(signals.last_completion)}"
            if signals.last_completion else "Response complete."
        )
        return PhaseMeta(phase, "Complete", "Response complete", completed, False)
    if phase is ActivityPhase.IDLE:
        return PhaseMeta(phase, "Create a session", "Create a session to begin",
                         "Start a new session to see opencode responses here.", False)
    return PhaseMeta(phase, "Ready", "Ready for the next prompt",
                     "Waiting for your next message.", False)


def _tool_summary(tools: list[ToolActivity]) -> str:
    names = [t.name for t in tools if t.name]
    if not names:
        return "tool calls"
    summary = ", ".join(names[:2])
    if len(names) > 2:
        summary += f" +{len(names) - 2}"
    return summary


def _clock(value: datetime) -> str:
    return value.astimezone().strftime("%H:%M:%S")
