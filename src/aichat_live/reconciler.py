"""Session-scoped reconciliation of the live event stream.

One ``ConversationReconciler`` owns everything derived from one session's
event stream: the part store, the timeline, the role cache and the set of
locally created messages still waiting for the server. Raw events go in
through ``feed``; they are decoded, coalesced by the scheduler and applied
in batches. After every batch the tool activity list is rebuilt and
subscribers are notified once, so readers see one state change per window.

All methods must be called from the event loop that runs the scheduler.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Optional

from .assembler import build_message_text, is_visible, resolve_role
from .core import ChatMessage, PartUpdate, SessionStatus, ToolActivity, ToolState, ms_to_datetime
from .decoder import decode_event
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
from .ids import new_message_id
from .mentions import build_reference_parts
from .parts import PartStore, resolve_text
from .phase import ActivityPhase, ConnectionState, PhaseMeta, PhaseSignals, derive_phase, describe_phase
from .provider import SendRequest
from .scheduler import DEFAULT_WINDOW, CoalescingScheduler
from .timeline import Timeline
from .tools import collect_tool_activity, is_active_tool

logger = logging.getLogger(__name__)


class ReconcilerError(Exception):
    """Base class for rejected reconciler operations."""


class NoActiveSessionError(ReconcilerError):
    pass


class PendingMessageError(ReconcilerError):
    """A previous message is still waiting for the server to confirm it."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationReconciler:
    def __init__(
        self,
        session_id: str | None,
        directory: str | None = None,
        *,
        window: float = DEFAULT_WINDOW,
        id_factory: Callable[[], str] = new_message_id,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.session_id = session_id
        self.directory = directory
        self._new_id = id_factory
        self._now = now

        self.parts = PartStore()
        self.timeline = Timeline()
        self._roles: dict[str, str] = {}
        self._pending_ids: set[str] = set()

        # Text each part will hold once everything enqueued so far is applied.
        self._staged_text: dict[tuple[str, str], str] = {}
        self._staged_removed: set[str] = set()

        self.tools: list[ToolActivity] = []
        self.connection_state = ConnectionState.CONNECTING
        self.connection_error: Optional[str] = None
        self.session_status: Optional[SessionStatus] = None
        self.streaming = False
        self.streaming_message_id: Optional[str] = None
        self.awaiting_response = False
        self.sending = False
        self.creating_session = False
        self.loading_session = False
        self.last_event_at: Optional[datetime] = None
        self.last_completion: Optional[datetime] = None
        self.error: Optional[str] = None

        self._subscribers: list[Callable[["ConversationReconciler"], None]] = []
        self.scheduler = CoalescingScheduler(self.apply_batch, window=window)

    # ── Intake ───────────────────────────────────────────────────

    def feed(self, raw: Any) -> bool:
        """Decode and enqueue one raw envelope. Returns False if it was dropped."""
        event = decode_event(raw, self.directory)
        if event is None:
            return False
        return self.enqueue(event)

    def enqueue(self, event: Event) -> bool:
        event_session = getattr(event, "session_id", None)
        if event_session is not None and event_session != self.session_id:
            return False

        if isinstance(event, PartUpdated):
            event = self._stage_part(event)
        elif isinstance(event, MessageRemoved):
            self._staged_removed.add(event.message_id)
            for key in [k for k in self._staged_text if k[0] == event.message_id]:
                del self._staged_text[key]
        elif isinstance(event, PartRemoved):
            self._staged_text[(event.message_id, event.part_id)] = ""

        self.scheduler.enqueue(event)
        return True

    def _stage_part(self, event: PartUpdated) -> PartUpdated:
        # Resolve the delta now so a coalesced slot always holds the full
        # accumulated text rather than only the newest fragment.
        key = event.key
        if event.delta is None:
            if event.update.text is not None:
                self._staged_text[key] = event.update.text
            return event

        if key in self._staged_text:
            base = self._staged_text[key]
        elif event.message_id in self._staged_removed:
            base = ""
        else:
            base = self.parts.text_of(event.message_id, event.part_id)
        text = resolve_text(base, event.update.text, event.delta)
        self._staged_text[key] = text
        return PartUpdated(
            session_id=event.session_id,
            message_id=event.message_id,
            part_id=event.part_id,
            update=PartUpdate(text=text).merged_over(event.update),
        )

    def flush(self) -> None:
        self.scheduler.flush()

    # ── Batch application ────────────────────────────────────────

    def apply_batch(self, events: list[Event]) -> None:
        for event in events:
            try:
                self.apply(event)
            except Exception:
                logger.exception("Failed to apply %s", type(event).__name__)
        self._staged_text.clear()
        self._staged_removed.clear()
        self.tools = collect_tool_activity(self.parts)
        self._notify()

    def apply(self, event: Event) -> None:
        """Apply one event to the store and timeline, without notifying."""
        if isinstance(event, ConnectionEstablished):
            if self.connection_state is ConnectionState.ERROR:
                # Missed events are not replayed; start from a clean store.
                self.parts.clear()
            self._mark_connected()
            return

        self._mark_connected()
        self._apply_state(event)

    def _apply_state(self, event: Event) -> None:
        """Apply an event's effect on the session state. Connection state is untouched."""
        if isinstance(event, SessionStatusChanged):
            self.session_status = event.status
            if event.status.kind != "busy":
                self.awaiting_response = False
        elif isinstance(event, SessionIdle):
            self._settle()
        elif isinstance(event, SessionError):
            self._settle()
            self.error = f"opencode error: {event.detail}"
        elif isinstance(event, PartUpdated):
            self._apply_part(event)
        elif isinstance(event, MessageUpdated):
            self._apply_message(event)
        elif isinstance(event, MessageRemoved):
            self._drop_message(event.message_id)
        elif isinstance(event, PartRemoved):
            self._apply_part_removed(event)

    def _mark_connected(self) -> None:
        self.connection_state = ConnectionState.CONNECTED
        self.connection_error = None
        self.last_event_at = self._now()

    def _settle(self) -> None:
        self.session_status = SessionStatus.idle()
        self.streaming = False
        self.streaming_message_id = None
        self.awaiting_response = False

    def _mark_busy(self) -> None:
        if self.session_status is None or self.session_status.kind != "busy":
            self.session_status = SessionStatus.busy()
        self.awaiting_response = False

    def _apply_part(self, event: PartUpdated) -> None:
        message_id = event.message_id
        part = self.parts.apply(event)

        role = resolve_role(
            part,
            cached=self._roles.get(message_id),
            is_pending_local=message_id in self._pending_ids,
        )
        if role:
            self._roles.setdefault(message_id, role)

        parts = self.parts.parts_for(message_id)
        text = build_message_text(parts, role)
        if is_visible(text, role, parts):
            when = ms_to_datetime(part.time_end if part.time_end is not None else part.time_start)
            self.timeline.upsert(message_id, role=role, text=text, timestamp=when)

        if role == "assistant" and part.type in ("text", "reasoning"):
            self.streaming = True
            self.streaming_message_id = message_id
            self._mark_busy()
        if is_active_tool(part):
            self._mark_busy()

    def _apply_message(self, event: MessageUpdated) -> None:
        message_id = event.message_id
        timestamp = event.created_at or self._now()
        role = self._roles.get(message_id) or event.role
        if role:
            self._roles.setdefault(message_id, role)

        parts = self.parts.parts_for(message_id)
        if role == "user":
            pending = self.timeline.pending("user")
            self.timeline.confirm(message_id, "user", timestamp)
            self._pending_ids.discard(message_id)
            if pending is not None and pending.id != message_id:
                self._pending_ids.discard(pending.id)
                self._roles.pop(pending.id, None)
            text = build_message_text(parts, "user")
            if text:
                self.timeline.upsert(message_id, role="user", text=text, timestamp=timestamp)
        elif role == "assistant":
            # An explicit role is enough to open the entry; parts fill it in.
            text = build_message_text(parts, "assistant")
            self.timeline.upsert(message_id, role="assistant", text=text or None, timestamp=timestamp)
            if event.completed_at:
                self.streaming = False
                if self.streaming_message_id == message_id:
                    self.streaming_message_id = None
                self.last_completion = event.completed_at
                self.awaiting_response = False
        elif message_id in self.timeline:
            self.timeline.upsert(message_id, timestamp=timestamp)

    def _apply_part_removed(self, event: PartRemoved) -> None:
        message_id = event.message_id
        if not self.parts.remove_part(message_id, event.part_id):
            return
        existing = self.timeline.get(message_id)
        parts = self.parts.parts_for(message_id)
        if not parts and not (existing and existing.pending):
            self._drop_message(message_id)
            return
        if existing is None:
            return

        role = self._roles.get(message_id, existing.role)
        text = build_message_text(parts, role)
        if existing.pending and not text:
            return
        if is_visible(text, role, parts):
            self.timeline.upsert(message_id, text=text)
        else:
            self.timeline.remove(message_id)

    def _drop_message(self, message_id: str) -> None:
        self._pending_ids.discard(message_id)
        self._roles.pop(message_id, None)
        self.parts.remove_message(message_id)
        if self.streaming_message_id == message_id:
            self.streaming_message_id = None
        self.timeline.remove(message_id)

    # ── History ──────────────────────────────────────────────────

    def load_history(self, items: list[dict[str, Any]]) -> None:
        """Replay stored ``{"info": ..., "parts": [...]}`` messages.

        History goes through the same decoder and handlers as live events,
        so stored and streamed messages assemble identically.
        """
        for item in items:
            if not isinstance(item, dict):
                continue
            envelopes = [{"type": "message.updated", "properties": {"info": item.get("info")}}]
            for part in item.get("parts") or []:
                envelopes.append({"type": "message.part.updated", "properties": {"part": part}})
            for raw in envelopes:
                event = decode_event(raw, self.directory)
                if event is not None and getattr(event, "session_id", None) == self.session_id:
                    self._apply_state(event)

        # Replayed text parts look like live streaming; history is at rest.
        self.streaming = False
        self.streaming_message_id = None
        self.session_status = None
        self.awaiting_response = False
        self.tools = collect_tool_activity(self.parts)
        self._notify()

    # ── Outbound ─────────────────────────────────────────────────

    def begin_send(
        self,
        text: str,
        model: str | None = None,
        mentions: list[str] | None = None,
        system: str | None = None,
    ) -> SendRequest:
        """Insert the optimistic user message and build the request for it."""
        trimmed = text.strip()
        if not trimmed:
            raise ValueError("Message text is empty")
        if not self.session_id:
            raise NoActiveSessionError("No active session")
        if self.timeline.has_pending("user"):
            raise PendingMessageError("Previous message has not been confirmed yet")

        message_id = self._new_id()
        self._pending_ids.add(message_id)
        self._roles[message_id] = "user"
        self.timeline.add_pending(message_id, "user", trimmed)

        self.last_completion = None
        self.awaiting_response = True
        self.streaming_message_id = None
        self.sending = True
        self.error = None
        self._notify()

        return SendRequest(
            session_id=self.session_id,
            message_id=message_id,
            text=text,
            directory=self.directory or "",
            model=model,
            system=system,
            parts=build_reference_parts(text, mentions or [], self.directory),
        )

    def send_succeeded(self, message_id: str) -> None:
        self.sending = False
        self._notify()

    def send_failed(self, message_id: str, error: Exception | str) -> None:
        """Roll back the optimistic message of a failed send."""
        logger.warning("Send of %s failed: %s", message_id, error)
        self.error = f"Failed to send message: {error}"
        self._pending_ids.discard(message_id)
        self._roles.pop(message_id, None)
        self.timeline.remove(message_id)
        self.streaming = False
        self.streaming_message_id = None
        self.awaiting_response = False
        self.sending = False
        self._notify()

    # ── Lifecycle ────────────────────────────────────────────────

    def connection_lost(self, detail: str | None = None) -> None:
        self.scheduler.flush()
        self.connection_state = ConnectionState.ERROR
        self.connection_error = detail
        self._notify()

    def switch_session(self, session_id: str | None) -> None:
        """Flush the old session's events, then start empty on ``session_id``."""
        self.scheduler.close()
        self._reset()
        self.session_id = session_id
        self.connection_state = ConnectionState.CONNECTING
        self._notify()

    def close(self) -> None:
        self.scheduler.close()
        self._reset()
        self._notify()

    def _reset(self) -> None:
        # Everything session-scoped goes together; never part of it.
        self.parts.clear()
        self.timeline.clear()
        self._roles.clear()
        self._pending_ids.clear()
        self._staged_text.clear()
        self._staged_removed.clear()
        self.tools = []
        self.session_status = None
        self.streaming = False
        self.streaming_message_id = None
        self.awaiting_response = False
        self.sending = False
        self.last_completion = None
        self.error = None

    # ── Derived views ────────────────────────────────────────────

    @property
    def messages(self) -> list[ChatMessage]:
        return self.timeline.messages

    def role_of(self, message_id: str) -> str | None:
        return self._roles.get(message_id)

    def is_pending(self, message_id: str) -> bool:
        return message_id in self._pending_ids

    def signals(self) -> PhaseSignals:
        return PhaseSignals(
            creating_session=self.creating_session,
            loading_session=self.loading_session,
            has_active_session=bool(self.session_id),
            connection_state=self.connection_state,
            awaiting_approval=any(t.state is ToolState.APPROVAL_REQUESTED for t in self.tools),
            active_tool_count=len(self.tools),
            session_status=self.session_status,
            is_streaming=self.streaming,
            has_pending_user_message=self.timeline.has_pending("user"),
            awaiting_response=self.awaiting_response or self.sending,
            last_completion=self.last_completion,
        )

    @property
    def phase(self) -> ActivityPhase:
        return derive_phase(self.signals())

    @property
    def phase_meta(self) -> PhaseMeta:
        signals = self.signals()
        return describe_phase(derive_phase(signals), signals, self.tools, self.last_event_at)

    # ── Subscribers ──────────────────────────────────────────────

    def subscribe(self, callback: Callable[["ConversationReconciler"], None]) -> Callable[[], None]:
        """Call ``callback`` after every state change. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self)
            except Exception:
                logger.exception("Subscriber %r failed", callback)
