"""FastAPI server exposing the reconciled live session."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import Response, StreamingResponse
from pydantic import BaseModel

from .backends import get_transport
from .config import get_directory, get_flush_window, get_model, get_server_url, get_session_id
from .export import message_to_dict, tool_to_dict, transcript_to_json, transcript_to_markdown
from .provider import SendError
from .reconciler import ConversationReconciler, NoActiveSessionError, PendingMessageError
from .session import LiveSession

logger = logging.getLogger(__name__)

# Live session cache (populated on first request)
_live: LiveSession | None = None


def _get_live() -> LiveSession:
    """Lazily build and cache the live session from the environment."""
    global _live
    if _live is None:
        directory = get_directory()
        transport = get_transport(base_url=get_server_url(), directory=directory)
        reconciler = ConversationReconciler(get_session_id(), directory, window=get_flush_window())
        _live = LiveSession(transport, reconciler)
        logger.info("Watching %s for session %s", directory, reconciler.session_id)
    return _live


@asynccontextmanager
async def lifespan(app: FastAPI):
    live = _get_live()
    if live.reconciler.session_id:
        await live.load_history()
    live.start()
    yield
    await live.stop()
    await live.transport.aclose()


app = FastAPI(title="aichat-live", version="0.1.0", lifespan=lifespan)


class SendBody(BaseModel):
    text: str
    model: str | None = None
    mentions: list[str] = []
    system: str | None = None


def _state_to_dict(reconciler: ConversationReconciler) -> dict:
    """Convert the reconciler's current state to a JSON-serializable dict."""
    meta = reconciler.phase_meta
    status = reconciler.session_status
    return {
        "session_id": reconciler.session_id,
        "directory": reconciler.directory,
        "phase": meta.phase.value,
        "status": {
            "label": meta.label,
            "title": meta.title,
            "description": meta.description,
            "is_active": meta.is_active,
        },
        "connection": reconciler.connection_state.value,
        "session_status": {
            "type": status.kind,
            "attempt": status.attempt,
            "message": status.message,
            "next": status.next_attempt_at.isoformat() if status.next_attempt_at else None,
        } if status else None,
        "streaming_message_id": reconciler.streaming_message_id,
        "error": reconciler.error,
        "messages": [message_to_dict(m) for m in reconciler.messages],
        "tools": [tool_to_dict(t) for t in reconciler.tools],
        "last_event_at": reconciler.last_event_at.isoformat() if reconciler.last_event_at else None,
    }


def _format_sse(data: dict) -> str:
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


# ── Routes ───────────────────────────────────────────────────────


@app.get("/api/state")
async def get_state():
    """Return messages, tool activity and the current activity phase."""
    return _state_to_dict(_get_live().reconciler)


@app.get("/api/messages")
async def get_messages():
    reconciler = _get_live().reconciler
    return {
        "session_id": reconciler.session_id,
        "messages": [message_to_dict(m) for m in reconciler.messages],
    }


@app.get("/api/tools")
async def get_tools():
    return [tool_to_dict(t) for t in _get_live().reconciler.tools]


@app.post("/api/send", status_code=202)
async def send_message(body: SendBody):
    """Queue a prompt. The reply arrives through the event stream."""
    live = _get_live()
    try:
        message_id = await live.send(
            body.text,
            model=body.model or get_model(),
            mentions=body.mentions,
            system=body.system,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NoActiveSessionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PendingMessageError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SendError as e:
        logger.error("Failed to send message: %s", e)
        raise HTTPException(status_code=502, detail=f"Failed to send message: {e}")
    return {"message_id": message_id}


@app.post("/api/session/{session_id}")
async def switch_session(session_id: str):
    """Make ``session_id`` the active session, dropping all state of the old one."""
    live = _get_live()
    await live.switch_session(session_id)
    return _state_to_dict(live.reconciler)


@app.get("/api/export")
async def export_transcript(
    format: str = Query("md", description="Export format: md or json"),
):
    """Export the current transcript as Markdown or JSON."""
    reconciler = _get_live().reconciler
    if not reconciler.session_id:
        raise HTTPException(status_code=404, detail="No active session")

    session_id = reconciler.session_id
    safe_title = "".join(c if c.isalnum() or c in "-_ " else "" for c in session_id)[:50]

    if format == "json":
        content = transcript_to_json(session_id, reconciler.messages, reconciler.tools,
                                     reconciler.directory or "")
        return Response(
            content=content,
            media_type="application/json",
            headers={"Content-Disposition": f'attachment; filename="{safe_title}.json"'},
        )
    else:
        content = transcript_to_markdown(session_id, reconciler.messages, reconciler.directory or "")
        return Response(
            content=content,
            media_type="text/markdown",
            headers={"Content-Disposition": f'attachment; filename="{safe_title}.md"'},
        )


@app.get("/api/stream")
async def stream_state():
    """Server-sent events: one state snapshot per applied batch."""
    return StreamingResponse(state_events(_get_live().reconciler), media_type="text/event-stream")


async def state_events(reconciler: ConversationReconciler):
    """Yield the current state, then the newest state after each change.

    A slow reader skips intermediate snapshots rather than queueing them.
    """
    changed = asyncio.Event()
    unsubscribe = reconciler.subscribe(lambda _: changed.set())
    try:
        yield _format_sse(_state_to_dict(reconciler))
        while True:
            await changed.wait()
            changed.clear()
            yield _format_sse(_state_to_dict(reconciler))
    finally:
        unsubscribe()
