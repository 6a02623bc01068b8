"""Shared test fixtures for aichat-live."""

import itertools

import pytest

from aichat_live.provider import EventTransport, SendError
from aichat_live.reconciler import ConversationReconciler

SESSION = "ses_001"
DIRECTORY = "/Users/testuser/dev/api-server"


@pytest.fixture
def part_event():
    """Build a raw ``message.part.updated`` envelope."""

    def build(message_id, part_id, *, delta=None, session_id=SESSION, **fields):
        part = {"sessionID": session_id, "messageID": message_id, "id": part_id, "type": "text"}
        part.update(fields)
        props = {"part": part}
        if delta is not None:
            props["delta"] = delta
        return {"type": "message.part.updated", "properties": props}

    return build


@pytest.fixture
def message_event():
    """Build a raw ``message.updated`` envelope."""

    def build(message_id, role=None, *, created=None, completed=None, session_id=SESSION):
        info = {"id": message_id, "sessionID": session_id, "time": {}}
        if role:
            info["role"] = role
        if created is not None:
            info["time"]["created"] = created
        if completed is not None:
            info["time"]["completed"] = completed
        return {"type": "message.updated", "properties": {"info": info}}

    return build


@pytest.fixture
def status_event():
    def build(status_type, session_id=SESSION, **extra):
        status = {"type": status_type, **extra}
        return {"type": "session.status", "properties": {"sessionID": session_id, "status": status}}

    return build


@pytest.fixture
def connected_event():
    return {"type": "server.connected", "properties": {}}


@pytest.fixture
def idle_event():
    return {"type": "session.idle", "properties": {"sessionID": SESSION}}


@pytest.fixture
def local_ids():
    """Deterministic local message ids: msg_0001_local, msg_0002_local, ..."""
    counter = itertools.count(1)
    return lambda: f"msg_{next(counter):04d}_local"


@pytest.fixture
def reconciler(local_ids):
    return ConversationReconciler(SESSION, DIRECTORY, id_factory=local_ids)


@pytest.fixture
def connected(reconciler, connected_event):
    """A reconciler that has seen the server handshake."""
    reconciler.feed(connected_event)
    reconciler.flush()
    return reconciler


class FakeTransport(EventTransport):
    """In-memory transport: replays queued batches of raw events."""

    name = "fake"

    def __init__(self, batches=None, history=None, fail_send=False):
        self.batches = list(batches or [])
        self.history = list(history or [])
        self.fail_send = fail_send
        self.sent = []
        self.aborted = 0
        self.attempts = 0

    async def stream(self):
        self.attempts += 1
        if not self.batches:
            return
        for raw in self.batches.pop(0):
            yield raw

    async def abort(self):
        self.aborted += 1

    async def send_message(self, request):
        if self.fail_send:
            raise SendError("connection refused")
        self.sent.append(request)
        return {}

    async def fetch_messages(self, session_id):
        return self.history

    def reconnect_delay(self, attempt):
        return None if attempt > 1 else 0


@pytest.fixture
def make_transport():
    return FakeTransport
