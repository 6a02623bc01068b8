"""Run one reconciler against one live transport."""

import asyncio
import logging

from .provider import EventTransport, TransportError
from .reconciler import ConversationReconciler

logger = logging.getLogger(__name__)


class LiveSession:
    """Pumps transport events into a reconciler and carries outbound sends.

    The reconciler never retries on its own; reconnecting after a stream
    failure follows the transport's ``reconnect_delay`` policy.
    """

    def __init__(self, transport: EventTransport, reconciler: ConversationReconciler):
        self.transport = transport
        self.reconciler = reconciler
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._pump())

    async def stop(self) -> None:
        """Abort the stream, apply what is buffered, then clear the session state."""
        await self._halt()
        self.reconciler.close()

    async def switch_session(self, session_id: str | None, load_history: bool = True) -> None:
        await self._halt()
        self.reconciler.switch_session(session_id)
        if session_id and load_history:
            await self.load_history()
        self.start()

    async def load_history(self) -> bool:
        session_id = self.reconciler.session_id
        if not session_id:
            return False
        self.reconciler.loading_session = True
        try:
            items = await self.transport.fetch_messages(session_id)
        except TransportError as e:
            logger.error("Failed to load history for %s: %s", session_id, e)
            self.reconciler.error = f"Failed to load session: {e}"
            return False
        finally:
            self.reconciler.loading_session = False
        self.reconciler.load_history(items)
        return True

    async def send(
        self,
        text: str,
        model: str | None = None,
        mentions: list[str] | None = None,
        system: str | None = None,
    ) -> str:
        """Send a prompt; returns the local message id.

        Raises ReconcilerError/ValueError when the send is rejected up front.
        Any failure of the request itself, cancellation included, rolls the
        optimistic message back before propagating.
        """
        request = self.reconciler.begin_send(text, model=model, mentions=mentions, system=system)
        try:
            await self.transport.send_message(request)
        except BaseException as e:
            self.reconciler.send_failed(request.message_id, e)
            raise
        self.reconciler.send_succeeded(request.message_id)
        return request.message_id

    async def _halt(self) -> None:
        # Cancel the pump first so a deliberate stop is not seen as a lost stream.
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.transport.abort()

    async def _pump(self) -> None:
        attempt = 0
        while True:
            try:
                async for raw in self.transport.stream():
                    attempt = 0
                    self.reconciler.feed(raw)
                detail = "Event stream ended"
            except TransportError as e:
                detail = str(e)
            except Exception as e:
                logger.exception("Event pump failed")
                detail = f"Event stream failed: {e}"
            logger.warning("Event stream lost: %s", detail)
            self.reconciler.connection_lost(detail)

            attempt += 1
            delay = self.transport.reconnect_delay(attempt)
            if delay is None:
                logger.error("Giving up on event stream after %d attempts", attempt - 1)
                return
            await asyncio.sleep(delay)
