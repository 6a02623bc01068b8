"""Locally generated, lexicographically sortable message ids.

Layout (30 chars): ``msg_`` + 12 hex digits + 14 base62 characters.
The hex block is ``timestamp_ms * 0x1000 + counter`` packed into 6 bytes,
matching the ids the opencode server assigns, so a locally created message
sorts correctly against the server's messages.
"""

import secrets
import threading
import time

PREFIX = "msg"
RANDOM_LENGTH = 14
_COUNTER_LIMIT = 0x1000
_BASE62 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"


class MessageIdGenerator:
    """Produces strictly increasing ids from one process."""

    def __init__(self, clock=time.time, prefix: str = PREFIX):
        self._clock = clock
        self._prefix = prefix
        self._last_ms = 0
        self._counter = 0
        self._lock = threading.Lock()

    def __call__(self) -> str:
        return self.new_id()

    def new_id(self) -> str:
        with self._lock:
            now_ms = int(self._clock() * 1000)
            if now_ms > self._last_ms:
                self._last_ms = now_ms
                self._counter = 0
            self._counter += 1
            if self._counter >= _COUNTER_LIMIT:
                # Counter exhausted for this millisecond; borrow the next one.
                self._last_ms += 1
                self._counter = 1
            stamp = self._last_ms * _COUNTER_LIMIT + self._counter

        time_hex = (stamp & 0xFFFFFFFFFFFF).to_bytes(6, "big").hex()
        return f"{self._prefix}_{time_hex}{_random_base62(RANDOM_LENGTH)}"


def _random_base62(length: int) -> str:
    return "".join(secrets.choice(_BASE62) for _ in range(length))


_default = MessageIdGenerator()


def new_message_id() -> str:
    return _default.new_id()
