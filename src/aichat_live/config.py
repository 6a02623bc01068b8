"""Environment-driven settings for aichat-live."""

import logging
import os

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "http://127.0.0.1:4096"
DEFAULT_FLUSH_MS = 16.0
DEFAULT_RECONNECT_DELAY = 1.0
DEFAULT_RECONNECT_MAX_DELAY = 30.0


def get_server_url() -> str:
    """Return the base URL of the opencode server."""
    return os.environ.get("AICHAT_LIVE_SERVER_URL") or DEFAULT_SERVER_URL


def get_directory() -> str:
    """Return the working directory the event stream is scoped to."""
    return os.environ.get("AICHAT_LIVE_DIRECTORY") or os.getcwd()


def get_session_id() -> str | None:
    return os.environ.get("AICHAT_LIVE_SESSION") or None


def get_model() -> str | None:
    """Return the default model as "provider/model", if configured."""
    return os.environ.get("AICHAT_LIVE_MODEL") or None


def get_flush_window() -> float:
    """Return the coalescing window in seconds."""
    return _float_env("AICHAT_LIVE_FLUSH_MS", DEFAULT_FLUSH_MS) / 1000


def get_reconnect_delay() -> float:
    return _float_env("AICHAT_LIVE_RECONNECT_DELAY", DEFAULT_RECONNECT_DELAY)


def get_reconnect_max_delay() -> float:
    return _float_env("AICHAT_LIVE_RECONNECT_MAX_DELAY", DEFAULT_RECONNECT_MAX_DELAY)


def get_log_level() -> str:
    return (os.environ.get("AICHAT_LIVE_LOG_LEVEL") or "INFO").upper()


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number", name, raw)
        return default
    if value < 0:
        logger.warning("Ignoring %s=%r: negative", name, raw)
        return default
    return value
