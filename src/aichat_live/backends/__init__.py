"""Registry of event transports."""

from ..provider import EventTransport
from .opencode import OpenCodeTransport

_TRANSPORTS: dict[str, type[EventTransport]] = {
    OpenCodeTransport.name: OpenCodeTransport,
}


def get_transport(name: str = "opencode", **kwargs) -> EventTransport:
    """Instantiate the transport registered under ``name``."""
    try:
        transport_class = _TRANSPORTS[name]
    except KeyError:
        raise ValueError(f"Unknown transport: {name}") from None
    return transport_class(**kwargs)
