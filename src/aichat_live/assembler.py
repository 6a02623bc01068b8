"""Derive a message's display text and role from its parts."""

from collections.abc import Iterable

from .core import PartSnapshot


def build_message_text(parts: Iterable[PartSnapshot], role: str | None) -> str:
    """Return the text to display for a message.

    Assistant text is a moving value: the last text part in part order wins.
    For user messages the longest text part wins, so a short echo part never
    replaces what the user actually typed.
    """
    text_parts = sorted(
        (p for p in parts if p.type == "text" and p.text is not None and not p.hidden),
        key=PartSnapshot.sort_key,
    )
    if not text_parts:
        return ""
    if role == "assistant":
        return text_parts[-1].text or ""

    longest = text_parts[0]
    for part in text_parts:
        if len(part.text or "") > len(longest.text or ""):
            longest = part
    return longest.text or ""


def resolve_role(
    part: PartSnapshot,
    cached: str | None = None,
    is_pending_local: bool = False,
) -> str | None:
    """Resolve the owning message's role, or None while it is still unknown.

    A cached role is final: the first role seen for a message sticks.
    """
    if cached:
        return cached
    if part.role:
        return part.role
    if is_pending_local:
        return "user"
    if part.kind in ("text", "reasoning", "tool"):
        return "assistant"
    return None


def is_renderable_assistant_part(part: PartSnapshot) -> bool:
    """Tool calls in any state and non-empty reasoning render without text."""
    if part.hidden:
        return False
    if part.is_tool:
        return True
    return part.type == "reasoning" and bool((part.text or "").strip())


def is_visible(text: str, role: str | None, parts: Iterable[PartSnapshot]) -> bool:
    """Whether a message with this text and these parts belongs in the timeline."""
    if role is None:
        return False
    if text:
        return True
    return role == "assistant" and any(is_renderable_assistant_part(p) for p in parts)
