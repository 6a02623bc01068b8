"""Track tool invocations that are still in flight."""

from collections.abc import Iterable

from .core import ACTIVE_TOOL_STATES, PartSnapshot, ToolActivity, ToolState

_CANONICAL = {state.value: state for state in ToolState}

# opencode's own status vocabulary
_ALIASES = {
    "pending": ToolState.INPUT_STREAMING,
    "running": ToolState.INPUT_AVAILABLE,
    "completed": ToolState.OUTPUT_AVAILABLE,
    "error": ToolState.OUTPUT_ERROR,
}


def resolve_tool_state(part: PartSnapshot) -> ToolState:
    status = part.status
    if status in _CANONICAL:
        return _CANONICAL[status]
    if part.error_text:
        return ToolState.OUTPUT_ERROR
    if part.output is not None:
        return ToolState.OUTPUT_AVAILABLE
    normalized = _ALIASES.get(status, ToolState.INPUT_STREAMING)
    if normalized is ToolState.INPUT_STREAMING and part.input is not None:
        return ToolState.INPUT_AVAILABLE
    return normalized


def is_active_tool(part: PartSnapshot) -> bool:
    return part.is_tool and resolve_tool_state(part) in ACTIVE_TOOL_STATES


def collect_tool_activity(parts: Iterable[PartSnapshot]) -> list[ToolActivity]:
    """Scan every tracked part and list the tools still running."""
    active = []
    for part in parts:
        if not part.is_tool:
            continue
        state = resolve_tool_state(part)
        if state in ACTIVE_TOOL_STATES:
            active.append(ToolActivity(
                id=part.id,
                message_id=part.message_id,
                name=part.label,
                state=state,
            ))
    return active
