"""Export a live transcript to Markdown and JSON formats."""

import json

from .core import ChatMessage, ToolActivity


def message_to_dict(msg: ChatMessage) -> dict:
    """Convert a ChatMessage to a JSON-serializable dict."""
    return {
        "id": msg.id,
        "role": msg.role,
        "text": msg.text,
        "timestamp": msg.timestamp.isoformat() if msg.timestamp else None,
        "pending": msg.pending,
    }


def tool_to_dict(tool: ToolActivity) -> dict:
    return {
        "id": tool.id,
        "message_id": tool.message_id,
        "name": tool.name,
        "state": tool.state.value,
    }


def transcript_to_markdown(session_id: str, messages: list[ChatMessage], directory: str = "") -> str:
    """Export a transcript as clean Markdown."""
    lines = [f"# Session {session_id}", ""]

    if directory:
        lines.append(f"**Project:** {directory}")
    lines.append(f"**Messages:** {len(messages)}")
    lines.extend(["", "---", ""])

    for msg in messages:
        role_label = msg.role.capitalize()
        ts = ""
        if msg.timestamp:
            ts = f" ({msg.timestamp.strftime('%Y-%m-%d %H:%M')})"
        pending = " _(sending)_" if msg.pending else ""
        lines.append(f"## {role_label}{ts}{pending}")
        lines.append("")
        lines.append(msg.text)
        lines.extend(["", "---", ""])

    return "\n".join(lines)


def transcript_to_json(
    session_id: str,
    messages: list[ChatMessage],
    tools: list[ToolActivity] | None = None,
    directory: str = "",
) -> str:
    """Export a transcript and its running tools as structured JSON."""
    data = {
        "session": {
            "id": session_id,
            "project_path": directory,
            "message_count": len(messages),
        },
        "messages": [message_to_dict(msg) for msg in messages],
        "tools": [tool_to_dict(tool) for tool in tools or []],
    }
    return json.dumps(data, indent=2, ensure_ascii=False)
