"""Tests for export functionality."""

import json
from datetime import datetime, timezone

import pytest

from aichat_live.core import ChatMessage, ToolActivity, ToolState
from aichat_live.export import message_to_dict, tool_to_dict, transcript_to_json, transcript_to_markdown


@pytest.fixture
def sample_messages():
    return [
        ChatMessage(
            id="msg_0001",
            role="user",
            text="Fix the login bug in auth.ts",
            timestamp=datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc),
        ),
        ChatMessage(
            id="msg_0002",
            role="assistant",
            text="I'll fix the authentication bug. Here's the change:\n\n```typescript\nconst token = await validateToken(input);\n```",
            timestamp=datetime(2025, 1, 15, 10, 0, 30, tzinfo=timezone.utc),
        ),
        ChatMessage(
            id="msg_0003_local",
            role="user",
            text="Thanks, now add a test",
            timestamp=datetime(2025, 1, 15, 10, 1, 0, tzinfo=timezone.utc),
            pending=True,
        ),
    ]


@pytest.fixture
def sample_tools():
    return [ToolActivity("prt_9", "msg_0002", "bash", ToolState.INPUT_AVAILABLE)]


class TestMarkdownExport:
    def test_has_header(self, sample_messages):
        md = transcript_to_markdown("ses_001", sample_messages, "/Users/test/dev/myapp")
        assert md.startswith("# Session ses_001")
        assert "**Project:** /Users/test/dev/myapp" in md
        assert "**Messages:** 3" in md

    def test_has_messages(self, sample_messages):
        md = transcript_to_markdown("ses_001", sample_messages)
        assert "## User (2025-01-15 10:00)" in md
        assert "## Assistant (2025-01-15 10:00)" in md
        assert "Fix the login bug" in md
        assert "```typescript" in md

    def test_marks_pending_messages(self, sample_messages):
        md = transcript_to_markdown("ses_001", sample_messages)
        assert "## User (2025-01-15 10:01) _(sending)_" in md

    def test_without_directory(self, sample_messages):
        assert "**Project:**" not in transcript_to_markdown("ses_001", sample_messages)

    def test_empty(self):
        md = transcript_to_markdown("ses_001", [])
        assert "**Messages:** 0" in md


class TestJsonExport:
    def test_valid_json(self, sample_messages, sample_tools):
        data = json.loads(transcript_to_json("ses_001", sample_messages, sample_tools, "/Users/test/dev/myapp"))
        assert data["session"] == {
            "id": "ses_001",
            "project_path": "/Users/test/dev/myapp",
            "message_count": 3,
        }
        assert len(data["messages"]) == 3
        assert data["tools"] == [{
            "id": "prt_9",
            "message_id": "msg_0002",
            "name": "bash",
            "state": "input-available",
        }]

    def test_message_fields(self, sample_messages):
        data = json.loads(transcript_to_json("ses_001", sample_messages))
        first = data["messages"][0]
        assert first == {
            "id": "msg_0001",
            "role": "user",
            "text": "Fix the login bug in auth.ts",
            "timestamp": "2025-01-15T10:00:00+00:00",
            "pending": False,
        }
        assert data["messages"][2]["pending"] is True
        assert data["tools"] == []

    def test_dict_helpers(self, sample_messages, sample_tools):
        assert message_to_dict(sample_messages[1])["role"] == "assistant"
        assert tool_to_dict(sample_tools[0])["state"] == "input-available"
