"""Tests for the part store and the delta merge rule."""

from aichat_live.core import PartUpdate
from aichat_live.events import PartUpdated
from aichat_live.parts import PartStore, resolve_text


def _update(message_id="msg_1", part_id="prt_1", delta=None, **fields):
    return PartUpdated("ses_1", message_id, part_id, PartUpdate(**fields), delta)


class TestResolveText:
    def test_no_delta_takes_text(self):
        assert resolve_text("old", "new", None) == "new"

    def test_delta_only_appends(self):
        assert resolve_text("Hel", None, "lo") == "Hello"

    def test_unchanged_text_appends(self):
        assert resolve_text("Hel", "Hel", "lo") == "Hello"

    def test_stale_shorter_text_appends(self):
        assert resolve_text("Hello", "He", " world") == "Hello world"

    def test_full_text_trusted(self):
        assert resolve_text("Hel", "Hello", "lo") == "Hello"

    def test_first_delta_on_empty_part(self):
        assert resolve_text(None, None, "Hi") == "Hi"


class TestPartStore:
    def test_deltas_accumulate(self):
        store = PartStore()
        store.apply(_update(type="text", delta="Hel"))
        store.apply(_update(delta="lo"))
        store.apply(_update(delta=" world"))
        assert store.text_of("msg_1", "prt_1") == "Hello world"

    def test_duplicate_full_updates_are_idempotent(self):
        store = PartStore()
        store.apply(_update(type="text", text="Hello"))
        first = store.get("msg_1", "prt_1")
        store.apply(_update(type="text", text="Hello"))
        assert store.get("msg_1", "prt_1") == first
        assert len(store) == 1

    def test_absent_fields_keep_previous_values(self):
        store = PartStore()
        store.apply(_update(type="tool", tool="bash", status="running", input={"command": "ls"}))
        snapshot = store.apply(_update(status="completed", output="ok"))
        assert snapshot.tool == "bash"
        assert snapshot.input == {"command": "ls"}
        assert snapshot.status == "completed"
        assert snapshot.output == "ok"

    def test_parts_for_message(self):
        store = PartStore()
        store.apply(_update(part_id="prt_1", type="text", text="a"))
        store.apply(_update(part_id="prt_2", type="reasoning", text="b"))
        store.apply(_update(message_id="msg_2", part_id="prt_3", type="text", text="c"))
        assert [p.id for p in store.parts_for("msg_1")] == ["prt_1", "prt_2"]
        assert store.parts_for("msg_missing") == []
        assert len(store) == 3

    def test_remove_last_part_drops_message(self):
        store = PartStore()
        store.apply(_update(type="text", text="a"))
        assert store.remove_part("msg_1", "prt_1") is True
        assert not store.has_message("msg_1")
        assert store.remove_part("msg_1", "prt_1") is False

    def test_remove_message(self):
        store = PartStore()
        store.apply(_update(type="text", text="a"))
        assert store.remove_message("msg_1") is True
        assert store.remove_message("msg_1") is False
        assert list(store) == []

    def test_clear(self):
        store = PartStore()
        store.apply(_update(type="text", text="a"))
        store.clear()
        assert len(store) == 0
