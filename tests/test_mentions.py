"""Tests for @-mention file reference parts."""

from aichat_live.mentions import (
    build_reference_parts,
    file_url,
    is_absolute_path,
    normalize_mention_path,
    resolve_file_path,
)

DIRECTORY = "/Users/testuser/dev/api-server"


class TestPaths:
    def test_normalize(self):
        assert normalize_mention_path(" ./src\\app.py ") == "src/app.py"
        assert normalize_mention_path("././a.py") == "a.py"

    def test_is_absolute(self):
        assert is_absolute_path("/etc/hosts")
        assert is_absolute_path("C:\\Users\\me")
        assert not is_absolute_path("src/app.py")

    def test_resolve_relative(self):
        assert resolve_file_path(DIRECTORY + "/", "./src/app.py") == f"{DIRECTORY}/src/app.py"

    def test_resolve_absolute_kept(self):
        assert resolve_file_path(DIRECTORY, "/tmp/notes.md") == "/tmp/notes.md"

    def test_resolve_windows_base(self):
        assert resolve_file_path("C:\\work", "src\\a.py") == "C:\\work\\src\\a.py"

    def test_resolve_without_base(self):
        assert resolve_file_path("", "a.py") == "a.py"

    def test_file_url(self):
        assert file_url("/tmp/my notes.md") == "file:///tmp/my%20notes.md"
        assert file_url("C:\\work\\a.py") == "file:///C%3A/work/a.py"


class TestReferenceParts:
    def test_text_only_without_mentions(self):
        assert build_reference_parts("hello @a.py", [], DIRECTORY) == [{"type": "text", "text": "hello @a.py"}]

    def test_text_only_without_directory(self):
        assert len(build_reference_parts("hello @a.py", ["a.py"], None)) == 1

    def test_selected_mention_attached(self):
        text = "review @src/app.py please"
        parts = build_reference_parts(text, ["src/app.py"], DIRECTORY)
        assert len(parts) == 2
        file_part = parts[1]
        assert file_part["type"] == "file"
        assert file_part["mime"] == "text/plain"
        assert file_part["filename"] == "app.py"
        assert file_part["url"] == f"file://{DIRECTORY}/src/app.py"
        assert file_part["source"]["text"] == {"value": "@src/app.py", "start": 7, "end": 18}

    def test_unselected_tokens_ignored(self):
        parts = build_reference_parts("ping @alice about @a.py", ["a.py"], DIRECTORY)
        assert [p.get("filename") for p in parts[1:]] == ["a.py"]

    def test_each_selection_consumed_once(self):
        text = "@a.py and again @a.py"
        assert len(build_reference_parts(text, ["a.py"], DIRECTORY)) == 2
        assert len(build_reference_parts(text, ["a.py", "./a.py"], DIRECTORY)) == 3
