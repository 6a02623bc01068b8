"""Build the structured parts sent along with a prompt.

A prompt is sent as one text part, followed by a file part for every
``@path`` token in the text that refers to a file the user picked.
"""

import re
import urllib.parse
from collections import Counter
from typing import Any

_TOKEN = re.compile(r"@(\S+)")
_WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:[\\/]")


def normalize_mention_path(value: str) -> str:
    normalized = value.strip().replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def is_absolute_path(value: str) -> bool:
    return value.startswith("/") or bool(_WINDOWS_DRIVE.match(value))


def resolve_file_path(base: str, relative: str) -> str:
    cleaned = re.sub(r"^\.[\\/]", "", relative)
    if is_absolute_path(cleaned):
        return cleaned
    base = base.rstrip("\\/")
    cleaned = cleaned.lstrip("\\/")
    if not base:
        return cleaned
    separator = "\\" if "\\" in base else "/"
    return f"{base}{separator}{cleaned}"


def file_url(path: str) -> str:
    normalized = path.replace("\\", "/")
    if re.match(r"^[A-Za-z]:", normalized):
        normalized = "/" + normalized
    encoded = "/".join(urllib.parse.quote(segment, safe="") for segment in normalized.split("/"))
    return f"file://{encoded}"


def _filename(value: str) -> str:
    trimmed = value.replace("\\", "/").rstrip("/")
    return trimmed.rsplit("/", 1)[-1] or value


def build_reference_parts(
    text: str,
    mentions: list[str],
    directory: str | None,
) -> list[dict[str, Any]]:
    """Return the text part plus one file part per matched ``@`` mention.

    Each selected mention is consumed once, so ``@a.py ... @a.py`` needs
    ``a.py`` selected twice to attach it twice.
    """
    parts: list[dict[str, Any]] = [{"type": "text", "text": text}]
    if not directory or not mentions:
        return parts

    remaining = Counter(normalize_mention_path(m) for m in mentions)
    for match in _TOKEN.finditer(text):
        raw_path = normalize_mention_path(match.group(1))
        if remaining[raw_path] <= 0:
            continue
        remaining[raw_path] -= 1

        absolute = resolve_file_path(directory, raw_path)
        token = match.group(0)
        parts.append({
            "type": "file",
            "mime": "text/plain",
            "url": file_url(absolute),
            "filename": _filename(raw_path),
            "source": {
                "type": "file",
                "path": absolute,
                "text": {
                    "value": token,
                    "start": match.start(),
                    "end": match.start() + len(token),
                },
            },
        })
    return parts
