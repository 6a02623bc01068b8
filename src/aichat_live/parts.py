"""Per-message part snapshots and the incremental merge rule."""

from collections.abc import Iterator

from .core import PartSnapshot, PartUpdate
from .events import PartUpdated


def resolve_text(previous: str | None, text: str | None, delta: str | None) -> str | None:
    """Apply a streamed delta to a part's accumulated text.

    Some providers stream only deltas, others resend the whole string with
    each delta. Append when the full text is missing, unchanged, or shorter
    than what we already hold (a stale partial); otherwise trust it.
    """
    if delta is None:
        return text
    prev = previous or ""
    if text is None or text == prev or len(text) < len(prev):
        return prev + delta
    return text


class PartStore:
    """Maps message id -> part id -> merged PartSnapshot."""

    def __init__(self):
        self._parts: dict[str, dict[str, PartSnapshot]] = {}

    def apply(self, event: PartUpdated) -> PartSnapshot:
        """Merge a part-updated event into the store and return the new snapshot."""
        by_part = self._parts.setdefault(event.message_id, {})
        existing = by_part.get(event.part_id)
        if existing is None:
            existing = PartSnapshot(id=event.part_id, message_id=event.message_id)

        update = event.update
        if event.delta is not None:
            update = PartUpdate(
                text=resolve_text(existing.text, update.text, event.delta),
            ).merged_over(update)

        snapshot = existing.merge(update)
        by_part[event.part_id] = snapshot
        return snapshot

    def get(self, message_id: str, part_id: str) -> PartSnapshot | None:
        return self._parts.get(message_id, {}).get(part_id)

    def text_of(self, message_id: str, part_id: str) -> str | None:
        part = self.get(message_id, part_id)
        return part.text if part else None

    def parts_for(self, message_id: str) -> list[PartSnapshot]:
        return list(self._parts.get(message_id, {}).values())

    def has_message(self, message_id: str) -> bool:
        return message_id in self._parts

    def remove_part(self, message_id: str, part_id: str) -> bool:
        by_part = self._parts.get(message_id)
        if not by_part or part_id not in by_part:
            return False
        del by_part[part_id]
        if not by_part:
            del self._parts[message_id]
        return True

    def remove_message(self, message_id: str) -> bool:
        return self._parts.pop(message_id, None) is not None

    def clear(self) -> None:
        self._parts.clear()

    def __iter__(self) -> Iterator[PartSnapshot]:
        for by_part in self._parts.values():
            yield from by_part.values()

    def __len__(self) -> int:
        return sum(len(by_part) for by_part in self._parts.values())
