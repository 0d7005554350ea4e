"""User-pinned spans that survive relabeling passes and edits.

Entries are keyed by content fingerprint (category + normalized quote), not
by offsets. ``resolve_all`` re-anchors every entry against the current
snapshot and returns the ones that relocate. An entry that fails to
relocate on ``locked_eviction_misses`` consecutive text versions is evicted;
a successful resolution resets its counter.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

from span_engine.anchor import EditProjection, SpanAnchor
from span_engine.canonical_text import CanonicalText
from span_engine.settings import EngineSettings
from span_engine.spans import Span

log = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True, slots=True)
class LockedSpan:
    """A pinned span plus its registry bookkeeping."""

    span: Span
    locked_at: str
    misses: int = 0

    @property
    def fingerprint(self) -> str:
        return self.span.fingerprint

    @property
    def span_id(self) -> str:
        return self.span.span_id

    def as_dict(self) -> dict[str, Any]:
        return {**self.span.as_dict(), "locked_at": self.locked_at, "misses": self.misses}

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> LockedSpan:
        span = Span(
            span_id=str(record["span_id"]),
            start=int(record["start"]),
            end=int(record["end"]),
            category=str(record["category"]),
            confidence=float(record.get("confidence", 1.0)),
            quote=str(record["quote"]),
            left_ctx=str(record.get("left_ctx", "")),
            right_ctx=str(record.get("right_ctx", "")),
            source="locked",
        )
        return cls(
            span=span,
            locked_at=str(record.get("locked_at") or _now()),
            misses=int(record.get("misses", 0)),
        )


class LockedSpanRegistry:
    """Session state of locked spans, keyed by fingerprint."""

    def __init__(
        self,
        settings: EngineSettings | None = None,
        anchor: SpanAnchor | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.anchor = anchor or SpanAnchor(self.settings)
        self._entries: dict[str, LockedSpan] = {}
        self._last_text: CanonicalText | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if isinstance(key, Span):
            return self.is_span_locked(key)
        return isinstance(key, str) and self._key_for(key) is not None

    def entries(self) -> list[LockedSpan]:
        return list(self._entries.values())

    def add_locked_span(
        self,
        span: Span,
        *,
        text: CanonicalText | None = None,
        locked_at: str | None = None,
    ) -> LockedSpan:
        """Pin *span*. Re-locking the same fingerprint refreshes the entry.

        *text* is the snapshot *span* was computed against; it seeds edit
        projection for the next ``resolve_all``.
        """
        entry = LockedSpan(
            span=replace(span, source="locked", stale=False),
            locked_at=locked_at or _now(),
        )
        self._entries[entry.fingerprint] = entry
        if text is not None:
            self._last_text = text
        log.debug("Locked span %s (%s %r)", entry.span_id, entry.span.category, entry.span.quote)
        return entry

    def remove_locked_span(self, key: str | Span) -> bool:
        """Unpin by span id, fingerprint or span. Returns False if absent."""
        if isinstance(key, Span):
            fp = key.fingerprint if key.fingerprint in self._entries else self._key_for(key.span_id)
        else:
            fp = self._key_for(key)
        if fp is None or fp not in self._entries:
            return False
        removed = self._entries.pop(fp)
        log.debug("Unlocked span %s", removed.span_id)
        return True

    def is_span_locked(self, span: Span) -> bool:
        return span.fingerprint in self._entries

    def get(self, key: str) -> LockedSpan | None:
        fp = self._key_for(key)
        return self._entries.get(fp) if fp is not None else None

    def clear(self) -> None:
        self._entries.clear()
        self._last_text = None

    def resolve_all(self, text: CanonicalText) -> list[Span]:
        """Re-anchor every entry against *text*; return those that resolve.

        Misses are counted once per distinct text version, so resolving the
        same snapshot twice does not advance eviction.
        """
        previous = self._last_text
        new_version = previous is None or previous.signature != text.signature
        projection = EditProjection.between(previous, text) if previous is not None else None
        threshold = self.settings.locked_eviction_misses

        resolved: list[Span] = []
        for fp, entry in list(self._entries.items()):
            result = self.anchor.relocate(entry.span, text, projection=projection)
            if result.anchored:
                span = replace(result.span, source="locked")
                self._entries[fp] = replace(entry, span=span, misses=0)
                resolved.append(span)
                continue
            misses = entry.misses + 1 if new_version else entry.misses
            if threshold is not None and misses >= threshold:
                del self._entries[fp]
                log.debug(
                    "Evicted locked span %s after %d failed relocations", entry.span_id, misses,
                )
                continue
            self._entries[fp] = replace(entry, misses=misses)

        self._last_text = text
        resolved.sort(key=lambda s: (s.start, s.end, s.category))
        return resolved

    def to_records(self) -> list[dict[str, Any]]:
        return [entry.as_dict() for entry in self._entries.values()]

    def load_records(
        self,
        records: Iterable[Mapping[str, Any]],
        *,
        text: CanonicalText | None = None,
    ) -> int:
        """Restore entries written by ``to_records``. Returns the count loaded."""
        count = 0
        for record in records:
            entry = LockedSpan.from_dict(record)
            self._entries[entry.fingerprint] = entry
            count += 1
        if text is not None:
            self._last_text = text
        return count

    def _key_for(self, key: str) -> str | None:
        if key in self._entries:
            return key
        for fp, entry in self._entries.items():
            if entry.span_id == key:
                return fp
        return None


def merge_locked(active: Iterable[Span], locked: Iterable[Span]) -> list[Span]:
    """Overlay *locked* on *active*; locked wins overlaps and fingerprints.

    Any draft/refined span that overlaps a locked span or shares its
    fingerprint is removed. The result is ordered by position.
    """
    locked_list = list(locked)
    locked_fps = {s.fingerprint for s in locked_list}
    merged = list(locked_list)
    for span in active:
        if span.fingerprint in locked_fps:
            continue
        if any(span.overlaps(lk) for lk in locked_list):
            continue
        merged.append(span)
    merged.sort(key=lambda s: (s.start, s.end, s.source != "locked", s.category))
    return merged
