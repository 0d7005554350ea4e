"""Tests for span_engine.locked - pinned spans across edits and relabels."""
from __future__ import annotations

import logging

import pytest

from span_engine.canonical_text import CanonicalText
from span_engine.locked import LockedSpan, LockedSpanRegistry, merge_locked
from span_engine.settings import EngineSettings
from span_engine.spans import Span, build_span

PROMPT = "Moody portrait, soft window light, shallow depth of field"


def _span(text: CanonicalText, quote: str, category: str, source: str = "draft") -> Span:
    start = text.find_all(quote)[0]
    span = build_span(text, start, start + len(quote), category, 0.8, source=source)  # type: ignore[arg-type]
    assert span is not None
    return span


@pytest.fixture
def prompt() -> CanonicalText:
    return CanonicalText.build(PROMPT)


# ───────────────────── registry basics ────────────────────────────────


class TestRegistryBasics:
    def test_add_marks_locked(self, prompt: CanonicalText) -> None:
        reg = LockedSpanRegistry()
        entry = reg.add_locked_span(_span(prompt, "soft window light", "lighting"), text=prompt)
        assert isinstance(entry, LockedSpan)
        assert entry.span.source == "locked"
        assert entry.misses == 0
        assert len(reg) == 1

    def test_relock_same_fingerprint_refreshes(self, prompt: CanonicalText) -> None:
        reg = LockedSpanRegistry()
        span = _span(prompt, "soft window light", "lighting")
        reg.add_locked_span(span, locked_at="2024-01-01T00:00:00+00:00")
        reg.add_locked_span(span, locked_at="2024-02-01T00:00:00+00:00")
        assert len(reg) == 1
        assert reg.entries()[0].locked_at == "2024-02-01T00:00:00+00:00"

    def test_is_span_locked_ignores_offsets(self, prompt: CanonicalText) -> None:
        reg = LockedSpanRegistry()
        reg.add_locked_span(_span(prompt, "soft window light", "lighting"))
        other = CanonicalText.build("Wide shot. Soft window light on a face")
        assert reg.is_span_locked(_span(other, "Soft window light", "lighting"))
        assert not reg.is_span_locked(_span(other, "Soft window light", "style"))

    def test_remove_by_id_fingerprint_or_span(self, prompt: CanonicalText) -> None:
        reg = LockedSpanRegistry()
        a = _span(prompt, "soft window light", "lighting")
        b = _span(prompt, "shallow depth of field", "lens")
        c = _span(prompt, "Moody portrait", "style")
        for span in (a, b, c):
            reg.add_locked_span(span)
        assert a.span_id in reg
        assert reg.remove_locked_span(a.span_id) is True
        assert reg.remove_locked_span(b.fingerprint) is True
        assert reg.remove_locked_span(c) is True
        assert reg.remove_locked_span(a.span_id) is False
        assert len(reg) == 0

    def test_get_and_clear(self, prompt: CanonicalText) -> None:
        reg = LockedSpanRegistry()
        span = _span(prompt, "soft window light", "lighting")
        reg.add_locked_span(span)
        found = reg.get(span.span_id)
        assert found is not None and found.fingerprint == span.fingerprint
        reg.clear()
        assert reg.get(span.span_id) is None
        assert len(reg) == 0


# ───────────────────── resolve_all ────────────────────────────────────


class TestResolveAll:
    def test_survives_edit_before_span(self, prompt: CanonicalText) -> None:
        reg = LockedSpanRegistry()
        span = _span(prompt, "soft window light", "lighting")
        reg.add_locked_span(span, text=prompt)
        edited = CanonicalText.build("Dramatic. " + PROMPT)
        resolved = reg.resolve_all(edited)
        assert len(resolved) == 1
        assert resolved[0].start == span.start + 10
        assert resolved[0].quote == "soft window light"
        assert resolved[0].span_id == span.span_id
        assert resolved[0].source == "locked"

    def test_results_ordered_by_position(self, prompt: CanonicalText) -> None:
        reg = LockedSpanRegistry()
        reg.add_locked_span(_span(prompt, "shallow depth of field", "lens"), text=prompt)
        reg.add_locked_span(_span(prompt, "Moody portrait", "style"), text=prompt)
        resolved = reg.resolve_all(prompt)
        assert [s.quote for s in resolved] == ["Moody portrait", "shallow depth of field"]

    def test_eviction_after_consecutive_misses(self, prompt: CanonicalText) -> None:
        reg = LockedSpanRegistry(EngineSettings(locked_eviction_misses=2))
        reg.add_locked_span(_span(prompt, "soft window light", "lighting"), text=prompt)

        assert reg.resolve_all(CanonicalText.build("A beach at noon")) == []
        assert reg.entries()[0].misses == 1
        assert reg.resolve_all(CanonicalText.build("A forest at night")) == []
        assert len(reg) == 0

    def test_same_snapshot_counts_one_miss(self, prompt: CanonicalText) -> None:
        reg = LockedSpanRegistry(EngineSettings(locked_eviction_misses=2))
        reg.add_locked_span(_span(prompt, "soft window light", "lighting"), text=prompt)
        gone = CanonicalText.build("A beach at noon")
        reg.resolve_all(gone)
        reg.resolve_all(gone)
        reg.resolve_all(gone)
        assert len(reg) == 1
        assert reg.entries()[0].misses == 1

    def test_success_resets_misses(self, prompt: CanonicalText) -> None:
        reg = LockedSpanRegistry(EngineSettings(locked_eviction_misses=2))
        reg.add_locked_span(_span(prompt, "soft window light", "lighting"), text=prompt)
        reg.resolve_all(CanonicalText.build("A beach at noon"))
        assert len(reg.resolve_all(prompt)) == 1
        assert reg.entries()[0].misses == 0
        reg.resolve_all(CanonicalText.build("A forest at night"))
        assert len(reg) == 1

    def test_none_threshold_never_evicts(self, prompt: CanonicalText) -> None:
        reg = LockedSpanRegistry(EngineSettings(locked_eviction_misses=None))
        reg.add_locked_span(_span(prompt, "soft window light", "lighting"), text=prompt)
        for i in range(6):
            reg.resolve_all(CanonicalText.build(f"unrelated prompt number {i}"))
        assert len(reg) == 1
        assert reg.entries()[0].misses == 6

    def test_eviction_is_logged(self, prompt: CanonicalText, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.DEBUG, logger="span_engine.locked")
        reg = LockedSpanRegistry(EngineSettings(locked_eviction_misses=1))
        reg.add_locked_span(_span(prompt, "soft window light", "lighting"), text=prompt)
        reg.resolve_all(CanonicalText.build("A beach at noon"))
        assert any("Evicted locked span" in rec.message for rec in caplog.records)


# ───────────────────── persistence ────────────────────────────────────


class TestPersistence:
    def test_records_round_trip(self, prompt: CanonicalText) -> None:
        reg = LockedSpanRegistry()
        span = _span(prompt, "soft window light", "lighting")
        reg.add_locked_span(span, locked_at="2024-01-01T00:00:00+00:00")
        records = reg.to_records()
        assert records[0]["source"] == "locked"
        assert records[0]["locked_at"] == "2024-01-01T00:00:00+00:00"

        restored = LockedSpanRegistry()
        assert restored.load_records(records, text=prompt) == 1
        assert restored.is_span_locked(span)
        assert restored.resolve_all(prompt)[0].span_id == span.span_id

    def test_from_dict_defaults(self) -> None:
        entry = LockedSpan.from_dict(
            {"span_id": "span_x", "start": 0, "end": 4, "category": "lens", "quote": "35mm"},
        )
        assert entry.misses == 0
        assert entry.span.confidence == 1.0
        assert entry.span.source == "locked"
        assert entry.locked_at


# ───────────────────── merge_locked ───────────────────────────────────


class TestMergeLocked:
    def test_locked_wins_overlaps(self, prompt: CanonicalText) -> None:
        locked = [_span(prompt, "soft window light", "lighting", source="locked")]
        active = [
            _span(prompt, "window", "lighting"),
            _span(prompt, "Moody portrait", "style"),
            _span(prompt, "shallow depth of field", "lens"),
        ]
        merged = merge_locked(active, locked)
        assert [s.quote for s in merged] == [
            "Moody portrait",
            "soft window light",
            "shallow depth of field",
        ]

    def test_same_fingerprint_elsewhere_is_suppressed(self) -> None:
        text = CanonicalText.build("soft light here and soft light there")
        locked = [_span(text, "soft light", "lighting", source="locked")]
        later = build_span(text, 20, 30, "lighting", 0.9)
        assert later is not None and later.quote == "soft light"
        assert merge_locked([later], locked) == locked

    def test_no_locked_is_passthrough(self, prompt: CanonicalText) -> None:
        active = [_span(prompt, "Moody portrait", "style")]
        assert merge_locked(active, []) == active
