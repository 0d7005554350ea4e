"""Tests for span_engine.conflicts - conflict and harmonization markers."""
from __future__ import annotations

import itertools

from span_engine.conflicts import (
    DEFAULT_HINT_MESSAGE,
    ConflictRecord,
    HarmonizationHint,
    conflict_state_by_span,
    detect,
)
from span_engine.spans import Span


def _s(span_id: str, quote: str, category: str, start: int = 0) -> Span:
    return Span(
        span_id=span_id,
        start=start,
        end=start + len(quote),
        category=category,
        confidence=0.9,
        quote=quote,
    )


MOONLIT = _s("s1", "moonlit", "time_of_day", 0)
MIDDAY = _s("s2", "harsh midday sunlight", "lighting_source", 21)
PORTRAIT = _s("s3", "portrait", "framing", 50)


# ───────────────────── value rules ────────────────────────────────────


class TestValueRules:
    def test_night_vs_daylight(self) -> None:
        records = detect([MOONLIT, MIDDAY, PORTRAIT])
        assert records == [
            ConflictRecord(
                span_ids=("s1", "s2"),
                kind="conflict",
                message="Night-time setting contradicts daylight lighting",
                rule="night_vs_daylight",
            ),
        ]

    def test_order_independent(self) -> None:
        spans = [MOONLIT, MIDDAY, PORTRAIT]
        expected = detect(spans)
        for perm in itertools.permutations(spans):
            assert detect(list(perm)) == expected

    def test_empty_and_single(self) -> None:
        assert detect([]) == []
        assert detect([MOONLIT]) == []

    def test_static_vs_dolly(self) -> None:
        records = detect([_s("a", "static shot", "camera"), _s("b", "slow dolly in", "camera_move", 20)])
        assert [r.rule for r in records] == ["static_vs_moving_camera"]

    def test_terms_match_whole_words_only(self) -> None:
        records = detect([_s("a", "static shot", "camera"), _s("b", "sweeping panorama", "framing", 20)])
        assert records == []

    def test_category_gate(self) -> None:
        records = detect([_s("a", "night owl", "subject"), _s("b", "sunlight", "lighting", 20)])
        assert records == []

    def test_golden_hour_vs_fluorescent_is_harmonization(self) -> None:
        records = detect([
            _s("a", "golden hour glow", "lighting"),
            _s("b", "fluorescent tubes", "lighting_source", 30),
        ])
        assert len(records) == 1
        assert records[0].kind == "harmonization"
        assert records[0].rule == "golden_hour_vs_artificial"

    def test_cross_category_harmonization(self) -> None:
        records = detect([_s("a", "fisheye lens", "lens"), _s("b", "extreme close-up", "framing", 20)])
        assert [r.rule for r in records] == ["wide_lens_vs_close_framing"]


# ───────────────────── single-value categories ────────────────────────


class TestSingleValue:
    def test_two_frame_rates_conflict(self) -> None:
        records = detect([_s("a", "24fps", "frame_rate"), _s("b", "60 fps", "fps", 20)])
        assert len(records) == 1
        assert records[0].kind == "conflict"
        assert records[0].rule == "single_value:frame_rate"

    def test_same_value_repeated_is_not_a_conflict(self) -> None:
        records = detect([_s("a", "16:9", "aspect_ratio"), _s("b", "16:9", "aspectRatio", 40)])
        assert records == []

    def test_free_form_category_allows_many(self) -> None:
        records = detect([_s("a", "red coat", "wardrobe"), _s("b", "blue hat", "wardrobe", 20)])
        assert records == []

    def test_duplicate_ids_counted_once(self) -> None:
        assert detect([MOONLIT, MOONLIT, MIDDAY]) == detect([MOONLIT, MIDDAY])


# ───────────────────── hints ──────────────────────────────────────────


class TestHints:
    def test_hint_adds_harmonization(self) -> None:
        records = detect([MIDDAY, PORTRAIT], [{"spanIds": ["s3", "s2"], "message": "Tone mismatch"}])
        assert records == [
            ConflictRecord(
                span_ids=("s2", "s3"), kind="harmonization", message="Tone mismatch", rule="hint",
            ),
        ]

    def test_unknown_ids_are_ignored(self) -> None:
        assert detect([MIDDAY], [["nope"]]) == []
        records = detect([MIDDAY], [["nope", "s2"]])
        assert [r.span_ids for r in records] == [("s2",)]

    def test_conflict_outranks_hint_on_same_pair(self) -> None:
        records = detect([MOONLIT, MIDDAY], [HarmonizationHint(span_ids=("s2", "s1"))])
        assert len(records) == 1
        assert records[0].kind == "conflict"

    def test_coerce_forms(self) -> None:
        assert HarmonizationHint.coerce("s1").span_ids == ("s1",)
        assert HarmonizationHint.coerce({"span_ids": "s2"}).span_ids == ("s2",)
        assert HarmonizationHint.coerce(["s1", "s2"]).message == DEFAULT_HINT_MESSAGE

    def test_conflicts_sorted_before_harmonizations(self) -> None:
        records = detect([MOONLIT, MIDDAY, PORTRAIT], [["s3"]])
        assert [r.kind for r in records] == ["conflict", "harmonization"]


# ───────────────────── conflict_state_by_span ─────────────────────────


class TestConflictState:
    def test_strongest_marker_wins(self) -> None:
        records = detect([MOONLIT, MIDDAY, PORTRAIT], [["s2", "s3"]])
        assert conflict_state_by_span(records) == {
            "s1": "conflict",
            "s2": "conflict",
            "s3": "harmonization",
        }

    def test_as_dict(self) -> None:
        record = detect([MOONLIT, MIDDAY])[0]
        assert record.as_dict()["span_ids"] == ["s1", "s2"]
