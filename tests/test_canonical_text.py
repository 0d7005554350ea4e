"""Tests for span_engine.canonical_text - grapheme-stable offset mapping."""
from __future__ import annotations

import pytest

from span_engine.canonical_text import CanonicalText, canonical_units, canonicalize

ZWJ_CODER = "\U0001F469\u200d\U0001F4BB"  # woman technologist, 3 code points
E_ACUTE_DECOMPOSED = "e\u0301"


# ───────────────────── build ──────────────────────────────────────────


class TestBuild:
    def test_ascii_is_identity(self) -> None:
        text = CanonicalText.build("hello")
        assert len(text) == 5
        assert text.canonical_string == "hello"
        assert text.raw_starts == (0, 1, 2, 3, 4, 5)

    def test_none_and_non_string_become_empty(self) -> None:
        assert len(CanonicalText.build(None)) == 0
        assert CanonicalText.build(None).raw_starts == (0,)
        assert CanonicalText.build(42).raw_text == ""  # type: ignore[arg-type]

    def test_combining_mark_is_one_unit(self) -> None:
        text = CanonicalText.build(E_ACUTE_DECOMPOSED + "clair")
        assert len(text) == 6
        assert text.raw_length == 7
        assert text.units[0] == "\u00e9"  # NFC

    def test_zwj_emoji_is_one_unit(self) -> None:
        text = CanonicalText.build(ZWJ_CODER + " code")
        assert len(text) == 6
        assert text.units[0] == ZWJ_CODER
        assert text.slice(2, 6) == "code"

    def test_crlf_is_one_newline_unit(self) -> None:
        text = CanonicalText.build("a\r\nb")
        assert text.units == ("a", "\n", "b")
        assert text.raw_starts == (0, 1, 3, 4)
        assert text.raw_slice(1, 2) == "\r\n"

    def test_other_whitespace_canonicalizes_to_space(self) -> None:
        text = CanonicalText.build("a\tb c")
        assert text.canonical_string == "a b c"
        assert text.raw_text == "a\tb c"

    def test_unicode_line_separator_is_newline(self) -> None:
        assert canonicalize("a\u2028b") == "a\nb"

    def test_non_segmenting_fallback(self) -> None:
        text = CanonicalText.build(E_ACUTE_DECOMPOSED, segment_graphemes=False)
        assert len(text) == 2

    def test_invalid_offset_unit_raises(self) -> None:
        with pytest.raises(ValueError, match="offset unit"):
            CanonicalText.build("x", offset_unit="bytes")

    def test_build_is_deterministic(self) -> None:
        a = CanonicalText.build("Soft light - " + ZWJ_CODER)
        b = CanonicalText.build("Soft light - " + ZWJ_CODER)
        assert a == b

    def test_signature_ignores_raw_line_ending_style(self) -> None:
        assert CanonicalText.build("a\r\nb").signature == CanonicalText.build("a\nb").signature
        assert CanonicalText.build("a b").signature != CanonicalText.build("a c").signature

    def test_canonical_units_helper(self) -> None:
        assert canonical_units("ab") == ("a", "b")
        assert canonical_units("") == ()


# ───────────────────── offset map ─────────────────────────────────────


class TestOffsetMap:
    SAMPLES = [
        "plain ascii text",
        E_ACUTE_DECOMPOSED + "clair at dusk",
        ZWJ_CODER + " typing\r\nat night",
        "\U0001F3AC cut \u2028 to black",
        "",
    ]

    @pytest.mark.parametrize("raw", SAMPLES)
    @pytest.mark.parametrize("unit", ["codepoint", "utf16"])
    def test_round_trip_at_every_boundary(self, raw: str, unit: str) -> None:
        text = CanonicalText.build(raw, offset_unit=unit)
        for offset in text.raw_starts:
            assert text.to_raw(text.to_canonical(offset)) == offset

    @pytest.mark.parametrize("raw", SAMPLES)
    def test_canonical_round_trip(self, raw: str) -> None:
        text = CanonicalText.build(raw)
        for idx in range(len(text) + 1):
            assert text.to_canonical(text.to_raw(idx)) == idx

    def test_offsets_inside_cluster_snap(self) -> None:
        text = CanonicalText.build(E_ACUTE_DECOMPOSED + "x")
        assert text.to_canonical(1) == 0
        assert text.to_canonical(1, round_up=True) == 1
        assert text.to_raw(1) == 2
        assert not text.is_raw_boundary(1)
        assert text.is_raw_boundary(2)

    def test_out_of_range_clamps(self) -> None:
        text = CanonicalText.build("abc")
        assert text.to_raw(-5) == 0
        assert text.to_raw(99) == 3
        assert text.to_canonical(-1) == 0
        assert text.to_canonical(99) == 3

    def test_map_is_monotonic(self) -> None:
        text = CanonicalText.build(ZWJ_CODER + E_ACUTE_DECOMPOSED + "\r\nend")
        assert list(text.raw_starts) == sorted(text.raw_starts)
        assert list(text.char_starts) == sorted(text.char_starts)

    def test_utf16_offsets(self) -> None:
        text = CanonicalText.build(ZWJ_CODER + " code", offset_unit="utf16")
        # surrogate pair + ZWJ + surrogate pair
        assert text.to_raw(1) == 5
        assert text.raw_length == 10

    def test_range_translation(self) -> None:
        text = CanonicalText.build(E_ACUTE_DECOMPOSED + "xy")
        assert text.to_canonical_range(1, 2) == (0, 1)
        assert text.to_raw_range(0, 1) == (0, 2)
        assert text.to_raw_range(2, 1) == (3, 3)

    def test_graphemes_view(self) -> None:
        text = CanonicalText.build("a" + ZWJ_CODER)
        g = text.graphemes[1]
        assert g.index == 1
        assert g.segment == ZWJ_CODER
        assert (g.raw_start, g.raw_end) == (1, 4)


# ───────────────────── content ────────────────────────────────────────


class TestContent:
    def test_slice_clamps(self) -> None:
        text = CanonicalText.build("hello world")
        assert text.slice(6, 99) == "world"
        assert text.slice(-3, 5) == "hello"

    def test_slice_inverted_is_empty(self) -> None:
        text = CanonicalText.build("hello")
        assert text.slice(4, 2) == ""
        assert text.raw_slice(4, 2) == ""

    def test_find_all_reports_every_occurrence(self) -> None:
        text = CanonicalText.build("test one test two test three")
        assert text.find_all("test") == [0, 9, 18]
        assert text.find_all("test", 1) == [9, 18]
        assert text.find_all("test", 0, 12) == [0]

    def test_find_all_rejects_partial_clusters(self) -> None:
        text = CanonicalText.build(ZWJ_CODER)
        assert text.find_all("\U0001F469") == []

    def test_find_all_canonicalizes_needle(self) -> None:
        text = CanonicalText.build("caf\u00e9 au lait")
        assert text.find_all("caf" + E_ACUTE_DECOMPOSED) == [0]

    def test_find_all_empty_needle(self) -> None:
        assert CanonicalText.build("abc").find_all("") == []

    def test_as_dict(self) -> None:
        d = CanonicalText.build("a\r\nb").as_dict()
        assert d["canonical_string"] == "a\nb"
        assert d["length"] == 3
        assert d["offset_unit"] == "codepoint"
