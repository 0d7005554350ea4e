"""Grapheme-stable text addressing with a raw <-> canonical offset map.

A ``CanonicalText`` is an immutable snapshot of the user-visible text. Every
extended grapheme cluster becomes exactly one addressable *unit*, so an
emoji ZWJ sequence or a base letter plus combining marks occupies a single
canonical index. Units are canonicalized for matching:

- NFC normalization (``e`` + U+0301 and U+00E9 compare equal)
- line breaks (``\\r\\n``, ``\\r``, U+2028, ...) become ``"\\n"``
- any other whitespace becomes ``" "``

The raw text is kept verbatim. Raw offsets are counted in code points by
default or in UTF-16 code units (what browser editor surfaces report).

The offset map is a monotonic array ``raw_starts`` of length ``n + 1``:
``raw_starts[i]`` is the raw offset where unit ``i`` begins and
``raw_starts[n]`` is the raw length. ``to_raw`` and ``to_canonical`` are
inverses at every raw offset that falls on a grapheme boundary; offsets
inside a cluster snap to its start (or its end with ``round_up``), and
out-of-range offsets clamp instead of raising.
"""
from __future__ import annotations

import bisect
import hashlib
import unicodedata
from dataclasses import dataclass

import regex

_GRAPHEME_RE = regex.compile(r"\X")

_LINE_BREAKS: frozenset[str] = frozenset({
    "\n", "\r", "\r\n", "\v", "\f", "\x1c", "\x1d", "\x1e", "\x85", "\u2028", "\u2029",
})


def _segment(text: str, *, segment_graphemes: bool) -> list[str]:
    if not text:
        return []
    if segment_graphemes:
        return _GRAPHEME_RE.findall(text)
    return list(text)


def canonicalize_unit(segment: str) -> str:
    """Canonical form of a single grapheme cluster."""
    if segment in _LINE_BREAKS:
        return "\n"
    if segment.isspace():
        return " "
    return unicodedata.normalize("NFC", segment)


def canonical_units(text: str, *, segment_graphemes: bool = True) -> tuple[str, ...]:
    """Split *text* into canonical units (one per grapheme cluster)."""
    return tuple(
        canonicalize_unit(seg)
        for seg in _segment(text or "", segment_graphemes=segment_graphemes)
    )


def canonicalize(text: str) -> str:
    """Canonical string for *text* (the form used for all matching)."""
    return "".join(canonical_units(text))


def _unit_width(segment: str, offset_unit: str) -> int:
    if offset_unit == "utf16":
        return len(segment.encode("utf-16-le")) // 2
    return len(segment)


@dataclass(frozen=True, slots=True)
class Grapheme:
    """One addressable unit of a ``CanonicalText``."""

    index: int
    segment: str     # raw grapheme cluster, verbatim
    canonical: str   # canonicalized form
    raw_start: int
    raw_end: int


@dataclass(frozen=True, slots=True)
class CanonicalText:
    """Immutable canonical snapshot of one version of the raw text."""

    raw_text: str
    segments: tuple[str, ...]
    units: tuple[str, ...]
    raw_starts: tuple[int, ...]
    char_starts: tuple[int, ...]   # offsets of each unit inside canonical_string
    canonical_string: str
    signature: str
    offset_unit: str = "codepoint"

    @classmethod
    def build(
        cls,
        raw_text: str | None,
        *,
        segment_graphemes: bool = True,
        offset_unit: str = "codepoint",
    ) -> CanonicalText:
        """Build a snapshot from the live raw text. Deterministic and pure."""
        if offset_unit not in ("codepoint", "utf16"):
            raise ValueError(f"Unknown offset unit: {offset_unit!r}")
        raw = raw_text if isinstance(raw_text, str) else ""
        segments = _segment(raw, segment_graphemes=segment_graphemes)
        units: list[str] = []
        raw_starts: list[int] = []
        char_starts: list[int] = []
        raw_pos = 0
        char_pos = 0
        for seg in segments:
            unit = canonicalize_unit(seg)
            units.append(unit)
            raw_starts.append(raw_pos)
            char_starts.append(char_pos)
            raw_pos += _unit_width(seg, offset_unit)
            char_pos += len(unit)
        raw_starts.append(raw_pos)
        char_starts.append(char_pos)
        canonical_string = "".join(units)
        signature = hashlib.sha256(canonical_string.encode("utf-8")).hexdigest()[:16]
        return cls(
            raw_text=raw,
            segments=tuple(segments),
            units=tuple(units),
            raw_starts=tuple(raw_starts),
            char_starts=tuple(char_starts),
            canonical_string=canonical_string,
            signature=signature,
            offset_unit=offset_unit,
        )

    # -- size ---------------------------------------------------------------

    @property
    def length(self) -> int:
        """Number of canonical units (grapheme clusters)."""
        return len(self.units)

    def __len__(self) -> int:
        return len(self.units)

    @property
    def raw_length(self) -> int:
        return self.raw_starts[-1]

    @property
    def graphemes(self) -> tuple[Grapheme, ...]:
        return tuple(
            Grapheme(
                index=i,
                segment=self.segments[i],
                canonical=self.units[i],
                raw_start=self.raw_starts[i],
                raw_end=self.raw_starts[i + 1],
            )
            for i in range(len(self.units))
        )

    # -- offset map ---------------------------------------------------------

    def clamp(self, canonical_offset: int) -> int:
        return max(0, min(len(self.units), int(canonical_offset)))

    def to_raw(self, canonical_offset: int) -> int:
        """Raw offset where canonical unit *canonical_offset* begins."""
        return self.raw_starts[self.clamp(canonical_offset)]

    def to_canonical(self, raw_offset: int, *, round_up: bool = False) -> int:
        """Canonical index of the unit containing *raw_offset*.

        Offsets inside a grapheme cluster snap to the cluster start, or to
        the next boundary when *round_up* is set (use it for range ends).
        """
        raw = max(0, min(self.raw_length, int(raw_offset)))
        idx = bisect.bisect_right(self.raw_starts, raw) - 1
        if round_up and self.raw_starts[idx] != raw:
            idx += 1
        return max(0, min(len(self.units), idx))

    def is_raw_boundary(self, raw_offset: int) -> bool:
        pos = bisect.bisect_left(self.raw_starts, raw_offset)
        return pos < len(self.raw_starts) and self.raw_starts[pos] == raw_offset

    def to_canonical_range(self, raw_start: int, raw_end: int) -> tuple[int, int]:
        """Translate a raw selection range to canonical offsets."""
        start = self.to_canonical(raw_start)
        end = self.to_canonical(raw_end, round_up=True)
        return (start, max(start, end))

    def to_raw_range(self, start: int, end: int) -> tuple[int, int]:
        """Translate a canonical range to raw offsets."""
        raw_start = self.to_raw(start)
        return (raw_start, max(raw_start, self.to_raw(end)))

    # -- content ------------------------------------------------------------

    def slice(self, start: int, end: int) -> str:
        """Canonical text of units ``[start, end)``; empty when inverted."""
        start = self.clamp(start)
        end = self.clamp(end)
        if end <= start:
            return ""
        return self.canonical_string[self.char_starts[start]:self.char_starts[end]]

    def raw_slice(self, start: int, end: int) -> str:
        """Verbatim raw text of units ``[start, end)``."""
        start = self.clamp(start)
        end = self.clamp(end)
        if end <= start:
            return ""
        return "".join(self.segments[start:end])

    def find_all(self, needle: str, start: int = 0, end: int | None = None) -> list[int]:
        """Canonical start indices of exact occurrences of *needle*.

        *needle* is canonicalized first. Matches must begin and end on unit
        boundaries; overlapping occurrences are all reported.
        """
        target = canonicalize(needle)
        if not target:
            return []
        lo = self.clamp(start)
        hi = len(self.units) if end is None else self.clamp(end)
        if hi <= lo:
            return []
        char_lo = self.char_starts[lo]
        char_hi = self.char_starts[hi]
        hits: list[int] = []
        pos = self.canonical_string.find(target, char_lo, char_hi)
        while pos >= 0:
            unit_idx = bisect.bisect_left(self.char_starts, pos)
            unit_end = bisect.bisect_left(self.char_starts, pos + len(target))
            if (
                unit_idx < len(self.char_starts)
                and self.char_starts[unit_idx] == pos
                and self.char_starts[unit_end] == pos + len(target)
            ):
                hits.append(unit_idx)
            pos = self.canonical_string.find(target, pos + 1, char_hi)
        return hits

    def unit_length(self, text: str) -> int:
        """Number of canonical units *text* would occupy."""
        return len(canonical_units(text))

    def as_dict(self) -> dict[str, object]:
        return {
            "raw_text": self.raw_text,
            "canonical_string": self.canonical_string,
            "length": len(self.units),
            "signature": self.signature,
            "offset_unit": self.offset_unit,
        }
