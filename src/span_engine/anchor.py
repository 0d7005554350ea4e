"""Span re-anchoring against an edited text snapshot.

Pure functions of (span, previous text, current text). Search order:

1. Projected fast path: shift the old offsets through the unchanged
   prefix/suffix of the two snapshots and check the quote is still there.
2. Windowed search around the last known offset. Exact occurrences first
   (ranked by context), then fuzzy candidates of similar length. The radius
   grows geometrically up to a cap.
3. One full-text pass with the same two stages.
4. Otherwise the span is reported ``unanchored``; the caller decides
   whether to hide or drop it.

Ties among equally good candidates go to the higher context score, then the
candidate nearest the last known position, then the earliest. This is a
heuristic: a quote repeated with near-identical context can be mis-located.
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from typing import Literal, TypeAlias

from span_engine.canonical_text import CanonicalText, canonical_units, canonicalize
from span_engine.fuzzy import FuzzyMatcher, fuzzy_matcher, max_edit_distance
from span_engine.settings import EngineSettings
from span_engine.spans import Span, move_span

AnchorStatus: TypeAlias = Literal["unchanged", "shifted", "relocated", "fuzzy", "unanchored"]

DEFAULT_CONTEXT_CAP = 80
MAX_LENGTH_SLACK = 3  # candidate windows differ from the quote by at most this many units


@dataclass(frozen=True, slots=True)
class AnchorResult:
    """Outcome of relocating one span."""

    span: Span
    status: AnchorStatus
    confidence: float
    distance: int | None = None

    @property
    def anchored(self) -> bool:
        return self.status != "unanchored"

    def as_dict(self) -> dict[str, object]:
        return {
            "span": self.span.as_dict(),
            "status": self.status,
            "confidence": self.confidence,
            "distance": self.distance,
        }


# ---------------------------------------------------------------------------
# Edit projection
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class EditProjection:
    """Single-region diff between two snapshots.

    Units before ``prefix`` are unchanged; units at or after
    ``old_suffix_start`` in the old text moved by ``delta``.
    """

    prefix: int
    old_suffix_start: int
    delta: int
    new_length: int

    @classmethod
    def between(cls, previous: CanonicalText, current: CanonicalText) -> EditProjection:
        old = previous.units
        new = current.units
        limit = min(len(old), len(new))
        prefix = 0
        while prefix < limit and old[prefix] == new[prefix]:
            prefix += 1
        suffix = 0
        max_suffix = limit - prefix
        while suffix < max_suffix and old[len(old) - 1 - suffix] == new[len(new) - 1 - suffix]:
            suffix += 1
        return cls(
            prefix=prefix,
            old_suffix_start=len(old) - suffix,
            delta=len(new) - len(old),
            new_length=len(new),
        )

    @property
    def is_identity(self) -> bool:
        return self.delta == 0 and self.prefix >= self.old_suffix_start

    def project(self, offset: int) -> int:
        """Best estimate of where old *offset* sits in the new text."""
        if offset < self.prefix:
            return offset
        if offset >= self.old_suffix_start:
            return max(0, min(self.new_length, offset + self.delta))
        return max(0, min(self.new_length, offset))


def project_offset(previous: CanonicalText, current: CanonicalText, offset: int) -> int:
    return EditProjection.between(previous, current).project(offset)


# ---------------------------------------------------------------------------
# Exact relocation with context disambiguation
# ---------------------------------------------------------------------------

def context_score(
    text: CanonicalText,
    start: int,
    end: int,
    left_ctx: str | Sequence[str],
    right_ctx: str | Sequence[str],
    *,
    cap: int = DEFAULT_CONTEXT_CAP,
) -> int:
    """Count graphemes that agree walking outward from ``[start, end)``.

    Each side stops at the first mismatch or after *cap* graphemes.
    """
    left = canonical_units(left_ctx) if isinstance(left_ctx, str) else tuple(left_ctx)
    right = canonical_units(right_ctx) if isinstance(right_ctx, str) else tuple(right_ctx)
    units = text.units
    score = 0
    for i in range(1, min(cap, len(left), start) + 1):
        if left[-i] != units[start - i]:
            break
        score += 1
    for i in range(min(cap, len(right), len(units) - end)):
        if right[i] != units[end + i]:
            break
        score += 1
    return score


def relocate_quote(
    text: CanonicalText,
    quote: str,
    *,
    left_ctx: str = "",
    right_ctx: str = "",
    prefer_index: int | None = None,
    context_cap: int = DEFAULT_CONTEXT_CAP,
    search_start: int = 0,
    search_end: int | None = None,
) -> tuple[int, int] | None:
    """Locate an exact occurrence of *quote* in *text*.

    Args:
        text: Snapshot to search.
        quote: Text to find; canonicalized, compared case-sensitively.
        left_ctx: Text expected immediately before the quote.
        right_ctx: Text expected immediately after the quote.
        prefer_index: Tie-break anchor (usually the last known start).
        context_cap: Max graphemes compared on each side.
        search_start: First canonical index an occurrence may start at.
        search_end: Canonical index occurrences must end by.

    Returns:
        ``(start, end)`` canonical offsets, or None if the quote does not
        occur in the searched range.
    """
    qlen = len(canonical_units(quote))
    if qlen == 0:
        return None
    hits = text.find_all(quote, search_start, search_end)
    if not hits:
        return None
    left = canonical_units(left_ctx)
    right = canonical_units(right_ctx)

    def _rank(pos: int) -> tuple[int, int, int]:
        score = context_score(text, pos, pos + qlen, left, right, cap=context_cap)
        nearness = abs(pos - prefer_index) if prefer_index is not None else 0
        return (-score, nearness, pos)

    best = min(hits, key=_rank)
    return (best, best + qlen)


# ---------------------------------------------------------------------------
# SpanAnchor
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class _Candidate:
    start: int
    end: int
    distance: int
    confidence: float


class SpanAnchor:
    """Relocates spans computed against an older snapshot."""

    def __init__(
        self,
        settings: EngineSettings | None = None,
        matcher: FuzzyMatcher | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.matcher = matcher or fuzzy_matcher

    def relocate(
        self,
        span: Span,
        current: CanonicalText,
        previous: CanonicalText | None = None,
        *,
        projection: EditProjection | None = None,
    ) -> AnchorResult:
        """Relocate *span* into *current*. Never raises for bad matches."""
        quote = canonicalize(span.quote)
        qlen = len(canonical_units(quote))
        if qlen == 0 or len(current) == 0:
            return self._unanchored(span)

        if projection is None and previous is not None:
            projection = EditProjection.between(previous, current)
        prefer = projection.project(span.start) if projection is not None else span.start
        if current.slice(prefer, prefer + qlen) == quote:
            return AnchorResult(
                span=move_span(span, current, prefer, prefer + qlen, settings=self.settings),
                status="unchanged" if prefer == span.start else "shifted",
                confidence=1.0,
                distance=0,
            )

        cfg = self.settings
        radius = max(1, cfg.anchor_radius)
        covered_all = False
        while True:
            lo = max(0, prefer - radius)
            hi = min(len(current), prefer + qlen + radius)
            covered_all = lo == 0 and hi == len(current)
            found = self._search(span, quote, qlen, current, prefer, lo, hi)
            if found is not None:
                return found
            if covered_all or radius >= cfg.anchor_radius_cap:
                break
            radius = min(cfg.anchor_radius_cap, radius * cfg.anchor_growth)

        if not covered_all:
            found = self._search(span, quote, qlen, current, prefer, 0, len(current))
            if found is not None:
                return found
        return self._unanchored(span)

    def relocate_all(
        self,
        spans: Iterable[Span],
        current: CanonicalText,
        previous: CanonicalText | None = None,
    ) -> list[AnchorResult]:
        """Relocate many spans against the same pair of snapshots."""
        projection = EditProjection.between(previous, current) if previous is not None else None
        return [self.relocate(span, current, projection=projection) for span in spans]

    # -- internals ----------------------------------------------------------

    def _unanchored(self, span: Span) -> AnchorResult:
        return AnchorResult(span=replace(span, stale=True), status="unanchored", confidence=0.0)

    def _search(
        self,
        span: Span,
        quote: str,
        qlen: int,
        text: CanonicalText,
        prefer: int,
        lo: int,
        hi: int,
    ) -> AnchorResult | None:
        exact = relocate_quote(
            text,
            quote,
            left_ctx=span.left_ctx,
            right_ctx=span.right_ctx,
            prefer_index=prefer,
            context_cap=self.settings.context_score_cap,
            search_start=lo,
            search_end=hi,
        )
        if exact is not None:
            start, end = exact
            return AnchorResult(
                span=move_span(span, text, start, end, settings=self.settings),
                status="relocated",
                confidence=1.0,
                distance=0,
            )
        fuzzy = self._fuzzy_candidate(span, quote, qlen, text, prefer, lo, hi)
        if fuzzy is None:
            return None
        return AnchorResult(
            span=move_span(
                span, text, fuzzy.start, fuzzy.end, settings=self.settings, keep_quote=False,
            ),
            status="fuzzy",
            confidence=fuzzy.confidence,
            distance=fuzzy.distance,
        )

    def _fuzzy_candidate(
        self,
        span: Span,
        quote: str,
        qlen: int,
        text: CanonicalText,
        prefer: int,
        lo: int,
        hi: int,
    ) -> _Candidate | None:
        slack = min(MAX_LENGTH_SLACK, max_edit_distance(len(quote)))
        if slack == 0:
            return None
        ranges: list[tuple[int, int]] = []
        windows: list[str] = []
        for length in range(max(1, qlen - slack), qlen + slack + 1):
            for pos in range(lo, hi - length + 1):
                window = text.slice(pos, pos + length)
                # Windows bordered by whitespace would match on their stripped form.
                if not window or window != window.strip():
                    continue
                ranges.append((pos, pos + length))
                windows.append(window)
        if not ranges:
            return None
        # Nearest first so find_best_match's first-wins rule favours proximity.
        pairs = sorted(
            zip(ranges, windows),
            key=lambda p: (abs(p[0][0] - prefer), p[0][0], abs((p[0][1] - p[0][0]) - qlen)),
        )
        ranges = [rng for rng, _ in pairs]
        windows = [window for _, window in pairs]
        best = self.matcher.find_best_match(quote, windows)
        if best.match is None or not best.is_good_match or best.distance is None:
            return None

        keyed = quote.strip().lower()
        tied = [
            rng for rng, window in zip(ranges, windows)
            if self.matcher.levenshtein_distance(keyed, window.lower(), max_distance=best.distance)
            == best.distance
        ] or [ranges[best.index]]
        cap = self.settings.context_score_cap
        left = canonical_units(span.left_ctx)
        right = canonical_units(span.right_ctx)
        start, end = min(
            tied,
            key=lambda r: (
                -context_score(text, r[0], r[1], left, right, cap=cap),
                abs(r[0] - prefer),
                r[0],
            ),
        )
        return _Candidate(start=start, end=end, distance=best.distance, confidence=best.confidence)
