"""Highlight engine facade consumed by the editor surface.

Owns the current ``CanonicalText`` snapshot, the source selector, the
locked-span registry and the request tracker. All methods are synchronous
except ``label``, which awaits an external labeler. The engine never raises
on degraded input: bad labeling records are dropped, spans that cannot be
re-anchored are hidden (or dropped by policy), and stale responses are
ignored.

Typical flow::

    engine = HighlightEngine()
    engine.update_text(raw)
    token = engine.begin_labeling()
    ...                                # await the labeling service
    engine.apply_labeling(token, payload)
    rendered = engine.render()
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal, TypeAlias

from span_engine.anchor import SpanAnchor
from span_engine.canonical_text import CanonicalText
from span_engine.conflicts import (
    ConflictKind,
    ConflictRecord,
    HarmonizationHint,
    conflict_state_by_span,
    detect,
)
from span_engine.fuzzy import FuzzyMatcher, fuzzy_matcher
from span_engine.locked import LockedSpan, LockedSpanRegistry, merge_locked
from span_engine.requests import (
    LabelingCache,
    LabelRequestTracker,
    Labeler,
    RequestSource,
    RequestToken,
    fetch_labels,
)
from span_engine.settings import EngineSettings
from span_engine.source_selector import HighlightSourceSelector, HighlightSourceState
from span_engine.spans import Span, SpanDropRecord, parse_labeling_response

log = logging.getLogger(__name__)

LockState: TypeAlias = Literal["locked", "unlocked"]

HintInput: TypeAlias = HarmonizationHint | Mapping[str, Any] | Sequence[str] | str


@dataclass(frozen=True, slots=True)
class RenderedSpan:
    """One highlight for the editor surface, in raw offsets."""

    span_id: str
    start: int
    end: int
    category: str
    confidence: float
    source: str
    lock_state: LockState
    conflict_state: ConflictKind | None
    quote: str
    canonical_start: int
    canonical_end: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "span_id": self.span_id,
            "start": self.start,
            "end": self.end,
            "category": self.category,
            "confidence": self.confidence,
            "source": self.source,
            "lock_state": self.lock_state,
            "conflict_state": self.conflict_state,
            "quote": self.quote,
            "canonical_start": self.canonical_start,
            "canonical_end": self.canonical_end,
        }


@dataclass(frozen=True, slots=True)
class ApplyResult:
    """What happened to one labeling response."""

    applied: bool
    reason: str  # applied | stale | rejected | error | cache-fallback
    spans: tuple[Span, ...] = ()
    dropped: tuple[SpanDropRecord, ...] = ()
    unanchored: tuple[Span, ...] = ()


class HighlightEngine:
    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        matcher: FuzzyMatcher | None = None,
        text: str = "",
        cache: LabelingCache | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.anchor = SpanAnchor(self.settings, matcher or fuzzy_matcher)
        self.registry = LockedSpanRegistry(self.settings, self.anchor)
        self.selector = HighlightSourceSelector()
        self.tracker = LabelRequestTracker()
        self.cache = cache if cache is not None else LabelingCache()
        self.text = self._build(text)
        self._hidden: tuple[Span, ...] = ()
        self._locked: list[Span] = []

    def _build(self, raw: str | None) -> CanonicalText:
        return CanonicalText.build(raw, offset_unit=self.settings.offset_unit)

    # -- text ---------------------------------------------------------------

    def update_text(self, raw: str | None) -> CanonicalText:
        """Install a new snapshot and re-anchor everything shown."""
        new = self._build(raw)
        previous = self.text
        self.text = new
        if new.signature == previous.signature:
            return new

        self.selector.on_prompt_changed()
        # Hidden spans only come back into the set they were hidden from.
        source = self.selector.active_source
        retry = [span for span in self._hidden if span.source == source]
        kept, hidden = self._reanchor(list(self.selector.active_spans) + retry, new, previous)
        self.selector.replace_active(kept)
        self._hidden = hidden
        self._locked = self.registry.resolve_all(new)
        return new

    def _reanchor(
        self,
        spans: Iterable[Span],
        current: CanonicalText,
        previous: CanonicalText | None,
    ) -> tuple[tuple[Span, ...], tuple[Span, ...]]:
        kept: list[Span] = []
        hidden: list[Span] = []
        for result in self.anchor.relocate_all(spans, current, previous):
            if result.anchored:
                kept.append(result.span)
            elif self.settings.unanchored_policy == "hide":
                hidden.append(result.span)
            else:
                log.debug("Dropped unanchored span %s (%r)", result.span.span_id, result.span.quote)
        kept.sort(key=lambda s: (s.start, s.end, s.category))
        return tuple(kept), tuple(hidden)

    # -- labeling -----------------------------------------------------------

    def begin_labeling(self, source: RequestSource = "draft") -> RequestToken:
        """Issue a token for a labeling request over the current snapshot."""
        if source == "refined":
            return self.start_refine()
        return self.tracker.issue(self.text, "draft")

    def start_refine(self) -> RequestToken:
        transition = self.selector.on_refine_started()
        if not transition.accepted:
            log.debug("Refine started from state %s; selector unchanged", transition.previous)
        return self.tracker.issue(self.text, "refined")

    def apply_labeling(
        self,
        token: RequestToken,
        payload: Mapping[str, Any] | list[Any] | None,
        *,
        source: RequestSource | None = None,
    ) -> ApplyResult:
        """Merge a labeling response issued under *token*.

        Stale tokens are ignored. Offsets are read against the snapshot the
        request was issued for and re-anchored onto the current text.
        """
        if not self.tracker.is_current(token):
            log.debug("Discarding stale labeling response (generation %d)", token.generation)
            return ApplyResult(applied=False, reason="stale")

        src = source or token.source
        parsed = parse_labeling_response(payload, token.text, source=src, settings=self.settings)
        for drop in parsed.dropped:
            log.debug("Dropped labeling record %d: %s (%s)", drop.index, drop.code, drop.message)

        kept, hidden = self._reanchor(parsed.spans, self.text, token.text)
        if src == "refined":
            transition = self.selector.on_refine_completed(kept)
        else:
            transition = self.selector.on_draft_ready(kept)
        if not transition.accepted:
            log.debug("Selector rejected %s in state %s", transition.event, transition.previous)
            return ApplyResult(
                applied=False, reason="rejected", dropped=parsed.dropped, unanchored=hidden,
            )
        self._hidden = hidden
        return ApplyResult(
            applied=True,
            reason="applied",
            spans=kept,
            dropped=parsed.dropped,
            unanchored=hidden,
        )

    async def label(
        self,
        labeler: Labeler,
        *,
        source: RequestSource = "draft",
        policy: Mapping[str, Any] | None = None,
        use_cache: bool = True,
    ) -> ApplyResult:
        """Request labels for the current text and apply them if still wanted."""
        token = self.begin_labeling(source)
        result = await fetch_labels(
            labeler,
            token.text,
            tracker=self.tracker,
            cache=self.cache,
            policy=policy,
            use_cache=use_cache,
            token=token,
        )
        if not result.usable:
            return ApplyResult(applied=False, reason=result.outcome)
        applied = self.apply_labeling(token, result.payload)
        if applied.applied and result.outcome == "cache-fallback":
            return ApplyResult(
                applied=True,
                reason="cache-fallback",
                spans=applied.spans,
                dropped=applied.dropped,
                unanchored=applied.unanchored,
            )
        return applied

    # -- locking ------------------------------------------------------------

    def find_span(self, span_id: str) -> Span | None:
        for span in self.visible_spans():
            if span.span_id == span_id:
                return span
        return None

    def lock_span(self, span_id: str) -> LockedSpan | None:
        """Pin a visible span. Returns None if *span_id* is not shown."""
        span = self.find_span(span_id)
        if span is None:
            return None
        entry = self.registry.add_locked_span(span, text=self.text)
        self._locked = self.registry.resolve_all(self.text)
        return entry

    def unlock_span(self, span_id: str) -> bool:
        removed = self.registry.remove_locked_span(span_id)
        if removed:
            self._locked = self.registry.resolve_all(self.text)
        return removed

    def is_span_locked(self, span: Span) -> bool:
        return self.registry.is_span_locked(span)

    def load_locked(self, records: Iterable[Mapping[str, Any]]) -> int:
        """Restore persisted locked spans and resolve them against the text."""
        count = self.registry.load_records(records, text=self.text)
        self._locked = self.registry.resolve_all(self.text)
        return count

    # -- views --------------------------------------------------------------

    @property
    def hidden_spans(self) -> tuple[Span, ...]:
        return self._hidden

    def source_state(self) -> HighlightSourceState:
        return self.selector.snapshot()

    def visible_spans(self) -> list[Span]:
        return merge_locked(self.selector.active_spans, self._locked)

    def conflicts(self, harmonization_hints: Iterable[HintInput] = ()) -> list[ConflictRecord]:
        return detect(self.visible_spans(), harmonization_hints)

    def render(self, harmonization_hints: Iterable[HintInput] = ()) -> list[RenderedSpan]:
        """Ordered highlight list in raw offsets for the editor surface."""
        spans = self.visible_spans()
        states = conflict_state_by_span(detect(spans, harmonization_hints))
        rendered: list[RenderedSpan] = []
        for span in spans:
            raw_start, raw_end = self.text.to_raw_range(span.start, span.end)
            locked = span.source == "locked" or self.registry.is_span_locked(span)
            rendered.append(RenderedSpan(
                span_id=span.span_id,
                start=raw_start,
                end=raw_end,
                category=span.category,
                confidence=span.confidence,
                source=span.source,
                lock_state="locked" if locked else "unlocked",
                conflict_state=states.get(span.span_id),
                quote=span.quote,
                canonical_start=span.start,
                canonical_end=span.end,
            ))
        rendered.sort(key=lambda r: (r.start, r.end, r.span_id))
        return rendered

    # -- editor surface offset translation ----------------------------------

    def to_canonical_range(self, raw_start: int, raw_end: int) -> tuple[int, int]:
        return self.text.to_canonical_range(raw_start, raw_end)

    def to_raw_range(self, start: int, end: int) -> tuple[int, int]:
        return self.text.to_raw_range(start, end)
