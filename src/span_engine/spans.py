"""Span data model, content fingerprints, and labeling-response parsing.

Identity is content based. ``span_fingerprint(category, quote)`` hashes the
normalized category and quote and survives offset drift; it is what the
locked-span registry keys on. ``span_id`` adds a coarse position bucket so
repeated quotes in different places get distinct ids. The id is assigned
when a labeling pass creates the span and is carried unchanged through
re-anchoring.

Parsing never raises on bad records. Each rejected record becomes a
``SpanDropRecord`` and the rest of the batch is processed.
"""
from __future__ import annotations

import hashlib
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Literal, TypeAlias

from span_engine.canonical_text import CanonicalText, canonicalize
from span_engine.settings import EngineSettings
from span_engine.taxonomy import normalize_category

SpanSource: TypeAlias = Literal["draft", "refined", "locked"]

ALL_SOURCES: frozenset[str] = frozenset({"draft", "refined", "locked"})

_WS_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

def normalize_quote(quote: str) -> str:
    """Canonical, case-folded, whitespace-collapsed quote text."""
    return _WS_RE.sub(" ", canonicalize(quote or "")).strip().lower()


def span_fingerprint(category: str, quote: str) -> str:
    """Offset-independent identity of a span."""
    payload = f"{normalize_category(category)}\x1f{normalize_quote(quote)}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def make_span_id(category: str, quote: str, start: int, *, bucket_size: int = 64) -> str:
    """Span id from fingerprint plus a coarse position bucket."""
    bucket = max(0, int(start)) // max(1, bucket_size)
    payload = f"{span_fingerprint(category, quote)}:{bucket}"
    return "span_" + hashlib.sha256(payload.encode("utf-8")).hexdigest()[:12]


# ---------------------------------------------------------------------------
# Span
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Span:
    """A labeled substring in canonical offsets ``[start, end)``."""

    span_id: str
    start: int
    end: int
    category: str
    confidence: float
    quote: str
    left_ctx: str = ""
    right_ctx: str = ""
    source: SpanSource = "draft"
    stale: bool = False

    def __post_init__(self) -> None:
        if self.start < 0 or self.end <= self.start:
            raise ValueError(f"Invalid span range [{self.start}, {self.end})")
        if self.source not in ALL_SOURCES:
            raise ValueError(f"Unknown span source: {self.source!r}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")

    @property
    def fingerprint(self) -> str:
        return span_fingerprint(self.category, self.quote)

    @property
    def length(self) -> int:
        return self.end - self.start

    def overlaps(self, other: Span) -> bool:
        return self.start < other.end and other.start < self.end

    def as_dict(self) -> dict[str, Any]:
        return {
            "span_id": self.span_id,
            "start": self.start,
            "end": self.end,
            "category": self.category,
            "confidence": self.confidence,
            "quote": self.quote,
            "left_ctx": self.left_ctx,
            "right_ctx": self.right_ctx,
            "source": self.source,
            "stale": self.stale,
        }


def context_windows(text: CanonicalText, start: int, end: int, size: int) -> tuple[str, str]:
    """Left/right context of ``[start, end)`` bounded to *size* units."""
    return (text.slice(start - size, start), text.slice(end, end + size))


def build_span(
    text: CanonicalText,
    start: int,
    end: int,
    category: str,
    confidence: float,
    *,
    source: SpanSource = "draft",
    settings: EngineSettings | None = None,
    span_id: str | None = None,
) -> Span | None:
    """Build a span over *text*, clamping offsets. None if the range is empty."""
    cfg = settings or EngineSettings()
    start = text.clamp(start)
    end = text.clamp(end)
    if end <= start:
        return None
    quote = text.slice(start, end)
    left_ctx, right_ctx = context_windows(text, start, end, cfg.context_chars)
    return Span(
        span_id=span_id or make_span_id(category, quote, start, bucket_size=cfg.span_id_bucket),
        start=start,
        end=end,
        category=category,
        confidence=confidence,
        quote=quote,
        left_ctx=left_ctx,
        right_ctx=right_ctx,
        source=source,
    )


def move_span(
    span: Span,
    text: CanonicalText,
    start: int,
    end: int,
    *,
    settings: EngineSettings | None = None,
    keep_quote: bool = True,
) -> Span:
    """Copy of *span* re-pointed at ``[start, end)`` of *text*.

    Context windows are rebuilt from *text*. The quote is replaced by the
    text actually found there unless *keep_quote* is set.
    """
    cfg = settings or EngineSettings()
    left_ctx, right_ctx = context_windows(text, start, end, cfg.context_chars)
    return replace(
        span,
        start=start,
        end=end,
        quote=span.quote if keep_quote else text.slice(start, end),
        left_ctx=left_ctx,
        right_ctx=right_ctx,
        stale=False,
    )


# ---------------------------------------------------------------------------
# Labeling response parsing
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class SpanDropRecord:
    """A labeling record that was not turned into a span."""

    code: str  # invalid_record | invalid_offsets | empty_range | missing_category
    #            | invalid_confidence | below_min_confidence | duplicate | over_max_spans
    message: str
    index: int = -1


@dataclass(frozen=True, slots=True)
class LabelingParseResult:
    """Spans accepted from one labeling response plus what was dropped."""

    spans: tuple[Span, ...]
    dropped: tuple[SpanDropRecord, ...]
    meta: dict[str, Any] = field(default_factory=dict)
    signature: str = ""
    cache_id: str | None = None

    @property
    def ok(self) -> bool:
        return len(self.dropped) == 0


def _as_offset(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _as_confidence(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        conf = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(conf):
        return None
    return max(0.0, min(1.0, conf))


def parse_labeling_response(
    payload: Mapping[str, Any] | list[Any] | None,
    text: CanonicalText,
    *,
    source: SpanSource = "draft",
    settings: EngineSettings | None = None,
) -> LabelingParseResult:
    """Turn a labeling-service payload into spans over *text*.

    *text* must be the snapshot that was submitted for labeling. Offsets are
    clamped to it; zero-length or inverted ranges are dropped. When a record
    carries its own ``quote``/``text`` and it disagrees with *text* at the
    given offsets, the span keeps that quote and is flagged ``stale`` so the
    caller re-anchors it.
    """
    cfg = settings or EngineSettings()
    meta: dict[str, Any] = {}
    signature = ""
    cache_id: str | None = None
    if isinstance(payload, Mapping):
        records = payload.get("spans") or []
        meta = dict(payload.get("meta") or {})
        signature = str(payload.get("signature") or "")
        raw_cache_id = payload.get("cacheId", payload.get("cache_id"))
        cache_id = str(raw_cache_id) if raw_cache_id is not None else None
    elif isinstance(payload, list):
        records = payload
    else:
        records = []
    if not isinstance(records, list):
        records = []

    dropped: list[SpanDropRecord] = []
    accepted: dict[tuple[int, int, str], tuple[int, Span]] = {}

    for idx, record in enumerate(records):
        if not isinstance(record, Mapping):
            dropped.append(SpanDropRecord("invalid_record", "Record is not an object", idx))
            continue
        start = _as_offset(record.get("start"))
        end = _as_offset(record.get("end"))
        if start is None or end is None:
            dropped.append(SpanDropRecord(
                "invalid_offsets",
                f"Non-numeric offsets: start={record.get('start')!r} end={record.get('end')!r}",
                idx,
            ))
            continue
        start = text.clamp(start)
        end = text.clamp(end)
        if end <= start:
            dropped.append(SpanDropRecord(
                "empty_range", f"Range [{start}, {end}) is empty after clamping", idx,
            ))
            continue
        category = str(record.get("category") or record.get("role") or "").strip()
        if not category:
            dropped.append(SpanDropRecord("missing_category", "Record has no category", idx))
            continue
        confidence = _as_confidence(record.get("confidence"))
        if confidence is None:
            dropped.append(SpanDropRecord(
                "invalid_confidence", f"Invalid confidence: {record.get('confidence')!r}", idx,
            ))
            continue
        if confidence < cfg.min_confidence:
            dropped.append(SpanDropRecord(
                "below_min_confidence",
                f"Confidence {confidence} below minimum {cfg.min_confidence}",
                idx,
            ))
            continue

        span = build_span(text, start, end, category, confidence, source=source, settings=cfg)
        if span is None:
            dropped.append(SpanDropRecord("empty_range", f"Range [{start}, {end}) is empty", idx))
            continue
        claimed = record.get("quote", record.get("text"))
        if isinstance(claimed, str) and claimed and canonicalize(claimed) != span.quote:
            span = replace(
                span,
                quote=canonicalize(claimed),
                span_id=make_span_id(category, claimed, start, bucket_size=cfg.span_id_bucket),
                stale=True,
            )

        key = (span.start, span.end, normalize_category(category))
        previous = accepted.get(key)
        if previous is not None:
            prev_idx, prev_span = previous
            if span.confidence > prev_span.confidence:
                accepted[key] = (idx, span)
                dropped.append(SpanDropRecord("duplicate", f"Duplicate of record {idx}", prev_idx))
            else:
                dropped.append(SpanDropRecord("duplicate", f"Duplicate of record {prev_idx}", idx))
            continue
        accepted[key] = (idx, span)

    ranked = sorted(accepted.values(), key=lambda item: (-item[1].confidence, item[0]))
    for idx, span in ranked[cfg.max_spans:]:
        dropped.append(SpanDropRecord(
            "over_max_spans", f"Exceeds max_spans={cfg.max_spans}", idx,
        ))
    kept = sorted(
        (span for _, span in ranked[:cfg.max_spans]),
        key=lambda s: (s.start, s.end, s.category),
    )
    return LabelingParseResult(
        spans=tuple(kept),
        dropped=tuple(sorted(dropped, key=lambda d: (d.index, d.code))),
        meta=meta,
        signature=signature or text.signature,
        cache_id=cache_id,
    )
