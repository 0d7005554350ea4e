"""Conflict and harmonization markers over the active span set.

``detect`` is a pure function of the spans it is given, a fixed rule table,
and an opaque set of harmonization hints from an upstream coherence check.
Nothing is carried between calls.

Rule kinds:

* **single-value**: categories that can only hold one value per prompt
  (frame rate, aspect ratio, ...). Two spans of such a category with
  different quotes conflict.
* **value rules**: term sets that contradict (``night`` vs ``sunlight``)
  or merely pull against each other (harmonization).
* **hints**: externally flagged span ids, reported as harmonization.

Pairs are stored canonically (smaller span id first), so each unordered
pair yields at most one record; a conflict outranks a harmonization on the
same pair.
"""
from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal, TypeAlias

from span_engine.spans import Span, normalize_quote
from span_engine.taxonomy import normalize_category, parent_category

ConflictKind: TypeAlias = Literal["conflict", "harmonization"]

KIND_PRIORITY: dict[str, int] = {"conflict": 2, "harmonization": 1}

SINGLE_VALUE_CATEGORIES: frozenset[str] = frozenset({
    "frame_rate",
    "aspect_ratio",
    "resolution",
    "time_of_day",
    "film_stock",
})

DEFAULT_HINT_MESSAGE = "Flagged by semantic coherence check"


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ValueRule:
    """Two term sets that clash when they appear in two different spans."""

    rule_id: str
    kind: ConflictKind
    categories_a: frozenset[str]  # category or parent ids
    terms_a: tuple[str, ...]
    categories_b: frozenset[str]
    terms_b: tuple[str, ...]
    message: str


VALUE_RULES: tuple[ValueRule, ...] = (
    ValueRule(
        rule_id="night_vs_daylight",
        kind="conflict",
        categories_a=frozenset({"lighting", "environment"}),
        terms_a=("night", "nighttime", "midnight", "moonlight", "moonlit"),
        categories_b=frozenset({"lighting", "environment"}),
        terms_b=("sunlight", "daylight", "midday", "noon", "high noon", "harsh sun", "sunny"),
        message="Night-time setting contradicts daylight lighting",
    ),
    ValueRule(
        rule_id="static_vs_moving_camera",
        kind="conflict",
        categories_a=frozenset({"camera"}),
        terms_a=("static", "locked-off", "locked off", "tripod", "still frame"),
        categories_b=frozenset({"camera"}),
        terms_b=(
            "dolly", "pan", "tracking", "handheld", "crane", "orbit",
            "whip pan", "steadicam", "push in", "pull out", "zoom",
        ),
        message="Static camera contradicts camera movement",
    ),
    ValueRule(
        rule_id="monochrome_vs_color",
        kind="conflict",
        categories_a=frozenset({"style", "lighting"}),
        terms_a=("black and white", "monochrome", "b&w", "grayscale", "greyscale"),
        categories_b=frozenset({"style", "lighting"}),
        terms_b=("vibrant", "saturated", "technicolor", "colorful", "colourful", "neon", "pastel"),
        message="Monochrome look contradicts a vivid color palette",
    ),
    ValueRule(
        rule_id="clear_vs_precipitation",
        kind="conflict",
        categories_a=frozenset({"environment", "lighting"}),
        terms_a=("clear sky", "clear skies", "cloudless", "sunny"),
        categories_b=frozenset({"environment", "lighting"}),
        terms_b=("rain", "rainy", "storm", "stormy", "snow", "snowy", "overcast", "downpour"),
        message="Clear weather contradicts precipitation",
    ),
    ValueRule(
        rule_id="golden_hour_vs_artificial",
        kind="harmonization",
        categories_a=frozenset({"lighting"}),
        terms_a=("golden hour", "sunset", "sunrise", "dusk", "dawn"),
        categories_b=frozenset({"lighting"}),
        terms_b=("fluorescent", "overhead", "clinical", "harsh"),
        message="Warm natural light pulls against harsh artificial light",
    ),
    ValueRule(
        rule_id="wide_lens_vs_close_framing",
        kind="harmonization",
        categories_a=frozenset({"lens"}),
        terms_a=("wide angle", "wide-angle", "fisheye", "ultra wide", "ultra-wide"),
        categories_b=frozenset({"framing"}),
        terms_b=("close-up", "closeup", "extreme close-up", "macro"),
        message="Wide lens with tight framing may distort the subject",
    ),
)


def _term_pattern(terms: Sequence[str]) -> re.Pattern[str]:
    ordered = sorted({t.lower() for t in terms}, key=lambda t: (-len(t), t))
    return re.compile(r"(?<!\w)(?:" + "|".join(re.escape(t) for t in ordered) + r")(?!\w)")


_COMPILED: tuple[tuple[ValueRule, re.Pattern[str], re.Pattern[str]], ...] = tuple(
    (rule, _term_pattern(rule.terms_a), _term_pattern(rule.terms_b)) for rule in VALUE_RULES
)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ConflictRecord:
    """A conflict or harmonization among two or more spans."""

    span_ids: tuple[str, ...]  # sorted
    kind: ConflictKind
    message: str
    rule: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "span_ids": list(self.span_ids),
            "kind": self.kind,
            "message": self.message,
            "rule": self.rule,
        }


@dataclass(frozen=True, slots=True)
class HarmonizationHint:
    """Opaque upstream flag on a group of spans."""

    span_ids: tuple[str, ...]
    message: str = DEFAULT_HINT_MESSAGE

    @classmethod
    def coerce(cls, raw: HarmonizationHint | Mapping[str, Any] | Sequence[str] | str) -> HarmonizationHint:
        if isinstance(raw, HarmonizationHint):
            return raw
        if isinstance(raw, str):
            return cls(span_ids=(raw,))
        if isinstance(raw, Mapping):
            ids = raw.get("span_ids", raw.get("spanIds", ()))
            if isinstance(ids, str):
                ids = (ids,)
            message = str(raw.get("message") or DEFAULT_HINT_MESSAGE)
            return cls(span_ids=tuple(str(i) for i in ids), message=message)
        return cls(span_ids=tuple(str(i) for i in raw))


def _canonical_pair(a: str, b: str) -> tuple[str, str]:
    """Return the canonical (lexicographically ordered) pair."""
    return (a, b) if a < b else (b, a)


def _in_categories(category: str, allowed: frozenset[str]) -> bool:
    return normalize_category(category) in allowed or parent_category(category) in allowed


def _rule_hits(a: Span, b: Span, quote_a: str, quote_b: str) -> list[ValueRule]:
    hits: list[ValueRule] = []
    cat_a = normalize_category(a.category)
    cat_b = normalize_category(b.category)
    if cat_a == cat_b and cat_a in SINGLE_VALUE_CATEGORIES and quote_a != quote_b:
        hits.append(ValueRule(
            rule_id=f"single_value:{cat_a}",
            kind="conflict",
            categories_a=frozenset({cat_a}),
            terms_a=(),
            categories_b=frozenset({cat_a}),
            terms_b=(),
            message=f"Only one {cat_a.replace('_', ' ')} can apply: {a.quote!r} vs {b.quote!r}",
        ))
    for rule, pat_a, pat_b in _COMPILED:
        forward = (
            _in_categories(a.category, rule.categories_a) and pat_a.search(quote_a)
            and _in_categories(b.category, rule.categories_b) and pat_b.search(quote_b)
        )
        backward = (
            _in_categories(b.category, rule.categories_a) and pat_a.search(quote_b)
            and _in_categories(a.category, rule.categories_b) and pat_b.search(quote_a)
        )
        if forward or backward:
            hits.append(rule)
    return hits


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

def detect(
    spans: Iterable[Span],
    harmonization_hints: Iterable[HarmonizationHint | Mapping[str, Any] | Sequence[str] | str] = (),
) -> list[ConflictRecord]:
    """Conflicts and harmonizations among *spans*.

    Order-independent: the same set of spans in any order yields the same
    records. Hint ids that are not in *spans* are ignored. An empty input
    returns an empty list.
    """
    by_id: dict[str, Span] = {}
    for span in spans:
        by_id.setdefault(span.span_id, span)
    if not by_id:
        return []
    ordered = [by_id[k] for k in sorted(by_id)]
    quotes = {s.span_id: normalize_quote(s.quote) for s in ordered}

    found: dict[tuple[str, ...], ConflictRecord] = {}

    def _offer(record: ConflictRecord) -> None:
        current = found.get(record.span_ids)
        if current is None or KIND_PRIORITY[record.kind] > KIND_PRIORITY[current.kind]:
            found[record.span_ids] = record

    for i, a in enumerate(ordered):
        for b in ordered[i + 1:]:
            if a.fingerprint == b.fingerprint:
                continue
            pair = _canonical_pair(a.span_id, b.span_id)
            for rule in _rule_hits(a, b, quotes[a.span_id], quotes[b.span_id]):
                _offer(ConflictRecord(
                    span_ids=pair, kind=rule.kind, message=rule.message, rule=rule.rule_id,
                ))
                if rule.kind == "conflict":
                    break

    for raw in harmonization_hints:
        hint = HarmonizationHint.coerce(raw)
        ids = tuple(sorted({i for i in hint.span_ids if i in by_id}))
        if not ids:
            continue
        _offer(ConflictRecord(span_ids=ids, kind="harmonization", message=hint.message, rule="hint"))

    return sorted(found.values(), key=lambda r: (-KIND_PRIORITY[r.kind], r.span_ids, r.rule))


def conflict_state_by_span(records: Iterable[ConflictRecord]) -> dict[str, ConflictKind]:
    """Strongest marker per span id (conflict beats harmonization)."""
    state: dict[str, ConflictKind] = {}
    for record in records:
        for span_id in record.span_ids:
            current = state.get(span_id)
            if current is None or KIND_PRIORITY[record.kind] > KIND_PRIORITY[current]:
                state[span_id] = record.kind
    return state
