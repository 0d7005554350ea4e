"""Edit-distance fuzzy matching and known-typo correction.

Pure text operations, deterministic for a given typo table:

- ``levenshtein_distance``: classic DP with rolling rows, optional cutoff
- ``is_fuzzy_match``: exact / known typo / length-scaled edit threshold
- ``find_best_match``: minimum-distance candidate with confidence
- ``auto_correct`` / ``suggest_corrections``: typo table driven rewriting

Length-scaled threshold (shorter string of the pair decides):

* < 4 chars  -> exact match only ("a" vs "an" must not match)
* 4-6 chars  -> 1 edit
* 7-12 chars -> 2 edits
* longer     -> max(2, 15% of length) edits, for multi-word quotes
"""
from __future__ import annotations

import bisect
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from span_engine.io_utils import load_json

MIN_FUZZY_LENGTH = 4
SHORT_WORD_MAX = 6
MEDIUM_WORD_MAX = 12
LONG_PHRASE_RATIO = 0.15
KNOWN_TYPO_CONFIDENCE = 0.95

# ---------------------------------------------------------------------------
# Known typo table (photography / video terminology)
# ---------------------------------------------------------------------------

DEFAULT_TYPOS: dict[str, str] = {
    # depth of field / optics
    "bokhe": "bokeh",
    "bokey": "bokeh",
    "bokah": "bokeh",
    "bokeah": "bokeh",
    "depth of feild": "depth of field",
    "feild": "field",
    "lense": "lens",
    "lenz": "lens",
    "anamophic": "anamorphic",
    "anamorhpic": "anamorphic",
    "anamorfic": "anamorphic",
    "apeture": "aperture",
    "apperture": "aperture",
    "telefoto": "telephoto",
    "focuss": "focus",
    "vignete": "vignette",
    "vinette": "vignette",
    # lighting
    "lightting": "lighting",
    "lighitng": "lighting",
    "ligthing": "lighting",
    "shaddow": "shadow",
    "shadw": "shadow",
    "refletion": "reflection",
    "relfection": "reflection",
    "silouette": "silhouette",
    "silhoutte": "silhouette",
    "chiarascuro": "chiaroscuro",
    "chiaroscouro": "chiaroscuro",
    "hilight": "highlight",
    "hightlight": "highlight",
    "exposeure": "exposure",
    "exposur": "exposure",
    # camera and style
    "cinematagraphy": "cinematography",
    "cinematogrpahy": "cinematography",
    "cinamatic": "cinematic",
    "steadycam": "steadicam",
    "dolley": "dolly",
    "timelaps": "timelapse",
    "saturaton": "saturation",
    "monocrome": "monochrome",
}


def _clean_table(table: Mapping[str, str]) -> dict[str, str]:
    cleaned: dict[str, str] = {}
    for typo, correct in table.items():
        key = str(typo or "").strip().lower()
        value = str(correct or "").strip().lower()
        if not key or not value or key == value:
            continue
        cleaned[key] = value
    loops = sorted(v for v in set(cleaned.values()) if v in cleaned)
    if loops:
        raise ValueError(f"Typo table corrections are themselves typos: {loops}")
    return cleaned


def load_typo_table(
    path: Path,
    *,
    base: Mapping[str, str] | None = DEFAULT_TYPOS,
) -> dict[str, str]:
    """Load ``{"misspelling": "correct"}`` pairs from JSON, merged over *base*."""
    payload = load_json(path)
    if not isinstance(payload, dict):
        raise ValueError(f"Typo table must be a JSON object: {path}")
    merged: dict[str, str] = dict(base or {})
    merged.update({str(k): str(v) for k, v in payload.items()})
    return _clean_table(merged)


def max_edit_distance(length: int) -> int:
    """Edits tolerated for a string of *length* characters (monotonic)."""
    if length < MIN_FUZZY_LENGTH:
        return 0
    if length <= SHORT_WORD_MAX:
        return 1
    if length <= MEDIUM_WORD_MAX:
        return 2
    return max(2, int(length * LONG_PHRASE_RATIO))


def levenshtein_distance(
    a: str,
    b: str,
    *,
    case_sensitive: bool = False,
    max_distance: int | None = None,
) -> int:
    """Minimum single-character edits turning *a* into *b*.

    O(len(a) * len(b)) time, O(min(len)) space. With *max_distance* the
    computation stops early and returns ``max_distance + 1`` once the
    distance is known to exceed it.
    """
    if not isinstance(a, str) or not isinstance(b, str):
        raise TypeError("levenshtein_distance expects two strings")
    if not case_sensitive:
        a = a.lower()
        b = b.lower()
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if max_distance is not None and len(a) - len(b) > max_distance:
        return max_distance + 1
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            ))
        if max_distance is not None and min(current) > max_distance:
            return max_distance + 1
        previous = current
    return previous[-1]


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class BestMatch:
    """Outcome of ``find_best_match``. ``match`` is None when nothing matched."""

    match: str | None
    distance: int | None
    confidence: float  # 1 - distance / max(len(word), len(match)), in [0, 1]
    is_good_match: bool
    index: int = -1    # position of ``match`` in the candidate list

    def as_dict(self) -> dict[str, object]:
        return {
            "match": self.match,
            "distance": self.distance,
            "confidence": self.confidence,
            "is_good_match": self.is_good_match,
            "index": self.index,
        }


NO_MATCH = BestMatch(match=None, distance=None, confidence=0.0, is_good_match=False)


@dataclass(frozen=True, slots=True)
class Correction:
    """A suggested correction; ``position`` is the word-token index."""

    original: str
    suggested: str
    position: int
    char_offset: int
    confidence: float
    source: str  # known_typo | candidate

    def as_dict(self) -> dict[str, object]:
        return {
            "original": self.original,
            "suggested": self.suggested,
            "position": self.position,
            "char_offset": self.char_offset,
            "confidence": self.confidence,
            "source": self.source,
        }


_WORD_RE = re.compile(r"[^\W_]+(?:['\u2019-][^\W_]+)*")


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------

class FuzzyMatcher:
    """Fuzzy matcher bound to one typo table."""

    def __init__(self, typos: Mapping[str, str] | None = None) -> None:
        self.typos: dict[str, str] = _clean_table(DEFAULT_TYPOS if typos is None else typos)
        phrases = sorted(self.typos, key=lambda t: (-len(t), t))
        self._typo_re: re.Pattern[str] | None = (
            re.compile(
                r"(?<!\w)(?:" + "|".join(re.escape(p) for p in phrases) + r")(?!\w)",
                re.IGNORECASE,
            )
            if phrases else None
        )

    def levenshtein_distance(
        self,
        a: str,
        b: str,
        *,
        case_sensitive: bool = False,
        max_distance: int | None = None,
    ) -> int:
        return levenshtein_distance(
            a, b, case_sensitive=case_sensitive, max_distance=max_distance,
        )

    def is_known_typo_pair(self, a: str, b: str) -> bool:
        """True if *a* and *b* are related through the typo table."""
        a_l = a.strip().lower()
        b_l = b.strip().lower()
        if not a_l or not b_l:
            return False
        return self.typos.get(a_l, a_l) == self.typos.get(b_l, b_l)

    def is_fuzzy_match(self, a: str, b: str) -> bool:
        """Case-insensitive exact, known typo, or within the edit threshold."""
        a_l = a.strip().lower()
        b_l = b.strip().lower()
        if a_l == b_l:
            return True
        if not a_l or not b_l:
            return False
        if self.is_known_typo_pair(a_l, b_l):
            return True
        limit = max_edit_distance(min(len(a_l), len(b_l)))
        if limit == 0:
            return False
        return levenshtein_distance(a_l, b_l, max_distance=limit) <= limit

    def find_best_match(self, word: str, candidates: Iterable[str]) -> BestMatch:
        """Closest candidate to *word*; the first one wins ties.

        Empty and whitespace-only candidates are skipped. Returns
        ``NO_MATCH`` when *word* is blank or no candidate remains.
        """
        word_l = (word or "").strip().lower()
        if not word_l:
            return NO_MATCH
        best_idx = -1
        best_text = ""
        best_distance = 0
        for idx, candidate in enumerate(candidates):
            if not isinstance(candidate, str):
                continue
            cand_l = candidate.strip().lower()
            if not cand_l:
                continue
            cutoff = best_distance if best_idx >= 0 else None
            distance = levenshtein_distance(word_l, cand_l, max_distance=cutoff)
            if best_idx < 0 or distance < best_distance:
                best_idx = idx
                best_text = candidate
                best_distance = distance
                if distance == 0:
                    break
        if best_idx < 0:
            return NO_MATCH

        match_l = best_text.strip().lower()
        longest = max(len(word_l), len(match_l))
        confidence = 1.0 - best_distance / longest if longest else 1.0
        limit = max_edit_distance(min(len(word_l), len(match_l)))
        is_good = best_distance <= limit or self.is_known_typo_pair(word_l, match_l)
        return BestMatch(
            match=best_text,
            distance=best_distance,
            confidence=round(max(0.0, confidence), 4),
            is_good_match=is_good,
            index=best_idx,
        )

    def auto_correct(self, text: str) -> str:
        """Replace whole-word known typos with their canonical spelling.

        Only exact (case-insensitive) typo-table hits are replaced; spacing
        and punctuation around them are preserved.
        """
        if not text or self._typo_re is None:
            return text or ""
        return self._typo_re.sub(
            lambda m: self.typos.get(m.group(0).lower(), m.group(0)),
            text,
        )

    def suggest_corrections(
        self,
        text: str,
        candidates: Iterable[str] = (),
    ) -> list[Correction]:
        """Report known typos (and near-misses against *candidates*) in *text*.

        The text is never modified. Results are ordered by character offset.
        """
        if not text:
            return []
        words = {m.start(): m.group(0) for m in _WORD_RE.finditer(text)}
        word_starts = sorted(words)

        def _position(char_offset: int) -> int:
            return bisect.bisect_left(word_starts, char_offset)

        suggestions: list[Correction] = []
        covered: set[int] = set()
        if self._typo_re is not None:
            for m in self._typo_re.finditer(text):
                suggestions.append(Correction(
                    original=m.group(0),
                    suggested=self.typos[m.group(0).lower()],
                    position=_position(m.start()),
                    char_offset=m.start(),
                    confidence=KNOWN_TYPO_CONFIDENCE,
                    source="known_typo",
                ))
                covered.update(s for s in word_starts if m.start() <= s < m.end())

        pool = [c for c in candidates if isinstance(c, str) and c.strip()]
        if pool:
            for start, word in words.items():
                if start in covered:
                    continue
                best = self.find_best_match(word, pool)
                if best.match is None or not best.is_good_match or best.distance == 0:
                    continue
                suggestions.append(Correction(
                    original=word,
                    suggested=best.match,
                    position=_position(start),
                    char_offset=start,
                    confidence=best.confidence,
                    source="candidate",
                ))

        suggestions.sort(key=lambda s: (s.char_offset, s.source))
        return suggestions


fuzzy_matcher = FuzzyMatcher()
