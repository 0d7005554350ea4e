"""Supervision of asynchronous labeling requests.

Every request is tagged with a ``RequestToken`` carrying a monotonically
increasing generation. A response is applied only while its token is the
latest one issued for its source; anything older is discarded silently.
Edits never cancel a request in flight. The response is re-anchored from
the snapshot it was computed against instead.

``LabelingCache`` is a small in-memory LRU keyed by the text signature and
the request policy; it serves repeat requests and is the fallback when the
labeler fails.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, TypeAlias

import orjson

from span_engine.canonical_text import CanonicalText

log = logging.getLogger(__name__)

RequestSource: TypeAlias = Literal["draft", "refined"]
FetchOutcome: TypeAlias = Literal["network", "cache", "cache-fallback", "stale", "error"]
Labeler: TypeAlias = Callable[[str, dict[str, Any]], Awaitable[Any]]

DEBOUNCE_STEPS: tuple[tuple[int, int], ...] = (
    (100, 50),
    (500, 150),
    (2000, 300),
)
DEBOUNCE_MAX_MS = 450


def smart_debounce_ms(text: str | CanonicalText | None) -> int:
    """Delay before issuing a labeling request; longer text waits longer."""
    if isinstance(text, CanonicalText):
        length = len(text)
    else:
        length = len(text or "")
    if length == 0:
        return DEBOUNCE_STEPS[0][1]
    for limit, delay in DEBOUNCE_STEPS:
        if length < limit:
            return delay
    return DEBOUNCE_MAX_MS


# ---------------------------------------------------------------------------
# Request tokens
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class RequestToken:
    """Identity of one labeling request and the snapshot it was issued for."""

    generation: int
    source: RequestSource
    text: CanonicalText = field(repr=False)
    issued_at: float = 0.0

    @property
    def text_signature(self) -> str:
        return self.text.signature


class LabelRequestTracker:
    """Issues generation tokens and answers "is this response still wanted?"."""

    def __init__(self) -> None:
        self._generation = 0
        self._latest: dict[str, int] = {}

    @property
    def generation(self) -> int:
        return self._generation

    def issue(self, text: CanonicalText, source: RequestSource = "draft") -> RequestToken:
        self._generation += 1
        self._latest[source] = self._generation
        return RequestToken(
            generation=self._generation,
            source=source,
            text=text,
            issued_at=time.monotonic(),
        )

    def is_current(self, token: RequestToken) -> bool:
        return self._latest.get(token.source) == token.generation

    def invalidate(self, source: RequestSource | None = None) -> None:
        """Make every outstanding token (optionally of one source) stale."""
        if source is None:
            self._latest.clear()
        else:
            self._latest.pop(source, None)


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

def cache_key(
    signature: str,
    source: RequestSource,
    policy: Mapping[str, Any] | None = None,
) -> str:
    """Stable cache key for a text signature plus request policy."""
    blob = orjson.dumps(dict(policy or {}), option=orjson.OPT_SORT_KEYS)
    digest = hashlib.sha256(blob).hexdigest()[:12]
    return f"{signature}:{source}:{digest}"


class LabelingCache:
    """In-memory LRU of labeling payloads."""

    def __init__(self, max_entries: int = 50) -> None:
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self.max_entries = max_entries
        self._entries: OrderedDict[str, Any] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> Any | None:
        if key not in self._entries:
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return self._entries[key]

    def put(self, key: str, payload: Any) -> None:
        self._entries[key] = payload
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            log.debug("Labeling cache evicted %s", evicted)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0


# ---------------------------------------------------------------------------
# Fetch
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class LabelFetchResult:
    token: RequestToken
    outcome: FetchOutcome
    payload: Any | None = None
    error: str | None = None

    @property
    def usable(self) -> bool:
        return self.payload is not None and self.outcome not in ("stale", "error")


async def fetch_labels(
    labeler: Labeler,
    text: CanonicalText,
    *,
    tracker: LabelRequestTracker,
    cache: LabelingCache | None = None,
    source: RequestSource = "draft",
    policy: Mapping[str, Any] | None = None,
    use_cache: bool = True,
    token: RequestToken | None = None,
) -> LabelFetchResult:
    """Label *text* through *labeler*, honouring tokens and the cache.

    The labeler is awaited with the canonical string and the policy dict. A
    response whose token has been superseded comes back with outcome
    ``"stale"`` and no payload. On labeler failure the cached payload for
    the same text and policy is returned as ``"cache-fallback"`` when there
    is one.
    """
    token = token or tracker.issue(text, source)
    key = cache_key(text.signature, token.source, policy)

    if cache is not None and use_cache:
        cached = cache.get(key)
        if cached is not None:
            log.debug("Labeling cache hit for generation %d", token.generation)
            return LabelFetchResult(token=token, outcome="cache", payload=cached)

    try:
        payload = await labeler(text.canonical_string, dict(policy or {}))
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        if not tracker.is_current(token):
            log.debug("Ignoring failure of stale labeling request %d", token.generation)
            return LabelFetchResult(token=token, outcome="stale", error=str(exc))
        fallback = cache.get(key) if cache is not None else None
        if fallback is not None:
            log.warning("Labeling request %d failed (%s); using cached result", token.generation, exc)
            return LabelFetchResult(
                token=token, outcome="cache-fallback", payload=fallback, error=str(exc),
            )
        log.warning("Labeling request %d failed: %s", token.generation, exc)
        return LabelFetchResult(token=token, outcome="error", error=str(exc))

    if not tracker.is_current(token):
        log.debug("Discarding stale labeling response %d", token.generation)
        return LabelFetchResult(token=token, outcome="stale")
    if cache is not None:
        cache.put(key, payload)
    return LabelFetchResult(token=token, outcome="network", payload=payload)
