"""State machine choosing which span set is authoritative.

States::

    idle -> draft_active -> refining -> refined_active
                 ^                          |
                 +------ prompt changed ----+

| Current        | Event            | Next           | Emits                          |
|----------------|------------------|----------------|--------------------------------|
| idle           | draft_ready      | draft_active   | draft set                      |
| draft_active   | refine_started   | refining       | previous set retained          |
| refining       | refine_completed | refined_active | refined set                    |
| refined_active | prompt_changed   | draft_active   | draft set, refined discarded   |

Also accepted: a fresh draft while ``draft_active`` replaces the draft set;
``prompt_changed`` while ``refining`` abandons the refine; re-refining from
``refined_active`` keeps the refined set on screen. Anything else is ignored
and reported as a rejected transition; the selector never raises.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal, TypeAlias

from span_engine.spans import Span

SelectorState: TypeAlias = Literal["idle", "draft_active", "refining", "refined_active"]
SelectorEvent: TypeAlias = Literal["draft_ready", "refine_started", "refine_completed", "prompt_changed"]
ActiveSource: TypeAlias = Literal["draft", "refined"]

TRANSITIONS: dict[tuple[SelectorState, SelectorEvent], SelectorState] = {
    ("idle", "draft_ready"): "draft_active",
    ("draft_active", "draft_ready"): "draft_active",
    ("draft_active", "refine_started"): "refining",
    ("refining", "refine_completed"): "refined_active",
    ("refining", "prompt_changed"): "draft_active",
    ("refined_active", "prompt_changed"): "draft_active",
    ("refined_active", "refine_started"): "refining",
    ("draft_active", "prompt_changed"): "draft_active",
}


@dataclass(frozen=True, slots=True)
class HighlightSourceState:
    """Snapshot of the selector's flags."""

    state: SelectorState
    active_source: ActiveSource | None
    is_draft_ready: bool
    is_refining: bool
    prompt_changed: bool

    def as_dict(self) -> dict[str, object]:
        return {
            "state": self.state,
            "active_source": self.active_source,
            "is_draft_ready": self.is_draft_ready,
            "is_refining": self.is_refining,
            "prompt_changed": self.prompt_changed,
        }


@dataclass(frozen=True, slots=True)
class Transition:
    """Result of feeding one event to the selector."""

    event: SelectorEvent
    previous: SelectorState
    state: SelectorState
    accepted: bool
    emitted: tuple[Span, ...] = ()


class HighlightSourceSelector:
    def __init__(self) -> None:
        self.state: SelectorState = "idle"
        self._draft: tuple[Span, ...] = ()
        self._refined: tuple[Span, ...] = ()
        self._retained: ActiveSource | None = None
        self._prompt_changed = False

    # -- events -------------------------------------------------------------

    def on_draft_ready(self, spans: Iterable[Span]) -> Transition:
        spans = tuple(spans)
        nxt = TRANSITIONS.get((self.state, "draft_ready"))
        if nxt is None:
            return self._reject("draft_ready")
        self._draft = spans
        self._prompt_changed = False
        return self._move("draft_ready", nxt, self._draft)

    def on_refine_started(self) -> Transition:
        nxt = TRANSITIONS.get((self.state, "refine_started"))
        if nxt is None:
            return self._reject("refine_started")
        self._retained = "refined" if self.state == "refined_active" else "draft"
        return self._move("refine_started", nxt, self.active_spans)

    def on_refine_completed(self, spans: Iterable[Span]) -> Transition:
        spans = tuple(spans)
        nxt = TRANSITIONS.get((self.state, "refine_completed"))
        if nxt is None:
            return self._reject("refine_completed")
        self._refined = spans
        self._retained = None
        return self._move("refine_completed", nxt, self._refined)

    def on_prompt_changed(self) -> Transition:
        nxt = TRANSITIONS.get((self.state, "prompt_changed"))
        if nxt is None:
            return self._reject("prompt_changed")
        self._refined = ()
        self._retained = None
        self._prompt_changed = True
        return self._move("prompt_changed", nxt, self._draft)

    def replace_active(self, spans: Iterable[Span]) -> None:
        """Swap in re-anchored spans for whichever set is currently shown."""
        spans = tuple(spans)
        source = self.active_source
        if source == "refined":
            self._refined = spans
        elif source == "draft":
            self._draft = spans

    def reset(self) -> None:
        self.state = "idle"
        self._draft = ()
        self._refined = ()
        self._retained = None
        self._prompt_changed = False

    # -- views --------------------------------------------------------------

    @property
    def active_source(self) -> ActiveSource | None:
        if self.state == "draft_active":
            return "draft"
        if self.state == "refined_active":
            return "refined"
        if self.state == "refining":
            return self._retained
        return None

    @property
    def active_spans(self) -> tuple[Span, ...]:
        source = self.active_source
        if source == "refined":
            return self._refined
        if source == "draft":
            return self._draft
        return ()

    @property
    def draft_spans(self) -> tuple[Span, ...]:
        return self._draft

    @property
    def refined_spans(self) -> tuple[Span, ...]:
        return self._refined

    def snapshot(self) -> HighlightSourceState:
        return HighlightSourceState(
            state=self.state,
            active_source=self.active_source,
            is_draft_ready=self.state != "idle",
            is_refining=self.state == "refining",
            prompt_changed=self._prompt_changed,
        )

    # -- internals ----------------------------------------------------------

    def _move(self, event: SelectorEvent, nxt: SelectorState, emitted: tuple[Span, ...]) -> Transition:
        previous = self.state
        self.state = nxt
        return Transition(event=event, previous=previous, state=self.state, accepted=True, emitted=emitted)

    def _reject(self, event: SelectorEvent) -> Transition:
        return Transition(event=event, previous=self.state, state=self.state, accepted=False)
