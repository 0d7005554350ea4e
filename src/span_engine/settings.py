"""Tunable policy parameters for span reconciliation.

Defaults live on ``EngineSettings``. A JSON settings file and/or a dict of
overrides can replace any of them via ``load_settings``:

    {"anchor_radius": 64, "locked_eviction_misses": null}

Unknown keys are rejected so typos in a settings file fail loudly.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any

from span_engine.io_utils import load_json

OFFSET_UNITS: frozenset[str] = frozenset({"codepoint", "utf16"})
UNANCHORED_POLICIES: frozenset[str] = frozenset({"hide", "drop"})


@dataclass(frozen=True, slots=True)
class EngineSettings:
    """Policy knobs shared by the anchor, registry, parser and engine."""

    context_chars: int = 24          # graphemes of left/right context stored per span
    context_score_cap: int = 80      # graphemes compared when scoring context
    anchor_radius: int = 32          # initial search radius around last offset
    anchor_growth: int = 2           # radius multiplier per unsuccessful pass
    anchor_radius_cap: int = 1024
    locked_eviction_misses: int | None = 3
    span_id_bucket: int = 64
    max_spans: int = 60
    min_confidence: float = 0.0
    offset_unit: str = "codepoint"   # codepoint | utf16
    unanchored_policy: str = "hide"  # hide | drop

    def __post_init__(self) -> None:
        for name in ("context_chars", "context_score_cap", "anchor_radius", "anchor_radius_cap"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")
        if self.anchor_growth < 2:
            raise ValueError(f"anchor_growth must be >= 2, got {self.anchor_growth}")
        if self.span_id_bucket <= 0:
            raise ValueError(f"span_id_bucket must be positive, got {self.span_id_bucket}")
        if self.max_spans <= 0:
            raise ValueError(f"max_spans must be positive, got {self.max_spans}")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ValueError(f"min_confidence must be in [0, 1], got {self.min_confidence}")
        if self.locked_eviction_misses is not None and self.locked_eviction_misses <= 0:
            raise ValueError(
                f"locked_eviction_misses must be positive or None, got {self.locked_eviction_misses}"
            )
        if self.offset_unit not in OFFSET_UNITS:
            raise ValueError(f"offset_unit must be one of {sorted(OFFSET_UNITS)}, got {self.offset_unit!r}")
        if self.unanchored_policy not in UNANCHORED_POLICIES:
            raise ValueError(
                f"unanchored_policy must be one of {sorted(UNANCHORED_POLICIES)}, "
                f"got {self.unanchored_policy!r}"
            )

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _coerce(name: str, value: Any, default: Any) -> Any:
    if value is None:
        if name == "locked_eviction_misses":
            return None
        raise ValueError(f"{name} cannot be null")
    if isinstance(default, bool):
        return bool(value)
    if isinstance(default, int) or name == "locked_eviction_misses":
        return int(value)
    if isinstance(default, float):
        return float(value)
    return str(value)


def load_settings(
    path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> EngineSettings:
    """Build ``EngineSettings`` from an optional JSON file plus overrides.

    Overrides win over file values; both win over defaults.
    """
    payload: dict[str, Any] = {}
    if path is not None:
        raw = load_json(path)
        if not isinstance(raw, dict):
            raise ValueError(f"Settings file must contain a JSON object: {path}")
        payload.update(raw)
    if overrides:
        payload.update(overrides)

    defaults = EngineSettings()
    known = {f.name for f in fields(EngineSettings)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ValueError(f"Unknown settings keys: {unknown}")

    coerced = {
        name: _coerce(name, value, getattr(defaults, name))
        for name, value in payload.items()
    }
    return replace(defaults, **coerced)
