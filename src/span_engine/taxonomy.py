"""Span category taxonomy: parent categories and their attributes.

Labeling passes emit either a parent id (``camera``), an attribute id
(``camera_move``), a dotted path (``camera.movement``), or a legacy flat
name (``cameraMove``). ``normalize_category`` folds all of these onto one
canonical id so fingerprints and conflict rules compare like with like.
"""
from __future__ import annotations

TAXONOMY: dict[str, tuple[str, ...]] = {
    "subject": ("identity", "appearance", "wardrobe", "action", "emotion"),
    "environment": ("location", "weather", "context"),
    "lighting": ("lighting_source", "lighting_quality", "time_of_day"),
    "camera": ("framing", "camera_move", "lens", "angle"),
    "style": ("aesthetic", "film_stock"),
    "technical": ("aspect_ratio", "frame_rate", "resolution"),
    "audio": ("score", "sound_effect"),
}

LEGACY_MAPPINGS: dict[str, str] = {
    "cameramove": "camera_move",
    "camera_movement": "camera_move",
    "movement": "camera_move",
    "timeofday": "time_of_day",
    "time": "time_of_day",
    "mood": "style",
    "filmformat": "film_stock",
    "fps": "frame_rate",
    "framerate": "frame_rate",
    "aspectratio": "aspect_ratio",
    "source": "lighting_source",
    "quality": "lighting_quality",
    "sfx": "sound_effect",
    "music": "score",
}

_ATTRIBUTE_TO_PARENT: dict[str, str] = {
    attr: parent for parent, attrs in TAXONOMY.items() for attr in attrs
}


def normalize_category(category: str) -> str:
    """Canonical category id; unknown categories are lower-cased and kept."""
    raw = str(category or "").strip()
    if not raw:
        return ""
    lowered = raw.lower().replace("-", "_").replace(" ", "_")
    if lowered in TAXONOMY or lowered in _ATTRIBUTE_TO_PARENT:
        return lowered
    squashed = lowered.replace("_", "")
    if squashed in LEGACY_MAPPINGS:
        return LEGACY_MAPPINGS[squashed]
    if lowered in LEGACY_MAPPINGS:
        return LEGACY_MAPPINGS[lowered]
    if "." in lowered:
        parent, _, leaf = lowered.rpartition(".")
        leaf_id = normalize_category(leaf)
        if leaf_id in _ATTRIBUTE_TO_PARENT or leaf_id in TAXONOMY:
            return leaf_id
        return normalize_category(parent.split(".")[0]) or lowered
    return lowered


def parent_category(category: str) -> str:
    """Parent id for *category* (a parent maps to itself)."""
    cat = normalize_category(category)
    if cat in TAXONOMY:
        return cat
    return _ATTRIBUTE_TO_PARENT.get(cat, cat)


def is_attribute(category: str) -> bool:
    return normalize_category(category) in _ATTRIBUTE_TO_PARENT


def all_attributes() -> list[str]:
    return [attr for attrs in TAXONOMY.values() for attr in attrs]
