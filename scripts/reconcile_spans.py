#!/usr/bin/env python3
"""Reconcile a labeling response against (possibly edited) text.

Reads the text that was submitted for labeling, the labeling response for
it, and optionally the current text after edits plus persisted locked
spans. Prints the rendered highlight list (raw offsets), conflict records,
hidden (unanchored) spans and dropped records as JSON.

Usage::

    python3 scripts/reconcile_spans.py --text prompt.txt --labels labels.json
    python3 scripts/reconcile_spans.py --text prompt_v1.txt --labels labels.json \\
        --current-text prompt_v2.txt --locked locked.jsonl --locked-out locked.jsonl
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from span_engine.engine import HighlightEngine
from span_engine.io_utils import dumps_json, load_json, load_jsonl, save_json, save_jsonl
from span_engine.settings import load_settings

log = logging.getLogger("reconcile_spans")


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def run(args: argparse.Namespace) -> dict[str, Any]:
    settings = load_settings(args.settings)
    engine = HighlightEngine(settings, text=_read_text(args.text))
    log.debug("Submitted text: %d graphemes, signature %s", len(engine.text), engine.text.signature)

    if args.locked is not None and args.locked.exists():
        loaded = engine.load_locked(load_jsonl(args.locked))
        log.info("Loaded %d locked spans", loaded)

    token = engine.begin_labeling()
    applied = engine.apply_labeling(token, load_json(args.labels))
    log.info(
        "Applied %d spans (%d dropped, %d unanchored)",
        len(applied.spans), len(applied.dropped), len(applied.unanchored),
    )

    if args.current_text is not None:
        engine.update_text(_read_text(args.current_text))
        log.info("Re-anchored onto current text (signature %s)", engine.text.signature)

    hints = load_json(args.hints) if args.hints is not None else []
    if not isinstance(hints, list):
        raise ValueError(f"Harmonization hints must be a JSON list: {args.hints}")

    if args.locked_out is not None:
        save_jsonl(engine.registry.to_records(), args.locked_out)

    return {
        "text_signature": engine.text.signature,
        "source_state": engine.source_state().as_dict(),
        "spans": [r.as_dict() for r in engine.render(hints)],
        "conflicts": [c.as_dict() for c in engine.conflicts(hints)],
        "hidden": [s.as_dict() for s in engine.hidden_spans],
        "dropped": [
            {"code": d.code, "message": d.message, "index": d.index} for d in applied.dropped
        ],
        "locked": len(engine.registry),
    }


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Reconcile labeling-service spans with the current text."
    )
    parser.add_argument("--text", type=Path, required=True, help="Text submitted for labeling")
    parser.add_argument("--labels", type=Path, required=True, help="Labeling response JSON")
    parser.add_argument(
        "--current-text",
        type=Path,
        default=None,
        help="Text after edits; spans are re-anchored onto it.",
    )
    parser.add_argument("--locked", type=Path, default=None, help="Locked spans JSONL to load")
    parser.add_argument(
        "--locked-out",
        type=Path,
        default=None,
        help="Write the locked registry (with miss counts) to this JSONL path.",
    )
    parser.add_argument("--hints", type=Path, default=None, help="Harmonization hints JSON list")
    parser.add_argument("--settings", type=Path, default=None, help="Engine settings JSON")
    parser.add_argument("--output", type=Path, default=None, help="Write JSON here instead of stdout")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    payload = run(args)
    if args.output is not None:
        save_json(payload, args.output)
        log.info("Wrote %d spans to %s", len(payload["spans"]), args.output)
    else:
        sys.stdout.buffer.write(dumps_json(payload))
        sys.stdout.buffer.write(b"\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
