#!/usr/bin/env python3
"""Auto-correct known domain typos and report suggestions.

Usage::

    python3 scripts/autocorrect_text.py --text "Beautiful bokhe with depth of feild"
    python3 scripts/autocorrect_text.py --input prompt.txt --typos extra_typos.json \\
        --candidates lighting shadow bokeh
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from span_engine.fuzzy import DEFAULT_TYPOS, FuzzyMatcher, load_typo_table
from span_engine.io_utils import dumps_json

log = logging.getLogger("autocorrect_text")


def main() -> int:
    parser = argparse.ArgumentParser(description="Auto-correct known typos in text.")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--text", default=None, help="Text to correct")
    source.add_argument("--input", type=Path, default=None, help="File with text to correct")
    parser.add_argument("--typos", type=Path, default=None, help="Extra typo table JSON")
    parser.add_argument(
        "--candidates",
        nargs="*",
        default=[],
        help="Vocabulary for near-miss suggestions beyond the typo table.",
    )
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    text = args.text if args.text is not None else args.input.read_text(encoding="utf-8")
    typos = load_typo_table(args.typos) if args.typos is not None else DEFAULT_TYPOS
    matcher = FuzzyMatcher(typos)
    log.debug("Typo table: %d entries", len(matcher.typos))

    suggestions = matcher.suggest_corrections(text, args.candidates)
    payload = {
        "original": text,
        "corrected": matcher.auto_correct(text),
        "suggestions": [s.as_dict() for s in suggestions],
    }
    sys.stdout.buffer.write(dumps_json(payload))
    sys.stdout.buffer.write(b"\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
