#!/usr/bin/env python3
"""CLI: Run one natural-language command against a local canvas."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import uuid
from pathlib import Path

# Ensure the package is importable when running as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from boardpilot import config
from boardpilot.agent.engine import CommandEngine
from boardpilot.agent.provider import GeminiProvider
from boardpilot.storage.sqlite_store import SqliteStore
from boardpilot.tools.context import Viewport


def main() -> None:
    parser = argparse.ArgumentParser(description="Run a canvas command")
    parser.add_argument("command", help="Natural-language command, e.g. 'create a SWOT analysis'")
    parser.add_argument("--canvas", default="local", help="Canvas id (default: local)")
    parser.add_argument("--user", default="cli", help="User id recorded on created objects")
    parser.add_argument(
        "--center", type=float, nargs=2, default=(0.0, 0.0), metavar=("X", "Y"),
        help="Viewport center (default: 0 0)",
    )
    parser.add_argument("--select", nargs="*", default=[], help="Selected object ids")
    parser.add_argument("--job", default=None, help="Idempotency key (default: random)")
    parser.add_argument("--db", type=Path, default=None, help=f"SQLite path (default: {config.SQLITE_PATH})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    if not config.GEMINI_API_KEY:
        print("Warning: GEMINI_API_KEY is not set; only fast-path commands will work.", file=sys.stderr)

    db_path = args.db or config.SQLITE_PATH
    db_path.parent.mkdir(parents=True, exist_ok=True)
    store = SqliteStore(db_path)
    store.init_db()

    cx, cy = args.center
    viewport = Viewport(
        min_x=cx - 800, min_y=cy - 450, max_x=cx + 800, max_y=cy + 450,
        center_x=cx, center_y=cy, scale=1.0,
    )
    engine = CommandEngine(store=store, provider=GeminiProvider())
    try:
        result = engine.submit_command(
            command=args.command,
            canvas_id=args.canvas,
            user_id=args.user,
            viewport=viewport,
            selected_ids=args.select,
            job_id=args.job or str(uuid.uuid4()),
        )
    finally:
        store.close()

    print(json.dumps(result.to_dict(), indent=2))
    sys.exit(0 if result.success else 1)


if __name__ == "__main__":
    main()
