#!/usr/bin/env python3
"""
Reset request limits whose period has ended.

Usage:
  python scripts/reset_request_limits.py
  python scripts/reset_request_limits.py --now 2026-01-01T00:00:00+00:00
"""

from __future__ import annotations

import argparse
import datetime as dt
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from chatrelay.db import SessionLocal  # noqa: E402
from chatrelay.logging_config import setup_logging  # noqa: E402
from chatrelay.services.quota_service import reset_expired_limits  # noqa: E402


def _parse_now(value: str) -> dt.datetime:
    parsed = dt.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Reset expired per-user request limits.")
    parser.add_argument(
        "--now",
        type=_parse_now,
        default=None,
        help="treat this ISO-8601 timestamp as the current time (default: now, UTC)",
    )
    args = parser.parse_args(argv)

    setup_logging()
    with SessionLocal() as session:
        count = reset_expired_limits(session, now=args.now)

    sys.stdout.write(f"reset {count} request limit(s)\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
