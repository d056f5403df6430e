#!/usr/bin/env python3
"""
Run the processing queue (and optionally pairing / resets) without Redis/Celery.

Usage (from backend/; use the project venv):
  ./.venv/bin/python scripts/process_queue.py

Common examples:
  # Process up to 50 messages in one job
  ./.venv/bin/python scripts/process_queue.py --limit 50

  # Only run internal-movement detection for one day
  ./.venv/bin/python scripts/process_queue.py --detect-only --date 2026-01-03

  # Re-evaluate internal movements for one day
  ./.venv/bin/python scripts/process_queue.py --reset-movements --date 2026-01-03

  # Mark everything unprocessed, then process again
  ./.venv/bin/python scripts/process_queue.py --unprocess-all --limit 100
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys

# Ensure backend package is importable when run as script from backend or project root
_script_dir = os.path.dirname(os.path.abspath(__file__))
_backend = os.path.dirname(_script_dir)
if _backend not in sys.path:
    sys.path.insert(0, _backend)

from mailledger.config import settings
from mailledger.database import SessionLocal, init_db
from mailledger.job_state_db import create_job, get_job, job_to_dict
from mailledger.message_store import unprocess_all
from mailledger.services.internal_movements import (
    detect_and_flag_internal_movements,
    reset_internal_movements,
)
from mailledger.services.queue_processor import run_job_processor


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Process captured bank notifications into transactions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--limit", type=int, default=settings.queue_default_batch_size, help="Max messages per job")
    parser.add_argument("--date", type=str, default=None, help="YYYY-MM-DD for --detect-only / --reset-movements")
    parser.add_argument("--detect-only", action="store_true", help="Only run internal-movement detection")
    parser.add_argument("--reset-movements", action="store_true", help="Clear internal-movement flags")
    parser.add_argument("--unprocess-all", action="store_true", help="Reset processed messages before running")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    init_db()
    db = SessionLocal()
    try:
        if args.reset_movements:
            count = reset_internal_movements(db, target_date=args.date)
            print(f"Reset {count} transactions")
            return 0
        if args.detect_only:
            result = detect_and_flag_internal_movements(db, target_date=args.date)
            print(f"Checked {result['checked']}, flagged {result['internal_movements']}")
            return 0
        if args.unprocess_all:
            print(f"Unprocessed {unprocess_all(db)} messages")

        job = create_job(db, limit=args.limit, trigger="manual")
        try:
            run_job_processor(db, job.id)
        finally:
            print(json.dumps(job_to_dict(get_job(db, job.id)), indent=2, default=str))
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
