"""Close out a day's unfinished tasks; invoked once per day by the external cron entry.

Example crontab line (server clock in the closeout timezone)::

    59 23 * * *  cd /srv/studyline/backend && python -m scripts.run_closeout
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from typing import Optional

from studyline.closeout import run_daily_closeout
from studyline.logging_config import configure_logging
from studyline.rescheduler import reschedule_engine

LOGGER = logging.getLogger("studyline.closeout_cli")


def _parse_date(raw: str) -> date:
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected YYYY-MM-DD, got '{raw}'.") from exc


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reschedule incomplete tasks for a closed date.")
    parser.add_argument(
        "--date",
        type=_parse_date,
        default=None,
        help="Date to close out (default: today in the closeout timezone).",
    )
    parser.add_argument(
        "--student",
        default=None,
        help="Only close out this student (manual re-run). Requires --date.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Parallel workers for the batch (default: STUDYLINE_CLOSEOUT_WORKERS).",
    )
    args = parser.parse_args(argv)
    if args.student and args.date is None:
        parser.error("--student requires --date")
    return args


def main(argv: Optional[list[str]] = None) -> int:
    configure_logging()
    args = parse_args(argv)

    if args.student:
        try:
            outcome = reschedule_engine.reschedule(args.student, args.date)
        except Exception as exc:  # noqa: BLE001
            LOGGER.error("Manual closeout failed for %s: %s", args.student, exc)
            return 1
        print(outcome.model_dump_json())
        return 0

    try:
        report = run_daily_closeout(args.date, max_workers=args.workers)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Closeout run failed: %s", exc)
        return 1
    print(json.dumps(report.model_dump(mode="json")))
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
