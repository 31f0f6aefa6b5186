#!/usr/bin/env python3
"""
Import a race's results from a provider JSON export and resolve runners.

Normal usage:
    python scripts/import_results.py results.json --provider runsignup \
        --race-ref rsu-2025-austin-half --race-date 2025-02-16

Dry run (show what the engine would decide, write nothing):
    python scripts/import_results.py results.json --provider raceroster \
        --race-ref rr-99812 --dry-run

The JSON file holds either a list of result rows or an object with a
"results" list. Ctrl-C stops the import between records; records already
resolved stay committed.
"""
from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from collections import Counter
from datetime import date
from pathlib import Path
from time import perf_counter

# Add src to path so this script can be run directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from runmatch.config import settings
from runmatch.db import get_session
from runmatch.errors import MalformedInputError
from runmatch.runners.identity import RunnerIdentityService
from runmatch.runners.providers import map_provider_results
from runmatch.services.results_ingestion import ingest_batch

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Import provider results and resolve runner identities.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("path", help="Provider JSON export")
    parser.add_argument(
        "--provider",
        required=True,
        help="Source provider (runsignup, raceroster, or any name for generic rows).",
    )
    parser.add_argument("--race-ref", required=True, help="Race reference stored on each result.")
    parser.add_argument(
        "--race-date",
        default=None,
        help="Race date (YYYY-MM-DD), used to age runners. Defaults to today.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=settings.import_max_workers,
        help="Worker threads (default: %(default)s).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Evaluate every record without writing to the database.",
    )
    return parser


def _load_rows(path: Path) -> list[dict]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("results", [])
    if not isinstance(data, list):
        raise ValueError("expected a list of result rows")
    return data


def main() -> int:
    args = _build_parser().parse_args()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    try:
        race_date = date.fromisoformat(args.race_date) if args.race_date else None
    except ValueError as exc:
        print(f"ERROR: --race-date must be YYYY-MM-DD: {exc}")
        return 1

    try:
        rows = _load_rows(Path(args.path))
    except (OSError, ValueError) as exc:
        print(f"ERROR: could not read {args.path}: {exc}")
        return 1

    records = map_provider_results(args.provider, rows, args.race_ref, race_date)
    print(f"IMPORT  provider={args.provider}  race={args.race_ref}  records={len(records)}  dry_run={args.dry_run}")
    print("-" * 60)

    if args.dry_run:
        outcomes: Counter[str] = Counter()
        with get_session() as session:
            service = RunnerIdentityService(session)
            for record in records:
                try:
                    decision = service.evaluate(record)
                except MalformedInputError as exc:
                    outcomes["rejected"] += 1
                    print(f"  REJECT  {record.result_key}: {exc.reason}")
                    continue
                outcomes[decision.outcome] += 1
                top = decision.top
                print(
                    f"  {decision.outcome:<15} {record.raw_name!r:<30} "
                    f"top={top.runner_id if top else '-'}  score={decision.top_score:.2f}"
                )
            session.rollback()
        print("-" * 60)
        for outcome, count in sorted(outcomes.items()):
            print(f"{outcome:<16}{count}")
        print("(dry run, nothing written)")
        return 0

    cancel_event = threading.Event()

    def _request_stop(signum, frame):
        logger.warning("Interrupt received, finishing in-flight records")
        cancel_event.set()

    signal.signal(signal.SIGINT, _request_stop)

    t_start = perf_counter()
    stats = ingest_batch(records, max_workers=args.workers, cancel_event=cancel_event)
    elapsed = perf_counter() - t_start

    print(stats.summary())
    print(f"Elapsed: {elapsed:.2f}s")
    return 1 if stats.errors or stats.cancelled else 0


if __name__ == "__main__":
    raise SystemExit(main())
