#!/usr/bin/env python3
"""
Work the runner match review queue from the command line.

    python scripts/review_matches.py list [--provider runsignup] [--race-ref X] [--min-score 60]
    python scripts/review_matches.py candidates 42
    python scripts/review_matches.py approve 42 --reviewer alice [--runner-id 1187]
    python scripts/review_matches.py reject 42 --reviewer alice
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add src to path so this script can be run directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from runmatch.config import settings
from runmatch.db import get_session
from runmatch.errors import ReviewConflictError, ReviewEntryNotFoundError, SnapshotDecodeError
from runmatch.runners.review import ReviewQueueManager
from runmatch.runners.snapshot import OpaqueSnapshot


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="List and resolve pending runner matches.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    commands = parser.add_subparsers(dest="command", required=True)

    list_cmd = commands.add_parser("list", help="Show pending entries, oldest first.")
    list_cmd.add_argument("--provider", default=None)
    list_cmd.add_argument("--race-ref", default=None)
    list_cmd.add_argument("--min-score", type=float, default=None)
    list_cmd.add_argument("--limit", type=int, default=50)

    candidates_cmd = commands.add_parser("candidates", help="Re-score an entry's candidates.")
    candidates_cmd.add_argument("entry_id", type=int)

    approve_cmd = commands.add_parser("approve", help="Approve an entry.")
    approve_cmd.add_argument("entry_id", type=int)
    approve_cmd.add_argument("--reviewer", required=True)
    approve_cmd.add_argument(
        "--runner-id",
        type=int,
        default=None,
        help="Link to this runner instead of the proposed candidate.",
    )

    reject_cmd = commands.add_parser("reject", help="Reject an entry (result goes to a new runner).")
    reject_cmd.add_argument("entry_id", type=int)
    reject_cmd.add_argument("--reviewer", required=True)
    return parser


def _list(queue: ReviewQueueManager, args: argparse.Namespace) -> int:
    entries = queue.list_pending(
        provider=args.provider,
        race_ref=args.race_ref,
        min_score=args.min_score,
        limit=args.limit,
    )
    if not entries:
        print("No pending entries.")
        return 0

    for entry in entries:
        snapshot = queue.raw_record(entry.id)
        name = snapshot.payload.get("raw_name") if isinstance(snapshot, OpaqueSnapshot) else snapshot.raw_name
        print(
            f"#{entry.id:<6} {entry.source_provider}:{entry.source_result_id:<20} "
            f"{name!r:<28} -> runner {entry.candidate_runner_id or 'NEW':<6} "
            f"score={float(entry.match_score):6.2f}  {', '.join(entry.match_reasons or [])}"
        )
    print(f"\n{len(entries)} pending")
    return 0


def _candidates(queue: ReviewQueueManager, args: argparse.Namespace) -> int:
    candidates = queue.candidates(args.entry_id)
    if not candidates:
        print("No candidates (entry proposes a new runner).")
        return 0
    for candidate in candidates:
        profile = candidate.profile
        print(
            f"runner {candidate.runner_id:<6} {profile.name!r:<28} "
            f"{profile.city or '-'}, {profile.state or '-'}  age={profile.age if profile.age is not None else '-'}  "
            f"score={candidate.score:6.2f}  {', '.join(sorted(candidate.reasons))}"
        )
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    try:
        with get_session() as session:
            queue = ReviewQueueManager(session)
            if args.command == "list":
                return _list(queue, args)
            if args.command == "candidates":
                return _candidates(queue, args)
            if args.command == "approve":
                entry = queue.approve(args.entry_id, args.reviewer, runner_id=args.runner_id)
            else:
                entry = queue.reject(args.entry_id, args.reviewer)
            print(f"Entry {entry.id} {entry.status}: result linked to runner {entry.resolved_runner_id}")
            return 0
    except ReviewEntryNotFoundError as exc:
        print(f"ERROR: {exc}")
        return 1
    except ReviewConflictError as exc:
        print(f"CONFLICT: {exc}")
        return 2
    except (SnapshotDecodeError, ValueError) as exc:
        print(f"ERROR: {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
