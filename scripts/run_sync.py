"""Command-line entry point for running sync operations without the web API.

Examples:
    python scripts/run_sync.py full --term 2025-1
    python scripts/run_sync.py incremental --term 2025-1
    python scripts/run_sync.py status <root_id>
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from dotenv import load_dotenv

from config import load_settings

from src.course_sync.course_sync.container import build_container
from src.course_sync.course_sync.core.exceptions import DomainError
from src.course_sync.course_sync.main import configure_logging
from src.course_sync.course_sync.runtime import SyncRuntime
from src.course_sync.course_sync.sync.model import FullSyncOptions


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Course to calendar sync")
    sub = parser.add_subparsers(dest="command", required=True)

    full = sub.add_parser("full", help="Full sync of every occurrence that needs it")
    full.add_argument("--term", required=True)
    full.add_argument("--batch-size", type=int, default=FullSyncOptions.batch_size)
    full.add_argument("--max-concurrency", type=int, default=FullSyncOptions.max_concurrency)
    full.add_argument("--course", action="append", dest="course_ids", help="Restrict to a course id (repeatable)")
    full.add_argument("--no-wait", action="store_true", help="Return before queued jobs finish")

    inc = sub.add_parser("incremental", help="Sync rows changed since the stored checkpoint")
    inc.add_argument("--term", required=True)
    inc.add_argument("--since", type=int, default=None)
    inc.add_argument("--no-wait", action="store_true")

    status = sub.add_parser("status", help="Show progress of a sync root task")
    status.add_argument("root_id")

    cancel = sub.add_parser("cancel", help="Cancel a sync root task and its subtree")
    cancel.add_argument("root_id")

    soft = sub.add_parser("soft-delete", help="Soft delete occurrences and remove their calendar events")
    soft.add_argument("occurrence_ids", nargs="+")
    soft.add_argument("--no-wait", action="store_true")

    done = sub.add_parser("complete-soft-delete", help="Finalize soft deletes whose removals are terminal")
    done.add_argument("--term", required=True)

    return parser


def _print(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def main(argv: list[str] | None = None) -> int:
    load_dotenv(override=False)
    args = _parser().parse_args(argv)

    settings = load_settings()
    configure_logging(getattr(settings, "LOG_LEVEL", "INFO"))
    container = build_container(db_config=dict(settings.DB_CONFIG), settings=settings)
    runtime = SyncRuntime(container.queue, container.runner)
    runtime.start()

    try:
        if args.command == "full":
            options = FullSyncOptions(
                batch_size=args.batch_size,
                max_concurrency=args.max_concurrency,
                course_ids=args.course_ids,
            )
            result = runtime.run(container.orchestrator.start_full_sync(args.term, options))
        elif args.command == "incremental":
            result = runtime.run(container.orchestrator.incremental_sync(args.term, args.since))
        elif args.command == "status":
            result = runtime.run(container.orchestrator.get_sync_status(args.root_id))
            if result is None:
                print(f"ERROR: task {args.root_id} not found", file=sys.stderr)
                return 1
        elif args.command == "cancel":
            _print({"root_id": args.root_id, "cancelled": runtime.run(container.orchestrator.cancel_sync(args.root_id))})
            return 0
        elif args.command == "soft-delete":
            result = runtime.run(container.aggregator.soft_delete(args.occurrence_ids))
        else:
            result = runtime.run(container.aggregator.complete_soft_delete(args.term))

        if not getattr(args, "no_wait", True):
            runtime.wait_idle()
        _print(result.to_dict())
        return 0
    except DomainError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    finally:
        runtime.run(container.gateway.aclose())
        runtime.stop()


if __name__ == "__main__":
    sys.exit(main())
