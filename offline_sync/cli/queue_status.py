"""Inspect and repair the offline mutation queue.

Usage:
    python -m offline_sync.cli.queue_status [pending]
    python -m offline_sync.cli.queue_status dead-letters
    python -m offline_sync.cli.queue_status requeue <action-id>
    python -m offline_sync.cli.queue_status purge-dead-letters
    python -m offline_sync.cli.queue_status cache-stats
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

from offline_sync.config import load_config
from offline_sync.core.logging_utils import setup_json_logging
from offline_sync.core.time_utils import from_epoch
from offline_sync.db.session import StoreSessionManager
from offline_sync.db.store import PersistentStore
from offline_sync.domain.exceptions import SyncEngineError
from offline_sync.services.entity_cache import EntityCache
from offline_sync.services.mutation_queue import MutationQueue

if TYPE_CHECKING:
    from offline_sync.config import AppConfig
    from offline_sync.domain.models import DeadLetter, PendingAction

logger = logging.getLogger(__name__)

COMMANDS = ("pending", "dead-letters", "requeue", "purge-dead-letters", "cache-stats")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Inspect pending and dead-lettered offline actions",
        allow_abbrev=False,
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="pending",
        choices=COMMANDS,
        help="What to show or do (default: pending).",
    )
    parser.add_argument(
        "action_id",
        nargs="?",
        help="Dead-lettered action id, required by 'requeue'.",
    )
    parser.add_argument(
        "--db-path",
        help="Override OFFLINE_DB_PATH for this run.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON instead of a table.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="WARNING",
        help="Log level for this session (default: WARNING).",
    )
    args = parser.parse_args(argv)
    if args.command == "requeue" and not args.action_id:
        parser.error("requeue requires an action id")
    return args


def _prepare_config(args: argparse.Namespace) -> AppConfig:
    overrides: dict[str, Any] = {}
    if args.db_path:
        overrides["storage"] = {"db_path": args.db_path}
    try:
        return load_config(**overrides)
    except RuntimeError as exc:
        msg = f"Configuration error: {exc}"
        raise SystemExit(msg) from exc


def _format_time(timestamp: float) -> str:
    moment = from_epoch(timestamp)
    return moment.isoformat(timespec="seconds") if moment else "-"


def _action_row(action: PendingAction) -> dict[str, Any]:
    return {
        "id": action.id,
        "kind": action.kind.value,
        "target": action.target,
        "state": action.state.value,
        "retry_count": action.retry_count,
        "enqueued_at": _format_time(action.enqueued_at),
        "last_error": action.last_error,
    }


def _dead_letter_row(dead_letter: DeadLetter) -> dict[str, Any]:
    row = _action_row(dead_letter.action)
    row["dropped_at"] = _format_time(dead_letter.dropped_at)
    return row


def _print_rows(title: str, rows: list[dict[str, Any]], as_json: bool) -> None:
    if as_json:
        print(json.dumps(rows, indent=2, default=str))
        return
    print(f"{title}: {len(rows)}")
    for idx, row in enumerate(rows, 1):
        print(f"{idx}. {row['id']}  {row['kind']} {row['target']}  [{row['state']}]")
        print(f"   retries: {row['retry_count']}  enqueued: {row['enqueued_at']}")
        if row.get("dropped_at"):
            print(f"   dropped: {row['dropped_at']}")
        if row.get("last_error"):
            print(f"   last error: {row['last_error']}")


async def run(args: argparse.Namespace, cfg: AppConfig) -> int:
    session = StoreSessionManager(
        path=cfg.storage.db_path,
        operation_timeout=cfg.storage.operation_timeout,
        max_retries=cfg.storage.max_retries,
    )
    store = PersistentStore(session)
    queue = MutationQueue(store, max_retries=cfg.sync.max_retries)
    try:
        if args.command == "pending":
            actions = await queue.list_all()
            _print_rows("Pending actions", [_action_row(a) for a in actions], args.json)
        elif args.command == "dead-letters":
            dead_letters = await queue.list_dead_letters()
            _print_rows("Dead letters", [_dead_letter_row(d) for d in dead_letters], args.json)
        elif args.command == "requeue":
            action = await queue.requeue_dead_letter(args.action_id)
            print(f"Requeued {action.id} ({action.kind.value} on {action.target})")
        elif args.command == "purge-dead-letters":
            purged = await queue.purge_dead_letters()
            print(f"Purged {purged} dead letters")
        else:
            cache = EntityCache(store, ttl_seconds=cfg.sync.cache_ttl_seconds)
            stats = asdict(await cache.stats())
            if args.json:
                print(json.dumps(stats, indent=2))
            else:
                for key, value in stats.items():
                    print(f"{key}: {value}")
        return 0
    except SyncEngineError as exc:
        logger.error("queue_status_failed", extra={"command": args.command, "error": exc.message})
        print(f"Error: {exc.message}")
        return 1
    finally:
        await store.close()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    cfg = _prepare_config(args)
    setup_json_logging(
        level=args.log_level,
        include_location=False,
        use_loguru=cfg.runtime.use_loguru,
        log_file=cfg.runtime.log_file,
    )
    return asyncio.run(run(args, cfg))


if __name__ == "__main__":
    sys.exit(main())
