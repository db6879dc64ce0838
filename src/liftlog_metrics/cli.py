"""CLI entry point for metrics maintenance against the PostgreSQL store."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Sequence

from .config import Config
from .documents import all_time_metrics_path, last_session_metrics_path
from .engine import WorkoutMetricsEngine
from .errors import ConfigError
from .logging import setup_logging
from .postgres_store import PostgresDocumentStore

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="liftlog-metrics",
        description="Maintain per-exercise workout metrics documents.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create the documents table if missing.")

    rescan = commands.add_parser(
        "rescan",
        help="Rebuild last-session and all-time metrics from stored instance records.",
    )
    rescan.add_argument("--user-id", required=True, help="Owner of the exercises.")
    rescan.add_argument(
        "--exercise-id",
        action="append",
        required=True,
        help="Exercise to rebuild (repeatable).",
    )

    replay = commands.add_parser(
        "replay-pending",
        help="Rescan exercises named by leftover pending-metrics records.",
    )
    replay.add_argument("--user-id", required=True, help="Owner of the pending records.")

    show = commands.add_parser("show", help="Print both metrics documents of an exercise.")
    show.add_argument("--user-id", required=True)
    show.add_argument("--exercise-id", required=True)

    return parser


async def _run(args: argparse.Namespace, config: Config) -> int:
    if config.database_url is None:
        raise ConfigError("DATABASE_URL must be set")
    async with await PostgresDocumentStore.connect(
        config.database_url, config.documents_table
    ) as store:
        if args.command == "init-db":
            await store.ensure_schema()
            return 0

        if args.command == "show":
            result = {
                "lastSessionMetrics": await store.get(
                    last_session_metrics_path(args.user_id, args.exercise_id)
                ),
                "allTimeMetrics": await store.get(
                    all_time_metrics_path(args.user_id, args.exercise_id)
                ),
            }
            print(json.dumps(result, indent=2, sort_keys=True))
            return 0

        engine = WorkoutMetricsEngine.from_config(store, config)
        if args.command == "rescan":
            for exercise_id in dict.fromkeys(args.exercise_id):
                rebuilt = await engine.recompute_metrics_for_exercise(args.user_id, exercise_id)
                logger.info(
                    "Rescanned exercise=%s (last session %s)",
                    exercise_id,
                    rebuilt.latest.session_id if rebuilt.latest else None,
                )
            return 0

        if args.command == "replay-pending":
            rescanned = await engine.replay_pending_metrics(args.user_id)
            print(json.dumps({"rescanned": sorted(rescanned)}, indent=2))
            return 0

    return 2


def main(argv: Sequence[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    config = Config.from_env(require_database=True)
    setup_logging(config.log_format, config.log_level)
    raise SystemExit(asyncio.run(_run(args, config)))


if __name__ == "__main__":
    main()
