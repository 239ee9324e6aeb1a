"""Command-line entry point for the WorkMatch engine."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import sys
import time
from pathlib import Path
from typing import List, Optional, Tuple

from workmatch.config.environment import EnvironmentConfig
from workmatch.config.exceptions import ConfigurationError
from workmatch.config.loader import load_config
from workmatch.config.models import AppConfig
from workmatch.logging import get_logger
from workmatch.logging.config import configure_logging
from workmatch.matching.exceptions import MatchingError
from workmatch.matching.models import SortMode
from workmatch.notifications.dispatcher import NotificationDispatcher
from workmatch.notifications.factory import build_channels
from workmatch.persistence.database import close_database, init_database
from workmatch.persistence.exceptions import RecordNotFoundError
from workmatch.persistence.repositories import ListingFilters
from workmatch.persistence.stores import SqlNotificationStore
from workmatch.pipeline import MatchingPipeline

logger = get_logger(__name__, component="cli")


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and settle the effective log level.

    Log level priority: CLI > LOG_LEVEL environment variable > config file.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif not env_config.log_level:
        env_config.log_level = app_config.logging.level

    return app_config, env_config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workmatch",
        description="WorkMatch - job/worker scoring, listing ranking and match notifications",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the database schema")

    score_parser = subparsers.add_parser("score", help="Score one worker against one job")
    score_parser.add_argument("--job-id", required=True)
    score_parser.add_argument("--worker-id", required=True)

    match_parser = subparsers.add_parser("match", help="List workers matching a job")
    match_parser.add_argument("--job-id", required=True)
    match_parser.add_argument(
        "--min-score", type=int, default=None, help="Inclusive threshold (default from config)"
    )

    list_parser = subparsers.add_parser("list-jobs", help="Rank open jobs for a viewer")
    list_parser.add_argument("--viewer-id", default=None)
    list_parser.add_argument("--lat", type=float, default=None)
    list_parser.add_argument("--lon", type=float, default=None)
    list_parser.add_argument(
        "--sort", default=SortMode.MATCH.value, help="match, date, pay or distance"
    )
    list_parser.add_argument("--page", type=int, default=1)
    list_parser.add_argument("--page-size", type=int, default=None)
    list_parser.add_argument("--city", default=None)
    list_parser.add_argument("--skill-id", action="append", default=[], dest="skill_ids")

    notify_parser = subparsers.add_parser(
        "notify-job", help="Notify every matching worker about a job"
    )
    notify_parser.add_argument("--job-id", required=True)

    return parser


def run_command(args: argparse.Namespace, pipeline: MatchingPipeline) -> int:
    """Execute one subcommand and print its result; returns the exit code."""
    if args.command == "score":
        breakdown = pipeline.score_pair(args.job_id, args.worker_id)
        print(f"Score for worker {args.worker_id} on job {args.job_id}: {breakdown.total}")
        for name, value in breakdown.as_dict().items():
            print(f"  {name}: {value}")
        return 0

    if args.command == "match":
        result = pipeline.find_matches_for_job(args.job_id, min_score=args.min_score)
        print(
            f"{len(result.candidates)} matching workers "
            f"(scanned {result.scanned_count}, skipped {result.skipped_count})"
        )
        for rank, candidate in enumerate(result.candidates, start=1):
            print(f"{rank:>4}. {candidate.worker_id}  score={candidate.score}")
        return 0

    if args.command == "list-jobs":
        filters = ListingFilters(city=args.city, skill_ids=frozenset(args.skill_ids))
        page = pipeline.list_jobs(
            filters=filters,
            viewer_id=args.viewer_id,
            latitude=args.lat,
            longitude=args.lon,
            sort_mode=args.sort,
            page=args.page,
            page_size=args.page_size,
        )
        print(
            f"Page {page.page}/{page.total_pages} ({page.total_count} jobs, "
            f"sorted by {page.sort_mode.value})"
        )
        for item in page.items:
            score = "-" if item.match_score is None else item.match_score
            print(
                f"  [{score:>3}] {item.posting.id}  {item.posting.title or ''}  "
                f"${item.posting.pay_amount:g}/{item.posting.pay_type.value.lower()}"
            )
        return 0

    if args.command == "notify-job":
        result = pipeline.notify_job(args.job_id)
        print(
            f"Job {result.job_id}: {result.matched_count} matched, "
            f"{result.created_count} notified, {result.duplicate_count} already notified, "
            f"{result.failed_count} failed"
        )
        return 1 if result.had_failures else 0

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the WorkMatch CLI.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    start_time = time.time()
    args = build_parser().parse_args(argv)

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=env_config.environment,
        )

        logger.info(
            "WorkMatch command starting",
            extra={
                "event": "service.starting",
                "command": args.command,
                "log_level": env_config.log_level,
            },
        )

        init_database(env_config.database_url)

        if args.command == "init-db":
            print("Database schema is ready")
            return 0

        channels = build_channels(app_config.notifications, env_config)
        dispatcher = NotificationDispatcher(
            SqlNotificationStore(),
            channels=channels,
            config=app_config.notifications,
            matching_config=app_config.matching,
        )
        pipeline = MatchingPipeline(app_config, dispatcher=dispatcher)

        exit_code = run_command(args, pipeline)

        logger.info(
            "WorkMatch command finished",
            extra={
                "event": "service.stopping",
                "command": args.command,
                "exit_code": exit_code,
                "uptime_seconds": round(time.time() - start_time, 2),
            },
        )
        return exit_code

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        return 1
    except (RecordNotFoundError, MatchingError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error",
            extra={
                "event": "service.failed",
                "error_type": type(e).__name__,
                "error": str(e),
            },
            exc_info=True,
        )
        return 1
    finally:
        close_database()


if __name__ == "__main__":
    sys.exit(main())
