"""Command-line interface for the consolidation job."""

import argparse
import asyncio
import json
import logging
from datetime import datetime

from .config import ConsolidationConfig, config_from_env
from .errors import ConfigurationError, StorageError
from .logging import JSONLLogger
from .memory import (
    ConsolidationExtractor,
    ConsolidationJob,
    RecordStore,
    RetentionSweeper,
    RunReport,
    migrate_memories_to_facts,
)
from .memory.store import utcnow
from .scheduler import ConsolidationScheduler


def load_config() -> ConsolidationConfig:
    """Load the job configuration from the environment."""
    return config_from_env()


def _open_store(config: ConsolidationConfig) -> RecordStore:
    assert config.db_path is not None
    store = RecordStore(config.db_path)
    store.init_db()
    return store


def _parse_time(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid ISO timestamp: {value!r}") from e


async def _run_job(job: ConsolidationJob, now: datetime | None) -> RunReport:
    try:
        return await job.run(now)
    finally:
        await job.extractor.close()


def cmd_run(args: argparse.Namespace) -> int:
    """Run one consolidation cycle and print its report."""
    config = load_config()
    extractor = ConsolidationExtractor.from_config(config)
    extractor.require_client()

    assert config.log_dir is not None
    store = _open_store(config)
    try:
        job = ConsolidationJob(store, extractor, config, event_log=JSONLLogger(config.log_dir))
        report = asyncio.run(_run_job(job, args.now))
    finally:
        store.close()

    print(f"Run {report.run_id}")
    print(f"Batches consolidated: {len(report.consolidated)}")
    print(f"Batches failed: {len(report.failed)}")
    for outcome in report.failed:
        print(
            f"  family {outcome.family_id}, user {outcome.user_id or 'N/A'}: "
            f"{type(outcome.error).__name__}: {outcome.error}"
        )
    if report.purge_error is not None:
        print(f"Purge failed: {report.purge_error}")
    else:
        print(f"Purged records: {report.purged}")
    return 0


def cmd_purge(args: argparse.Namespace) -> int:
    """Delete old consolidated records without running extraction."""
    config = load_config()
    hours = args.hours if args.hours is not None else config.retention_hours
    store = _open_store(config)
    try:
        purged = RetentionSweeper(store).purge(hours, args.now or utcnow())
    finally:
        store.close()
    print(f"Purged {purged} consolidated record(s) older than {hours}h")
    return 0


def cmd_migrate(args: argparse.Namespace) -> int:
    """Copy standing memory records into long-term facts."""
    config = load_config()
    store = _open_store(config)
    try:
        created = migrate_memories_to_facts(store)
    finally:
        store.close()
    print(f"Migration complete: {created} fact(s) created")
    return 0


def cmd_facts(args: argparse.Namespace) -> int:
    """List long-term facts of a family."""
    config = load_config()
    store = _open_store(config)
    try:
        if args.user is not None:
            facts = store.find_facts(args.family, args.user or None)
        else:
            facts = store.list_facts(args.family)
    finally:
        store.close()

    if not facts:
        print("No facts found.")
        return 0

    print(f"\n{'User':<12} {'Key':<32} {'Conf':<6} Value")
    print("-" * 80)
    for fact in facts:
        value = json.dumps(fact.value, ensure_ascii=False)
        if len(value) > 40:
            value = value[:37] + "..."
        print(f"{fact.user_id or '-':<12} {fact.key:<32} {fact.confidence:<6.2f} {value}")
    print(f"\nTotal: {len(facts)} fact(s)")
    return 0


def cmd_summaries(args: argparse.Namespace) -> int:
    """List consolidation summaries of a family."""
    config = load_config()
    store = _open_store(config)
    try:
        summaries = store.get_summaries(args.family, run_id=args.run)
    finally:
        store.close()

    if not summaries:
        print("No summaries found.")
        return 0

    for summary in summaries:
        tags = f" [{', '.join(summary.tags)}]" if summary.tags else ""
        print(
            f"{summary.occurred_at.isoformat()} {summary.user_id or '-'}: "
            f"{summary.summary}{tags}"
        )
    return 0


async def _schedule(config: ConsolidationConfig) -> int:
    scheduler = ConsolidationScheduler(config)
    if not scheduler.start():
        return 0
    try:
        await scheduler.wait()
    finally:
        scheduler.stop()
    return 0


def cmd_schedule(args: argparse.Namespace) -> int:
    """Run the job on its interval until interrupted."""
    config = load_config()
    if args.force:
        config.enabled = True
    try:
        return asyncio.run(_schedule(config))
    except KeyboardInterrupt:
        return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the linz CLI."""
    parser = argparse.ArgumentParser(
        prog="linz",
        description="LinZ memory consolidation",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Sub-command help")

    run_parser = subparsers.add_parser("run", help="Run one consolidation cycle")
    run_parser.add_argument(
        "--now",
        type=_parse_time,
        help="Reference time as ISO timestamp (defaults to now)",
    )

    purge_parser = subparsers.add_parser("purge", help="Purge old consolidated records")
    purge_parser.add_argument(
        "--hours",
        type=float,
        help="Retention window in hours (defaults to LINZ_RETENTION_HOURS)",
    )
    purge_parser.add_argument("--now", type=_parse_time, help="Reference time as ISO timestamp")

    schedule_parser = subparsers.add_parser("schedule", help="Run the job periodically")
    schedule_parser.add_argument(
        "--force",
        action="store_true",
        help="Run even if ENABLE_LINZ_CONSOLIDATION_JOB is not set",
    )

    subparsers.add_parser("migrate-memories", help="Copy memory records into facts")

    facts_parser = subparsers.add_parser("facts", help="List facts of a family")
    facts_parser.add_argument("family", type=int, help="Family id")
    facts_parser.add_argument(
        "-u", "--user",
        help="Only facts of this user (empty string for family-wide facts)",
    )

    summaries_parser = subparsers.add_parser("summaries", help="List summaries of a family")
    summaries_parser.add_argument("family", type=int, help="Family id")
    summaries_parser.add_argument("--run", help="Only summaries of this run id")

    return parser


COMMANDS = {
    "run": cmd_run,
    "purge": cmd_purge,
    "schedule": cmd_schedule,
    "migrate-memories": cmd_migrate,
    "facts": cmd_facts,
    "summaries": cmd_summaries,
}


def run_cli(argv: list[str] | None = None) -> int:
    """Run the CLI with given arguments.

    Args:
        argv: Command-line arguments. Uses sys.argv[1:] if None.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return COMMANDS[args.command](args)
    except (ConfigurationError, StorageError) as e:
        print(f"Error: {e}")
        return 1
