"""
Command line entry point. Each command is one batch invocation, meant to be
triggered by cron or by hand.
"""
import argparse
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import List, Optional

from nycping.core.entities import Slot, Tier
from nycping.delivery.operator_alerts import OperatorAlerter
from nycping.ingestion.source_factory import create_adapters_from_config
from nycping.services.config import AppConfig, load_config
from nycping.services.content_store import SqliteContentStore
from nycping.services.database import Database
from nycping.services.logging import setup_logging
from nycping.services.scheduler import current_slot, next_run_time
from nycping.services.send_history import SendHistory
from nycping.services.user_store import UserStore
from nycping.workflows.digest_job import DigestJobOptions, create_channel, create_orchestrator
from nycping.workflows.ingest import IngestPipeline

logger = logging.getLogger(__name__)


async def run_digest(config: AppConfig, args: argparse.Namespace) -> int:
    slot = Slot(args.slot) if args.slot else current_slot(datetime.now(timezone.utc), config.curation.timezone)
    orchestrator = create_orchestrator(config, dry_run=args.dry_run)

    skip_enhanced = args.skip_enhanced
    if orchestrator.llm is not None and not skip_enhanced:
        if not await orchestrator.llm.health_check():
            logger.warning("Ollama is unreachable; sending the standard digest")
            skip_enhanced = True

    result = await orchestrator.run(
        slot,
        DigestJobOptions(force=args.force, skip_enhanced=skip_enhanced),
    )
    print(
        f"{slot.value}: sent={result.sent} skipped={result.skipped} "
        f"failed={result.failed} mode={result.mode.value}"
    )
    return 1 if result.failed else 0


async def run_urgent(config: AppConfig, args: argparse.Namespace) -> int:
    result = await create_orchestrator(config, dry_run=args.dry_run).run_urgent_sweep()
    print(f"urgent: sent={result.sent} skipped={result.skipped} failed={result.failed}")
    return 1 if result.failed else 0


async def run_ingest(config: AppConfig, args: argparse.Namespace) -> int:
    db = Database(config.DATABASE_PATH)
    alerter = OperatorAlerter(create_channel(config, dry_run=args.dry_run), config.ADMIN_ALERT_EMAIL)
    pipeline = IngestPipeline(
        create_adapters_from_config(config),
        SqliteContentStore(db),
        config.curation,
        alerter,
    )
    report = await pipeline.run(hours=args.hours)
    for name, source in report.sources.items():
        status = f"error: {source.error}" if source.error else (
            f"fetched={source.fetched} invalid={source.invalid} duplicates={source.duplicates} "
            f"created={source.created} updated={source.updated}"
        )
        print(f"{name}: {status}")
    return 1 if report.failed_sources else 0


async def run_cleanup(config: AppConfig, args: argparse.Namespace) -> int:
    db = Database(config.DATABASE_PATH)
    days = args.days or config.RETENTION_DAYS
    items = await SqliteContentStore(db).cleanup(days)
    sends = await SendHistory(db).cleanup(days)
    print(f"Removed {items} content items and {sends} send records older than {days} days")
    return 0


async def run_add_user(config: AppConfig, args: argparse.Namespace) -> int:
    slots = [Slot(s) for s in args.slots] if args.slots else None
    user = await UserStore(Database(config.DATABASE_PATH)).add_user(
        args.user_id, args.email, Tier(args.tier), slots
    )
    print(f"Saved {user.id} <{user.email}> tier={user.tier.value} slots={sorted(s.value for s in user.slots)}")
    return 0


async def run_schedule(config: AppConfig, args: argparse.Namespace) -> int:
    """Print the next local run time of each slot, for setting up cron."""
    curation = config.curation
    now = datetime.now(timezone.utc)
    for slot in Slot:
        run_at = next_run_time(slot, curation.slot_hours, now, curation.timezone)
        print(f"{slot.value:<8} {run_at:%a %b %d %H:%M %Z}")
    return 0


COMMANDS = {
    "digest": run_digest,
    "urgent": run_urgent,
    "ingest": run_ingest,
    "cleanup": run_cleanup,
    "add-user": run_add_user,
    "schedule": run_schedule,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="nycping", description="NYC Ping digest engine")
    parser.add_argument("--config", help="Path to config.yml")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    digest = sub.add_parser("digest", help="Run one slot's digest job")
    digest.add_argument("--slot", choices=[s.value for s in Slot],
                        help="Slot to run (default: slot for the current time)")
    digest.add_argument("--force", action="store_true", help="Send even below the slot minimum")
    digest.add_argument("--skip-enhanced", action="store_true", help="Skip the LLM briefing")
    digest.add_argument("--dry-run", action="store_true", help="Write emails to OUTPUT_DIR instead of sending")

    urgent = sub.add_parser("urgent", help="Send urgent items outside the slot schedule")
    urgent.add_argument("--dry-run", action="store_true")

    ingest = sub.add_parser("ingest", help="Fetch and store content from all enabled sources")
    ingest.add_argument("--hours", type=int, default=24, help="Look-back window (default: 24)")
    ingest.add_argument("--dry-run", action="store_true", help="Write operator alerts to OUTPUT_DIR")

    cleanup = sub.add_parser("cleanup", help="Delete old content and send records")
    cleanup.add_argument("--days", type=int, help="Retention in days (default: RETENTION_DAYS)")

    add_user = sub.add_parser("add-user", help="Create or update a subscriber")
    add_user.add_argument("user_id")
    add_user.add_argument("email")
    add_user.add_argument("--tier", choices=[t.value for t in Tier], default=Tier.FREE.value)
    add_user.add_argument("--slots", nargs="+", choices=[s.value for s in Slot])

    sub.add_parser("schedule", help="Show the next run time of each slot")

    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.debug else logging.INFO)
    start_time = time.perf_counter()

    config = load_config(args.config)
    logger.info(f"Running command: {args.command}", extra={"job": args.command})
    code = await COMMANDS[args.command](config, args)

    logger.info(f"Total time: {time.perf_counter() - start_time:.2f}s", extra={"job": args.command})
    return code


def cli() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
