"""Delete abandoned pending conversation states.

A pending state lives until the conversation completes or is cancelled. Owners
who walk away mid-conversation leave a row behind; this removes rows not
touched for longer than the configured age.

Usage:
    python scripts/prune_pending_state.py [--max-age-hours N] [--dry-run]

Reads DATABASE_* and PIPELINE_PENDING_MAX_AGE_HOURS from the environment / .env.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import structlog
from sqlalchemy import func, select

_project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_project_root))

from src.config.settings import get_settings  # noqa: E402
from src.conversation.store import PendingStateStore  # noqa: E402
from src.infra.logging import setup_logging  # noqa: E402
from src.store.database import create_db_engine, make_session_factory  # noqa: E402
from src.store.models import PendingStateRecord  # noqa: E402

logger = structlog.get_logger()


async def _run(max_age_hours: int, dry_run: bool) -> int:
    settings = get_settings()
    cutoff = datetime.now(UTC) - timedelta(hours=max_age_hours)
    engine = await create_db_engine(settings.database)
    try:
        factory = make_session_factory(engine)
        if dry_run:
            async with factory() as db:
                result = await db.execute(
                    select(func.count())
                    .select_from(PendingStateRecord)
                    .where(PendingStateRecord.updated_at < cutoff)
                )
                count = result.scalar_one()
            logger.info("pending_state_prune_dry_run", count=count, cutoff=cutoff.isoformat())
            return count
        return await PendingStateStore(factory).prune(cutoff)
    finally:
        await engine.dispose()


def main() -> int:
    settings = get_settings()
    setup_logging(json_output=settings.log.json_output, log_level=settings.log.level)

    parser = argparse.ArgumentParser(description="Prune abandoned pending conversation states")
    parser.add_argument(
        "--max-age-hours", type=int, default=settings.pipeline.pending_max_age_hours,
        help=f"Age threshold in hours (default: {settings.pipeline.pending_max_age_hours})",
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Count matching rows without deleting them",
    )
    args = parser.parse_args()
    if args.max_age_hours < 1:
        print("ERROR: --max-age-hours must be at least 1")
        return 1

    count = asyncio.run(_run(args.max_age_hours, args.dry_run))
    verb = "would prune" if args.dry_run else "pruned"
    print(f"{verb} {count} pending state(s) older than {args.max_age_hours}h")
    return 0


if __name__ == "__main__":
    sys.exit(main())
