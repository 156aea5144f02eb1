#!/usr/bin/env python3
# dispatch_elig/infra/migrate.py
"""
Standalone migration runner.

    python -m dispatch_elig.infra.migrate            # apply pending
    python -m dispatch_elig.infra.migrate --status   # list pending, exit 1 if any

Run before starting the application; the HTTP app does not apply
migrations itself.
"""
import asyncio
import sys

from dispatch_elig.config import settings
from dispatch_elig.infra.db_async import close_pool, init_pool
from dispatch_elig.infra.logging_config import get_logger, setup_logging
from dispatch_elig.infra.migrations_async import apply_migrations, pending_migrations

logger = get_logger(__name__)


async def status() -> int:
    await init_pool()
    try:
        pending = await pending_migrations()
    finally:
        await close_pool()

    for version in pending:
        logger.info(f"  pending {version}")
    logger.info(f"Pending migrations: {len(pending)}")
    return 1 if pending else 0


async def main(args: list[str]) -> int:
    setup_logging(level="INFO", use_json=settings.log_json)

    if "--status" in args:
        return await status()

    logger.info("=" * 60)
    logger.info("Database Migration Runner")
    logger.info(f"Environment: {settings.app_env}")
    logger.info(f"Database: {settings.pghost}:{settings.pgport}/{settings.pgdatabase}")
    logger.info("=" * 60)

    await init_pool()
    try:
        result = await apply_migrations()
    except Exception as exc:
        logger.critical(f"MIGRATION FAILED: {exc}", exc_info=True)
        return 1
    finally:
        await close_pool()

    logger.info(f"Migrations applied: {result['count']}")
    for migration in result["applied"]:
        logger.info(f"  applied {migration}")
    if not result["applied"]:
        logger.info("No new migrations to apply")

    return 0 if result["ok"] else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
