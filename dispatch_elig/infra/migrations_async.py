# dispatch_elig/infra/migrations_async.py
"""
Async database migrations runner (asyncpg).

Each ``sql/*.sql`` file is applied once, in filename order, inside its own
transaction, and recorded in ``schema_migrations``. A session advisory
lock keeps two runners (e.g. parallel deploys) from applying the same
file twice; a failing file leaves earlier files committed.
"""
from __future__ import annotations
from pathlib import Path

import asyncpg

from dispatch_elig.infra.db_async import db_conn
from dispatch_elig.infra.logging_config import get_logger

logger = get_logger(__name__)

MIGRATIONS_LOCK_KEY = "dispatch_elig:schema_migrations"


def _sql_dir() -> Path:
    return Path(__file__).resolve().parent / "sql"


def list_migration_files(sql_dir: Path | None = None) -> list[Path]:
    """SQL files in apply order."""
    directory = sql_dir or _sql_dir()
    return sorted(p for p in directory.glob("*.sql") if p.is_file())


async def _ensure_table(conn: asyncpg.Connection) -> None:
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations(
          version text PRIMARY KEY,
          applied_at timestamptz NOT NULL DEFAULT now()
        )
        """
    )


async def _applied_versions(conn: asyncpg.Connection) -> set[str]:
    rows = await conn.fetch("SELECT version FROM schema_migrations")
    return {row["version"] for row in rows}


async def pending_migrations(sql_dir: Path | None = None) -> list[str]:
    """Filenames not yet recorded in ``schema_migrations``."""
    async with db_conn() as conn:
        await _ensure_table(conn)
        applied = await _applied_versions(conn)
    return [p.name for p in list_migration_files(sql_dir) if p.name not in applied]


async def apply_migrations(sql_dir: Path | None = None) -> dict:
    """
    Apply pending migrations.

    Returns:
        dict with keys ok, applied (filenames applied in this run), count
    """
    files = list_migration_files(sql_dir)
    applied_now: list[str] = []

    async with db_conn() as conn:
        await conn.execute("SELECT pg_advisory_lock(hashtext($1))", MIGRATIONS_LOCK_KEY)
        try:
            await _ensure_table(conn)
            applied = await _applied_versions(conn)

            for path in files:
                version = path.name
                if version in applied:
                    logger.debug(f"Migration {version} already applied, skipping")
                    continue

                logger.info(f"Applying migration: {version}")
                async with conn.transaction():
                    await conn.execute(path.read_text(encoding="utf-8"))
                    await conn.execute(
                        "INSERT INTO schema_migrations(version) VALUES ($1)",
                        version,
                    )
                applied_now.append(version)
        finally:
            await conn.execute("SELECT pg_advisory_unlock(hashtext($1))", MIGRATIONS_LOCK_KEY)

    logger.info(f"Migrations complete: {len(applied_now)} applied")
    return {"ok": True, "applied": applied_now, "count": len(applied_now)}
