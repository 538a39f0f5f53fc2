from __future__ import annotations

import argparse
import asyncio
import re

import asyncpg
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine

import app.db.models  # noqa: F401
from app.core.config import get_settings
from app.core.integration_db_safety import assert_safe_integration_db
from app.db.models.base import Base

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create the local integration-test database")
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="create billing tables from the ORM metadata after ensuring the database",
    )
    return parser.parse_args()


async def _ensure_database_exists(database_url: str) -> None:
    parsed = make_url(database_url)
    db_name = (parsed.database or "").strip()
    if IDENTIFIER_RE.fullmatch(db_name) is None:
        raise RuntimeError(f"Unsupported database name '{db_name}'.")
    if parsed.username is None:
        raise RuntimeError("DATABASE_URL username is required.")

    conn = await asyncpg.connect(
        host=parsed.host or "localhost",
        port=int(parsed.port or 5432),
        user=parsed.username,
        password=parsed.password,
        database="postgres",
    )
    try:
        exists = await conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", db_name)
        if exists:
            print(f"ensure_test_db: exists db={db_name}")  # noqa: T201
            return
        await conn.execute(f'CREATE DATABASE "{db_name}"')
        print(f"ensure_test_db: created db={db_name}")  # noqa: T201
    finally:
        await conn.close()


async def _create_schema(database_url: str) -> None:
    engine = create_async_engine(database_url)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    finally:
        await engine.dispose()
    print("ensure_test_db: schema ready")  # noqa: T201


async def _run(database_url: str, *, create_schema: bool) -> None:
    await _ensure_database_exists(database_url)
    if create_schema:
        await _create_schema(database_url)


def main() -> int:
    args = _parse_args()
    database_url = get_settings().database_url
    assert_safe_integration_db(database_url)
    asyncio.run(_run(database_url, create_schema=args.create_schema))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
