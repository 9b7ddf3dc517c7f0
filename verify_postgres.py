"""
Check that the configured database is reachable and has every GlobeTrotter table.

Run from the repository root: `python verify_postgres.py`. Exits non-zero
when the connection fails or tables are missing (start the API once to
create them).
"""

import asyncio
import sys

from dotenv import load_dotenv

load_dotenv("globetrotter/.env")

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from globetrotter.app.core.config import settings
from globetrotter.app.db.session import Base, engine

# Populate Base.metadata
from globetrotter.app.models import audit_log, chat_message, trip, trip_invite, trip_member, user  # noqa: F401


async def missing_tables() -> list[str]:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
        existing = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
    return sorted(set(Base.metadata.tables) - existing)


async def main() -> int:
    print(f"Checking {engine.url.render_as_string(hide_password=True)} ({settings.app_name})")
    try:
        missing = await missing_tables()
    except (SQLAlchemyError, OSError) as e:
        print(f"❌ Connection failed: {e}")
        return 1
    finally:
        await engine.dispose()

    if missing:
        print(f"⚠️  Connected, but missing tables: {', '.join(missing)}")
        return 1
    print(f"✅ Connected; all {len(Base.metadata.tables)} tables present")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
