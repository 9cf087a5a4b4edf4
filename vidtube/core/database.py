"""
VidTube — core/database.py
─────────────────────────────────────────────────────────────────
aiosqlite access for every service. Each call opens its own
connection; there is no pool and no shared handle.

Schema lives next to each model (models/*.py) and is applied here
by init_all_tables() from the app lifespan:

    await init_all_tables(cfg.DB_PATH)

Services:

    async with get_db(self.db_path) as db:
        async with db.execute(sql, params) as cur:
            row = await cur.fetchone()
─────────────────────────────────────────────────────────────────
"""

import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import aiosqlite

from vidtube.models.subscription import SUBSCRIPTIONS_TABLE
from vidtube.models.user import USERS_TABLE, WATCH_HISTORY_TABLE
from vidtube.models.video import VIDEOS_TABLE

logger = logging.getLogger("vidtube.database")


# ─────────────────────────────────────────────
# Connection helper
# ─────────────────────────────────────────────
@asynccontextmanager
async def get_db(db_path: str):
    """
    Connection with Row access by column name.
    Foreign keys are per-connection in SQLite.
    """
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA foreign_keys = ON")
        yield db


# ─────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────
def now_utc() -> str:
    return datetime.now(timezone.utc).isoformat()

def new_id() -> str:
    return secrets.token_urlsafe(12)


# ─────────────────────────────────────────────
# Init: call once on startup
# ─────────────────────────────────────────────
async def init_all_tables(db_path: str):
    """
    Apply every CREATE TABLE / CREATE INDEX. Idempotent.

    Parents before children:
    users → videos → subscriptions → watch_history
    """
    async with get_db(db_path) as db:
        await db.executescript(USERS_TABLE)
        logger.info("✓ Users table")

        await db.executescript(VIDEOS_TABLE)
        logger.info("✓ Videos table")

        await db.executescript(SUBSCRIPTIONS_TABLE)
        logger.info("✓ Subscriptions table")

        await db.executescript(WATCH_HISTORY_TABLE)
        logger.info("✓ Watch history table")

        await db.commit()

    logger.info(f"✅ Database ready → {db_path}")
