"""
db.py — Storage Wiring

Tables backing the pack locks and the stored API tokens, plus the async
engine factory. Any async SQLAlchemy URL works; the default is a local
SQLite file through aiosqlite.
"""

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

metadata = sa.MetaData()

pack_locks = sa.Table(
    "pack_locks",
    metadata,
    sa.Column("lock_key", sa.String(200), primary_key=True),
    sa.Column("pack_id", sa.String(64), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("done", sa.Boolean, nullable=False, default=False),
    sa.Column("done_ts", sa.BigInteger, nullable=True),
)

oauth_tokens = sa.Table(
    "oauth_tokens",
    metadata,
    sa.Column("provider", sa.String(32), primary_key=True),
    sa.Column("access_token", sa.Text, nullable=True),
    sa.Column("access_token_expires_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("refresh_token", sa.Text, nullable=True),
)


def create_engine(url: str) -> AsyncEngine:
    return create_async_engine(url)


async def create_schema(engine: AsyncEngine):
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
