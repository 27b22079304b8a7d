"""
locks.py — Storage-Backed Pack Lock

Gives pack processing a single winner across concurrent webhook invocations,
possibly running on different machines.

Behavior:
    • try_acquire() inserts one row per pack id; the primary key makes the
      insert an atomic create-if-absent. A duplicate key means another worker
      owns the pack and is reported as `acquired=False`, not as an error.
    • mark_done() stamps `done` and `done_ts` on the row but never deletes it.
      A claimed pack id stays claimed until an external retention job removes
      the row.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from .db import pack_locks

log = logging.getLogger(__name__)


def lock_key(pack_id: str) -> str:
    return f"packs/{pack_id}.lock"


@dataclass(frozen=True)
class PackLock:
    pack_id: str
    acquired: bool

    @property
    def key(self) -> str:
        return lock_key(self.pack_id)


class PackLockStore:
    """One-shot advisory lock per pack id, persisted in the `pack_locks` table."""

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    async def try_acquire(self, pack_id: str) -> PackLock:
        """
        Claims `pack_id` if nobody has claimed it before.

        Returns:
            PackLock: `acquired=True` for the single winner.

        Raises:
            sqlalchemy.exc.SQLAlchemyError: On storage failures other than a
                duplicate key.
        """
        row = {
            "lock_key": lock_key(pack_id),
            "pack_id": pack_id,
            "created_at": datetime.now(timezone.utc),
            "done": False,
        }
        try:
            async with self._engine.begin() as conn:
                await conn.execute(sa.insert(pack_locks).values(**row))
        except IntegrityError:
            log.debug(f"[Pack: {pack_id}] Lock ya tomado por otro proceso.")
            return PackLock(pack_id, acquired=False)
        log.info(f"[Pack: {pack_id}] Lock adquirido.")
        return PackLock(pack_id, acquired=True)

    async def mark_done(self, lock: PackLock):
        """
        Records completion on an acquired lock. Failures are logged, not raised,
        so they never hide the outcome of the processing that held the lock.
        """
        if not lock.acquired:
            return
        try:
            async with self._engine.begin() as conn:
                await conn.execute(
                    sa.update(pack_locks)
                    .where(pack_locks.c.lock_key == lock.key)
                    .values(done=True, done_ts=int(time.time()))
                )
        except SQLAlchemyError as e:
            log.warning(f"[Pack: {lock.pack_id}] No se pudo marcar el lock como terminado: {e}")

    async def is_done(self, pack_id: str) -> bool:
        """
        Tells whether the winner of `pack_id` finished. The workflow never
        reads it; it is meant for operations checks and for tests.
        """
        async with self._engine.connect() as conn:
            result = await conn.execute(
                sa.select(pack_locks.c.done).where(pack_locks.c.lock_key == lock_key(pack_id))
            )
            return bool(result.scalar_one_or_none())
