from __future__ import annotations
import logging

from .db import Database
from .errors import ValidationError
from ..utils.day_time import now_ms

log = logging.getLogger(__name__)


class TicketCounters:
    """Mints ticket numbers, one monotonically increasing counter per category."""

    def __init__(self, db: Database):
        self.db = db

    async def next_number(self, category: str) -> str:
        """
        Reserve the next ticket number for a category.

        The first call for a category returns "1". The upsert and the read
        back happen in one transaction under the write lock, so concurrent
        callers never see the same value.
        """
        if not category:
            raise ValidationError("category is required")
        now = now_ms()
        async with self.db.transaction():
            await self.db.execute(
                """INSERT INTO ticket_counters(game, counter, created_at, updated_at)
                   VALUES(?, 1, ?, ?)
                   ON CONFLICT(game) DO UPDATE SET
                     counter=counter+1,
                     updated_at=excluded.updated_at""",
                (category, now, now),
            )
            row = await self.db.fetchone(
                "SELECT counter FROM ticket_counters WHERE game=?",
                (category,),
            )
        number = int(row["counter"])
        log.debug("Allocated ticket number %s/%d", category, number)
        return str(number)

    async def peek(self, category: str) -> int:
        """Last number handed out for a category, 0 if none yet."""
        row = await self.db.fetchone(
            "SELECT counter FROM ticket_counters WHERE game=?",
            (category,),
        )
        return int(row["counter"]) if row else 0
