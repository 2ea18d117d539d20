"""
Daily quota and activity tracking.

Free carry usage is counted per (user, game, gamemode, date). The date is
a calendar day in the configured reference timezone, so "today" resets at
local midnight rather than 24h after the first request.
"""

from __future__ import annotations
import logging

from .cache import QueryCache
from .config import Config
from .db import Database
from .errors import ValidationError
from .records import DailyQuotaUsage, DailyUserActivity, QuotaResult, ReservationResult
from ..utils.day_time import day_key, now_ms

log = logging.getLogger(__name__)


class QuotaTracker:
    def __init__(self, db: Database, cache: QueryCache, cfg: Config):
        self.db = db
        self.cache = cache
        self.cfg = cfg

    def today(self) -> str:
        return day_key(tz_name=self.cfg.timezone)

    # ------------------------------------------------------------------
    # Free carry quota
    # ------------------------------------------------------------------

    async def try_increment(
        self,
        user_id: str,
        category: str,
        subcategory: str,
        limit: int,
        user_tag: str = "",
        date: str | None = None,
    ) -> QuotaResult:
        """
        Take one slot of today's quota if any is left.

        The limit check and the increment are a single conditional UPDATE
        inside one transaction, so N concurrent callers get at most `limit`
        successes between them.
        """
        if not user_id or not category or not subcategory:
            raise ValidationError("user_id, category and subcategory are required")
        date = date or self.today()
        limit = int(limit)
        now = now_ms()

        async with self.db.transaction():
            await self.db.execute(
                """INSERT INTO free_carry_usage(user_id, user_tag, game, gamemode, date, usage_count, created_at, updated_at)
                   VALUES(?,?,?,?,?,0,?,?)
                   ON CONFLICT(user_id, game, gamemode, date) DO NOTHING""",
                (user_id, user_tag or "", category, subcategory, date, now, now),
            )
            res = await self.db.execute(
                """UPDATE free_carry_usage
                   SET usage_count=usage_count+1,
                       user_tag=COALESCE(NULLIF(?, ''), user_tag),
                       updated_at=?
                   WHERE user_id=? AND game=? AND gamemode=? AND date=? AND usage_count < ?""",
                (user_tag or "", now, user_id, category, subcategory, date, limit),
            )
            row = await self.db.fetchone(
                "SELECT usage_count FROM free_carry_usage WHERE user_id=? AND game=? AND gamemode=? AND date=?",
                (user_id, category, subcategory, date),
            )

        usage = int(row["usage_count"])
        success = res.rowcount == 1
        log.info(
            "Quota %s %s/%s on %s: %d/%d, success=%s",
            user_id, category, subcategory, date, usage, limit, success,
        )
        return QuotaResult(success=success, current_usage=usage)

    async def get_usage(self, user_id: str, category: str, subcategory: str, date: str | None = None) -> int:
        """Read-only usage lookup. Never reserves anything."""
        row = await self.db.fetchone(
            "SELECT usage_count FROM free_carry_usage WHERE user_id=? AND game=? AND gamemode=? AND date=?",
            (user_id, category, subcategory, date or self.today()),
        )
        return int(row["usage_count"]) if row else 0

    async def release(self, user_id: str, category: str, subcategory: str, date: str | None = None) -> int:
        """Hand back one reserved slot (never below zero). Returns the usage left."""
        date = date or self.today()
        async with self.db.transaction():
            await self.db.execute(
                """UPDATE free_carry_usage
                   SET usage_count=MAX(usage_count-1, 0), updated_at=?
                   WHERE user_id=? AND game=? AND gamemode=? AND date=?""",
                (now_ms(), user_id, category, subcategory, date),
            )
            row = await self.db.fetchone(
                "SELECT usage_count FROM free_carry_usage WHERE user_id=? AND game=? AND gamemode=? AND date=?",
                (user_id, category, subcategory, date),
            )
        usage = int(row["usage_count"]) if row else 0
        log.info("Released quota slot %s %s/%s on %s, now %d", user_id, category, subcategory, date, usage)
        return usage

    async def usage_by_date(self, user_id: str, date: str | None = None) -> list[DailyQuotaUsage]:
        rows = await self.db.fetchall(
            "SELECT * FROM free_carry_usage WHERE user_id=? AND date=? ORDER BY game, gamemode",
            (user_id, date or self.today()),
        )
        return [DailyQuotaUsage.from_row(r) for r in rows]

    async def check_and_reserve(
        self,
        user_id: str,
        user_tag: str,
        game: str,
        gamemode: str,
        date: str | None = None,
    ) -> ReservationResult:
        """Check free carry eligibility for today and, if eligible, reserve the slot."""
        date = date or self.today()
        activity = await self.get_activity(user_id, date)
        if activity is None:
            return ReservationResult(False, reason="No message activity found today")

        needed = self.cfg.min_messages
        if activity.message_count < needed:
            return ReservationResult(
                False,
                reason=f"Need at least {needed} messages today (currently {activity.message_count})",
            )

        limit = self.cfg.free_carry_limit(game, gamemode)
        if limit <= 0:
            return ReservationResult(False, reason="This gamemode does not support free carries")

        result = await self.try_increment(user_id, game, gamemode, limit, user_tag=user_tag, date=date)
        if not result.success:
            return ReservationResult(
                False,
                reason=f"Daily limit reached for this gamemode ({result.current_usage}/{limit})",
                limit=limit,
                used=result.current_usage,
            )
        return ReservationResult(True, limit=limit, used=result.current_usage)

    # ------------------------------------------------------------------
    # Daily activity
    # ------------------------------------------------------------------

    async def increment_messages(self, user_id: str, user_tag: str, date: str | None = None, inc: int = 1):
        date = date or self.today()
        now = now_ms()
        await self.db.execute(
            """INSERT INTO user_messages(user_id, user_tag, date, message_count, created_at, updated_at)
               VALUES(?,?,?,?,?,?)
               ON CONFLICT(user_id, date) DO UPDATE SET
                 message_count=message_count+excluded.message_count,
                 user_tag=excluded.user_tag,
                 updated_at=excluded.updated_at""",
            (user_id, user_tag, date, int(inc), now, now),
        )
        self.cache.invalidate(f"activity-{user_id}-{date}")

    async def increment_free_requests(self, user_id: str, date: str | None = None, user_tag: str = ""):
        date = date or self.today()
        now = now_ms()
        await self.db.execute(
            """INSERT INTO user_messages(user_id, user_tag, date, free_carry_requests_used, created_at, updated_at)
               VALUES(?,?,?,1,?,?)
               ON CONFLICT(user_id, date) DO UPDATE SET
                 free_carry_requests_used=free_carry_requests_used+1,
                 updated_at=excluded.updated_at""",
            (user_id, user_tag, date, now, now),
        )
        self.cache.invalidate(f"activity-{user_id}-{date}")

    async def get_activity(self, user_id: str, date: str | None = None) -> DailyUserActivity | None:
        row = await self.db.fetchone(
            "SELECT * FROM user_messages WHERE user_id=? AND date=?",
            (user_id, date or self.today()),
        )
        return DailyUserActivity.from_row(row)
