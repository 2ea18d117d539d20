from __future__ import annotations
import logging

from .cache import QueryCache
from .config import Config
from .db import Database
from .errors import NotFound, ValidationError
from .records import VOUCH_TYPES, Helper, LeaderboardEntry, PaidEligibility, Vouch
from ..utils.day_time import now_ms

log = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
TIMEFRAME_DAYS = {"weekly": 7, "monthly": 30}


def _validate_rating(rating) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError(f"rating must be an integer, got {rating!r}")
    if not 1 <= rating <= 5:
        raise ValidationError(f"rating must be between 1 and 5, got {rating}")
    return rating


def _since(timeframe: str) -> int:
    if timeframe not in TIMEFRAME_DAYS:
        raise ValidationError(f"unknown timeframe {timeframe!r}")
    return now_ms() - TIMEFRAME_DAYS[timeframe] * DAY_MS


class RatingAggregator:
    """Records vouches and keeps each helper's counters and average in step with them."""

    def __init__(self, db: Database, cache: QueryCache, cfg: Config):
        self.db = db
        self.cache = cache
        self.cfg = cfg

    def _invalidate_helper(self, helper_id: str):
        self.cache.invalidate(f"helper-{helper_id}")
        self.cache.invalidate(f"helper-vouches-{helper_id}-")

    async def record_vouch(
        self,
        *,
        ticket_id: int,
        helper_id: str,
        user_id: str,
        user_tag: str,
        rating: int,
        reason: str = "",
        type: str = "regular",
        compensation: str | None = None,
        helper_tag: str | None = None,
    ) -> Vouch:
        """
        Persist a vouch and refresh the helper's stats in one transaction.

        The average is recomputed from every stored rating rather than
        updated incrementally. A helper must exist before it can be vouched
        for; a second vouch by the same rater on the same ticket is
        rejected by the uq_vouches_ticket_rater index.
        """
        rating = _validate_rating(rating)
        if type not in VOUCH_TYPES:
            raise ValidationError(f"vouch type must be one of {VOUCH_TYPES}, got {type!r}")
        if ticket_id is None or not helper_id or not user_id:
            raise ValidationError("ticket_id, helper_id and user_id are required")

        now = now_ms()
        threshold = self.cfg.vouches_for_access
        async with self.db.transaction():
            helper = Helper.from_row(
                await self.db.fetchone("SELECT * FROM helpers WHERE user_id=?", (helper_id,))
            )
            if helper is None:
                raise NotFound("helper", helper_id)

            res = await self.db.execute(
                """INSERT INTO vouches(ticket_id, helper_id, helper_tag, user_id, user_tag,
                                       rating, reason, type, compensation, created_at)
                   VALUES(?,?,?,?,?,?,?,?,?,?)""",
                (int(ticket_id), helper_id, helper_tag or helper.user_tag, user_id, user_tag,
                 rating, reason or "No additional feedback provided", type, compensation, now),
            )

            agg = await self.db.fetchone(
                "SELECT AVG(rating) AS avg_rating FROM vouches WHERE helper_id=?",
                (helper_id,),
            )
            average = float(agg["avg_rating"])

            # Regular vouches count toward paid helper access until the threshold
            paid_bump = int(
                type == "regular"
                and not helper.is_paid_helper
                and helper.vouches_for_paid_access < threshold
            )
            await self.db.execute(
                """UPDATE helpers SET
                     total_vouches=total_vouches+1,
                     weekly_vouches=weekly_vouches+1,
                     monthly_vouches=monthly_vouches+1,
                     average_rating=?,
                     last_vouch_date=?,
                     vouches_for_paid_access=vouches_for_paid_access+?,
                     updated_at=?
                   WHERE user_id=?""",
                (average, now, paid_bump, now, helper_id),
            )
            vouch = Vouch.from_row(
                await self.db.fetchone("SELECT * FROM vouches WHERE id=?", (res.lastrowid,))
            )

        self._invalidate_helper(helper_id)
        self.cache.invalidate("helpers-")
        log.info(
            "Vouch %d: %s rated %s %d/5 on ticket %s (avg now %.3f)",
            vouch.id, user_id, helper_id, rating, ticket_id, average,
        )
        return vouch

    async def vouches_for(self, helper_id: str, limit: int | None = None) -> list[Vouch]:
        sql = "SELECT * FROM vouches WHERE helper_id=? ORDER BY created_at DESC, id DESC"
        params: list = [helper_id]
        if limit:
            sql += " LIMIT ?"
            params.append(int(limit))
        rows = await self.db.fetchall(sql, params)
        return [Vouch.from_row(r) for r in rows]

    async def vouches_by_timeframe(self, helper_id: str, timeframe: str) -> list[Vouch]:
        rows = await self.db.fetchall(
            "SELECT * FROM vouches WHERE helper_id=? AND created_at >= ? ORDER BY created_at DESC, id DESC",
            (helper_id, _since(timeframe)),
        )
        return [Vouch.from_row(r) for r in rows]

    async def top_helpers(self, kind: str = "regular", timeframe: str = "overall", limit: int = 10) -> list[LeaderboardEntry]:
        """Leaderboard of regular or paid helpers, overall or over the last week / month."""
        if kind not in VOUCH_TYPES:
            raise ValidationError(f"kind must be one of {VOUCH_TYPES}, got {kind!r}")
        is_paid = 1 if kind == "paid" else 0

        if timeframe == "overall":
            rows = await self.db.fetchall(
                """
                SELECT user_id, user_tag, total_vouches AS vouch_count, average_rating AS avg_rating
                FROM helpers
                WHERE is_paid_helper=?
                ORDER BY total_vouches DESC, average_rating DESC
                LIMIT ?
                """,
                (is_paid, int(limit)),
            )
        else:
            rows = await self.db.fetchall(
                """
                SELECT h.user_id, h.user_tag, COUNT(v.id) AS vouch_count,
                       COALESCE(AVG(v.rating), 0) AS avg_rating
                FROM helpers h
                LEFT JOIN vouches v ON h.user_id = v.helper_id AND v.type = ? AND v.created_at >= ?
                WHERE h.is_paid_helper=?
                GROUP BY h.user_id, h.user_tag
                ORDER BY vouch_count DESC, avg_rating DESC
                LIMIT ?
                """,
                (kind, _since(timeframe), is_paid, int(limit)),
            )
        return [
            LeaderboardEntry(r["user_id"], r["user_tag"], int(r["vouch_count"]), float(r["avg_rating"] or 0.0))
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Periodic resets and paid helper access
    # ------------------------------------------------------------------

    async def reset_weekly(self) -> int:
        res = await self.db.execute(
            "UPDATE helpers SET weekly_vouches=0, vouches_for_paid_access=0, updated_at=?",
            (now_ms(),),
        )
        self.cache.invalidate("helper")
        log.info("Weekly stats reset for %d helper(s)", res.rowcount)
        return res.rowcount

    async def reset_monthly(self) -> int:
        res = await self.db.execute(
            "UPDATE helpers SET monthly_vouches=0, updated_at=?",
            (now_ms(),),
        )
        self.cache.invalidate("helper")
        log.info("Monthly stats reset for %d helper(s)", res.rowcount)
        return res.rowcount

    async def paid_eligibility(self, user_id: str) -> PaidEligibility:
        threshold = self.cfg.vouches_for_access
        helper = Helper.from_row(
            await self.db.fetchone("SELECT * FROM helpers WHERE user_id=?", (user_id,))
        )
        current = helper.vouches_for_paid_access if helper else 0
        return PaidEligibility(
            eligible=current >= threshold,
            vouches_needed=max(0, threshold - current),
            current_vouches=current,
        )

    async def helpers_below_weekly(self, threshold: int) -> list[Helper]:
        """Helpers whose weekly vouch count is under threshold, for demotion review."""
        rows = await self.db.fetchall(
            "SELECT * FROM helpers WHERE weekly_vouches < ? ORDER BY weekly_vouches, user_id",
            (int(threshold),),
        )
        return [Helper.from_row(r) for r in rows]

    async def eligible_for_paid_status(self) -> list[Helper]:
        rows = await self.db.fetchall(
            "SELECT * FROM helpers WHERE vouches_for_paid_access >= ? AND is_paid_helper=0 ORDER BY user_id",
            (self.cfg.vouches_for_access,),
        )
        return [Helper.from_row(r) for r in rows]
