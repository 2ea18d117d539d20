"""
VouchStore: the operations the bot's cogs and views call.

One instance is built at startup with `VouchStore.open(cfg)` and handed to
every collaborator; `close()` tears it down. Reads of tickets, helpers,
vouch listings, paid helper profiles and daily activity go through the
query cache. Every write invalidates the keys it could have made stale.

Cache keys:
  ticket-{number}, ticket-channel-{channel}, user-tickets-{user},
  tickets-all, tickets-status-{status}, helper-{user},
  helper-vouches-{user}-{limit|all}, paid-helper-{user},
  paid-helpers-all, paid-helpers-active, activity-{user}-{date}
"""

from __future__ import annotations
import logging

from .cache import QueryCache
from .config import Config
from .counters import TicketCounters
from .db import Database
from .errors import NotFound, ValidationError
from .quota import QuotaTracker
from .ratings import RatingAggregator
from .records import (
    TICKET_PRIORITIES,
    TICKET_STATUSES,
    TICKET_TRANSITIONS,
    TICKET_TYPES,
    DailyQuotaUsage,
    DailyUserActivity,
    Helper,
    LeaderboardEntry,
    PaidEligibility,
    PaidHelperProfile,
    QuotaResult,
    ReservationResult,
    Ticket,
    Vouch,
)
from ..utils.day_time import now_ms

log = logging.getLogger(__name__)

TICKET_REQUIRED = ("ticket_number", "user_id", "user_tag", "channel_id", "contact")
TICKET_OPTIONAL = (
    "category", "subject", "description", "priority", "game", "gamemode", "goal",
    "status", "claimed_by", "claimed_by_tag", "type",
)
TICKET_MUTABLE = (
    "user_tag", "category", "subject", "description", "priority", "game", "gamemode",
    "goal", "contact", "status", "claimed_by", "claimed_by_tag", "type", "closed_at",
)
TICKET_IMMUTABLE = ("id", "ticket_number", "user_id", "channel_id", "created_at", "updated_at")

HELPER_MUTABLE = ("user_tag", "helper_rank", "is_paid_helper", "vouches_for_paid_access")
HELPER_AGGREGATES = (
    "total_vouches", "weekly_vouches", "monthly_vouches", "average_rating", "last_vouch_date",
)

PAID_HELPER_MUTABLE = ("user_tag", "bio", "bio_set_date", "vouches_for_access")

REMOVED_BIO_MARKER = "[REMOVED BY STAFF]"


def _check_fields(updates: dict, mutable: tuple, immutable: tuple, kind: str):
    for key in updates:
        if key in immutable:
            raise ValidationError(f"{kind}.{key} cannot be changed")
        if key not in mutable:
            raise ValidationError(f"{kind} has no updatable field {key!r}")


def _set_clause(updates: dict) -> tuple[str, list]:
    cols = ", ".join(f"{k}=?" for k in updates)
    return cols, list(updates.values())


class VouchStore:
    def __init__(self, db: Database, cache: QueryCache, cfg: Config | None = None):
        self.cfg = cfg if cfg is not None else Config()
        self.db = db
        self.cache = cache
        self.counters = TicketCounters(db)
        self.quota = QuotaTracker(db, cache, self.cfg)
        self.ratings = RatingAggregator(db, cache, self.cfg)

    @classmethod
    async def open(cls, cfg: Config, path: str | None = None) -> "VouchStore":
        """Build, connect and migrate the process-wide store."""
        store = cls(Database(path or cfg.db_path), QueryCache(ttl=cfg.cache_ttl), cfg)
        await store.connect()
        return store

    async def connect(self):
        await self.db.connect()
        await self.db.migrate()

    async def close(self):
        await self.db.close()
        self.cache.invalidate_all()

    async def health_check(self) -> bool:
        row = await self.db.fetchone("SELECT 1 AS ok")
        return bool(row and row["ok"] == 1)

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    def _invalidate_ticket(self, ticket: Ticket):
        self.cache.invalidate(f"ticket-{ticket.ticket_number}")
        self.cache.invalidate(f"ticket-channel-{ticket.channel_id}")
        self.cache.invalidate(f"user-tickets-{ticket.user_id}")
        self.cache.invalidate("tickets-")

    def _ticket_values(self, fields: dict) -> dict:
        unknown = set(fields) - set(TICKET_REQUIRED) - set(TICKET_OPTIONAL)
        if unknown:
            raise ValidationError(f"unknown ticket field(s): {', '.join(sorted(unknown))}")
        missing = [k for k in TICKET_REQUIRED if fields.get(k) is None]
        if missing:
            raise ValidationError(f"missing ticket field(s): {', '.join(missing)}")

        values = {k: fields.get(k) for k in TICKET_REQUIRED + TICKET_OPTIONAL}
        values["ticket_number"] = str(values["ticket_number"])
        values["type"] = values["type"] or "regular"
        values["status"] = values["status"] or "open"
        values["priority"] = values["priority"] or "medium"

        if values["type"] not in TICKET_TYPES:
            raise ValidationError(f"ticket type must be one of {TICKET_TYPES}")
        if values["priority"] not in TICKET_PRIORITIES:
            raise ValidationError(f"ticket priority must be one of {TICKET_PRIORITIES}")
        # Paid tickets may start claimed by the chosen helper, nothing starts closed
        if values["status"] not in ("open", "claimed"):
            raise ValidationError("a new ticket must be open or claimed")
        if values["status"] == "claimed" and not values["claimed_by"]:
            raise ValidationError("a claimed ticket needs claimed_by")
        return values

    async def _insert_ticket(self, values: dict) -> Ticket:
        now = now_ms()
        cols = list(values) + ["created_at", "updated_at"]
        res = await self.db.execute(
            f"INSERT INTO tickets({', '.join(cols)}) VALUES({', '.join('?' * len(cols))})",
            list(values.values()) + [now, now],
        )
        return Ticket.from_row(
            await self.db.fetchone("SELECT * FROM tickets WHERE id=?", (res.lastrowid,))
        )

    async def create_ticket(self, **fields) -> Ticket:
        values = self._ticket_values(fields)
        ticket = await self._insert_ticket(values)
        self._invalidate_ticket(ticket)
        log.info("%s ticket %s created with ID %d", ticket.type, ticket.ticket_number, ticket.id)
        return ticket

    async def create_ticket_with_auto_number(self, **fields) -> Ticket:
        """
        Allocate the next number for the ticket's scope and insert it atomically.

        The scope is the game, else the category, else the ticket type; the
        stored number is "{scope}-{n}". If the insert fails the counter
        increment rolls back with it.
        """
        if "ticket_number" in fields:
            raise ValidationError("ticket_number is assigned automatically")
        scope = fields.get("game") or fields.get("category") or fields.get("type") or "regular"
        async with self.db.transaction():
            number = await self.counters.next_number(scope)
            values = self._ticket_values({**fields, "ticket_number": f"{scope}-{number}"})
            ticket = await self._insert_ticket(values)
        self._invalidate_ticket(ticket)
        log.info("%s ticket %s created with ID %d", ticket.type, ticket.ticket_number, ticket.id)
        return ticket

    async def get_ticket(self, ticket_number: str) -> Ticket | None:
        async def load():
            row = await self.db.fetchone("SELECT * FROM tickets WHERE ticket_number=?", (str(ticket_number),))
            return Ticket.from_row(row)
        return await self.cache.cached(f"ticket-{ticket_number}", load)

    async def get_ticket_by_channel_id(self, channel_id: str) -> Ticket | None:
        async def load():
            row = await self.db.fetchone("SELECT * FROM tickets WHERE channel_id=?", (str(channel_id),))
            return Ticket.from_row(row)
        return await self.cache.cached(f"ticket-channel-{channel_id}", load)

    async def get_tickets_by_user(self, user_id: str) -> list[Ticket]:
        async def load():
            rows = await self.db.fetchall(
                "SELECT * FROM tickets WHERE user_id=? ORDER BY created_at DESC, id DESC", (user_id,)
            )
            return [Ticket.from_row(r) for r in rows]
        return await self.cache.cached(f"user-tickets-{user_id}", load)

    async def get_all_tickets(self, status: str | None = None) -> list[Ticket]:
        if status is not None and status not in TICKET_STATUSES:
            raise ValidationError(f"ticket status must be one of {TICKET_STATUSES}")

        async def load():
            if status:
                rows = await self.db.fetchall(
                    "SELECT * FROM tickets WHERE status=? ORDER BY created_at DESC, id DESC", (status,)
                )
            else:
                rows = await self.db.fetchall("SELECT * FROM tickets ORDER BY created_at DESC, id DESC")
            return [Ticket.from_row(r) for r in rows]
        key = f"tickets-status-{status}" if status else "tickets-all"
        return await self.cache.cached(key, load)

    async def update_ticket(self, ticket_number: str, **updates) -> Ticket:
        """
        Apply a partial update. Status changes must follow
        open->claimed, open->closed, claimed->closed or claimed->open, and
        closed_at is kept set exactly while the ticket is closed.
        """
        _check_fields(updates, TICKET_MUTABLE, TICKET_IMMUTABLE, "ticket")
        ticket_number = str(ticket_number)

        async with self.db.transaction():
            current = Ticket.from_row(
                await self.db.fetchone("SELECT * FROM tickets WHERE ticket_number=?", (ticket_number,))
            )
            if current is None:
                raise NotFound("ticket", ticket_number)

            changes = dict(updates)
            new_status = changes.get("status", current.status)
            if new_status not in TICKET_STATUSES:
                raise ValidationError(f"ticket status must be one of {TICKET_STATUSES}")
            if new_status != current.status and (current.status, new_status) not in TICKET_TRANSITIONS:
                raise ValidationError(f"ticket {ticket_number} cannot go from {current.status} to {new_status}")
            if "type" in changes and changes["type"] not in TICKET_TYPES:
                raise ValidationError(f"ticket type must be one of {TICKET_TYPES}")
            if "priority" in changes and changes["priority"] not in TICKET_PRIORITIES:
                raise ValidationError(f"ticket priority must be one of {TICKET_PRIORITIES}")

            if new_status == "closed":
                if changes.get("closed_at") is None:
                    changes["closed_at"] = current.closed_at or now_ms()
            elif changes.get("closed_at") is not None:
                raise ValidationError("closed_at can only be set on a closed ticket")

            if new_status == "claimed" and not changes.get("claimed_by", current.claimed_by):
                raise ValidationError("a claimed ticket needs claimed_by")
            # Reassigning goes through unclaim first
            if (
                current.status == "claimed"
                and new_status == "claimed"
                and "claimed_by" in changes
                and changes["claimed_by"] != current.claimed_by
            ):
                raise ValidationError(f"ticket {ticket_number} is already claimed by {current.claimed_by}")
            if current.status == "claimed" and new_status == "open":
                changes.setdefault("claimed_by", None)
                changes.setdefault("claimed_by_tag", None)

            changes["updated_at"] = now_ms()
            cols, values = _set_clause(changes)
            await self.db.execute(
                f"UPDATE tickets SET {cols} WHERE ticket_number=?",
                values + [ticket_number],
            )
            ticket = Ticket.from_row(
                await self.db.fetchone("SELECT * FROM tickets WHERE ticket_number=?", (ticket_number,))
            )

        self._invalidate_ticket(ticket)
        if new_status != current.status:
            log.info("Ticket %s %s -> %s", ticket_number, current.status, new_status)
        return ticket

    async def claim_ticket(self, ticket_number: str, claimed_by: str, claimed_by_tag: str) -> Ticket:
        return await self.update_ticket(
            ticket_number, status="claimed", claimed_by=claimed_by, claimed_by_tag=claimed_by_tag
        )

    async def unclaim_ticket(self, ticket_number: str) -> Ticket:
        return await self.update_ticket(ticket_number, status="open", claimed_by=None, claimed_by_tag=None)

    async def close_ticket(self, ticket_number: str) -> Ticket:
        return await self.update_ticket(ticket_number, status="closed")

    async def next_ticket_number(self, category: str) -> str:
        return await self.counters.next_number(category)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def create_helper(
        self,
        user_id: str,
        user_tag: str,
        helper_rank: str = "Helper",
        is_paid_helper: bool = False,
        helper_since: int | None = None,
    ) -> Helper:
        if not user_id or not user_tag:
            raise ValidationError("user_id and user_tag are required")
        now = now_ms()
        await self.db.execute(
            """INSERT INTO helpers(user_id, user_tag, helper_rank, helper_since, is_paid_helper,
                                   created_at, updated_at)
               VALUES(?,?,?,?,?,?,?)""",
            (user_id, user_tag, helper_rank, helper_since or now, int(bool(is_paid_helper)), now, now),
        )
        self.cache.invalidate(f"helper-{user_id}")
        log.info("Helper %s created", user_tag)
        return Helper.from_row(await self.db.fetchone("SELECT * FROM helpers WHERE user_id=?", (user_id,)))

    async def get_helper(self, user_id: str) -> Helper | None:
        async def load():
            return Helper.from_row(await self.db.fetchone("SELECT * FROM helpers WHERE user_id=?", (user_id,)))
        return await self.cache.cached(f"helper-{user_id}", load)

    async def update_helper(self, user_id: str, **updates) -> Helper:
        for key in updates:
            if key in HELPER_AGGREGATES:
                raise ValidationError(f"helper.{key} is maintained by vouch recording")
        _check_fields(updates, HELPER_MUTABLE, ("id", "user_id", "created_at", "updated_at", "helper_since"), "helper")
        if "is_paid_helper" in updates:
            updates["is_paid_helper"] = int(bool(updates["is_paid_helper"]))

        async with self.db.transaction():
            if await self.db.fetchone("SELECT 1 FROM helpers WHERE user_id=?", (user_id,)) is None:
                raise NotFound("helper", user_id)
            updates["updated_at"] = now_ms()
            cols, values = _set_clause(updates)
            await self.db.execute(f"UPDATE helpers SET {cols} WHERE user_id=?", values + [user_id])
            helper = Helper.from_row(await self.db.fetchone("SELECT * FROM helpers WHERE user_id=?", (user_id,)))

        self.cache.invalidate(f"helper-{user_id}")
        self.cache.invalidate("helpers-")
        return helper

    async def reset_weekly_stats(self) -> int:
        return await self.ratings.reset_weekly()

    async def reset_monthly_stats(self) -> int:
        return await self.ratings.reset_monthly()

    async def check_paid_helper_eligibility(self, user_id: str) -> PaidEligibility:
        return await self.ratings.paid_eligibility(user_id)

    async def get_eligible_for_paid_helper_status(self) -> list[Helper]:
        return await self.ratings.eligible_for_paid_status()

    async def get_helpers_for_demotion(self, threshold: int | None = None) -> list[Helper]:
        if threshold is None:
            threshold = self.cfg.min_weekly_vouches
        return await self.ratings.helpers_below_weekly(threshold)

    async def get_top_helpers(self, kind: str = "regular", timeframe: str = "overall", limit: int = 10) -> list[LeaderboardEntry]:
        return await self.ratings.top_helpers(kind, timeframe, limit)

    # ------------------------------------------------------------------
    # Vouches
    # ------------------------------------------------------------------

    async def create_vouch(self, **fields) -> Vouch:
        return await self.ratings.record_vouch(**fields)

    async def get_helper_vouches(self, helper_id: str, limit: int | None = None) -> list[Vouch]:
        async def load():
            return await self.ratings.vouches_for(helper_id, limit)
        return await self.cache.cached(f"helper-vouches-{helper_id}-{limit or 'all'}", load)

    async def get_helper_vouches_by_timeframe(self, helper_id: str, timeframe: str) -> list[Vouch]:
        return await self.ratings.vouches_by_timeframe(helper_id, timeframe)

    # ------------------------------------------------------------------
    # Paid helper profiles
    # ------------------------------------------------------------------

    def _invalidate_paid_helper(self, user_id: str):
        self.cache.invalidate(f"paid-helper-{user_id}")
        self.cache.invalidate("paid-helpers-")

    async def create_paid_helper(
        self,
        user_id: str,
        user_tag: str,
        bio: str,
        vouches_for_access: int | None = None,
        bio_set_date: int | None = None,
    ) -> PaidHelperProfile:
        if not user_id or not user_tag or bio is None:
            raise ValidationError("user_id, user_tag and bio are required")
        now = now_ms()
        async with self.db.transaction():
            if await self.db.fetchone("SELECT 1 FROM helpers WHERE user_id=?", (user_id,)) is None:
                raise NotFound("helper", user_id)
            await self.db.execute(
                """INSERT INTO paid_helpers(user_id, user_tag, bio, bio_set_date, vouches_for_access,
                                            created_at, updated_at)
                   VALUES(?,?,?,?,?,?,?)""",
                (user_id, user_tag, bio, bio_set_date or now,
                 self.cfg.vouches_for_access if vouches_for_access is None else int(vouches_for_access),
                 now, now),
            )
            profile = PaidHelperProfile.from_row(
                await self.db.fetchone("SELECT * FROM paid_helpers WHERE user_id=?", (user_id,))
            )
        self._invalidate_paid_helper(user_id)
        log.info("Paid helper %s created with ID %d", user_tag, profile.id)
        return profile

    async def get_paid_helper(self, user_id: str) -> PaidHelperProfile | None:
        async def load():
            row = await self.db.fetchone("SELECT * FROM paid_helpers WHERE user_id=?", (user_id,))
            return PaidHelperProfile.from_row(row)
        return await self.cache.cached(f"paid-helper-{user_id}", load)

    async def update_paid_helper(self, user_id: str, **updates) -> PaidHelperProfile:
        _check_fields(updates, PAID_HELPER_MUTABLE, ("id", "user_id", "created_at", "updated_at"), "paid_helper")
        now = now_ms()
        if "bio" in updates and "bio_set_date" not in updates:
            updates["bio_set_date"] = now

        async with self.db.transaction():
            if await self.db.fetchone("SELECT 1 FROM paid_helpers WHERE user_id=?", (user_id,)) is None:
                raise NotFound("paid helper", user_id)
            updates["updated_at"] = now
            cols, values = _set_clause(updates)
            await self.db.execute(f"UPDATE paid_helpers SET {cols} WHERE user_id=?", values + [user_id])
            profile = PaidHelperProfile.from_row(
                await self.db.fetchone("SELECT * FROM paid_helpers WHERE user_id=?", (user_id,))
            )
        self._invalidate_paid_helper(user_id)
        return profile

    async def get_all_paid_helpers(self) -> list[PaidHelperProfile]:
        async def load():
            rows = await self.db.fetchall("SELECT * FROM paid_helpers ORDER BY created_at DESC, id DESC")
            return [PaidHelperProfile.from_row(r) for r in rows]
        return await self.cache.cached("paid-helpers-all", load)

    async def get_active_paid_helpers(self) -> list[PaidHelperProfile]:
        """Paid helpers whose bio has not been pulled by staff."""
        async def load():
            rows = await self.db.fetchall(
                "SELECT * FROM paid_helpers WHERE instr(bio, ?) = 0 ORDER BY bio_set_date DESC, id DESC",
                (REMOVED_BIO_MARKER,),
            )
            return [PaidHelperProfile.from_row(r) for r in rows]
        return await self.cache.cached("paid-helpers-active", load)

    # ------------------------------------------------------------------
    # Quota and daily activity
    # ------------------------------------------------------------------

    async def get_quota_usage(self, user_id: str, category: str, subcategory: str, date: str | None = None) -> int:
        return await self.quota.get_usage(user_id, category, subcategory, date)

    async def try_increment_quota(
        self,
        user_id: str,
        category: str,
        subcategory: str,
        limit: int,
        user_tag: str = "",
        date: str | None = None,
    ) -> QuotaResult:
        return await self.quota.try_increment(user_id, category, subcategory, limit, user_tag=user_tag, date=date)

    async def release_quota(self, user_id: str, category: str, subcategory: str, date: str | None = None) -> int:
        return await self.quota.release(user_id, category, subcategory, date)

    async def get_quota_usage_by_date(self, user_id: str, date: str | None = None) -> list[DailyQuotaUsage]:
        return await self.quota.usage_by_date(user_id, date)

    async def check_and_reserve_free_carry(
        self, user_id: str, user_tag: str, game: str, gamemode: str, date: str | None = None
    ) -> ReservationResult:
        return await self.quota.check_and_reserve(user_id, user_tag, game, gamemode, date)

    async def increment_user_messages(self, user_id: str, user_tag: str, date: str | None = None):
        await self.quota.increment_messages(user_id, user_tag, date)

    async def increment_free_requests(self, user_id: str, date: str | None = None):
        await self.quota.increment_free_requests(user_id, date)

    async def get_daily_activity(self, user_id: str, date: str | None = None) -> DailyUserActivity | None:
        date = date or self.quota.today()

        async def load():
            return await self.quota.get_activity(user_id, date)
        return await self.cache.cached(f"activity-{user_id}-{date}", load)
