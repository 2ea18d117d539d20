"""
Typed rows returned by the store.

Every record is built from an aiosqlite.Row with `from_row`; the column
names match the table definitions in schema.py.
"""

from __future__ import annotations
from dataclasses import dataclass, fields
from typing import Optional

TICKET_STATUSES = ("open", "claimed", "closed")
TICKET_TYPES = ("support", "regular", "paid")
TICKET_PRIORITIES = ("low", "medium", "high", "critical")
VOUCH_TYPES = ("regular", "paid")

# Allowed (from, to) status moves for an existing ticket
TICKET_TRANSITIONS = {
    ("open", "claimed"),
    ("open", "closed"),
    ("claimed", "closed"),
    ("claimed", "open"),
}


def _row_dict(cls, row) -> dict:
    keys = set(row.keys())
    return {f.name: row[f.name] for f in fields(cls) if f.name in keys}


def _from_row(cls, row):
    if row is None:
        return None
    return cls(**_row_dict(cls, row))


@dataclass(frozen=True)
class Ticket:
    id: int
    ticket_number: str
    user_id: str
    user_tag: str
    channel_id: str
    contact: str
    status: str
    type: str
    created_at: int
    updated_at: int
    category: Optional[str] = None
    subject: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = "medium"
    game: Optional[str] = None
    gamemode: Optional[str] = None
    goal: Optional[str] = None
    claimed_by: Optional[str] = None
    claimed_by_tag: Optional[str] = None
    closed_at: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> Optional["Ticket"]:
        return _from_row(cls, row)

    @property
    def scope(self) -> str:
        """Counter scope the ticket is numbered in."""
        return self.game or self.category or self.type


@dataclass(frozen=True)
class Helper:
    id: int
    user_id: str
    user_tag: str
    helper_rank: str
    total_vouches: int
    weekly_vouches: int
    monthly_vouches: int
    average_rating: float
    is_paid_helper: bool
    vouches_for_paid_access: int
    helper_since: int
    created_at: int
    updated_at: int
    last_vouch_date: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> Optional["Helper"]:
        if row is None:
            return None
        data = _row_dict(cls, row)
        # sqlite stores booleans as 0/1
        data["is_paid_helper"] = bool(data.get("is_paid_helper"))
        data["average_rating"] = float(data.get("average_rating") or 0.0)
        data["vouches_for_paid_access"] = int(data.get("vouches_for_paid_access") or 0)
        return cls(**data)


@dataclass(frozen=True)
class Vouch:
    id: int
    ticket_id: int
    helper_id: str
    helper_tag: str
    user_id: str
    user_tag: str
    rating: int
    reason: str
    type: str
    created_at: int
    compensation: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> Optional["Vouch"]:
        return _from_row(cls, row)


@dataclass(frozen=True)
class PaidHelperProfile:
    id: int
    user_id: str
    user_tag: str
    bio: str
    bio_set_date: int
    vouches_for_access: int
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row) -> Optional["PaidHelperProfile"]:
        return _from_row(cls, row)


@dataclass(frozen=True)
class DailyUserActivity:
    id: int
    user_id: str
    user_tag: str
    date: str
    message_count: int
    free_carry_requests_used: int
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row) -> Optional["DailyUserActivity"]:
        return _from_row(cls, row)


@dataclass(frozen=True)
class DailyQuotaUsage:
    id: int
    user_id: str
    user_tag: str
    game: str
    gamemode: str
    date: str
    usage_count: int
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row) -> Optional["DailyQuotaUsage"]:
        return _from_row(cls, row)


@dataclass(frozen=True)
class QuotaResult:
    success: bool
    current_usage: int


@dataclass(frozen=True)
class ReservationResult:
    eligible: bool
    reason: Optional[str] = None
    limit: Optional[int] = None
    used: Optional[int] = None


@dataclass(frozen=True)
class PaidEligibility:
    eligible: bool
    vouches_needed: int
    current_vouches: int


@dataclass(frozen=True)
class LeaderboardEntry:
    user_id: str
    user_tag: str
    vouch_count: int
    average_rating: float
