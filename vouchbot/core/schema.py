"""
Versioned schema migrations.

Each migration runs at most once, inside its own transaction, and is
recorded in schema_migrations. New steps are appended with the next
version number; existing steps are never edited.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Awaitable, Callable

V1_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS tickets (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      ticket_number TEXT UNIQUE NOT NULL,
      user_id TEXT NOT NULL,
      user_tag TEXT NOT NULL,
      channel_id TEXT UNIQUE NOT NULL,
      game TEXT,
      gamemode TEXT,
      goal TEXT,
      contact TEXT NOT NULL,
      status TEXT NOT NULL DEFAULT 'open',
      claimed_by TEXT,
      claimed_by_tag TEXT,
      type TEXT NOT NULL DEFAULT 'regular',
      created_at INTEGER NOT NULL,
      updated_at INTEGER NOT NULL,
      closed_at INTEGER
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS helpers (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      user_id TEXT UNIQUE NOT NULL,
      user_tag TEXT NOT NULL,
      helper_rank TEXT NOT NULL DEFAULT 'Helper',
      total_vouches INTEGER NOT NULL DEFAULT 0,
      last_vouch_date INTEGER,
      helper_since INTEGER NOT NULL,
      weekly_vouches INTEGER NOT NULL DEFAULT 0,
      monthly_vouches INTEGER NOT NULL DEFAULT 0,
      average_rating REAL NOT NULL DEFAULT 0.0,
      is_paid_helper INTEGER NOT NULL DEFAULT 0,
      created_at INTEGER NOT NULL,
      updated_at INTEGER NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS vouches (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      ticket_id INTEGER NOT NULL,
      helper_id TEXT NOT NULL,
      helper_tag TEXT NOT NULL,
      user_id TEXT NOT NULL,
      user_tag TEXT NOT NULL,
      rating INTEGER NOT NULL CHECK(rating >= 1 AND rating <= 5),
      reason TEXT NOT NULL,
      type TEXT NOT NULL DEFAULT 'regular',
      compensation TEXT,
      created_at INTEGER NOT NULL,
      FOREIGN KEY (ticket_id) REFERENCES tickets(id),
      FOREIGN KEY (helper_id) REFERENCES helpers(user_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS paid_helpers (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      user_id TEXT UNIQUE NOT NULL,
      user_tag TEXT NOT NULL,
      bio TEXT NOT NULL,
      bio_set_date INTEGER NOT NULL,
      vouches_for_access INTEGER NOT NULL DEFAULT 10,
      created_at INTEGER NOT NULL,
      updated_at INTEGER NOT NULL,
      FOREIGN KEY (user_id) REFERENCES helpers(user_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS user_messages (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      user_id TEXT NOT NULL,
      user_tag TEXT NOT NULL,
      date TEXT NOT NULL,
      message_count INTEGER NOT NULL DEFAULT 0,
      free_carry_requests_used INTEGER NOT NULL DEFAULT 0,
      created_at INTEGER NOT NULL,
      updated_at INTEGER NOT NULL,
      UNIQUE(user_id, date)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS free_carry_usage (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      user_id TEXT NOT NULL,
      user_tag TEXT NOT NULL,
      game TEXT NOT NULL,
      gamemode TEXT NOT NULL,
      date TEXT NOT NULL,
      usage_count INTEGER NOT NULL DEFAULT 0,
      created_at INTEGER NOT NULL,
      updated_at INTEGER NOT NULL,
      UNIQUE(user_id, game, gamemode, date)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS ticket_counters (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      game TEXT UNIQUE NOT NULL,
      counter INTEGER NOT NULL DEFAULT 1,
      created_at INTEGER NOT NULL,
      updated_at INTEGER NOT NULL
    );
    """,
]

V1_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tickets_user_id ON tickets(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_tickets_status ON tickets(status);",
    "CREATE INDEX IF NOT EXISTS idx_tickets_claimed_by ON tickets(claimed_by);",
    "CREATE INDEX IF NOT EXISTS idx_tickets_type ON tickets(type);",
    "CREATE INDEX IF NOT EXISTS idx_tickets_created_at ON tickets(created_at);",
    "CREATE INDEX IF NOT EXISTS idx_helpers_is_paid ON helpers(is_paid_helper);",
    "CREATE INDEX IF NOT EXISTS idx_helpers_total_vouches ON helpers(total_vouches);",
    "CREATE INDEX IF NOT EXISTS idx_helpers_weekly_vouches ON helpers(weekly_vouches);",
    "CREATE INDEX IF NOT EXISTS idx_helpers_monthly_vouches ON helpers(monthly_vouches);",
    "CREATE INDEX IF NOT EXISTS idx_vouches_helper_id ON vouches(helper_id);",
    "CREATE INDEX IF NOT EXISTS idx_vouches_user_id ON vouches(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_vouches_created_at ON vouches(created_at);",
    "CREATE INDEX IF NOT EXISTS idx_vouches_type ON vouches(type);",
    "CREATE INDEX IF NOT EXISTS idx_free_carry_user_date ON free_carry_usage(user_id, date);",
]


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    apply: Callable[..., Awaitable[None]]


async def _v1_base_schema(db):
    for sql in V1_TABLES + V1_INDEXES:
        await db.execute(sql)


async def _v2_support_ticket_columns(db):
    await db.ensure_column("tickets", "category", "TEXT")
    await db.ensure_column("tickets", "subject", "TEXT")
    await db.ensure_column("tickets", "description", "TEXT")
    await db.ensure_column("tickets", "priority", "TEXT DEFAULT 'medium'")


async def _v3_paid_access_counter(db):
    await db.ensure_column("helpers", "vouches_for_paid_access", "INTEGER NOT NULL DEFAULT 0")


async def _v4_one_vouch_per_ticket_rater(db):
    await db.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_vouches_ticket_rater ON vouches(ticket_id, user_id);"
    )


MIGRATIONS: list[Migration] = [
    Migration(1, "base_schema", _v1_base_schema),
    Migration(2, "support_ticket_columns", _v2_support_ticket_columns),
    Migration(3, "paid_access_counter", _v3_paid_access_counter),
    Migration(4, "one_vouch_per_ticket_rater", _v4_one_vouch_per_ticket_rater),
]
