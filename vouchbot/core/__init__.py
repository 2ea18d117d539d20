# Core package - centralized exports
# - config.py: Config (YAML) and free carry limits
# - db.py / schema.py: Database connection, transactions, versioned migrations
# - cache.py: QueryCache
# - counters.py / quota.py / ratings.py: allocator, quota tracker, rating aggregator
# - store.py: VouchStore, the operations cogs call
# - supervisor.py: ConnectionSupervisor

from .config import Config
from .cache import QueryCache
from .db import Database
from .errors import VouchBotError, StoreConnectionError, NotFound, ConstraintViolation, ValidationError
from .records import (
    Ticket, Helper, Vouch, PaidHelperProfile, DailyUserActivity, DailyQuotaUsage,
    QuotaResult, ReservationResult, PaidEligibility, LeaderboardEntry,
)
from .store import VouchStore
from .supervisor import ConnectionSupervisor

__all__ = [
    'Config', 'QueryCache', 'Database', 'VouchStore', 'ConnectionSupervisor',
    # Errors
    'VouchBotError', 'StoreConnectionError', 'NotFound', 'ConstraintViolation', 'ValidationError',
    # Records
    'Ticket', 'Helper', 'Vouch', 'PaidHelperProfile', 'DailyUserActivity', 'DailyQuotaUsage',
    'QuotaResult', 'ReservationResult', 'PaidEligibility', 'LeaderboardEntry',
]
