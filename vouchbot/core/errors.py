from __future__ import annotations


class VouchBotError(Exception):
    """Base class for every error raised by the store."""


class StoreConnectionError(VouchBotError, ConnectionError):
    """The database is not connected or stopped answering."""


class NotFound(VouchBotError, LookupError):
    def __init__(self, kind: str, key):
        super().__init__(f"{kind} {key!r} not found")
        self.kind = kind
        self.key = key


class ConstraintViolation(VouchBotError):
    """A uniqueness or foreign-key rule in the schema rejected a write."""


class ValidationError(VouchBotError, ValueError):
    pass
