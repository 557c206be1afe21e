"""
Hamme — Interaction expiry policy.

A single fixed window (24 hours by default) governs both:
  * how long a vote blocks re-voting on a public profile, and
  * how long a match stays visible after creation.

Expiry is evaluated at read time against ``created_at``; nothing here touches
the database.  A record is expired once ``now - created_at >= window``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from app.config import get_settings


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps (as returned by SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ExpiryPolicy:
    """Fixed-window lifetime for votes and matches."""

    def __init__(self, window: timedelta | None = None) -> None:
        if window is None:
            window = timedelta(hours=get_settings().INTERACTION_WINDOW_HOURS)
        if window <= timedelta(0):
            raise ValueError(f"Expiry window must be positive, got {window}")
        self.window = window

    def cutoff(self, now: datetime) -> datetime:
        """Records created at or before this instant are expired."""
        return as_utc(now) - self.window

    def expires_at(self, created_at: datetime) -> datetime:
        return as_utc(created_at) + self.window

    def is_expired(self, created_at: datetime, now: datetime) -> bool:
        return as_utc(now) - as_utc(created_at) >= self.window

    def remaining(self, created_at: datetime, now: datetime) -> timedelta:
        """Time left before expiry, never negative."""
        left = self.expires_at(created_at) - as_utc(now)
        return max(left, timedelta(0))
