"""
Hamme — Match model (mutual, same-choice pair of votes).
"""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

MATCH_STATUS_ACTIVE = "active"
MATCH_STATUS_EXPIRED = "expired"


def pair_key(user_x: uuid.UUID, user_y: uuid.UUID) -> tuple[uuid.UUID, uuid.UUID]:
    """Return the unordered-pair key ``(low, high)`` for two user ids."""
    low, high = sorted((user_x, user_y))
    return low, high


class Match(Base):
    __tablename__ = "matches"
    __table_args__ = (
        CheckConstraint("user_a_id <> user_b_id", name="ck_match_no_self"),
        CheckConstraint(
            "match_type IN ('date', 'friends')", name="ck_match_type"
        ),
        CheckConstraint(
            "status IN ('active', 'expired')", name="ck_match_status"
        ),
        # One active match per unordered pair; expired rows may repeat.
        Index(
            "uq_match_active_pair",
            "user_low_id",
            "user_high_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_matches_user_a_status", "user_a_id", "status"),
        Index("ix_matches_user_b_status", "user_b_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_a_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    user_b_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    user_low_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    user_high_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    match_type: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="date / friends"
    )
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=MATCH_STATUS_ACTIVE,
        server_default=MATCH_STATUS_ACTIVE,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    expired_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # ── Relationships ──────────────────────────────────────────────
    user_a: Mapped["User"] = relationship(
        "User", foreign_keys=[user_a_id], lazy="selectin"
    )
    user_b: Mapped["User"] = relationship(
        "User", foreign_keys=[user_b_id], lazy="selectin"
    )

    def other_user(self, user_id: uuid.UUID) -> "User":
        """Return the participant that is not ``user_id``."""
        return self.user_b if self.user_a_id == user_id else self.user_a

    def __repr__(self) -> str:
        return (
            f"<Match {self.user_a_id} <-> {self.user_b_id} "
            f"type={self.match_type!r} status={self.status!r}>"
        )
