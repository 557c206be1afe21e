"""
Hamme — Vote model (one-sided choice about another user's profile).
"""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

CHOICE_DATE = "date"
CHOICE_FRIENDS = "friends"
CHOICE_REJECT = "reject"

VOTE_CHOICES: tuple[str, ...] = (CHOICE_DATE, CHOICE_FRIENDS, CHOICE_REJECT)


class Vote(Base):
    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint("viewer_id", "viewed_user_id", name="uq_vote_pair"),
        CheckConstraint(
            "choice IN ('date', 'friends', 'reject')", name="ck_vote_choice"
        ),
        CheckConstraint("viewer_id <> viewed_user_id", name="ck_vote_no_self"),
        Index("ix_votes_viewed_user_choice", "viewed_user_id", "choice"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    viewer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    viewed_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    choice: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="date / friends / reject"
    )
    # Replaced on every re-vote: the time of the most recent choice.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # ── Relationships ──────────────────────────────────────────────
    viewer: Mapped["User"] = relationship(
        "User", foreign_keys=[viewer_id], lazy="selectin"
    )
    viewed_user: Mapped["User"] = relationship(
        "User", foreign_keys=[viewed_user_id], lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Vote {self.viewer_id} -> {self.viewed_user_id} choice={self.choice!r}>"
