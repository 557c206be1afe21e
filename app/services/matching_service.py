"""
Hamme — Matching Engine

Turns one-sided choices into time-boxed mutual matches:

  1. A viewer submits ``date`` / ``friends`` / ``reject`` about a target.
     The vote for that ordered pair is upserted (one row per pair) and
     committed before anything else happens.
  2. For non-reject choices the reciprocal vote (target -> viewer) is looked
     up.  Only an identical choice matches; ``date`` vs ``friends`` never does.
     The reciprocal vote is eligible at any age.
  3. If no active match exists for the unordered pair, one is inserted.  The
     partial unique index ``uq_match_active_pair`` is the real guard against
     two concurrent reciprocal submissions; losing that race is reported as
     "no match created".

Read paths (pending requests, active matches, the public-profile vote check)
filter through the ``ExpiryPolicy``.  Matches flip from ``active`` to
``expired`` lazily when listed, or through the periodic sweep script.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Callable

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.config import get_settings
from app.exceptions import (
    InvalidChoiceError,
    SelfInteractionError,
    StorageError,
    TargetNotFoundError,
    ValidationError,
)
from app.models.match import MATCH_STATUS_ACTIVE, MATCH_STATUS_EXPIRED, Match, pair_key
from app.models.user import User
from app.models.vote import CHOICE_REJECT, VOTE_CHOICES, Vote
from app.services.expiry_policy import ExpiryPolicy, as_utc, utcnow

logger = structlog.get_logger("hamme.matching_service")

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class MatchingService:
    """Vote recording, mutual-match detection and expiry-aware listings.

    The expiry policy and clock are injected so tests can pin time.
    """

    def __init__(
        self,
        expiry_policy: ExpiryPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
        pending_respects_expiry: bool | None = None,
    ) -> None:
        settings = get_settings()
        self.expiry = expiry_policy or ExpiryPolicy()
        self._clock = clock or utcnow
        if pending_respects_expiry is None:
            pending_respects_expiry = settings.PENDING_RESPECTS_EXPIRY
        self.pending_respects_expiry = pending_respects_expiry

        logger.info(
            "matching_service_initialised",
            window_hours=self.expiry.window.total_seconds() / 3600,
            pending_respects_expiry=self.pending_respects_expiry,
        )

    def now(self) -> datetime:
        return self._clock()

    # ── Public API ────────────────────────────────────────────────────────

    async def submit_choice(
        self,
        viewer_id: uuid.UUID,
        target_user_id: uuid.UUID | str | None,
        choice: Any,
        db_session: AsyncSession,
        now: datetime | None = None,
    ) -> dict | None:
        """Record ``viewer``'s choice about ``target`` and detect a match.

        Parameters
        ----------
        viewer_id:
            The authenticated caller.
        target_user_id:
            The profile being judged.  Must exist and differ from the viewer.
            Strings are parsed as UUIDs.
        choice:
            One of ``date``, ``friends``, ``reject``.
        db_session:
            Active SQLAlchemy async session.
        now:
            Override for the current time.

        Returns
        -------
        dict | None
            ``{"matched": True, "match_type": ..., "match_id": ...}`` when
            this submission created a match, otherwise ``None``.

        Raises
        ------
        ValidationError, InvalidChoiceError, SelfInteractionError, TargetNotFoundError
            Validation failures (missing fields, a malformed id, an unknown
            choice); nothing is written.
        StorageError
            Any persistence failure.  If the vote write fails, match
            detection does not run.
        """
        now = now or self.now()
        log = logger.bind(
            viewer_id=str(viewer_id),
            target_user_id=str(target_user_id),
            choice=choice,
        )

        if target_user_id is None or not choice:
            log.info("choice_rejected", reason="missing_fields")
            raise ValidationError("Target user ID and choice are required")
        if not isinstance(target_user_id, uuid.UUID):
            try:
                target_user_id = uuid.UUID(str(target_user_id))
            except ValueError:
                log.info("choice_rejected", reason="invalid_target_id")
                raise ValidationError("Invalid target user ID")
        if choice not in VOTE_CHOICES:
            log.info("choice_rejected", reason="invalid_choice")
            raise InvalidChoiceError(choice)
        if viewer_id == target_user_id:
            log.info("choice_rejected", reason="self_interaction")
            raise SelfInteractionError()

        try:
            target = await db_session.get(User, target_user_id)
        except SQLAlchemyError:
            log.exception("target_lookup_failed")
            raise StorageError("target lookup")
        if target is None:
            log.info("choice_rejected", reason="target_not_found")
            raise TargetNotFoundError(target_user_id)

        # ── 1. Upsert the vote and make it durable ────────────────────
        try:
            await self._upsert_vote(viewer_id, target_user_id, choice, now, db_session)
            await db_session.commit()
        except SQLAlchemyError:
            await db_session.rollback()
            log.exception("vote_upsert_failed")
            raise StorageError("vote upsert")

        log.info("choice_recorded")

        if choice == CHOICE_REJECT:
            return None

        # ── 2. Reciprocal same-choice vote? ───────────────────────────
        try:
            reciprocal = await self._find_vote(target_user_id, viewer_id, db_session)
        except SQLAlchemyError:
            log.exception("reciprocal_lookup_failed")
            raise StorageError("reciprocal vote lookup")

        if reciprocal is None or reciprocal.choice != choice:
            log.debug(
                "no_reciprocal_match",
                reciprocal_choice=reciprocal.choice if reciprocal else None,
            )
            return None

        # ── 3. One active match per pair ──────────────────────────────
        try:
            await self._expire_stale(db_session, now, pair=(viewer_id, target_user_id))
            existing = await self._find_active_match(viewer_id, target_user_id, db_session)
        except SQLAlchemyError:
            await db_session.rollback()
            log.exception("active_match_check_failed")
            raise StorageError("active match check")

        if existing is not None:
            log.info("match_already_active", match_id=str(existing.id))
            return None

        match = await self._create_match(viewer_id, target_user_id, choice, now, db_session)
        if match is None:
            return None

        log.info("match_created", match_id=str(match.id), match_type=choice)
        return {
            "matched": True,
            "match_type": choice,
            "match_id": match.id,
        }

    async def list_pending(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Inbound non-reject votes that ``user_id`` has not answered.

        A profile disappears as soon as ``user_id`` casts any vote toward it,
        whatever the choice or the age of that vote.  When
        ``pending_respects_expiry`` is set, inbound votes older than the
        expiry window are hidden as well.  Newest inbound vote first.
        """
        now = now or self.now()
        log = logger.bind(user_id=str(user_id))

        answered = aliased(Vote)
        answered_ids = select(answered.viewed_user_id).where(
            answered.viewer_id == user_id
        )

        stmt = (
            select(Vote)
            .where(
                Vote.viewed_user_id == user_id,
                Vote.choice != CHOICE_REJECT,
                Vote.viewer_id.not_in(answered_ids),
            )
            .order_by(Vote.created_at.desc())
            .execution_options(populate_existing=True)
        )
        if self.pending_respects_expiry:
            stmt = stmt.where(Vote.created_at > self.expiry.cutoff(now))

        try:
            result = await db_session.execute(stmt)
            votes = result.scalars().all()
        except SQLAlchemyError:
            log.exception("list_pending_failed")
            raise StorageError("pending list")

        pending = [
            {
                "user": vote.viewer,
                "choice": vote.choice,
                "viewed_at": as_utc(vote.created_at),
            }
            for vote in votes
        ]
        log.info("list_pending_complete", count=len(pending))
        return pending

    async def list_active_matches(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Expire stale matches touching ``user_id``, then list live ones.

        Each item carries the other participant, the match type, the
        creation time and the instant the match expires.  Newest first.
        """
        now = now or self.now()
        log = logger.bind(user_id=str(user_id))

        await self.expire_matches(db_session, user_id=user_id, now=now)

        stmt = (
            select(Match)
            .where(
                or_(Match.user_a_id == user_id, Match.user_b_id == user_id),
                Match.status == MATCH_STATUS_ACTIVE,
                Match.created_at > self.expiry.cutoff(now),
            )
            .order_by(Match.created_at.desc())
            .execution_options(populate_existing=True)
        )
        try:
            result = await db_session.execute(stmt)
            matches = result.scalars().all()
        except SQLAlchemyError:
            log.exception("list_matches_failed")
            raise StorageError("match list")

        items = [
            {
                "match_id": m.id,
                "user": m.other_user(user_id),
                "match_type": m.match_type,
                "created_at": as_utc(m.created_at),
                "expires_at": self.expiry.expires_at(m.created_at),
            }
            for m in matches
        ]
        log.info("list_matches_complete", count=len(items))
        return items

    async def expire_matches(
        self,
        db_session: AsyncSession,
        user_id: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> int:
        """Flip every stale active match to ``expired``.

        Scoped to matches touching ``user_id`` when given, global otherwise.
        The caller owns the transaction.  Returns the number of rows flipped.
        """
        now = now or self.now()
        try:
            flipped = await self._expire_stale(db_session, now, user_id=user_id)
        except SQLAlchemyError:
            logger.exception(
                "expire_matches_failed",
                user_id=str(user_id) if user_id else None,
            )
            raise StorageError("match expiry sweep")

        if flipped:
            logger.info(
                "matches_expired",
                count=flipped,
                user_id=str(user_id) if user_id else None,
            )
        return flipped

    async def get_existing_vote(
        self,
        viewer_id: uuid.UUID,
        target_user_id: uuid.UUID,
        db_session: AsyncSession,
        now: datetime | None = None,
    ) -> dict | None:
        """The viewer's own vote toward ``target`` while it is still inside
        the expiry window, else ``None``."""
        now = now or self.now()
        try:
            vote = await self._find_vote(viewer_id, target_user_id, db_session)
        except SQLAlchemyError:
            logger.exception(
                "existing_vote_lookup_failed",
                viewer_id=str(viewer_id),
                target_user_id=str(target_user_id),
            )
            raise StorageError("existing vote lookup")

        if vote is None or self.expiry.is_expired(vote.created_at, now):
            return None

        return {
            "choice": vote.choice,
            "voted_at": as_utc(vote.created_at),
            "expires_at": self.expiry.expires_at(vote.created_at),
        }

    # ── Storage helpers ───────────────────────────────────────────────────

    async def _upsert_vote(
        self,
        viewer_id: uuid.UUID,
        target_user_id: uuid.UUID,
        choice: str,
        now: datetime,
        db_session: AsyncSession,
    ) -> None:
        """Single-statement ``INSERT ... ON CONFLICT DO UPDATE`` keyed on the
        ordered pair, so a double-tap can never produce two rows."""
        dialect = db_session.get_bind().dialect.name
        insert = _UPSERT_DIALECTS.get(dialect)
        if insert is None:
            raise NotImplementedError(f"Vote upsert not supported on {dialect!r}")

        stmt = insert(Vote).values(
            id=uuid.uuid4(),
            viewer_id=viewer_id,
            viewed_user_id=target_user_id,
            choice=choice,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Vote.viewer_id, Vote.viewed_user_id],
            set_={
                "choice": stmt.excluded.choice,
                "created_at": stmt.excluded.created_at,
            },
        )
        await db_session.execute(stmt)

    async def _find_vote(
        self,
        viewer_id: uuid.UUID,
        viewed_user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> Vote | None:
        stmt = (
            select(Vote)
            .where(
                Vote.viewer_id == viewer_id,
                Vote.viewed_user_id == viewed_user_id,
            )
            # The upsert bypasses the identity map.
            .execution_options(populate_existing=True)
        )
        result = await db_session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_active_match(
        self,
        user_x: uuid.UUID,
        user_y: uuid.UUID,
        db_session: AsyncSession,
    ) -> Match | None:
        low, high = pair_key(user_x, user_y)
        stmt = select(Match).where(
            Match.user_low_id == low,
            Match.user_high_id == high,
            Match.status == MATCH_STATUS_ACTIVE,
        )
        result = await db_session.execute(stmt)
        return result.scalar_one_or_none()

    async def _create_match(
        self,
        viewer_id: uuid.UUID,
        target_user_id: uuid.UUID,
        match_type: str,
        now: datetime,
        db_session: AsyncSession,
    ) -> Match | None:
        """Insert an active match; ``None`` if the unique index says another
        request already created it."""
        low, high = pair_key(viewer_id, target_user_id)
        match = Match(
            user_a_id=viewer_id,
            user_b_id=target_user_id,
            user_low_id=low,
            user_high_id=high,
            match_type=match_type,
            status=MATCH_STATUS_ACTIVE,
            created_at=now,
        )
        db_session.add(match)
        try:
            await db_session.flush()
            await db_session.commit()
        except IntegrityError:
            await db_session.rollback()
            logger.warning(
                "match_insert_conflict",
                viewer_id=str(viewer_id),
                target_user_id=str(target_user_id),
            )
            return None
        except SQLAlchemyError:
            await db_session.rollback()
            logger.exception(
                "match_insert_failed",
                viewer_id=str(viewer_id),
                target_user_id=str(target_user_id),
            )
            raise StorageError("match insert")
        return match

    async def _expire_stale(
        self,
        db_session: AsyncSession,
        now: datetime,
        user_id: uuid.UUID | None = None,
        pair: tuple[uuid.UUID, uuid.UUID] | None = None,
    ) -> int:
        stale = select(Match.id).where(
            Match.status == MATCH_STATUS_ACTIVE,
            Match.created_at <= self.expiry.cutoff(now),
        )
        if user_id is not None:
            stale = stale.where(
                or_(Match.user_a_id == user_id, Match.user_b_id == user_id)
            )
        if pair is not None:
            low, high = pair_key(*pair)
            stale = stale.where(
                and_(Match.user_low_id == low, Match.user_high_id == high)
            )

        stale_ids = (await db_session.execute(stale)).scalars().all()
        if not stale_ids:
            return 0

        stmt = (
            update(Match)
            .where(Match.id.in_(stale_ids), Match.status == MATCH_STATUS_ACTIVE)
            .values(status=MATCH_STATUS_EXPIRED, expired_at=now)
            .execution_options(synchronize_session="fetch")
        )
        await db_session.execute(stmt)
        return len(stale_ids)
