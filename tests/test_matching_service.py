"""Tests for MatchingService — votes, mutual matches and expiry."""
import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from app.exceptions import (
    InvalidChoiceError,
    SelfInteractionError,
    StorageError,
    TargetNotFoundError,
    ValidationError,
)
from app.models.match import MATCH_STATUS_ACTIVE, MATCH_STATUS_EXPIRED, Match, pair_key
from app.models.vote import Vote
from app.services.expiry_policy import ExpiryPolicy, as_utc
from app.services.matching_service import MatchingService

T0 = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)


def _service(pending_respects_expiry: bool = True) -> MatchingService:
    return MatchingService(
        expiry_policy=ExpiryPolicy(window=timedelta(hours=24)),
        clock=lambda: T0,
        pending_respects_expiry=pending_respects_expiry,
    )


@pytest.fixture
def service():
    return _service()


@pytest.fixture
async def pair(make_user):
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    return alice, bob


async def _votes_for(db, viewer_id, viewed_id) -> list[Vote]:
    result = await db.execute(
        select(Vote)
        .where(Vote.viewer_id == viewer_id, Vote.viewed_user_id == viewed_id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _active_match_count(db, user_x, user_y) -> int:
    low, high = pair_key(user_x, user_y)
    result = await db.execute(
        select(func.count(Match.id)).where(
            Match.user_low_id == low,
            Match.user_high_id == high,
            Match.status == MATCH_STATUS_ACTIVE,
        )
    )
    return result.scalar_one()


# ── Validation ────────────────────────────────────────────────────────────────


class TestSubmitValidation:

    @pytest.mark.asyncio
    async def test_unknown_choice_rejected(self, service, db_session, pair):
        alice, bob = pair
        with pytest.raises(InvalidChoiceError):
            await service.submit_choice(alice.id, bob.id, "maybe", db_session)
        assert await _votes_for(db_session, alice.id, bob.id) == []

    @pytest.mark.asyncio
    async def test_self_vote_rejected(self, service, db_session, pair):
        alice, _ = pair
        with pytest.raises(SelfInteractionError):
            await service.submit_choice(alice.id, alice.id, "date", db_session)

    @pytest.mark.asyncio
    async def test_missing_target_rejected(self, service, db_session, pair):
        alice, _ = pair
        with pytest.raises(TargetNotFoundError):
            await service.submit_choice(alice.id, uuid.uuid4(), "date", db_session)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("target, choice", [(None, "date"), ("BOB", None), ("BOB", "")])
    async def test_missing_fields_rejected(self, service, db_session, pair, target, choice):
        alice, bob = pair
        target = bob.id if target == "BOB" else target
        with pytest.raises(ValidationError, match="required"):
            await service.submit_choice(alice.id, target, choice, db_session)
        assert await _votes_for(db_session, alice.id, bob.id) == []

    @pytest.mark.asyncio
    async def test_malformed_target_id_rejected(self, service, db_session, pair):
        alice, _ = pair
        with pytest.raises(ValidationError, match="Invalid target user ID"):
            await service.submit_choice(alice.id, "not-a-uuid", "date", db_session)

    @pytest.mark.asyncio
    async def test_string_target_id_accepted(self, service, db_session, pair):
        alice, bob = pair
        await service.submit_choice(alice.id, str(bob.id), "date", db_session, now=T0)
        votes = await _votes_for(db_session, alice.id, bob.id)
        assert [v.choice for v in votes] == ["date"]

    @pytest.mark.asyncio
    async def test_non_string_choice_rejected(self, service, db_session, pair):
        alice, bob = pair
        with pytest.raises(InvalidChoiceError):
            await service.submit_choice(alice.id, bob.id, ["date"], db_session)


# ── Vote storage shape ────────────────────────────────────────────────────────


class TestVoteUpsert:

    @pytest.mark.asyncio
    async def test_repeating_choice_keeps_one_row(self, service, db_session, pair):
        alice, bob = pair
        await service.submit_choice(alice.id, bob.id, "date", db_session, now=T0)
        await service.submit_choice(alice.id, bob.id, "date", db_session, now=T0 + HOUR)

        votes = await _votes_for(db_session, alice.id, bob.id)
        assert len(votes) == 1

    @pytest.mark.asyncio
    async def test_new_choice_overwrites_previous(self, service, db_session, pair):
        alice, bob = pair
        await service.submit_choice(alice.id, bob.id, "date", db_session, now=T0)
        await service.submit_choice(alice.id, bob.id, "friends", db_session, now=T0 + HOUR)

        votes = await _votes_for(db_session, alice.id, bob.id)
        assert [v.choice for v in votes] == ["friends"]
        assert as_utc(votes[0].created_at) == T0 + HOUR

    @pytest.mark.asyncio
    async def test_reject_returns_no_match(self, service, db_session, pair):
        alice, bob = pair
        result = await service.submit_choice(alice.id, bob.id, "reject", db_session)
        assert result is None

    @pytest.mark.asyncio
    async def test_vote_write_failure_skips_match_detection(self, service, db_session, pair):
        alice, bob = pair
        failing = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("disk I/O")))
        with patch.object(service, "_upsert_vote", failing), \
             patch.object(service, "_find_vote", AsyncMock()) as find_vote:
            with pytest.raises(StorageError):
                await service.submit_choice(alice.id, bob.id, "date", db_session)
        find_vote.assert_not_called()


# ── Match detection ───────────────────────────────────────────────────────────


class TestMatchDetection:

    @pytest.mark.asyncio
    async def test_first_vote_does_not_match(self, service, db_session, pair):
        alice, bob = pair
        assert await service.submit_choice(alice.id, bob.id, "date", db_session) is None

    @pytest.mark.asyncio
    async def test_reciprocal_same_choice_matches(self, service, db_session, pair):
        alice, bob = pair
        await service.submit_choice(alice.id, bob.id, "date", db_session, now=T0)
        result = await service.submit_choice(bob.id, alice.id, "date", db_session, now=T0 + HOUR)

        assert result["matched"] is True
        assert result["match_type"] == "date"
        match = await db_session.get(Match, result["match_id"])
        assert match.user_a_id == bob.id
        assert match.user_b_id == alice.id
        assert match.status == MATCH_STATUS_ACTIVE

    @pytest.mark.asyncio
    async def test_friends_match(self, service, db_session, pair):
        alice, bob = pair
        await service.submit_choice(alice.id, bob.id, "friends", db_session)
        result = await service.submit_choice(bob.id, alice.id, "friends", db_session)
        assert result["match_type"] == "friends"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("first,second", [("date", "friends"), ("friends", "date")])
    async def test_mismatched_choices_never_match(self, service, db_session, pair, first, second):
        alice, bob = pair
        await service.submit_choice(alice.id, bob.id, first, db_session)
        assert await service.submit_choice(bob.id, alice.id, second, db_session) is None
        assert await _active_match_count(db_session, alice.id, bob.id) == 0

    @pytest.mark.asyncio
    async def test_reject_never_matches(self, service, db_session, pair):
        alice, bob = pair
        await service.submit_choice(alice.id, bob.id, "reject", db_session)
        for choice in ("date", "friends", "reject"):
            assert await service.submit_choice(bob.id, alice.id, choice, db_session) is None
        assert await _active_match_count(db_session, alice.id, bob.id) == 0

    @pytest.mark.asyncio
    async def test_reciprocal_vote_eligible_at_any_age(self, service, db_session, pair):
        alice, bob = pair
        await service.submit_choice(alice.id, bob.id, "date", db_session, now=T0)
        result = await service.submit_choice(
            bob.id, alice.id, "date", db_session, now=T0 + timedelta(days=10),
        )
        assert result is not None

    @pytest.mark.asyncio
    async def test_repeat_reciprocal_choices_keep_single_active_match(
        self, service, db_session, pair,
    ):
        alice, bob = pair
        await service.submit_choice(alice.id, bob.id, "date", db_session, now=T0)
        first = await service.submit_choice(bob.id, alice.id, "date", db_session, now=T0)
        third = await service.submit_choice(alice.id, bob.id, "date", db_session, now=T0 + HOUR)
        fourth = await service.submit_choice(bob.id, alice.id, "date", db_session, now=T0 + 2 * HOUR)

        assert first is not None
        assert third is None
        assert fourth is None
        assert await _active_match_count(db_session, alice.id, bob.id) == 1

    @pytest.mark.asyncio
    async def test_new_match_after_previous_expired(self, service, db_session, pair):
        alice, bob = pair
        await service.submit_choice(alice.id, bob.id, "date", db_session, now=T0)
        first = await service.submit_choice(bob.id, alice.id, "date", db_session, now=T0)

        later = T0 + timedelta(hours=30)
        second = await service.submit_choice(alice.id, bob.id, "date", db_session, now=later)

        assert second is not None
        assert second["match_id"] != first["match_id"]
        old = await db_session.get(Match, first["match_id"], populate_existing=True)
        assert old.status == MATCH_STATUS_EXPIRED
        assert await _active_match_count(db_session, alice.id, bob.id) == 1


# ── Concurrent reciprocal submissions ─────────────────────────────────────────


class TestConcurrentMatchCreation:

    @pytest.mark.asyncio
    async def test_losing_insert_reports_no_match(self, service, db_session, pair):
        """Both requests pass the application check; the index lets one win."""
        alice, bob = pair
        await service.submit_choice(alice.id, bob.id, "date", db_session, now=T0)
        winner = await service.submit_choice(bob.id, alice.id, "date", db_session, now=T0)
        assert winner is not None

        # The second request read "no active match" before the first committed.
        with patch.object(service, "_find_active_match", AsyncMock(return_value=None)):
            loser = await service.submit_choice(alice.id, bob.id, "date", db_session, now=T0)

        assert loser is None
        assert await _active_match_count(db_session, alice.id, bob.id) == 1
        # The loser's vote stays recorded.
        votes = await _votes_for(db_session, alice.id, bob.id)
        assert [v.choice for v in votes] == ["date"]

    @pytest.mark.asyncio
    async def test_unique_index_rejects_second_active_row(self, db_session, pair):
        alice, bob = pair
        low, high = pair_key(alice.id, bob.id)

        def _row(status):
            return Match(
                user_a_id=alice.id, user_b_id=bob.id,
                user_low_id=low, user_high_id=high,
                match_type="date", status=status, created_at=T0,
            )

        db_session.add_all([_row(MATCH_STATUS_EXPIRED), _row(MATCH_STATUS_ACTIVE)])
        await db_session.commit()

        db_session.add(_row(MATCH_STATUS_ACTIVE))
        with pytest.raises(IntegrityError):
            await db_session.flush()
        await db_session.rollback()

    @pytest.mark.asyncio
    async def test_simultaneous_reciprocal_choices_create_one_match(
        self, service, test_session_factory, pair
    ):
        alice, bob = pair

        async def submit(viewer, target):
            async with test_session_factory() as session:
                return await service.submit_choice(viewer.id, target.id, "date", session, now=T0)

        results = await asyncio.gather(submit(alice, bob), submit(bob, alice))

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert winners[0]["match_type"] == "date"
        async with test_session_factory() as fresh:
            assert await _active_match_count(fresh, alice.id, bob.id) == 1
            assert len(await _votes_for(fresh, alice.id, bob.id)) == 1
            assert len(await _votes_for(fresh, bob.id, alice.id)) == 1


# ── Pending list ──────────────────────────────────────────────────────────────


class TestListPending:

    @pytest.mark.asyncio
    async def test_inbound_vote_shows_as_pending(self, service, db_session, pair):
        """Scenario: A chooses date on B; B sees A pending, no match yet."""
        alice, bob = pair
        await service.submit_choice(alice.id, bob.id, "date", db_session, now=T0)

        pending = await service.list_pending(bob.id, db_session, now=T0 + HOUR)
        assert [(p["user"].id, p["choice"]) for p in pending] == [(alice.id, "date")]
        assert as_utc(pending[0]["viewed_at"]) == T0
        assert await _active_match_count(db_session, alice.id, bob.id) == 0

    @pytest.mark.asyncio
    async def test_inbound_reject_never_pending(self, service, db_session, pair):
        carol, dave = pair
        await service.submit_choice(carol.id, dave.id, "reject", db_session, now=T0)
        assert await service.list_pending(dave.id, db_session, now=T0) == []

    @pytest.mark.asyncio
    async def test_retracted_choice_leaves_pending(self, service, db_session, pair):
        """Scenario: A picks date then switches to reject before B answers."""
        alice, bob = pair
        await service.submit_choice(alice.id, bob.id, "date", db_session, now=T0)
        await service.submit_choice(alice.id, bob.id, "reject", db_session, now=T0 + HOUR)
        assert await service.list_pending(bob.id, db_session, now=T0 + HOUR) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("answer", ["date", "friends", "reject"])
    async def test_answered_profiles_excluded(self, service, db_session, pair, answer):
        alice, bob = pair
        await service.submit_choice(alice.id, bob.id, "date", db_session, now=T0)
        await service.submit_choice(bob.id, alice.id, answer, db_session, now=T0)
        assert await service.list_pending(bob.id, db_session, now=T0) == []

    @pytest.mark.asyncio
    async def test_old_answer_still_excludes(self, db_session, pair):
        alice, bob = pair
        service = _service(pending_respects_expiry=False)
        await service.submit_choice(bob.id, alice.id, "reject", db_session, now=T0)
        await service.submit_choice(
            alice.id, bob.id, "date", db_session, now=T0 + timedelta(hours=30),
        )
        pending = await service.list_pending(bob.id, db_session, now=T0 + timedelta(hours=31))
        assert pending == []

    @pytest.mark.asyncio
    async def test_newest_first(self, service, db_session, make_user):
        target = await make_user("Target")
        early = await make_user("Early")
        late = await make_user("Late")
        await service.submit_choice(early.id, target.id, "friends", db_session, now=T0)
        await service.submit_choice(late.id, target.id, "date", db_session, now=T0 + HOUR)

        pending = await service.list_pending(target.id, db_session, now=T0 + 2 * HOUR)
        assert [p["user"].id for p in pending] == [late.id, early.id]

    @pytest.mark.asyncio
    async def test_stale_inbound_vote_hidden_by_default(self, service, db_session, pair):
        alice, bob = pair
        await service.submit_choice(alice.id, bob.id, "date", db_session, now=T0)

        assert await service.list_pending(bob.id, db_session, now=T0 + timedelta(hours=23))
        assert await service.list_pending(bob.id, db_session, now=T0 + timedelta(hours=24)) == []

    @pytest.mark.asyncio
    async def test_stale_inbound_vote_kept_when_unbounded(self, db_session, pair):
        alice, bob = pair
        service = _service(pending_respects_expiry=False)
        await service.submit_choice(alice.id, bob.id, "date", db_session, now=T0)

        pending = await service.list_pending(bob.id, db_session, now=T0 + timedelta(days=5))
        assert [p["user"].id for p in pending] == [alice.id]


# ── Active matches and expiry ─────────────────────────────────────────────────


class TestActiveMatches:

    async def _match(self, service, db_session, alice, bob, at=T0):
        await service.submit_choice(alice.id, bob.id, "date", db_session, now=at)
        return await service.submit_choice(bob.id, alice.id, "date", db_session, now=at)

    @pytest.mark.asyncio
    async def test_both_participants_see_match(self, service, db_session, pair):
        alice, bob = pair
        result = await self._match(service, db_session, alice, bob)

        for me, other in ((alice, bob), (bob, alice)):
            items = await service.list_active_matches(me.id, db_session, now=T0 + HOUR)
            assert len(items) == 1
            assert items[0]["match_id"] == result["match_id"]
            assert items[0]["user"].id == other.id
            assert items[0]["match_type"] == "date"
            assert as_utc(items[0]["expires_at"]) == T0 + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_match_gone_after_25_hours(self, service, db_session, pair):
        alice, bob = pair
        result = await self._match(service, db_session, alice, bob)

        later = T0 + timedelta(hours=25)
        assert await service.list_active_matches(alice.id, db_session, now=later) == []

        match = await db_session.get(Match, result["match_id"], populate_existing=True)
        assert match.status == MATCH_STATUS_EXPIRED
        assert as_utc(match.expired_at) == later

    @pytest.mark.asyncio
    async def test_boundary_is_inclusive(self, service, db_session, pair):
        alice, bob = pair
        await self._match(service, db_session, alice, bob)

        just_before = T0 + timedelta(hours=24) - timedelta(seconds=1)
        assert len(await service.list_active_matches(alice.id, db_session, now=just_before)) == 1
        assert await service.list_active_matches(
            alice.id, db_session, now=T0 + timedelta(hours=24),
        ) == []

    @pytest.mark.asyncio
    async def test_expired_match_never_reappears(self, service, db_session, pair):
        alice, bob = pair
        await self._match(service, db_session, alice, bob)
        await service.list_active_matches(alice.id, db_session, now=T0 + timedelta(hours=25))

        # Even a clock read from before the boundary cannot revive the row.
        assert await service.list_active_matches(bob.id, db_session, now=T0 + HOUR) == []

    @pytest.mark.asyncio
    async def test_newest_first(self, service, db_session, make_user):
        me = await make_user("Me")
        old = await make_user("Old")
        new = await make_user("New")
        await self._match(service, db_session, me, old, at=T0)
        await self._match(service, db_session, me, new, at=T0 + HOUR)

        items = await service.list_active_matches(me.id, db_session, now=T0 + 2 * HOUR)
        assert [i["user"].id for i in items] == [new.id, old.id]

    @pytest.mark.asyncio
    async def test_global_sweep(self, service, db_session, make_user):
        a, b, c, d = [await make_user(n) for n in ("Ann", "Ben", "Cat", "Dan")]
        await self._match(service, db_session, a, b, at=T0)
        await self._match(service, db_session, c, d, at=T0 + timedelta(hours=10))

        flipped = await service.expire_matches(db_session, now=T0 + timedelta(hours=25))
        await db_session.commit()

        assert flipped == 1
        assert await _active_match_count(db_session, a.id, b.id) == 0
        assert await _active_match_count(db_session, c.id, d.id) == 1

    @pytest.mark.asyncio
    async def test_scoped_sweep_leaves_other_users(self, service, db_session, make_user):
        a, b, c, d = [await make_user(n) for n in ("Ann", "Ben", "Cat", "Dan")]
        await self._match(service, db_session, a, b, at=T0)
        await self._match(service, db_session, c, d, at=T0)

        flipped = await service.expire_matches(
            db_session, user_id=a.id, now=T0 + timedelta(hours=25),
        )
        assert flipped == 1
        assert await _active_match_count(db_session, c.id, d.id) == 1


# ── Existing vote on the public profile ───────────────────────────────────────


class TestExistingVote:

    @pytest.mark.asyncio
    async def test_live_vote_reported(self, service, db_session, pair):
        alice, bob = pair
        await service.submit_choice(alice.id, bob.id, "friends", db_session, now=T0)

        vote = await service.get_existing_vote(
            alice.id, bob.id, db_session, now=T0 + timedelta(hours=23),
        )
        assert vote["choice"] == "friends"
        assert as_utc(vote["voted_at"]) == T0
        assert as_utc(vote["expires_at"]) == T0 + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_vote_hidden_once_window_passes(self, service, db_session, pair):
        alice, bob = pair
        await service.submit_choice(alice.id, bob.id, "friends", db_session, now=T0)
        assert await service.get_existing_vote(
            alice.id, bob.id, db_session, now=T0 + timedelta(hours=24),
        ) is None

    @pytest.mark.asyncio
    async def test_only_own_vote_counts(self, service, db_session, pair):
        alice, bob = pair
        await service.submit_choice(bob.id, alice.id, "date", db_session, now=T0)
        assert await service.get_existing_vote(alice.id, bob.id, db_session, now=T0) is None
