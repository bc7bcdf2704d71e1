"""Poll engine: vote intake, resolution and payouts."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from habitloop.credits import ledger
from habitloop.db.models import (
    POLL_OPEN,
    POLL_RESOLVED,
    CreditAccount,
    CreditTransaction,
    Poll,
    UserPredictionStats,
    Vote,
)
from habitloop.errors import AlreadyVoted, NotFound, PollClosed
from habitloop.predictions.poll_service import create_poll, resolve_poll, submit_vote

from conftest import fetch

pytestmark = pytest.mark.asyncio


async def _balance(db, user_id) -> int:
    account = await fetch(db, CreditAccount, CreditAccount.user_id == user_id)
    return account.balance if account else 0


class TestCreatePoll:
    async def test_creates_open_poll(self, db, clock):
        poll = await create_poll(
            db, question="BTC above 100k?", category="crypto",
            deadline=clock.now() + timedelta(hours=6),
        )
        assert poll.id is not None
        assert poll.status == POLL_OPEN
        assert poll.base_reward_credits == 2

    async def test_rejects_naive_deadline(self, db, clock):
        with pytest.raises(ValueError):
            await create_poll(
                db, question="?", category="crypto",
                deadline=clock.now().replace(tzinfo=None),
            )

    async def test_rejects_unknown_category(self, db, clock):
        with pytest.raises(ValueError):
            await create_poll(db, question="?", category="sports", deadline=clock.now())


class TestSubmitVote:
    async def test_vote_is_recorded(self, db, clock, make_user, make_poll):
        user = await make_user()
        poll = await make_poll()

        vote = await submit_vote(db, user.id, poll.id, "yes", clock)
        assert vote.choice == "YES"
        assert vote.is_correct is None
        assert vote.credits_earned is None

        refreshed = await fetch(db, Poll, Poll.id == poll.id)
        assert refreshed.yes_count == 1
        assert refreshed.no_count == 0
        stats = await fetch(db, UserPredictionStats, UserPredictionStats.user_id == user.id)
        assert stats.total_votes == 1

    async def test_second_vote_rejected(self, db, clock, make_user, make_poll):
        user = await make_user()
        poll = await make_poll()
        await submit_vote(db, user.id, poll.id, "YES", clock)

        with pytest.raises(AlreadyVoted):
            await submit_vote(db, user.id, poll.id, "NO", clock)

        votes = (await db.execute(select(Vote).where(Vote.poll_id == poll.id))).scalars().all()
        assert [v.choice for v in votes] == ["YES"]
        stats = await fetch(db, UserPredictionStats, UserPredictionStats.user_id == user.id)
        assert stats.total_votes == 1

    async def test_concurrent_duplicates_record_one_vote(self, session_factory, clock, make_user, make_poll, db):
        user = await make_user()
        poll = await make_poll()

        async def attempt(choice):
            async with session_factory() as session:
                return await submit_vote(session, user.id, poll.id, choice, clock)

        results = await asyncio.gather(attempt("YES"), attempt("NO"), return_exceptions=True)
        successes = [r for r in results if isinstance(r, Vote)]
        failures = [r for r in results if isinstance(r, AlreadyVoted)]
        assert len(successes) == 1
        assert len(failures) == 1

        count = (await db.execute(
            select(func.count()).select_from(Vote).where(Vote.poll_id == poll.id)
        )).scalar_one()
        assert count == 1
        stats = await fetch(db, UserPredictionStats, UserPredictionStats.user_id == user.id)
        assert stats.total_votes == 1

    async def test_unknown_poll(self, db, clock, make_user):
        user = await make_user()
        with pytest.raises(NotFound):
            await submit_vote(db, user.id, 12345, "YES", clock)

    async def test_after_deadline(self, db, clock, make_user, make_poll):
        user = await make_user()
        poll = await make_poll(deadline=clock.now() + timedelta(minutes=5))
        clock.advance(minutes=5)
        with pytest.raises(PollClosed):
            await submit_vote(db, user.id, poll.id, "YES", clock)

    async def test_on_resolved_poll(self, db, clock, make_user, make_poll):
        user = await make_user()
        poll = await make_poll()
        await resolve_poll(db, poll.id, "YES", "test", clock)
        with pytest.raises(PollClosed):
            await submit_vote(db, user.id, poll.id, "YES", clock)

    async def test_invalid_choice(self, db, clock, make_user, make_poll):
        user = await make_user()
        poll = await make_poll()
        with pytest.raises(ValueError):
            await submit_vote(db, user.id, poll.id, "MAYBE", clock)


class TestResolvePoll:
    async def test_pays_correct_voters_only(self, db, clock, make_user, make_poll):
        right, wrong, sub = await make_user(), await make_user(), await make_user(is_subscriber=True)
        poll = await make_poll()
        await submit_vote(db, right.id, poll.id, "YES", clock)
        await submit_vote(db, wrong.id, poll.id, "NO", clock)
        await submit_vote(db, sub.id, poll.id, "YES", clock)

        summary = await resolve_poll(db, poll.id, "YES", "KRX close", clock)
        assert summary.voters_scored == 3
        assert summary.correct_voters == 2
        assert summary.credits_paid == 2 + 4
        assert summary.already_resolved is False

        assert await _balance(db, right.id) == 2
        assert await _balance(db, wrong.id) == 0
        assert await _balance(db, sub.id) == 4

        wrong_vote = await fetch(db, Vote, Vote.user_id == wrong.id)
        assert wrong_vote.is_correct is False
        assert wrong_vote.credits_earned == 0

        resolved = await fetch(db, Poll, Poll.id == poll.id)
        assert resolved.status == POLL_RESOLVED
        assert resolved.correct_answer == "YES"
        assert resolved.source == "KRX close"
        assert resolved.resolved_at is not None

    async def test_second_resolution_is_a_no_op(self, db, clock, make_user, make_poll):
        user = await make_user()
        poll = await make_poll()
        await submit_vote(db, user.id, poll.id, "YES", clock)

        await resolve_poll(db, poll.id, "YES", None, clock)
        again = await resolve_poll(db, poll.id, "NO", None, clock)

        assert again.already_resolved is True
        assert again.voters_scored == 0
        assert again.correct_answer == "YES"
        assert await _balance(db, user.id) == 2
        stats = await fetch(db, UserPredictionStats, UserPredictionStats.user_id == user.id)
        assert stats.correct_votes == 1
        assert stats.total_credits_earned == 2

    async def test_concurrent_resolutions_pay_once(self, session_factory, db, clock, make_user, make_poll):
        user = await make_user()
        poll = await make_poll()
        await submit_vote(db, user.id, poll.id, "YES", clock)

        async def attempt():
            async with session_factory() as session:
                return await resolve_poll(session, poll.id, "YES", None, clock)

        summaries = await asyncio.gather(attempt(), attempt())
        assert sorted(s.voters_scored for s in summaries) == [0, 1]
        assert await _balance(db, user.id) == 2

    async def test_unknown_poll(self, db, clock):
        with pytest.raises(NotFound):
            await resolve_poll(db, 4242, "YES", None, clock)

    async def test_wrong_answer_resets_prediction_streak(self, db, clock, make_user, make_poll):
        user = await make_user()
        for answer in ("YES", "YES", "NO"):
            poll = await make_poll()
            await submit_vote(db, user.id, poll.id, "YES", clock)
            await resolve_poll(db, poll.id, answer, None, clock)

        stats = await fetch(db, UserPredictionStats, UserPredictionStats.user_id == user.id)
        assert stats.current_streak == 0
        assert stats.best_streak == 2
        assert stats.correct_votes == 2
        assert stats.total_votes == 3
        assert stats.accuracy_rate == 66.67


class TestStreakBonus:
    async def test_fifth_win_pays_bonus_exactly_once(self, db, clock, make_user, make_poll):
        user = await make_user()
        for _ in range(6):
            poll = await make_poll()
            await submit_vote(db, user.id, poll.id, "YES", clock)
            await resolve_poll(db, poll.id, "YES", None, clock)
            # Duplicate scheduler delivery must not pay twice.
            await resolve_poll(db, poll.id, "YES", None, clock)

        bonuses = (await db.execute(
            select(CreditTransaction).where(
                CreditTransaction.user_id == user.id,
                CreditTransaction.reason == "prediction_streak_bonus",
            )
        )).scalars().all()
        assert [b.amount for b in bonuses] == [3]
        assert await _balance(db, user.id) == 6 * 2 + 3

        stats = await fetch(db, UserPredictionStats, UserPredictionStats.user_id == user.id)
        assert stats.current_streak == 6
        assert stats.total_credits_earned == 15


async def test_end_to_end_fifth_correct_pick_earns_five(db, clock, make_user, make_poll):
    """Four prior wins, then a correct pick on the fifth poll: 2 base + 3 bonus."""
    user = await make_user()
    for _ in range(4):
        poll = await make_poll()
        await submit_vote(db, user.id, poll.id, "NO", clock)
        await resolve_poll(db, poll.id, "NO", None, clock)
    before = await _balance(db, user.id)

    poll = await make_poll(deadline=clock.now() + timedelta(hours=2))
    await submit_vote(db, user.id, poll.id, "YES", clock)
    clock.advance(hours=3)
    await resolve_poll(db, poll.id, "YES", "close", clock)

    assert await _balance(db, user.id) - before == 5
    vote = await fetch(db, Vote, Vote.poll_id == poll.id, Vote.user_id == user.id)
    assert vote.is_correct is True
    assert vote.credits_earned == 2
    stats = await fetch(db, UserPredictionStats, UserPredictionStats.user_id == user.id)
    assert stats.current_streak == 5


async def test_vote_by_unknown_user_writes_nothing(db, clock, make_poll):
    poll = await make_poll()
    with pytest.raises(NotFound):
        await submit_vote(db, 424242, poll.id, "YES", clock)

    votes = (await db.execute(select(func.count()).select_from(Vote))).scalar_one()
    assert votes == 0
    stored = await fetch(db, Poll, Poll.id == poll.id)
    assert stored.yes_count == 0


async def test_failed_payout_rolls_back_whole_resolution(db, clock, make_user, make_poll, monkeypatch):
    first, second = await make_user(), await make_user()
    poll = await make_poll()
    await submit_vote(db, first.id, poll.id, "YES", clock)
    await submit_vote(db, second.id, poll.id, "YES", clock)

    real_credit = ledger.credit

    async def credit_failing_for_second(session, user_id, *args, **kwargs):
        if user_id == second.id:
            raise RuntimeError("ledger unavailable")
        return await real_credit(session, user_id, *args, **kwargs)

    monkeypatch.setattr(ledger, "credit", credit_failing_for_second)
    with pytest.raises(RuntimeError):
        await resolve_poll(db, poll.id, "YES", "KRX close", clock)

    stored = await fetch(db, Poll, Poll.id == poll.id)
    assert stored.status == POLL_OPEN
    assert stored.correct_answer is None
    unscored = (await db.execute(
        select(func.count()).select_from(Vote)
        .where(Vote.poll_id == poll.id, Vote.credits_earned.is_(None))
    )).scalar_one()
    assert unscored == 2
    for user in (first, second):
        stats = await fetch(db, UserPredictionStats, UserPredictionStats.user_id == user.id)
        assert stats.correct_votes == 0
        assert stats.current_streak == 0
        assert stats.total_credits_earned == 0
        assert await _balance(db, user.id) == 0
    assert (await db.execute(select(func.count()).select_from(CreditTransaction))).scalar_one() == 0

    monkeypatch.setattr(ledger, "credit", real_credit)
    summary = await resolve_poll(db, poll.id, "YES", "KRX close", clock)
    assert summary.already_resolved is False
    assert summary.voters_scored == 2
    assert summary.credits_paid == 4

    await resolve_poll(db, poll.id, "YES", "KRX close", clock)
    for user in (first, second):
        assert await _balance(db, user.id) == 2
        stats = await fetch(db, UserPredictionStats, UserPredictionStats.user_id == user.id)
        assert stats.correct_votes == 1
    assert (await db.execute(select(func.count()).select_from(CreditTransaction))).scalar_one() == 2
