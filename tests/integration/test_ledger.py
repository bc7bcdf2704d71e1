"""Reward Ledger Adapter against a real database."""

import pytest
from sqlalchemy import select

from habitloop.credits import ledger
from habitloop.db.models import CreditAccount, CreditTransaction
from habitloop.errors import InsufficientCredits, NotFound

from conftest import fetch

pytestmark = pytest.mark.asyncio


async def test_credit_creates_account(db, make_user):
    user = await make_user()
    assert await ledger.credit(db, user.id, 5, "achievement") is True
    await db.commit()

    account = await fetch(db, CreditAccount, CreditAccount.user_id == user.id)
    assert account.balance == 5
    assert account.lifetime_earned == 5


async def test_credit_with_same_key_applies_once(db, make_user):
    user = await make_user()
    assert await ledger.credit(db, user.id, 3, "achievement", idempotency_key="k1") is True
    await db.commit()
    assert await ledger.credit(db, user.id, 3, "achievement", idempotency_key="k1") is False
    await db.commit()

    account = await fetch(db, CreditAccount, CreditAccount.user_id == user.id)
    assert account.balance == 3
    rows = (await db.execute(select(CreditTransaction).where(CreditTransaction.user_id == user.id))).scalars().all()
    assert len(rows) == 1


async def test_debit_within_balance(db, make_user):
    user = await make_user()
    await ledger.credit(db, user.id, 10, "seed")
    await ledger.debit(db, user.id, 3, "streak_freeze_purchase")
    await db.commit()

    account = await fetch(db, CreditAccount, CreditAccount.user_id == user.id)
    assert account.balance == 7
    assert account.lifetime_spent == 3
    history, total = await ledger.get_history(db, user.id)
    assert total == 2
    debit_row = next(tx for tx in history if tx.kind == "debit")
    assert debit_row.amount == -3
    assert debit_row.balance_after == 7


async def test_debit_refused_when_short(db, make_user):
    user = await make_user()
    await ledger.credit(db, user.id, 2, "seed")
    await db.commit()

    with pytest.raises(InsufficientCredits):
        await ledger.debit(db, user.id, 3, "streak_freeze_purchase")
    await db.rollback()

    account = await fetch(db, CreditAccount, CreditAccount.user_id == user.id)
    assert account.balance == 2


async def test_debit_without_account_is_refused(db, make_user):
    user = await make_user()
    with pytest.raises(InsufficientCredits):
        await ledger.debit(db, user.id, 1, "anything")


@pytest.mark.parametrize("amount", [0, -4])
async def test_non_positive_amounts_rejected(db, make_user, amount):
    user = await make_user()
    with pytest.raises(ValueError):
        await ledger.credit(db, user.id, amount, "bad")
    with pytest.raises(ValueError):
        await ledger.debit(db, user.id, amount, "bad")


async def test_history_pagination(db, make_user):
    user = await make_user()
    for i in range(5):
        await ledger.credit(db, user.id, i + 1, "seed", idempotency_key=f"seed:{i}")
    await db.commit()

    page1, total = await ledger.get_history(db, user.id, page=1, per_page=2)
    page3, _ = await ledger.get_history(db, user.id, page=3, per_page=2)
    assert total == 5
    assert len(page1) == 2
    assert len(page3) == 1
    assert await ledger.get_balance(db, 999_999) is None


async def test_credit_to_unknown_user_is_not_found(db):
    with pytest.raises(NotFound):
        await ledger.credit(db, 999_999, 5, "achievement")
    await db.rollback()
    assert await ledger.get_balance(db, 999_999) is None
