import asyncio

import pytest

from services.ledger import (
    consume_credits,
    get_credit_balance,
    get_credit_history,
    grant_credits,
    initialize_credits,
    verify_conservation,
)
from services.ledger_errors import InsufficientCredits


ACCOUNT_ID = "race-user"


async def _consume_in_own_session(session_maker, amount):
    async with session_maker() as session:
        try:
            return await consume_credits(ACCOUNT_ID, session, amount=amount, reason="race")
        except InsufficientCredits as exc:
            return exc


@pytest.mark.asyncio
async def test_two_consumers_cannot_both_spend_the_last_credits(session_maker):
    async with session_maker() as session:
        await initialize_credits(ACCOUNT_ID, session, 5)

    outcomes = await asyncio.gather(
        _consume_in_own_session(session_maker, 5),
        _consume_in_own_session(session_maker, 5),
    )

    successes = [outcome for outcome in outcomes if isinstance(outcome, int)]
    failures = [outcome for outcome in outcomes if isinstance(outcome, InsufficientCredits)]
    assert successes == [0]
    assert len(failures) == 1
    assert failures[0].available == 0

    async with session_maker() as session:
        assert await get_credit_balance(ACCOUNT_ID, session) == 0
        history = await get_credit_history(ACCOUNT_ID, session)
    assert [entry["kind"] for entry in history] == ["CONSUME", "INITIALIZE"]


@pytest.mark.asyncio
async def test_parallel_consumers_never_overdraw(session_maker):
    async with session_maker() as session:
        await initialize_credits(ACCOUNT_ID, session, 20)

    outcomes = await asyncio.gather(*[_consume_in_own_session(session_maker, 3) for _ in range(10)])

    successes = [outcome for outcome in outcomes if isinstance(outcome, int)]
    assert len(successes) == 6
    assert sorted(successes) == [2, 5, 8, 11, 14, 17]

    async with session_maker() as session:
        assert await get_credit_balance(ACCOUNT_ID, session) == 2
        report = await verify_conservation(ACCOUNT_ID, session)
    assert report["consistent"] is True
    assert report["transaction_count"] == 7


@pytest.mark.asyncio
async def test_interleaved_grants_and_consumes_keep_records_linked(session_maker):
    async with session_maker() as session:
        await initialize_credits(ACCOUNT_ID, session, 10)

    async def grant_once():
        async with session_maker() as session:
            return await grant_credits(ACCOUNT_ID, session, amount=4, reason="race grant")

    tasks = []
    for _ in range(4):
        tasks.append(grant_once())
        tasks.append(_consume_in_own_session(session_maker, 2))
    await asyncio.gather(*tasks)

    async with session_maker() as session:
        balance = await get_credit_balance(ACCOUNT_ID, session)
        history = await get_credit_history(ACCOUNT_ID, session, limit=500)
        report = await verify_conservation(ACCOUNT_ID, session)

    assert balance == 18
    assert report["consistent"] is True
    assert report["broken_links"] == []
    assert sum(entry["amount"] for entry in history) == balance
    assert all(entry["balance_after"] >= 0 for entry in history)
