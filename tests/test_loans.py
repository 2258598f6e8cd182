import pytest

from guildbank.config import LoanConfig
from guildbank.domain.exceptions import (
    LoanAlreadyActive,
    LoanOptionInvalid,
    NoActiveLoan,
    NoFundsAvailable,
    TransferBlocked,
)
from guildbank.domain.loans import MS_PER_DAY, ReminderKind, normalize, pending_reminders
from guildbank.storage.base import AccountRecord, LoanRecord, LoanStatus
from guildbank.testing import LoanFixtures


def _account_with_loan(*, wallet=0, bank=0, debt=1000, due_at=1000, status=LoanStatus.ACTIVE):
    return AccountRecord(
        user_id="u",
        community_id="g",
        wallet=wallet,
        bank_balance=bank,
        bank_max=5000,
        loan=LoanRecord(
            option_id="starter",
            status=status,
            principal=900,
            debt=debt,
            interest_rate_bps=1000,
            overdue_penalty_bps=1000,
            due_at=due_at,
            taken_at=0,
        ),
    )


def test_normalize_leaves_loan_before_due_date():
    account = _account_with_loan(wallet=5000)
    updated, events = normalize(account, now_ms=1000)
    assert updated is account
    assert events == []


def test_normalize_applies_penalty_and_sweeps_wallet_then_bank():
    account = _account_with_loan(wallet=300, bank=500, debt=1000)
    updated, events = normalize(account, now_ms=1001)

    assert updated.wallet == 0
    assert updated.bank_balance == 0
    assert updated.loan.status is LoanStatus.DELINQUENT
    assert updated.loan.debt == 1100 - 800
    assert updated.loan.defaulted_at == 1001
    assert [(event.type, event.amount) for event in events] == [
        ("loan-delinquent", 100),
        ("loan-collect-wallet", -300),
        ("loan-collect-bank", -500),
    ]
    assert account.wallet == 300


def test_normalize_removes_loan_when_sweep_covers_debt():
    account = _account_with_loan(wallet=2000, bank=10, debt=1000)
    updated, events = normalize(account, now_ms=5000)
    assert updated.loan is None
    assert updated.wallet == 900
    assert updated.bank_balance == 10
    assert events[-1].type == "loan-paid-off"


def test_normalize_clears_non_positive_debt():
    account = _account_with_loan(debt=0)
    updated, events = normalize(account, now_ms=0)
    assert updated.loan is None
    assert [event.type for event in events] == ["loan-cleared"]


def test_normalize_is_stable_for_delinquent_loans():
    account = _account_with_loan(debt=500, status=LoanStatus.DELINQUENT)
    updated, events = normalize(account, now_ms=10**12)
    assert updated is account
    assert events == []


def test_pending_reminders_fire_once():
    config = LoanConfig(near_due_window_hours=12)
    due_at = 100 * MS_PER_DAY
    account = _account_with_loan(due_at=due_at)

    _, reminders = pending_reminders(account, due_at - MS_PER_DAY, config)
    assert reminders == []

    account, reminders = pending_reminders(account, due_at - 3_600_000, config)
    assert [reminder.kind for reminder in reminders] == [ReminderKind.NEAR_DUE]
    _, reminders = pending_reminders(account, due_at - 1_800_000, config)
    assert reminders == []


@pytest.mark.asyncio()
async def test_take_and_pay_loan_round_trip(memory_app):
    ledger = memory_app.ledger
    result = await ledger.take_loan("u1", "g1", "Starter")
    assert result.wallet_balance == 500
    assert result.loan.debt == 550
    assert result.loan.status is LoanStatus.ACTIVE

    await ledger.update_balance("u1", "g1", 50, "work")
    payment = await ledger.pay_loan("u1", "g1")
    assert payment.paid == 550
    assert not payment.has_loan
    assert payment.wallet_balance == 0
    assert not (await ledger.get_loan_state("u1", "g1")).has_loan


@pytest.mark.asyncio()
async def test_take_loan_errors(memory_app):
    ledger = memory_app.ledger
    with pytest.raises(LoanOptionInvalid):
        await ledger.take_loan("u1", "g1", "mortgage")
    await ledger.take_loan("u1", "g1", "starter")
    with pytest.raises(LoanAlreadyActive):
        await ledger.take_loan("u1", "g1", "standard")


@pytest.mark.asyncio()
async def test_pay_loan_partial_draws_wallet_then_bank(memory_app):
    ledger = memory_app.ledger
    await ledger.take_loan("u1", "g1", "starter")
    await memory_app.bank.deposit("u1", "g1", 400)

    payment = await ledger.pay_loan("u1", "g1", 200)
    assert payment.paid == 200
    assert payment.wallet_balance == 0
    assert payment.bank_balance == 300
    assert payment.loan.debt == 350

    history = await ledger.recent_history("u1", "g1", limit=2)
    assert [(entry.type, entry.amount) for entry in history] == [
        ("loan-payment-bank", -100),
        ("loan-payment-wallet", -100),
    ]


@pytest.mark.asyncio()
async def test_pay_loan_errors(memory_app):
    ledger = memory_app.ledger
    with pytest.raises(NoActiveLoan):
        await ledger.pay_loan("u1", "g1")
    await ledger.take_loan("u1", "g1", "starter")
    await ledger.set_balance("u1", "g1", 0)
    with pytest.raises(NoFundsAvailable):
        await ledger.pay_loan("u1", "g1")


@pytest.mark.asyncio()
async def test_overdue_loan_turns_delinquent_on_next_read(memory_app, frozen_clock):
    ledger = memory_app.ledger
    events = []

    async def on_delinquent(payload):
        events.append(payload)

    memory_app.event_bus.subscribe("ledger.loan.delinquent", on_delinquent)
    await ledger.take_loan("u1", "g1", "standard")
    await ledger.set_balance("u1", "g1", 1000)
    frozen_clock.advance(days=3, seconds=1)

    assert await ledger.get_balance("u1", "g1") == 0
    state = await ledger.get_loan_state("u1", "g1")
    assert state.loan.status is LoanStatus.DELINQUENT
    assert state.loan.debt == 6325 - 1000
    assert events == [{"user_id": "u1", "community_id": "g1", "amount": 575}]

    with pytest.raises(TransferBlocked):
        await memory_app.bank.deposit("u1", "g1", 1)


@pytest.mark.asyncio()
async def test_reminders_are_consumed_once(memory_app, frozen_clock):
    ledger = memory_app.ledger
    await ledger.take_loan("u1", "g1", "starter")
    assert await ledger.consume_loan_reminder_events("u1", "g1") == []

    frozen_clock.advance(hours=13)
    reminders = await ledger.consume_loan_reminder_events("u1", "g1")
    assert [reminder.kind for reminder in reminders] == [ReminderKind.NEAR_DUE]
    assert await ledger.consume_loan_reminder_events("u1", "g1") == []

    await ledger.set_balance("u1", "g1", 0)
    frozen_clock.advance(hours=12)
    reminders = await ledger.consume_loan_reminder_events("u1", "g1")
    assert [reminder.kind for reminder in reminders] == [ReminderKind.OVERDUE]
    assert reminders[0].debt == 605
    assert await ledger.consume_loan_reminder_events("u1", "g1") == []


@pytest.mark.asyncio()
async def test_force_clear_fixture(memory_app):
    await memory_app.ledger.take_loan("u1", "g1", "starter")
    await LoanFixtures(memory_app.account_store).force_clear("u1", "g1")
    assert not (await memory_app.ledger.get_loan_state("u1", "g1")).has_loan
