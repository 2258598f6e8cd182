import pytest

from guildbank.config import BankConfig
from guildbank.domain.exceptions import (
    BankCapacityExceeded,
    InsufficientBalance,
    InvalidAmount,
    TransferBlocked,
)
from guildbank.storage.base import LoanStatus
from guildbank.testing import FrozenClock, app_fixture


@pytest.mark.asyncio()
async def test_worked_example_from_deposit_to_delinquency():
    clock = FrozenClock()
    app = app_fixture(clock=clock, bank=BankConfig(default_max=100))
    user, guild = "u1", "g1"

    with pytest.raises(InsufficientBalance):
        await app.bank.deposit(user, guild, 50)

    assert await app.ledger.update_balance(user, guild, 1000, "grant") == 1000
    data = await app.bank.deposit(user, guild, 80)
    assert (data.wallet, data.bank_balance) == (920, 80)

    with pytest.raises(BankCapacityExceeded):
        await app.bank.deposit(user, guild, 30)

    upgrade = await app.bank.expand_bank_capacity(user, guild, 1, level=1)
    assert upgrade.increase >= app.config.bank.min_increase
    assert upgrade.new_max == 1100

    loan = await app.ledger.take_loan(user, guild, "starter")
    assert loan.wallet_balance == 1420
    assert loan.loan.debt == 550
    assert loan.loan.status is LoanStatus.ACTIVE

    clock.advance(days=1, seconds=1)
    assert await app.ledger.get_balance(user, guild) == 815
    state = await app.ledger.get_loan_state(user, guild)
    assert not state.has_loan
    assert state.bank_balance == 80

    history = await app.ledger.recent_history(user, guild, limit=3)
    assert [(entry.type, entry.amount) for entry in history] == [
        ("loan-paid-off", 0),
        ("loan-collect-wallet", -605),
        ("loan-delinquent", 55),
    ]


@pytest.mark.asyncio()
async def test_transfer_conserves_funds(memory_app):
    await memory_app.ledger.update_balance("a", "g1", 500, "grant")
    await memory_app.ledger.update_balance("b", "g1", 20, "grant")

    result = await memory_app.bank.transfer("a", "b", "g1", "120")
    assert (result.sender_balance, result.recipient_balance) == (380, 140)
    assert result.sender_balance + result.recipient_balance == 520

    sender_history = await memory_app.ledger.recent_history("a", "g1", limit=1)
    recipient_history = await memory_app.ledger.recent_history("b", "g1", limit=1)
    assert (sender_history[0].type, sender_history[0].amount) == ("transfer-out", -120)
    assert (recipient_history[0].type, recipient_history[0].amount) == ("transfer-in", 120)


@pytest.mark.asyncio()
async def test_transfer_rejections_leave_balances_untouched(memory_app):
    ledger, bank = memory_app.ledger, memory_app.bank
    await ledger.update_balance("a", "g1", 100, "grant")

    with pytest.raises(InsufficientBalance):
        await bank.transfer("a", "b", "g1", 101)
    with pytest.raises(TransferBlocked):
        await bank.transfer("a", "a", "g1", 10)

    await ledger.take_loan("b", "g1", "starter")
    with pytest.raises(TransferBlocked):
        await bank.transfer("a", "b", "g1", 10)
    with pytest.raises(TransferBlocked):
        await bank.transfer("b", "a", "g1", 10)

    assert await ledger.get_balance("a", "g1") == 100
    assert await ledger.get_balance("b", "g1") == 500


@pytest.mark.asyncio()
async def test_transfer_publishes_event(memory_app):
    received = []

    async def listener(payload):
        received.append(payload)

    memory_app.event_bus.subscribe("ledger.transfer.completed", listener)
    await memory_app.ledger.update_balance("a", "g1", 10, "grant")
    await memory_app.bank.transfer("a", "b", "g1", 10, reason="gift")
    assert received == [{"from_user": "a", "to_user": "b", "community_id": "g1", "amount": 10}]


@pytest.mark.asyncio()
async def test_withdraw_moves_bank_to_wallet(memory_app):
    await memory_app.ledger.update_balance("u1", "g1", 300, "grant")
    await memory_app.bank.deposit("u1", "g1", 300)
    data = await memory_app.bank.withdraw("u1", "g1", 120)
    assert (data.wallet, data.bank_balance) == (120, 180)
    assert data.total == 300
    assert data.available_space == data.bank_max - 180

    with pytest.raises(InsufficientBalance) as excinfo:
        await memory_app.bank.withdraw("u1", "g1", 181)
    assert excinfo.value.source == "bank"


@pytest.mark.asyncio()
async def test_expansion_compounds_per_note():
    app = app_fixture(
        bank=BankConfig(default_max=20_000, min_increase=1000, current_max_bps=1000, per_level_bonus=250)
    )
    upgrade = await app.bank.expand_bank_capacity("u1", "g1", 2, level=2)
    # 20000 + (2000 + 500) = 22500, then 22500 + (2250 + 500) = 25250
    assert upgrade.new_max == 25_250
    assert (await app.bank.get_bank_data("u1", "g1")).bank_max == 25_250

    history = await app.ledger.recent_history("u1", "g1", limit=1)
    assert (history[0].type, history[0].amount) == ("bank-expand", 5250)


@pytest.mark.asyncio()
async def test_expansion_quantity_is_bounded(memory_app):
    with pytest.raises(InvalidAmount):
        await memory_app.bank.expand_bank_capacity("u1", "g1", 0, level=1)
    with pytest.raises(InvalidAmount):
        await memory_app.bank.expand_bank_capacity("u1", "g1", 10_000, level=1)
