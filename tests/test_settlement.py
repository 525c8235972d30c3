import asyncio
from decimal import Decimal

import pytest

from casino_wallet import balances, ledger
from casino_wallet.config import TransactionStatus, TransactionType
from casino_wallet.errors import (
    ConfigurationMissing,
    DuplicateSettlement,
    ExternalPayoutFailed,
    InsufficientBalance,
    InvalidAmount,
    PlayerNotFound,
    TransactionImmutable,
    UnsupportedCurrency,
)
from casino_wallet.fees import FeeConfigLoader
from casino_wallet.settlement import SettlementService


class FakePayoutClient:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.on_call = None
        self.calls = []

    async def create_payout(self, **kwargs):
        self.calls.append(kwargs)
        if self.on_call:
            self.on_call(kwargs)
        if self.error:
            raise self.error
        return {"id": "po_123", "status": "paid"}


@pytest.fixture
def service(app_module, fee_config):
    main, _, _ = app_module
    return SettlementService(main.app.state.fee_config_loader, FakePayoutClient())


def _entries(db, player_id, transaction_type=None):
    db.expire_all()
    return ledger.list_for_player(db, player_id, transaction_type=transaction_type)


def test_win_credits_net_and_records_fee(db, service, make_player):
    player_id = make_player(balance="10")

    result = service.process_game_win(db, player_id, Decimal("100"), "round-1")

    assert result.platform_fee == Decimal("2.00")
    assert result.net_amount == Decimal("98.00")
    assert result.new_balance == Decimal("108.00")
    assert balances.get_balance(db, player_id) == Decimal("108.00")

    win = ledger.get_entry(db, result.transaction_id)
    assert win.transaction_type == TransactionType.WIN.value
    assert win.status == TransactionStatus.COMPLETED.value
    assert win.amount == Decimal("98.00")
    assert win.meta == {
        "original_amount": 100.0,
        "platform_fee": 2.0,
        "fee_percentage": 2.0,
        "game_round_id": "round-1",
    }
    fees = _entries(db, player_id, TransactionType.PLATFORM_FEE)
    assert len(fees) == 1
    assert fees[0].amount == Decimal("-2.00")


def test_win_with_inactive_fee_writes_no_fee_entry(db, service, make_player, fee_config):
    fee_config(is_active=False)
    player_id = make_player()

    result = service.process_game_win(db, player_id, Decimal("50"), "round-2")

    assert result.platform_fee == 0
    assert result.net_amount == Decimal("50.00")
    assert _entries(db, player_id, TransactionType.PLATFORM_FEE) == []


def test_win_for_unknown_player(db, service):
    with pytest.raises(PlayerNotFound):
        service.process_game_win(db, "missing", Decimal("10"), "round-3")


def test_win_for_soft_deleted_player(db, service, make_player):
    player_id = make_player()
    player = balances.get_player(db, player_id)
    player.is_deleted = True
    db.commit()
    with pytest.raises(PlayerNotFound):
        service.process_game_win(db, player_id, Decimal("10"), "round-4")


def test_win_rejects_non_positive_amount(db, service, make_player):
    player_id = make_player(balance="5")
    with pytest.raises(InvalidAmount):
        service.process_game_win(db, player_id, Decimal("0"), "round-5")
    assert balances.get_balance(db, player_id) == Decimal("5.00")


def test_win_below_one_cent_does_not_use_up_the_round(db, service, make_player):
    player_id = make_player(balance="10")
    with pytest.raises(InvalidAmount):
        service.process_game_win(db, player_id, Decimal("0.004"), "round-sub")
    assert _entries(db, player_id) == []

    result = service.process_game_win(db, player_id, Decimal("1"), "round-sub")
    assert result.new_balance == Decimal("10.98")


def test_win_without_fee_config(db, app_module, make_player):
    player_id = make_player()
    service = SettlementService(FeeConfigLoader(), FakePayoutClient())
    with pytest.raises(ConfigurationMissing):
        service.process_game_win(db, player_id, Decimal("10"), "round-6")


def test_same_round_settles_once(db, service, make_player):
    player_id = make_player()
    service.process_game_win(db, player_id, Decimal("100"), "round-7")

    with pytest.raises(DuplicateSettlement):
        service.process_game_win(db, player_id, Decimal("100"), "round-7")
    assert balances.get_balance(db, player_id) == Decimal("98.00")


def test_failed_win_ledger_write_rolls_back_balance(db, service, make_player, monkeypatch):
    player_id = make_player(balance="20")
    original_append = ledger.append

    def failing_append(session, **kwargs):
        if kwargs["transaction_type"] == TransactionType.WIN:
            raise RuntimeError("ledger unavailable")
        return original_append(session, **kwargs)

    monkeypatch.setattr("casino_wallet.settlement.ledger.append", failing_append)

    with pytest.raises(RuntimeError):
        service.process_game_win(db, player_id, Decimal("100"), "round-8")

    assert balances.get_balance(db, player_id) == Decimal("20.00")
    assert _entries(db, player_id) == []


def test_withdrawal_completes(db, service, make_player):
    player_id = make_player(balance="100")

    result = asyncio.run(service.process_withdrawal(db, player_id, Decimal("40"), "USD", "pm_1"))

    assert result.new_balance == Decimal("60.00")
    assert result.external_reference == "po_123"
    entry = ledger.get_entry(db, result.transaction_id)
    assert entry.status == TransactionStatus.COMPLETED.value
    assert entry.amount == Decimal("-40.00")
    assert entry.external_reference == "po_123"
    assert service.payout_client.calls[0]["reference"] == result.transaction_id
    assert service.payout_client.calls[0]["payment_method_id"] == "pm_1"


def test_withdrawal_over_balance_rejected(db, service, make_player):
    player_id = make_player(balance="30")

    with pytest.raises(InsufficientBalance):
        asyncio.run(service.process_withdrawal(db, player_id, Decimal("30.01"), "USD", "pm_1"))

    assert balances.get_balance(db, player_id) == Decimal("30.00")
    assert _entries(db, player_id) == []
    assert service.payout_client.calls == []


def test_withdrawal_payout_failure_restores_balance(db, service, make_player):
    player_id = make_player(balance="100")
    service.payout_client.error = ExternalPayoutFailed("processor down")

    with pytest.raises(ExternalPayoutFailed):
        asyncio.run(service.process_withdrawal(db, player_id, Decimal("75"), "USD", "pm_1"))

    assert balances.get_balance(db, player_id) == Decimal("100.00")
    withdrawals = _entries(db, player_id, TransactionType.WITHDRAWAL)
    assert len(withdrawals) == 1
    assert withdrawals[0].status == TransactionStatus.FAILED.value
    assert withdrawals[0].error == "processor down"


def test_withdrawal_wraps_unexpected_payout_errors(db, service, make_player):
    player_id = make_player(balance="10")
    service.payout_client.error = ConnectionError("reset by peer")

    with pytest.raises(ExternalPayoutFailed):
        asyncio.run(service.process_withdrawal(db, player_id, Decimal("10"), "USD"))

    assert balances.get_balance(db, player_id) == Decimal("10.00")


def test_withdrawal_reversal_reaches_player_deleted_during_payout(app_module, db, service, make_player):
    _, database, models = app_module
    player_id = make_player(balance="100")

    def delete_player(_):
        with database.SessionLocal() as session:
            session.get(models.Player, player_id).is_deleted = True
            session.commit()

    service.payout_client.on_call = delete_player
    service.payout_client.error = ExternalPayoutFailed("processor down")

    with pytest.raises(ExternalPayoutFailed):
        asyncio.run(service.process_withdrawal(db, player_id, Decimal("75"), "USD", "pm_1"))

    db.expire_all()
    player = db.get(models.Player, player_id)
    assert player.is_deleted is True
    assert player.balance == Decimal("100.00")
    withdrawals = _entries(db, player_id, TransactionType.WITHDRAWAL)
    assert [w.status for w in withdrawals] == [TransactionStatus.FAILED.value]


def test_withdrawal_below_one_cent_rejected(db, service, make_player):
    player_id = make_player(balance="10")
    with pytest.raises(InvalidAmount):
        asyncio.run(service.process_withdrawal(db, player_id, Decimal("0.004"), "USD", "pm_1"))
    assert balances.get_balance(db, player_id) == Decimal("10.00")
    assert _entries(db, player_id) == []
    assert service.payout_client.calls == []


def test_withdrawal_currency_must_match_wallet(db, service, make_player):
    player_id = make_player(balance="10", currency="GBP")
    with pytest.raises(UnsupportedCurrency):
        asyncio.run(service.process_withdrawal(db, player_id, Decimal("5"), "USD"))
    with pytest.raises(UnsupportedCurrency):
        asyncio.run(service.process_withdrawal(db, player_id, Decimal("5"), "EUR"))


def test_apply_delta_is_not_a_lost_update(app_module, make_player):
    _, database, _ = app_module
    player_id = make_player(balance="0")
    first = database.SessionLocal()
    second = database.SessionLocal()
    try:
        # Both sessions read the same starting balance before writing.
        assert balances.get_balance(first, player_id) == 0
        assert balances.get_balance(second, player_id) == 0
        balances.apply_delta(first, player_id, Decimal("5"))
        first.commit()
        balances.apply_delta(second, player_id, Decimal("7"))
        second.commit()
    finally:
        first.close()
        second.close()

    with database.SessionLocal() as session:
        player = balances.get_player(session, player_id)
        assert player.balance == Decimal("12.00")
        assert player.version == 2


def test_apply_delta_allows_negative_balance(db, make_player):
    player_id = make_player(balance="1")
    assert balances.apply_delta(db, player_id, Decimal("-3")) == Decimal("-2.00")


def test_apply_delta_unknown_player(db):
    with pytest.raises(PlayerNotFound):
        balances.apply_delta(db, "missing", Decimal("1"))


def test_completed_entry_amount_is_frozen(db, make_player):
    player_id = make_player()
    entry = ledger.append(
        db,
        player_id=player_id,
        amount=Decimal("5"),
        currency="USD",
        transaction_type=TransactionType.WIN,
        status=TransactionStatus.COMPLETED,
    )
    db.commit()
    db.refresh(entry)

    entry.amount = Decimal("500")
    with pytest.raises(TransactionImmutable):
        db.flush()
    db.rollback()


def test_pending_entry_can_complete_but_not_reopen(db, make_player):
    player_id = make_player()
    entry = ledger.append(
        db,
        player_id=player_id,
        amount=Decimal("-5"),
        currency="USD",
        transaction_type=TransactionType.WITHDRAWAL,
    )
    assert entry.status == TransactionStatus.PENDING.value
    assert entry.id and entry.created_at is not None

    ledger.transition(db, entry, TransactionStatus.COMPLETED, external_reference="po_9")
    db.commit()
    assert entry.completed_at is not None

    with pytest.raises(TransactionImmutable):
        ledger.transition(db, entry, TransactionStatus.PENDING)


def test_ledger_entries_cannot_be_deleted(db, make_player):
    player_id = make_player()
    entry = ledger.append(
        db,
        player_id=player_id,
        amount=Decimal("1"),
        currency="USD",
        transaction_type=TransactionType.TOPUP,
        status=TransactionStatus.COMPLETED,
    )
    db.commit()
    db.delete(entry)
    with pytest.raises(TransactionImmutable):
        db.flush()
    db.rollback()


def test_payment_event_credits_topup_once(db, service, make_player):
    player_id = make_player()
    kwargs = dict(
        event="payment.succeeded",
        player_id=player_id,
        amount=Decimal("25"),
        currency="USD",
        external_reference="pi_1",
    )

    first = service.apply_payment_event(db, **kwargs)
    second = service.apply_payment_event(db, **kwargs)

    assert first.new_balance == Decimal("25.00")
    assert first.status == TransactionStatus.COMPLETED.value
    assert second.duplicate is True
    assert second.transaction_id == first.transaction_id
    assert balances.get_balance(db, player_id) == Decimal("25.00")


def test_payment_event_failure_and_dispute(db, service, make_player):
    player_id = make_player()
    failed = service.apply_payment_event(
        db, event="payment.failed", player_id=player_id, amount=Decimal("5"), currency="USD", external_reference="pi_2"
    )
    assert failed.status == TransactionStatus.FAILED.value
    assert balances.get_balance(db, player_id) == 0

    service.apply_payment_event(
        db, event="payment.succeeded", player_id=player_id, amount=Decimal("5"), currency="USD", external_reference="pi_3"
    )
    disputed = service.apply_payment_event(
        db, event="payment.disputed", player_id=player_id, amount=Decimal("5"), currency="USD", external_reference="pi_3"
    )
    assert disputed.status == TransactionStatus.DISPUTED.value


def test_payment_event_currency_must_match_wallet(db, service, make_player):
    player_id = make_player(currency="USD")

    with pytest.raises(UnsupportedCurrency):
        service.apply_payment_event(
            db, event="payment.succeeded", player_id=player_id, amount=Decimal("500"), currency="INR", external_reference="pi_inr"
        )

    assert balances.get_balance(db, player_id) == 0
    assert _entries(db, player_id) == []
