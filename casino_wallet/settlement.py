"""
Balance-affecting flows: game win settlement, withdrawals and payment
processor events.

Each flow owns its database transaction. Callers pass a session and get back
a result object or one of the :mod:`casino_wallet.errors` exceptions.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from casino_wallet import balances, ledger
from casino_wallet.config import TransactionStatus, TransactionType
from casino_wallet.errors import (
    DuplicateSettlement,
    ExternalPayoutFailed,
    TransactionNotFound,
    UnsupportedCurrency,
)
from casino_wallet.fees import FeeConfigLoader, calculate_fee, positive_money, to_money
from casino_wallet.helpers import validate_currency
from casino_wallet.logging_config import get_logger
from casino_wallet.payout_client import PayoutClient

logger = get_logger(__name__)


@dataclass(frozen=True)
class SettlementResult:
    new_balance: Decimal
    platform_fee: Decimal
    net_amount: Decimal
    transaction_id: str


@dataclass(frozen=True)
class WithdrawalResult:
    new_balance: Decimal
    transaction_id: str
    external_reference: Optional[str]


@dataclass(frozen=True)
class PaymentEventResult:
    transaction_id: str
    status: str
    new_balance: Optional[Decimal]
    duplicate: bool = False


class SettlementService:
    def __init__(self, fee_config_loader: FeeConfigLoader, payout_client: PayoutClient):
        self.fee_config_loader = fee_config_loader
        self.payout_client = payout_client

    def process_game_win(self, db: Session, player_id: str, amount, game_round_id: str) -> SettlementResult:
        """
        Credit a game win net of the platform fee.

        Steps: look up the player, compute the fee, write the fee entry,
        credit the net amount, write the win entry. All writes share one
        commit, so a failure at any step leaves balance and ledger untouched.
        """
        try:
            player = balances.get_player(db, player_id)
            if ledger.find_by_game_round(db, game_round_id, TransactionType.WIN):
                raise DuplicateSettlement(f"game round {game_round_id} already settled")
            breakdown = calculate_fee(amount, self.fee_config_loader.get(db))
            gross = to_money(amount)
            audit = {
                "original_amount": float(gross),
                "platform_fee": float(breakdown.fee_amount),
                "fee_percentage": float(breakdown.fee_percentage),
                "game_round_id": game_round_id,
            }
            if breakdown.fee_amount:
                ledger.append(
                    db,
                    player_id=player.id,
                    amount=-breakdown.fee_amount,
                    currency=player.currency,
                    transaction_type=TransactionType.PLATFORM_FEE,
                    status=TransactionStatus.COMPLETED,
                    game_round_id=game_round_id,
                    metadata=audit,
                )
            new_balance = balances.apply_delta(db, player.id, breakdown.net_amount)
            win = ledger.append(
                db,
                player_id=player.id,
                amount=breakdown.net_amount,
                currency=player.currency,
                transaction_type=TransactionType.WIN,
                status=TransactionStatus.COMPLETED,
                game_round_id=game_round_id,
                metadata=audit,
            )
            win_id = win.id
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise DuplicateSettlement(f"game round {game_round_id} already settled") from exc
        except Exception:
            db.rollback()
            raise

        logger.info(
            "Settled win player=%s round=%s gross=%s fee=%s net=%s balance=%s",
            player_id,
            game_round_id,
            gross,
            breakdown.fee_amount,
            breakdown.net_amount,
            new_balance,
        )
        return SettlementResult(
            new_balance=new_balance,
            platform_fee=breakdown.fee_amount,
            net_amount=breakdown.net_amount,
            transaction_id=win_id,
        )

    async def process_withdrawal(
        self,
        db: Session,
        player_id: str,
        amount,
        currency: str,
        payment_method_id: Optional[str] = None,
    ) -> WithdrawalResult:
        """
        Debit the player, record a pending withdrawal and request the payout.

        If the payout call raises, the debit is reversed, the entry is marked
        failed and :class:`ExternalPayoutFailed` is raised.
        """
        amount = positive_money(amount)
        validate_currency(currency)

        try:
            player = balances.get_player(db, player_id)
            if player.currency != currency:
                raise UnsupportedCurrency(f"player wallet is {player.currency}, got {currency}")
            new_balance = balances.debit_if_sufficient(db, player.id, amount)
            entry = ledger.append(
                db,
                player_id=player.id,
                amount=-amount,
                currency=currency,
                transaction_type=TransactionType.WITHDRAWAL,
                status=TransactionStatus.PENDING,
                metadata={"payment_method_id": payment_method_id},
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info("Withdrawal debited player=%s amount=%s transaction=%s balance=%s", player_id, amount, entry.id, new_balance)

        try:
            payout = await self.payout_client.create_payout(
                player_id=player_id,
                amount=amount,
                currency=currency,
                payment_method_id=payment_method_id,
                reference=entry.id,
            )
        except Exception as exc:
            # The player may have been soft-deleted while the payout was in flight.
            try:
                restored = balances.apply_delta(db, player_id, amount, include_deleted=True)
                ledger.transition(db, entry, TransactionStatus.FAILED, error=str(exc))
                db.commit()
            except Exception:
                db.rollback()
                logger.exception(
                    "Debit reversal failed player=%s transaction=%s amount=%s", player_id, entry.id, amount
                )
                raise
            logger.warning(
                "Payout failed, debit reversed player=%s transaction=%s balance=%s error=%s",
                player_id,
                entry.id,
                restored,
                exc,
            )
            if isinstance(exc, ExternalPayoutFailed):
                raise
            raise ExternalPayoutFailed(str(exc)) from exc

        external_reference = payout.get("id")
        ledger.transition(db, entry, TransactionStatus.COMPLETED, external_reference=external_reference)
        db.commit()
        logger.info("Withdrawal completed player=%s transaction=%s payout=%s", player_id, entry.id, external_reference)
        return WithdrawalResult(new_balance=new_balance, transaction_id=entry.id, external_reference=external_reference)

    def apply_payment_event(
        self,
        db: Session,
        *,
        event: str,
        player_id: str,
        amount,
        currency: str,
        external_reference: str,
    ) -> PaymentEventResult:
        """Apply a payment processor top-up event. Replays of the same reference are no-ops."""
        existing = ledger.find_by_external_reference(db, external_reference, TransactionType.TOPUP)

        if event == "payment.disputed":
            if not existing:
                raise TransactionNotFound(f"no top-up with reference {external_reference}")
            if existing.status == TransactionStatus.DISPUTED.value:
                return PaymentEventResult(existing.id, existing.status, None, duplicate=True)
            ledger.transition(db, existing, TransactionStatus.DISPUTED)
            db.commit()
            return PaymentEventResult(existing.id, existing.status, None)

        if existing and existing.status != TransactionStatus.PENDING.value:
            logger.info("Ignoring replayed payment event=%s reference=%s", event, external_reference)
            return PaymentEventResult(existing.id, existing.status, None, duplicate=True)

        amount = positive_money(amount)
        validate_currency(currency)
        succeeded = event == "payment.succeeded"
        target = TransactionStatus.COMPLETED if succeeded else TransactionStatus.FAILED

        try:
            player = balances.get_player(db, player_id)
            if player.currency != currency:
                raise UnsupportedCurrency(f"player wallet is {player.currency}, got {currency}")
            if existing:
                entry = ledger.transition(db, existing, target)
            else:
                entry = ledger.append(
                    db,
                    player_id=player.id,
                    amount=amount,
                    currency=currency,
                    transaction_type=TransactionType.TOPUP,
                    status=target,
                    external_reference=external_reference,
                    metadata={"event": event},
                )
            new_balance = balances.apply_delta(db, player.id, amount) if succeeded else None
            result = PaymentEventResult(entry.id, entry.status, new_balance)
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info(
            "Applied payment event=%s reference=%s player=%s status=%s",
            event,
            external_reference,
            player_id,
            result.status,
        )
        return result
