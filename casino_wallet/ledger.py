from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from casino_wallet.config import TransactionStatus, TransactionType, allowed_status_transitions
from casino_wallet.errors import TransactionImmutable, TransactionNotFound
from casino_wallet.logging_config import get_logger
from casino_wallet.models import models

logger = get_logger(__name__)


def append(
    db: Session,
    *,
    player_id: str,
    amount: Decimal,
    currency: str,
    transaction_type: TransactionType,
    status: TransactionStatus = TransactionStatus.PENDING,
    external_reference: Optional[str] = None,
    game_round_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> models.Transaction:
    """
    Add a ledger entry to the session and flush it so the id and creation
    timestamp are assigned. Committing is left to the caller.
    """
    entry = models.Transaction(
        player_id=player_id,
        amount=amount,
        currency=currency,
        transaction_type=TransactionType(transaction_type).value,
        status=TransactionStatus(status).value,
        external_reference=external_reference,
        game_round_id=game_round_id,
        meta=metadata or {},
    )
    if entry.status == TransactionStatus.COMPLETED.value:
        entry.completed_at = datetime.now(timezone.utc)
    db.add(entry)
    db.flush()
    db.refresh(entry)
    logger.info(
        "Appended ledger entry id=%s player=%s type=%s amount=%s status=%s",
        entry.id,
        player_id,
        entry.transaction_type,
        entry.amount,
        entry.status,
    )
    return entry


def transition(
    db: Session,
    entry: models.Transaction,
    status: TransactionStatus,
    *,
    external_reference: Optional[str] = None,
    error: Optional[str] = None,
) -> models.Transaction:
    current = TransactionStatus(entry.status)
    target = TransactionStatus(status)
    if target not in allowed_status_transitions[current]:
        raise TransactionImmutable(f"cannot move transaction {entry.id} from {current.value} to {target.value}")
    entry.status = target.value
    if external_reference:
        entry.external_reference = external_reference
    if error:
        entry.error = error
    if target == TransactionStatus.COMPLETED:
        entry.completed_at = datetime.now(timezone.utc)
    db.add(entry)
    db.flush()
    logger.info("Transaction status changed id=%s from=%s to=%s", entry.id, current.value, target.value)
    return entry


def get_entry(db: Session, transaction_id: str) -> models.Transaction:
    entry = db.get(models.Transaction, transaction_id)
    if not entry:
        raise TransactionNotFound(f"transaction {transaction_id} not found")
    return entry


def find_by_external_reference(
    db: Session, external_reference: str, transaction_type: Optional[TransactionType] = None
) -> Optional[models.Transaction]:
    query = db.query(models.Transaction).filter(models.Transaction.external_reference == external_reference)
    if transaction_type:
        query = query.filter(models.Transaction.transaction_type == TransactionType(transaction_type).value)
    return query.order_by(models.Transaction.created_at.desc()).first()


def find_by_game_round(db: Session, game_round_id: str, transaction_type: TransactionType) -> Optional[models.Transaction]:
    return (
        db.query(models.Transaction)
        .filter(models.Transaction.game_round_id == game_round_id)
        .filter(models.Transaction.transaction_type == TransactionType(transaction_type).value)
        .first()
    )


def list_for_player(
    db: Session,
    player_id: str,
    *,
    transaction_type: Optional[TransactionType] = None,
    status: Optional[TransactionStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[models.Transaction]:
    query = db.query(models.Transaction).filter(models.Transaction.player_id == player_id)
    if transaction_type:
        query = query.filter(models.Transaction.transaction_type == TransactionType(transaction_type).value)
    if status:
        query = query.filter(models.Transaction.status == TransactionStatus(status).value)
    return (
        query.order_by(models.Transaction.created_at.desc(), models.Transaction.id)
        .offset(offset)
        .limit(limit)
        .all()
    )
