import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, Numeric, String, UniqueConstraint, event, inspect
from sqlalchemy.sql import func

from casino_wallet.config import TransactionStatus
from casino_wallet.database import Base
from casino_wallet.errors import TransactionImmutable


def _new_id() -> str:
    return str(uuid.uuid4())


class Player(Base):
    __tablename__ = "players"
    id = Column(String, primary_key=True, default=_new_id)
    email = Column(String, unique=True, index=True, nullable=False)
    balance = Column(Numeric(18, 2), nullable=False, default=0)
    currency = Column(String, nullable=False)
    version = Column(Integer, nullable=False, default=0)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

class Transaction(Base):
    __tablename__ = "transactions"
    id = Column(String, primary_key=True, default=_new_id)
    player_id = Column(String, ForeignKey("players.id"), index=True, nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)  # negative for debits and fees
    currency = Column(String, nullable=False)
    transaction_type = Column(String, index=True, nullable=False)
    status = Column(String, nullable=False, default=TransactionStatus.PENDING.value)
    external_reference = Column(String, index=True, nullable=True)
    game_round_id = Column(String, nullable=True)
    error = Column(String, nullable=True)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (UniqueConstraint('game_round_id', 'transaction_type', name='uq_round_type'),)

class PlatformFeeConfig(Base):
    __tablename__ = "platform_fee_config"
    id = Column(Integer, primary_key=True)
    fee_percentage = Column(Numeric(5, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    min_fee_amount = Column(Numeric(18, 2), nullable=False, default=0)
    max_fee_amount = Column(Numeric(18, 2), nullable=False, default=1000)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

class IdempotencyKey(Base):
    __tablename__ = "idempotency_keys"
    id = Column(Integer, primary_key=True)
    key = Column(String, unique=True, index=True, nullable=False)
    request_hash = Column(String, nullable=False)
    response_body = Column(JSON(none_as_null=True), nullable=True)  # null while the request is in flight
    created_at = Column(DateTime(timezone=True), server_default=func.now())


@event.listens_for(Transaction, "before_update")
def _freeze_completed_amount(mapper, connection, target):
    state = inspect(target)
    amount_history = state.attrs.amount.history
    if not amount_history.has_changes():
        return
    status_history = state.attrs.status.history
    previous_status = status_history.deleted[0] if status_history.deleted else target.status
    if previous_status in (TransactionStatus.COMPLETED.value, TransactionStatus.DISPUTED.value):
        raise TransactionImmutable(f"transaction {target.id} is {previous_status}; amount is frozen")


@event.listens_for(Transaction, "before_delete")
def _refuse_ledger_delete(mapper, connection, target):
    raise TransactionImmutable(f"transaction {target.id} cannot be deleted")
