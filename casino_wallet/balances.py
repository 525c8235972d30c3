from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from casino_wallet.errors import InsufficientBalance, PlayerNotFound
from casino_wallet.models import models


def get_player(db: Session, player_id: str) -> models.Player:
    player = (
        db.query(models.Player)
        .filter(models.Player.id == player_id)
        .filter(models.Player.is_deleted.is_(False))
        .first()
    )
    if not player:
        raise PlayerNotFound(f"player {player_id} not found")
    return player


def get_balance(db: Session, player_id: str) -> Decimal:
    balance = db.execute(
        select(models.Player.balance)
        .where(models.Player.id == player_id)
        .where(models.Player.is_deleted.is_(False))
    ).scalar_one_or_none()
    if balance is None:
        raise PlayerNotFound(f"player {player_id} not found")
    return balance


def apply_delta(db: Session, player_id: str, delta: Decimal, include_deleted: bool = False) -> Decimal:
    """
    Add ``delta`` to the stored balance in one UPDATE statement and return
    the new balance. Does not commit and does not refuse negative results.

    ``include_deleted`` lets reversals reach soft-deleted players.
    """
    stmt = update(models.Player).where(models.Player.id == player_id)
    if not include_deleted:
        stmt = stmt.where(models.Player.is_deleted.is_(False))
    result = db.execute(
        stmt.values(balance=models.Player.balance + delta, version=models.Player.version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise PlayerNotFound(f"player {player_id} not found")
    return _reload_balance(db, player_id)


def debit_if_sufficient(db: Session, player_id: str, amount: Decimal) -> Decimal:
    """
    Subtract ``amount`` only if the stored balance covers it. The balance
    check and the write are the same statement.
    """
    result = db.execute(
        update(models.Player)
        .where(models.Player.id == player_id)
        .where(models.Player.is_deleted.is_(False))
        .where(models.Player.balance >= amount)
        .values(balance=models.Player.balance - amount, version=models.Player.version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        current = get_balance(db, player_id)
        raise InsufficientBalance(f"balance {current} is below requested {amount}")
    return _reload_balance(db, player_id)


def _reload_balance(db: Session, player_id: str) -> Decimal:
    player = db.get(models.Player, player_id)
    db.refresh(player)
    return player.balance
