import csv
from decimal import Decimal
from io import StringIO
from typing import List, Tuple

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from casino_wallet.config import TransactionStatus, TransactionType
from casino_wallet.logging_config import get_logger
from casino_wallet.models import models


logger = get_logger(__name__)

# Fee entries record a deduction already netted into the win amount.
_balance_affecting = or_(
    and_(
        models.Transaction.status.in_([TransactionStatus.COMPLETED.value, TransactionStatus.DISPUTED.value]),
        models.Transaction.transaction_type != TransactionType.PLATFORM_FEE.value,
    ),
    and_(
        models.Transaction.status == TransactionStatus.PENDING.value,
        models.Transaction.transaction_type == TransactionType.WITHDRAWAL.value,
    ),
)


def ledger_totals(db: Session) -> dict:
    rows = (
        db.query(models.Transaction.player_id, func.sum(models.Transaction.amount))
        .filter(_balance_affecting)
        .group_by(models.Transaction.player_id)
        .all()
    )
    return {player_id: Decimal(str(total or 0)) for player_id, total in rows}


def generate_balance_audit_csv(db: Session) -> Tuple[str, int]:
    """
    Compare each player's stored balance with the sum of their ledger and
    return CSV text of the mismatches plus the mismatch count.
    """
    totals = ledger_totals(db)
    players = db.query(models.Player).order_by(models.Player.created_at).all()

    mismatches: List[tuple] = []
    for player in players:
        stored = Decimal(str(player.balance))
        expected = totals.get(player.id, Decimal("0"))
        if stored.quantize(Decimal("0.01")) != expected.quantize(Decimal("0.01")):
            mismatches.append((
                player.id,
                player.currency,
                f"{stored:.2f}",
                f"{expected:.2f}",
                f"{stored - expected:.2f}",
            ))

    logger.info("Balance audit complete with %s mismatches", len(mismatches))
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["playerId", "currency", "storedBalance", "ledgerBalance", "difference"])
    for row in mismatches:
        writer.writerow(row)

    return output.getvalue(), len(mismatches)
