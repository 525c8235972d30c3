import hashlib
import json

from casino_wallet.config import settings
from casino_wallet.errors import UnsupportedCurrency
from casino_wallet.models import models


def hash_request(body: dict) -> str:
    return hashlib.sha256(json.dumps(body, sort_keys=True, default=str).encode()).hexdigest()


def validate_currency(currency: str):
    if currency not in settings.supported_currencies:
        raise UnsupportedCurrency(f"unsupported currency {currency}")


def serialize_transaction(record: models.Transaction) -> dict:
    return {
        "id": record.id,
        "playerId": record.player_id,
        "amount": float(record.amount),
        "currency": record.currency,
        "transactionType": record.transaction_type,
        "status": record.status,
        "externalReference": record.external_reference,
        "gameRoundId": record.game_round_id,
        "error": record.error,
        "metadata": record.meta or {},
        "createdAt": record.created_at.isoformat() if record.created_at else None,
        "completedAt": record.completed_at.isoformat() if record.completed_at else None,
    }


def serialize_player(record: models.Player) -> dict:
    return {
        "id": record.id,
        "email": record.email,
        "balance": float(record.balance),
        "currency": record.currency,
        "isDeleted": record.is_deleted,
        "createdAt": record.created_at.isoformat() if record.created_at else None,
    }


def serialize_fee_config(record: models.PlatformFeeConfig) -> dict:
    return {
        "fee_percentage": float(record.fee_percentage),
        "is_active": record.is_active,
        "min_fee_amount": float(record.min_fee_amount),
        "max_fee_amount": float(record.max_fee_amount),
        "updated_at": record.updated_at.isoformat() if record.updated_at else None,
    }
