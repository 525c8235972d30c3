"""
``Idempotency-Key`` handling for money-moving requests.

A key is claimed (row inserted with no response) before the request does any
work, so a concurrent duplicate sees the claim and is refused instead of
settling twice. The response is written back on success; on failure the claim
is released so the client can retry with the same key.
"""
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from casino_wallet.errors import IdempotencyConflict
from casino_wallet.logging_config import get_logger
from casino_wallet.models import models

logger = get_logger(__name__)


def _replay(db: Session, key: str, body_hash: str) -> Optional[dict]:
    record = db.query(models.IdempotencyKey).filter_by(key=key).first()
    if record is None:
        return None
    if record.request_hash != body_hash:
        raise IdempotencyConflict(f"idempotency key {key} reused with a different body")
    if record.response_body is None:
        raise IdempotencyConflict(f"request with idempotency key {key} is still in progress")
    return record.response_body


def claim_idempotency(db: Session, key: str, body_hash: str) -> Optional[dict]:
    """Return the stored response for a replay, or claim ``key`` and return None."""
    stored = _replay(db, key, body_hash)
    if stored is not None:
        logger.info("Replaying stored response idempotency_key=%s", key)
        return stored
    db.add(models.IdempotencyKey(key=key, request_hash=body_hash))
    try:
        db.commit()
    except IntegrityError:
        # lost the race to a concurrent request with the same key
        db.rollback()
        stored = _replay(db, key, body_hash)
        if stored is None:
            raise IdempotencyConflict(f"request with idempotency key {key} is still in progress")
        return stored
    return None


def complete_idempotency(db: Session, key: str, response_body: dict) -> dict:
    record = db.query(models.IdempotencyKey).filter_by(key=key).one()
    record.response_body = response_body
    db.commit()
    return response_body


def release_idempotency(db: Session, key: str) -> None:
    record = db.query(models.IdempotencyKey).filter_by(key=key).first()
    if record is not None and record.response_body is None:
        db.delete(record)
        db.commit()
