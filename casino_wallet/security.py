import hmac
import hashlib
import json
import time
from fastapi import HTTPException, Header
from casino_wallet.config import settings


def compute_signature(body: dict, timestamp: str) -> str:
    message = f"{timestamp}:{json.dumps(body, sort_keys=True)}".encode()
    return hmac.new(settings.hmac_secret.encode(), message, hashlib.sha256).hexdigest()


def validate_signature(body: dict, signature: str | None, timestamp: str | None):
    if not signature or not timestamp:
        raise HTTPException(status_code=401, detail="missing signature")
    try:
        sent_at = int(timestamp)
    except ValueError:
        raise HTTPException(status_code=401, detail="invalid timestamp")
    if abs(int(time.time()) - sent_at) > settings.timestamp_skew_seconds:
        raise HTTPException(status_code=401, detail="timestamp skew")
    expected = compute_signature(body, timestamp)
    if not hmac.compare_digest(expected, signature):
        raise HTTPException(status_code=401, detail="invalid signature")


def _check_bearer(authorization: str | None, token: str | None):
    if not token:
        return
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")
    supplied = authorization.split(" ", 1)[1].strip()
    if not hmac.compare_digest(supplied, token):
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_bearer_token(authorization: str | None = Header(None, alias="Authorization")):
    """
    FastAPI dependency to enforce Authorization: Bearer <token> when configured.
    The admin token is accepted too.
    """
    if settings.admin_token and authorization == f"Bearer {settings.admin_token}":
        return
    _check_bearer(authorization, settings.bearer_token)


def require_admin_token(authorization: str | None = Header(None, alias="Authorization")):
    _check_bearer(authorization, settings.admin_token)
