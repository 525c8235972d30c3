from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from casino_wallet import balances, ledger
from casino_wallet.config import TransactionStatus, TransactionType, settings
from casino_wallet.database import SessionLocal, engine, get_db
from casino_wallet.errors import WalletError
from casino_wallet.fees import FeeConfigLoader, calculate_fee, to_money
from casino_wallet.helpers import hash_request, serialize_fee_config, serialize_player, serialize_transaction
from casino_wallet.idempotency import claim_idempotency, complete_idempotency, release_idempotency
from casino_wallet.logging_config import get_logger
from casino_wallet.messages import get_message, resolve_locale
from casino_wallet.models import models
from casino_wallet.payout_client import PayoutClient
from casino_wallet.reconciliation import generate_balance_audit_csv
from casino_wallet.schemas.app_schemas import (
    BalanceResponse,
    FeeCalculationRequest,
    FeeConfigUpdate,
    PaymentWebhookPayload,
    PlayerCreate,
    SettlementResponse,
    WinRequest,
    WithdrawalRequest,
)
from casino_wallet.security import require_admin_token, require_bearer_token, validate_signature
from casino_wallet.settlement import SettlementService


logger = get_logger(__name__)

models.Base.metadata.create_all(bind=engine)
app = FastAPI(title="Casino Wallet")

app.state.fee_config_loader = FeeConfigLoader()
app.state.settlement_service = SettlementService(app.state.fee_config_loader, PayoutClient())


def get_fee_config_loader(request: Request) -> FeeConfigLoader:
    return request.app.state.fee_config_loader


def get_settlement_service(request: Request) -> SettlementService:
    return request.app.state.settlement_service


def get_locale(
    language: str | None = Header(None),
    accept_language: str | None = Header(None),
) -> str:
    return resolve_locale(language, accept_language)


@app.on_event("startup")
async def startup_event():
    if not settings.seed_fee_config:
        return
    db = SessionLocal()
    try:
        app.state.fee_config_loader.ensure_default(db)
    finally:
        db.close()


@app.on_event("shutdown")
async def shutdown_event():
    await app.state.settlement_service.payout_client.aclose()


@app.exception_handler(WalletError)
async def wallet_error_handler(request: Request, exc: WalletError):
    locale = resolve_locale(request.headers.get("language"), request.headers.get("accept-language"))
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Request failed path=%s error=%s detail=%s",
        request.url.path,
        type(exc).__name__,
        exc.detail,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": get_message(exc.message_key, locale)},
    )


@app.post("/players", status_code=201)
async def create_player(
    payload: PlayerCreate,
    _auth=Depends(require_admin_token),
    db: Session = Depends(get_db),
):
    if db.query(models.Player).filter(models.Player.email == payload.email).first():
        raise HTTPException(status_code=409, detail="email already registered")
    opening_balance = to_money(payload.balance)
    player = models.Player(email=payload.email, currency=payload.currency.value, balance=opening_balance)
    db.add(player)
    db.flush()
    if opening_balance:
        ledger.append(
            db,
            player_id=player.id,
            amount=opening_balance,
            currency=player.currency,
            transaction_type=TransactionType.TOPUP,
            status=TransactionStatus.COMPLETED,
            metadata={"reason": "opening_balance"},
        )
    db.commit()
    db.refresh(player)
    logger.info("Registered player id=%s currency=%s", player.id, player.currency)
    return {"success": True, "data": serialize_player(player)}


@app.get("/players/{player_id}")
async def get_player(player_id: str, _auth=Depends(require_bearer_token), db: Session = Depends(get_db)):
    return {"success": True, "data": serialize_player(balances.get_player(db, player_id))}


@app.delete("/players/{player_id}")
async def delete_player(player_id: str, _auth=Depends(require_admin_token), db: Session = Depends(get_db)):
    """
    Soft delete: the player row and ledger stay, the player stops being addressable.
    """
    player = balances.get_player(db, player_id)
    player.is_deleted = True
    db.add(player)
    db.commit()
    logger.warning("Soft-deleted player id=%s", player_id)
    return {"success": True}


@app.get("/players/{player_id}/balance", response_model=BalanceResponse)
async def get_player_balance(
    player_id: str,
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    locale: str = Depends(get_locale),
):
    player = balances.get_player(db, player_id)
    return {
        "success": True,
        "message": get_message("balanceRetrieved", locale),
        "balance": float(player.balance),
        "currency": player.currency,
    }


@app.get("/players/{player_id}/transactions")
async def get_transaction_history(
    player_id: str,
    transaction_type: Optional[TransactionType] = Query(None, alias="type"),
    status: Optional[TransactionStatus] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    locale: str = Depends(get_locale),
):
    balances.get_player(db, player_id)
    records = ledger.list_for_player(db, player_id, transaction_type=transaction_type, status=status, limit=limit, offset=offset)
    return {
        "success": True,
        "message": get_message("transactionsRetrieved", locale),
        "data": [serialize_transaction(r) for r in records],
    }


@app.get("/transactions/{transaction_id}")
async def get_transaction_detail(transaction_id: str, _auth=Depends(require_bearer_token), db: Session = Depends(get_db)):
    return {"success": True, "data": serialize_transaction(ledger.get_entry(db, transaction_id))}


@app.post("/games/win", response_model=SettlementResponse)
async def settle_game_win(
    payload: WinRequest,
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    service: SettlementService = Depends(get_settlement_service),
    locale: str = Depends(get_locale),
    idempotency_key: str | None = Header(None),
):
    body_hash = hash_request(payload.model_dump())
    if idempotency_key:
        existing = claim_idempotency(db, idempotency_key, body_hash)
        if existing:
            return existing
    try:
        result = service.process_game_win(db, payload.playerId, payload.amount, payload.gameRoundId)
    except Exception:
        if idempotency_key:
            release_idempotency(db, idempotency_key)
        raise
    response = SettlementResponse(
        message=get_message("winSettled", locale),
        newBalance=float(result.new_balance),
        platformFee=float(result.platform_fee),
        netAmount=float(result.net_amount),
        transactionId=result.transaction_id,
    ).model_dump()
    if idempotency_key:
        complete_idempotency(db, idempotency_key, response)
    return response


@app.post("/players/{player_id}/withdrawals", response_model=SettlementResponse)
async def process_withdrawal(
    player_id: str,
    payload: WithdrawalRequest,
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    service: SettlementService = Depends(get_settlement_service),
    locale: str = Depends(get_locale),
    idempotency_key: str | None = Header(None),
):
    body_hash = hash_request({"playerId": player_id, **payload.model_dump()})
    if idempotency_key:
        existing = claim_idempotency(db, idempotency_key, body_hash)
        if existing:
            return existing
    try:
        result = await service.process_withdrawal(
            db, player_id, payload.amount, payload.currency, payload.paymentMethodId
        )
    except Exception:
        if idempotency_key:
            release_idempotency(db, idempotency_key)
        raise
    response = SettlementResponse(
        message=get_message("withdrawalCompleted", locale),
        newBalance=float(result.new_balance),
        transactionId=result.transaction_id,
    ).model_dump()
    if idempotency_key:
        complete_idempotency(db, idempotency_key, response)
    return response


@app.get("/platform-fee/config")
async def get_platform_fee_config(
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    loader: FeeConfigLoader = Depends(get_fee_config_loader),
):
    config = loader.get(db)
    return {"success": True, "data": serialize_fee_config(config) if config else None}


@app.put("/platform-fee/config")
async def update_platform_fee_config(
    payload: FeeConfigUpdate,
    _auth=Depends(require_admin_token),
    db: Session = Depends(get_db),
    loader: FeeConfigLoader = Depends(get_fee_config_loader),
    locale: str = Depends(get_locale),
):
    record = loader.update(db, payload.model_dump(exclude_none=True))
    return {
        "success": True,
        "message": get_message("feeConfigUpdated", locale),
        "data": serialize_fee_config(record),
    }


@app.post("/platform-fee/calculate")
async def calculate_platform_fee(
    payload: FeeCalculationRequest,
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    loader: FeeConfigLoader = Depends(get_fee_config_loader),
):
    breakdown = calculate_fee(payload.amount, loader.get(db))
    return {
        "success": True,
        "data": {
            "original_amount": float(to_money(payload.amount)),
            "fee_percentage": float(breakdown.fee_percentage),
            "fee_amount": float(breakdown.fee_amount),
            "net_amount": float(breakdown.net_amount),
        },
    }


@app.post("/webhooks/payments")
async def receive_payment_webhook(
    payload: PaymentWebhookPayload,
    request: Request,
    db: Session = Depends(get_db),
    service: SettlementService = Depends(get_settlement_service),
    x_signature: str | None = Header(None),
    x_timestamp: str | None = Header(None),
):
    validate_signature(await request.json(), x_signature, x_timestamp)
    logger.info(
        "Received payment webhook event=%s reference=%s player=%s",
        payload.event,
        payload.externalReference,
        payload.playerId,
    )
    result = service.apply_payment_event(
        db,
        event=payload.event,
        player_id=payload.playerId,
        amount=payload.amount,
        currency=payload.currency,
        external_reference=payload.externalReference,
    )
    return {
        "status": "accepted",
        "transactionId": result.transaction_id,
        "transactionStatus": result.status,
        "duplicate": result.duplicate,
    }


@app.get("/reconciliation_data")
async def download_reconciliation_csv(_auth=Depends(require_admin_token), db: Session = Depends(get_db)):
    csv_text, mismatch_count = generate_balance_audit_csv(db)
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={
            "Content-Disposition": 'attachment; filename="reconciliation.csv"',
            "X-Mismatch-Count": str(mismatch_count),
        },
    )


@app.get("/swagger", include_in_schema=False)
async def swagger_ui():
    return get_swagger_ui_html(openapi_url=str(app.openapi_url), title="Casino Wallet - Swagger UI")

@app.get("/health")
async def health():
    return {"status": "ok"}
