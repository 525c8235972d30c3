from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

from casino_wallet.config import Currency


class PlayerCreate(BaseModel):
    email: str
    currency: Currency
    balance: Decimal = Field(Decimal("0"), ge=0)

class WinRequest(BaseModel):
    playerId: str
    amount: Decimal
    gameRoundId: str

class WithdrawalRequest(BaseModel):
    amount: Decimal
    currency: str
    paymentMethodId: Optional[str] = None

class SettlementResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    newBalance: float
    platformFee: Optional[float] = None
    netAmount: Optional[float] = None
    transactionId: Optional[str] = None

class ErrorResponse(BaseModel):
    success: bool = False
    error: str

class BalanceResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    balance: float
    currency: str

class FeeConfigUpdate(BaseModel):
    fee_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    is_active: Optional[bool] = None
    min_fee_amount: Optional[Decimal] = Field(None, ge=0)
    max_fee_amount: Optional[Decimal] = Field(None, ge=0)

    @model_validator(mode="after")
    def check_bounds(self):
        if (
            self.min_fee_amount is not None
            and self.max_fee_amount is not None
            and self.min_fee_amount > self.max_fee_amount
        ):
            raise ValueError("min_fee_amount must not exceed max_fee_amount")
        return self

class FeeCalculationRequest(BaseModel):
    amount: Decimal

class PaymentWebhookPayload(BaseModel):
    event: Literal["payment.succeeded", "payment.failed", "payment.disputed"]
    playerId: str
    amount: Decimal
    currency: str
    externalReference: str
