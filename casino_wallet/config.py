from decimal import Decimal
from enum import Enum
from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    db_url: str = "sqlite:///./wallet.db"
    payout_base_url: AnyHttpUrl = "http://payment-processor:8001"
    payout_timeout_seconds: float = 10.0
    bearer_token: Optional[str] = None
    admin_token: Optional[str] = None
    hmac_secret: str = "change_secret"
    timestamp_skew_seconds: int = 300
    max_retries: int = 0
    retry_backoff_seconds: float = 1.0
    rate_limit_per_minute: int = 60
    supported_currencies: list[str] = ["USD", "INR", "GBP"]
    default_fee_percentage: Decimal = Decimal("2")
    default_min_fee_amount: Decimal = Decimal("0")
    default_max_fee_amount: Decimal = Decimal("1000")
    seed_fee_config: bool = True
    default_locale: str = "en"
    log_level: str = "INFO"

settings = Settings()

class Currency(str, Enum):
    USD = "USD"
    INR = "INR"
    GBP = "GBP"

class TransactionType(str, Enum):
    TOPUP = "topup"
    WITHDRAWAL = "withdrawal"
    WAGER = "wager"
    WIN = "win"
    PLATFORM_FEE = "platform_fee"

class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"

# status -> statuses it may move to; completed entries only ever become disputed
allowed_status_transitions = {
    TransactionStatus.PENDING: {
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
    },
    TransactionStatus.COMPLETED: {TransactionStatus.DISPUTED},
    TransactionStatus.FAILED: set(),
    TransactionStatus.CANCELLED: set(),
    TransactionStatus.DISPUTED: set(),
}
