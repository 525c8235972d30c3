from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy.orm import Session

from casino_wallet.config import settings
from casino_wallet.errors import ConfigurationMissing, InvalidAmount
from casino_wallet.logging_config import get_logger
from casino_wallet.models import models

logger = get_logger(__name__)

CENT = Decimal("0.01")
FEE_CONFIG_ID = 1


@dataclass(frozen=True)
class FeeBreakdown:
    fee_amount: Decimal
    net_amount: Decimal
    fee_percentage: Decimal


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def positive_money(value) -> Decimal:
    """Round to cents and refuse anything that is not at least one cent."""
    amount = to_money(value) if value is not None else None
    if amount is None or amount <= 0:
        raise InvalidAmount(f"amount must be at least 0.01, got {value}")
    return amount


def calculate_fee(gross_amount, config: Optional[models.PlatformFeeConfig]) -> FeeBreakdown:
    """Split a gross win into platform fee and net amount.

    The fee is ``gross * fee_percentage / 100`` clamped to
    ``[min_fee_amount, max_fee_amount]`` and rounded to cents. An inactive
    configuration charges nothing.
    """
    gross = positive_money(gross_amount)
    if config is None:
        raise ConfigurationMissing("no platform fee configuration loaded")

    percentage = Decimal(str(config.fee_percentage))
    if not config.is_active:
        return FeeBreakdown(fee_amount=Decimal("0.00"), net_amount=gross, fee_percentage=percentage)

    fee = gross * percentage / Decimal("100")
    fee = max(Decimal(str(config.min_fee_amount)), min(Decimal(str(config.max_fee_amount)), fee))
    fee = fee.quantize(CENT, rounding=ROUND_HALF_UP)
    return FeeBreakdown(fee_amount=fee, net_amount=gross - fee, fee_percentage=percentage)


class FeeConfigLoader:
    """
    Holds the platform fee configuration for one application instance.

    The record is read once and cached until :meth:`invalidate` is called,
    which :meth:`update` does after every write.
    """

    def __init__(self) -> None:
        self._cached: Optional[models.PlatformFeeConfig] = None

    def invalidate(self) -> None:
        self._cached = None

    def get(self, db: Session) -> Optional[models.PlatformFeeConfig]:
        if self._cached is None:
            record = db.get(models.PlatformFeeConfig, FEE_CONFIG_ID)
            if record is not None:
                db.expunge(record)
            self._cached = record
        return self._cached

    def ensure_default(self, db: Session) -> models.PlatformFeeConfig:
        record = db.get(models.PlatformFeeConfig, FEE_CONFIG_ID)
        if record is None:
            record = models.PlatformFeeConfig(
                id=FEE_CONFIG_ID,
                fee_percentage=settings.default_fee_percentage,
                is_active=True,
                min_fee_amount=settings.default_min_fee_amount,
                max_fee_amount=settings.default_max_fee_amount,
            )
            db.add(record)
            db.commit()
            db.refresh(record)
            logger.info("Seeded default platform fee config fee_percentage=%s", record.fee_percentage)
        self.invalidate()
        return record

    def update(self, db: Session, changes: dict) -> models.PlatformFeeConfig:
        record = db.get(models.PlatformFeeConfig, FEE_CONFIG_ID)
        if record is None:
            record = models.PlatformFeeConfig(
                id=FEE_CONFIG_ID,
                fee_percentage=settings.default_fee_percentage,
                is_active=True,
                min_fee_amount=settings.default_min_fee_amount,
                max_fee_amount=settings.default_max_fee_amount,
            )
        for field, value in changes.items():
            setattr(record, field, value)
        if Decimal(str(record.min_fee_amount)) > Decimal(str(record.max_fee_amount)):
            db.rollback()
            raise InvalidAmount("min_fee_amount must not exceed max_fee_amount")
        db.add(record)
        db.commit()
        db.refresh(record)
        self.invalidate()
        logger.info(
            "Platform fee config updated fee_percentage=%s is_active=%s min=%s max=%s",
            record.fee_percentage,
            record.is_active,
            record.min_fee_amount,
            record.max_fee_amount,
        )
        return record
