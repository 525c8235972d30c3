class WalletError(Exception):
    """Base class for errors surfaced to API clients as ``{success: false, error}``."""

    status_code = 500
    message_key = "error"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.message_key)
        self.detail = detail


class PlayerNotFound(WalletError):
    status_code = 404
    message_key = "playerNotFound"


class InvalidAmount(WalletError):
    status_code = 400
    message_key = "invalidAmount"


class ConfigurationMissing(WalletError):
    status_code = 500
    message_key = "feeConfigMissing"


class InsufficientBalance(WalletError):
    status_code = 400
    message_key = "insufficientBalance"


class ExternalPayoutFailed(WalletError):
    status_code = 502
    message_key = "payoutFailed"


class UnsupportedCurrency(WalletError):
    status_code = 422
    message_key = "unsupportedCurrency"


class TransactionNotFound(WalletError):
    status_code = 404
    message_key = "transactionNotFound"


class TransactionImmutable(WalletError):
    status_code = 409
    message_key = "transactionImmutable"


class DuplicateSettlement(WalletError):
    status_code = 409
    message_key = "duplicateSettlement"


class IdempotencyConflict(WalletError):
    status_code = 409
    message_key = "idempotencyConflict"
