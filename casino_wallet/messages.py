from casino_wallet.config import settings

FALLBACK_LOCALE = "en"

MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "error": "An unexpected error occurred. Please try again later",
        "playerNotFound": "Player not found",
        "invalidAmount": "Invalid amount",
        "feeConfigMissing": "Platform fee configuration not found",
        "insufficientBalance": "Insufficient balance",
        "payoutFailed": "Withdrawal payout failed",
        "unsupportedCurrency": "Unsupported currency",
        "transactionNotFound": "Transaction not found",
        "transactionImmutable": "Completed transactions cannot be modified",
        "duplicateSettlement": "This game round has already been settled",
        "idempotencyConflict": "Idempotency key was already used with a different request",
        "winSettled": "Win settled successfully",
        "withdrawalCompleted": "Withdrawal processed successfully",
        "balanceRetrieved": "Balance retrieved successfully",
        "transactionsRetrieved": "Transactions retrieved successfully",
        "feeConfigUpdated": "Platform fee configuration updated",
    },
    "pt": {
        "error": "Ocorreu um erro inesperado. Tente novamente mais tarde",
        "playerNotFound": "Jogador não encontrado",
        "invalidAmount": "Valor inválido",
        "feeConfigMissing": "Configuração da taxa da plataforma não encontrada",
        "insufficientBalance": "Saldo insuficiente",
        "payoutFailed": "Falha no pagamento do saque",
        "unsupportedCurrency": "Moeda não suportada",
        "transactionNotFound": "Transação não encontrada",
        "duplicateSettlement": "Esta rodada já foi liquidada",
        "winSettled": "Prêmio creditado com sucesso",
        "withdrawalCompleted": "Saque processado com sucesso",
        "balanceRetrieved": "Saldo recuperado com sucesso",
    },
    "es": {
        "error": "Ocurrió un error inesperado. Inténtelo de nuevo más tarde",
        "playerNotFound": "Jugador no encontrado",
        "invalidAmount": "Importe no válido",
        "feeConfigMissing": "No se encontró la configuración de la comisión",
        "insufficientBalance": "Saldo insuficiente",
        "payoutFailed": "El pago del retiro falló",
        "unsupportedCurrency": "Moneda no admitida",
        "transactionNotFound": "Transacción no encontrada",
        "winSettled": "Premio acreditado correctamente",
        "withdrawalCompleted": "Retiro procesado correctamente",
    },
    "bn": {
        "playerNotFound": "প্লেয়ার খুঁজে পাওয়া যায়নি",
        "invalidAmount": "অবৈধ পরিমাণ",
        "insufficientBalance": "অপর্যাপ্ত ব্যালেন্স",
    },
}


def resolve_locale(language: str | None = None, accept_language: str | None = None) -> str:
    """
    Pick a catalog locale from the ``language`` header, then the primary
    ``Accept-Language`` tag, then the configured default.
    """
    candidates = [language]
    if accept_language:
        primary = accept_language.split(",", 1)[0].split(";", 1)[0]
        candidates.append(primary.split("-", 1)[0])
    for candidate in candidates:
        if candidate and candidate.strip().lower() in MESSAGES:
            return candidate.strip().lower()
    return settings.default_locale if settings.default_locale in MESSAGES else FALLBACK_LOCALE


def get_message(key: str, locale: str) -> str:
    catalog = MESSAGES.get(locale, {})
    if key in catalog:
        return catalog[key]
    return MESSAGES[FALLBACK_LOCALE].get(key, key)
