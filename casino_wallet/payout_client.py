import asyncio
import time
from decimal import Decimal
from typing import List

import httpx

from casino_wallet.config import settings
from casino_wallet.errors import ExternalPayoutFailed
from casino_wallet.logging_config import get_logger

logger = get_logger(__name__)


class PayoutClient:
    """
    Thin client for the payment processor's payout API.

    ``reference`` is sent as the processor-side idempotency key, so a
    configured retry on 429/5xx cannot pay a player twice.
    """

    def __init__(
        self,
        base_url: str | None = None,
        rate_limit_per_minute: int | None = None,
        max_retries: int | None = None,
        retry_backoff_seconds: float | None = None,
    ):
        base_url = base_url or str(settings.payout_base_url)
        self.client = httpx.AsyncClient(base_url=base_url, timeout=settings.payout_timeout_seconds)
        self._tokens: List[float] = []
        self.rate_limit_per_minute = rate_limit_per_minute if rate_limit_per_minute is not None else settings.rate_limit_per_minute
        self.max_retries = max_retries if max_retries is not None else settings.max_retries
        self.retry_backoff_seconds = retry_backoff_seconds if retry_backoff_seconds is not None else settings.retry_backoff_seconds

    async def _respect_rate_limit(self) -> bool:
        now = time.time()
        self._tokens = [t for t in self._tokens if now - t < 60]
        if len(self._tokens) >= self.rate_limit_per_minute:
            return False
        self._tokens.append(time.time())
        return True

    async def _request_with_retry(self, method: str, url: str, json: dict, headers: dict | None = None) -> httpx.Response:
        retries = 0
        backoff = self.retry_backoff_seconds
        while retries <= self.max_retries:
            allowed = await self._respect_rate_limit()
            if not allowed:
                retry_headers = {"Retry-After": str(backoff)}
                return httpx.Response(status_code=429, headers=retry_headers, request=httpx.Request(method, url))
            try:
                response = await self.client.request(method, url, json=json, headers=headers)
            except httpx.RequestError as exc:
                raise ExternalPayoutFailed(f"payout request error: {exc}") from exc
            if response.status_code == 429 or response.status_code >= 500:
                if retries == self.max_retries:
                    return response
                retry_after = response.headers.get("Retry-After") if response.status_code == 429 else None
                await asyncio.sleep(float(retry_after) if retry_after else backoff)
                retries += 1
                backoff *= 2
                continue
            return response
        return response

    async def create_payout(
        self,
        *,
        player_id: str,
        amount: Decimal,
        currency: str,
        payment_method_id: str | None,
        reference: str,
    ) -> dict:
        payload = {
            "amount": str(amount),
            "currency": currency,
            "destination": payment_method_id,
            "reference": reference,
            "metadata": {"playerId": player_id},
        }
        resp = await self._request_with_retry(
            "POST", "/v1/payouts", json=payload, headers={"Idempotency-Key": reference}
        )
        if 200 <= resp.status_code < 300:
            return resp.json()
        logger.warning("Payout rejected reference=%s status=%s body=%s", reference, resp.status_code, resp.text)
        raise ExternalPayoutFailed(f"payout rejected with status {resp.status_code}")

    async def aclose(self) -> None:
        await self.client.aclose()
