"""Paystack transaction verification.

The gateway is the source of truth for whether a payment reference was
paid; the ledger only credits coins after it says so.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from erigga.config import Settings
from erigga.errors import PaymentGatewayError

logger = structlog.get_logger()


@dataclass(frozen=True)
class PaymentVerification:
    reference: str
    status: str
    amount_kobo: int
    currency: str
    channel: str | None = None
    paid_at: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class PaystackClient:
    """Minimal client for GET /transaction/verify/{reference}."""

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> PaystackClient:
        return cls(
            settings.paystack_secret_key,
            base_url=settings.paystack_base_url,
            timeout=settings.paystack_timeout_seconds,
        )

    async def verify(self, reference: str) -> PaymentVerification:
        """
        Ask the gateway about a reference.

        Raises:
            PaymentGatewayError: Gateway unreachable, misconfigured or returned garbage.
        """
        if not self.secret_key:
            raise PaymentGatewayError("Payment gateway is not configured")
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.get(
                    f"/transaction/verify/{reference}",
                    headers={"Authorization": f"Bearer {self.secret_key}"},
                )
                # 400/404 carry {"status": false} for unknown or invalid references.
                if response.status_code not in (200, 400, 404):
                    response.raise_for_status()
                body: dict[str, Any] = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("paystack_verify_failed", reference=reference, error=str(e))
            raise PaymentGatewayError from e

        data = body.get("data") or {}
        if not body.get("status") or not data:
            return PaymentVerification(reference=reference, status="failed", amount_kobo=0, currency="NGN")
        return PaymentVerification(
            reference=str(data.get("reference", reference)),
            status=str(data.get("status", "failed")),
            amount_kobo=int(data.get("amount", 0)),
            currency=str(data.get("currency", "NGN")),
            channel=data.get("channel"),
            paid_at=data.get("paid_at"),
        )
