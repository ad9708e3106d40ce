"""Coin purchase verification: gateway confirmation, then a one-time credit."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from erigga.config import Settings
from erigga.errors import PaymentVerificationError, ValidationFailedError
from erigga.ledger.service import (
    PurchaseResult,
    credit_purchase,
    get_balance,
    get_transaction_by_reference,
)

if TYPE_CHECKING:
    from erigga.payments.paystack import PaystackClient

logger = structlog.get_logger()

# Tolerances on the naira price (1 NGN) and on the gateway's kobo amount (100 kobo).
_PRICE_TOLERANCE_NAIRA = 1
_GATEWAY_TOLERANCE_KOBO = 100


def validate_purchase(settings: Settings, amount: float, coins: int) -> None:
    """Check the quoted price against the configured exchange rate."""
    if coins < settings.min_coin_purchase:
        raise ValidationFailedError(f"Minimum purchase is {settings.min_coin_purchase} coins")
    if amount <= 0:
        raise ValidationFailedError("Invalid amount")
    expected = math.floor(coins * settings.naira_per_coin)
    if abs(amount - expected) > _PRICE_TOLERANCE_NAIRA:
        raise ValidationFailedError("Amount doesn't match expected exchange rate")


async def verify_and_credit_purchase(
    db: AsyncSession,
    gateway: PaystackClient,
    settings: Settings,
    user_id: int,
    reference: str,
    amount: float,
    coins: int,
) -> PurchaseResult:
    """
    Confirm a payment with the gateway and credit the coins once.

    A reference that was already credited short-circuits without another
    gateway call.

    Raises:
        ValidationFailedError: Bad quote, or the reference belongs to someone else.
        PaymentVerificationError: Gateway says unpaid, or the paid amount differs.
        PaymentGatewayError: Gateway unreachable.
    """
    validate_purchase(settings, amount, coins)

    existing = await get_transaction_by_reference(db, reference)
    if existing is not None:
        if existing.user_id != user_id:
            raise ValidationFailedError("Payment reference has already been used")
        return PurchaseResult(credited=False, transaction=existing, balance=await get_balance(db, user_id))

    verification = await gateway.verify(reference)
    if not verification.succeeded:
        raise PaymentVerificationError("Payment verification failed - transaction not successful")

    expected_kobo = round(amount * 100)
    if abs(verification.amount_kobo - expected_kobo) > _GATEWAY_TOLERANCE_KOBO:
        logger.warning(
            "payment_amount_mismatch",
            reference=reference,
            expected=expected_kobo,
            actual=verification.amount_kobo,
        )
        raise PaymentVerificationError("Payment amount mismatch")

    return await credit_purchase(
        db,
        user_id,
        reference,
        coins,
        description=f"Purchased {coins:,} Erigga Coins via {verification.channel or 'paystack'}",
    )
