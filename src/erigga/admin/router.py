"""Admin endpoints: balance corrections, payout review, tier upgrades."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from erigga.auth.dependencies import require_admin
from erigga.database import get_session
from erigga.db.models import Tier, User, Withdrawal
from erigga.errors import NotFoundError, ValidationFailedError
from erigga.ledger.schemas import (
    BalanceAdjustmentRequest,
    TierUpgradeRequest,
    TransactionResponse,
    WithdrawalDecisionRequest,
    WithdrawalResponse,
)
from erigga.ledger.service import adjust_balance, process_withdrawal

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])


@router.post("/users/{user_id}/coins", response_model=TransactionResponse)
async def adjust_user_coins(
    user_id: int,
    body: BalanceAdjustmentRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> TransactionResponse:
    """Credit or debit a user's coins. Debits cannot overdraw."""
    admin_id = admin.id
    entry = await adjust_balance(
        db, user_id, body.delta, "admin_adjustment", f"Admin adjustment: {body.reason}",
    )
    logger.info("admin_balance_adjusted", admin_id=admin_id, user_id=user_id, delta=body.delta)
    return TransactionResponse.model_validate(entry)


@router.put("/users/{user_id}/tier")
async def upgrade_tier(
    user_id: int,
    body: TierUpgradeRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, object]:
    try:
        target = Tier(body.tier)
    except ValueError:
        raise ValidationFailedError(f"Unknown tier: {body.tier}") from None

    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if target <= Tier(user.tier):
        raise ValidationFailedError(f"User is already {user.tier}")

    previous = user.tier
    user.tier = target.value
    await db.commit()
    logger.info("tier_upgraded", admin_id=admin.id, user_id=user_id, previous=previous, tier=target.value)
    return {"success": True, "user_id": user_id, "tier": target.value}


# ── Withdrawals ──


@router.get("/withdrawals", response_model=list[WithdrawalResponse])
async def pending_withdrawals(
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> list[WithdrawalResponse]:
    """Pending payouts, oldest first."""
    result = await db.execute(
        select(Withdrawal)
        .where(Withdrawal.status == "pending")
        .order_by(Withdrawal.created_at, Withdrawal.id)
    )
    return [WithdrawalResponse.model_validate(w) for w in result.scalars().all()]


@router.post("/withdrawals/{withdrawal_id}", response_model=WithdrawalResponse)
async def decide_withdrawal(
    withdrawal_id: int,
    body: WithdrawalDecisionRequest,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> WithdrawalResponse:
    withdrawal = await process_withdrawal(db, withdrawal_id, body.approve, body.note)
    return WithdrawalResponse.model_validate(withdrawal)
