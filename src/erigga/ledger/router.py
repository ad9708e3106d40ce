"""Vote and wallet endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from erigga.auth.dependencies import get_current_user
from erigga.config import get_settings
from erigga.database import get_session
from erigga.db.models import User
from erigga.ledger.schemas import (
    BalanceResponse,
    PurchaseRequest,
    PurchaseResponse,
    TransactionListResponse,
    TransactionResponse,
    VoteRequest,
    VoteResponse,
    VoteStatusResponse,
    WithdrawalCreatedResponse,
    WithdrawalRequest,
    WithdrawalResponse,
)
from erigga.ledger.service import (
    cast_or_retract_vote,
    get_balance,
    get_vote_status,
    list_transactions,
    request_withdrawal,
    validate_withdrawal,
)
from erigga.payments.paystack import PaystackClient
from erigga.payments.service import verify_and_credit_purchase

router = APIRouter(prefix="/api/v1", tags=["Coins"])

_gateway: PaystackClient | None = None


def get_payment_gateway() -> PaystackClient:
    global _gateway  # noqa: PLW0603
    if _gateway is None:
        _gateway = PaystackClient.from_settings(get_settings())
    return _gateway


# ── Votes ──


@router.post("/vote", response_model=VoteResponse)
@router.post("/community/posts/vote", response_model=VoteResponse, include_in_schema=False)
async def vote(
    body: VoteRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> VoteResponse:
    """Vote on a post, or take a previous vote back."""
    user_id = user.id
    result = await cast_or_retract_vote(db, user_id, body.post_id, get_settings().vote_coin_amount)
    return VoteResponse(
        voted=result.voted,
        new_count=result.vote_count,
        balance=result.voter_balance,
        message="Vote cast" if result.voted else "Vote removed",
    )


@router.get("/vote/{post_id}", response_model=VoteStatusResponse)
async def vote_status(
    post_id: int = Path(..., gt=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> VoteStatusResponse:
    voted, vote_count = await get_vote_status(db, user.id, post_id)
    return VoteStatusResponse(post_id=post_id, voted=voted, vote_count=vote_count)


# ── Wallet ──


@router.get("/coins/balance", response_model=BalanceResponse)
async def balance(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> BalanceResponse:
    return BalanceResponse(balance=await get_balance(db, user.id))


@router.get("/coins/transactions", response_model=TransactionListResponse)
async def transactions(
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> TransactionListResponse:
    """Most recent ledger entries first."""
    entries = await list_transactions(db, user.id, limit=limit)
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(e) for e in entries],
    )


@router.post("/coins/purchase", response_model=PurchaseResponse)
async def purchase(
    body: PurchaseRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    gateway: PaystackClient = Depends(get_payment_gateway),
) -> PurchaseResponse:
    """Verify a completed checkout and credit the coins once per reference."""
    result = await verify_and_credit_purchase(
        db, gateway, get_settings(), user.id, body.reference, body.amount, body.coins,
    )
    return PurchaseResponse(
        credited=result.credited,
        new_balance=result.balance,
        transaction=TransactionResponse.model_validate(result.transaction),
        message="Coins credited" if result.credited else "Payment already processed",
    )


@router.post("/coins/withdraw", response_model=WithdrawalCreatedResponse, status_code=201)
async def withdraw(
    body: WithdrawalRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> WithdrawalCreatedResponse:
    """Debit coins and queue a bank payout for admin review."""
    user_id = user.id
    bank = body.bank_details
    validate_withdrawal(get_settings(), body.amount, bank.bank_code, bank.account_number, bank.account_name)
    withdrawal = await request_withdrawal(
        db, user_id, body.amount, bank.bank_code, bank.account_number, bank.account_name,
    )
    return WithdrawalCreatedResponse(
        withdrawal=WithdrawalResponse.model_validate(withdrawal),
        new_balance=await get_balance(db, user_id),
    )
