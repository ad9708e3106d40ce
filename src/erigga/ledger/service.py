"""Coin ledger: votes, purchases, withdrawals and admin adjustments.

Every balance change goes through `_apply_delta` inside an `atomic()` block,
so the balance update, its CoinTransaction row and any related row (Vote,
Withdrawal) commit or roll back together.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from erigga.config import Settings
from erigga.db.models import CoinTransaction, Post, User, Vote, Withdrawal
from erigga.errors import (
    AlreadyProcessingError,
    InsufficientFundsError,
    NotFoundError,
    SelfVoteError,
    ValidationFailedError,
)
from erigga.timeutils import utcnow

logger = structlog.get_logger()


@dataclass
class VoteResult:
    voted: bool
    vote_count: int
    voter_balance: int


@dataclass
class PurchaseResult:
    credited: bool
    transaction: CoinTransaction
    balance: int


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncIterator[None]:
    """Commit on success, roll back on any error.

    A unique-constraint violation means a concurrent writer got there first.
    """
    try:
        yield
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise AlreadyProcessingError from e
    except BaseException:
        await db.rollback()
        raise


async def _lock_users(db: AsyncSession, *user_ids: int) -> dict[int, User]:
    """Row-lock users in id order so concurrent transfers cannot deadlock."""
    ids = sorted(set(user_ids))
    result = await db.execute(
        select(User)
        .where(User.id.in_(ids))
        .order_by(User.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    users = {user.id: user for user in result.scalars().all()}
    missing = [uid for uid in ids if uid not in users]
    if missing:
        raise NotFoundError(f"User {missing[0]} not found")
    return users


def _apply_delta(
    db: AsyncSession,
    user: User,
    delta: int,
    transaction_type: str,
    description: str,
    *,
    reference: str | None = None,
    counterparty_id: int | None = None,
    post_id: int | None = None,
) -> CoinTransaction:
    """Move a locked user's balance and record it. Never lets a balance go negative."""
    if user.coins + delta < 0:
        raise InsufficientFundsError
    user.coins += delta
    entry = CoinTransaction(
        user_id=user.id,
        amount=delta,
        balance_after=user.coins,
        transaction_type=transaction_type,
        description=description,
        reference=reference,
        counterparty_id=counterparty_id,
        post_id=post_id,
        created_at=utcnow(),
    )
    db.add(entry)
    return entry


# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------


async def cast_or_retract_vote(
    db: AsyncSession,
    voter_id: int,
    post_id: int,
    amount: int,
) -> VoteResult:
    """Toggle a vote and move `amount` coins between voter and author.

    Casting charges the voter and pays the author; repeating the call
    deletes the vote and reverses the transfer. One transaction either way.

    Raises:
        NotFoundError: Post (or soft-deleted post) or voter missing.
        SelfVoteError: Voter authored the post.
        InsufficientFundsError: Voter cannot pay, or author cannot refund.
        AlreadyProcessingError: A concurrent request on the same pair won.
    """
    if amount <= 0:
        raise ValidationFailedError("Vote amount must be positive")

    async with atomic(db):
        result = await db.execute(
            select(Post)
            .where(Post.id == post_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        post = result.scalar_one_or_none()
        if post is None or post.is_deleted:
            raise NotFoundError("Post not found")
        if post.user_id == voter_id:
            raise SelfVoteError

        users = await _lock_users(db, voter_id, post.user_id)
        voter, author = users[voter_id], users[post.user_id]

        existing = await db.execute(
            select(Vote.id).where(Vote.post_id == post_id, Vote.user_id == voter_id)
        )
        vote_id = existing.scalar_one_or_none()

        if vote_id is None:
            if voter.coins < amount:
                raise InsufficientFundsError("Not enough Erigga Coins to vote.")
            _apply_delta(
                db, voter, -amount, "vote_sent", f"Vote on post #{post_id}",
                counterparty_id=author.id, post_id=post_id,
            )
            _apply_delta(
                db, author, amount, "vote_received", f"Vote received on post #{post_id}",
                counterparty_id=voter.id, post_id=post_id,
            )
            db.add(Vote(post_id=post_id, user_id=voter_id, created_at=utcnow()))
            post.vote_count += 1
            voted = True
        else:
            deleted = await db.execute(delete(Vote).where(Vote.id == vote_id))
            if deleted.rowcount != 1:
                raise AlreadyProcessingError
            if author.coins < amount:
                raise InsufficientFundsError("The post author can no longer refund this vote.")
            _apply_delta(
                db, author, -amount, "vote_reversed", f"Vote withdrawn on post #{post_id}",
                counterparty_id=voter.id, post_id=post_id,
            )
            _apply_delta(
                db, voter, amount, "vote_refund", f"Vote refund for post #{post_id}",
                counterparty_id=author.id, post_id=post_id,
            )
            post.vote_count = max(0, post.vote_count - 1)
            voted = False

        await db.flush()
        outcome = VoteResult(voted=voted, vote_count=post.vote_count, voter_balance=voter.coins)

    logger.info(
        "vote_cast" if voted else "vote_retracted",
        voter_id=voter_id,
        post_id=post_id,
        author_id=post.user_id,
        amount=amount,
        vote_count=outcome.vote_count,
    )
    return outcome


async def has_voted(db: AsyncSession, voter_id: int, post_id: int) -> bool:
    result = await db.execute(
        select(Vote.id).where(Vote.post_id == post_id, Vote.user_id == voter_id)
    )
    return result.first() is not None


async def get_vote_status(db: AsyncSession, voter_id: int, post_id: int) -> tuple[bool, int]:
    """(has `voter_id` voted, current vote count) for a live post."""
    result = await db.execute(select(Post.vote_count, Post.is_deleted).where(Post.id == post_id))
    row = result.first()
    if row is None or row.is_deleted:
        raise NotFoundError("Post not found")
    return await has_voted(db, voter_id, post_id), row.vote_count


# ---------------------------------------------------------------------------
# Balance primitive
# ---------------------------------------------------------------------------


async def adjust_balance(
    db: AsyncSession,
    user_id: int,
    delta: int,
    transaction_type: str,
    description: str,
    reference: str | None = None,
) -> CoinTransaction:
    """Apply a single signed balance change. Used by admin tooling and payments."""
    if delta == 0:
        raise ValidationFailedError("Adjustment must be non-zero")
    async with atomic(db):
        users = await _lock_users(db, user_id)
        entry = _apply_delta(db, users[user_id], delta, transaction_type, description, reference=reference)
        await db.flush()
    logger.info("balance_adjusted", user_id=user_id, delta=delta, transaction_type=transaction_type)
    return entry


async def get_balance(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(select(User.coins).where(User.id == user_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise NotFoundError("User not found")
    return balance


async def list_transactions(db: AsyncSession, user_id: int, limit: int = 20) -> list[CoinTransaction]:
    result = await db.execute(
        select(CoinTransaction)
        .where(CoinTransaction.user_id == user_id)
        .order_by(CoinTransaction.created_at.desc(), CoinTransaction.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------


async def get_transaction_by_reference(db: AsyncSession, reference: str) -> CoinTransaction | None:
    result = await db.execute(select(CoinTransaction).where(CoinTransaction.reference == reference))
    return result.scalar_one_or_none()


async def _already_credited(db: AsyncSession, existing: CoinTransaction, user_id: int) -> PurchaseResult:
    if existing.user_id != user_id:
        raise ValidationFailedError("Payment reference has already been used")
    return PurchaseResult(credited=False, transaction=existing, balance=await get_balance(db, user_id))


async def credit_purchase(
    db: AsyncSession,
    user_id: int,
    reference: str,
    coins: int,
    description: str | None = None,
) -> PurchaseResult:
    """Credit purchased coins exactly once per payment reference."""
    if coins <= 0:
        raise ValidationFailedError("Coin amount must be positive")

    existing = await get_transaction_by_reference(db, reference)
    if existing is not None:
        return await _already_credited(db, existing, user_id)

    try:
        entry = await adjust_balance(
            db,
            user_id,
            coins,
            "purchase",
            description or f"Purchased {coins:,} Erigga Coins",
            reference=reference,
        )
    except AlreadyProcessingError:
        # Lost the race on the reference's unique index: the other request credited it.
        existing = await get_transaction_by_reference(db, reference)
        if existing is None:
            raise
        return await _already_credited(db, existing, user_id)

    logger.info("coins_purchased", user_id=user_id, coins=coins, reference=reference)
    return PurchaseResult(credited=True, transaction=entry, balance=entry.balance_after)


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------


NIGERIAN_BANK_CODES = frozenset({
    "044", "014", "023", "050", "011", "214", "070", "058", "030", "082",
    "076", "221", "068", "232", "032", "033", "215", "035", "057",
})


def validate_withdrawal(
    settings: Settings,
    amount: int,
    bank_code: str,
    account_number: str,
    account_name: str,
) -> None:
    if amount < settings.min_withdrawal_coins:
        raise ValidationFailedError(f"Minimum withdrawal is {settings.min_withdrawal_coins:,} coins")
    if amount > settings.max_withdrawal_coins:
        raise ValidationFailedError(f"Maximum withdrawal is {settings.max_withdrawal_coins:,} coins")
    if bank_code not in NIGERIAN_BANK_CODES:
        raise ValidationFailedError("Invalid bank code")
    if len(account_number) != 10 or not account_number.isdigit():
        raise ValidationFailedError("Invalid account number format")
    if len(account_name.strip()) < 2:
        raise ValidationFailedError("Invalid account name")


async def request_withdrawal(
    db: AsyncSession,
    user_id: int,
    amount: int,
    bank_code: str,
    account_number: str,
    account_name: str,
) -> Withdrawal:
    """Debit the coins and open a pending withdrawal in one transaction."""
    async with atomic(db):
        users = await _lock_users(db, user_id)
        withdrawal = Withdrawal(
            user_id=user_id,
            amount=amount,
            bank_code=bank_code,
            account_number=account_number,
            account_name=account_name.strip(),
            status="pending",
            created_at=utcnow(),
        )
        db.add(withdrawal)
        await db.flush()
        _apply_delta(
            db,
            users[user_id],
            -amount,
            "withdrawal",
            f"Withdrawal request #{withdrawal.id}",
            reference=f"withdrawal:{withdrawal.id}",
        )
        await db.flush()
    logger.info("withdrawal_requested", user_id=user_id, amount=amount, withdrawal_id=withdrawal.id)
    return withdrawal


async def process_withdrawal(
    db: AsyncSession,
    withdrawal_id: int,
    approve: bool,
    note: str | None = None,
) -> Withdrawal:
    """Approve or reject a pending withdrawal. Rejection refunds the coins."""
    async with atomic(db):
        result = await db.execute(
            select(Withdrawal)
            .where(Withdrawal.id == withdrawal_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        withdrawal = result.scalar_one_or_none()
        if withdrawal is None:
            raise NotFoundError("Withdrawal not found")
        if withdrawal.status != "pending":
            raise ValidationFailedError(f"Withdrawal is already {withdrawal.status}")

        withdrawal.status = "approved" if approve else "rejected"
        withdrawal.admin_note = note
        withdrawal.processed_at = utcnow()
        if not approve:
            users = await _lock_users(db, withdrawal.user_id)
            _apply_delta(
                db,
                users[withdrawal.user_id],
                withdrawal.amount,
                "withdrawal_refund",
                f"Withdrawal #{withdrawal.id} rejected",
                reference=f"withdrawal_refund:{withdrawal.id}",
            )
        await db.flush()
    logger.info("withdrawal_processed", withdrawal_id=withdrawal_id, status=withdrawal.status)
    return withdrawal
