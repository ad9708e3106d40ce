"""Request/response schemas for votes and the coin wallet."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------


class VoteRequest(BaseModel):
    post_id: int = Field(..., gt=0, alias="postId")

    model_config = {"populate_by_name": True}


class VoteResponse(BaseModel):
    success: bool = True
    voted: bool
    new_count: int = Field(..., serialization_alias="newCount")
    balance: int
    message: str


class VoteStatusResponse(BaseModel):
    success: bool = True
    post_id: int = Field(..., serialization_alias="postId")
    voted: bool
    vote_count: int = Field(..., serialization_alias="voteCount")


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------


class BalanceResponse(BaseModel):
    success: bool = True
    balance: int


class TransactionResponse(BaseModel):
    id: int
    amount: int
    balance_after: int
    transaction_type: str
    description: str | None = None
    reference: str | None = None
    post_id: int | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TransactionListResponse(BaseModel):
    success: bool = True
    transactions: list[TransactionResponse]


class PurchaseRequest(BaseModel):
    """Client-side checkout result to verify and credit."""

    reference: str = Field(..., min_length=1, max_length=128)
    amount: float = Field(..., gt=0)
    coins: int = Field(..., gt=0)


class PurchaseResponse(BaseModel):
    success: bool = True
    credited: bool
    new_balance: int
    transaction: TransactionResponse
    message: str


class BankDetails(BaseModel):
    bank_code: str = Field(..., alias="bankCode", min_length=3, max_length=8)
    account_number: str = Field(..., alias="accountNumber", min_length=10, max_length=10)
    account_name: str = Field(..., alias="accountName", max_length=128)

    model_config = {"populate_by_name": True}

    @field_validator("account_number")
    @classmethod
    def digits_only(cls, v: str) -> str:
        if not v.isdigit():
            msg = "Account number must contain only digits"
            raise ValueError(msg)
        return v

    @field_validator("account_name")
    @classmethod
    def name_present(cls, v: str) -> str:
        if len(v.strip()) < 2:
            msg = "Account name is required"
            raise ValueError(msg)
        return v.strip()


class WithdrawalRequest(BaseModel):
    amount: int = Field(..., gt=0)
    bank_details: BankDetails = Field(..., alias="bankDetails")

    model_config = {"populate_by_name": True}


class WithdrawalResponse(BaseModel):
    id: int
    amount: int
    bank_code: str
    account_number: str
    account_name: str
    status: str
    admin_note: str | None = None
    created_at: datetime
    processed_at: datetime | None = None

    model_config = {"from_attributes": True}


class WithdrawalCreatedResponse(BaseModel):
    success: bool = True
    withdrawal: WithdrawalResponse
    new_balance: int


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class BalanceAdjustmentRequest(BaseModel):
    delta: int
    reason: str = Field(..., min_length=3, max_length=200)


class WithdrawalDecisionRequest(BaseModel):
    approve: bool
    note: str | None = Field(None, max_length=256)


class TierUpgradeRequest(BaseModel):
    tier: str
