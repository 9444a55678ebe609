"""Pydantic data models for the Shadow Pool HTTP binding."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shadowpool.core.fees import BPS_DENOMINATOR, U64_MAX
from shadowpool.core.ledger import MAX_ACCOUNT_LENGTH
from shadowpool.utils.encoding import ensure_digest


def _check_digest(value: str) -> str:
    ensure_digest(value)
    return value if value.startswith("0x") else "0x" + value


class CreatePoolRequest(BaseModel):
    """Request model for pool creation."""
    denomination: int = Field(..., gt=0, le=U64_MAX, description="Fixed deposit unit")
    fee_bps: Optional[int] = Field(
        default=None, ge=0, le=BPS_DENOMINATOR, description="Withdrawal fee in basis points"
    )
    authority: str = Field(
        ..., min_length=1, max_length=MAX_ACCOUNT_LENGTH, description="Pool administrator identity"
    )
    fee_recipient: Optional[str] = Field(
        default=None, max_length=MAX_ACCOUNT_LENGTH, description="Fee destination account"
    )


class CreatePoolResponse(BaseModel):
    """Response model for pool creation."""
    pool_id: str


class DepositRequest(BaseModel):
    """Request model for deposit operations."""
    commitment: str = Field(..., description="Commitment (hex)")
    depositor: str = Field(
        ..., min_length=1, max_length=MAX_ACCOUNT_LENGTH, description="Ledger account paying the deposit"
    )

    @field_validator("commitment")
    @classmethod
    def _commitment_is_digest(cls, value: str) -> str:
        return _check_digest(value)


class DepositResponse(BaseModel):
    """Response model for deposit operations."""
    pool_id: str
    commitment: str = Field(..., description="Commitment (hex)")
    leaf_index: int = Field(..., description="Index in Merkle tree")
    root: str = Field(..., description="Merkle root after the deposit (hex)")
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class WithdrawalRequest(BaseModel):
    """Request model for withdrawal operations."""
    nullifier_hash: str = Field(..., description="Nullifier hash (hex)")
    root: str = Field(..., description="Root the proof was built against (hex)")
    recipient: str = Field(..., min_length=1, max_length=MAX_ACCOUNT_LENGTH)
    fee_recipient: str = Field(..., min_length=1, max_length=MAX_ACCOUNT_LENGTH)
    proof: str = Field(..., description="Proof bytes (hex)")

    @field_validator("nullifier_hash", "root")
    @classmethod
    def _digests(cls, value: str) -> str:
        return _check_digest(value)

    @field_validator("proof")
    @classmethod
    def _proof_is_hex(cls, value: str) -> str:
        body = value[2:] if value.startswith("0x") else value
        bytes.fromhex(body)
        return value


class WithdrawalResponse(BaseModel):
    """Response model for withdrawal operations."""
    pool_id: str
    nullifier_hash: str
    recipient: str
    amount_paid: int = Field(..., description="Amount paid to the recipient")
    fee: int = Field(..., description="Fee paid to the fee recipient")
    timestamp: datetime


class PoolStateResponse(BaseModel):
    """Response model for pool state."""
    pool_id: str
    authority: str
    denomination: int
    fee_bps: int
    fee_recipient: str
    root: str = Field(..., description="Current Merkle root (hex)")
    tree_depth: int
    capacity: int
    leaf_count: int
    total_deposited: int
    total_withdrawn: int
    num_nullifiers: int = Field(..., description="Number of spent nullifiers")
    num_stuck_payouts: int
    root_history_size: int
    enabled: bool


class PoolListResponse(BaseModel):
    pools: List[str]


class RootStatusResponse(BaseModel):
    root: str
    known: bool


class NullifierStatusResponse(BaseModel):
    nullifier_hash: str
    spent: bool


class MerklePathResponse(BaseModel):
    leaf_index: int
    siblings: List[str]
    path_bits: List[int]
    root: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str = Field(..., description="Error message")
    code: str = Field(..., description="Error code")
