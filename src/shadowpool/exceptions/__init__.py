"""Custom exceptions for the Shadow Pool engine."""

from typing import Optional


class ShadowPoolError(Exception):
    """Base exception for all Shadow Pool errors."""
    pass


# Pool Errors
class PoolError(ShadowPoolError):
    """Base exception for pool lifecycle and configuration errors."""
    pass


class PoolNotFoundError(PoolError):
    """Raised when no pool exists for the given identifier."""
    pass


class PoolExistsError(PoolError):
    """Raised when a pool for the denomination already exists."""
    pass


class PoolInactiveError(PoolError):
    """Raised when operating on a disabled pool."""
    pass


class PoolFullError(PoolError):
    """Raised when the commitment accumulator has no free leaves."""
    pass


class InvalidDenominationError(PoolError):
    """Raised when a denomination is zero, negative or exceeds u64."""
    pass


class InvalidFeeError(PoolError):
    """Raised when fee_bps is outside [0, 10000]."""
    pass


# Accumulator Errors
class AccumulatorError(ShadowPoolError):
    """Base exception for commitment accumulator errors."""
    pass


class AccumulatorFullError(AccumulatorError, PoolFullError):
    """Raised when inserting into an accumulator at capacity."""
    pass


class InvalidLeafIndexError(AccumulatorError):
    """Raised when a leaf index is out of range."""
    pass


# Deposit Errors
class DepositError(ShadowPoolError):
    """Base exception for deposit failures."""
    pass


class DuplicateCommitmentError(DepositError):
    """Raised when a commitment has already been deposited."""
    pass


# Withdrawal Errors
class WithdrawalError(ShadowPoolError):
    """Base exception for withdrawal failures."""
    pass


class InvalidRootError(WithdrawalError):
    """Raised when the supplied root is not in the root history."""
    pass


class InvalidProofError(WithdrawalError):
    """Raised when the proof verifier rejects a withdrawal proof."""
    pass


class AlreadySpentError(WithdrawalError):
    """Raised when a nullifier hash has already been spent."""
    pass


class FeeRecipientMismatchError(WithdrawalError):
    """Raised when the fee recipient differs from the pool's configured one."""
    pass


class InvalidRecipientError(WithdrawalError):
    """Raised when a recipient account name is empty or too long."""
    pass


class PayoutNotFoundError(WithdrawalError):
    """Raised when no stuck payout exists for a nullifier hash."""
    pass


class PayoutFailedError(WithdrawalError):
    """
    Raised when funds could not be released after the nullifier was spent.

    Unlike every other withdrawal error this one is NOT a clean rejection:
    the nullifier is permanently consumed and the payout is parked until an
    operator retries it.
    """

    def __init__(
        self,
        message: str,
        nullifier_hash: bytes,
        recipient: str,
        payout: int,
        fee: int,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.nullifier_hash = nullifier_hash
        self.recipient = recipient
        self.payout = payout
        self.fee = fee
        self.cause = cause


# Arithmetic Errors
class BoundedArithmeticError(ShadowPoolError):
    """Base exception for bounded integer arithmetic errors."""
    pass


class ArithmeticOverflowError(BoundedArithmeticError):
    """Raised when fee computation exceeds its integer bounds."""
    pass


class CounterOverflowError(BoundedArithmeticError):
    """Raised when a pool counter would exceed its width."""
    pass


class CounterUnderflowError(BoundedArithmeticError):
    """Raised when a pool counter would drop below zero."""
    pass


# Ledger Errors
class TransferFailedError(ShadowPoolError):
    """Raised by the ledger collaborator when funds cannot be moved."""
    pass


class InsufficientFundsError(TransferFailedError):
    """Raised when the source account balance is too low."""
    pass


class TransferRejectedError(TransferFailedError):
    """Raised when the ledger refuses a transfer for any other reason."""
    pass


# Storage Errors
class StorageError(ShadowPoolError):
    """Base exception for storage errors."""
    pass


class CorruptStateError(StorageError):
    """Raised when persisted pool state fails its consistency checks."""
    pass
