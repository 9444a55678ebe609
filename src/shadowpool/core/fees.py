"""Fee split and bounded counter arithmetic.

Amounts are unsigned 64-bit quantities on the ledger side. Python integers do
not overflow, so the widths are enforced explicitly: the fee product is
bounded to 128 bits and every result to 64 bits.
"""

from dataclasses import dataclass

from shadowpool.exceptions import (
    ArithmeticOverflowError,
    CounterOverflowError,
    CounterUnderflowError,
    InvalidDenominationError,
    InvalidFeeError,
)

U16_MAX = 2**16 - 1
U32_MAX = 2**32 - 1
U64_MAX = 2**64 - 1
U128_MAX = 2**128 - 1

BPS_DENOMINATOR = 10_000
DEFAULT_FEE_BPS = 30

# Standard pool denominations in lamports
DENOMINATION_01_SOL = 100_000_000
DENOMINATION_05_SOL = 500_000_000
DENOMINATION_1_SOL = 1_000_000_000
DENOMINATION_5_SOL = 5_000_000_000

STANDARD_DENOMINATIONS = (
    DENOMINATION_01_SOL,
    DENOMINATION_05_SOL,
    DENOMINATION_1_SOL,
    DENOMINATION_5_SOL,
)


@dataclass(frozen=True)
class FeeSplit:
    """How one denomination is divided at withdrawal."""

    fee: int
    payout: int

    @property
    def total(self) -> int:
        return self.fee + self.payout


def validate_denomination(denomination: int) -> int:
    if isinstance(denomination, bool) or not isinstance(denomination, int):
        raise InvalidDenominationError("Denomination must be an integer")
    if denomination <= 0 or denomination > U64_MAX:
        raise InvalidDenominationError(f"Denomination must be in [1, {U64_MAX}]")
    return denomination


def validate_fee_bps(fee_bps: int) -> int:
    if isinstance(fee_bps, bool) or not isinstance(fee_bps, int):
        raise InvalidFeeError("fee_bps must be an integer")
    if fee_bps < 0 or fee_bps > BPS_DENOMINATOR:
        raise InvalidFeeError(f"fee_bps must be in [0, {BPS_DENOMINATOR}]")
    return fee_bps


def compute_fee(denomination: int, fee_bps: int) -> FeeSplit:
    """
    Split a denomination into fee and payout.

    fee = floor(denomination * fee_bps / 10000), payout = denomination - fee.

    Raises:
        ArithmeticOverflowError: If an operand or result leaves its width
    """
    if denomination < 0 or denomination > U64_MAX:
        raise ArithmeticOverflowError(f"Denomination {denomination} does not fit in u64")
    if fee_bps < 0 or fee_bps > U16_MAX:
        raise ArithmeticOverflowError(f"fee_bps {fee_bps} does not fit in u16")

    product = denomination * fee_bps
    if product > U128_MAX:
        raise ArithmeticOverflowError("Fee product exceeds u128")

    fee = product // BPS_DENOMINATOR
    if fee > U64_MAX or fee > denomination:
        raise ArithmeticOverflowError(f"Fee {fee} exceeds denomination {denomination}")

    return FeeSplit(fee=fee, payout=denomination - fee)


def checked_add(value: int, delta: int, limit: int = U64_MAX, name: str = "counter") -> int:
    """Add with an explicit upper bound."""
    result = value + delta
    if result > limit:
        raise CounterOverflowError(f"{name} overflow: {value} + {delta} > {limit}")
    if result < 0:
        raise CounterUnderflowError(f"{name} underflow: {value} + {delta} < 0")
    return result

