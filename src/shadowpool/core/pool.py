"""Pool aggregate: configuration, counters and the state they guard.

One ``Pool`` owns its accumulator, root history, nullifier set and deposit
notes. The engine passes it around explicitly; nothing here is global.

Invariants:
    - leaf_count <= 2^depth
    - total_deposited == denomination * leaf_count
    - root == accumulator.root, and root is always in root_history
"""

import hashlib
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from shadowpool.core.accumulator import CommitmentAccumulator
from shadowpool.core.fees import FeeSplit, compute_fee
from shadowpool.core.ledger import custody_account
from shadowpool.core.nullifier_set import NullifierSet
from shadowpool.core.root_history import RootHistory
from shadowpool.utils.encoding import bytes_to_hex

POOL_SEED = b"privacy_pool"


def derive_pool_id(denomination: int) -> str:
    """One pool per denomination: sha256(seed || denomination as u64 LE)."""
    return hashlib.sha256(POOL_SEED + denomination.to_bytes(8, "little")).hexdigest()


@dataclass(frozen=True)
class DepositNote:
    """Commitment-side record, keyed by commitment."""

    commitment: bytes
    leaf_index: int
    created_at: datetime


@dataclass
class StuckPayout:
    """
    Withdrawal whose nullifier is spent but whose funds did not leave custody.

    ``payout_sent`` records whether the recipient leg already went through, so
    a retry only replays what is still outstanding.
    """

    nullifier_hash: bytes
    recipient: str
    fee_recipient: str
    payout: int
    fee: int
    created_at: datetime
    payout_sent: bool = False
    attempts: int = 1
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "nullifier_hash": bytes_to_hex(self.nullifier_hash),
            "recipient": self.recipient,
            "fee_recipient": self.fee_recipient,
            "payout": self.payout,
            "fee": self.fee,
            "payout_sent": self.payout_sent,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Pool:
    """Per-denomination shielded pool."""

    pool_id: str
    authority: str
    denomination: int
    fee_bps: int
    fee_recipient: str
    accumulator: CommitmentAccumulator
    root_history: RootHistory
    nullifiers: NullifierSet = field(default_factory=NullifierSet)
    deposits: Dict[bytes, DepositNote] = field(default_factory=dict)
    stuck_payouts: Dict[bytes, StuckPayout] = field(default_factory=dict)
    leaf_count: int = 0
    total_deposited: int = 0
    total_withdrawn: int = 0
    enabled: bool = True
    created_at: Optional[datetime] = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def root(self) -> bytes:
        return self.accumulator.root

    @property
    def capacity(self) -> int:
        return self.accumulator.capacity

    @property
    def custody_account(self) -> str:
        return custody_account(self.pool_id)

    @property
    def custody_balance(self) -> int:
        """Value the pool should still hold: deposits not yet released."""
        sent = sum(stuck.payout for stuck in self.stuck_payouts.values() if stuck.payout_sent)
        return self.total_deposited - self.total_withdrawn - sent

    def fee_split(self) -> FeeSplit:
        return compute_fee(self.denomination, self.fee_bps)

    def check_invariants(self) -> bool:
        """True when counters, accumulator and root history agree."""
        return (
            self.leaf_count <= self.capacity
            and self.leaf_count == self.accumulator.leaf_count
            and self.total_deposited == self.denomination * self.leaf_count
            and self.total_withdrawn <= self.total_deposited
            and self.root_history.contains(self.root)
        )

    def state(self) -> dict:
        """Public snapshot of pool configuration and counters."""
        return {
            "pool_id": self.pool_id,
            "authority": self.authority,
            "denomination": self.denomination,
            "fee_bps": self.fee_bps,
            "fee_recipient": self.fee_recipient,
            "root": bytes_to_hex(self.root),
            "tree_depth": self.accumulator.depth,
            "capacity": self.capacity,
            "leaf_count": self.leaf_count,
            "total_deposited": self.total_deposited,
            "total_withdrawn": self.total_withdrawn,
            "num_nullifiers": len(self.nullifiers),
            "num_stuck_payouts": len(self.stuck_payouts),
            "root_history_size": len(self.root_history),
            "enabled": self.enabled,
        }
