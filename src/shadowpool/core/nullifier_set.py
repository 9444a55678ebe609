"""Spent-nullifier registry.

Each deposit can be withdrawn once. The withdrawer reveals a nullifier hash,
a deterministic function of the secret behind their commitment; the pool
remembers every accepted nullifier hash forever and refuses to see one twice.

Key properties:
  - Keyed directly by nullifier hash, the only value a withdrawer reveals
  - Nullifier hashes cannot be tied back to commitments without the secret
  - Records are created on the first accepted withdrawal and never removed
  - ``mark_spent`` is a single check-and-set under a lock
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional

from shadowpool.exceptions import AlreadySpentError
from shadowpool.utils.encoding import short_hex


@dataclass
class NullifierRecord:
    """
    Record of a spent nullifier.

    Tracks when and against which root the spend was accepted.
    """

    nullifier_hash: bytes
    root: Optional[bytes] = None  # Root the withdrawal proof referenced
    recipient: Optional[str] = None
    amount: int = 0
    spent_at: Optional[datetime] = None
    spent: bool = True

    def to_dict(self) -> dict:
        return {
            "nullifier_hash": self.nullifier_hash.hex(),
            "root": self.root.hex() if self.root else None,
            "recipient": self.recipient,
            "amount": self.amount,
            "spent_at": self.spent_at.isoformat() if self.spent_at else None,
            "spent": self.spent,
        }


class NullifierSet:
    """Maintains the set of spent nullifier hashes for one pool."""

    def __init__(self):
        self._records: Dict[bytes, NullifierRecord] = {}
        self._lock = threading.Lock()

    def is_spent(self, nullifier_hash: bytes) -> bool:
        """Check if a nullifier hash has been spent."""
        return nullifier_hash in self._records

    def mark_spent(
        self,
        nullifier_hash: bytes,
        root: Optional[bytes] = None,
        recipient: Optional[str] = None,
        amount: int = 0,
        spent_at: Optional[datetime] = None,
    ) -> NullifierRecord:
        """
        Register a nullifier hash as spent.

        The membership check and the insert happen under one lock, so two
        callers racing on the same hash cannot both succeed.

        Raises:
            AlreadySpentError: If the nullifier hash is already registered
        """
        with self._lock:
            if nullifier_hash in self._records:
                raise AlreadySpentError(
                    f"Nullifier {short_hex(nullifier_hash)}... has already been spent"
                )

            record = NullifierRecord(
                nullifier_hash=nullifier_hash,
                root=root,
                recipient=recipient,
                amount=amount,
                spent_at=spent_at or datetime.now(timezone.utc),
            )
            self._records[nullifier_hash] = record
            return record

    def get_record(self, nullifier_hash: bytes) -> Optional[NullifierRecord]:
        """Get spending record for a nullifier hash."""
        return self._records.get(nullifier_hash)

    def records(self) -> List[NullifierRecord]:
        return list(self._records.values())

    @property
    def size(self) -> int:
        """Number of spent nullifiers."""
        return len(self._records)

    def __contains__(self, nullifier_hash: bytes) -> bool:
        return self.is_spent(nullifier_hash)

    def __iter__(self) -> Iterator[bytes]:
        return iter(list(self._records))

    def __len__(self) -> int:
        return len(self._records)
