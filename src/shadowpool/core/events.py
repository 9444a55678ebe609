"""Append-only event log.

Events are the only channel by which a depositor later finds their own
leaf (no identity is stored next to a commitment) and by which operators
reconcile withdrawals with ledger movements.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Union

from shadowpool.utils.encoding import bytes_to_hex


@dataclass(frozen=True)
class DepositEvent:
    pool_id: str
    commitment: bytes
    leaf_index: int
    root: bytes
    timestamp: datetime

    event_type = "deposit"

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "pool_id": self.pool_id,
            "commitment": bytes_to_hex(self.commitment),
            "leaf_index": self.leaf_index,
            "root": bytes_to_hex(self.root),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class WithdrawEvent:
    pool_id: str
    nullifier_hash: bytes
    recipient: str
    amount: int
    fee: int
    timestamp: datetime

    event_type = "withdraw"

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "pool_id": self.pool_id,
            "nullifier_hash": bytes_to_hex(self.nullifier_hash),
            "recipient": self.recipient,
            "amount": self.amount,
            "fee": self.fee,
            "timestamp": self.timestamp.isoformat(),
        }


PoolEvent = Union[DepositEvent, WithdrawEvent]
EventListener = Callable[[PoolEvent], None]


class EventLog:
    """In-process append-only log with optional listeners."""

    def __init__(self):
        self._events: List[PoolEvent] = []
        self._listeners: List[EventListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def append(self, event: PoolEvent) -> None:
        with self._lock:
            self._events.append(event)
        for listener in self._listeners:
            listener(event)

    def events(self, pool_id: Optional[str] = None) -> List[PoolEvent]:
        """Events in emission order, optionally filtered by pool."""
        if pool_id is None:
            return list(self._events)
        return [event for event in self._events if event.pool_id == pool_id]

    def __len__(self) -> int:
        return len(self._events)
