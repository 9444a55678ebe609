"""Ledger collaborator: the custody layer that actually moves value.

The engine never touches balances itself. It asks a ``Ledger`` to move an
amount from one account to another and treats any ``TransferFailedError`` as
a refusal. ``InMemoryLedger`` is a reference implementation used by the HTTP
binding and the tests.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Set

from shadowpool.exceptions import InsufficientFundsError, TransferRejectedError

logger = logging.getLogger(__name__)

# Matches the String(255) account columns in storage
MAX_ACCOUNT_LENGTH = 255


class Ledger(Protocol):
    """Funds movement capability consumed by the engine."""

    def transfer(self, source: str, destination: str, amount: int) -> None:
        """Move amount from source to destination or raise TransferFailedError."""
        ...


def custody_account(pool_id: str) -> str:
    """Ledger account holding a pool's locked funds."""
    return f"pool:{pool_id}"


@dataclass(frozen=True)
class TransferRecord:
    source: str
    destination: str
    amount: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryLedger:
    """
    Dictionary-backed ledger.

    Accounts are created implicitly with a zero balance. Accounts listed in
    ``frozen`` reject every transfer touching them, which is how tests model
    a destination that cannot receive funds.
    """

    def __init__(self, balances: Optional[Dict[str, int]] = None):
        self._balances: Dict[str, int] = dict(balances or {})
        self._lock = threading.Lock()
        self.frozen: Set[str] = set()
        self.history: List[TransferRecord] = []

    def credit(self, account: str, amount: int) -> None:
        """Mint funds into an account (test and faucet helper)."""
        if amount < 0:
            raise ValueError("Credit amount must be non-negative")
        with self._lock:
            self._balances[account] = self._balances.get(account, 0) + amount

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def transfer(self, source: str, destination: str, amount: int) -> None:
        if amount <= 0:
            raise TransferRejectedError(f"Transfer amount must be positive, got {amount}")
        if source == destination:
            raise TransferRejectedError("Source and destination must differ")

        with self._lock:
            if source in self.frozen or destination in self.frozen:
                raise TransferRejectedError(
                    f"Account frozen: {source if source in self.frozen else destination}"
                )

            available = self._balances.get(source, 0)
            if available < amount:
                raise InsufficientFundsError(
                    f"Account {source} holds {available}, needs {amount}"
                )

            self._balances[source] = available - amount
            self._balances[destination] = self._balances.get(destination, 0) + amount
            self.history.append(TransferRecord(source, destination, amount))

        logger.debug(f"Transferred {amount} from {source} to {destination}")

    def __repr__(self) -> str:
        return f"InMemoryLedger(accounts={len(self._balances)})"
