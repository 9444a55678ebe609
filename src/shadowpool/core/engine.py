"""Shielded pool engine: deposit and withdrawal flows.

The engine coordinates the accumulator, root history, nullifier set, proof
verifier and ledger into the accounting protocol of a fixed-denomination
shielded pool.

Transaction Flow:

    DEPOSIT:
        1. Pool must be enabled and have a free leaf
        2. Commitment must not have been deposited before
        3. Ledger moves one denomination from depositor into custody
        4. Commitment inserted into the accumulator, new root pushed
        5. Counters updated, DepositEvent emitted

    WITHDRAWAL (each check a hard gate, first failure aborts):
        1. Recipient names fit the ledger, pool enabled
        2. Nullifier hash not spent
        3. Root is in the root history
        4. Verifier accepts proof for (root, nullifier hash, recipient,
           fee recipient, fee)
        5. Nullifier marked spent
        6. Ledger pays payout to recipient and fee to fee recipient
        7. total_withdrawn updated, WithdrawEvent emitted

Key Invariants:
    - total_deposited == denomination * leaf_count
    - A nullifier hash is accepted at most once
    - Only roots in the history window are accepted

The nullifier is marked spent before funds move. If the ledger then fails,
the withdrawal cannot be replayed; the payout is parked as a stuck payout and
``PayoutFailedError`` is raised so an operator can call ``retry_payout``.

Each public operation holds the pool's lock for its whole duration, which is
the transaction boundary for that pool.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

from shadowpool.config import Settings, get_settings
from shadowpool.core.accumulator import CommitmentAccumulator, MerklePath
from shadowpool.core.events import DepositEvent, EventLog, PoolEvent, WithdrawEvent
from shadowpool.core.fees import (
    U32_MAX,
    U64_MAX,
    checked_add,
    validate_denomination,
    validate_fee_bps,
)
from shadowpool.core.ledger import MAX_ACCOUNT_LENGTH, Ledger
from shadowpool.core.pool import DepositNote, Pool, StuckPayout, derive_pool_id
from shadowpool.core.root_history import RootHistory
from shadowpool.core.verifier import ProofVerifier, PublicInputs
from shadowpool.utils.encoding import bytes_to_hex, ensure_digest, short_hex
from shadowpool.utils.hash import Hasher, Sha256Hasher
from shadowpool.exceptions import (
    AlreadySpentError,
    DuplicateCommitmentError,
    FeeRecipientMismatchError,
    InvalidProofError,
    InvalidRecipientError,
    InvalidRootError,
    PayoutFailedError,
    PayoutNotFoundError,
    PoolExistsError,
    PoolFullError,
    PoolInactiveError,
    PoolNotFoundError,
    StorageError,
    TransferFailedError,
)

logger = logging.getLogger(__name__)

Digest = Union[bytes, str]


def validate_recipient(account: str, name: str = "recipient") -> str:
    """Reject account names the ledger and storage cannot hold."""
    if not isinstance(account, str) or not account:
        raise InvalidRecipientError(f"{name} must be a non-empty string")
    if len(account.encode("utf-8")) > MAX_ACCOUNT_LENGTH:
        raise InvalidRecipientError(f"{name} exceeds {MAX_ACCOUNT_LENGTH} bytes")
    return account


@dataclass(frozen=True)
class DepositReceipt:
    """Receipt for a successful deposit."""

    pool_id: str
    commitment: bytes
    leaf_index: int
    root: bytes
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "pool_id": self.pool_id,
            "commitment": bytes_to_hex(self.commitment),
            "leaf_index": self.leaf_index,
            "root": bytes_to_hex(self.root),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class WithdrawalReceipt:
    """Receipt for a successful withdrawal."""

    pool_id: str
    nullifier_hash: bytes
    recipient: str
    amount_paid: int
    fee: int
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "pool_id": self.pool_id,
            "nullifier_hash": bytes_to_hex(self.nullifier_hash),
            "recipient": self.recipient,
            "amount_paid": self.amount_paid,
            "fee": self.fee,
            "timestamp": self.timestamp.isoformat(),
        }


class ShieldedPoolEngine:
    """
    Commitment/nullifier accounting engine for fixed-denomination pools.

    The hash, the proof verifier and the ledger are injected; the engine
    hard-codes none of them.
    """

    def __init__(
        self,
        ledger: Ledger,
        verifier: ProofVerifier,
        hasher: Optional[Hasher] = None,
        tree_depth: Optional[int] = None,
        root_history_size: Optional[int] = None,
        store=None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize engine with no pools.

        Args:
            ledger: Funds movement collaborator
            verifier: Withdrawal proof verifier
            hasher: Accumulator compression function (SHA-256 by default)
            tree_depth: Accumulator depth for new pools (settings default)
            root_history_size: Accepted root window W (settings default)
            store: Optional DatabaseManager written through after each commit
            settings: Settings override, mostly for tests
        """
        settings = settings or get_settings()

        self.ledger = ledger
        self.verifier = verifier
        self.hasher = hasher if hasher is not None else Sha256Hasher()
        self.tree_depth = tree_depth if tree_depth is not None else settings.tree_depth
        self.root_history_size = (
            root_history_size if root_history_size is not None else settings.root_history_size
        )
        self.default_fee_bps = settings.default_fee_bps
        self.store = store
        self.event_log = EventLog()

        self._pools: Dict[str, Pool] = {}
        self._registry_lock = threading.Lock()

    # ========== POOLS ==========

    def init_pool(
        self,
        denomination: int,
        fee_bps: Optional[int] = None,
        authority: str = "authority",
        fee_recipient: Optional[str] = None,
    ) -> str:
        """
        Create the pool for a denomination.

        Args:
            denomination: Fixed deposit/withdrawal unit
            fee_bps: Withdrawal fee in basis points (settings default)
            authority: Pool administrator identity
            fee_recipient: Fee destination, defaults to the authority

        Returns:
            str: Pool identifier

        Raises:
            InvalidDenominationError: If denomination is not a positive u64
            InvalidFeeError: If fee_bps is outside [0, 10000]
            PoolExistsError: If a pool for this denomination exists
        """
        validate_denomination(denomination)
        fee_bps = validate_fee_bps(self.default_fee_bps if fee_bps is None else fee_bps)

        pool_id = derive_pool_id(denomination)

        with self._registry_lock:
            if pool_id in self._pools:
                raise PoolExistsError(f"Pool for denomination {denomination} already exists")

            accumulator = CommitmentAccumulator(depth=self.tree_depth, hasher=self.hasher)
            root_history = RootHistory(window=self.root_history_size)
            root_history.push(accumulator.root, 0)

            pool = Pool(
                pool_id=pool_id,
                authority=authority,
                denomination=denomination,
                fee_bps=fee_bps,
                fee_recipient=fee_recipient or authority,
                accumulator=accumulator,
                root_history=root_history,
                created_at=datetime.now(timezone.utc),
            )
            self._pools[pool_id] = pool

        logger.info(
            f"Pool {pool_id[:8]} initialized: denomination={denomination}, "
            f"fee_bps={fee_bps}, depth={self.tree_depth}"
        )
        self._persist(pool)
        return pool_id

    def add_pool(self, pool: Pool) -> None:
        """Register an already-built pool, e.g. one loaded from storage."""
        with self._registry_lock:
            if pool.pool_id in self._pools:
                raise PoolExistsError(f"Pool {pool.pool_id} already registered")
            self._pools[pool.pool_id] = pool

    def load_from_store(self) -> List[str]:
        """Load every persisted pool into the engine; returns their ids."""
        if self.store is None:
            return []

        loaded = []
        with self.store.get_session() as session:
            for pool_id in self.store.list_pool_ids(session):
                if pool_id in self._pools:
                    continue
                pool = self.store.load_pool(session, pool_id, hasher=self.hasher)
                self.add_pool(pool)
                loaded.append(pool_id)

        logger.info(f"Loaded {len(loaded)} pools from storage")
        return loaded

    def get_pool(self, pool_id: str) -> Pool:
        pool = self._pools.get(pool_id)
        if pool is None:
            raise PoolNotFoundError(f"Pool not found: {pool_id}")
        return pool

    def list_pools(self) -> List[str]:
        return list(self._pools)

    def get_pool_state(self, pool_id: str) -> dict:
        pool = self.get_pool(pool_id)
        with pool.lock:
            return pool.state()

    # ========== DEPOSIT ==========

    def deposit(self, pool_id: str, commitment: Digest, depositor: str) -> DepositReceipt:
        """
        Lock one denomination under a commitment.

        Args:
            pool_id: Target pool
            commitment: 32-byte commitment (bytes or hex)
            depositor: Ledger account paying the denomination

        Returns:
            DepositReceipt: Assigned leaf index and the new root

        Raises:
            PoolInactiveError: If the pool is disabled
            PoolFullError: If the accumulator is at capacity
            DuplicateCommitmentError: If the commitment was deposited before
            TransferFailedError: If the ledger refuses the transfer
        """
        commitment = ensure_digest(commitment, "commitment")
        pool = self.get_pool(pool_id)

        with pool.lock:
            if not pool.enabled:
                raise PoolInactiveError(f"Pool {pool_id[:8]} is not active")
            if pool.leaf_count >= pool.capacity:
                raise PoolFullError(f"Pool {pool_id[:8]} is full ({pool.capacity} deposits)")
            if commitment in pool.deposits:
                raise DuplicateCommitmentError(
                    f"Commitment {short_hex(commitment)}... already deposited"
                )

            leaf_count = checked_add(pool.leaf_count, 1, U32_MAX, "leaf_count")
            total_deposited = checked_add(
                pool.total_deposited, pool.denomination, U64_MAX, "total_deposited"
            )

            # Nothing below runs unless custody actually received the funds
            self.ledger.transfer(depositor, pool.custody_account, pool.denomination)

            leaf_index, root = pool.accumulator.insert(commitment)
            timestamp = datetime.now(timezone.utc)

            pool.deposits[commitment] = DepositNote(
                commitment=commitment, leaf_index=leaf_index, created_at=timestamp
            )
            pool.leaf_count = leaf_count
            pool.total_deposited = total_deposited
            pool.root_history.push(root, leaf_count)

            event = DepositEvent(
                pool_id=pool_id,
                commitment=commitment,
                leaf_index=leaf_index,
                root=root,
                timestamp=timestamp,
            )
            self.event_log.append(event)

            logger.info(f"Deposit #{leaf_index} into pool {pool_id[:8]}, root {short_hex(root)}")
            self._persist(pool, event)

        return DepositReceipt(
            pool_id=pool_id,
            commitment=commitment,
            leaf_index=leaf_index,
            root=root,
            timestamp=timestamp,
        )

    # ========== WITHDRAWAL ==========

    def withdraw(
        self,
        pool_id: str,
        nullifier_hash: Digest,
        root: Digest,
        recipient: str,
        fee_recipient: str,
        proof: bytes,
    ) -> WithdrawalReceipt:
        """
        Release one denomination (minus fee) against a withdrawal proof.

        Args:
            pool_id: Source pool
            nullifier_hash: Revealed nullifier hash (bytes or hex)
            root: Root the proof was computed against (bytes or hex)
            recipient: Ledger account receiving the payout
            fee_recipient: Must match the pool's configured fee recipient
            proof: Opaque proof bytes for the injected verifier

        Returns:
            WithdrawalReceipt: Amount paid and fee charged

        Raises:
            PoolInactiveError: If the pool is disabled
            FeeRecipientMismatchError: If fee_recipient is not the pool's
            AlreadySpentError: If the nullifier hash was used before
            InvalidRootError: If root is not in the history window
            InvalidRecipientError: If an account name is empty or too long
            InvalidProofError: If the verifier rejects the proof
            PayoutFailedError: If the ledger fails after the nullifier is spent
        """
        nullifier_hash = ensure_digest(nullifier_hash, "nullifier_hash")
        root = ensure_digest(root, "root")
        validate_recipient(recipient, "recipient")
        validate_recipient(fee_recipient, "fee_recipient")
        pool = self.get_pool(pool_id)

        with pool.lock:
            if not pool.enabled:
                raise PoolInactiveError(f"Pool {pool_id[:8]} is not active")
            if fee_recipient != pool.fee_recipient:
                raise FeeRecipientMismatchError(
                    f"Fee recipient {fee_recipient} does not match pool fee recipient"
                )
            if pool.nullifiers.is_spent(nullifier_hash):
                logger.warning(
                    f"Rejected withdrawal from pool {pool_id[:8]}: "
                    f"nullifier {short_hex(nullifier_hash)} already spent"
                )
                raise AlreadySpentError(
                    f"Nullifier {short_hex(nullifier_hash)}... has already been spent"
                )
            if not pool.root_history.contains(root):
                logger.warning(
                    f"Rejected withdrawal from pool {pool_id[:8]}: unknown root {short_hex(root)}"
                )
                raise InvalidRootError(f"Root {short_hex(root)}... is not in the root history")

            split = pool.fee_split()
            public_inputs = PublicInputs(
                root=root,
                nullifier_hash=nullifier_hash,
                recipient=recipient,
                fee_recipient=fee_recipient,
                fee=split.fee,
            )
            if not self.verifier.verify(proof, public_inputs):
                logger.warning(f"Rejected withdrawal from pool {pool_id[:8]}: invalid proof")
                raise InvalidProofError("Proof verification failed")

            total_withdrawn = checked_add(
                pool.total_withdrawn, pool.denomination, pool.total_deposited, "total_withdrawn"
            )

            timestamp = datetime.now(timezone.utc)
            pool.nullifiers.mark_spent(
                nullifier_hash,
                root=root,
                recipient=recipient,
                amount=split.payout,
                spent_at=timestamp,
            )

            pending = StuckPayout(
                nullifier_hash=nullifier_hash,
                recipient=recipient,
                fee_recipient=fee_recipient,
                payout=split.payout,
                fee=split.fee,
                created_at=timestamp,
            )
            try:
                self._release_funds(pool, pending)
            except TransferFailedError as e:
                pending.last_error = str(e)
                pool.stuck_payouts[nullifier_hash] = pending
                logger.error(
                    f"Payout stuck in pool {pool_id[:8]} for nullifier "
                    f"{short_hex(nullifier_hash)}: {e}",
                    exc_info=True,
                )
                self._persist_stuck(pool)
                raise PayoutFailedError(
                    f"Nullifier spent but payout failed: {e}",
                    nullifier_hash=nullifier_hash,
                    recipient=recipient,
                    payout=split.payout,
                    fee=split.fee,
                    cause=e,
                ) from e

            pool.total_withdrawn = total_withdrawn
            event = self._record_withdrawal(pool, pending)

        return WithdrawalReceipt(
            pool_id=pool_id,
            nullifier_hash=nullifier_hash,
            recipient=recipient,
            amount_paid=split.payout,
            fee=split.fee,
            timestamp=event.timestamp,
        )

    def _release_funds(self, pool: Pool, pending: StuckPayout) -> None:
        """Run whichever transfer legs of a payout are still outstanding."""
        if not pending.payout_sent:
            if pending.payout > 0:
                self.ledger.transfer(pool.custody_account, pending.recipient, pending.payout)
            pending.payout_sent = True

        if pending.fee > 0:
            self.ledger.transfer(pool.custody_account, pending.fee_recipient, pending.fee)

    def _record_withdrawal(self, pool: Pool, pending: StuckPayout) -> WithdrawEvent:
        event = WithdrawEvent(
            pool_id=pool.pool_id,
            nullifier_hash=pending.nullifier_hash,
            recipient=pending.recipient,
            amount=pending.payout,
            fee=pending.fee,
            timestamp=datetime.now(timezone.utc),
        )
        self.event_log.append(event)
        logger.info(
            f"Withdrawal from pool {pool.pool_id[:8]}: {pending.payout} paid, fee {pending.fee}"
        )
        self._persist(pool, event)
        return event

    # ========== STUCK PAYOUTS ==========

    def stuck_payouts(self, pool_id: str) -> List[StuckPayout]:
        """Payouts whose nullifier is spent but funds were not released."""
        pool = self.get_pool(pool_id)
        with pool.lock:
            return list(pool.stuck_payouts.values())

    def retry_payout(self, pool_id: str, nullifier_hash: Digest) -> WithdrawalReceipt:
        """
        Re-attempt the outstanding transfers of a stuck payout.

        Raises:
            PayoutNotFoundError: If nothing is stuck for this nullifier hash
            PayoutFailedError: If the ledger fails again
        """
        nullifier_hash = ensure_digest(nullifier_hash, "nullifier_hash")
        pool = self.get_pool(pool_id)

        with pool.lock:
            pending = pool.stuck_payouts.get(nullifier_hash)
            if pending is None:
                raise PayoutNotFoundError(
                    f"No stuck payout for nullifier {short_hex(nullifier_hash)}..."
                )

            total_withdrawn = checked_add(
                pool.total_withdrawn, pool.denomination, pool.total_deposited, "total_withdrawn"
            )
            pending.attempts += 1
            try:
                self._release_funds(pool, pending)
            except TransferFailedError as e:
                pending.last_error = str(e)
                logger.error(
                    f"Retry {pending.attempts} failed for nullifier {short_hex(nullifier_hash)}: {e}"
                )
                self._persist_stuck(pool)
                raise PayoutFailedError(
                    f"Payout retry failed: {e}",
                    nullifier_hash=nullifier_hash,
                    recipient=pending.recipient,
                    payout=pending.payout,
                    fee=pending.fee,
                    cause=e,
                ) from e

            del pool.stuck_payouts[nullifier_hash]
            pool.total_withdrawn = total_withdrawn
            event = self._record_withdrawal(pool, pending)

        return WithdrawalReceipt(
            pool_id=pool_id,
            nullifier_hash=nullifier_hash,
            recipient=pending.recipient,
            amount_paid=pending.payout,
            fee=pending.fee,
            timestamp=event.timestamp,
        )

    # ========== QUERIES ==========

    def get_merkle_path(self, pool_id: str, leaf_index: int) -> MerklePath:
        """Authentication path for a leaf against the current root."""
        pool = self.get_pool(pool_id)
        with pool.lock:
            return pool.accumulator.get_path(leaf_index)

    def is_known_root(self, pool_id: str, root: Digest) -> bool:
        pool = self.get_pool(pool_id)
        with pool.lock:
            return pool.root_history.contains(ensure_digest(root, "root"))

    def is_spent(self, pool_id: str, nullifier_hash: Digest) -> bool:
        pool = self.get_pool(pool_id)
        return pool.nullifiers.is_spent(ensure_digest(nullifier_hash, "nullifier_hash"))

    def events(self, pool_id: Optional[str] = None) -> List[PoolEvent]:
        return self.event_log.events(pool_id)

    def _persist(self, pool: Pool, event: Optional[PoolEvent] = None) -> None:
        if self.store is not None:
            self.store.persist(pool, event)

    def _persist_stuck(self, pool: Pool) -> None:
        """Write stuck payout state; a storage failure is logged, not raised."""
        try:
            self._persist(pool)
        except StorageError as e:
            logger.error(f"Could not persist stuck payout state for pool {pool.pool_id[:8]}: {e}")
