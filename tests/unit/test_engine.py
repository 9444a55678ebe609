"""Tests for the shielded pool engine's deposit and withdrawal flows."""

import os

import pytest

from shadowpool.core.engine import ShieldedPoolEngine
from shadowpool.core.events import DepositEvent, WithdrawEvent
from shadowpool.core.fees import (
    DENOMINATION_05_SOL,
    DENOMINATION_1_SOL,
    STANDARD_DENOMINATIONS,
)
from shadowpool.core.ledger import custody_account
from shadowpool.core.pool import derive_pool_id
from shadowpool.core.verifier import TranscriptVerifier
from shadowpool.exceptions import (
    AlreadySpentError,
    DuplicateCommitmentError,
    FeeRecipientMismatchError,
    InsufficientFundsError,
    InvalidDenominationError,
    InvalidFeeError,
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
    TransferRejectedError,
)

from conftest import Note, make_proof


class RejectAllVerifier:
    def verify(self, proof, public_inputs):
        return False


class FlakyStore:
    """Store whose writes start failing once `down` is set."""

    def __init__(self):
        self.down = False
        self.writes = 0

    def persist(self, pool, event=None):
        if self.down:
            raise StorageError("db down")
        self.writes += 1


class RecordingVerifier:
    """Accepts everything and remembers what it was asked."""

    def __init__(self):
        self.calls = []

    def verify(self, proof, public_inputs):
        self.calls.append((proof, public_inputs))
        return True


class TestInitPool:

    def test_pool_created_with_config(self, engine):
        pool_id = engine.init_pool(DENOMINATION_1_SOL, fee_bps=30, authority="operator")
        pool = engine.get_pool(pool_id)

        assert pool_id == derive_pool_id(DENOMINATION_1_SOL)
        assert pool.denomination == DENOMINATION_1_SOL
        assert pool.fee_bps == 30
        assert pool.fee_recipient == "operator"
        assert pool.enabled
        assert pool.leaf_count == 0
        assert pool.total_deposited == 0
        assert pool.root == pool.accumulator.empty_root
        assert pool.root_history.contains(pool.root)

    def test_explicit_fee_recipient(self, engine):
        pool_id = engine.init_pool(DENOMINATION_1_SOL, authority="operator", fee_recipient="relayer")
        assert engine.get_pool(pool_id).fee_recipient == "relayer"

    def test_default_fee_from_settings(self, engine):
        pool_id = engine.init_pool(DENOMINATION_1_SOL, authority="operator")
        assert engine.get_pool(pool_id).fee_bps == 30

    def test_one_pool_per_denomination(self, engine):
        engine.init_pool(DENOMINATION_1_SOL, authority="operator")
        with pytest.raises(PoolExistsError):
            engine.init_pool(DENOMINATION_1_SOL, authority="someone-else")

    def test_standard_denominations_get_distinct_pools(self, engine):
        ids = {engine.init_pool(d, authority="operator") for d in STANDARD_DENOMINATIONS}
        assert len(ids) == len(STANDARD_DENOMINATIONS)
        assert sorted(engine.list_pools()) == sorted(ids)

    def test_invalid_configuration(self, engine):
        with pytest.raises(InvalidDenominationError):
            engine.init_pool(0, authority="operator")
        with pytest.raises(InvalidFeeError):
            engine.init_pool(DENOMINATION_1_SOL, fee_bps=10_001, authority="operator")

    def test_unknown_pool(self, engine):
        with pytest.raises(PoolNotFoundError):
            engine.get_pool("missing")
        with pytest.raises(PoolNotFoundError):
            engine.deposit("missing", os.urandom(32), depositor="alice")


class TestDeposit:

    def test_deposit_assigns_sequential_leaves(self, engine, pool_id):
        first = engine.deposit(pool_id, Note.generate().commitment, depositor="alice")
        second = engine.deposit(pool_id, Note.generate().commitment, depositor="bob")

        assert first.leaf_index == 0
        assert second.leaf_index == 1
        assert first.root != second.root
        assert engine.get_pool(pool_id).root == second.root

    def test_deposit_moves_funds_into_custody(self, engine, ledger, pool_id, note):
        before = ledger.balance_of("alice")
        engine.deposit(pool_id, note.commitment, depositor="alice")

        assert ledger.balance_of("alice") == before - DENOMINATION_05_SOL
        assert ledger.balance_of(custody_account(pool_id)) == DENOMINATION_05_SOL

    def test_counters_track_deposits(self, engine, pool_id):
        pool = engine.get_pool(pool_id)
        for _ in range(5):
            engine.deposit(pool_id, Note.generate().commitment, depositor="alice")
            assert pool.total_deposited == pool.denomination * pool.leaf_count
            assert pool.check_invariants()
        assert pool.leaf_count == 5

    def test_hex_commitment_accepted(self, engine, pool_id, note):
        receipt = engine.deposit(pool_id, "0x" + note.commitment.hex(), depositor="alice")
        assert receipt.commitment == note.commitment

    def test_malformed_commitment(self, engine, pool_id):
        with pytest.raises(ValueError):
            engine.deposit(pool_id, b"short", depositor="alice")

    def test_duplicate_commitment_rejected(self, engine, ledger, pool_id, note):
        engine.deposit(pool_id, note.commitment, depositor="alice")
        balance = ledger.balance_of("bob")

        with pytest.raises(DuplicateCommitmentError):
            engine.deposit(pool_id, note.commitment, depositor="bob")
        assert ledger.balance_of("bob") == balance
        assert engine.get_pool(pool_id).leaf_count == 1

    def test_inactive_pool_rejects_deposit(self, engine, pool_id, note):
        engine.get_pool(pool_id).enabled = False
        with pytest.raises(PoolInactiveError):
            engine.deposit(pool_id, note.commitment, depositor="alice")

    def test_full_pool_rejects_deposit(self, engine, pool_id):
        pool = engine.get_pool(pool_id)
        for _ in range(pool.capacity):
            engine.deposit(pool_id, Note.generate().commitment, depositor="alice")

        with pytest.raises(PoolFullError):
            engine.deposit(pool_id, Note.generate().commitment, depositor="bob")
        assert pool.leaf_count == pool.capacity == 16

    def test_failed_transfer_leaves_state_untouched(self, engine, pool_id, note):
        pool = engine.get_pool(pool_id)
        root = pool.root

        with pytest.raises(InsufficientFundsError):
            engine.deposit(pool_id, note.commitment, depositor="pauper")

        assert pool.root == root
        assert pool.leaf_count == 0
        assert pool.total_deposited == 0
        assert note.commitment not in pool.deposits
        assert len(pool.root_history) == 1
        assert engine.events(pool_id) == []

    def test_deposit_emits_event(self, engine, pool_id, note):
        receipt = engine.deposit(pool_id, note.commitment, depositor="alice")
        (event,) = engine.events(pool_id)

        assert isinstance(event, DepositEvent)
        assert event.commitment == note.commitment
        assert event.leaf_index == receipt.leaf_index
        assert event.root == receipt.root

    def test_deposit_root_enters_history(self, engine, pool_id, note):
        receipt = engine.deposit(pool_id, note.commitment, depositor="alice")
        assert engine.is_known_root(pool_id, receipt.root)


class TestWithdraw:

    @pytest.fixture
    def deposited(self, engine, pool_id, note):
        receipt = engine.deposit(pool_id, note.commitment, depositor="alice")
        return receipt

    def withdraw(self, engine, pool_id, note, root, recipient="carol", proof=None):
        proof = proof if proof is not None else make_proof(
            engine, pool_id, note.nullifier_hash, root, recipient
        )
        return engine.withdraw(
            pool_id,
            nullifier_hash=note.nullifier_hash,
            root=root,
            recipient=recipient,
            fee_recipient="operator",
            proof=proof,
        )

    def test_successful_withdrawal_pays_out(self, engine, ledger, pool_id, note, deposited):
        carol_before = ledger.balance_of("carol")
        receipt = self.withdraw(engine, pool_id, note, deposited.root)

        assert receipt.amount_paid == 498_500_000
        assert receipt.fee == 1_500_000
        assert ledger.balance_of("carol") == carol_before + 498_500_000
        assert ledger.balance_of("operator") == 1_500_000
        assert ledger.balance_of(custody_account(pool_id)) == 0

        pool = engine.get_pool(pool_id)
        assert pool.total_withdrawn == DENOMINATION_05_SOL
        assert engine.is_spent(pool_id, note.nullifier_hash)

    def test_second_withdrawal_already_spent(self, engine, pool_id, note, deposited):
        self.withdraw(engine, pool_id, note, deposited.root)
        with pytest.raises(AlreadySpentError):
            self.withdraw(engine, pool_id, note, deposited.root)

    def test_already_spent_checked_before_proof(self, engine, pool_id, note, deposited):
        self.withdraw(engine, pool_id, note, deposited.root)
        with pytest.raises(AlreadySpentError):
            self.withdraw(engine, pool_id, note, deposited.root, proof=b"garbage")

    def test_unknown_root_rejected_even_with_valid_proof(self, engine, pool_id, note, deposited):
        bogus_root = os.urandom(32)
        with pytest.raises(InvalidRootError):
            self.withdraw(engine, pool_id, note, bogus_root)
        assert not engine.is_spent(pool_id, note.nullifier_hash)

    def test_invalid_proof_rejected(self, engine, pool_id, note, deposited):
        with pytest.raises(InvalidProofError):
            self.withdraw(engine, pool_id, note, deposited.root, proof=os.urandom(32))
        assert not engine.is_spent(pool_id, note.nullifier_hash)

    def test_proof_bound_to_recipient(self, engine, pool_id, note, deposited):
        proof = make_proof(engine, pool_id, note.nullifier_hash, deposited.root, "carol")
        with pytest.raises(InvalidProofError):
            self.withdraw(engine, pool_id, note, deposited.root, recipient="mallory", proof=proof)

    def test_inactive_pool_rejected(self, engine, pool_id, note, deposited):
        engine.get_pool(pool_id).enabled = False
        with pytest.raises(PoolInactiveError):
            self.withdraw(engine, pool_id, note, deposited.root)

    def test_fee_recipient_must_match(self, engine, pool_id, note, deposited):
        proof = make_proof(
            engine, pool_id, note.nullifier_hash, deposited.root, "carol", fee_recipient="thief"
        )
        with pytest.raises(FeeRecipientMismatchError):
            engine.withdraw(
                pool_id,
                nullifier_hash=note.nullifier_hash,
                root=deposited.root,
                recipient="carol",
                fee_recipient="thief",
                proof=proof,
            )
        assert not engine.is_spent(pool_id, note.nullifier_hash)

    @pytest.mark.parametrize("recipient", ["", "r" * 70_000, "\u00e9" * 128])
    def test_unusable_recipient_rejected_up_front(
        self, engine, pool_id, note, deposited, recipient
    ):
        with pytest.raises(InvalidRecipientError):
            self.withdraw(engine, pool_id, note, deposited.root, recipient=recipient, proof=b"p")
        assert not engine.is_spent(pool_id, note.nullifier_hash)

    def test_oversized_fee_recipient_rejected(self, engine, pool_id, note, deposited):
        with pytest.raises(InvalidRecipientError):
            engine.withdraw(
                pool_id, note.nullifier_hash, deposited.root, "carol", "o" * 256, b"p"
            )

    def test_stale_root_within_window_accepted(self, engine, pool_id, note, deposited):
        for _ in range(3):
            engine.deposit(pool_id, Note.generate().commitment, depositor="bob")
        receipt = self.withdraw(engine, pool_id, note, deposited.root)
        assert receipt.amount_paid == 498_500_000

    def test_root_evicted_from_window_rejected(self, engine, pool_id, note, deposited):
        # window is 5: five more deposits push the deposit's root out
        for _ in range(5):
            engine.deposit(pool_id, Note.generate().commitment, depositor="bob")
        with pytest.raises(InvalidRootError):
            self.withdraw(engine, pool_id, note, deposited.root)

    def test_verifier_sees_public_inputs(self, ledger, settings, note):
        verifier = RecordingVerifier()
        engine = ShieldedPoolEngine(ledger=ledger, verifier=verifier, settings=settings)
        pool_id = engine.init_pool(DENOMINATION_05_SOL, fee_bps=30, authority="operator")
        receipt = engine.deposit(pool_id, note.commitment, depositor="alice")

        engine.withdraw(pool_id, note.nullifier_hash, receipt.root, "carol", "operator", b"p")

        ((proof, inputs),) = verifier.calls
        assert proof == b"p"
        assert inputs.root == receipt.root
        assert inputs.nullifier_hash == note.nullifier_hash
        assert inputs.recipient == "carol"
        assert inputs.fee_recipient == "operator"
        assert inputs.fee == 1_500_000

    def test_reject_all_verifier(self, ledger, settings, note):
        engine = ShieldedPoolEngine(ledger=ledger, verifier=RejectAllVerifier(), settings=settings)
        pool_id = engine.init_pool(DENOMINATION_05_SOL, authority="operator")
        receipt = engine.deposit(pool_id, note.commitment, depositor="alice")
        with pytest.raises(InvalidProofError):
            engine.withdraw(pool_id, note.nullifier_hash, receipt.root, "carol", "operator", b"p")

    def test_zero_fee_pays_full_denomination(self, engine, ledger, note):
        pool_id = engine.init_pool(DENOMINATION_1_SOL, fee_bps=0, authority="operator")
        receipt = engine.deposit(pool_id, note.commitment, depositor="alice")

        result = self.withdraw(engine, pool_id, note, receipt.root)
        assert result.fee == 0
        assert result.amount_paid == DENOMINATION_1_SOL
        assert ledger.balance_of("operator") == 0

    def test_withdraw_emits_event(self, engine, pool_id, note, deposited):
        self.withdraw(engine, pool_id, note, deposited.root)
        event = engine.events(pool_id)[-1]

        assert isinstance(event, WithdrawEvent)
        assert event.nullifier_hash == note.nullifier_hash
        assert event.recipient == "carol"
        assert event.amount == 498_500_000


class TestStuckPayouts:

    @pytest.fixture
    def spent_but_stuck(self, engine, ledger, pool_id, note):
        receipt = engine.deposit(pool_id, note.commitment, depositor="alice")
        ledger.frozen.add("carol")
        proof = make_proof(engine, pool_id, note.nullifier_hash, receipt.root, "carol")

        with pytest.raises(PayoutFailedError) as exc_info:
            engine.withdraw(pool_id, note.nullifier_hash, receipt.root, "carol", "operator", proof)
        return exc_info.value

    def test_payout_failure_is_distinct_and_spends_nullifier(
        self, engine, pool_id, note, spent_but_stuck
    ):
        assert isinstance(spent_but_stuck.cause, TransferRejectedError)
        assert spent_but_stuck.nullifier_hash == note.nullifier_hash
        assert spent_but_stuck.payout == 498_500_000
        assert engine.is_spent(pool_id, note.nullifier_hash)

        pool = engine.get_pool(pool_id)
        assert pool.total_withdrawn == 0
        (stuck,) = engine.stuck_payouts(pool_id)
        assert stuck.recipient == "carol"
        assert not stuck.payout_sent

    def test_stuck_nullifier_cannot_be_replayed(self, engine, pool_id, note, spent_but_stuck):
        root = engine.get_pool(pool_id).root
        proof = make_proof(engine, pool_id, note.nullifier_hash, root, "dave")
        with pytest.raises(AlreadySpentError):
            engine.withdraw(pool_id, note.nullifier_hash, root, "dave", "operator", proof)

    def test_retry_completes_payout(self, engine, ledger, pool_id, note, spent_but_stuck):
        ledger.frozen.discard("carol")
        receipt = engine.retry_payout(pool_id, note.nullifier_hash)

        assert receipt.amount_paid == 498_500_000
        assert ledger.balance_of("operator") == 1_500_000
        assert engine.stuck_payouts(pool_id) == []
        assert engine.get_pool(pool_id).total_withdrawn == DENOMINATION_05_SOL
        assert isinstance(engine.events(pool_id)[-1], WithdrawEvent)

    def test_retry_failure_keeps_payout_parked(self, engine, pool_id, note, spent_but_stuck):
        with pytest.raises(PayoutFailedError):
            engine.retry_payout(pool_id, note.nullifier_hash)
        (stuck,) = engine.stuck_payouts(pool_id)
        assert stuck.attempts == 2

    def test_fee_leg_failure_only_retries_fee(self, engine, ledger, note):
        pool_id = engine.init_pool(DENOMINATION_1_SOL, fee_bps=30, authority="operator")
        receipt = engine.deposit(pool_id, note.commitment, depositor="alice")
        ledger.frozen.add("operator")
        proof = make_proof(engine, pool_id, note.nullifier_hash, receipt.root, "carol")

        carol_before = ledger.balance_of("carol")
        with pytest.raises(PayoutFailedError):
            engine.withdraw(pool_id, note.nullifier_hash, receipt.root, "carol", "operator", proof)
        assert ledger.balance_of("carol") == carol_before + 997_000_000

        ledger.frozen.discard("operator")
        engine.retry_payout(pool_id, note.nullifier_hash)
        assert ledger.balance_of("carol") == carol_before + 997_000_000
        assert ledger.balance_of("operator") == 3_000_000

    def test_retry_unknown_payout(self, engine, pool_id):
        with pytest.raises(PayoutNotFoundError):
            engine.retry_payout(pool_id, os.urandom(32))


class TestQueries:

    def test_pool_state(self, engine, pool_id, note):
        engine.deposit(pool_id, note.commitment, depositor="alice")
        state = engine.get_pool_state(pool_id)

        assert state["leaf_count"] == 1
        assert state["total_deposited"] == DENOMINATION_05_SOL
        assert state["capacity"] == 16
        assert state["root"].startswith("0x")

    def test_merkle_path_verifies_against_root(self, engine, pool_id, note):
        receipt = engine.deposit(pool_id, note.commitment, depositor="alice")
        path = engine.get_merkle_path(pool_id, receipt.leaf_index)
        assert path.root == receipt.root
        assert engine.get_pool(pool_id).accumulator.verify(note.commitment, path)


class TestStuckPayoutsWithFailingStore:

    @pytest.fixture
    def store(self):
        return FlakyStore()

    @pytest.fixture
    def stored_engine(self, ledger, settings, store):
        return ShieldedPoolEngine(
            ledger=ledger, verifier=TranscriptVerifier(), settings=settings, store=store
        )

    def test_payout_failure_still_reported_when_store_is_down(
        self, stored_engine, ledger, store, note
    ):
        pool_id = stored_engine.init_pool(DENOMINATION_05_SOL, authority="operator")
        receipt = stored_engine.deposit(pool_id, note.commitment, depositor="alice")
        proof = make_proof(stored_engine, pool_id, note.nullifier_hash, receipt.root, "carol")
        ledger.frozen.add("carol")
        store.down = True

        with pytest.raises(PayoutFailedError) as exc_info:
            stored_engine.withdraw(
                pool_id, note.nullifier_hash, receipt.root, "carol", "operator", proof
            )
        assert exc_info.value.nullifier_hash == note.nullifier_hash
        assert exc_info.value.payout == 498_500_000
        assert len(stored_engine.stuck_payouts(pool_id)) == 1

    def test_retry_failure_still_reported_when_store_is_down(
        self, stored_engine, ledger, store, note
    ):
        pool_id = stored_engine.init_pool(DENOMINATION_05_SOL, authority="operator")
        receipt = stored_engine.deposit(pool_id, note.commitment, depositor="alice")
        proof = make_proof(stored_engine, pool_id, note.nullifier_hash, receipt.root, "carol")
        ledger.frozen.add("carol")
        with pytest.raises(PayoutFailedError):
            stored_engine.withdraw(
                pool_id, note.nullifier_hash, receipt.root, "carol", "operator", proof
            )

        store.down = True
        with pytest.raises(PayoutFailedError):
            stored_engine.retry_payout(pool_id, note.nullifier_hash)
        (stuck,) = stored_engine.stuck_payouts(pool_id)
        assert stuck.attempts == 2


class TestCustodyBalance:

    def test_matches_ledger_through_partial_payout(self, engine, ledger, note):
        pool_id = engine.init_pool(DENOMINATION_1_SOL, fee_bps=30, authority="operator")
        pool = engine.get_pool(pool_id)
        receipt = engine.deposit(pool_id, note.commitment, depositor="alice")
        assert pool.custody_balance == ledger.balance_of(pool.custody_account)

        # recipient leg succeeds, fee leg fails
        ledger.frozen.add("operator")
        proof = make_proof(engine, pool_id, note.nullifier_hash, receipt.root, "carol")
        with pytest.raises(PayoutFailedError):
            engine.withdraw(pool_id, note.nullifier_hash, receipt.root, "carol", "operator", proof)
        assert pool.custody_balance == ledger.balance_of(pool.custody_account) == 3_000_000

        ledger.frozen.discard("operator")
        engine.retry_payout(pool_id, note.nullifier_hash)
        assert pool.custody_balance == ledger.balance_of(pool.custody_account) == 0
