#!/usr/bin/env python3
"""
Quick start guide for the Shadow Pool engine.

Run this to see a complete deposit/withdraw cycle.
"""

import os
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shadowpool.config import Settings
from shadowpool.core.engine import ShieldedPoolEngine
from shadowpool.core.fees import DENOMINATION_1_SOL
from shadowpool.core.ledger import InMemoryLedger
from shadowpool.core.verifier import PublicInputs, TranscriptVerifier, make_transcript_proof
from shadowpool.exceptions import AlreadySpentError
from shadowpool.utils.hash import Sha256Hasher, compute_commitment, compute_nullifier_hash


def main():
    """Run a simple example of the Shadow Pool engine."""

    print("=" * 70)
    print("SHADOW POOL QUICK START EXAMPLE")
    print("=" * 70)
    print()

    # Step 1: Initialize the engine and a 1 SOL pool
    print("Step 1: Initialize a 1 SOL pool")
    print("-" * 70)
    ledger = InMemoryLedger({"alice": 5 * DENOMINATION_1_SOL})
    engine = ShieldedPoolEngine(
        ledger=ledger,
        verifier=TranscriptVerifier(),
        settings=Settings(_env_file=None, tree_depth=8),
    )
    pool_id = engine.init_pool(DENOMINATION_1_SOL, fee_bps=30, authority="operator")
    print(f"✓ Pool {pool_id[:16]}... created (256 deposits, 30 bps fee)")
    print()

    # Step 2: Alice builds a note and deposits its commitment
    print("Step 2: Alice deposits 1 SOL")
    print("-" * 70)
    hasher = Sha256Hasher()
    secret, nullifier = os.urandom(32), os.urandom(32)
    commitment = compute_commitment(hasher, secret, nullifier)
    deposit = engine.deposit(pool_id, commitment, depositor="alice")
    print(f"✓ Commitment {commitment.hex()[:32]}... at leaf {deposit.leaf_index}")
    print(f"  New root: {deposit.root.hex()[:32]}...")
    print()

    # Step 3: Alice withdraws to a fresh address
    print("Step 3: Withdraw to a fresh address")
    print("-" * 70)
    nullifier_hash = compute_nullifier_hash(hasher, nullifier)
    pool = engine.get_pool(pool_id)
    proof = make_transcript_proof(
        PublicInputs(
            root=deposit.root,
            nullifier_hash=nullifier_hash,
            recipient="fresh-address",
            fee_recipient=pool.fee_recipient,
            fee=pool.fee_split().fee,
        )
    )
    receipt = engine.withdraw(
        pool_id, nullifier_hash, deposit.root, "fresh-address", pool.fee_recipient, proof
    )
    print(f"✓ Paid {receipt.amount_paid} lamports, fee {receipt.fee}")
    print()

    # Step 4: Replaying the nullifier fails
    print("Step 4: Replay the same withdrawal")
    print("-" * 70)
    try:
        engine.withdraw(
            pool_id, nullifier_hash, deposit.root, "fresh-address", pool.fee_recipient, proof
        )
    except AlreadySpentError as e:
        print(f"✓ Rejected: {e}")
    print()

    state = engine.get_pool_state(pool_id)
    print(f"Deposited: {state['total_deposited']}  Withdrawn: {state['total_withdrawn']}")


if __name__ == "__main__":
    main()
