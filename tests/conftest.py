"""Pytest configuration and fixtures."""

import os
import sys
from dataclasses import dataclass
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from shadowpool.config import Settings
from shadowpool.core.engine import ShieldedPoolEngine
from shadowpool.core.fees import DENOMINATION_05_SOL, DENOMINATION_5_SOL
from shadowpool.core.ledger import InMemoryLedger
from shadowpool.core.verifier import PublicInputs, TranscriptVerifier, make_transcript_proof
from shadowpool.utils.hash import Sha256Hasher, compute_commitment, compute_nullifier_hash

FUNDED_ACCOUNTS = ("alice", "bob", "carol")


@dataclass
class Note:
    """Depositor-side secret material and its public derivations."""

    secret: bytes
    nullifier: bytes
    commitment: bytes
    nullifier_hash: bytes

    @classmethod
    def generate(cls, hasher=None) -> "Note":
        hasher = hasher or Sha256Hasher()
        secret = os.urandom(32)
        nullifier = os.urandom(32)
        return cls(
            secret=secret,
            nullifier=nullifier,
            commitment=compute_commitment(hasher, secret, nullifier),
            nullifier_hash=compute_nullifier_hash(hasher, nullifier),
        )


def make_proof(engine, pool_id, nullifier_hash, root, recipient, fee_recipient=None):
    """Proof the TranscriptVerifier accepts for this withdrawal."""
    pool = engine.get_pool(pool_id)
    inputs = PublicInputs(
        root=root,
        nullifier_hash=nullifier_hash,
        recipient=recipient,
        fee_recipient=fee_recipient or pool.fee_recipient,
        fee=pool.fee_split().fee,
    )
    return make_transcript_proof(inputs)


@pytest.fixture
def settings():
    """Settings isolated from the environment and any .env file."""
    return Settings(_env_file=None, tree_depth=4, root_history_size=5, default_fee_bps=30)


@pytest.fixture
def hasher():
    return Sha256Hasher()


@pytest.fixture
def ledger():
    """In-memory ledger with a few funded depositors."""
    ledger = InMemoryLedger()
    for account in FUNDED_ACCOUNTS:
        ledger.credit(account, 10 * DENOMINATION_5_SOL)
    return ledger


@pytest.fixture
def engine(ledger, settings):
    """Engine with a depth-4 tree (16 leaves) and a 5-root history window."""
    return ShieldedPoolEngine(ledger=ledger, verifier=TranscriptVerifier(), settings=settings)


@pytest.fixture
def pool_id(engine):
    return engine.init_pool(DENOMINATION_05_SOL, fee_bps=30, authority="operator")


@pytest.fixture
def note():
    return Note.generate()
