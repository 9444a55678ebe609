"""Main package initialization."""

__version__ = "0.1.0"
__author__ = "Shadow Pool Team"
__description__ = "Shadow Pool: fixed-denomination shielded pool accounting engine"

from .core.accumulator import CommitmentAccumulator, MerklePath, verify_path
from .core.root_history import RootHistory
from .core.nullifier_set import NullifierSet, NullifierRecord
from .core.pool import Pool
from .core.engine import ShieldedPoolEngine, DepositReceipt, WithdrawalReceipt
from .core.ledger import Ledger, InMemoryLedger
from .core.verifier import ProofVerifier, PublicInputs, TranscriptVerifier
from .utils.hash import Hasher, Sha256Hasher

__all__ = [
    "CommitmentAccumulator",
    "MerklePath",
    "verify_path",
    "RootHistory",
    "NullifierSet",
    "NullifierRecord",
    "Pool",
    "ShieldedPoolEngine",
    "DepositReceipt",
    "WithdrawalReceipt",
    "Ledger",
    "InMemoryLedger",
    "ProofVerifier",
    "PublicInputs",
    "TranscriptVerifier",
    "Hasher",
    "Sha256Hasher",
]
