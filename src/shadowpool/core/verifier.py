"""Proof verification capability.

The engine consumes a verifier; it never implements one. A real deployment
injects a zero-knowledge verifier bound to the withdrawal circuit's
verifying key. The verifier must be a pure predicate over
``(proof, public_inputs)``.

``TranscriptVerifier`` is a development stand-in: it accepts a proof iff the
proof equals a domain-separated SHA-256 of the public inputs. It binds a
proof to its public inputs, which is enough to exercise the accounting rules,
but it is NOT zero-knowledge and NOT sound against a prover who can compute
SHA-256, which is everyone.
"""

from dataclasses import dataclass
from typing import Protocol

from shadowpool.utils.hash import hash_concatenate

TRANSCRIPT_DOMAIN = b"shadowpool/withdraw/v1"


@dataclass(frozen=True)
class PublicInputs:
    """Public statement a withdrawal proof is checked against."""

    root: bytes
    nullifier_hash: bytes
    recipient: str
    fee_recipient: str
    fee: int

    def encode(self) -> bytes:
        """Canonical byte encoding of the statement."""
        recipient = self.recipient.encode("utf-8")
        fee_recipient = self.fee_recipient.encode("utf-8")
        return b"".join(
            [
                self.root,
                self.nullifier_hash,
                len(recipient).to_bytes(2, "big"),
                recipient,
                len(fee_recipient).to_bytes(2, "big"),
                fee_recipient,
                self.fee.to_bytes(8, "big"),
            ]
        )


class ProofVerifier(Protocol):
    """Zero-knowledge verifier consumed by the withdrawal flow."""

    def verify(self, proof: bytes, public_inputs: PublicInputs) -> bool:
        ...


def make_transcript_proof(public_inputs: PublicInputs) -> bytes:
    """Produce the proof TranscriptVerifier accepts for these inputs."""
    return hash_concatenate(TRANSCRIPT_DOMAIN, public_inputs.encode())


class TranscriptVerifier:
    """Accepts exactly the transcript hash of the public inputs."""

    def verify(self, proof: bytes, public_inputs: PublicInputs) -> bool:
        if not isinstance(proof, bytes) or not proof:
            return False
        return proof == make_transcript_proof(public_inputs)

    def __repr__(self) -> str:
        return "TranscriptVerifier()"
