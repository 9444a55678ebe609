"""Commitment accumulator: fixed-depth, append-only Merkle tree.

Nodes live in a flat arena in heap order rather than in linked node objects:

    index 0                    root
    children of i              2i + 1, 2i + 2
    leaf j                     2^D - 1 + j

Every slot starts out holding the zero hash for its height, so an insert only
rewrites the D ancestors of the new leaf:

    zero[0]     = 0x00 * 32
    zero[k + 1] = H(zero[k], zero[k])

Example:
    Inserting commitments and checking a path::

        from shadowpool.core.accumulator import CommitmentAccumulator, verify_path
        from shadowpool.utils.hash import Sha256Hasher

        tree = CommitmentAccumulator(depth=20, hasher=Sha256Hasher())
        index, root = tree.insert(commitment)
        path = tree.get_path(index)
        assert verify_path(tree.hasher, commitment, index, path.siblings, root)
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from shadowpool.utils.hash import DIGEST_SIZE, ZERO_DIGEST, Hasher, Sha256Hasher
from shadowpool.exceptions import AccumulatorFullError, InvalidLeafIndexError

MAX_TREE_DEPTH = 20


def compute_zero_hashes(hasher: Hasher, depth: int) -> List[bytes]:
    """Return zero[0..depth], the root of an empty subtree of each height."""
    zeros = [ZERO_DIGEST]
    for _ in range(depth):
        zeros.append(hasher.hash(zeros[-1], zeros[-1]))
    return zeros


@dataclass(frozen=True)
class MerklePath:
    """Sibling hashes from a leaf up to (but excluding) the root."""

    leaf_index: int
    siblings: List[bytes]
    path_bits: List[int]  # 0 = node is the left child at that level
    root: bytes


def verify_path(
    hasher: Hasher, leaf: bytes, leaf_index: int, siblings: List[bytes], root: bytes
) -> bool:
    """Recompute the root from a leaf and its siblings and compare."""
    current = leaf
    position = leaf_index

    for sibling in siblings:
        if position % 2 == 0:
            current = hasher.hash(current, sibling)
        else:
            current = hasher.hash(sibling, current)
        position >>= 1

    return current == root


class CommitmentAccumulator:
    """
    Append-only Merkle accumulator over 32-byte commitments.

    The root is a pure function of the ordered leaf sequence: inserting the
    same leaves in the same order from empty always yields the same root.
    """

    def __init__(self, depth: int = MAX_TREE_DEPTH, hasher: Optional[Hasher] = None):
        """
        Initialize an empty accumulator.

        Args:
            depth: Tree depth D, capacity is 2^D leaves
            hasher: Two-input compression function (SHA-256 by default)

        Raises:
            ValueError: If depth is outside [1, MAX_TREE_DEPTH]
        """
        if depth < 1 or depth > MAX_TREE_DEPTH:
            raise ValueError(f"Tree depth must be between 1 and {MAX_TREE_DEPTH}")

        self.depth = depth
        self.capacity = 2**depth
        self.hasher = hasher if hasher is not None else Sha256Hasher()
        self.zero_hashes = compute_zero_hashes(self.hasher, depth)

        # Level k (root = 0) occupies arena slots [2^k - 1, 2^(k+1) - 1)
        self._nodes: List[bytes] = []
        for level in range(depth + 1):
            self._nodes.extend([self.zero_hashes[depth - level]] * (2**level))

        self._leaf_offset = self.capacity - 1
        self._leaf_positions: Dict[bytes, int] = {}
        self.leaf_count = 0

    @classmethod
    def from_leaves(
        cls, leaves: Iterable[bytes], depth: int = MAX_TREE_DEPTH, hasher: Optional[Hasher] = None
    ) -> "CommitmentAccumulator":
        """Rebuild an accumulator by replaying leaves in order."""
        tree = cls(depth=depth, hasher=hasher)
        tree.insert_many(leaves)
        return tree

    @staticmethod
    def _validate_leaf(leaf: bytes) -> None:
        if not isinstance(leaf, bytes) or len(leaf) != DIGEST_SIZE:
            raise ValueError("Commitment must be 32 bytes")

    def insert(self, leaf: bytes) -> Tuple[int, bytes]:
        """
        Append a leaf and return (leaf_index, new_root).

        Raises:
            ValueError: If the leaf is not a 32-byte digest
            AccumulatorFullError: If the tree holds 2^D leaves already
        """
        self._validate_leaf(leaf)

        if self.leaf_count >= self.capacity:
            raise AccumulatorFullError(f"Tree is full (max {self.capacity} commitments)")

        leaf_index = self.leaf_count
        node = self._leaf_offset + leaf_index
        self._nodes[node] = leaf

        while node > 0:
            parent = (node - 1) // 2
            left = self._nodes[2 * parent + 1]
            right = self._nodes[2 * parent + 2]
            self._nodes[parent] = self.hasher.hash(left, right)
            node = parent

        self._leaf_positions.setdefault(leaf, leaf_index)
        self.leaf_count += 1
        return leaf_index, self._nodes[0]

    def insert_many(self, leaves: Iterable[bytes]) -> List[Tuple[int, bytes]]:
        """
        Insert leaves in order; nothing is inserted if they do not all fit.

        Returns:
            List of (leaf_index, root_after_insert) per leaf
        """
        batch = list(leaves)
        for leaf in batch:
            self._validate_leaf(leaf)
        if self.leaf_count + len(batch) > self.capacity:
            raise AccumulatorFullError(
                f"Cannot insert {len(batch)} commitments, "
                f"{self.capacity - self.leaf_count} slots left"
            )
        return [self.insert(leaf) for leaf in batch]

    @property
    def root(self) -> bytes:
        """Current root hash."""
        return self._nodes[0]

    @property
    def empty_root(self) -> bytes:
        """Root of a tree with no leaves."""
        return self.zero_hashes[self.depth]

    @property
    def is_full(self) -> bool:
        return self.leaf_count >= self.capacity

    def leaf(self, leaf_index: int) -> bytes:
        """Return the leaf stored at leaf_index."""
        self._check_index(leaf_index)
        return self._nodes[self._leaf_offset + leaf_index]

    @property
    def leaves(self) -> List[bytes]:
        """All inserted leaves, in insertion order."""
        start = self._leaf_offset
        return self._nodes[start:start + self.leaf_count]

    def contains(self, leaf: bytes) -> bool:
        return leaf in self._leaf_positions

    def index_of(self, leaf: bytes) -> Optional[int]:
        """Index of the first occurrence of leaf, or None."""
        return self._leaf_positions.get(leaf)

    def _check_index(self, leaf_index: int) -> None:
        if leaf_index < 0 or leaf_index >= self.leaf_count:
            raise InvalidLeafIndexError(f"Invalid leaf index: {leaf_index}")

    def get_path(self, leaf_index: int) -> MerklePath:
        """
        Return the authentication path for an inserted leaf.

        Raises:
            InvalidLeafIndexError: If no leaf has been inserted at that index
        """
        self._check_index(leaf_index)

        siblings = []
        path_bits = []
        node = self._leaf_offset + leaf_index

        while node > 0:
            is_left = node % 2 == 1
            sibling = node + 1 if is_left else node - 1
            siblings.append(self._nodes[sibling])
            path_bits.append(0 if is_left else 1)
            node = (node - 1) // 2

        return MerklePath(
            leaf_index=leaf_index, siblings=siblings, path_bits=path_bits, root=self.root
        )

    def verify(self, leaf: bytes, path: MerklePath) -> bool:
        """Check a path against the current root."""
        return verify_path(self.hasher, leaf, path.leaf_index, path.siblings, self.root)

    def snapshot(self) -> dict:
        """
        Get the current state of the tree for serialization.

        Returns:
            dict: depth, leaf count, hex leaves and root
        """
        return {
            "depth": self.depth,
            "capacity": self.capacity,
            "leaf_count": self.leaf_count,
            "leaves": [leaf.hex() for leaf in self.leaves],
            "root": self.root.hex(),
        }

    def __len__(self) -> int:
        return self.leaf_count

    def __repr__(self) -> str:
        return (
            f"CommitmentAccumulator(depth={self.depth}, "
            f"leaves={self.leaf_count}/{self.capacity}, "
            f"root={self.root.hex()[:16]}...)"
        )
