"""Bounded window of recently valid accumulator roots.

A withdrawal proof is built against whatever root the withdrawer saw when
computing it. Deposits that land afterwards move the current root on, so the
pool accepts any of the last W roots rather than only the latest one. Spend
checks are keyed by nullifier hash and do not depend on which historical root
a proof used.
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterator, List, Optional

DEFAULT_ROOT_HISTORY_SIZE = 30


@dataclass(frozen=True)
class RootEntry:
    """A root together with the leaf count it was produced at."""

    root: bytes
    insertion_index: int


class RootHistory:
    """Ring buffer of the last ``window`` roots, oldest evicted first."""

    def __init__(self, window: int = DEFAULT_ROOT_HISTORY_SIZE):
        if window < 1:
            raise ValueError("Root history window must be at least 1")

        self.window = window
        self._entries: Deque[RootEntry] = deque()
        # Multiplicity per root, so membership stays O(1) when a root repeats
        self._counts: Dict[bytes, int] = {}

    def push(self, root: bytes, insertion_index: int) -> None:
        """Append a root, evicting the oldest once the window is exceeded."""
        self._entries.append(RootEntry(root=root, insertion_index=insertion_index))
        self._counts[root] = self._counts.get(root, 0) + 1

        while len(self._entries) > self.window:
            evicted = self._entries.popleft()
            remaining = self._counts[evicted.root] - 1
            if remaining:
                self._counts[evicted.root] = remaining
            else:
                del self._counts[evicted.root]

    def contains(self, root: bytes) -> bool:
        """Whether a withdrawal against this root is still accepted."""
        return root in self._counts

    @property
    def current(self) -> Optional[bytes]:
        """Most recently pushed root."""
        return self._entries[-1].root if self._entries else None

    def entries(self) -> List[RootEntry]:
        """Entries from oldest to newest."""
        return list(self._entries)

    def __contains__(self, root: bytes) -> bool:
        return self.contains(root)

    def __iter__(self) -> Iterator[RootEntry]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"RootHistory(window={self.window}, size={len(self._entries)})"
