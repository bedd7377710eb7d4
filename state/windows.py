"""
Bounded, hash-unique windows over recent blocks and transactions
"""

from collections import OrderedDict
from typing import Iterable, Iterator, List, Optional

from models.chain import BlockSummary, TransactionRecord


def merge_block(current: BlockSummary, incoming: BlockSummary) -> BlockSummary:
    """Combine two observations of the same block.

    Missing fields are filled from the other observation. For tx_count a
    known value beats an unknown one and the larger of two known values wins,
    so the result does not depend on which observation came first.
    """
    updates = {}
    for name in ("slot", "prev_hash", "signer"):
        if getattr(current, name) is None and getattr(incoming, name) is not None:
            updates[name] = getattr(incoming, name)
    if incoming.tx_count is not None and (current.tx_count is None or incoming.tx_count > current.tx_count):
        updates["tx_count"] = incoming.tx_count
    return current.model_copy(update=updates) if updates else current


class BlockWindow:
    """Blocks unique by hash, ordered by height descending, capped at ``capacity``."""

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._blocks: List[BlockSummary] = []

    def merge(self, blocks: Iterable[BlockSummary]) -> bool:
        """Merge blocks in; returns True when the visible window changed."""
        by_hash = {block.hash: block for block in self._blocks}
        for block in blocks:
            current = by_hash.get(block.hash)
            by_hash[block.hash] = merge_block(current, block) if current is not None else block

        # hash breaks ties between competing blocks at one height
        ordered = sorted(by_hash.values(), key=lambda b: (b.height, b.hash), reverse=True)
        ordered = ordered[:self.capacity]
        changed = ordered != self._blocks
        self._blocks = ordered
        return changed

    def contains(self, block_hash: str) -> bool:
        return any(block.hash == block_hash for block in self._blocks)

    def get(self, block_hash: str) -> Optional[BlockSummary]:
        for block in self._blocks:
            if block.hash == block_hash:
                return block
        return None

    @property
    def first(self) -> Optional[BlockSummary]:
        return self._blocks[0] if self._blocks else None

    def to_list(self) -> List[BlockSummary]:
        return list(self._blocks)

    def __len__(self) -> int:
        return len(self._blocks)

    def __iter__(self) -> Iterator[BlockSummary]:
        return iter(list(self._blocks))

    def __getitem__(self, index: int) -> BlockSummary:
        return self._blocks[index]


class TransactionWindow:
    """Transactions unique by hash in discovery order (front = newest), capped."""

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._txs: "OrderedDict[str, TransactionRecord]" = OrderedDict()

    def _truncate(self):
        while len(self._txs) > self.capacity:
            self._txs.popitem(last=True)

    def prepend(self, records: Iterable[TransactionRecord]) -> List[TransactionRecord]:
        """Put unseen records at the front, keeping their relative order."""
        fresh = _unseen(records, self._txs)
        for record in reversed(fresh):
            self._txs[record.hash] = record
            self._txs.move_to_end(record.hash, last=False)
        self._truncate()
        return [record for record in fresh if record.hash in self._txs]

    def append(self, records: Iterable[TransactionRecord]) -> List[TransactionRecord]:
        """Put unseen records at the back; they only stay if there is room."""
        fresh = _unseen(records, self._txs)
        for record in fresh:
            self._txs[record.hash] = record
        self._truncate()
        return [record for record in fresh if record.hash in self._txs]

    def replace(self, record: TransactionRecord) -> bool:
        """Swap in a newer observation of a present transaction, in place."""
        if record.hash not in self._txs:
            return False
        self._txs[record.hash] = record
        return True

    def contains(self, tx_hash: str) -> bool:
        return tx_hash in self._txs

    def get(self, tx_hash: str) -> Optional[TransactionRecord]:
        return self._txs.get(tx_hash)

    def to_list(self) -> List[TransactionRecord]:
        return list(self._txs.values())

    def __len__(self) -> int:
        return len(self._txs)

    def __iter__(self) -> Iterator[TransactionRecord]:
        return iter(list(self._txs.values()))

    def __getitem__(self, index: int) -> TransactionRecord:
        return list(self._txs.values())[index]


def _unseen(records: Iterable[TransactionRecord], present) -> List[TransactionRecord]:
    seen = set()
    fresh = []
    for record in records:
        if record.hash in present or record.hash in seen:
            continue
        seen.add(record.hash)
        fresh.append(record)
    return fresh
