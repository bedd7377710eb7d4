"""
In-memory projection of the chain reconciled from REST pulls and the event stream
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from config.config import DEFAULT_PAGE_SIZE, HOME_WINDOW, LIST_WINDOW, MAX_TXS_PER_BLOCK
from errors.exceptions import ApiError, StateConflict, ValidationError
from events.event_bus import EventTypes
from gateway.api_gateway import FEED_TYPES
from log_utils import get_logger
from models.chain import Balance, BlockSummary, ChainStats, TransactionRecord
from state.windows import BlockWindow, TransactionWindow

logger = get_logger(__name__)


@dataclass
class AddressFeed:
    """Paginated transaction history of the displayed address"""
    address: Optional[str] = None
    transactions: List[TransactionRecord] = field(default_factory=list)
    cursor: Optional[str] = None
    filter: str = "all"
    page_size: int = DEFAULT_PAGE_SIZE
    balances: List[Balance] = field(default_factory=list)
    loading: bool = False
    error: Optional[str] = None
    generation: int = 0

    @property
    def has_more(self) -> bool:
        return self.cursor is not None

    def counts(self) -> Dict[str, int]:
        sent = sum(1 for tx in self.transactions if tx.metadata and tx.metadata.tx_event == "sent")
        received = sum(1 for tx in self.transactions if tx.metadata and tx.metadata.tx_event == "recv")
        return {"total": len(self.transactions), "sent": sent, "received": received}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "filter": self.filter,
            "page_size": self.page_size,
            "cursor": self.cursor,
            "has_more": self.has_more,
            "loading": self.loading,
            "error": self.error,
            "counts": self.counts(),
            "balances": [b.model_dump(mode="json") for b in self.balances],
            "transactions": [tx.model_dump(mode="json") for tx in self.transactions],
        }


def _dedupe(records: Iterable[TransactionRecord], seen: Set[str]) -> List[TransactionRecord]:
    unique = []
    for record in records:
        if record.hash in seen:
            continue
        seen.add(record.hash)
        unique.append(record)
    return unique


class LedgerViewState:
    """
    The one authoritative view the presentation layer reads.

    Blocks and transactions arrive both from REST pulls and from the stream,
    in no guaranteed order. Every ingest is a merge keyed by hash, so applying
    the same batch twice or applying two batches in either order gives the
    same windows. Home windows hold the freshest few items, list windows hold
    the longer listing pages; both are fed by the same ingests.

    REST failures during a batch pull raise to the caller before anything is
    merged. Address feed failures become NOTIFICATION events instead.
    """

    def __init__(self, gateway=None, bus=None, home_window: int = HOME_WINDOW,
                 list_window: int = LIST_WINDOW, clock: Callable[[], float] = time.time):
        self.gateway = gateway
        self.bus = bus
        self._clock = clock

        self.stats: Optional[ChainStats] = None
        self._stats_at: Optional[float] = None
        self._max_height: Optional[int] = None

        self.latest_blocks = BlockWindow(home_window)
        self.block_list = BlockWindow(list_window)
        self.latest_transactions = TransactionWindow(home_window)
        self.transaction_list = TransactionWindow(list_window)

        self.address_feed = AddressFeed()
        self._feed_generation = 0
        self._enrichment_tasks: Set[asyncio.Task] = set()

    def _emit(self, event_type: str, data: Dict[str, Any]):
        if self.bus is not None:
            self.bus.emit_nowait(event_type, data, source="ledger_view")

    def notify(self, message: str, level: str = "error"):
        """Publish a dismissible notice for a recoverable failure"""
        logger.warning(message)
        self._emit(EventTypes.NOTIFICATION, {"message": message, "level": level})

    # ------------------------------------------------------------------ #
    # stats
    # ------------------------------------------------------------------ #
    def stats_age(self) -> Optional[float]:
        if self._stats_at is None:
            return None
        return self._clock() - self._stats_at

    def ingest_stats_snapshot(self, stats: ChainStats) -> bool:
        """Replace the stats; True when the height passed the highest one seen."""
        previous = self._max_height
        self.stats = stats
        self._stats_at = self._clock()
        advanced = previous is None or stats.height > previous
        if advanced:
            self._max_height = stats.height

        self._emit(EventTypes.STATS_UPDATED, {"stats": self._stats_dict()})
        if advanced:
            logger.debug(f"Height advanced {previous} -> {stats.height}")
            self._emit(EventTypes.HEIGHT_ADVANCED, {"previous": previous, "height": stats.height})
        return advanced

    async def refresh_stats(self) -> ChainStats:
        stats = await self.gateway.get_stats()
        self.ingest_stats_snapshot(stats)
        return stats

    async def handle_stats_event(self, stats: ChainStats) -> bool:
        """Ingest a stats snapshot and pull the blocks behind any height advance."""
        previous = self._max_height
        advanced = self.ingest_stats_snapshot(stats)
        if not advanced:
            return False
        try:
            if previous is None or len(self.block_list) == 0:
                await self.refresh_latest_blocks(tip_height=stats.height)
            else:
                await self.refresh_blocks_between(previous, stats.height)
        except ApiError as e:
            self.notify(f"Error loading blocks: {e.message}")
        return True

    # ------------------------------------------------------------------ #
    # blocks
    # ------------------------------------------------------------------ #
    def ingest_block_batch(self, blocks: Iterable[BlockSummary]) -> bool:
        blocks = list(blocks)
        changed = self.latest_blocks.merge(blocks)
        changed = self.block_list.merge(blocks) or changed
        if changed:
            self._emit(EventTypes.BLOCKS_UPDATED, {"count": len(blocks)})
        return changed

    def ingest_streamed_block(self, block: BlockSummary) -> bool:
        return self.ingest_block_batch([block])

    def ingest_looked_up_block(self, block: BlockSummary) -> bool:
        """Merge a block fetched by hash only if it falls inside the displayed height range."""
        if len(self.block_list) == 0 or block.height < self.block_list[-1].height:
            return False
        return self.ingest_block_batch([block])

    async def _fetch_heights(self, heights: List[int]) -> List[BlockSummary]:
        # gather raises the first failure; nothing is merged in that case
        results = await asyncio.gather(*(self.gateway.get_entries_by_height(h) for h in heights))
        return [block for entries in results for block in entries]

    async def refresh_latest_blocks(self, count: Optional[int] = None,
                                    tip_height: Optional[int] = None) -> List[BlockSummary]:
        """Pull the ``count`` heights ending at the tip."""
        if tip_height is None:
            if self.stats is None:
                await self.refresh_stats()
            tip_height = self.stats.height
        count = count or self.latest_blocks.capacity
        heights = [h for h in range(tip_height, tip_height - count, -1) if h >= 0]
        blocks = await self._fetch_heights(heights)
        self.ingest_block_batch(blocks)
        return blocks

    async def refresh_blocks_between(self, old_height: int, new_height: int) -> List[BlockSummary]:
        """Pull the heights in (old_height, new_height], at most one list window of them."""
        lowest = max(old_height, new_height - self.block_list.capacity)
        heights = list(range(new_height, lowest, -1))
        if not heights:
            return []
        blocks = await self._fetch_heights(heights)
        self.ingest_block_batch(blocks)
        return blocks

    # ------------------------------------------------------------------ #
    # transactions
    # ------------------------------------------------------------------ #
    def ingest_transaction_batch(self, txs: Iterable[TransactionRecord],
                                 front: bool = False) -> List[TransactionRecord]:
        """
        Add REST-sourced records that are not yet present.

        They go to the back, unless ``front`` is set because they are known to
        be newer than everything displayed (catching up after a stream gap).
        """
        txs = list(txs)
        if front:
            admitted = self.latest_transactions.prepend(txs)
            admitted_list = self.transaction_list.prepend(txs)
        else:
            admitted = self.latest_transactions.append(txs)
            admitted_list = self.transaction_list.append(txs)
        new = _dedupe(admitted + admitted_list, set())
        if new:
            self._emit(EventTypes.TRANSACTIONS_UPDATED, {"count": len(new), "source": "rest"})
        return new

    def ingest_streamed_transactions(self, txs: Iterable[TransactionRecord],
                                     enrich: bool = True) -> List[TransactionRecord]:
        """Prepend streamed records; details for them are fetched in the background."""
        txs = list(txs)
        admitted = self.latest_transactions.prepend(txs)
        admitted_list = self.transaction_list.prepend(txs)
        new = _dedupe(admitted + admitted_list, set())
        if new:
            self._emit(EventTypes.TRANSACTIONS_UPDATED, {"count": len(new), "source": "stream"})
            if enrich and self.gateway is not None:
                self.schedule_enrichment([tx.hash for tx in new])
        return new

    def has_transaction(self, tx_hash: str) -> bool:
        return self.latest_transactions.contains(tx_hash) or self.transaction_list.contains(tx_hash)

    def apply_transaction_detail(self, record: TransactionRecord) -> bool:
        """Last write wins while the hash is displayed; dropped once it is evicted."""
        replaced = self.latest_transactions.replace(record)
        replaced = self.transaction_list.replace(record) or replaced
        if not replaced:
            logger.debug("Dropping detail for evicted transaction", extra={"tx_id": record.hash})
            return False
        self._emit(EventTypes.TRANSACTION_ENRICHED, {"hash": record.hash})
        return True

    async def enrich_transactions(self, hashes: Iterable[str]) -> int:
        applied = 0
        for tx_hash in hashes:
            if not self.has_transaction(tx_hash):
                continue
            try:
                record = await self.gateway.get_transaction(tx_hash)
            except ApiError as e:
                logger.debug(f"Detail fetch failed: {e.message}", extra={"tx_id": tx_hash})
                continue
            if self.apply_transaction_detail(record):
                applied += 1
        return applied

    def schedule_enrichment(self, hashes: List[str]) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; skipping transaction enrichment")
            return None
        task = loop.create_task(self.enrich_transactions(hashes))
        self._enrichment_tasks.add(task)
        task.add_done_callback(self._enrichment_tasks.discard)
        return task

    async def cancel_enrichment(self):
        tasks = list(self._enrichment_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def refresh_latest_transactions(self, limit: Optional[int] = None,
                                          front: bool = False) -> List[TransactionRecord]:
        """Walk recent blocks newest first, taking a few transactions from each."""
        limit = limit or self.latest_transactions.capacity
        if len(self.block_list) == 0:
            await self.refresh_latest_blocks()

        collected: List[TransactionRecord] = []
        for block in self.block_list:
            if len(collected) >= limit:
                break
            if block.tx_count == 0:
                continue
            txs = await self.gateway.get_transactions_in_entry(block.hash)
            collected.extend(txs[:MAX_TXS_PER_BLOCK])

        return self.ingest_transaction_batch(collected[:limit], front=front)

    async def catch_up(self) -> bool:
        """
        Pull what the stream may have carried while it was down.

        Stats first, then the heights between the last one seen and the new
        tip, then the newest transactions in front of what is displayed.
        A failing step raises ``ApiError``; what earlier steps merged stays.
        """
        previous = self._max_height
        stats = await self.refresh_stats()
        if previous is None or len(self.block_list) == 0:
            await self.refresh_latest_blocks(tip_height=stats.height)
        else:
            await self.refresh_blocks_between(previous, stats.height)
        await self.refresh_latest_transactions(front=True)
        return True

    # ------------------------------------------------------------------ #
    # address feed
    # ------------------------------------------------------------------ #
    def _is_current(self, address: str, generation: int) -> bool:
        feed = self.address_feed
        return feed.generation == generation and feed.address == address

    def _discard_stale(self, address: str, generation: int):
        conflict = StateConflict(f"Discarding response for {address} (generation {generation})")
        logger.debug(conflict.message, extra={"address": address})

    def clear_address_feed(self):
        self._feed_generation += 1
        self.address_feed = AddressFeed(generation=self._feed_generation)
        self._emit(EventTypes.ADDRESS_FEED_UPDATED, {"address": None})

    async def load_address_feed(self, address: str, feed_filter: str = "all",
                                page_size: int = DEFAULT_PAGE_SIZE) -> bool:
        """Reset the feed for ``address`` and load its first page."""
        if feed_filter not in FEED_TYPES:
            raise ValidationError(f"Unknown feed filter: {feed_filter}")
        if page_size <= 0:
            raise ValidationError("page_size must be positive")

        self._feed_generation += 1
        generation = self._feed_generation
        keep_balances = self.address_feed.balances if self.address_feed.address == address else []
        self.address_feed = AddressFeed(address=address, filter=feed_filter, page_size=page_size,
                                        balances=keep_balances, loading=True, generation=generation)
        self._emit(EventTypes.ADDRESS_FEED_UPDATED, {"address": address, "reset": True})

        try:
            page = await self.gateway.get_account_transactions(
                address, limit=page_size, offset=0, feed_filter=feed_filter
            )
        except ApiError as e:
            if not self._is_current(address, generation):
                self._discard_stale(address, generation)
                return False
            self.address_feed.loading = False
            self.address_feed.error = e.message
            self.notify(f"Error loading transactions: {e.message}")
            self._emit(EventTypes.ADDRESS_FEED_UPDATED, {"address": address, "error": e.message})
            return False

        if not self._is_current(address, generation):
            self._discard_stale(address, generation)
            return False

        feed = self.address_feed
        feed.transactions = _dedupe(page.transactions, set())
        feed.cursor = page.cursor
        feed.loading = False
        self._emit(EventTypes.ADDRESS_FEED_UPDATED, {"address": address, "loaded": len(feed.transactions)})
        return True

    async def continue_address_feed(self) -> bool:
        """Load the next page using the cursor the node handed back."""
        feed = self.address_feed
        if feed.address is None or feed.cursor is None or feed.loading:
            return False

        address, generation = feed.address, feed.generation
        feed.loading = True
        try:
            page = await self.gateway.get_account_transactions(
                address, limit=feed.page_size, offset=len(feed.transactions),
                cursor=feed.cursor, feed_filter=feed.filter
            )
        except ApiError as e:
            if self._is_current(address, generation):
                feed.loading = False
                self.notify(f"Error loading more transactions: {e.message}")
            else:
                self._discard_stale(address, generation)
            return False

        if not self._is_current(address, generation):
            self._discard_stale(address, generation)
            return False

        feed.loading = False
        added = _dedupe(page.transactions, {tx.hash for tx in feed.transactions})
        feed.transactions.extend(added)
        feed.cursor = page.cursor
        self._emit(EventTypes.ADDRESS_FEED_UPDATED, {"address": address, "loaded": len(feed.transactions)})
        return True

    async def load_address_balances(self, address: str) -> bool:
        generation = self.address_feed.generation
        try:
            balances = await self.gateway.get_all_balances(address)
        except ApiError as e:
            if self._is_current(address, generation):
                self.notify(f"Error loading balances: {e.message}")
            return False

        if not self._is_current(address, generation):
            self._discard_stale(address, generation)
            return False
        self.address_feed.balances = balances
        self._emit(EventTypes.ADDRESS_BALANCES_UPDATED, {"address": address, "count": len(balances)})
        return True

    # ------------------------------------------------------------------ #
    # presentation
    # ------------------------------------------------------------------ #
    def _stats_dict(self) -> Optional[Dict[str, Any]]:
        if self.stats is None:
            return None
        data = self.stats.model_dump(mode="json")
        data["epoch"] = self.stats.epoch
        return data

    def blocks(self, page: str = "home") -> List[BlockSummary]:
        return (self.block_list if page == "list" else self.latest_blocks).to_list()

    def transactions(self, page: str = "home") -> List[TransactionRecord]:
        return (self.transaction_list if page == "list" else self.latest_transactions).to_list()

    def snapshot(self, page: str = "home") -> Dict[str, Any]:
        return {
            "stats": self._stats_dict(),
            "blocks": [b.model_dump(mode="json") for b in self.blocks(page)],
            "transactions": [tx.model_dump(mode="json") for tx in self.transactions(page)],
            "address": self.address_feed.to_dict(),
        }
