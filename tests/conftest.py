# tests/conftest.py
"""
Shared fixtures for the test suite.

Key design points
─────────────────
1.  Make project-root importable so `from state.ledger_view import …` works no
    matter where pytest is launched.
2.  Provide an in-memory gateway so nothing touches the network.
3.  Provide a fake websocket session and a manual clock so reconnect timing
    is tested without real timers.
"""

from __future__ import annotations
import asyncio
import pathlib
import sys
from types import SimpleNamespace
from typing import Dict, List, Optional, Tuple

import aiohttp
import pytest

# ─────────────────────────────────────────────────────────────────────────────
#  Ensure the repo root is on sys.path
# ─────────────────────────────────────────────────────────────────────────────
ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

# Only now import modules that live in the repo
from errors.exceptions import DomainError
from events.event_bus import EventBus
from gateway.api_gateway import AccountPage
from models.chain import (
    Balance, BlockSummary, ChainStats, RichListEntry, TransactionRecord, TxMetadata, ValidatorScore
)


# ─────────────────────────────── builders ───────────────────────────────────
def make_block(height: int, block_hash: Optional[str] = None, tx_count: Optional[int] = None,
               slot: Optional[int] = None) -> BlockSummary:
    return BlockSummary(hash=block_hash or f"block{height}", height=height,
                        slot=slot, tx_count=tx_count)


def make_tx(tx_hash: str, tx_event: Optional[str] = None, detailed: bool = False) -> TransactionRecord:
    data = {
        "hash": tx_hash,
        "signer": "signer" + tx_hash,
        "nonce": 1,
        "action": {"contract": "Coin", "function": "transfer", "args": ["recv", "1000000000", "AMA"]},
    }
    if tx_event is not None:
        data["metadata"] = TxMetadata(tx_event=tx_event)
    if detailed:
        data["execution_result"] = {"status": "ok", "gas_used": 10}
        data["metadata"] = TxMetadata(entry_hash="entry", tx_event=tx_event)
    return TransactionRecord.model_validate(data)


async def settle(predicate=None, rounds: int = 50):
    """Let scheduled tasks run until ``predicate`` holds (or a fixed number of rounds)"""
    for _ in range(rounds):
        if predicate is not None and predicate():
            return True
        await asyncio.sleep(0)
    return predicate() if predicate is not None else True


# ───────────────────────────── gateway stub ─────────────────────────────────
class FakeGateway:
    """In-memory stand-in for ApiGateway with per-method failure injection"""

    def __init__(self):
        self.stats = ChainStats(height=100, pflops=12.5)
        self.entries: Dict[int, List[BlockSummary]] = {}
        self.entry_txs: Dict[str, List[TransactionRecord]] = {}
        self.tx_details: Dict[str, TransactionRecord] = {}
        self.balances: Dict[str, List[Balance]] = {}
        self.account_pages: Dict[Tuple[str, Optional[str]], AccountPage] = {}
        self.account_gates: Dict[str, asyncio.Event] = {}
        self.account_calls: List[dict] = []
        self.richlist: List[RichListEntry] = []
        self.scores: List[ValidatorScore] = []
        self.failures: Dict[str, Exception] = {}
        self.calls: List[str] = []
        self.closed = False

    def _enter(self, name: str):
        self.calls.append(name)
        exc = self.failures.get(name)
        if exc is not None:
            raise exc

    async def get_stats(self) -> ChainStats:
        self._enter("get_stats")
        return self.stats

    async def get_tip(self) -> BlockSummary:
        self._enter("get_tip")
        return make_block(self.stats.height)

    async def get_entries_by_height(self, height: int, with_txs: bool = False) -> List[BlockSummary]:
        self._enter("get_entries_by_height")
        return self.entries.get(height, [make_block(height, tx_count=1)])

    async def get_entry(self, entry_hash: str) -> BlockSummary:
        self._enter("get_entry")
        for blocks in self.entries.values():
            for block in blocks:
                if block.hash == entry_hash:
                    return block
        raise DomainError("not_found", f"/chain/entry/{entry_hash}")

    async def get_transaction(self, tx_id: str) -> TransactionRecord:
        self._enter("get_transaction")
        if tx_id not in self.tx_details:
            raise DomainError("not_found", f"/chain/tx/{tx_id}")
        return self.tx_details[tx_id]

    async def get_transactions_in_entry(self, entry_hash: str) -> List[TransactionRecord]:
        self._enter("get_transactions_in_entry")
        return self.entry_txs.get(entry_hash, [])

    async def get_all_balances(self, address: str) -> List[Balance]:
        self._enter("get_all_balances")
        return self.balances.get(address, [])

    async def get_account_transactions(self, address: str, limit: int, offset: int = 0,
                                       sort: str = "desc", cursor: Optional[str] = None,
                                       feed_filter: str = "all") -> AccountPage:
        self.account_calls.append({"address": address, "limit": limit, "offset": offset,
                                   "cursor": cursor, "filter": feed_filter})
        gate = self.account_gates.get(address)
        if gate is not None:
            await gate.wait()
        self._enter("get_account_transactions")
        return self.account_pages.get((address, cursor), AccountPage())

    async def get_richlist(self) -> List[RichListEntry]:
        self._enter("get_richlist")
        return self.richlist

    async def get_epoch_score(self) -> List[ValidatorScore]:
        self._enter("get_epoch_score")
        return sorted(self.scores, key=lambda s: s.score, reverse=True)

    async def close(self):
        self.closed = True


# ──────────────────────────── websocket stubs ───────────────────────────────
class FakeWebSocket:
    """Server side is driven by the test through feed_* / server_close"""

    def __init__(self):
        self.sent: List[dict] = []
        self.closed = False
        self.close_code = None
        # Yield to the loop on every send, as a real socket write does
        self.yield_on_send = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    def feed_json_text(self, text: str):
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=text))

    def feed_error(self):
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.ERROR, data=None))

    def server_close(self, code: int = 1006):
        self.close_code = code
        self._inbox.put_nowait(None)

    def exception(self):
        return ConnectionResetError("reset by peer")

    async def send_json(self, data):
        if self.yield_on_send:
            await asyncio.sleep(0)
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.sent.append(data)

    async def close(self):
        self.closed = True
        self._inbox.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        msg = await self._inbox.get()
        if msg is None:
            self.closed = True
            raise StopAsyncIteration
        return msg


class FakeSession:
    """Hands out scripted ws_connect outcomes; afterwards every connect succeeds"""

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.sockets: List[FakeWebSocket] = []
        self.connects = 0
        self.closed = False

    async def ws_connect(self, url, heartbeat=None):
        self.connects += 1
        outcome = self.outcomes.pop(0) if self.outcomes else FakeWebSocket()
        if isinstance(outcome, BaseException):
            raise outcome
        self.sockets.append(outcome)
        return outcome

    async def close(self):
        self.closed = True


class FakeClock:
    """Monotonic clock that only moves when told to, or when slept on"""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float):
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


# ──────────────────────────────── fixtures ──────────────────────────────────
@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def clock():
    return FakeClock()
