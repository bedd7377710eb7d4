"""
Typed request/response wrapper around the chain node REST API
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiohttp

from config.config import HTTP_TIMEOUT, NODE_API_URL
from errors.exceptions import DomainError, ParseError, TransportError
from log_utils import get_logger, log_performance
from models.chain import (
    Balance,
    BlockSummary,
    ChainStats,
    RichListEntry,
    TransactionRecord,
    ValidatorScore,
    parse_balances,
    parse_block,
    parse_blocks,
    parse_richlist,
    parse_stats,
    parse_transaction,
    parse_transactions,
    parse_validator_scores,
)

logger = get_logger(__name__)

# Values of the envelope's error field that mean success
OK_SENTINELS = ("ok", ":ok")

# Account feed filter -> tx_events_by_account ``type`` parameter
FEED_TYPES = {"all": None, "sent": "sent", "received": "recv"}


def check_envelope(body: Any, path: str = None) -> Dict[str, Any]:
    """Return the body when its ``error`` field denotes success, raise otherwise."""
    if not isinstance(body, dict):
        raise ParseError(f"Response body for {path} is not a JSON object")
    error = body.get("error")
    if not error or error in OK_SENTINELS:
        return body
    raise DomainError(str(error), path)


@dataclass
class AccountPage:
    transactions: List[TransactionRecord] = field(default_factory=list)
    cursor: Optional[str] = None


class ApiGateway:
    """
    Thin async client for the node's REST surface.

    No retries happen here: transport problems raise ``TransportError`` and
    explicit node failures raise ``DomainError``; callers decide what to do.
    """

    def __init__(self, base_url: str = NODE_API_URL, timeout: float = HTTP_TIMEOUT,
                 session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
            logger.debug("Gateway HTTP session closed")

    @log_performance(logger, "node_request")
    async def request(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        query = {key: str(value) for key, value in (params or {}).items() if value is not None}
        try:
            async with self.session.get(url, params=query) as resp:
                status = resp.status
                text = await resp.text()
        except asyncio.TimeoutError as e:
            raise TransportError(f"Timeout requesting {path}") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"Request to {path} failed: {e}") from e

        try:
            body = json.loads(text)
        except ValueError as e:
            raise TransportError(f"Malformed JSON from {path} (HTTP {status})", status=status) from e

        return check_envelope(body, path)

    async def get_stats(self) -> ChainStats:
        body = await self.request("/chain/stats")
        return parse_stats(body.get("stats"))

    async def get_tip(self) -> BlockSummary:
        body = await self.request("/chain/tip")
        return parse_block(body.get("entry"))

    async def get_entries_by_height(self, height: int, with_txs: bool = False) -> List[BlockSummary]:
        path = f"/chain/height_with_txs/{height}" if with_txs else f"/chain/height/{height}"
        body = await self.request(path)
        return parse_blocks(body.get("entries"))

    async def get_entry(self, entry_hash: str) -> BlockSummary:
        body = await self.request(f"/chain/entry/{entry_hash}")
        return parse_block(body.get("entry"))

    async def get_transaction(self, tx_id: str) -> TransactionRecord:
        body = await self.request(f"/chain/tx/{tx_id}")
        payload = body.get("transaction") if isinstance(body.get("transaction"), dict) else body
        return parse_transaction(payload)

    async def get_transactions_in_entry(self, entry_hash: str) -> List[TransactionRecord]:
        body = await self.request(f"/chain/txs_in_entry/{entry_hash}")
        return parse_transactions(body.get("txs"))

    async def get_all_balances(self, address: str) -> List[Balance]:
        body = await self.request(f"/wallet/balance_all/{address}")
        return parse_balances(body.get("balances"))

    async def get_account_transactions(self, address: str, limit: int, offset: int = 0,
                                       sort: str = "desc", cursor: Optional[str] = None,
                                       feed_filter: str = "all") -> AccountPage:
        if feed_filter not in FEED_TYPES:
            raise ValueError(f"Unknown feed filter: {feed_filter}")
        params = {
            "limit": limit,
            "offset": offset,
            "sort": sort,
            "cursor": cursor,
            "type": FEED_TYPES[feed_filter],
        }
        body = await self.request(f"/chain/tx_events_by_account/{address}", params)
        return AccountPage(
            transactions=parse_transactions(body.get("txs")),
            cursor=body.get("cursor") or None,
        )

    async def get_richlist(self) -> List[RichListEntry]:
        body = await self.request("/contract/richlist")
        return parse_richlist(body.get("richlist"))

    async def get_epoch_score(self) -> List[ValidatorScore]:
        body = await self.request("/epoch/score")
        scores = body.get("scores", body.get("score"))
        if isinstance(scores, dict):
            scores = list(scores.items())
        ranked = parse_validator_scores(scores)
        return sorted(ranked, key=lambda s: s.score, reverse=True)
