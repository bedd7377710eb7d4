"""
Classification and resolution of free-text search input
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

from config.config import ADDRESS_LENGTHS, DEFAULT_PAGE_SIZE, HASH_LENGTHS
from errors.exceptions import DomainError
from log_utils import get_logger

logger = get_logger(__name__)


class QueryKind(Enum):
    HEIGHT = "height"
    HASH = "hash"
    ADDRESS = "address"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class QueryIntent:
    kind: QueryKind
    value: str


def classify(text: str) -> QueryIntent:
    """Map search input to what it most likely names. Never touches the network."""
    value = (text or "").strip()
    if value.isascii() and value.isdigit():
        return QueryIntent(QueryKind.HEIGHT, value)
    if len(value) in HASH_LENGTHS:
        return QueryIntent(QueryKind.HASH, value)
    if len(value) in ADDRESS_LENGTHS:
        return QueryIntent(QueryKind.ADDRESS, value)
    return QueryIntent(QueryKind.UNRECOGNIZED, value)


class QueryRouter:
    """Resolves a classified query against the node"""

    def __init__(self, gateway):
        self.gateway = gateway

    async def resolve(self, text: str) -> Dict[str, Any]:
        intent = classify(text)
        result: Dict[str, Any] = {"kind": intent.kind.value, "query": intent.value}

        if intent.kind is QueryKind.HEIGHT:
            blocks = await self.gateway.get_entries_by_height(int(intent.value))
            result["blocks"] = [b.model_dump(mode="json") for b in blocks]

        elif intent.kind is QueryKind.HASH:
            # Transaction and block hashes share a length; try the transaction first
            try:
                tx = await self.gateway.get_transaction(intent.value)
                result["transaction"] = tx.model_dump(mode="json")
            except DomainError as e:
                logger.debug(f"No transaction for hash: {e.message}", extra={"tx_id": intent.value})
                block = await self.gateway.get_entry(intent.value)
                result["block"] = block.model_dump(mode="json")

        elif intent.kind is QueryKind.ADDRESS:
            balances = await self.gateway.get_all_balances(intent.value)
            page = await self.gateway.get_account_transactions(intent.value, limit=DEFAULT_PAGE_SIZE)
            result["balances"] = [b.model_dump(mode="json") for b in balances]
            result["transactions"] = [tx.model_dump(mode="json") for tx in page.transactions]
            result["cursor"] = page.cursor

        return result
