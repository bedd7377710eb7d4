"""
Inbound stream frames decoded into a closed set of message types
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

from errors.exceptions import ParseError
from models.chain import (
    BlockSummary,
    ChainStats,
    TransactionRecord,
    parse_block,
    parse_stats,
    parse_transaction,
    parse_transactions,
)

OP_STATS = "event_stats"
OP_ENTRY = "event_entry"
OP_TXS = "event_txs"
OP_ACCOUNT_TX = "event_account_tx"

OP_SUBSCRIBE_ACCOUNT = "subscribe_account"
OP_UNSUBSCRIBE_ACCOUNT = "unsubscribe_account"


@dataclass(frozen=True)
class StatsUpdate:
    stats: ChainStats


@dataclass(frozen=True)
class NewBlock:
    block: BlockSummary


@dataclass(frozen=True)
class NewTransactions:
    transactions: List[TransactionRecord] = field(default_factory=list)


@dataclass(frozen=True)
class AccountTransaction:
    account: str
    transaction: TransactionRecord


@dataclass(frozen=True)
class UnknownFrame:
    op: str
    raw: Dict[str, Any] = field(default_factory=dict)


StreamMessage = Union[StatsUpdate, NewBlock, NewTransactions, AccountTransaction, UnknownFrame]


def decode_frame(raw: Union[str, bytes, Dict[str, Any]]) -> StreamMessage:
    """Decode one inbound frame; raises ParseError for undecodable input."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise ParseError(f"Frame is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise ParseError("Frame is not a JSON object")

    op = raw.get("op")
    if op == OP_STATS:
        return StatsUpdate(parse_stats(raw.get("stats")))
    if op == OP_ENTRY:
        return NewBlock(parse_block(raw.get("entry")))
    if op == OP_TXS:
        # One bad record does not sink the rest of the batch
        return NewTransactions(parse_transactions(raw.get("txs")))
    if op == OP_ACCOUNT_TX:
        account = raw.get("account")
        if not account:
            raise ParseError("event_account_tx frame without account")
        return AccountTransaction(account, parse_transaction(raw.get("tx")))
    return UnknownFrame(str(op), raw)


def control_frame(op: str, account: str) -> Dict[str, str]:
    return {"op": op, "account": account}
