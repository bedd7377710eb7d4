"""
Pydantic models for payloads returned by the chain node
"""

import logging
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from config.config import BLOCKS_PER_EPOCH
from errors.exceptions import ParseError

logger = logging.getLogger(__name__)


class ChainStats(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    height: int = 0
    circulating: Decimal = Decimal(0)
    pflops: float = 0.0
    txs_per_sec: float = Field(0.0, validation_alias=AliasChoices("txs_per_sec", "txsPerSec", "tps"))
    burned: Decimal = Decimal(0)

    @field_validator("height", "circulating", "pflops", "txs_per_sec", "burned", mode="before")
    @classmethod
    def _missing_as_zero(cls, v):
        return 0 if v is None else v

    @property
    def epoch(self) -> int:
        return self.height // BLOCKS_PER_EPOCH


class BlockSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    hash: str
    height: int
    slot: Optional[int] = None
    prev_hash: Optional[str] = None
    signer: Optional[str] = None
    tx_count: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_header(cls, data):
        # Node entries nest the header fields under header_unpacked
        if isinstance(data, dict) and isinstance(data.get("header_unpacked"), dict):
            header = data["header_unpacked"]
            tx_count = data.get("tx_count")
            if tx_count is None and isinstance(data.get("txs"), list):
                tx_count = len(data["txs"])
            return {
                "hash": data.get("hash"),
                "height": header.get("height"),
                "slot": header.get("slot"),
                "prev_hash": header.get("prev_hash"),
                "signer": header.get("signer"),
                "tx_count": tx_count,
            }
        return data


class Action(BaseModel):
    model_config = ConfigDict(frozen=True)

    contract: str = ""
    function: str = ""
    args: List[Any] = Field(default_factory=list)


class ExecutionResult(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    status: Optional[str] = Field(None, validation_alias=AliasChoices("status", "error"))
    gas_used: Optional[int] = Field(None, validation_alias=AliasChoices("gas_used", "exec_used"))
    logs: List[Any] = Field(default_factory=list)


class TxMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    entry_hash: Optional[str] = None
    entry_height: Optional[int] = None
    entry_slot: Optional[int] = None
    tx_event: Optional[str] = None


class TransactionRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    hash: str
    signer: str
    nonce: int = 0
    action: Action = Field(default_factory=Action)
    execution_result: Optional[ExecutionResult] = None
    metadata: Optional[TxMetadata] = None

    @model_validator(mode="before")
    @classmethod
    def _from_node_shape(cls, data):
        # {hash, tx: {signer, nonce, actions}, result|receipt, metadata}
        if isinstance(data, dict) and isinstance(data.get("tx"), dict):
            tx = data["tx"]
            actions = tx.get("actions") or []
            action = tx.get("action") or (actions[0] if actions else {})
            return {
                "hash": data.get("hash"),
                "signer": tx.get("signer"),
                "nonce": tx.get("nonce") or 0,
                "action": action,
                "execution_result": data.get("result") or data.get("receipt"),
                "metadata": data.get("metadata"),
            }
        return data


class Balance(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    amount: str = Field(validation_alias=AliasChoices("float", "amount"))
    flat: Optional[int] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _stringify(cls, v):
        return str(v)


class RichListEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str = Field(validation_alias=AliasChoices("pk", "address"))
    balance: float = Field(validation_alias=AliasChoices("float", "balance"))


class ValidatorScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    score: float

    @model_validator(mode="before")
    @classmethod
    def _from_pair(cls, data):
        if isinstance(data, (list, tuple)) and len(data) == 2:
            return {"address": data[0], "score": data[1]}
        if isinstance(data, dict) and "pk" in data:
            return {"address": data["pk"], "score": data.get("score", 0)}
        return data


class MetricSample(BaseModel):
    timestamp: int
    date: Optional[str] = None
    pflops: float
    height: Optional[int] = None
    epoch: Optional[int] = None
    circulating: Optional[float] = None
    txs_per_sec: Optional[float] = Field(None, validation_alias=AliasChoices("txs_per_sec", "txsPerSec"))


def parse_stats(payload: Any) -> ChainStats:
    """Parse the ``stats`` object of /chain/stats or an event_stats frame"""
    if not isinstance(payload, dict):
        raise ParseError("stats payload is not an object")
    try:
        return ChainStats.model_validate(payload)
    except PydanticValidationError as e:
        raise ParseError(f"invalid stats payload: {e.error_count()} errors") from e


def _parse_many(model, items: Optional[Iterable[Any]], kind: str) -> list:
    parsed = []
    for item in items or []:
        try:
            parsed.append(model.model_validate(item))
        except PydanticValidationError as e:
            # Bad records are skipped; the rest of the batch survives
            logger.warning(f"Skipping malformed {kind}: {e.error_count()} validation errors")
    return parsed


def parse_blocks(items: Optional[Iterable[Any]]) -> List[BlockSummary]:
    return _parse_many(BlockSummary, items, "block")


def parse_transactions(items: Optional[Iterable[Any]]) -> List[TransactionRecord]:
    return _parse_many(TransactionRecord, items, "transaction")


def parse_balances(items: Optional[Iterable[Any]]) -> List[Balance]:
    return _parse_many(Balance, items, "balance")


def parse_richlist(items: Optional[Iterable[Any]]) -> List[RichListEntry]:
    return _parse_many(RichListEntry, items, "rich list entry")


def parse_validator_scores(items: Optional[Iterable[Any]]) -> List[ValidatorScore]:
    return _parse_many(ValidatorScore, items, "validator score")


def parse_block(item: Any) -> BlockSummary:
    try:
        return BlockSummary.model_validate(item)
    except PydanticValidationError as e:
        raise ParseError(f"invalid block: {e.error_count()} errors") from e


def parse_transaction(item: Any) -> TransactionRecord:
    try:
        return TransactionRecord.model_validate(item)
    except PydanticValidationError as e:
        raise ParseError(f"invalid transaction: {e.error_count()} errors") from e
