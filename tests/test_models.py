# tests/test_models.py
from decimal import Decimal

import pytest

from errors.exceptions import ParseError
from models.chain import (
    BlockSummary,
    ChainStats,
    TransactionRecord,
    ValidatorScore,
    parse_balances,
    parse_blocks,
    parse_stats,
    parse_transaction,
)


def test_stats_aliases_and_missing_fields():
    stats = parse_stats({"height": 300_500, "txsPerSec": 2.5, "circulating": "10.25", "pflops": None})

    assert stats.epoch == 3
    assert stats.txs_per_sec == 2.5
    assert stats.circulating == Decimal("10.25")
    assert stats.pflops == 0.0


def test_stats_rejects_non_object():
    with pytest.raises(ParseError):
        parse_stats("nope")


def test_block_flattens_node_header():
    block = BlockSummary.model_validate({
        "hash": "abc",
        "header_unpacked": {"height": 12, "slot": 40, "prev_hash": "prev", "signer": "sig"},
        "txs": [{}, {}],
    })
    assert (block.height, block.slot, block.prev_hash, block.tx_count) == (12, 40, "prev", 2)


def test_block_without_txs_has_unknown_count():
    block = BlockSummary.model_validate({"hash": "abc", "header_unpacked": {"height": 1}})
    assert block.tx_count is None


def test_transaction_from_node_shape():
    tx = TransactionRecord.model_validate({
        "hash": "t1",
        "tx": {"signer": "s", "nonce": 7, "actions": [
            {"contract": "Coin", "function": "transfer", "args": ["r", "5", "AMA"]},
        ]},
        "receipt": {"error": "ok", "exec_used": 12},
        "metadata": {"entry_hash": "e", "tx_event": "sent"},
    })

    assert tx.nonce == 7
    assert tx.action.function == "transfer"
    assert tx.execution_result.status == "ok"
    assert tx.execution_result.gas_used == 12
    assert tx.metadata.tx_event == "sent"


def test_streamed_transaction_has_no_detail():
    tx = TransactionRecord.model_validate({"hash": "t1", "tx": {"signer": "s", "nonce": 1, "actions": []}})
    assert tx.execution_result is None and tx.metadata is None
    assert tx.action.contract == ""


def test_bad_records_are_skipped():
    blocks = parse_blocks([
        {"hash": "ok", "header_unpacked": {"height": 1}},
        {"hash": "no-height"},
        "garbage",
    ])
    assert [b.hash for b in blocks] == ["ok"]


def test_single_transaction_failure_raises():
    with pytest.raises(ParseError):
        parse_transaction({"hash": "t1"})


def test_balance_amount_is_kept_as_text():
    balances = parse_balances([{"symbol": "AMA", "float": 1.5, "flat": 1500000000}])
    assert balances[0].amount == "1.5"
    assert balances[0].flat == 1500000000


@pytest.mark.parametrize("raw", [["pk", 3], {"pk": "pk", "score": 3}, {"address": "pk", "score": 3}])
def test_validator_score_shapes(raw):
    score = ValidatorScore.model_validate(raw)
    assert (score.address, score.score) == ("pk", 3)


def test_models_are_immutable():
    stats = ChainStats(height=1)
    with pytest.raises(Exception):
        stats.height = 2
