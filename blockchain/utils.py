from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from config.config import (
    ATOMIC_UNITS,
    BLOCKS_PER_EPOCH,
    DEFAULT_SYMBOL,
    REFERENCE_SLOT,
    REFERENCE_SLOT_TIME,
    SLOT_DURATION_MS,
)
from models.chain import RichListEntry, TransactionRecord, ValidatorScore

_REFERENCE_TIME = datetime.fromisoformat(REFERENCE_SLOT_TIME)


def epoch_of(height: int) -> int:
    return height // BLOCKS_PER_EPOCH


def slot_to_timestamp(slot: int) -> datetime:
    """
    Approximate wall-clock time of a slot.

    Args:
        slot (int): Slot number.

    Returns:
        datetime: Naive UTC time, extrapolated from a known slot at a fixed
        slot duration.
    """
    return _REFERENCE_TIME + timedelta(milliseconds=(slot - REFERENCE_SLOT) * SLOT_DURATION_MS)


def format_time_ago(slot: int, current_slot: int) -> str:
    seconds = max(0, (current_slot - slot) * SLOT_DURATION_MS // 1000)
    if seconds < 60:
        return f"{seconds}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86400}d ago"


def format_hash(value: Optional[str], keep: int = 8) -> str:
    if not value:
        return ""
    if len(value) <= keep * 2 + 3:
        return value
    return f"{value[:keep]}...{value[-keep:]}"


def transfer_amount(tx: TransactionRecord) -> Optional[Dict[str, str]]:
    """
    Amount moved by a Coin.transfer action.

    Args:
        tx (TransactionRecord): The transaction.

    Returns:
        dict: ``{"receiver", "amount", "symbol"}`` with the amount in whole
        coins, or None for any other call.

    Notes:
        Transfer args are ``[receiver, amount_in_atomic_units, symbol]``.
    """
    action = tx.action
    if action.contract != "Coin" or action.function != "transfer" or len(action.args) < 2:
        return None
    try:
        atomic = Decimal(str(action.args[1]))
    except ArithmeticError:
        return None
    symbol = action.args[2] if len(action.args) > 2 and action.args[2] else DEFAULT_SYMBOL
    amount = atomic / ATOMIC_UNITS
    return {
        "receiver": str(action.args[0]),
        "amount": format(amount.normalize(), "f"),
        "symbol": str(symbol),
    }


def richlist_summary(entries: Iterable[RichListEntry], top: int = 10) -> Dict[str, float]:
    ranked = sorted(entries, key=lambda e: e.balance, reverse=True)
    total = sum(e.balance for e in ranked)
    top_held = sum(e.balance for e in ranked[:top])
    return {
        "holders": len(ranked),
        "total": total,
        "top_share": (top_held / total * 100) if total else 0.0,
    }


def rank_validators(scores: Iterable[ValidatorScore]) -> List[Dict[str, object]]:
    ordered = sorted(scores, key=lambda s: s.score, reverse=True)
    return [
        {"rank": position, "address": s.address, "score": s.score}
        for position, s in enumerate(ordered, start=1)
    ]
