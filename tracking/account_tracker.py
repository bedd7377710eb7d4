"""
Live tracking of a single account over the realtime channel
"""

import asyncio
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

from config.config import LIVE_BUFFER_SIZE
from events.event_bus import EventTypes
from log_utils import get_logger
from models.chain import TransactionRecord
from realtime.messages import AccountTransaction

logger = get_logger(__name__)


class AccountSubscriptionTracker:
    """
    Idle -> Tracking -> Idle.

    Only one account is tracked at a time. Switching accounts always sends the
    unsubscribe for the old account before the subscribe for the new one.
    """

    def __init__(self, channel, bus=None, buffer_size: int = LIVE_BUFFER_SIZE):
        self.channel = channel
        self.bus = bus
        self.address: Optional[str] = None
        self.live_buffer: Deque[TransactionRecord] = deque(maxlen=buffer_size)
        self._cancel_handler: Optional[Callable[[], None]] = None
        # Serializes transitions so two overlapping starts cannot both subscribe
        self._lock = asyncio.Lock()
        self._cancel_open_handler = channel.add_open_handler(self._on_channel_open)

    @property
    def enabled(self) -> bool:
        return self.address is not None

    def _emit(self, event_type: str, data: Dict[str, Any]):
        if self.bus is not None:
            self.bus.emit_nowait(event_type, data, source="account_tracker")

    async def start_tracking(self, address: str) -> bool:
        """Subscribe to ``address``; False (and Idle) when the channel cannot."""
        async with self._lock:
            log = logger.with_context(address=address)
            if not self.channel.is_open:
                log.warning("Cannot track account: realtime channel not open")
                return False

            if self.enabled:
                await self._stop()

            if not await self.channel.subscribe_account(address):
                return False

            self.address = address
            self.live_buffer.clear()
            self._cancel_handler = self.channel.add_handler(AccountTransaction, self._on_account_transaction)
            log.info("Tracking account")
            self._emit(EventTypes.TRACKING_CHANGED, {"enabled": True, "address": address})
            return True

    async def stop_tracking(self):
        async with self._lock:
            await self._stop()

    async def _stop(self):
        if not self.enabled:
            return
        address = self.address
        log = logger.with_context(address=address)

        # Best effort; the transition to Idle happens regardless
        sent = await self.channel.unsubscribe_account(address)
        if not sent:
            log.debug("Unsubscribe not delivered")
        self._reset(address)
        log.info("Stopped tracking account")

    def _reset(self, address: str):
        if self._cancel_handler is not None:
            self._cancel_handler()
            self._cancel_handler = None
        self.address = None
        self.live_buffer.clear()
        self._emit(EventTypes.TRACKING_CHANGED, {"enabled": False, "address": address})

    async def _on_channel_open(self, reopened: bool):
        # A new socket starts without subscriptions
        if not reopened:
            return
        async with self._lock:
            if not self.enabled:
                return
            address = self.address
            log = logger.with_context(address=address)
            if await self.channel.subscribe_account(address):
                log.info("Resubscribed account after reconnect")
            else:
                log.warning("Resubscribe after reconnect failed; tracking stopped")
                self._reset(address)

    def _on_account_transaction(self, message: AccountTransaction):
        if message.account != self.address:
            return
        self.live_buffer.appendleft(message.transaction)
        self._emit(EventTypes.LIVE_TRANSACTION, {
            "address": message.account,
            "transaction": message.transaction.model_dump(mode="json"),
        })

    def transactions(self) -> List[TransactionRecord]:
        return list(self.live_buffer)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "address": self.address,
            "live_buffer": [tx.model_dump(mode="json") for tx in self.live_buffer],
        }
