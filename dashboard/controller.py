"""
Wiring of the explorer components, plus startup and shutdown procedures
"""

import asyncio
from typing import Callable, List, Optional

from config.config import DEFAULT_PAGE_SIZE, STATS_POLL_INTERVAL
from errors.exceptions import ApiError
from events.event_bus import EventBus
from gateway.api_gateway import ApiGateway
from log_utils import get_logger
from metrics.store import MetricStore
from monitoring.health import HealthMonitor
from query.router import QueryRouter
from realtime.channel import RealtimeChannel
from realtime.messages import NewBlock, NewTransactions, StatsUpdate
from state.ledger_view import LedgerViewState
from tracking.account_tracker import AccountSubscriptionTracker

logger = get_logger(__name__)


class ExplorerContext:
    """
    Owns one instance of every long-lived component.

    The web layer receives the context instead of reaching for module
    globals, so tests can build one around fakes.
    """

    def __init__(self, gateway: Optional[ApiGateway] = None, channel: Optional[RealtimeChannel] = None,
                 bus: Optional[EventBus] = None, metric_store: Optional[MetricStore] = None,
                 poll_interval: float = STATS_POLL_INTERVAL):
        self.bus = bus or EventBus()
        self.gateway = gateway or ApiGateway()
        self.channel = channel or RealtimeChannel(bus=self.bus)
        if self.channel.bus is None:
            self.channel.bus = self.bus
        self.view = LedgerViewState(self.gateway, self.bus)
        self.tracker = AccountSubscriptionTracker(self.channel, self.bus)
        self.router = QueryRouter(self.gateway)
        self.metric_store = metric_store or MetricStore()
        self.health_monitor = HealthMonitor()
        self.poll_interval = poll_interval

        self._poll_task: Optional[asyncio.Task] = None
        self._catch_up_task: Optional[asyncio.Task] = None
        self._cancel_handlers: List[Callable[[], None]] = [
            self.channel.add_handler(StatsUpdate, self._on_stats),
            self.channel.add_handler(NewBlock, self._on_block),
            self.channel.add_handler(NewTransactions, self._on_transactions),
            self.channel.add_open_handler(self._on_channel_open),
        ]

    async def _on_stats(self, message: StatsUpdate):
        await self.view.handle_stats_event(message.stats)

    def _on_block(self, message: NewBlock):
        self.view.ingest_streamed_block(message.block)

    def _on_transactions(self, message: NewTransactions):
        self.view.ingest_streamed_transactions(message.transactions)

    def _on_channel_open(self, reopened: bool):
        # Anything streamed while the socket was down has to come from REST
        if reopened and (self._catch_up_task is None or self._catch_up_task.done()):
            self._catch_up_task = asyncio.create_task(self.catch_up())

    async def catch_up(self) -> bool:
        try:
            await self.view.catch_up()
        except ApiError as e:
            self.view.notify(f"Error catching up after reconnect: {e.message}")
            return False
        return True

    async def load_initial_data(self) -> bool:
        try:
            await self.view.refresh_stats()
            await self.view.refresh_latest_blocks()
            await self.view.refresh_latest_transactions()
        except ApiError as e:
            self.view.notify(f"Error loading initial data: {e.message}")
            return False
        return True

    async def poll_stats_once(self) -> bool:
        try:
            stats = await self.gateway.get_stats()
        except ApiError as e:
            logger.warning(f"Stats poll failed: {e.message}")
            return False
        return await self.view.handle_stats_event(stats)

    async def _poll_stats(self):
        while True:
            await asyncio.sleep(self.poll_interval)
            await self.poll_stats_once()

    async def open_address(self, address: str, feed_filter: str = "all",
                           page_size: int = DEFAULT_PAGE_SIZE) -> bool:
        """Display ``address``: reset the feed, load its first page and balances."""
        if self.tracker.address is not None and self.tracker.address != address:
            # Live tracking belongs to the address view it was started from
            await self.tracker.stop_tracking()
        loaded = await self.view.load_address_feed(address, feed_filter, page_size)
        await self.view.load_address_balances(address)
        return loaded

    async def leave_address(self):
        await self.tracker.stop_tracking()
        self.view.clear_address_feed()

    async def startup(self, connect_stream: bool = True):
        logger.info("Starting explorer")
        if not self.bus.running:
            await self.bus.start()
        await self.load_initial_data()
        if connect_stream:
            await self.channel.start()
        if self.poll_interval > 0:
            self._poll_task = asyncio.create_task(self._poll_stats())
        logger.info("Explorer startup completed")

    async def shutdown(self):
        logger.info("Starting explorer shutdown")
        for task in (self._poll_task, self._catch_up_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._poll_task = None
        self._catch_up_task = None

        await self.tracker.stop_tracking()
        await self.channel.stop()
        await self.view.cancel_enrichment()
        await self.gateway.close()
        await self.bus.stop()
        logger.info("Explorer shutdown completed")
