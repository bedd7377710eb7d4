"""
Persistent websocket connection to the node's event stream
"""

import asyncio
import inspect
import time
from collections import defaultdict
from enum import Enum
from typing import Callable, Dict, List, Optional

import aiohttp

from config.config import NODE_WS_URL, WS_HEARTBEAT
from errors.exceptions import ParseError
from events.event_bus import EventTypes
from log_utils import get_logger
from monitoring.health import (
    realtime_connection_state,
    realtime_connect_attempts_total,
    realtime_frames_total,
)
from realtime.backoff import ReconnectBackoff
from realtime.messages import (
    OP_SUBSCRIBE_ACCOUNT,
    OP_UNSUBSCRIBE_ACCOUNT,
    StreamMessage,
    UnknownFrame,
    control_frame,
    decode_frame,
)

logger = get_logger(__name__)


class ConnectionState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED_RECONNECTING = "closed_reconnecting"
    CLOSED = "closed"


_STATE_GAUGE = {
    ConnectionState.CLOSED: 0,
    ConnectionState.CLOSED_RECONNECTING: 0,
    ConnectionState.CONNECTING: 0.5,
    ConnectionState.OPEN: 1,
}


class RealtimeChannel:
    """
    One duplex connection to the node, reconnected forever until stopped.

    At most one connection attempt is in flight. Every close or error signal
    funnels through ``_on_disconnect``; the first one for an attempt schedules
    a rejoin task, later ones for the same attempt are ignored. The rejoin
    waits out the remainder of the backoff floor measured from when the
    attempt started, so attempts never start closer together than the floor.
    """

    def __init__(self, url: str = NODE_WS_URL, bus=None,
                 session_factory: Callable[[], aiohttp.ClientSession] = None,
                 backoff: ReconnectBackoff = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable = asyncio.sleep,
                 heartbeat: float = WS_HEARTBEAT):
        self.url = url
        self.bus = bus
        self.backoff = backoff or ReconnectBackoff()
        self.heartbeat = heartbeat
        self.state = ConnectionState.CLOSED
        self.attempts = 0

        self._session_factory = session_factory or aiohttp.ClientSession
        self._session = None
        self._clock = clock
        self._sleep = sleep
        self._ws = None
        self._reader_task: Optional[asyncio.Task] = None
        self._rejoin_task: Optional[asyncio.Task] = None
        self._rejoining = False
        self._attempt_started: Optional[float] = None
        self._running = False
        self._handlers: Dict[type, List[Callable]] = defaultdict(list)
        self._open_handlers: List[Callable] = []
        self._ever_opened = False

    # ------------------------------------------------------------------ #
    # lifecycle
    # ------------------------------------------------------------------ #
    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    async def start(self):
        self._running = True
        await self.connect()

    async def stop(self):
        self._running = False
        for task in (self._rejoin_task, self._reader_task):
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._rejoin_task = None
        self._reader_task = None
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
        self._set_state(ConnectionState.CLOSED)
        logger.info("Realtime channel stopped")

    def _get_session(self):
        if self._session is None or self._session.closed:
            self._session = self._session_factory()
        return self._session

    def _set_state(self, state: ConnectionState):
        if state is self.state:
            return
        self.state = state
        realtime_connection_state.set(_STATE_GAUGE[state])
        logger.info(f"Realtime channel {state.value}", extra={"connection_state": state.value})
        if self.bus is not None:
            self.bus.emit_nowait(EventTypes.CONNECTION_STATE, {"state": state.value}, source="realtime")

    # ------------------------------------------------------------------ #
    # connection attempts
    # ------------------------------------------------------------------ #
    async def connect(self) -> bool:
        """Start a new connection attempt; True once the socket is open."""
        self._rejoining = False
        self._attempt_started = self._clock()
        self.attempts += 1
        attempt = self.attempts
        realtime_connect_attempts_total.inc()
        self._set_state(ConnectionState.CONNECTING)
        await self._discard_previous()

        try:
            ws = await self._get_session().ws_connect(self.url, heartbeat=self.heartbeat)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning(f"Websocket connect to {self.url} failed: {e}")
            self._on_disconnect(f"connect failed: {e}", attempt)
            return False

        if attempt != self.attempts or not self._running:
            # stop() or a newer attempt won the race while we were connecting
            await ws.close()
            return False

        self._ws = ws
        self._set_state(ConnectionState.OPEN)
        self._reader_task = asyncio.create_task(self._read_loop(ws, attempt))
        reopened, self._ever_opened = self._ever_opened, True
        await self._notify_open(reopened)
        return True

    async def _discard_previous(self):
        reader, ws = self._reader_task, self._ws
        self._reader_task, self._ws = None, None
        if reader is not None and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()
        if ws is not None and not ws.closed:
            await ws.close()

    async def _read_loop(self, ws, attempt: int):
        try:
            async for msg in ws:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    await self.dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    self._on_disconnect(f"socket error: {ws.exception()}", attempt)
                    break
        except (aiohttp.ClientError, OSError) as e:
            self._on_disconnect(f"socket failure: {e}", attempt)
            return
        # The close that follows an error belongs to the same attempt and is ignored
        self._on_disconnect(f"socket closed (code {ws.close_code})", attempt)

    def _on_disconnect(self, reason: str, attempt: int) -> Optional[asyncio.Task]:
        if attempt != self.attempts:
            logger.debug(f"Ignoring disconnect from superseded attempt {attempt}: {reason}")
            return None
        if not self._running:
            self._ws = None
            self._set_state(ConnectionState.CLOSED)
            return None
        if self._rejoining:
            logger.debug(f"Rejoin already in progress, ignoring: {reason}")
            return None

        self._rejoining = True
        self._set_state(ConnectionState.CLOSED_RECONNECTING)
        elapsed = self._clock() - self._attempt_started
        delay = self.backoff.delay(elapsed)
        logger.info(f"Realtime channel lost ({reason}); reconnecting in {delay:.1f}s")
        self._rejoin_task = asyncio.create_task(self._rejoin(delay))
        return self._rejoin_task

    async def _rejoin(self, delay: float):
        if delay > 0:
            await self._sleep(delay)
        if self._running:
            await self.connect()

    # ------------------------------------------------------------------ #
    # inbound frames
    # ------------------------------------------------------------------ #
    def add_handler(self, message_type: type, handler: Callable) -> Callable[[], None]:
        """Route decoded frames of ``message_type`` to ``handler``; returns a cancel handle."""
        self._handlers[message_type].append(handler)

        def cancel():
            if handler in self._handlers[message_type]:
                self._handlers[message_type].remove(handler)

        return cancel

    def add_open_handler(self, handler: Callable) -> Callable[[], None]:
        """
        Call ``handler(reopened)`` each time the socket reaches OPEN.

        ``reopened`` is False for the first connection and True after every
        rejoin; the node forgets account subscriptions with the old socket and
        frames sent while it was down are gone.
        """
        self._open_handlers.append(handler)

        def cancel():
            if handler in self._open_handlers:
                self._open_handlers.remove(handler)

        return cancel

    async def _notify_open(self, reopened: bool):
        if reopened:
            logger.info("Realtime channel reopened; restoring subscriptions")
        for handler in list(self._open_handlers):
            try:
                result = handler(reopened)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Open handler {getattr(handler, '__qualname__', handler)} failed: {e}",
                             exc_info=True)

    async def dispatch(self, raw) -> Optional[StreamMessage]:
        try:
            message = decode_frame(raw)
        except ParseError as e:
            realtime_frames_total.labels(op="invalid").inc()
            logger.warning(f"Dropping undecodable frame: {e.message}")
            return None

        if isinstance(message, UnknownFrame):
            realtime_frames_total.labels(op="unknown").inc()
            logger.warning(f"Dropping frame with unknown op {message.op!r}", extra={"op": message.op})
            return message

        realtime_frames_total.labels(op=type(message).__name__).inc()
        for handler in list(self._handlers.get(type(message), [])):
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Handler {getattr(handler, '__qualname__', handler)} failed "
                             f"for {type(message).__name__}: {e}", exc_info=True)
        return message

    # ------------------------------------------------------------------ #
    # outbound control frames
    # ------------------------------------------------------------------ #
    async def _send_control(self, op: str, account: str) -> bool:
        if self.state is not ConnectionState.OPEN or self._ws is None:
            logger.warning(f"Cannot send {op}: channel is {self.state.value}", extra={"address": account})
            return False
        try:
            await self._ws.send_json(control_frame(op, account))
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            logger.warning(f"Sending {op} failed: {e}", extra={"address": account})
            return False
        logger.debug(f"Sent {op}", extra={"address": account})
        return True

    async def subscribe_account(self, address: str) -> bool:
        return await self._send_control(OP_SUBSCRIBE_ACCOUNT, address)

    async def unsubscribe_account(self, address: str) -> bool:
        return await self._send_control(OP_UNSUBSCRIBE_ACCOUNT, address)
