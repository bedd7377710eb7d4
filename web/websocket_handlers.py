"""
Event-based WebSocket handlers
"""

import logging
from typing import Callable, Dict, Set

from fastapi import WebSocket

from events.event_bus import Event

logger = logging.getLogger(__name__)

ALL_UPDATES = "*"


class WebSocketManager:
    """Browser connections and the event types each one asked for"""

    def __init__(self):
        self.active_connections: Dict[WebSocket, Set[str]] = {}

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        # New clients get everything until they narrow it down
        self.active_connections[websocket] = {ALL_UPDATES}

    async def disconnect(self, websocket: WebSocket):
        self.active_connections.pop(websocket, None)

    def subscribe(self, websocket: WebSocket, update_type: str):
        if websocket in self.active_connections:
            subscriptions = self.active_connections[websocket]
            if update_type != ALL_UPDATES:
                subscriptions.discard(ALL_UPDATES)
            subscriptions.add(update_type)
            logger.info(f"WebSocket subscribed to {update_type}")

    def unsubscribe(self, websocket: WebSocket, update_type: str):
        if websocket in self.active_connections:
            self.active_connections[websocket].discard(update_type)

    async def broadcast(self, message: dict, update_type: str) -> int:
        sent_count = 0
        for connection, subscriptions in list(self.active_connections.items()):
            if update_type not in subscriptions and ALL_UPDATES not in subscriptions:
                continue
            try:
                await connection.send_json(message)
                sent_count += 1
            except Exception as e:
                logger.error(f"Failed to send message to WebSocket: {e}")
                await self.disconnect(connection)
        logger.debug(f"Broadcast {update_type} to {sent_count} connections")
        return sent_count


class WebSocketEventHandlers:
    """
    Forwards every bus event to the browser connections subscribed to it
    """

    def __init__(self, websocket_manager: WebSocketManager):
        self.websocket_manager = websocket_manager
        logger.info("WebSocketEventHandlers initialized")

    async def handle_event(self, event: Event):
        message = {
            "type": event.type,
            "source": event.source,
            "timestamp": event.timestamp,
            "data": event.data,
        }
        await self.websocket_manager.broadcast(message, event.type)

    def register_handlers(self, event_bus) -> Callable[[], None]:
        """Register the forwarder; returns the cancel handle"""
        return event_bus.subscribe(ALL_UPDATES, self.handle_event)
