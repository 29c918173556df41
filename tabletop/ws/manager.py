"""In-process pub/sub over WebSockets.

Sockets subscribe to named channels (``campaign-<id>``, ``user-<id>``);
``trigger`` pushes an event to every subscriber of a channel.
"""
import logging

from fastapi import WebSocket

from tabletop.ws import protocol as P

log = logging.getLogger(__name__)


class ConnectionManager:
    """Manages active WebSocket connections and their channel subscriptions."""

    def __init__(self):
        self.channels: dict[str, set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, channels: list[str]):
        await websocket.accept()
        for channel in channels:
            self.subscribe(websocket, channel)

    def subscribe(self, websocket: WebSocket, channel: str):
        self.channels.setdefault(channel, set()).add(websocket)

    def unsubscribe(self, websocket: WebSocket, channel: str):
        subscribers = self.channels.get(channel)
        if subscribers is None:
            return
        subscribers.discard(websocket)
        if not subscribers:
            del self.channels[channel]

    def disconnect(self, websocket: WebSocket):
        for channel in list(self.channels):
            self.unsubscribe(websocket, channel)

    def subscriber_count(self, channel: str) -> int:
        return len(self.channels.get(channel, ()))

    async def trigger(self, channel: str, event: str, data: dict) -> int:
        """Send *event* to every socket on *channel*; return how many got it.

        Sockets that fail to receive are dropped from all channels.
        """
        delivered = 0
        message = {"type": P.MSG_EVENT, "channel": channel, "event": event, "data": data}
        for ws in list(self.channels.get(channel, ())):
            try:
                await ws.send_json(message)
                delivered += 1
            except Exception:
                log.debug("Dropping dead socket from channel %s", channel)
                self.disconnect(ws)
        return delivered
