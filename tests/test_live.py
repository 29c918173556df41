"""Live channels, the WebSocket handler and the sweep loop."""
import json
from datetime import timedelta
from types import SimpleNamespace

import pytest
from fastapi import WebSocketDisconnect

from tabletop.auth.jwt import create_access_token
from tabletop.game import turn_tracker
from tabletop.game.sweep_loop import SweepLoop
from tabletop.models.base import utcnow
from tabletop.models.notification import (
    Notification,
    NotificationPriority,
    NotificationStatus,
    NotificationType,
)
from tabletop.ws import protocol as P
from tabletop.ws.handler import websocket_handler
from tabletop.ws.manager import ConnectionManager


class FakeSocket:
    def __init__(self, app=None, query=None, incoming=()):
        self.app = app
        self.query_params = query or {}
        self.incoming = [json.dumps(m) for m in incoming]
        self.sent: list[dict] = []
        self.accepted = False
        self.closed_with = None
        self.broken = False

    async def accept(self):
        self.accepted = True

    async def close(self, code: int = 1000, reason: str | None = None):
        self.closed_with = code

    async def receive_text(self) -> str:
        if not self.incoming:
            raise WebSocketDisconnect()
        return self.incoming.pop(0)

    async def send_json(self, data: dict):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(data)


def _app(database):
    return SimpleNamespace(state=SimpleNamespace(db=database, live=ConnectionManager()))


# -- manager -------------------------------------------------------------------


@pytest.mark.asyncio
async def test_trigger_reaches_only_subscribers():
    manager = ConnectionManager()
    here, elsewhere = FakeSocket(), FakeSocket()
    await manager.connect(here, ["campaign-1"])
    await manager.connect(elsewhere, ["campaign-2"])

    delivered = await manager.trigger("campaign-1", P.TURN_UPDATE, {"turn_index": 1})
    assert delivered == 1
    assert here.sent == [{
        "type": P.MSG_EVENT, "channel": "campaign-1",
        "event": P.TURN_UPDATE, "data": {"turn_index": 1},
    }]
    assert elsewhere.sent == []


@pytest.mark.asyncio
async def test_dead_sockets_are_dropped():
    manager = ConnectionManager()
    dead = FakeSocket()
    await manager.connect(dead, ["campaign-1", "user-1"])
    dead.broken = True

    assert await manager.trigger("campaign-1", P.TURN_UPDATE, {}) == 0
    assert manager.subscriber_count("campaign-1") == 0
    assert manager.subscriber_count("user-1") == 0


# -- handler -------------------------------------------------------------------


@pytest.mark.asyncio
async def test_handler_rejects_bad_token(database):
    socket = FakeSocket(_app(database), {"token": "nope"})
    await websocket_handler(socket)
    assert socket.closed_with == 4001
    assert socket.accepted is False


@pytest.mark.asyncio
async def test_handler_rejects_non_member(database, world):
    token = create_access_token({"sub": "9999"})
    socket = FakeSocket(_app(database), {"token": token, "campaign_id": world.campaign_id})
    await websocket_handler(socket)
    assert socket.closed_with == 4003


@pytest.mark.asyncio
async def test_handler_subscribes_and_answers(database, world):
    app = _app(database)
    token = create_access_token({"sub": str(world.alice_id)})
    socket = FakeSocket(
        app,
        {"token": token},
        incoming=[
            {"type": P.MSG_HEARTBEAT},
            {"type": P.MSG_SUBSCRIBE, "campaign_id": world.campaign_id},
            {"type": P.MSG_SUBSCRIBE, "campaign_id": "not-mine"},
            {"type": "dance"},
        ],
    )
    await websocket_handler(socket)

    assert socket.accepted
    assert [m["type"] for m in socket.sent] == [
        P.MSG_HEARTBEAT_ACK, P.MSG_SUBSCRIBED, P.MSG_ERROR, P.MSG_ERROR,
    ]
    assert socket.sent[1]["channel"] == P.campaign_channel(world.campaign_id)
    # Disconnect removes the socket from every channel.
    assert app.state.live.channels == {}


@pytest.mark.asyncio
async def test_handler_answers_non_object_frames(database, world):
    app = _app(database)
    token = create_access_token({"sub": str(world.bob_id)})
    socket = FakeSocket(
        app, {"token": token}, incoming=[[1, 2], "x", {"type": P.MSG_HEARTBEAT}],
    )
    await websocket_handler(socket)

    assert [m["type"] for m in socket.sent] == [
        P.MSG_ERROR, P.MSG_ERROR, P.MSG_HEARTBEAT_ACK,
    ]
    assert app.state.live.channels == {}


@pytest.mark.asyncio
async def test_handler_disconnects_when_the_socket_breaks(database, world):
    app = _app(database)
    token = create_access_token({"sub": str(world.bob_id)})
    socket = FakeSocket(app, {"token": token}, incoming=[{"type": P.MSG_HEARTBEAT}])
    socket.broken = True

    with pytest.raises(RuntimeError):
        await websocket_handler(socket)
    assert app.state.live.channels == {}


# -- sweep loop ----------------------------------------------------------------


@pytest.mark.asyncio
async def test_run_once_reports_each_sweep(db_session, database, dispatcher, world):
    now = utcnow()
    await turn_tracker.initialize_scene(
        db_session, dispatcher, world.campaign_id, world.scene_id,
        [{"name": "Alice", "user_id": world.alice_id}],
        timeout_minutes=1, auto_advance_turn=True,
        now=now - timedelta(minutes=5),
    )
    db_session.add(Notification(
        type=NotificationType.SYSTEM, title="old", message="gone",
        priority=NotificationPriority.LOW, status=NotificationStatus.UNREAD,
        user_id=world.alice_id, email_sent=False, push_sent=False,
        created_at=now - timedelta(days=2), expires_at=now - timedelta(days=1),
    ))
    await db_session.commit()

    loop = SweepLoop(database.session_factory, dispatcher, interval=3600)
    result = await loop.run_once()
    assert result["expired_turns"] == 1
    assert result["cleaned"] == 1
    # Every reminder threshold fell before the turn started, so no timer was stored.
    assert result["reminders"] == 0


@pytest.mark.asyncio
async def test_loop_starts_and_stops(database, dispatcher):
    loop = SweepLoop(database.session_factory, dispatcher, interval=3600)
    await loop.start()
    assert loop._task is not None
    await loop.stop()
    assert loop._task is None
