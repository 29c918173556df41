import json
import logging

from fastapi import WebSocket, WebSocketDisconnect

from tabletop.auth.jwt import user_id_from_token
from tabletop.game import access
from tabletop.ws import protocol as P
from tabletop.ws.manager import ConnectionManager

log = logging.getLogger(__name__)


async def _is_member(websocket: WebSocket, campaign_id: str, user_id: int) -> bool:
    async with websocket.app.state.db.session_factory() as db:
        return await access.get_membership(db, campaign_id, user_id) is not None


async def websocket_handler(websocket: WebSocket):
    manager: ConnectionManager = websocket.app.state.live

    # ---- authenticate ----
    user_id = user_id_from_token(websocket.query_params.get("token"))
    if user_id is None:
        await websocket.close(code=4001, reason="Invalid token")
        return

    channels = [P.user_channel(user_id)]
    campaign_id = websocket.query_params.get("campaign_id")
    if campaign_id:
        if not await _is_member(websocket, campaign_id, user_id):
            await websocket.close(code=4003, reason="Not a campaign member")
            return
        channels.append(P.campaign_channel(campaign_id))

    await manager.connect(websocket, channels)
    log.debug("User %s connected to %s", user_id, channels)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                await websocket.send_json({"type": P.MSG_ERROR, "detail": "Invalid JSON"})
                continue
            if not isinstance(message, dict):
                await websocket.send_json(
                    {"type": P.MSG_ERROR, "detail": "Expected a JSON object"}
                )
                continue
            msg_type = message.get("type")

            if msg_type == P.MSG_HEARTBEAT:
                await websocket.send_json({"type": P.MSG_HEARTBEAT_ACK})

            elif msg_type == P.MSG_SUBSCRIBE:
                target = message.get("campaign_id")
                if not target:
                    await websocket.send_json(
                        {"type": P.MSG_ERROR, "detail": "campaign_id is required"}
                    )
                    continue
                if not await _is_member(websocket, target, user_id):
                    await websocket.send_json(
                        {"type": P.MSG_ERROR, "detail": "Not a campaign member"}
                    )
                    continue
                channel = P.campaign_channel(target)
                manager.subscribe(websocket, channel)
                await websocket.send_json({"type": P.MSG_SUBSCRIBED, "channel": channel})

            elif msg_type == P.MSG_UNSUBSCRIBE:
                target = message.get("campaign_id")
                if not target:
                    await websocket.send_json(
                        {"type": P.MSG_ERROR, "detail": "campaign_id is required"}
                    )
                    continue
                channel = P.campaign_channel(target)
                manager.unsubscribe(websocket, channel)
                await websocket.send_json({"type": P.MSG_UNSUBSCRIBED, "channel": channel})

            else:
                await websocket.send_json(
                    {"type": P.MSG_ERROR, "detail": f"Unknown message type: {msg_type}"}
                )

    except WebSocketDisconnect:
        log.debug("User %s disconnected", user_id)
    finally:
        manager.disconnect(websocket)
