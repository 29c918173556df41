"""Initiative turn order for a scene's encounter.

``initialize`` rolls 2d6 + cool for every living character in the campaign
and replaces whatever turn order the scene had.  ``apply_action`` runs one
PATCH command against the active order.  Every change is pushed to the
campaign channel as ``turnOrder:initialized``, ``turnOrder:updated`` or
``turnOrder:ended``.

Authorisation is the caller's job; see ``tabletop.api.turn_order``.
"""
import logging
import random
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tabletop.game import initiative, timers, turn_tracker
from tabletop.game.errors import NotFoundError
from tabletop.game.initiative import EndEncounter, EndTurn, NextTurn, TurnCommand
from tabletop.game.notifications import NotificationDispatcher
from tabletop.models.base import utcnow
from tabletop.models.character import Character
from tabletop.models.scene import Scene
from tabletop.models.turn_order import TurnOrder
from tabletop.ws import protocol as P

log = logging.getLogger(__name__)


async def get_turn_order(db: AsyncSession, scene_id: str) -> TurnOrder | None:
    return (
        await db.execute(select(TurnOrder).where(TurnOrder.scene_id == scene_id))
    ).scalar_one_or_none()


async def _broadcast(
    dispatcher: NotificationDispatcher, campaign_id: str, event: str, data: dict
) -> None:
    try:
        await dispatcher.live.trigger(P.campaign_channel(campaign_id), event, data)
    except Exception:
        log.exception("Failed to broadcast %s for campaign %s", event, campaign_id)


async def initialize(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    campaign_id: str,
    scene_id: str,
    rng: initiative.Roller = random,
    timeout_minutes: int = turn_tracker.DEFAULT_TURN_TIMEOUT_MINUTES,
    now: datetime | None = None,
) -> TurnOrder:
    now = now or utcnow()
    characters = (
        await db.execute(
            select(Character)
            .where(
                Character.campaign_id == campaign_id,
                Character.is_alive == True,  # noqa: E712
            )
            .order_by(Character.name, Character.id)
        )
    ).scalars().all()

    entries = initiative.build_order(characters, rng)
    turn_order = await turn_tracker.reset_turn_order(
        db, campaign_id, scene_id, entries, timeout_minutes=timeout_minutes,
    )
    await turn_tracker.begin_turn(db, dispatcher, turn_order, now)

    log.info(
        "Initialized turn order for scene %s: %s",
        scene_id,
        ", ".join(f"{e['character_name']}={e['initiative']}" for e in entries),
    )
    await _broadcast(dispatcher, campaign_id, P.TURN_ORDER_INITIALIZED, {
        "scene_id": scene_id,
        "order": turn_order.entries,
        "current_turn": turn_order.current_turn,
        "round_number": turn_order.round_number,
    })
    return turn_order


async def apply_action(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    campaign_id: str,
    scene_id: str,
    command: TurnCommand,
    now: datetime | None = None,
) -> TurnOrder:
    """Apply one command to the scene's active turn order."""
    now = now or utcnow()
    turn_order = await get_turn_order(db, scene_id)
    if turn_order is None or not turn_order.is_active or turn_order.campaign_id != campaign_id:
        raise NotFoundError("No active turn order")

    if isinstance(command, NextTurn):
        await turn_tracker.advance(db, dispatcher, turn_order, now)
    elif isinstance(command, EndTurn):
        if not initiative.mark_acted(turn_order, command.character_id):
            log.debug(
                "endTurn for %s ignored: not in scene %s", command.character_id, scene_id
            )
    elif isinstance(command, EndEncounter):
        await _end_encounter(db, turn_order)
        await _broadcast(dispatcher, campaign_id, P.TURN_ORDER_ENDED, {
            "scene_id": scene_id,
        })
        return turn_order
    else:
        raise TypeError(f"Unhandled turn command: {command!r}")

    await db.flush()
    await _broadcast(dispatcher, campaign_id, P.TURN_ORDER_UPDATED, {
        "scene_id": scene_id,
        "order": turn_order.entries,
        "current_turn": turn_order.current_turn,
        "round_number": turn_order.round_number,
        "current_character": initiative.current_entry(turn_order),
    })
    return turn_order


async def _end_encounter(db: AsyncSession, turn_order: TurnOrder) -> None:
    turn_order.is_active = False
    await timers.cancel_pending(db, turn_order.id)
    scene = await db.get(Scene, turn_order.scene_id)
    if scene is not None:
        scene.turn_deadline = None
        scene.waiting_on_users = None
    await db.flush()
    log.info("Encounter ended for scene %s", turn_order.scene_id)
