"""Turn tracker -- deadlines, reminders and turn hand-offs for a scene.

Works on the same ``TurnOrder`` row as the initiative tracker.  A scene's
turn goes Idle -> Active(turn N) -> Active(turn N+1) -> ... -> Idle:

- ``initialize_scene`` starts turn 0 with an explicit participant list.
- ``advance_turn`` hands over to the next participant; only the current
  participant may call it.
- ``skip_turn`` does the same on behalf of a GM or the expiry sweep.
- ``end_scene`` removes the tracker and tells every member.

Every turn start resets the deadline and reminder bookkeeping, replaces the
pending reminder timers and notifies the new current participant.

The two sweeps (``check_expired_turns`` and ``send_periodic_reminders``)
open one database session per item so a bad record cannot stop the batch.
"""
import json
import logging
import math
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tabletop.game import initiative, timers
from tabletop.game.access import member_user_ids
from tabletop.game.errors import NotFoundError, NotYourTurnError
from tabletop.game.notifications import NotificationDispatcher
from tabletop.models.base import utcnow
from tabletop.models.campaign import Campaign
from tabletop.models.notification import NotificationPriority, NotificationType
from tabletop.models.scene import Scene
from tabletop.models.scheduled_event import ScheduledEvent
from tabletop.models.turn_order import TurnOrder
from tabletop.ws import protocol as P

log = logging.getLogger(__name__)

DEFAULT_TURN_TIMEOUT_MINUTES = 60
MAX_REMINDERS_PER_TURN = 3
MIN_REMINDER_SPACING = timedelta(minutes=10)
# Reminders with this many minutes or fewer left go out as HIGH priority.
URGENT_REMAINING_MINUTES = 5


# ---------------------------------------------------------------------------
# Lookups and serialisation
# ---------------------------------------------------------------------------


async def find_turn_order(
    db: AsyncSession, campaign_id: str, scene_id: str
) -> TurnOrder | None:
    return (
        await db.execute(
            select(TurnOrder).where(
                TurnOrder.campaign_id == campaign_id,
                TurnOrder.scene_id == scene_id,
            )
        )
    ).scalar_one_or_none()


async def require_active(
    db: AsyncSession, campaign_id: str, scene_id: str,
    message: str = "Turn tracker not found",
) -> TurnOrder:
    turn_order = await find_turn_order(db, campaign_id, scene_id)
    if turn_order is None or not turn_order.is_active:
        raise NotFoundError(message)
    return turn_order


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize(turn_order: TurnOrder) -> dict:
    return {
        "id": turn_order.id,
        "campaign_id": turn_order.campaign_id,
        "scene_id": turn_order.scene_id,
        "order": turn_order.entries,
        "current_turn": turn_order.current_turn,
        "round_number": turn_order.round_number,
        "is_active": turn_order.is_active,
        "turn_started_at": _iso(turn_order.turn_started_at),
        "turn_deadline": _iso(turn_order.turn_deadline),
        "turn_timeout_minutes": turn_order.turn_timeout_minutes,
        "auto_advance_turn": turn_order.auto_advance_turn,
        "reminders_sent": turn_order.reminders_sent,
    }


def _remaining(turn_order: TurnOrder, now: datetime) -> timedelta:
    if turn_order.turn_deadline is None:
        return timedelta(0)
    return max(timedelta(0), turn_order.turn_deadline - now)


def _minutes_ceil(delta: timedelta) -> int:
    return math.ceil(delta.total_seconds() / 60)


# ---------------------------------------------------------------------------
# Turn start (shared with the initiative tracker)
# ---------------------------------------------------------------------------


async def reset_turn_order(
    db: AsyncSession,
    campaign_id: str,
    scene_id: str,
    entries: list[dict],
    timeout_minutes: int = DEFAULT_TURN_TIMEOUT_MINUTES,
    auto_advance_turn: bool = False,
) -> TurnOrder:
    """Create the scene's turn order, or wipe and reuse the existing row."""
    turn_order = (
        await db.execute(select(TurnOrder).where(TurnOrder.scene_id == scene_id))
    ).scalar_one_or_none()
    if turn_order is None:
        turn_order = TurnOrder(campaign_id=campaign_id, scene_id=scene_id, turn_sequence=0)
        db.add(turn_order)
    else:
        await timers.delete_all(db, turn_order.id)

    turn_order.campaign_id = campaign_id
    turn_order.entries = entries
    turn_order.current_turn = 0
    turn_order.round_number = 1
    turn_order.is_active = True
    turn_order.turn_timeout_minutes = timeout_minutes
    turn_order.auto_advance_turn = auto_advance_turn
    turn_order.reminders_sent = []
    turn_order.last_reminder_sent = None
    await db.flush()
    return turn_order


async def begin_turn(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    turn_order: TurnOrder,
    now: datetime,
) -> dict | None:
    """Start the turn at ``current_turn``; returns its participant entry."""
    turn_order.turn_started_at = now
    turn_order.turn_deadline = now + timedelta(minutes=turn_order.turn_timeout_minutes)
    turn_order.reminders_sent = []
    turn_order.last_reminder_sent = None
    turn_order.turn_sequence = (turn_order.turn_sequence or 0) + 1
    await db.flush()

    await timers.cancel_pending(db, turn_order.id)
    await timers.schedule_turn_reminders(db, turn_order, now)

    participant = initiative.current_entry(turn_order)
    waiting_on = participant.get("user_id") if participant else None

    scene = await db.get(Scene, turn_order.scene_id)
    if scene is not None:
        scene.turn_deadline = turn_order.turn_deadline
        scene.waiting_on_users = [waiting_on] if waiting_on is not None else []

    if waiting_on is not None:
        await _notify_player_turn(db, dispatcher, turn_order, participant, now)
    return participant


async def _notify_player_turn(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    turn_order: TurnOrder,
    participant: dict,
    now: datetime,
) -> None:
    campaign = await db.get(Campaign, turn_order.campaign_id)
    timeout = turn_order.turn_timeout_minutes
    await dispatcher.create_notification(
        db,
        type=NotificationType.TURN_REMINDER,
        title="Your Turn!",
        message=(
            f"It's your turn as {participant['character_name']}. "
            f"You have {timeout} minutes to act."
        ),
        user_id=participant["user_id"],
        campaign_id=turn_order.campaign_id,
        scene_id=turn_order.scene_id,
        priority=NotificationPriority.HIGH,
        action_url=f"/campaigns/{turn_order.campaign_id}",
        trigger_sound="your-turn",
        metadata={
            "character": participant["character_name"],
            "timeout_minutes": timeout,
            "campaign_title": campaign.title if campaign else None,
        },
        now=now,
    )


async def advance(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    turn_order: TurnOrder,
    now: datetime,
) -> dict | None:
    """Step to the next participant and start their turn."""
    initiative.step(turn_order)
    return await begin_turn(db, dispatcher, turn_order, now)


async def _broadcast_turn_update(
    dispatcher: NotificationDispatcher, turn_order: TurnOrder, now: datetime
) -> None:
    try:
        await dispatcher.live.trigger(
            P.campaign_channel(turn_order.campaign_id),
            P.TURN_UPDATE,
            _turn_info(turn_order, now),
        )
    except Exception:
        log.exception("Failed to broadcast turn update for scene %s", turn_order.scene_id)


def _turn_info(turn_order: TurnOrder, now: datetime) -> dict:
    remaining = _remaining(turn_order, now)
    return {
        "scene_id": turn_order.scene_id,
        "current_player": initiative.current_entry(turn_order),
        "turn_index": turn_order.current_turn,
        "total_players": len(turn_order.entries or []),
        "round_number": turn_order.round_number,
        "time_remaining_ms": int(remaining.total_seconds() * 1000),
        "time_remaining_minutes": _minutes_ceil(remaining),
        "turn_started_at": _iso(turn_order.turn_started_at),
        "turn_deadline": _iso(turn_order.turn_deadline),
        "turn_order": turn_order.entries,
    }


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def initialize_scene(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    campaign_id: str,
    scene_id: str,
    participants: list[dict],
    timeout_minutes: int = DEFAULT_TURN_TIMEOUT_MINUTES,
    auto_advance_turn: bool = False,
    now: datetime | None = None,
) -> TurnOrder:
    """Start turn tracking with *participants* in the given order."""
    now = now or utcnow()
    entries = [
        initiative.make_entry(
            name=p["name"],
            user_id=p.get("user_id"),
            character_id=p.get("character_id"),
            is_npc=bool(p.get("is_npc", False)),
        )
        for p in participants
    ]
    turn_order = await reset_turn_order(
        db, campaign_id, scene_id, entries,
        timeout_minutes=timeout_minutes,
        auto_advance_turn=auto_advance_turn,
    )
    await begin_turn(db, dispatcher, turn_order, now)
    await _broadcast_turn_update(dispatcher, turn_order, now)
    log.info("Turn tracking started for scene %s (%d participants)", scene_id, len(entries))
    return turn_order


async def advance_turn(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    campaign_id: str,
    scene_id: str,
    user_id: int,
    now: datetime | None = None,
) -> TurnOrder:
    """Hand the turn on; only the current participant may do this."""
    now = now or utcnow()
    turn_order = await require_active(db, campaign_id, scene_id)
    current = initiative.current_entry(turn_order)
    if current is None or current.get("user_id") != user_id:
        raise NotYourTurnError()

    await advance(db, dispatcher, turn_order, now)
    await _broadcast_turn_update(dispatcher, turn_order, now)
    return turn_order


async def skip_turn(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    campaign_id: str,
    scene_id: str,
    reason: str = "Timeout",
    now: datetime | None = None,
) -> TurnOrder:
    """Skip the current participant (GM action or expiry)."""
    now = now or utcnow()
    turn_order = await require_active(db, campaign_id, scene_id)
    skipped = initiative.current_entry(turn_order)
    if skipped is None:
        raise NotFoundError("Turn order is empty")

    if skipped.get("user_id") is not None:
        await dispatcher.create_notification(
            db,
            type=NotificationType.TURN_REMINDER,
            title="Turn Skipped",
            message=f"Your turn was skipped due to: {reason}",
            user_id=skipped["user_id"],
            campaign_id=campaign_id,
            scene_id=scene_id,
            priority=NotificationPriority.NORMAL,
            trigger_sound="turn-skipped",
            now=now,
        )
    log.info("Skipping %s in scene %s: %s", skipped["character_name"], scene_id, reason)

    await advance(db, dispatcher, turn_order, now)
    await _broadcast_turn_update(dispatcher, turn_order, now)
    return turn_order


async def _remind(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    turn_order: TurnOrder,
    now: datetime,
    enforce_spacing: bool,
) -> bool:
    current = initiative.current_entry(turn_order)
    if current is None or current.get("user_id") is None:
        return False

    sent = list(turn_order.reminders_sent or [])
    if len(sent) >= MAX_REMINDERS_PER_TURN:
        return False
    if (
        enforce_spacing
        and turn_order.last_reminder_sent is not None
        and now - turn_order.last_reminder_sent < MIN_REMINDER_SPACING
    ):
        return False

    minutes_remaining = _minutes_ceil(_remaining(turn_order, now))
    priority = (
        NotificationPriority.HIGH
        if minutes_remaining <= URGENT_REMAINING_MINUTES
        else NotificationPriority.NORMAL
    )
    await dispatcher.create_notification(
        db,
        type=NotificationType.TURN_REMINDER,
        title="Turn Reminder",
        message=f"It's your turn to act! {minutes_remaining} minutes remaining.",
        user_id=current["user_id"],
        campaign_id=turn_order.campaign_id,
        scene_id=turn_order.scene_id,
        priority=priority,
        action_url=f"/campaigns/{turn_order.campaign_id}",
        trigger_sound="turn-reminder",
        metadata={
            "character": current["character_name"],
            "time_remaining": minutes_remaining,
        },
        now=now,
    )
    turn_order.reminders_sent = sent + [now.isoformat()]
    turn_order.last_reminder_sent = now
    await db.flush()
    return True


async def send_turn_reminder(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    campaign_id: str,
    scene_id: str,
    now: datetime | None = None,
) -> bool:
    """Nudge the current participant; True if a reminder went out.

    At most three reminders per turn, at least ten minutes apart.
    """
    turn_order = await find_turn_order(db, campaign_id, scene_id)
    if turn_order is None or not turn_order.is_active:
        return False
    return await _remind(db, dispatcher, turn_order, now or utcnow(), enforce_spacing=True)


async def get_current_turn(
    db: AsyncSession, campaign_id: str, scene_id: str, now: datetime | None = None
) -> dict | None:
    turn_order = await find_turn_order(db, campaign_id, scene_id)
    if turn_order is None or not turn_order.is_active:
        return None
    return _turn_info(turn_order, now or utcnow())


async def end_scene(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    campaign_id: str,
    scene_id: str,
    now: datetime | None = None,
) -> None:
    """Drop the scene's tracker, clear its markers and tell every member."""
    now = now or utcnow()
    turn_order = await find_turn_order(db, campaign_id, scene_id)
    if turn_order is not None:
        await timers.delete_all(db, turn_order.id)
        await db.delete(turn_order)

    scene = await db.get(Scene, scene_id)
    if scene is None:
        await db.flush()
        return
    scene.turn_deadline = None
    scene.waiting_on_users = None
    await db.flush()

    for user_id in await member_user_ids(db, campaign_id):
        await dispatcher.create_notification(
            db,
            type=NotificationType.SCENE_RESOLVED,
            title="Scene Complete",
            message="The current scene has been resolved. Check out the results!",
            user_id=user_id,
            campaign_id=campaign_id,
            scene_id=scene_id,
            priority=NotificationPriority.NORMAL,
            action_url=f"/campaigns/{campaign_id}",
            trigger_sound="scene-complete",
            now=now,
        )
    log.info("Turn tracking ended for scene %s", scene_id)


async def add_participant(
    db: AsyncSession,
    campaign_id: str,
    scene_id: str,
    participant: dict,
    insert_after_current: bool = True,
) -> list[dict]:
    """Insert a participant right after the current one, or at the end."""
    turn_order = await require_active(db, campaign_id, scene_id)
    entries = [dict(e) for e in turn_order.entries or []]
    index = turn_order.current_turn + 1 if insert_after_current else len(entries)
    entries.insert(
        index,
        initiative.make_entry(
            name=participant["name"],
            user_id=participant.get("user_id"),
            character_id=participant.get("character_id"),
            is_npc=bool(participant.get("is_npc", False)),
        ),
    )
    turn_order.entries = entries
    await db.flush()
    return entries


async def remove_participant(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    campaign_id: str,
    scene_id: str,
    user_id: int,
    now: datetime | None = None,
) -> list[dict]:
    """Remove *user_id*'s entry and keep ``current_turn`` pointing sensibly.

    Removing someone before the pointer shifts it back by one; removing the
    current participant hands a fresh turn to whoever moved into that slot,
    wrapping to 0 when the removed entry was last.
    """
    now = now or utcnow()
    turn_order = await require_active(db, campaign_id, scene_id)
    entries = [dict(e) for e in turn_order.entries or []]
    index = next(
        (i for i, e in enumerate(entries) if e.get("user_id") == user_id), None
    )
    if index is None:
        raise NotFoundError("Player not found in turn order")

    entries.pop(index)
    current = turn_order.current_turn
    was_current = index == current
    if index < current:
        current -= 1
    elif was_current:
        current = current % len(entries) if entries else 0

    turn_order.entries = entries
    turn_order.current_turn = current
    await db.flush()

    if was_current and entries:
        await begin_turn(db, dispatcher, turn_order, now)
    elif not entries:
        await timers.cancel_pending(db, turn_order.id)
        turn_order.turn_deadline = None
        scene = await db.get(Scene, scene_id)
        if scene is not None:
            scene.turn_deadline = None
            scene.waiting_on_users = []
        await db.flush()
    return entries


# ---------------------------------------------------------------------------
# Sweeps
# ---------------------------------------------------------------------------


async def check_expired_turns(
    session_factory: async_sessionmaker,
    dispatcher: NotificationDispatcher,
    now: datetime | None = None,
) -> int:
    """Skip every auto-advancing turn whose deadline has passed.

    Returns the number of expired turns found.
    """
    now = now or utcnow()
    async with session_factory() as db:
        expired = (
            await db.execute(
                select(TurnOrder.campaign_id, TurnOrder.scene_id).where(
                    TurnOrder.is_active == True,  # noqa: E712
                    TurnOrder.auto_advance_turn == True,  # noqa: E712
                    TurnOrder.turn_deadline.is_not(None),
                    TurnOrder.turn_deadline <= now,
                )
            )
        ).all()

    for campaign_id, scene_id in expired:
        async with session_factory() as db:
            try:
                await skip_turn(db, dispatcher, campaign_id, scene_id, "Turn timeout", now=now)
                await db.commit()
            except Exception:
                await db.rollback()
                log.exception("Failed to auto-advance turn for scene %s", scene_id)

    return len(expired)


async def send_periodic_reminders(
    session_factory: async_sessionmaker,
    dispatcher: NotificationDispatcher,
    now: datetime | None = None,
) -> int:
    """Fire every due reminder timer once; returns how many reminders went out.

    Threshold reminders obey the per-turn cap but not the ten-minute spacing
    of manual reminders, so the 5- and 1-minute warnings are not swallowed.
    """
    now = now or utcnow()
    async with session_factory() as db:
        event_ids = await timers.due_event_ids(db, now)

    sent = 0
    for event_id in event_ids:
        async with session_factory() as db:
            try:
                if await _fire_reminder(db, dispatcher, event_id, now):
                    sent += 1
                await db.commit()
            except Exception:
                await db.rollback()
                log.exception("Failed to process reminder event %s", event_id)
    return sent


async def _fire_reminder(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    event_id: int,
    now: datetime,
) -> bool:
    event = await db.get(ScheduledEvent, event_id)
    if event is None or event.is_processed:
        return False
    event.is_processed = True

    turn_order = await db.get(TurnOrder, event.turn_order_id)
    if (
        turn_order is None
        or not turn_order.is_active
        or turn_order.turn_sequence != event.turn_sequence
        or turn_order.turn_deadline is None
        or turn_order.turn_deadline <= now
    ):
        log.debug("Discarding stale reminder event %s", event_id)
        return False

    threshold = json.loads(event.data or "{}").get("threshold_minutes")
    log.info(
        "Reminder timer fired for scene %s (threshold=%s min)",
        turn_order.scene_id, threshold,
    )
    return await _remind(db, dispatcher, turn_order, now, enforce_spacing=False)
