"""Turn timers -- durable reminder events keyed to a turn's deadline.

Every time a turn starts, one ``turn_reminder`` event is stored for each
threshold that still lies ahead (15, 5 and 1 minutes before the deadline).
The sweep loop later fires every event whose ``trigger_at`` has passed,
however late it runs, and marks it processed so it fires exactly once.

Each event records the ``turn_sequence`` of the turn it belongs to.  When
the turn moves on, pending events are deleted; a leftover event whose
sequence no longer matches is treated as stale and never sent.
"""
import json
import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tabletop.models.scheduled_event import ScheduledEvent
from tabletop.models.turn_order import TurnOrder

log = logging.getLogger(__name__)

EVENT_TURN_REMINDER = "turn_reminder"

# Minutes before the deadline at which the current participant is reminded.
REMINDER_THRESHOLDS_MINUTES = (15, 5, 1)


async def schedule_event(
    db: AsyncSession,
    turn_order_id: int,
    event_type: str,
    trigger_at: datetime,
    turn_sequence: int,
    data: dict | None = None,
) -> ScheduledEvent:
    """Create a ScheduledEvent record in the database."""
    event = ScheduledEvent(
        turn_order_id=turn_order_id,
        event_type=event_type,
        trigger_at=trigger_at,
        turn_sequence=turn_sequence,
        data=json.dumps(data or {}),
        is_processed=False,
    )
    db.add(event)
    await db.flush()
    log.info(
        "Scheduled event: type=%s trigger_at=%s turn_order=%d seq=%d",
        event_type, trigger_at.isoformat(), turn_order_id, turn_sequence,
    )
    return event


async def schedule_turn_reminders(
    db: AsyncSession, turn_order: TurnOrder, now: datetime
) -> list[ScheduledEvent]:
    """Schedule the threshold reminders for the turn that just started."""
    if turn_order.turn_deadline is None or not turn_order.entries:
        return []

    events: list[ScheduledEvent] = []
    for threshold in REMINDER_THRESHOLDS_MINUTES:
        trigger_at = turn_order.turn_deadline - timedelta(minutes=threshold)
        if trigger_at <= now:
            continue
        events.append(
            await schedule_event(
                db, turn_order.id, EVENT_TURN_REMINDER,
                trigger_at=trigger_at,
                turn_sequence=turn_order.turn_sequence,
                data={"threshold_minutes": threshold},
            )
        )
    return events


async def cancel_pending(db: AsyncSession, turn_order_id: int) -> int:
    """Delete unprocessed events of a turn order; returns how many."""
    result = await db.execute(
        delete(ScheduledEvent).where(
            ScheduledEvent.turn_order_id == turn_order_id,
            ScheduledEvent.is_processed == False,  # noqa: E712
        )
    )
    return result.rowcount


async def delete_all(db: AsyncSession, turn_order_id: int) -> None:
    await db.execute(
        delete(ScheduledEvent).where(ScheduledEvent.turn_order_id == turn_order_id)
    )


async def due_event_ids(db: AsyncSession, now: datetime) -> list[int]:
    """Ids of unprocessed events whose trigger time has passed, oldest first."""
    return list(
        (
            await db.execute(
                select(ScheduledEvent.id)
                .where(
                    ScheduledEvent.trigger_at <= now,
                    ScheduledEvent.is_processed == False,  # noqa: E712
                )
                .order_by(ScheduledEvent.trigger_at, ScheduledEvent.id)
            )
        ).scalars().all()
    )
