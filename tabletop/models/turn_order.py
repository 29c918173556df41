from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class TurnOrder(Base):
    """The single encounter state of a scene.

    ``entries`` is an ordered list of participant dicts::

        {"character_id": str | None, "character_name": str,
         "user_id": int | None, "initiative": int, "has_acted": bool,
         "is_npc": bool}

    The JSON columns are replaced wholesale on every change; never mutate
    them in place.
    """

    __tablename__ = "turn_orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    campaign_id: Mapped[str] = mapped_column(String(36), ForeignKey("campaigns.id"))
    scene_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("scenes.id"), unique=True
    )
    entries: Mapped[list] = mapped_column(JSON, default=list)
    current_turn: Mapped[int] = mapped_column(Integer, default=0)
    round_number: Mapped[int] = mapped_column(Integer, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    turn_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    turn_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    turn_timeout_minutes: Mapped[int] = mapped_column(Integer, default=60)
    # Bumped on every turn change; timers carry it to detect staleness.
    turn_sequence: Mapped[int] = mapped_column(Integer, default=0)
    reminders_sent: Mapped[list] = mapped_column(JSON, default=list)  # ISO timestamps, max 3
    last_reminder_sent: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    auto_advance_turn: Mapped[bool] = mapped_column(Boolean, default=False)
