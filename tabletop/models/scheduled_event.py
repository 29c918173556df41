from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ScheduledEvent(Base):
    __tablename__ = "scheduled_events"

    id: Mapped[int] = mapped_column(primary_key=True)
    turn_order_id: Mapped[int] = mapped_column(
        ForeignKey("turn_orders.id", ondelete="CASCADE"), index=True
    )
    event_type: Mapped[str] = mapped_column(String(64))  # "turn_reminder"
    trigger_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    turn_sequence: Mapped[int] = mapped_column(Integer, default=0)
    data: Mapped[str] = mapped_column(String(4096), default="{}")  # JSON string
    is_processed: Mapped[bool] = mapped_column(Boolean, default=False)
