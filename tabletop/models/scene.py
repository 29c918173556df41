import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow


class Scene(Base):
    __tablename__ = "scenes"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    campaign_id: Mapped[str] = mapped_column(String(36), ForeignKey("campaigns.id"))
    title: Mapped[str] = mapped_column(String(256))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    # "Waiting on" markers, maintained by the turn timers.
    turn_deadline: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    waiting_on_users: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
