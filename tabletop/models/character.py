import uuid
from typing import Optional

from sqlalchemy import JSON, Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Character(Base):
    __tablename__ = "characters"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    campaign_id: Mapped[str] = mapped_column(String(36), ForeignKey("campaigns.id"))
    user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("user_accounts.id"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(128))
    stats: Mapped[dict] = mapped_column(JSON, default=dict)  # {"cool": 1, "hard": -1, ...}
    is_alive: Mapped[bool] = mapped_column(Boolean, default=True)
    is_npc: Mapped[bool] = mapped_column(Boolean, default=False)
