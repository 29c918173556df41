import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow


class NotificationType(str, enum.Enum):
    TURN_REMINDER = "TURN_REMINDER"
    SCENE_CHANGE = "SCENE_CHANGE"
    SCENE_RESOLVED = "SCENE_RESOLVED"
    MENTION = "MENTION"
    WHISPER_RECEIVED = "WHISPER_RECEIVED"
    CAMPAIGN_INVITE = "CAMPAIGN_INVITE"
    FRIEND_REQUEST = "FRIEND_REQUEST"
    WORLD_EVENT = "WORLD_EVENT"
    SYSTEM = "SYSTEM"


class NotificationPriority(str, enum.Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class NotificationStatus(str, enum.Enum):
    UNREAD = "UNREAD"
    READ = "READ"
    DISMISSED = "DISMISSED"


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("user_accounts.id"), index=True)
    campaign_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("campaigns.id"), nullable=True
    )
    scene_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, native_enum=False, length=32)
    )
    title: Mapped[str] = mapped_column(String(256))
    message: Mapped[str] = mapped_column(String(4096))
    priority: Mapped[NotificationPriority] = mapped_column(
        Enum(NotificationPriority, native_enum=False, length=16),
        default=NotificationPriority.NORMAL,
    )
    status: Mapped[NotificationStatus] = mapped_column(
        Enum(NotificationStatus, native_enum=False, length=16),
        default=NotificationStatus.UNREAD,
    )
    action_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    email_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    push_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    dismissed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "priority": self.priority.value,
            "status": self.status.value,
            "campaign_id": self.campaign_id,
            "scene_id": self.scene_id,
            "action_url": self.action_url,
            "metadata": self.metadata_,
            "email_sent": self.email_sent,
            "push_sent": self.push_sent,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


class NotificationSettings(Base):
    """Per-user delivery preferences, created lazily with these defaults."""

    __tablename__ = "notification_settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user_accounts.id"), unique=True)

    email_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    email_turn_reminders: Mapped[bool] = mapped_column(Boolean, default=True)
    email_scene_changes: Mapped[bool] = mapped_column(Boolean, default=True)
    email_mentions: Mapped[bool] = mapped_column(Boolean, default=True)
    email_whispers: Mapped[bool] = mapped_column(Boolean, default=False)
    email_campaign_invites: Mapped[bool] = mapped_column(Boolean, default=True)
    email_world_events: Mapped[bool] = mapped_column(Boolean, default=False)

    push_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    sound_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    quiet_hours_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    quiet_hours_start: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)  # "HH:MM"
    quiet_hours_end: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
