"""REST API for the signed-in user's notifications and delivery settings."""
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from tabletop.api.deps import get_app_settings, get_dispatcher
from tabletop.auth.deps import get_current_user
from tabletop.config import Settings
from tabletop.database import get_db
from tabletop.game import notifications as svc
from tabletop.game.notifications import NotificationDispatcher
from tabletop.game.quiet_hours import is_valid_clock
from tabletop.models.notification import (
    NotificationPriority,
    NotificationSettings,
    NotificationStatus,
    NotificationType,
)
from tabletop.models.user_account import UserAccount

router = APIRouter(prefix="/api/notifications", tags=["notifications"])

SETTINGS_FIELDS = (
    "email_enabled", "email_turn_reminders", "email_scene_changes",
    "email_mentions", "email_whispers", "email_campaign_invites",
    "email_world_events", "push_enabled", "sound_enabled",
    "quiet_hours_enabled", "quiet_hours_start", "quiet_hours_end", "timezone",
)


class NotificationAction(BaseModel):
    action: Literal["read", "dismiss"]


class SettingsUpdate(BaseModel):
    email_enabled: bool | None = None
    email_turn_reminders: bool | None = None
    email_scene_changes: bool | None = None
    email_mentions: bool | None = None
    email_whispers: bool | None = None
    email_campaign_invites: bool | None = None
    email_world_events: bool | None = None
    push_enabled: bool | None = None
    sound_enabled: bool | None = None
    quiet_hours_enabled: bool | None = None
    quiet_hours_start: str | None = None
    quiet_hours_end: str | None = None
    timezone: str | None = None

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def _check_clock(cls, value: str | None) -> str | None:
        if value and not is_valid_clock(value):
            raise ValueError("Invalid quiet hours time format (HH:MM)")
        return value


class TestNotificationRequest(BaseModel):
    type: NotificationType = NotificationType.TURN_REMINDER
    title: str = "Test Notification"
    message: str = "This is a test notification."
    campaign_id: str | None = None
    priority: NotificationPriority = NotificationPriority.NORMAL
    trigger_sound: str | None = None


def _settings_dict(settings: NotificationSettings) -> dict:
    return {field: getattr(settings, field) for field in SETTINGS_FIELDS}


@router.get("")
async def list_notifications(
    status: NotificationStatus | None = None,
    campaign_id: str | None = None,
    type: NotificationType | None = None,
    limit: int = Query(default=svc.DEFAULT_PAGE_SIZE, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    items = await svc.list_notifications(
        db, user.id,
        status=status, campaign_id=campaign_id, ntype=type,
        limit=limit, offset=offset,
    )
    return {
        "notifications": [n.as_dict() for n in items],
        "has_more": len(items) == limit,
    }


@router.post("")
async def create_test_notification(
    req: TestNotificationRequest,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_app_settings),
):
    """Create a notification for yourself (development only)."""
    if not settings.ALLOW_TEST_NOTIFICATIONS:
        raise HTTPException(status_code=403, detail="Not allowed in production")
    notification = await dispatcher.create_notification(
        db,
        type=req.type,
        title=req.title,
        message=req.message,
        user_id=user.id,
        campaign_id=req.campaign_id,
        priority=req.priority,
        trigger_sound=req.trigger_sound,
    )
    return notification.as_dict()


@router.delete("")
async def clear_notifications(
    campaign_id: str | None = None,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Delete read and dismissed notifications."""
    deleted = await svc.clear_notifications(db, user.id, campaign_id)
    return {"message": f"Deleted {deleted} notifications", "deleted": deleted}


@router.get("/unread-count")
async def unread_count(
    campaign_id: str | None = None,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"count": await svc.unread_count(db, user.id, campaign_id)}


@router.get("/settings")
async def get_settings(
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return _settings_dict(await svc.get_or_create_settings(db, user.id))


@router.put("/settings")
async def update_settings(
    req: SettingsUpdate,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    settings = await svc.get_or_create_settings(db, user.id)
    for field, value in req.model_dump(exclude_unset=True).items():
        if value is None and field not in ("quiet_hours_start", "quiet_hours_end"):
            continue
        setattr(settings, field, value)
    await db.flush()
    return _settings_dict(settings)


@router.get("/{notification_id}")
async def get_notification(
    notification_id: str,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notification = await svc.get_notification(db, notification_id, user.id)
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification.as_dict()


@router.put("/{notification_id}")
async def update_notification(
    notification_id: str,
    req: NotificationAction,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if req.action == "read":
        found = await svc.mark_as_read(db, notification_id, user.id)
    else:
        found = await svc.dismiss(db, notification_id, user.id)
    if not found:
        raise HTTPException(status_code=404, detail="Notification not found")
    verb = "marked as read" if req.action == "read" else "dismissed"
    return {"message": f"Notification {verb}"}


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not await svc.delete_notification(db, notification_id, user.id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"message": "Notification deleted"}
