"""Notification dispatcher -- persists notifications and fans them out.

A notification row is the source of truth: once it is flushed the call has
succeeded, whatever happens to delivery.  Delivery goes out concurrently
over four channels:

- EMAIL: global ``email_enabled`` plus a per-type allow flag
- PUSH: global ``push_enabled``
- SOUND: ``sound_enabled`` and a ``trigger_sound`` cue, over the live channel
- LIVE: always, so open clients update in real time

During the user's quiet hours only URGENT notifications are delivered;
everything else is stored silently.  A failing channel is logged and never
affects the others.
"""
import asyncio
import html
import logging
from datetime import datetime

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tabletop.game import quiet_hours
from tabletop.game.channels import EmailChannel, PushChannel
from tabletop.models.base import utcnow
from tabletop.models.campaign import Campaign
from tabletop.models.notification import (
    Notification,
    NotificationPriority,
    NotificationSettings,
    NotificationStatus,
    NotificationType,
)
from tabletop.models.user_account import UserAccount
from tabletop.ws import protocol as P
from tabletop.ws.manager import ConnectionManager

log = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20

# Sound cues that are also played, quieter, for the rest of the campaign.
DRAMATIC_SOUND_MARKERS = ("critical", "victory")
DRAMATIC_VOLUME_FACTOR = 0.7

_EMAIL_TYPE_FLAGS = {
    NotificationType.TURN_REMINDER: "email_turn_reminders",
    NotificationType.SCENE_CHANGE: "email_scene_changes",
    NotificationType.MENTION: "email_mentions",
    NotificationType.WHISPER_RECEIVED: "email_whispers",
    NotificationType.CAMPAIGN_INVITE: "email_campaign_invites",
    NotificationType.WORLD_EVENT: "email_world_events",
}


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


async def get_or_create_settings(db: AsyncSession, user_id: int) -> NotificationSettings:
    """Return the user's delivery preferences, creating defaults on first use."""
    settings = (
        await db.execute(
            select(NotificationSettings).where(NotificationSettings.user_id == user_id)
        )
    ).scalar_one_or_none()
    if settings is None:
        settings = NotificationSettings(user_id=user_id)
        db.add(settings)
        await db.flush()
        await db.refresh(settings)
    return settings


def is_quiet_hours(settings: NotificationSettings, now: datetime) -> bool:
    if not settings.quiet_hours_enabled:
        return False
    return quiet_hours.is_quiet_time(
        now,
        settings.quiet_hours_start,
        settings.quiet_hours_end,
        settings.timezone or "UTC",
    )


def email_allowed_for_type(ntype: NotificationType, settings: NotificationSettings) -> bool:
    flag = _EMAIL_TYPE_FLAGS.get(ntype)
    if flag is None:
        return True
    return bool(getattr(settings, flag))


def build_email_content(notification: Notification, campaign_title: str | None) -> str:
    parts = [
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">',
        f'<h2 style="color: #2563eb;">{html.escape(notification.title)}</h2>',
        f'<p style="font-size: 16px; line-height: 1.6;">{html.escape(notification.message)}</p>',
    ]
    if campaign_title:
        parts.append(f"<p><strong>Campaign:</strong> {html.escape(campaign_title)}</p>")
    if notification.action_url:
        parts.append(
            f'<p><a href="{html.escape(notification.action_url, quote=True)}">View in Game</a></p>'
        )
    parts.append(
        '<p style="font-size: 12px; color: #6b7280;">'
        "This notification was sent by your AI Game Master. "
        '<a href="/settings/notifications">Update notification preferences</a></p>'
    )
    parts.append("</div>")
    return "\n".join(parts)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class NotificationDispatcher:
    """Creates notifications and delivers them over the configured channels."""

    def __init__(
        self,
        live: ConnectionManager,
        email: EmailChannel | None = None,
        push: PushChannel | None = None,
    ) -> None:
        self.live = live
        self.email = email or EmailChannel(None)
        self.push = push or PushChannel(None)

    async def create_notification(
        self,
        db: AsyncSession,
        *,
        type: NotificationType,
        title: str,
        message: str,
        user_id: int,
        priority: NotificationPriority = NotificationPriority.NORMAL,
        campaign_id: str | None = None,
        scene_id: str | None = None,
        action_url: str | None = None,
        trigger_sound: str | None = None,
        expires_at: datetime | None = None,
        metadata: dict | None = None,
        now: datetime | None = None,
    ) -> Notification:
        now = now or utcnow()
        settings = await get_or_create_settings(db, user_id)

        notification = Notification(
            type=type,
            title=title,
            message=message,
            priority=priority,
            status=NotificationStatus.UNREAD,
            user_id=user_id,
            campaign_id=campaign_id,
            scene_id=scene_id,
            action_url=action_url,
            metadata_=metadata,
            expires_at=expires_at,
            email_sent=False,
            push_sent=False,
            created_at=now,
            read_at=None,
            dismissed_at=None,
        )
        db.add(notification)
        await db.flush()

        if is_quiet_hours(settings, now) and priority != NotificationPriority.URGENT:
            log.info(
                "Quiet hours: stored notification %s for user %s without delivery",
                notification.id, user_id,
            )
            return notification

        # Everything the channels need is read here; the session must not be
        # used from inside the concurrent sends.
        recipient = await db.get(UserAccount, user_id)
        campaign_title = None
        if campaign_id is not None:
            campaign = await db.get(Campaign, campaign_id)
            campaign_title = campaign.title if campaign else None

        email_sent, push_sent, _, _ = await asyncio.gather(
            self._send_email(notification, settings, recipient, campaign_title),
            self._send_push(notification, settings),
            self._send_sound(notification, settings, trigger_sound),
            self._send_live(notification),
        )
        notification.email_sent = email_sent
        notification.push_sent = push_sent
        await db.flush()
        return notification

    # -- channels -----------------------------------------------------------

    async def _send_email(
        self,
        notification: Notification,
        settings: NotificationSettings,
        recipient: UserAccount | None,
        campaign_title: str | None,
    ) -> bool:
        if not settings.email_enabled:
            return False
        if not email_allowed_for_type(notification.type, settings):
            return False
        if recipient is None or not recipient.email:
            return False
        try:
            return await self.email.send(
                to=recipient.email,
                subject=notification.title,
                html=build_email_content(notification, campaign_title),
                notification_id=notification.id,
            )
        except Exception:
            log.exception("Failed to send email notification %s", notification.id)
            return False

    async def _send_push(
        self, notification: Notification, settings: NotificationSettings
    ) -> bool:
        if not settings.push_enabled:
            return False
        try:
            return await self.push.send(
                user_id=notification.user_id,
                title=notification.title,
                message=notification.message,
                action_url=notification.action_url,
                data=notification.metadata_,
            )
        except Exception:
            log.exception("Failed to send push notification %s", notification.id)
            return False

    async def _send_sound(
        self,
        notification: Notification,
        settings: NotificationSettings,
        trigger_sound: str | None,
    ) -> bool:
        if not settings.sound_enabled or not trigger_sound:
            return False
        payload = {
            "sound": trigger_sound,
            "volume": 1.0,
            "notification": {
                "id": notification.id,
                "type": notification.type.value,
                "title": notification.title,
            },
        }
        try:
            await self.live.trigger(
                P.user_channel(notification.user_id), P.SOUND_NOTIFICATION, payload
            )
            if notification.campaign_id and any(
                marker in trigger_sound for marker in DRAMATIC_SOUND_MARKERS
            ):
                await self.live.trigger(
                    P.campaign_channel(notification.campaign_id),
                    P.DRAMATIC_SOUND,
                    {
                        "sound": trigger_sound,
                        "volume": payload["volume"] * DRAMATIC_VOLUME_FACTOR,
                        "triggered_by": notification.user_id,
                    },
                )
        except Exception:
            log.exception("Failed to send sound notification %s", notification.id)
            return False
        return True

    async def _send_live(self, notification: Notification) -> bool:
        try:
            await self.live.trigger(
                P.user_channel(notification.user_id),
                P.NOTIFICATION_RECEIVED,
                notification.as_dict(),
            )
        except Exception:
            log.exception("Failed to send realtime notification %s", notification.id)
            return False
        return True


# ---------------------------------------------------------------------------
# Read path
# ---------------------------------------------------------------------------


def _not_expired(now: datetime):
    return or_(Notification.expires_at.is_(None), Notification.expires_at > now)


async def _set_status(
    db: AsyncSession,
    notification_id: str,
    user_id: int,
    status: NotificationStatus,
    now: datetime,
) -> bool:
    notification = await db.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        return False
    notification.status = status
    if status == NotificationStatus.READ:
        notification.read_at = now
    elif status == NotificationStatus.DISMISSED:
        notification.dismissed_at = now
    await db.flush()
    return True


async def mark_as_read(
    db: AsyncSession, notification_id: str, user_id: int, now: datetime | None = None
) -> bool:
    """Mark one of the user's notifications read; False if it is not theirs."""
    return await _set_status(
        db, notification_id, user_id, NotificationStatus.READ, now or utcnow()
    )


async def dismiss(
    db: AsyncSession, notification_id: str, user_id: int, now: datetime | None = None
) -> bool:
    return await _set_status(
        db, notification_id, user_id, NotificationStatus.DISMISSED, now or utcnow()
    )


async def get_notification(
    db: AsyncSession, notification_id: str, user_id: int, now: datetime | None = None
) -> Notification | None:
    now = now or utcnow()
    return (
        await db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
                _not_expired(now),
            )
        )
    ).scalar_one_or_none()


async def list_notifications(
    db: AsyncSession,
    user_id: int,
    status: NotificationStatus | None = None,
    campaign_id: str | None = None,
    ntype: NotificationType | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
    now: datetime | None = None,
) -> list[Notification]:
    """Newest first, excluding expired notifications."""
    now = now or utcnow()
    query = select(Notification).where(
        Notification.user_id == user_id, _not_expired(now)
    )
    if status is not None:
        query = query.where(Notification.status == status)
    if campaign_id is not None:
        query = query.where(Notification.campaign_id == campaign_id)
    if ntype is not None:
        query = query.where(Notification.type == ntype)
    query = (
        query.order_by(Notification.created_at.desc(), Notification.id)
        .limit(limit)
        .offset(offset)
    )
    return list((await db.execute(query)).scalars().all())


async def unread_count(
    db: AsyncSession,
    user_id: int,
    campaign_id: str | None = None,
    now: datetime | None = None,
) -> int:
    now = now or utcnow()
    query = select(func.count(Notification.id)).where(
        Notification.user_id == user_id,
        Notification.status == NotificationStatus.UNREAD,
        _not_expired(now),
    )
    if campaign_id is not None:
        query = query.where(Notification.campaign_id == campaign_id)
    return (await db.execute(query)).scalar_one()


async def delete_notification(db: AsyncSession, notification_id: str, user_id: int) -> bool:
    result = await db.execute(
        delete(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
    )
    return result.rowcount > 0


async def clear_notifications(
    db: AsyncSession, user_id: int, campaign_id: str | None = None
) -> int:
    """Delete the user's READ and DISMISSED notifications."""
    query = delete(Notification).where(
        Notification.user_id == user_id,
        Notification.status.in_([NotificationStatus.READ, NotificationStatus.DISMISSED]),
    )
    if campaign_id is not None:
        query = query.where(Notification.campaign_id == campaign_id)
    result = await db.execute(query)
    return result.rowcount


async def cleanup_expired(db: AsyncSession, now: datetime | None = None) -> int:
    """Hard-delete every notification past its ``expires_at``."""
    now = now or utcnow()
    result = await db.execute(
        delete(Notification).where(
            Notification.expires_at.is_not(None),
            Notification.expires_at <= now,
        )
    )
    if result.rowcount:
        log.info("Deleted %d expired notifications", result.rowcount)
    return result.rowcount
