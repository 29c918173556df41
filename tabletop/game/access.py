"""Campaign membership and scene lookups shared by the turn services."""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tabletop.game.errors import NotFoundError, PermissionDeniedError
from tabletop.models.campaign import CampaignMembership, ROLE_ADMIN
from tabletop.models.scene import Scene


async def get_membership(
    db: AsyncSession, campaign_id: str, user_id: int
) -> CampaignMembership | None:
    return (
        await db.execute(
            select(CampaignMembership).where(
                CampaignMembership.campaign_id == campaign_id,
                CampaignMembership.user_id == user_id,
            )
        )
    ).scalar_one_or_none()


async def require_member(
    db: AsyncSession, campaign_id: str, user_id: int
) -> CampaignMembership:
    membership = await get_membership(db, campaign_id, user_id)
    if membership is None:
        raise PermissionDeniedError("Not a campaign member")
    return membership


async def require_admin(
    db: AsyncSession, campaign_id: str, user_id: int,
    message: str = "Admin access required",
) -> CampaignMembership:
    membership = await get_membership(db, campaign_id, user_id)
    if membership is None or membership.role != ROLE_ADMIN:
        raise PermissionDeniedError(message)
    return membership


async def get_scene(db: AsyncSession, campaign_id: str, scene_id: str) -> Scene:
    """Return the scene, treating a scene of another campaign as missing."""
    scene = await db.get(Scene, scene_id)
    if scene is None or scene.campaign_id != campaign_id:
        raise NotFoundError("Scene not found")
    return scene


async def member_user_ids(db: AsyncSession, campaign_id: str) -> list[int]:
    return list(
        (
            await db.execute(
                select(CampaignMembership.user_id)
                .where(CampaignMembership.campaign_id == campaign_id)
                .order_by(CampaignMembership.id)
            )
        ).scalars().all()
    )
