"""REST API endpoints for campaigns, members, characters and scenes."""
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tabletop.auth.deps import get_current_user
from tabletop.database import get_db
from tabletop.game import access
from tabletop.models.campaign import Campaign, CampaignMembership, ROLE_ADMIN, ROLE_PLAYER
from tabletop.models.character import Character
from tabletop.models.scene import Scene
from tabletop.models.user_account import UserAccount

router = APIRouter(prefix="/api/campaigns", tags=["campaigns"])


class CampaignRequest(BaseModel):
    title: str


class MemberRequest(BaseModel):
    username: str
    role: Literal["admin", "player"] = ROLE_PLAYER


class CharacterRequest(BaseModel):
    name: str
    stats: dict = Field(default_factory=dict)
    is_npc: bool = False


class CharacterUpdate(BaseModel):
    is_alive: bool | None = None
    stats: dict | None = None


class SceneRequest(BaseModel):
    title: str


def _character_dict(c: Character) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "user_id": c.user_id,
        "stats": c.stats,
        "is_alive": c.is_alive,
        "is_npc": c.is_npc,
    }


def _scene_dict(s: Scene) -> dict:
    return {
        "id": s.id,
        "campaign_id": s.campaign_id,
        "title": s.title,
        "is_active": s.is_active,
        "turn_deadline": s.turn_deadline.isoformat() if s.turn_deadline else None,
        "waiting_on_users": s.waiting_on_users,
    }


# ---------------------------------------------------------------------------
# Campaigns and members
# ---------------------------------------------------------------------------

@router.post("")
async def create_campaign(
    req: CampaignRequest,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    campaign = Campaign(title=req.title)
    db.add(campaign)
    await db.flush()
    db.add(CampaignMembership(user_id=user.id, campaign_id=campaign.id, role=ROLE_ADMIN))
    await db.flush()
    return {"id": campaign.id, "title": campaign.title, "role": ROLE_ADMIN}


@router.get("")
async def list_campaigns(
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    rows = (
        await db.execute(
            select(Campaign, CampaignMembership.role)
            .join(CampaignMembership, CampaignMembership.campaign_id == Campaign.id)
            .where(CampaignMembership.user_id == user.id)
            .order_by(Campaign.created_at.desc())
        )
    ).all()
    return [{"id": c.id, "title": c.title, "role": role} for c, role in rows]


@router.get("/{campaign_id}/members")
async def list_members(
    campaign_id: str,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await access.require_member(db, campaign_id, user.id)
    rows = (
        await db.execute(
            select(CampaignMembership, UserAccount.username)
            .join(UserAccount, UserAccount.id == CampaignMembership.user_id)
            .where(CampaignMembership.campaign_id == campaign_id)
            .order_by(CampaignMembership.role, CampaignMembership.joined_at)
        )
    ).all()
    return [
        {"user_id": m.user_id, "username": username, "role": m.role}
        for m, username in rows
    ]


@router.post("/{campaign_id}/members")
async def add_member(
    campaign_id: str,
    req: MemberRequest,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await access.require_admin(db, campaign_id, user.id)
    invitee = (
        await db.execute(select(UserAccount).where(UserAccount.username == req.username))
    ).scalar_one_or_none()
    if invitee is None:
        raise HTTPException(status_code=404, detail="User not found")
    if await access.get_membership(db, campaign_id, invitee.id) is not None:
        raise HTTPException(status_code=400, detail="Already a member")
    db.add(CampaignMembership(user_id=invitee.id, campaign_id=campaign_id, role=req.role))
    await db.flush()
    return {"user_id": invitee.id, "username": invitee.username, "role": req.role}


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------

@router.post("/{campaign_id}/characters")
async def create_character(
    campaign_id: str,
    req: CharacterRequest,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    membership = await access.require_member(db, campaign_id, user.id)
    if req.is_npc and membership.role != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="Only admins can create NPCs")
    character = Character(
        campaign_id=campaign_id,
        user_id=None if req.is_npc else user.id,
        name=req.name,
        stats=req.stats,
        is_alive=True,
        is_npc=req.is_npc,
    )
    db.add(character)
    await db.flush()
    return _character_dict(character)


@router.get("/{campaign_id}/characters")
async def list_characters(
    campaign_id: str,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await access.require_member(db, campaign_id, user.id)
    characters = (
        await db.execute(
            select(Character)
            .where(Character.campaign_id == campaign_id)
            .order_by(Character.name)
        )
    ).scalars().all()
    return [_character_dict(c) for c in characters]


@router.patch("/{campaign_id}/characters/{character_id}")
async def update_character(
    campaign_id: str,
    character_id: str,
    req: CharacterUpdate,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    membership = await access.require_member(db, campaign_id, user.id)
    character = await db.get(Character, character_id)
    if character is None or character.campaign_id != campaign_id:
        raise HTTPException(status_code=404, detail="Character not found")
    if character.user_id != user.id and membership.role != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="Not your character")
    if req.is_alive is not None:
        character.is_alive = req.is_alive
    if req.stats is not None:
        character.stats = dict(req.stats)
    await db.flush()
    return _character_dict(character)


# ---------------------------------------------------------------------------
# Scenes
# ---------------------------------------------------------------------------

@router.post("/{campaign_id}/scenes")
async def create_scene(
    campaign_id: str,
    req: SceneRequest,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await access.require_admin(db, campaign_id, user.id)
    scene = Scene(
        campaign_id=campaign_id, title=req.title, is_active=True,
        turn_deadline=None, waiting_on_users=None,
    )
    db.add(scene)
    await db.flush()
    return _scene_dict(scene)


@router.get("/{campaign_id}/scenes/{scene_id}")
async def get_scene(
    campaign_id: str,
    scene_id: str,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await access.require_member(db, campaign_id, user.id)
    scene = await access.get_scene(db, campaign_id, scene_id)
    return _scene_dict(scene)
