"""REST API for turn tracking: deadlines, hand-offs and reminders."""
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from tabletop.api.deps import get_app_settings, get_dispatcher
from tabletop.auth.deps import get_current_user
from tabletop.config import Settings
from tabletop.database import get_db
from tabletop.game import access, turn_tracker
from tabletop.game.errors import InvalidRequestError
from tabletop.game.notifications import NotificationDispatcher
from tabletop.models.user_account import UserAccount

router = APIRouter(prefix="/api/campaigns/{campaign_id}/turns", tags=["turns"])


class Participant(BaseModel):
    name: str
    user_id: int | None = None
    character_id: str | None = None
    is_npc: bool = False


class TurnRequest(BaseModel):
    action: Literal["initialize", "advance", "skip", "remind"]
    scene_id: str
    participants: list[Participant] | None = None
    turn_timeout_minutes: int | None = Field(default=None, gt=0)
    auto_advance_turn: bool = False
    reason: str | None = None


class AddParticipantRequest(BaseModel):
    scene_id: str
    participant: Participant
    insert_after_current: bool = True


@router.get("")
async def get_turn_info(
    campaign_id: str,
    scene_id: str,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await access.require_member(db, campaign_id, user.id)
    return {"turn_info": await turn_tracker.get_current_turn(db, campaign_id, scene_id)}


@router.post("")
async def manage_turn(
    campaign_id: str,
    req: TurnRequest,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_app_settings),
):
    await access.require_member(db, campaign_id, user.id)
    await access.get_scene(db, campaign_id, req.scene_id)

    if req.action == "initialize":
        await access.require_admin(
            db, campaign_id, user.id, message="Only admins can manage turn order"
        )
        if req.participants is None:
            raise InvalidRequestError("Participants required for initialization")
        record = await turn_tracker.initialize_scene(
            db, dispatcher, campaign_id, req.scene_id,
            [p.model_dump() for p in req.participants],
            timeout_minutes=req.turn_timeout_minutes or settings.TURN_TIMEOUT_MINUTES,
            auto_advance_turn=req.auto_advance_turn,
        )
    elif req.action == "advance":
        record = await turn_tracker.advance_turn(
            db, dispatcher, campaign_id, req.scene_id, user.id
        )
    elif req.action == "skip":
        await access.require_admin(
            db, campaign_id, user.id, message="Only campaign admins can skip turns"
        )
        record = await turn_tracker.skip_turn(
            db, dispatcher, campaign_id, req.scene_id, req.reason or "Skipped by GM"
        )
    else:
        sent = await turn_tracker.send_turn_reminder(
            db, dispatcher, campaign_id, req.scene_id
        )
        return {"message": "Reminder sent" if sent else "Reminder not sent", "sent": sent}

    return {"message": f"Turn {req.action} succeeded", "result": turn_tracker.serialize(record)}


@router.delete("")
async def end_turn_tracking(
    campaign_id: str,
    scene_id: str,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    await access.require_admin(db, campaign_id, user.id)
    await access.get_scene(db, campaign_id, scene_id)
    await turn_tracker.end_scene(db, dispatcher, campaign_id, scene_id)
    return {"message": "Turn tracking ended for scene"}


@router.post("/participants")
async def add_participant(
    campaign_id: str,
    req: AddParticipantRequest,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await access.require_admin(db, campaign_id, user.id)
    order = await turn_tracker.add_participant(
        db, campaign_id, req.scene_id,
        req.participant.model_dump(),
        insert_after_current=req.insert_after_current,
    )
    return {"turn_order": order}


@router.delete("/participants/{participant_user_id}")
async def remove_participant(
    campaign_id: str,
    participant_user_id: int,
    scene_id: str,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    await access.require_admin(db, campaign_id, user.id)
    order = await turn_tracker.remove_participant(
        db, dispatcher, campaign_id, scene_id, participant_user_id
    )
    return {"turn_order": order}
