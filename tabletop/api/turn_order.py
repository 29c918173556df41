"""REST API for a scene's initiative turn order."""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from tabletop.api.deps import get_app_settings, get_dispatcher
from tabletop.auth.deps import get_current_user
from tabletop.config import Settings
from tabletop.database import get_db
from tabletop.game import access, initiative, turn_order
from tabletop.game.notifications import NotificationDispatcher
from tabletop.game.turn_tracker import serialize
from tabletop.models.user_account import UserAccount

router = APIRouter(
    prefix="/api/campaigns/{campaign_id}/scenes/{scene_id}/turn-order",
    tags=["turn-order"],
)


class TurnOrderAction(BaseModel):
    action: str
    character_id: str | None = Field(default=None, alias="characterId")

    model_config = ConfigDict(populate_by_name=True)


@router.post("")
async def initialize_turn_order(
    campaign_id: str,
    scene_id: str,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_app_settings),
):
    """Roll initiative for every living character and (re)start the order."""
    await access.require_admin(
        db, campaign_id, user.id, message="Only admins can manage turn order"
    )
    await access.get_scene(db, campaign_id, scene_id)
    record = await turn_order.initialize(
        db, dispatcher, campaign_id, scene_id,
        timeout_minutes=settings.TURN_TIMEOUT_MINUTES,
    )
    return {"turnOrder": serialize(record)}


@router.get("")
async def read_turn_order(
    campaign_id: str,
    scene_id: str,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await access.require_member(db, campaign_id, user.id)
    record = await turn_order.get_turn_order(db, scene_id)
    if record is None or record.campaign_id != campaign_id:
        return {"turnOrder": None}
    return {"turnOrder": serialize(record)}


@router.patch("")
async def update_turn_order(
    campaign_id: str,
    scene_id: str,
    req: TurnOrderAction,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Apply ``next``, ``endTurn`` or ``end``.

    Membership is enough here, unlike initialisation which needs an admin.
    Whether players should be able to advance or end combat is an open
    product question, so the check is kept as it has always been.
    """
    await access.require_member(db, campaign_id, user.id)
    command = initiative.parse_command(req.action, req.character_id)
    record = await turn_order.apply_action(db, dispatcher, campaign_id, scene_id, command)
    if isinstance(command, initiative.EndEncounter):
        return {"message": "Turn order ended", "turnOrder": serialize(record)}
    return {"turnOrder": serialize(record)}
