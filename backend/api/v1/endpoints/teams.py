from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from config.database import get_db
from core.dependencies import get_current_user, get_realtime_hub
from models.user import User
from services.realtime import RealtimeHub
from services.team_service import TeamService

router = APIRouter()


class TeamAssignment(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: int


def get_team_service(
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_realtime_hub)
) -> TeamService:
    return TeamService(db, hub)


@router.get("/current-user")
async def get_current_user_profile(
    current_user: User = Depends(get_current_user),
    service: TeamService = Depends(get_team_service)
):
    return {"success": True, "data": service.current_user(current_user)}


@router.get("/available-users")
async def fetch_available_users(
    current_user: User = Depends(get_current_user),
    service: TeamService = Depends(get_team_service)
):
    """Users without a leader, excluding the caller"""
    return {"success": True, "data": service.available_users(current_user)}


@router.get("/my-team")
async def fetch_my_team(
    current_user: User = Depends(get_current_user),
    service: TeamService = Depends(get_team_service)
):
    return {"success": True, "data": service.my_team(current_user)}


@router.post("/assign")
async def assign_user(
    body: TeamAssignment,
    current_user: User = Depends(get_current_user),
    service: TeamService = Depends(get_team_service)
):
    user = await service.assign(body.user_id, current_user)
    return {"success": True, "message": "User assigned successfully", "data": user}


@router.post("/unassign")
async def unassign_user(
    body: TeamAssignment,
    current_user: User = Depends(get_current_user),
    service: TeamService = Depends(get_team_service)
):
    user = await service.unassign(body.user_id, current_user)
    return {"success": True, "message": "User unassigned successfully", "data": user}
