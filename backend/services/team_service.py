from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from config.logging import get_logger
from core.exceptions import BadRequestError, ForbiddenError, NotFoundError
from models.user import User
from repositories.user_repo import UserRepository
from schemas.order import UserSummary
from services.realtime import RealtimeHub

logger = get_logger(__name__)

TEAM_UPDATE_EVENT = "teamUpdate"


def _summary(user: User) -> Dict[str, Any]:
    return UserSummary.model_validate(user).model_dump(by_alias=True)


class TeamService:
    """Leader/member assignment. Hierarchies are one level deep."""

    def __init__(self, db: Session, hub: Optional[RealtimeHub] = None):
        self.db = db
        self.hub = hub
        self.repo = UserRepository(db)

    def current_user(self, actor: User) -> Dict[str, Any]:
        user = self.repo.get(actor.id)
        if user is None:
            raise NotFoundError("User", actor.id)
        return _summary(user)

    def available_users(self, actor: User) -> List[Dict[str, Any]]:
        return [_summary(user) for user in self.repo.available_users(exclude_id=actor.id)]

    def my_team(self, actor: User) -> List[Dict[str, Any]]:
        members = []
        for user in self.repo.team_members(actor.id):
            member = _summary(user)
            member["leaderUsername"] = actor.username
            members.append(member)
        return members

    async def assign(self, user_id: int, actor: User) -> Dict[str, Any]:
        target = self.repo.get(user_id)
        if target is None:
            raise NotFoundError("User", user_id)
        if target.id == actor.id:
            raise BadRequestError("Cannot assign yourself", field="userId")
        if target.assigned_to_leader is not None:
            raise BadRequestError("User already assigned to a team", field="userId")
        if actor.assigned_to_leader is not None:
            raise BadRequestError("Team members cannot lead a team", field="userId")

        self.repo.update(target, {"assigned_to_leader": actor.id})
        logger.info(f"User {target.username} assigned to leader {actor.username}")
        await self._broadcast(target.id, actor.id, "assign")
        return _summary(target)

    async def unassign(self, user_id: int, actor: User) -> Dict[str, Any]:
        target = self.repo.get(user_id)
        if target is None:
            raise NotFoundError("User", user_id)
        if target.assigned_to_leader != actor.id:
            raise ForbiddenError("You are not the leader of this user")

        self.repo.update(target, {"assigned_to_leader": None})
        logger.info(f"User {target.username} removed from leader {actor.username}")
        await self._broadcast(target.id, actor.id, "unassign")
        return _summary(target)

    async def _broadcast(self, user_id: int, leader_id: int, action: str):
        if self.hub is None:
            return
        try:
            await self.hub.broadcast(TEAM_UPDATE_EVENT, {"userId": user_id, "leaderId": leader_id, "action": action})
        except Exception as e:
            logger.error(f"Failed to broadcast {TEAM_UPDATE_EVENT}: {e}")
