"""
Role-based order visibility.

Admins see every order. Everyone else sees orders created by or assigned to
themselves or one of their direct team members.
"""
from typing import List

from sqlalchemy import and_, or_, true
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from models.order import Order
from models.user import User
from repositories.user_repo import UserRepository
from services.workflow_queries import not_cancelled


class VisibilityService:
    def __init__(self, db: Session):
        self.db = db
        self.user_repo = UserRepository(db)

    def team_ids(self, actor: User) -> List[int]:
        return [actor.id] + self.user_repo.team_member_ids(actor.id)

    def scope(self, actor: User, exclude_cancelled: bool = False) -> ColumnElement:
        """Predicate restricting orders to what the actor may see."""
        if actor.is_admin:
            predicate = true()
        else:
            ids = self.team_ids(actor)
            predicate = or_(Order.created_by.in_(ids), Order.assigned_to.in_(ids))

        if exclude_cancelled:
            predicate = and_(predicate, not_cancelled())
        return predicate

    def can_view(self, actor: User, order: Order) -> bool:
        if actor.is_admin:
            return True
        ids = set(self.team_ids(actor))
        return order.created_by in ids or order.assigned_to in ids
