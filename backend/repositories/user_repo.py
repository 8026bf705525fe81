from typing import List

from sqlalchemy.orm import Session

from models.user import User, UserRole
from repositories.base import CRUDBase


class UserRepository(CRUDBase[User]):
    def __init__(self, db: Session):
        super().__init__(User, db)

    def team_member_ids(self, leader_id: int) -> List[int]:
        """Direct members only; the hierarchy is one level deep."""
        rows = self.db.query(User.id).filter(User.assigned_to_leader == leader_id).all()
        return [row[0] for row in rows]

    def team_members(self, leader_id: int) -> List[User]:
        return (
            self.db.query(User)
            .filter(User.assigned_to_leader == leader_id)
            .order_by(User.username)
            .all()
        )

    def available_users(self, exclude_id: int) -> List[User]:
        """Users without a leader who can be pulled into a team."""
        return (
            self.db.query(User)
            .filter(
                User.assigned_to_leader.is_(None),
                User.id != exclude_id,
                User.role.in_([UserRole.SALES.value, UserRole.ADMIN.value]),
                User.is_active.is_(True),
            )
            .order_by(User.username)
            .all()
        )
