from typing import List

from sqlalchemy.orm import Session

from models.notification import Notification
from repositories.base import CRUDBase

ROLE_ALL = "All"


class NotificationRepository(CRUDBase[Notification]):
    def __init__(self, db: Session):
        super().__init__(Notification, db)

    def latest(self, role: str = ROLE_ALL, limit: int = 50) -> List[Notification]:
        return (
            self.db.query(Notification)
            .filter(Notification.role == role)
            .order_by(Notification.timestamp.desc(), Notification.id.desc())
            .limit(limit)
            .all()
        )

    def mark_all_read(self, role: str = ROLE_ALL) -> int:
        updated = (
            self.db.query(Notification)
            .filter(Notification.role == role, Notification.is_read.is_(False))
            .update({Notification.is_read: True}, synchronize_session=False)
        )
        self.db.commit()
        return updated

    def clear(self, role: str = ROLE_ALL) -> int:
        deleted = self.db.query(Notification).filter(Notification.role == role).delete(synchronize_session=False)
        self.db.commit()
        return deleted
