from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey

from .base import Base, utcnow


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    message = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    is_read = Column(Boolean, default=False, nullable=False)
    role = Column(String(20), default="All", nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    order_ref = Column(String(30), nullable=True)

    def __repr__(self):
        return f"<Notification(id={self.id}, is_read={self.is_read})>"
