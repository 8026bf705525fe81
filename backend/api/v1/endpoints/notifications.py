from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from config.database import get_db
from core.dependencies import get_current_user
from models.user import User
from services.notification_service import NotificationService

router = APIRouter()


@router.get("")
async def get_notifications(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Latest notifications, newest first"""
    return {"success": True, "data": NotificationService(db).list_recent()}


@router.post("/mark-read")
async def mark_notifications_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    updated = NotificationService(db).mark_all_read()
    return {"success": True, "message": "Notifications marked as read", "updated": updated}


@router.delete("/clear")
async def clear_notifications(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    deleted = NotificationService(db).clear_all()
    return {"success": True, "message": "Notifications cleared", "deleted": deleted}
