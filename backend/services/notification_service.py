from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from config.logging import get_logger
from config.settings import get_settings
from models.notification import Notification
from models.order import Order
from models.user import User
from repositories.notification_repo import NotificationRepository, ROLE_ALL
from schemas.order import NotificationOut
from services.realtime import EventKind, RealtimeHub, compute_channels

logger = get_logger(__name__)
settings = get_settings()


class OrderAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


def build_message(action: OrderAction, actor: User, order: Order) -> str:
    username = actor.username or "User"
    customer = order.customername or "Unknown"
    order_ref = order.order_id or "N/A"
    if action == OrderAction.CREATED:
        return f"New sales order created by {username} for {customer} (Order ID: {order_ref})"
    if action == OrderAction.UPDATED:
        return f"Order updated by {username} for {customer} (Order ID: {order_ref})"
    return f"Order deleted by {username} for {customer} (Order ID: {order_ref})"


def order_event_payload(order: Order) -> Dict[str, Any]:
    """Payload for newOrder / deleteOrder events."""
    return {
        "id": order.id,
        "customername": order.customername,
        "orderId": order.order_id,
        "createdBy": order.created_by,
        "assignedTo": order.assigned_to,
    }


def order_update_payload(document: Dict[str, Any], operation_type: str = "update") -> Dict[str, Any]:
    """Payload for orderUpdate events, shared with the change feed watcher."""
    return {
        "operationType": operation_type,
        "documentId": document.get("id"),
        "createdBy": document.get("createdBy"),
        "assignedTo": document.get("assignedTo"),
        "fullDocument": document,
    }


class NotificationService:
    def __init__(self, db: Session, hub: Optional[RealtimeHub] = None):
        self.db = db
        self.hub = hub
        self.repo = NotificationRepository(db)

    def record(self, action: OrderAction, actor: User, order: Order) -> Notification:
        """Persist the lifecycle notification for an order change."""
        return self.save(build_message(action, actor, order), actor, order.order_id)

    def save(self, message: str, actor: User, order_ref: Optional[str]) -> Notification:
        return self.repo.create({
            "message": message,
            "role": ROLE_ALL,
            "user_id": actor.id,
            "order_ref": order_ref,
        })

    async def publish(self, rooms: Iterable[str], event: str, data: Any) -> int:
        """Best-effort emit; failures are logged and never raised."""
        if self.hub is None:
            return 0
        try:
            return await self.hub.emit(rooms, event, data)
        except Exception as e:
            logger.error(f"Failed to publish {event} to {sorted(rooms)}: {e}")
            return 0

    async def fan_out(
        self,
        order: Any,
        event_kind: EventKind,
        event_payload: Dict[str, Any],
        notification: Optional[Notification],
    ):
        """Emit the domain event, then the notification event, to their rooms."""
        await self.publish(compute_channels(order, event_kind), event_kind.value, event_payload)
        if notification is not None:
            payload = NotificationOut.model_validate(notification).to_payload()
            await self.publish(compute_channels(order, EventKind.NOTIFICATION), EventKind.NOTIFICATION.value, payload)

    async def announce_new_orders(self, orders: List[Order]):
        for order in orders:
            await self.publish(
                compute_channels(order, EventKind.NEW_ORDER), EventKind.NEW_ORDER.value, order_event_payload(order)
            )

    def list_recent(self) -> List[Dict[str, Any]]:
        notifications = self.repo.latest(ROLE_ALL, limit=settings.NOTIFICATION_LIST_LIMIT)
        return [NotificationOut.model_validate(n).to_payload() for n in notifications]

    def mark_all_read(self) -> int:
        updated = self.repo.mark_all_read(ROLE_ALL)
        logger.info(f"Marked {updated} notifications as read")
        return updated

    def clear_all(self) -> int:
        deleted = self.repo.clear(ROLE_ALL)
        logger.info(f"Cleared {deleted} notifications")
        return deleted


__all__ = [
    "NotificationService", "OrderAction", "build_message",
    "order_event_payload", "order_update_payload",
]
