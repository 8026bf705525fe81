from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from sqlalchemy import and_
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config.logging import get_logger
from core.exceptions import (
    BadRequestError, EmailDeliveryError, ErrorDetail, ForbiddenError, InternalServerError,
    NotFoundError, ValidationError, persistence_validation_error,
)
from models.order import DispatchStatus, Order, OrderType
from models.user import User
from repositories.order_repo import OrderRepository
from repositories.user_repo import UserRepository
from schemas.order import OrderCreate, order_document
from services.notification_service import (
    NotificationService, OrderAction, build_message, order_event_payload, order_update_payload,
)
from services.order_rules import (
    EDITABLE_FIELDS, compute_payment_due, compute_total, default_fulfilling_status, edited_field_names,
    normalize_products, parse_products, plan_edit, validate_dispatch_from, validate_order_requirements,
    validate_order_type, InvalidFieldValue,
)
from services.realtime import EventKind, RealtimeHub
from services.visibility_service import VisibilityService
from services.workflow_queries import DASHBOARD_COUNTS, WORKFLOW_QUEUES
from utils.date_utils import to_local, utc_now
from utils.email_utils import OrderMailer

logger = get_logger(__name__)

NOTIFY_DISPATCH_STATUSES = (DispatchStatus.DISPATCHED.value, DispatchStatus.DELIVERED.value)


class OrderService:
    def __init__(self, db: Session, hub: Optional[RealtimeHub] = None, mailer: Optional[OrderMailer] = None):
        self.db = db
        self.order_repo = OrderRepository(db)
        self.user_repo = UserRepository(db)
        self.visibility = VisibilityService(db)
        self.notifications = NotificationService(db, hub)
        self.mailer = mailer

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _get_visible(self, order_id: int, actor: User, with_people: bool = False) -> Order:
        order = self.order_repo.get_with_people(order_id) if with_people else self.order_repo.get(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        if not self.visibility.can_view(actor, order):
            raise ForbiddenError("You are not allowed to access this order")
        return order

    def get_order(self, order_id: int, actor: User) -> Dict[str, Any]:
        return order_document(self._get_visible(order_id, actor, with_people=True), include_people=True)

    def list_orders(self, actor: User) -> List[Dict[str, Any]]:
        orders = self.order_repo.find(self.visibility.scope(actor))
        return [order_document(order, include_people=True) for order in orders]

    def list_orders_paginated(self, actor: User, page: int, limit: int, search: Optional[str] = None) -> Dict[str, Any]:
        result = self.order_repo.find_page(self.visibility.scope(actor), page, limit, search)
        result["items"] = [order_document(order, include_people=True) for order in result["items"]]
        return result

    def dashboard_counts(self, actor: User) -> Dict[str, int]:
        base = self.visibility.scope(actor, exclude_cancelled=True)
        counts = {"all": self.order_repo.count(base)}
        for name, predicate in DASHBOARD_COUNTS.items():
            counts[name] = self.order_repo.count(and_(base, predicate()))
        return counts

    def workflow_queue(self, name: str, actor: User) -> List[Dict[str, Any]]:
        predicate = WORKFLOW_QUEUES.get(name)
        if predicate is None:
            raise NotFoundError("Workflow queue", name)
        orders = self.order_repo.find(and_(self.visibility.scope(actor), predicate()))
        return [order_document(order, include_people=True) for order in orders]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def prepare_order(self, dto: OrderCreate, actor: User, po_file_path: Optional[str] = None) -> Dict[str, Any]:
        """Validate a create payload and derive the column values to insert."""
        products = parse_products(dto.products)
        if not products:
            raise ValidationError(
                "At least one product is required",
                field="products",
                errors=[ErrorDetail(code="MISSING_FIELD", message="At least one product is required", field="products")],
            )

        order_type = dto.order_type or OrderType.B2C.value
        validate_order_type(order_type)
        validate_order_requirements(order_type, dto.gem_order_number, dto.demo_date, dto.payment_terms)
        validate_dispatch_from(dto.dispatch_from)
        products = normalize_products(products, order_type)

        choices = self._validate_choices(dto, ("freightstatus", "installchargesstatus", "fulfillingStatus"))

        self._check_assignee(dto.assigned_to)

        total = dto.total if dto.total is not None else compute_total(products, dto.freightcs, dto.installation)
        payment_due = dto.payment_due if dto.payment_due is not None else compute_payment_due(total, dto.payment_collected)
        now = utc_now()

        values = {
            "so_date": now,
            "submission_time": to_local(now).strftime("%A, %d %B %Y at %I:%M:%S %p"),
            "created_by": actor.id,
            "assigned_to": dto.assigned_to,
            "order_type": order_type,
            "products": products,
            "total": total,
            "payment_due": payment_due,
            "freightstatus": choices.get("freightstatus") or "Extra",
            "installchargesstatus": choices.get("installchargesstatus") or "Extra",
            "fulfilling_status": choices.get("fulfillingStatus") or default_fulfilling_status(order_type, dto.dispatch_from),
            "po_file_path": po_file_path,
        }
        for field in (
            "name", "customername", "customer_email", "contact_no", "alterno", "city", "state", "pin_code",
            "gstno", "shipping_address", "billing_address", "same_address", "productno", "company",
            "dispatch_from", "freightcs", "installation", "payment_collected", "payment_method",
            "payment_terms", "credit_days", "neft_transaction_id", "cheque_id", "gem_order_number",
            "demo_date", "delivery_date", "report", "sales_person", "transporter", "transporter_details",
            "remarks",
        ):
            values[field] = getattr(dto, field)

        # Leave unset columns to their defaults
        return {key: value for key, value in values.items() if value is not None}

    def _check_assignee(self, user_id: Optional[int]):
        if user_id is not None and self.user_repo.get(user_id) is None:
            raise ValidationError(
                "Validation failed",
                field="assignedTo",
                errors=[ErrorDetail(code="INVALID_REFERENCE", message="Assigned user does not exist", field="assignedTo")],
            )

    @staticmethod
    def _validate_choices(dto: OrderCreate, names) -> Dict[str, str]:
        data = dto.model_dump(by_alias=True)
        values, errors = {}, []
        for name in names:
            if data.get(name) is None:
                continue
            try:
                values[name] = EDITABLE_FIELDS[name].normalize(data[name])
            except InvalidFieldValue as e:
                errors.append(ErrorDetail(code="INVALID_VALUE", message=f"{name} {e}", field=name))
        if errors:
            raise ValidationError("Validation failed", errors=errors)
        return values

    async def create_order(self, payload: Mapping[str, Any], actor: User, po_file_path: Optional[str] = None) -> Dict[str, Any]:
        dto = OrderCreate.parse(payload)
        values = self.prepare_order(dto, actor, po_file_path)
        values["order_id"] = self.order_repo.next_order_ids()[0]

        try:
            order = self.order_repo.create(values)
            notification = self.notifications.record(OrderAction.CREATED, actor, order)
        except (IntegrityError, DataError) as e:
            self.db.rollback()
            logger.warning(f"Rejected new order for user {actor.id}: {e.orig}")
            raise persistence_validation_error(e, "Order could not be saved")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to persist new order for user {actor.id}: {e}")
            raise InternalServerError("Failed to create order")

        logger.info(f"Order {order.order_id} created by {actor.username} (total={order.total})")
        await self.notifications.fan_out(order, EventKind.NEW_ORDER, order_event_payload(order), notification)
        return order_document(order, include_people=True)

    # ------------------------------------------------------------------
    # Edit
    # ------------------------------------------------------------------

    async def edit_order(self, order_id: int, payload: Mapping[str, Any], actor: User) -> Dict[str, Any]:
        order = self._get_visible(order_id, actor)
        plan = plan_edit(payload, order, utc_now())
        self._check_assignee(plan.updates.get("assigned_to"))

        if not plan.updates:
            logger.info(f"Edit of order {order.order_id} by {actor.username} changed nothing")
            return order_document(self.order_repo.get_with_people(order.id), include_people=True)

        try:
            self.order_repo.update(order, plan.updates)
        except (IntegrityError, DataError) as e:
            self.db.rollback()
            logger.warning(f"Rejected update of order {order_id}: {e.orig}")
            raise persistence_validation_error(e, "Order update could not be saved")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to update order {order_id}: {e}")
            raise InternalServerError("Failed to update order")

        order = self.order_repo.get_with_people(order_id)
        logger.info(f"Order {order.order_id} updated by {actor.username}: {', '.join(edited_field_names(plan.updates))}")

        if plan.approved and order.customer_email:
            await self._send_mail_best_effort("approval", order, lambda: self.mailer.send_order_approved(order))
        if (
            plan.dispatch_status_changed
            and order.dispatch_status in NOTIFY_DISPATCH_STATUSES
            and order.customer_email
        ):
            await self._send_mail_best_effort(
                order.dispatch_status, order, lambda: self.mailer.send_dispatch_status(order, order.dispatch_status)
            )

        notification = self.notifications.record(OrderAction.UPDATED, actor, order)
        document = order_document(order, include_people=True)
        await self.notifications.fan_out(order, EventKind.ORDER_UPDATE, order_update_payload(document), notification)
        return document

    async def _send_mail_best_effort(self, kind: str, order: Order, send: Callable[[], Awaitable[bool]]) -> bool:
        if self.mailer is None:
            return False
        try:
            sent = await send()
        except Exception as e:
            logger.error(f"{kind} email for order {order.order_id} failed: {e}")
            return False
        if not sent:
            logger.warning(f"{kind} email for order {order.order_id} was not delivered")
        return sent

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_order(self, order_id: int, actor: User) -> Dict[str, Any]:
        order = self.order_repo.get(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        if not actor.is_admin and order.created_by != actor.id:
            raise ForbiddenError("You can only delete your own orders")

        snapshot = order_event_payload(order)
        message = build_message(OrderAction.DELETED, actor, order)

        try:
            self.order_repo.remove(order)
            notification = self.notifications.save(message, actor, snapshot["orderId"])
        except (IntegrityError, DataError) as e:
            self.db.rollback()
            logger.warning(f"Rejected delete of order {order_id}: {e.orig}")
            raise persistence_validation_error(e, "Order could not be deleted")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to delete order {order_id}: {e}")
            raise InternalServerError("Failed to delete order")

        logger.info(f"Order {snapshot['orderId']} deleted by {actor.username}")
        await self.notifications.fan_out(snapshot, EventKind.DELETE_ORDER, snapshot, notification)
        return snapshot

    # ------------------------------------------------------------------
    # Installation mail
    # ------------------------------------------------------------------

    async def send_installation_mail(self, order_id: int, actor: User) -> None:
        """Mail the customer their installation assignment; copy the salesperson."""
        order = self._get_visible(order_id, actor, with_people=True)
        if not order.customer_email:
            raise BadRequestError("Customer email not available", field="customerEmail")
        if self.mailer is None:
            raise EmailDeliveryError(order.customer_email)

        try:
            sent = await self.mailer.send_installation_assignment(order, order.customer_email)
        except Exception as e:
            logger.error(f"Installation email for order {order.order_id} failed: {e}")
            sent = False
        if not sent:
            raise EmailDeliveryError(order.customer_email)
        logger.info(f"Installation email for order {order.order_id} sent to customer")

        salesperson_email = order.creator.email if order.creator else None
        if salesperson_email:
            await self._send_mail_best_effort(
                "internal installation",
                order,
                lambda: self.mailer.send_installation_assignment(
                    order, salesperson_email, subject=f"[Internal] Installation Assigned - Order #{order.order_id}"
                ),
            )
