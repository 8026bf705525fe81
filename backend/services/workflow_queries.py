"""
Named filters selecting the orders each workflow department works on.

"Not equal" and "not in" treat NULL as a non-match of the excluded value, so an
order missing a status still shows up in queues that only exclude values.
"""
from typing import Callable, Dict, Iterable

from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement

from models.order import (
    STANDARD_DISPATCH_LOCATIONS, BillStatus, ChargeStatus, DispatchStatus, FulfillingStatus,
    InstallationStatus, Order, PaymentReceived, SOStatus, StockStatus,
)

CANCELLED = DispatchStatus.ORDER_CANCELLED.value


def ne(column, value) -> ColumnElement:
    return or_(column.is_(None), column != value)


def not_in(column, values: Iterable[str]) -> ColumnElement:
    return or_(column.is_(None), column.notin_(list(values)))


def not_cancelled() -> ColumnElement:
    return ne(Order.dispatch_status, CANCELLED)


def installation_orders() -> ColumnElement:
    return and_(
        Order.dispatch_status == DispatchStatus.DELIVERED.value,
        ne(Order.installchargesstatus, ChargeStatus.NOT_IN_SCOPE.value),
        ne(Order.installation_status, InstallationStatus.COMPLETED.value),
    )


def accounts_orders() -> ColumnElement:
    return and_(
        ne(Order.payment_received, PaymentReceived.RECEIVED.value),
        not_cancelled(),
        or_(
            Order.installation_status == InstallationStatus.COMPLETED.value,
            Order.installchargesstatus == ChargeStatus.NOT_IN_SCOPE.value,
        ),
    )


def production_approval_orders() -> ColumnElement:
    return and_(
        or_(
            Order.sostatus == SOStatus.ACCOUNTS_APPROVED.value,
            and_(
                Order.sostatus == SOStatus.PENDING_FOR_APPROVAL.value,
                Order.payment_terms == "Credit",
            ),
            and_(
                Order.stock_status == StockStatus.PARTIAL_STOCK.value,
                Order.sostatus == SOStatus.APPROVED.value,
            ),
        ),
        not_cancelled(),
    )


def production_orders() -> ColumnElement:
    # Standard warehouses ship from stock; Morinda (or no origin) needs production.
    return and_(
        Order.sostatus == SOStatus.APPROVED.value,
        not_in(Order.dispatch_from, STANDARD_DISPATCH_LOCATIONS),
        ne(Order.fulfilling_status, FulfillingStatus.FULFILLED.value),
        not_cancelled(),
    )


def finished_goods_orders() -> ColumnElement:
    return and_(
        Order.fulfilling_status.in_([FulfillingStatus.FULFILLED.value, FulfillingStatus.PARTIAL_DISPATCH.value]),
        not_in(Order.dispatch_status, [CANCELLED]),
        ne(Order.stamp, "Received"),
    )


def verification_orders() -> ColumnElement:
    return and_(
        Order.payment_terms.in_(["100% Advance", "Partial Advance"]),
        not_in(Order.sostatus, [
            SOStatus.ACCOUNTS_APPROVED.value,
            SOStatus.APPROVED.value,
            SOStatus.ON_HOLD_LOW_PRICE.value,
        ]),
        not_cancelled(),
    )


def bill_orders() -> ColumnElement:
    return and_(
        Order.sostatus == SOStatus.APPROVED.value,
        ne(Order.bill_status, BillStatus.BILLING_COMPLETE.value),
        not_cancelled(),
    )


# Dashboard tiles; evaluated on top of a scope that already excludes cancelled orders.

def dashboard_installation() -> ColumnElement:
    return and_(
        Order.dispatch_status == DispatchStatus.DELIVERED.value,
        Order.installation_status.in_([
            InstallationStatus.PENDING.value,
            InstallationStatus.IN_PROGRESS.value,
            InstallationStatus.SITE_NOT_READY.value,
            InstallationStatus.HOLD.value,
        ]),
    )


def dashboard_production() -> ColumnElement:
    return and_(
        Order.sostatus == SOStatus.APPROVED.value,
        not_in(Order.dispatch_from, STANDARD_DISPATCH_LOCATIONS),
        ne(Order.fulfilling_status, FulfillingStatus.FULFILLED.value),
    )


def dashboard_dispatch() -> ColumnElement:
    return and_(
        Order.fulfilling_status == FulfillingStatus.FULFILLED.value,
        ne(Order.dispatch_status, DispatchStatus.DELIVERED.value),
    )


WORKFLOW_QUEUES: Dict[str, Callable[[], ColumnElement]] = {
    "installation": installation_orders,
    "accounts": accounts_orders,
    "production-approval": production_approval_orders,
    "production": production_orders,
    "finished-goods": finished_goods_orders,
    "verification": verification_orders,
    "bill": bill_orders,
}

DASHBOARD_COUNTS: Dict[str, Callable[[], ColumnElement]] = {
    "installation": dashboard_installation,
    "production": dashboard_production,
    "dispatch": dashboard_dispatch,
}
