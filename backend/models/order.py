"""
Order model and the workflow enumerations it moves through.
Products are embedded line items stored as a JSON list.
"""
from enum import Enum
from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship

from .base import Base, TimestampMixin, utcnow


class OrderType(str, Enum):
    B2C = "B2C"
    B2B = "B2B"
    B2G = "B2G"
    DEMO = "Demo"
    REPLACEMENT = "Replacement"
    STOCK_OUT = "Stock Out"


class SOStatus(str, Enum):
    PENDING_FOR_APPROVAL = "Pending for Approval"
    ACCOUNTS_APPROVED = "Accounts Approved"
    APPROVED = "Approved"
    ON_HOLD_LOW_PRICE = "Order on Hold Due to Low Price"
    ORDER_CANCELLED = "Order Cancelled"


class FulfillingStatus(str, Enum):
    NOT_FULFILLED = "Not Fulfilled"
    PENDING = "Pending"
    UNDER_PROCESS = "Under Process"
    PARTIAL_DISPATCH = "Partial Dispatch"
    FULFILLED = "Fulfilled"


class CompletionStatus(str, Enum):
    IN_PROGRESS = "In Progress"
    COMPLETE = "Complete"


class DispatchStatus(str, Enum):
    NOT_DISPATCHED = "Not Dispatched"
    DOCKET_AWAITED = "Docket Awaited Dispatched"
    DISPATCHED = "Dispatched"
    DELIVERED = "Delivered"
    HOLD_BY_SALESPERSON = "Hold by Salesperson"
    HOLD_BY_CUSTOMER = "Hold by Customer"
    ORDER_CANCELLED = "Order Cancelled"


class InstallationStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    SITE_NOT_READY = "Site Not Ready"
    HOLD = "Hold"
    FAILED = "Failed"


class BillStatus(str, Enum):
    PENDING = "Pending"
    UNDER_BILLING = "Under Billing"
    BILLING_COMPLETE = "Billing Complete"


class PaymentReceived(str, Enum):
    NOT_RECEIVED = "Not Received"
    RECEIVED = "Received"


class StockStatus(str, Enum):
    IN_STOCK = "In Stock"
    PARTIAL_STOCK = "Partial Stock"
    OUT_OF_STOCK = "Out of Stock"


class ChargeStatus(str, Enum):
    INCLUDING = "Including"
    EXTRA = "Extra"
    NOT_IN_SCOPE = "Not in Scope"


# Seven standard warehouses plus Morinda, the only origin that needs an
# internal fulfillment step.
MORINDA = "Morinda"
STANDARD_DISPATCH_LOCATIONS = (
    "Patna", "Bareilly", "Ranchi", "Lucknow", "Delhi", "Jaipur", "Rajasthan",
)
DISPATCH_LOCATIONS = frozenset(STANDARD_DISPATCH_LOCATIONS) | {MORINDA}


class Order(Base, TimestampMixin):
    __tablename__ = "orders"

    # Identity
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(String(30), unique=True, nullable=False, index=True)
    so_date = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    submission_time = Column(String(40), nullable=True)

    # Ownership
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    assigned_to = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # Classification
    order_type = Column(String(20), nullable=False, default=OrderType.B2C.value)
    company = Column(String(50), nullable=True, default="Promark")
    dispatch_from = Column(String(50), nullable=True, index=True)

    # Customer and logistics
    name = Column(String(150), nullable=True)
    customername = Column(String(200), nullable=True, index=True)
    customer_email = Column(String(255), nullable=True)
    contact_no = Column(String(30), nullable=True)
    alterno = Column(String(30), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    pin_code = Column(String(20), nullable=True)
    shipping_address = Column(Text, nullable=True)
    billing_address = Column(Text, nullable=True)
    same_address = Column(Boolean, nullable=False, default=False)
    gstno = Column(String(30), nullable=True)
    report = Column(String(100), nullable=True)
    sales_person = Column(String(100), nullable=True)
    transporter = Column(String(100), nullable=True)
    transporter_details = Column(Text, nullable=True)
    docket_no = Column(String(100), nullable=True)

    # Commercial terms
    products = Column(JSON, nullable=False, default=list)
    productno = Column(String(100), nullable=True)
    total = Column(Float, nullable=True)
    payment_collected = Column(Float, nullable=True)
    payment_due = Column(Float, nullable=True)
    payment_method = Column(String(50), nullable=True)
    payment_terms = Column(String(50), nullable=True)
    credit_days = Column(String(20), nullable=True)
    neft_transaction_id = Column(String(100), nullable=True)
    cheque_id = Column(String(100), nullable=True)
    freightcs = Column(Float, nullable=True)
    freightstatus = Column(String(20), nullable=True, default=ChargeStatus.EXTRA.value)
    actual_freight = Column(Float, nullable=True)
    installation = Column(Float, nullable=True)
    installchargesstatus = Column(String(20), nullable=True, default=ChargeStatus.EXTRA.value)
    gem_order_number = Column(String(100), nullable=True)
    demo_date = Column(DateTime(timezone=True), nullable=True)
    delivery_date = Column(DateTime(timezone=True), nullable=True)
    po_file_path = Column(String(500), nullable=True)

    # Workflow status
    sostatus = Column(String(50), nullable=False, default=SOStatus.PENDING_FOR_APPROVAL.value, index=True)
    fulfilling_status = Column(String(30), nullable=False, default=FulfillingStatus.PENDING.value)
    completion_status = Column(String(30), nullable=False, default=CompletionStatus.IN_PROGRESS.value)
    dispatch_status = Column(String(50), nullable=False, default=DispatchStatus.NOT_DISPATCHED.value, index=True)
    installation_status = Column(String(30), nullable=False, default=InstallationStatus.PENDING.value)
    bill_status = Column(String(30), nullable=False, default=BillStatus.PENDING.value)
    payment_received = Column(String(30), nullable=False, default=PaymentReceived.NOT_RECEIVED.value)
    stock_status = Column(String(30), nullable=True)
    stamp = Column(String(30), nullable=True)

    # Workflow timestamps, each set once by its transition
    approval_timestamp = Column(DateTime(timezone=True), nullable=True)
    products_edit_timestamp = Column(DateTime(timezone=True), nullable=True)
    fulfillment_date = Column(DateTime(timezone=True), nullable=True)
    dispatch_date = Column(DateTime(timezone=True), nullable=True)
    receipt_date = Column(DateTime(timezone=True), nullable=True)
    delivered_date = Column(DateTime(timezone=True), nullable=True)
    invoice_date = Column(DateTime(timezone=True), nullable=True)
    installation_status_date = Column(DateTime(timezone=True), nullable=True)

    # Department notes
    invoice_no = Column(String(100), nullable=True)
    bill_number = Column(String(100), nullable=True)
    pi_number = Column(String(100), nullable=True)
    installationeng = Column(String(100), nullable=True)
    installation_report = Column(String(50), nullable=True)
    installation_file = Column(String(500), nullable=True)
    remarks = Column(Text, nullable=True)
    remarks_by_production = Column(Text, nullable=True)
    remarks_by_accounts = Column(Text, nullable=True)
    remarks_by_billing = Column(Text, nullable=True)
    remarks_by_installation = Column(Text, nullable=True)
    verification_remarks = Column(Text, nullable=True)

    creator = relationship("User", foreign_keys=[created_by])
    assignee = relationship("User", foreign_keys=[assigned_to])

    def __repr__(self):
        return f"<Order(id={self.id}, order_id={self.order_id}, sostatus={self.sostatus})>"
