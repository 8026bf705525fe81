"""
Spreadsheet import and export of orders.

Import turns every row into one order with one product and runs it through
the same validation as a regular create; one bad row rejects the whole file.
Export flattens each order into one row per product. Order-level fields
that would only repeat are written on the first row of each order.
"""
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config.logging import get_logger
from config.settings import get_settings
from core.exceptions import BulkImportError, InternalServerError, ValidationError, persistence_validation_error
from models.order import Order, OrderType
from models.user import User
from repositories.order_repo import OrderRepository
from schemas.order import OrderCreate, order_document
from services.notification_service import NotificationService
from services.order_rules import DEFAULT_GST, PROMARK
from services.order_service import OrderService
from services.realtime import RealtimeHub
from services.visibility_service import VisibilityService
from utils.date_utils import day_string, parse_date, utc_now
from utils.file_utils import ExcelProcessor, FileValidator

logger = get_logger(__name__)
settings = get_settings()

SHEET_NAME = "Orders"
NOT_AVAILABLE = "N/A"

# Header -> create payload key, for order level columns read on import.
IMPORT_ORDER_COLUMNS: Dict[str, str] = {
    "Dispatch From": "dispatchFrom",
    "Contact Person Name": "name",
    "City": "city",
    "State": "state",
    "Pin Code": "pinCode",
    "Contact No": "contactNo",
    "Alternate No": "alterno",
    "Customer Email": "customerEmail",
    "Customer Name": "customername",
    "GST No": "gstno",
    "Freight Charges": "freightcs",
    "Freight Status": "freightstatus",
    "Installation Charges": "installation",
    "Installation Charges Status": "installchargesstatus",
    "Reporting Manager": "report",
    "Sales Person": "salesPerson",
    "Company": "company",
    "Order Type": "orderType",
    "Shipping Address": "shippingAddress",
    "Billing Address": "billingAddress",
    "Payment Collected": "paymentCollected",
    "Payment Method": "paymentMethod",
    "Payment Terms": "paymentTerms",
    "Credit Days": "creditDays",
    "NEFT Transaction ID": "neftTransactionId",
    "Cheque ID": "chequeId",
    "Remarks": "remarks",
    "GEM Order Number": "gemOrderNumber",
    "Delivery Date": "deliveryDate",
    "Demo Date": "demoDate",
}

# Columns repeated on every row of an order: (header, column attribute, is_date)
EXPORT_ENTRY_COLUMNS: List[Tuple[str, str, bool]] = [
    ("Order ID", "order_id", False),
    ("SO Date", "so_date", True),
    ("Dispatch From", "dispatch_from", False),
    ("Dispatch Date", "dispatch_date", True),
    ("Contact Person Name", "name", False),
    ("City", "city", False),
    ("State", "state", False),
    ("Pin Code", "pin_code", False),
    ("Contact No", "contact_no", False),
    ("Alternate No", "alterno", False),
    ("Customer Email", "customer_email", False),
    ("Customer Name", "customername", False),
]

# Columns written on the first row only: (header, column attribute, default)
EXPORT_FIRST_ROW_COLUMNS: List[Tuple[str, str, Any]] = [
    ("Total", "total", 0),
    ("Payment Collected", "payment_collected", ""),
    ("Payment Method", "payment_method", ""),
    ("Payment Due", "payment_due", ""),
    ("Payment Terms", "payment_terms", ""),
    ("Credit Days", "credit_days", ""),
    ("NEFT Transaction ID", "neft_transaction_id", ""),
    ("Cheque ID", "cheque_id", ""),
    ("Freight Charges", "freightcs", ""),
    ("Freight Status", "freightstatus", ""),
    ("Installation Charges Status", "installchargesstatus", ""),
    ("GST No", "gstno", ""),
    ("Order Type", "order_type", OrderType.B2C.value),
    ("GEM Order Number", "gem_order_number", ""),
    ("Demo Date", "demo_date", ""),
    ("Delivery Date", "delivery_date", ""),
    ("Installation Charges", "installation", ""),
    ("Installation Status", "installation_status", "Pending"),
    ("Remarks By Installation", "remarks_by_installation", ""),
    ("Dispatch Status", "dispatch_status", "Not Dispatched"),
    ("Sales Person", "sales_person", ""),
    ("Reporting Manager", "report", ""),
    ("Company", "company", PROMARK),
    ("Transporter", "transporter", ""),
    ("Transporter Details", "transporter_details", ""),
    ("Docket No", "docket_no", ""),
    ("Shipping Address", "shipping_address", ""),
    ("Billing Address", "billing_address", ""),
    ("Same Address", "same_address", ""),
    ("Invoice No", "invoice_no", ""),
    ("Fulfilling Status", "fulfilling_status", "Pending"),
    ("Remarks By Production", "remarks_by_production", ""),
    ("Remarks By Accounts", "remarks_by_accounts", ""),
    ("Payment Received", "payment_received", "Not Received"),
    ("Bill Number", "bill_number", ""),
    ("PI Number", "pi_number", ""),
    ("Remarks By Billing", "remarks_by_billing", ""),
    ("Verification Remarks", "verification_remarks", ""),
    ("Bill Status", "bill_status", "Pending"),
    ("Completion Status", "completion_status", "In Progress"),
    ("Remarks", "remarks", ""),
    ("SO Status", "sostatus", "Pending for Approval"),
]

EXPORT_DATE_COLUMNS: List[Tuple[str, str]] = [
    ("Receipt Date", "receipt_date"),
    ("Invoice Date", "invoice_date"),
    ("Fulfillment Date", "fulfillment_date"),
]

EXPORT_PRODUCT_HEADERS = [
    "Product Type", "Size", "Specification", "Quantity", "Unit Price",
    "Serial Nos", "Model Nos", "GST", "Brand", "Warranty",
]

EXPORT_HEADERS = (
    [header for header, _, _ in EXPORT_ENTRY_COLUMNS]
    + EXPORT_PRODUCT_HEADERS
    + [header for header, _, _ in EXPORT_FIRST_ROW_COLUMNS]
    + [header for header, _ in EXPORT_DATE_COLUMNS]
)

PLACEHOLDER_PRODUCT = {
    "productType": "Not Found", "size": NOT_AVAILABLE, "spec": NOT_AVAILABLE,
    "qty": 0, "unitPrice": 0, "serialNos": [], "modelNos": [], "gst": 0, "brand": "",
}


def _cell_text(value: Any) -> Optional[str]:
    """Spreadsheet cells arrive as str, int or float depending on the source."""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip() or None


def _list_cell(value: Any) -> List[str]:
    text = _cell_text(value)
    if not text:
        return []
    return [part.strip() for part in text.split(",") if part.strip()]


def _join(values: Any) -> str:
    return ", ".join(str(v) for v in values) if isinstance(values, list) else ""


def row_to_payload(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Map one spreadsheet row onto a create payload with a single product."""
    product = {
        "productType": _cell_text(row.get("Product Type")),
        "size": _cell_text(row.get("Size")) or NOT_AVAILABLE,
        "spec": _cell_text(row.get("Specification")) or NOT_AVAILABLE,
        "qty": row.get("Quantity"),
        "unitPrice": row.get("Unit Price"),
        "gst": _cell_text(row.get("GST")) or DEFAULT_GST,
        "modelNos": _list_cell(row.get("Model Nos")),
        "serialNos": _list_cell(row.get("Serial Nos")),
        "brand": _cell_text(row.get("Brand")) or "",
        "warranty": _cell_text(row.get("Warranty")),
    }

    payload: Dict[str, Any] = {"products": [product]}
    for header, key in IMPORT_ORDER_COLUMNS.items():
        value = row.get(header)
        if value is None:
            continue
        if key in ("deliveryDate", "demoDate"):
            payload[key] = parse_date(value)
        elif key in ("freightcs", "installation", "paymentCollected"):
            payload[key] = value
        else:
            payload[key] = _cell_text(value)

    payload.setdefault("company", PROMARK)
    payload["sameAddress"] = _cell_text(row.get("Same Address")) == "Yes"
    return payload


class BulkOrderService:
    def __init__(self, db: Session, hub: Optional[RealtimeHub] = None):
        self.db = db
        self.order_repo = OrderRepository(db)
        self.orders = OrderService(db, hub)
        self.visibility = VisibilityService(db)
        self.notifications = NotificationService(db, hub)

    def build_orders(self, rows: List[Dict[str, Any]], actor: User) -> List[Dict[str, Any]]:
        """Validate every row before anything is written."""
        values = []
        for index, row in enumerate(rows):
            # Header is spreadsheet row 1
            row_number = index + 2
            try:
                dto = OrderCreate.parse(row_to_payload(row))
                prepared = self.orders.prepare_order(dto, actor)
            except ValidationError as e:
                raise BulkImportError(row_number, row, e.detail)

            so_date = parse_date(row.get("SO Date"))
            if so_date is not None:
                prepared["so_date"] = so_date
            values.append(prepared)
        return values

    async def import_orders(self, content: bytes, filename: str, actor: User) -> List[Dict[str, Any]]:
        FileValidator.validate(filename, len(content), settings.ALLOWED_IMPORT_TYPES)
        rows = ExcelProcessor.read_rows(content, filename)
        if not rows:
            raise ValidationError("The uploaded file contains no rows", field="file")

        values = self.build_orders(rows, actor)
        for prepared, order_id in zip(values, self.order_repo.next_order_ids(len(values))):
            prepared["order_id"] = order_id

        try:
            orders = self.order_repo.create_bulk(values)
        except (IntegrityError, DataError) as e:
            self.db.rollback()
            logger.warning(f"Bulk import from {filename} rejected by the database: {e.orig}")
            raise persistence_validation_error(e, "Imported orders could not be saved")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Bulk import of {len(values)} orders from {filename} failed: {e}")
            raise InternalServerError("Failed to import orders")

        logger.info(f"Imported {len(orders)} orders from {filename} for {actor.username}")
        await self.notifications.announce_new_orders(orders)
        return [order_document(order) for order in orders]

    @staticmethod
    def order_rows(order: Order) -> List[Dict[str, Any]]:
        """One row per product; first-row-only fields are blank afterwards."""
        products = order.products if isinstance(order.products, list) and order.products else [PLACEHOLDER_PRODUCT]

        rows = []
        for index, product in enumerate(products):
            row: Dict[str, Any] = {}
            for header, attr, is_date in EXPORT_ENTRY_COLUMNS:
                value = getattr(order, attr)
                row[header] = day_string(value) if is_date else (value or "")

            row.update({
                "Product Type": product.get("productType") or "",
                "Size": product.get("size") or NOT_AVAILABLE,
                "Specification": product.get("spec") or NOT_AVAILABLE,
                "Quantity": product.get("qty") or 0,
                "Unit Price": product.get("unitPrice") or 0,
                "Serial Nos": _join(product.get("serialNos")),
                "Model Nos": _join(product.get("modelNos")),
                "GST": product.get("gst") or 0,
                "Brand": product.get("brand") or "",
                "Warranty": product.get("warranty") or "",
            })

            for header, attr, default in EXPORT_FIRST_ROW_COLUMNS:
                if index > 0:
                    row[header] = ""
                    continue
                value = getattr(order, attr)
                if attr == "same_address":
                    value = "Yes" if value else "No"
                elif attr in ("demo_date", "delivery_date"):
                    value = day_string(value)
                row[header] = value if value not in (None, "") else default

            for header, attr in EXPORT_DATE_COLUMNS:
                row[header] = day_string(getattr(order, attr))
            rows.append(row)
        return rows

    def export_orders(self, actor: User) -> Tuple[str, bytes]:
        """Return (filename, workbook bytes) for every order visible to the actor."""
        orders = self.order_repo.find(self.visibility.scope(actor), with_people=False)
        rows = [row for order in orders for row in self.order_rows(order)]
        frame = pd.DataFrame(rows, columns=EXPORT_HEADERS)

        filename = f"orders_{day_string(utc_now())}.xlsx"
        content = ExcelProcessor.create_workbook({SHEET_NAME: frame})
        logger.info(f"Exported {len(orders)} orders ({len(rows)} rows) for {actor.username}")
        return filename, content
