"""
Validation and derivation rules shared by order create, edit and bulk import.

Everything here is pure: functions take plain values / dicts and return new
values, raising the API validation errors from core.exceptions on bad input.
"""
import json
import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type

from pydantic.alias_generators import to_snake

from core.exceptions import (
    ErrorDetail, InvalidProductError, MissingFieldError, ProductParseError, ValidationError,
)
from models.order import (
    DISPATCH_LOCATIONS, MORINDA, BillStatus, ChargeStatus, CompletionStatus, DispatchStatus,
    FulfillingStatus, InstallationStatus, OrderType, PaymentReceived, SOStatus, StockStatus,
)
from utils.date_utils import parse_date

GST_INCLUDING = "including"
IFPD = "IFPD"
PROMARK = "Promark"
DEFAULT_GST = "18"

PRODUCT_COMPARE_KEYS = (
    "productType", "qty", "unitPrice", "gst", "brand", "warranty", "serialNos", "modelNos", "productCode",
)


# =============================================================================
# PRODUCTS
# =============================================================================

def parse_products(raw: Any) -> List[Dict[str, Any]]:
    """Accept a list of product dicts or its JSON encoding."""
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ProductParseError(f"Products could not be decoded: {e.msg}")
    if not isinstance(raw, list) or not all(isinstance(item, dict) for item in raw):
        raise ProductParseError("Products must be a list of objects")
    return [dict(item) for item in raw]


def _to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) or math.isinf(number) else number


def _plain_number(number: float):
    return int(number) if float(number).is_integer() else number


def normalize_gst(value: Any) -> Optional[str]:
    """GST is stored as text: a percentage like "18" or the literal "including"."""
    if isinstance(value, str) and value.strip().lower() == GST_INCLUDING:
        return GST_INCLUDING
    number = _to_number(value)
    if number is None or number < 0:
        return None
    return str(_plain_number(number))


def gst_rate(gst: Any) -> float:
    if gst == GST_INCLUDING:
        return 0.0
    return _to_number(gst) or 0.0


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(part).strip() for part in value if part is not None and str(part).strip()]
    return [str(value).strip()]


def derive_warranty(order_type: Optional[str], product_type: Optional[str], brand: Optional[str]) -> str:
    if order_type == OrderType.B2G.value:
        return "As Per Tender"
    if product_type == IFPD and brand == PROMARK:
        return "3 Years"
    return "1 Year"


def normalize_product(
    product: Mapping[str, Any],
    index: int,
    order_type: Optional[str],
    default_gst: Optional[str] = None,
) -> Dict[str, Any]:
    """Validate one line item and return its normalized form.

    default_gst fills in a missing gst (the edit path defaults to 18%);
    create and import require it.
    """
    normalized = dict(product)

    product_type = str(product.get("productType") or "").strip()
    if not product_type:
        raise InvalidProductError(index, "productType", "productType is required")

    qty = _to_number(product.get("qty"))
    if qty is None:
        raise InvalidProductError(index, "qty", "qty is required and must be a number")
    if qty <= 0 or not qty.is_integer():
        raise InvalidProductError(index, "qty", "qty must be a positive whole number")

    unit_price = _to_number(product.get("unitPrice"))
    if unit_price is None:
        raise InvalidProductError(index, "unitPrice", "unitPrice is required and must be a number")
    if unit_price < 0:
        raise InvalidProductError(index, "unitPrice", "unitPrice must be non-negative")

    raw_gst = product.get("gst")
    if (raw_gst is None or (isinstance(raw_gst, str) and not raw_gst.strip())) and default_gst is not None:
        raw_gst = default_gst
    gst = normalize_gst(raw_gst)
    if gst is None:
        raise InvalidProductError(index, "gst", "gst must be a number or 'including'")

    brand = str(product.get("brand") or "").strip()
    model_nos = _string_list(product.get("modelNos"))
    if product_type == IFPD and (not model_nos or not brand):
        raise InvalidProductError(index, "modelNos", "Model Numbers and Brand are required for IFPD products")

    normalized.update({
        "productType": product_type,
        "qty": int(qty),
        "unitPrice": _plain_number(unit_price),
        "gst": gst,
        "brand": brand,
        "warranty": str(product.get("warranty") or "").strip() or derive_warranty(order_type, product_type, brand),
        "modelNos": model_nos,
        "serialNos": _string_list(product.get("serialNos")),
    })
    return normalized


def normalize_products(
    products: Iterable[Mapping[str, Any]],
    order_type: Optional[str],
    default_gst: Optional[str] = None,
) -> List[Dict[str, Any]]:
    return [normalize_product(p, i, order_type, default_gst) for i, p in enumerate(products)]


def products_equal(current: Optional[List[Mapping[str, Any]]], proposed: List[Mapping[str, Any]]) -> bool:
    """Element-wise comparison on the business-relevant product keys."""
    current = current or []
    if len(current) != len(proposed):
        return False

    def key(product: Mapping[str, Any]) -> Tuple:
        values = []
        for name in PRODUCT_COMPARE_KEYS:
            value = product.get(name)
            if name in ("serialNos", "modelNos"):
                value = tuple(_string_list(value))
            elif name in ("qty", "unitPrice"):
                value = _to_number(value)
            elif name == "gst":
                value = normalize_gst(value)
            elif name in ("brand", "warranty", "productCode", "productType"):
                value = str(value or "").strip()
            values.append(value)
        return tuple(values)

    return all(key(a) == key(b) for a, b in zip(current, proposed))


# =============================================================================
# DERIVED TOTALS AND DEFAULTS
# =============================================================================

def compute_total(products: Iterable[Mapping[str, Any]], freight: Any = None, installation: Any = None) -> float:
    subtotal = sum(
        (_to_number(p.get("qty")) or 0) * (_to_number(p.get("unitPrice")) or 0) * (1 + gst_rate(p.get("gst")) / 100)
        for p in products
    )
    return round(subtotal + (_to_number(freight) or 0) + (_to_number(installation) or 0), 2)


def compute_payment_due(total: float, payment_collected: Any = None) -> float:
    return round(total - (_to_number(payment_collected) or 0), 2)


def default_fulfilling_status(order_type: Optional[str], dispatch_from: Optional[str]) -> str:
    """Only Morinda-sourced, non-demo orders need an internal fulfillment step."""
    if order_type == OrderType.DEMO.value or dispatch_from != MORINDA:
        return FulfillingStatus.FULFILLED.value
    return FulfillingStatus.NOT_FULFILLED.value


def validate_order_requirements(order_type: Optional[str], gem_order_number: Any, demo_date: Any, payment_terms: Any):
    if order_type == OrderType.B2G.value and not gem_order_number:
        raise MissingFieldError("gemOrderNumber", "Missing GEM Order Number")
    if order_type == OrderType.DEMO.value and not demo_date:
        raise MissingFieldError("demoDate", "Missing Demo Date")
    if order_type != OrderType.DEMO.value and not payment_terms:
        raise MissingFieldError("paymentTerms", "Payment Terms is required for non-Demo orders")


def validate_dispatch_from(dispatch_from: Optional[str]):
    if dispatch_from and dispatch_from not in DISPATCH_LOCATIONS:
        raise ValidationError(
            "Invalid dispatchFrom value",
            field="dispatchFrom",
            errors=[ErrorDetail(
                code="INVALID_CHOICE",
                message=f"dispatchFrom must be one of: {', '.join(sorted(DISPATCH_LOCATIONS))}",
                field="dispatchFrom",
            )],
        )


def validate_order_type(order_type: Optional[str]):
    if order_type and order_type not in {t.value for t in OrderType}:
        raise ValidationError(
            "Invalid orderType value",
            field="orderType",
            errors=[ErrorDetail(code="INVALID_CHOICE", message=f"Unknown order type '{order_type}'", field="orderType")],
        )


# =============================================================================
# EDITABLE FIELDS
# =============================================================================

class FieldKind(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    CHOICE = "choice"
    PRODUCTS = "products"
    USER = "user"


class InvalidFieldValue(ValueError):
    pass


def _text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value).strip() if isinstance(value, str) else str(value)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, str) and not value.strip():
        return None
    number = _to_number(value)
    if number is None:
        raise InvalidFieldValue("must be a number")
    return number


def _boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "yes", "1", "on"):
        return True
    if text in ("false", "no", "0", "off", ""):
        return False
    raise InvalidFieldValue("must be a boolean")


def _user_ref(value: Any) -> Optional[int]:
    if isinstance(value, str) and not value.strip():
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidFieldValue("must be a user id")


@dataclass(frozen=True)
class EditableField:
    name: str
    kind: FieldKind = FieldKind.TEXT
    choices: Optional[Type[Enum]] = None
    allowed: Optional[frozenset] = None

    @property
    def attr(self) -> str:
        return to_snake(self.name)

    def normalize(self, value: Any) -> Any:
        """Return the value to store, or raise InvalidFieldValue.

        Dates are handled by the caller since invalid dates are skipped.
        """
        if self.kind == FieldKind.NUMBER:
            return _number(value)
        if self.kind == FieldKind.BOOLEAN:
            return _boolean(value)
        if self.kind == FieldKind.USER:
            return _user_ref(value)
        if self.kind == FieldKind.CHOICE:
            text = _text(value)
            options = self.allowed or frozenset(c.value for c in self.choices)
            if text not in options:
                raise InvalidFieldValue(f"'{text}' is not one of: {', '.join(sorted(options))}")
            return text
        return _text(value)


def _f(name: str, kind: FieldKind = FieldKind.TEXT, choices: Type[Enum] = None, allowed=None) -> EditableField:
    return EditableField(name, kind, choices, frozenset(allowed) if allowed else None)


EDITABLE_FIELDS: Dict[str, EditableField] = {f.name: f for f in (
    # dates
    _f("soDate", FieldKind.DATE),
    _f("dispatchDate", FieldKind.DATE),
    _f("receiptDate", FieldKind.DATE),
    _f("invoiceDate", FieldKind.DATE),
    _f("fulfillmentDate", FieldKind.DATE),
    _f("deliveryDate", FieldKind.DATE),
    _f("deliveredDate", FieldKind.DATE),
    _f("installationStatusDate", FieldKind.DATE),
    _f("demoDate", FieldKind.DATE),
    # customer and logistics
    _f("name"), _f("city"), _f("state"), _f("pinCode"), _f("contactNo"), _f("alterno"),
    _f("customerEmail"), _f("customername"), _f("gstno"),
    _f("shippingAddress"), _f("billingAddress"), _f("sameAddress", FieldKind.BOOLEAN),
    _f("dispatchFrom", FieldKind.CHOICE, allowed=DISPATCH_LOCATIONS),
    _f("transporter"), _f("transporterDetails"), _f("docketNo"),
    _f("salesPerson"), _f("report"), _f("company"),
    _f("assignedTo", FieldKind.USER),
    # commercial
    _f("products", FieldKind.PRODUCTS),
    _f("productno"),
    _f("total", FieldKind.NUMBER),
    _f("paymentCollected", FieldKind.NUMBER),
    _f("paymentDue", FieldKind.NUMBER),
    _f("paymentMethod"), _f("paymentTerms"), _f("creditDays"),
    _f("neftTransactionId"), _f("chequeId"),
    _f("freightcs", FieldKind.NUMBER),
    _f("actualFreight", FieldKind.NUMBER),
    _f("installation", FieldKind.NUMBER),
    _f("freightstatus", FieldKind.CHOICE, ChargeStatus),
    _f("installchargesstatus", FieldKind.CHOICE, ChargeStatus),
    _f("orderType", FieldKind.CHOICE, OrderType),
    _f("gemOrderNumber"),
    # workflow status
    _f("sostatus", FieldKind.CHOICE, SOStatus),
    _f("fulfillingStatus", FieldKind.CHOICE, FulfillingStatus),
    _f("completionStatus", FieldKind.CHOICE, CompletionStatus),
    _f("dispatchStatus", FieldKind.CHOICE, DispatchStatus),
    _f("installationStatus", FieldKind.CHOICE, InstallationStatus),
    _f("billStatus", FieldKind.CHOICE, BillStatus),
    _f("paymentReceived", FieldKind.CHOICE, PaymentReceived),
    _f("stockStatus", FieldKind.CHOICE, StockStatus),
    _f("stamp"),
    # department notes
    _f("installationeng"), _f("installationReport"), _f("installationFile"),
    _f("invoiceNo"), _f("billNumber"), _f("piNumber"),
    _f("remarks"), _f("remarksByProduction"), _f("remarksByAccounts"),
    _f("remarksByBilling"), _f("remarksByInstallation"), _f("verificationRemarks"),
)}


@dataclass
class EditPlan:
    """Column updates for one edit plus the transitions that fired."""
    updates: Dict[str, Any]
    approved: bool = False
    dispatch_status_changed: bool = False
    products_edited: bool = False


def collect_updates(payload: Mapping[str, Any], current) -> Tuple[Dict[str, Any], bool]:
    """Map an edit payload onto column updates using EDITABLE_FIELDS.

    Unknown keys and null values are ignored; invalid dates are skipped.
    Returns (updates keyed by column attribute, products_edited).
    """
    updates: Dict[str, Any] = {}
    errors: List[ErrorDetail] = []
    products_edited = False

    for name, value in payload.items():
        field = EDITABLE_FIELDS.get(name)
        if field is None or value is None:
            continue

        if field.kind == FieldKind.DATE:
            parsed = parse_date(value)
            if parsed is not None:
                updates[field.attr] = parsed
            continue

        if field.kind == FieldKind.PRODUCTS:
            if not isinstance(value, list):
                raise ProductParseError("Products must be an array")
            order_type = payload.get("orderType") or current.order_type
            normalized = normalize_products(parse_products(value), order_type, default_gst=DEFAULT_GST)
            if not products_equal(current.products, normalized):
                updates[field.attr] = normalized
                products_edited = True
            continue

        try:
            updates[field.attr] = field.normalize(value)
        except InvalidFieldValue as e:
            errors.append(ErrorDetail(code="INVALID_VALUE", message=f"{name} {e}", field=name))

    if errors:
        raise ValidationError("Validation failed", errors=errors)
    return updates, products_edited


def plan_edit(payload: Mapping[str, Any], current, now: datetime) -> EditPlan:
    """Apply the workflow transition rules on top of the raw field updates."""
    updates, products_edited = collect_updates(payload, current)
    plan = EditPlan(updates=updates, products_edited=products_edited)

    if products_edited:
        updates["products_edit_timestamp"] = now

    new_sostatus = updates.get("sostatus")
    if new_sostatus == SOStatus.APPROVED.value and current.sostatus != SOStatus.APPROVED.value:
        updates["approval_timestamp"] = now
        plan.approved = True

    new_dispatch_from = updates.get("dispatch_from")
    if new_dispatch_from is not None and new_dispatch_from != current.dispatch_from:
        # Origin rule wins over a manual fulfillingStatus in the same request.
        if new_dispatch_from == MORINDA:
            updates["fulfilling_status"] = FulfillingStatus.PENDING.value
            updates["completion_status"] = CompletionStatus.IN_PROGRESS.value
        else:
            updates["fulfilling_status"] = FulfillingStatus.FULFILLED.value
            updates["completion_status"] = CompletionStatus.COMPLETE.value
            updates["fulfillment_date"] = now
    elif updates.get("fulfilling_status") == FulfillingStatus.FULFILLED.value:
        updates["completion_status"] = CompletionStatus.COMPLETE.value
        if current.fulfillment_date is None:
            updates["fulfillment_date"] = now

    new_dispatch_status = updates.get("dispatch_status")
    if new_dispatch_status is not None and new_dispatch_status != current.dispatch_status:
        plan.dispatch_status_changed = True
    if new_dispatch_status in (DispatchStatus.DISPATCHED.value, DispatchStatus.DELIVERED.value):
        if "dispatch_date" not in updates and current.dispatch_date is None:
            updates["dispatch_date"] = now
    if new_dispatch_status == DispatchStatus.DELIVERED.value:
        if "receipt_date" not in updates and current.receipt_date is None:
            updates["receipt_date"] = now

    return plan


def edited_field_names(updates: Mapping[str, Any]) -> List[str]:
    attrs = {field.attr: name for name, field in EDITABLE_FIELDS.items()}
    return [attrs.get(attr, attr) for attr in updates]


__all__ = [
    "EDITABLE_FIELDS", "EditPlan", "EditableField", "FieldKind",
    "parse_products", "normalize_product", "normalize_products", "products_equal",
    "compute_total", "compute_payment_due", "default_fulfilling_status", "derive_warranty",
    "validate_order_requirements", "validate_dispatch_from", "validate_order_type",
    "collect_updates", "plan_edit",
]
