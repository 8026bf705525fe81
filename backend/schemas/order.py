from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator
from pydantic.alias_generators import to_camel

from core.exceptions import ValidationError, errors_from_pydantic
from utils.date_utils import to_iso


class OrderCreate(BaseModel):
    """Inbound create payload. Every field is optional at this layer; the
    conditional requirements are enforced by the order rules."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )

    # Customer
    name: Optional[str] = None
    customername: Optional[str] = None
    customer_email: Optional[str] = None
    contact_no: Optional[str] = None
    alterno: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pin_code: Optional[str] = None
    gstno: Optional[str] = None
    shipping_address: Optional[str] = None
    billing_address: Optional[str] = None
    same_address: Optional[bool] = None

    # Commercial
    products: Optional[Union[List[Dict[str, Any]], str]] = None
    productno: Optional[str] = None
    order_type: Optional[str] = None
    company: Optional[str] = None
    dispatch_from: Optional[str] = None
    total: Optional[float] = None
    freightcs: Optional[float] = None
    freightstatus: Optional[str] = None
    installation: Optional[float] = None
    installchargesstatus: Optional[str] = None
    payment_collected: Optional[float] = None
    payment_due: Optional[float] = None
    payment_method: Optional[str] = None
    payment_terms: Optional[str] = None
    credit_days: Optional[str] = None
    neft_transaction_id: Optional[str] = None
    cheque_id: Optional[str] = None
    gem_order_number: Optional[str] = None
    demo_date: Optional[datetime] = None
    delivery_date: Optional[datetime] = None
    fulfilling_status: Optional[str] = None

    # People
    report: Optional[str] = None
    sales_person: Optional[str] = None
    transporter: Optional[str] = None
    transporter_details: Optional[str] = None
    assigned_to: Optional[int] = None
    remarks: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def parse(cls, payload: Mapping[str, Any]) -> "OrderCreate":
        """Build the DTO, raising the API validation error on bad input."""
        try:
            return cls.model_validate(dict(payload))
        except PydanticValidationError as e:
            raise ValidationError("Validation failed", errors=errors_from_pydantic(e))


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    id: int
    username: str
    email: Optional[str] = None
    role: str
    assigned_to_leader: Optional[int] = None


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    id: int
    message: str
    timestamp: datetime
    is_read: bool
    role: str
    user_id: Optional[int] = None
    order_id: Optional[str] = Field(default=None, validation_alias="order_ref", serialization_alias="orderId")

    def to_payload(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True)
        data["timestamp"] = to_iso(self.timestamp)
        return data


def order_document(order, include_people: bool = False) -> Dict[str, Any]:
    """Serialize an order to its camelCase document form.

    Only column attributes are read, so this is safe to call from session
    flush hooks. With include_people the creator and assignee are populated.
    """
    document: Dict[str, Any] = {}
    for column in order.__table__.columns:
        value = getattr(order, column.key)
        if isinstance(value, datetime):
            value = to_iso(value)
        document[to_camel(column.key)] = value

    if include_people:
        document["createdByUser"] = (
            UserSummary.model_validate(order.creator).model_dump(by_alias=True) if order.creator else None
        )
        document["assignedToUser"] = (
            UserSummary.model_validate(order.assignee).model_dump(by_alias=True) if order.assignee else None
        )
    return document
