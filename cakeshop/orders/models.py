import datetime
from typing import Literal, Optional
from pydantic import BaseModel, EmailStr, Field
from cakeshop.orders.constants import DELIVERY_TIME_SLOTS

TimeSlot = Literal[tuple(DELIVERY_TIME_SLOTS)]
OrderStatusName = Literal["pending", "confirmed", "processing", "out_for_delivery", "delivered", "cancelled"]
PaymentStatusName = Literal["pending", "paid", "failed", "refunded"]


class ShippingAddressIn(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=120)
    phone: str = Field(..., min_length=7, max_length=20)
    street: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    landmark: Optional[str] = Field(None, max_length=255)


class DeliveryScheduleIn(BaseModel):
    date: datetime.date
    time_slot: TimeSlot


class CreateOrderIn(BaseModel):
    contact_email: EmailStr
    shipping_address: ShippingAddressIn
    delivery_schedule: DeliveryScheduleIn
    special_requests: Optional[str] = Field(None, max_length=500)
    subscribe_newsletter: bool = False
    payment_method: Literal["esewa", "cod"]

    model_config = {"extra": "forbid"}


class StatusUpdateIn(BaseModel):
    status: OrderStatusName
    notes: Optional[str] = Field(None, max_length=500)


class CancelIn(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class RefundIn(BaseModel):
    amount: Optional[int] = Field(None, gt=0)
    reason: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=500)
