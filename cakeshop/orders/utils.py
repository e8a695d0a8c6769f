import secrets
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from cakeshop.cart.services import item_display_image, item_display_name
from cakeshop.cart.utils import line_total
from cakeshop.common.custom_exceptions import ValidationFailed
from cakeshop.common.utils import as_utc
from cakeshop.orders.constants import (
    ALLOWED_TRANSITIONS,
    DELIVERY_TIME_SLOTS,
    MIN_DELIVERY_LEAD,
    ORDER_NUMBER_DIGITS,
    ORDER_NUMBER_PREFIX,
    STORE_TZ,
)
from cakeshop.schema.full_schema import CartItem, OrderItem, Orders, PaymentStatus, Product


def generate_order_number(prefix: str = ORDER_NUMBER_PREFIX) -> str:
    suffix = str(secrets.randbelow(10 ** ORDER_NUMBER_DIGITS)).zfill(ORDER_NUMBER_DIGITS)
    return f"{prefix}-{suffix}"


def slot_start(delivery_date: date, time_slot: str) -> datetime:
    start = datetime.strptime(DELIVERY_TIME_SLOTS[time_slot], "%I:%M %p").time()
    return datetime.combine(delivery_date, start, tzinfo=STORE_TZ)


def validate_delivery_schedule(delivery_date: date, time_slot: str, at: datetime) -> None:
    if time_slot not in DELIVERY_TIME_SLOTS:
        raise ValidationFailed("Invalid delivery time slot")

    if slot_start(delivery_date, time_slot) < at + MIN_DELIVERY_LEAD:
        raise ValidationFailed(
            f"Delivery slot must start at least {int(MIN_DELIVERY_LEAD.total_seconds() // 3600)} hours from now"
        )


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def _item_customizations(item: CartItem, is_custom: bool) -> List[Dict[str, Any]]:
    custom = item.customization or {}
    if is_custom:
        return [{"name": "Custom Cake Design", "details": custom, "price_adjustment": 0}]
    if custom:
        return [{"name": "Custom Message", "selected_option": custom.get("message", ""),
                 "details": custom, "price_adjustment": 0}]
    return []


def snapshot_order_item(order_id: int, item: CartItem, product: Optional[Product]) -> OrderItem:
    is_custom = item.product_id is None
    weight = item.selected_weight
    return OrderItem(
        order_id=order_id,
        product_id=None if is_custom else product.id,
        name=item_display_name(item, product),
        image=item_display_image(item, product),
        quantity=item.quantity,
        weight_in_kg=float(weight["weight_in_kg"]),
        weight_label=weight.get("label") or f"{weight['weight_in_kg']} kg",
        unit_price_snapshot=int(weight["price"]),
        item_total=line_total(item),
        is_custom=is_custom,
        customizations=_item_customizations(item, is_custom),
    )


def serialize_order_item(item: OrderItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "product_id": item.product_id,
        "name": item.name,
        "image": item.image,
        "quantity": item.quantity,
        "weight": {
            "weight_in_kg": item.weight_in_kg,
            "label": item.weight_label,
            "price": item.unit_price_snapshot,
        },
        "is_custom": item.is_custom,
        "customizations": item.customizations or [],
        "item_total": item.item_total,
    }


def serialize_order(order: Orders, items: List[OrderItem]) -> Dict[str, Any]:
    data = {
        "id": str(order.public_id),
        "order_number": order.order_number,
        "items": [serialize_order_item(i) for i in items],
        "contact_email": order.contact_email,
        "shipping_address": order.shipping_address_json,
        "delivery_schedule": order.delivery_schedule,
        "special_requests": order.special_requests,
        "subscribe_newsletter": order.subscribe_newsletter,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
        "order_status": order.order_status,
        "subtotal": order.subtotal,
        "shipping": order.shipping,
        "discount": order.discount,
        "total": order.total,
        "promo_code": order.promo_code,
        "gateway_transaction_id": order.gateway_transaction_id,
        "gateway_details": order.gateway_details,
        "notes": order.notes,
        "cancelled_at": as_utc(order.cancelled_at),
        "cancel_reason": order.cancel_reason,
        "delivered_at": as_utc(order.delivered_at),
        "created_at": as_utc(order.created_at),
        "updated_at": as_utc(order.updated_at),
        "refund": None,
    }
    if order.payment_status == PaymentStatus.REFUNDED.value:
        data["refund"] = {
            "amount": order.refund_amount,
            "reason": order.refund_reason,
            "notes": order.refund_notes,
            "refunded_at": as_utc(order.refunded_at),
            "refunded_by": order.refunded_by,
        }
    return data
