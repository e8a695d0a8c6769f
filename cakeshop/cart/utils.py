from typing import Any, Dict, Iterable, Optional
from cakeshop.cart.constants import CUSTOM_CAKE_PRICE_PER_KG, DELIVERY_SHIPPING_FEE
from cakeshop.schema.full_schema import CartItem, DeliveryType, DiscountType


def line_total(item: CartItem) -> int:
    return int(item.selected_weight["price"]) * int(item.quantity)


def compute_discount(subtotal: int, promo: Optional[Dict[str, Any]]) -> int:
    """Discount for a promo descriptor, percentage rounded half-up, capped, never above subtotal."""
    if not promo or not promo.get("code") or subtotal <= 0:
        return 0

    if subtotal < int(promo.get("min_order_amount") or 0):
        return 0

    value = int(promo.get("discount") or 0)
    if promo.get("discount_type") == DiscountType.PERCENTAGE.value:
        discount = (subtotal * value + 50) // 100
    else:
        discount = value

    max_discount = promo.get("max_discount")
    if max_discount is not None:
        discount = min(discount, int(max_discount))

    return max(0, min(discount, subtotal))


def compute_cart_totals(items: Iterable[CartItem], delivery_type: str, promo: Optional[Dict[str, Any]],
                        shipping_fee: int = DELIVERY_SHIPPING_FEE) -> Dict[str, int]:
    items = list(items)
    subtotal = sum(line_total(it) for it in items)
    item_count = sum(int(it.quantity) for it in items)
    shipping = shipping_fee if items and delivery_type == DeliveryType.DELIVERY.value else 0
    discount = compute_discount(subtotal, promo)

    return {
        "item_count": item_count,
        "subtotal": subtotal,
        "shipping": shipping,
        "discount_amount": discount,
        "total": subtotal + shipping - discount,
    }


def custom_cake_price(weight_in_kg: float) -> int:
    return int(weight_in_kg * CUSTOM_CAKE_PRICE_PER_KG + 0.5)


def weight_label(weight_in_kg: float) -> str:
    w = float(weight_in_kg)
    return f"{int(w)} kg" if w.is_integer() else f"{w:g} kg"


def same_weight(a: Dict[str, Any], weight_in_kg: float) -> bool:
    return float(a.get("weight_in_kg", 0)) == float(weight_in_kg)
