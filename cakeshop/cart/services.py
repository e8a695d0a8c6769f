from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from cakeshop.cart.constants import MAX_ITEM_QTY, STATIC_PROMO_CODES, logger
from cakeshop.cart.models import CartItemInput, CartSyncIn, CustomCakeInput
from cakeshop.cart.repository import (
    clear_user_cart,
    delete_cart_items,
    get_cart,
    get_cart_item,
    get_or_create_cart,
    insert_cart_item,
    list_cart_items,
)
from cakeshop.cart.utils import compute_cart_totals, custom_cake_price, line_total, same_weight, weight_label
from cakeshop.common.custom_exceptions import NotFound, ValidationFailed
from cakeshop.common.utils import now
from cakeshop.products.repository import fetch_active_products, find_active_product_by_pid
from cakeshop.products.utils import cover_image, find_weight_option
from cakeshop.rewards.repository import get_user_coupon_by_code
from cakeshop.rewards.utils import coupon_state
from cakeshop.schema.full_schema import Cart, CartItem, Product


@dataclass
class CartSnapshot:
    cart: Optional[Cart]
    lines: List[Tuple[CartItem, Optional[Product]]] = field(default_factory=list)
    # catalog lines whose product is gone or deactivated
    missing: List[CartItem] = field(default_factory=list)

    @property
    def items(self) -> List[CartItem]:
        return [item for item, _ in self.lines]

    def totals(self) -> Dict[str, int]:
        if self.cart is None:
            return compute_cart_totals([], "delivery", None)
        return compute_cart_totals(self.items, self.cart.delivery_type, self.cart.promo_code)


async def load_cart_snapshot(session: AsyncSession, user_id: int) -> CartSnapshot:
    """Cart lines joined with a fresh catalog read."""
    cart = await get_cart(session, user_id)
    if cart is None:
        return CartSnapshot(cart=None)

    items = await list_cart_items(session, cart.id)
    products = await fetch_active_products(session, (it.product_id for it in items))

    snapshot = CartSnapshot(cart=cart)
    for item in items:
        is_custom = item.product_id is None
        product = products.get(item.product_id)
        if not is_custom and product is None:
            snapshot.missing.append(item)
            continue
        snapshot.lines.append((item, product))
    return snapshot


def item_display_name(item: CartItem, product: Optional[Product]) -> str:
    if product is not None:
        return product.name
    custom = item.customization or {}
    return custom.get("name") or f"Custom {custom.get('flavor', '')} Cake".replace("  ", " ")


def item_display_image(item: CartItem, product: Optional[Product]) -> str:
    if product is not None:
        return cover_image(product)
    return (item.customization or {}).get("preview_image") or ""


def serialize_cart(snapshot: CartSnapshot) -> Dict[str, Any]:
    totals = snapshot.totals()
    cart = snapshot.cart
    promo = cart.promo_code if cart else None

    items = []
    for item, product in snapshot.lines:
        items.append({
            "id": item.id,
            "product_id": str(product.public_id) if product else None,
            "is_custom": item.product_id is None,
            "name": item_display_name(item, product),
            "image": item_display_image(item, product),
            "quantity": item.quantity,
            "selected_weight": item.selected_weight,
            "customization": item.customization,
            "line_total": line_total(item),
        })

    return {
        "items": items,
        **totals,
        "delivery_type": cart.delivery_type if cart else "delivery",
        "promo_code": promo.get("code") if promo else None,
    }


async def get_cart_view(session: AsyncSession, user_id: int) -> Dict[str, Any]:
    snapshot = await load_cart_snapshot(session, user_id)
    if snapshot.cart is None:
        cart = await get_or_create_cart(session, user_id)
        return serialize_cart(CartSnapshot(cart=cart))

    if snapshot.missing:
        removed = await delete_cart_items(session, snapshot.cart.id, (it.id for it in snapshot.missing))
        await session.commit()
        logger.info("cart.items.pruned_inactive", extra={"user_id": user_id, "removed": removed})
        snapshot.missing = []

    return serialize_cart(snapshot)


async def add_item(session: AsyncSession, user_id: int, payload: CartItemInput) -> Dict[str, Any]:
    product = await find_active_product_by_pid(session, payload.product_id)

    option = find_weight_option(product, payload.selected_weight.weight_in_kg)
    if option is None:
        raise ValidationFailed("Invalid weight option")

    cart = await get_or_create_cart(session, user_id)
    items = await list_cart_items(session, cart.id)

    existing = next(
        (it for it in items if it.product_id == product.id and same_weight(it.selected_weight, option["weight_in_kg"])),
        None,
    )
    if existing is not None:
        new_qty = existing.quantity + payload.quantity
        if new_qty > MAX_ITEM_QTY:
            raise ValidationFailed(f"Maximum quantity is {MAX_ITEM_QTY}")
        existing.quantity = new_qty
    else:
        await insert_cart_item(
            session,
            cart.id,
            product.id,
            payload.quantity,
            {
                "weight_in_kg": float(option["weight_in_kg"]),
                "label": option.get("label") or weight_label(option["weight_in_kg"]),
                "price": int(option["price"]),
            },
            payload.customization.model_dump(exclude_none=True) if payload.customization else None,
        )

    await session.commit()
    logger.info("cart.item.added", extra={"user_id": user_id, "product_id": product.id, "quantity": payload.quantity})
    return await get_cart_view(session, user_id)


async def add_custom_item(session: AsyncSession, user_id: int, payload: CustomCakeInput) -> Dict[str, Any]:
    cart = await get_or_create_cart(session, user_id)

    # priced server side, the client never supplies a price
    selected_weight = {
        "weight_in_kg": float(payload.weight_in_kg),
        "label": weight_label(payload.weight_in_kg),
        "price": custom_cake_price(payload.weight_in_kg),
    }
    customization = payload.model_dump(exclude={"weight_in_kg", "quantity"}, exclude_none=True)

    await insert_cart_item(session, cart.id, None, payload.quantity, selected_weight, customization)
    await session.commit()

    logger.info("cart.custom_item.added", extra={"user_id": user_id, "price": selected_weight["price"]})
    return await get_cart_view(session, user_id)


async def _require_cart(session: AsyncSession, user_id: int) -> Cart:
    cart = await get_cart(session, user_id)
    if cart is None:
        raise NotFound("Cart not found")
    return cart


async def update_item_quantity(session: AsyncSession, user_id: int, item_id: int, quantity: int) -> Dict[str, Any]:
    cart = await _require_cart(session, user_id)
    item = await get_cart_item(session, cart.id, item_id)
    if item is None:
        raise NotFound("Item not in cart")

    item.quantity = quantity
    await session.commit()
    return await get_cart_view(session, user_id)


async def remove_item(session: AsyncSession, user_id: int, item_id: int) -> Dict[str, Any]:
    cart = await _require_cart(session, user_id)
    removed = await delete_cart_items(session, cart.id, [item_id])
    if not removed:
        raise NotFound("Item not in cart")

    await session.commit()
    return await get_cart_view(session, user_id)


async def clear_cart(session: AsyncSession, user_id: int) -> Dict[str, Any]:
    await clear_user_cart(session, user_id)
    await session.commit()
    return await get_cart_view(session, user_id)


async def sync_cart(session: AsyncSession, user_id: int, payload: CartSyncIn) -> Dict[str, Any]:
    """Merge a client-side cart into the stored one. Unknown products and weights are skipped."""
    cart = await get_or_create_cart(session, user_id)
    items = await list_cart_items(session, cart.id)

    for local in payload.items:
        try:
            product = await find_active_product_by_pid(session, local.product_id)
        except NotFound:
            continue
        option = find_weight_option(product, local.selected_weight.weight_in_kg)
        if option is None:
            continue

        existing = next(
            (it for it in items if it.product_id == product.id and same_weight(it.selected_weight, option["weight_in_kg"])),
            None,
        )
        if existing is not None:
            existing.quantity = min(MAX_ITEM_QTY, existing.quantity + local.quantity)
        else:
            items.append(await insert_cart_item(
                session,
                cart.id,
                product.id,
                min(MAX_ITEM_QTY, local.quantity),
                {
                    "weight_in_kg": float(option["weight_in_kg"]),
                    "label": option.get("label") or weight_label(option["weight_in_kg"]),
                    "price": int(option["price"]),
                },
                None,
            ))

    await session.commit()
    return await get_cart_view(session, user_id)


async def set_delivery_type(session: AsyncSession, user_id: int, delivery_type: str) -> Dict[str, Any]:
    cart = await get_or_create_cart(session, user_id)
    cart.delivery_type = delivery_type
    cart.updated_at = now()
    await session.commit()
    return await get_cart_view(session, user_id)


async def apply_promo_code(session: AsyncSession, user_id: int, code: str) -> Dict[str, Any]:
    snapshot = await load_cart_snapshot(session, user_id)
    if snapshot.cart is None:
        raise NotFound("Cart not found")

    code = code.strip().upper()
    static = STATIC_PROMO_CODES.get(code)

    if static is not None:
        promo = {
            "code": code,
            "discount": static["discount"],
            "discount_type": static["discount_type"],
            "max_discount": None,
            "min_order_amount": 0,
            "coupon_id": None,
        }
    else:
        coupon = await get_user_coupon_by_code(session, user_id, code)
        if coupon is None:
            raise ValidationFailed("Invalid promo code")

        state = coupon_state(coupon)
        if state != "active":
            raise ValidationFailed(f"Coupon is {state}")

        subtotal = snapshot.totals()["subtotal"]
        if subtotal < coupon.min_order_amount:
            raise ValidationFailed(f"Minimum order amount for this coupon is Rs. {coupon.min_order_amount}")

        # copied by value, the coupon itself stays unused until an order consumes it
        promo = {
            "code": coupon.code,
            "discount": coupon.discount_value,
            "discount_type": coupon.discount_type,
            "max_discount": coupon.max_discount,
            "min_order_amount": coupon.min_order_amount,
            "coupon_id": coupon.id,
        }

    snapshot.cart.promo_code = promo
    snapshot.cart.updated_at = now()
    await session.commit()

    logger.info("cart.promo.applied", extra={"user_id": user_id, "promo": code, "coupon_id": promo["coupon_id"]})
    return await get_cart_view(session, user_id)


async def remove_promo_code(session: AsyncSession, user_id: int) -> Dict[str, Any]:
    cart = await _require_cart(session, user_id)
    cart.promo_code = None
    cart.updated_at = now()
    await session.commit()
    return await get_cart_view(session, user_id)
