from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from cakeshop.cart.repository import clear_user_cart
from cakeshop.cart.services import load_cart_snapshot
from cakeshop.common.custom_exceptions import (
    Forbidden,
    InvalidTransition,
    InvariantViolation,
    NotFound,
    ValidationFailed,
)
from cakeshop.common.utils import now
from cakeshop.orders.constants import CUSTOMER_CANCELLABLE, DEFAULT_REFUND_REASON, ORDER_NUMBER_MAX_ATTEMPTS, logger
from cakeshop.orders.models import CreateOrderIn, RefundIn
from cakeshop.orders.repository import (
    cas_order_status,
    get_order_by_number,
    get_order_by_pid,
    list_items_for_orders,
    list_order_items,
    list_orders,
    order_number_exists,
    refund_paid_order,
)
from cakeshop.orders.utils import (
    can_transition,
    generate_order_number,
    serialize_order,
    snapshot_order_item,
    validate_delivery_schedule,
)
from cakeshop.rewards.models import RewardsConfig
from cakeshop.rewards.repository import consume_coupon
from cakeshop.rewards.services import award_points
from cakeshop.schema.full_schema import OrderStatus, Orders, PaymentMethod, PaymentStatus


async def generate_unique_order_number(session: AsyncSession) -> str:
    for _ in range(ORDER_NUMBER_MAX_ATTEMPTS):
        candidate = generate_order_number()
        if not await order_number_exists(session, candidate):
            return candidate
    logger.error("order.number.exhausted")
    raise InvariantViolation("Could not allocate an order number, please retry")


async def order_view(session: AsyncSession, order: Orders) -> Dict[str, Any]:
    items = await list_order_items(session, order.id)
    return serialize_order(order, items)


async def place_order(session: AsyncSession, user_id: int, payload: CreateOrderIn,
                      at: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Convert the user's cart into an order.

    Totals and the promo descriptor are copied verbatim from the cart. A reward coupon
    carried by the promo is consumed in the same transaction as the order insert.
    Cash on delivery clears the cart and confirms right away; gateway orders stay
    pending with the cart intact until the payment callback succeeds.
    """
    at = at or now()
    schedule = payload.delivery_schedule
    validate_delivery_schedule(schedule.date, schedule.time_slot, at)

    snapshot = await load_cart_snapshot(session, user_id)
    if snapshot.cart is None or not (snapshot.lines or snapshot.missing):
        raise ValidationFailed("Your cart is empty")

    if snapshot.missing:
        logger.warning("order.create.products_unavailable", extra={
            "user_id": user_id, "cart_item_ids": [it.id for it in snapshot.missing],
        })
        raise InvariantViolation(
            {"message": "Some items in your cart are no longer available",
             "cart_item_ids": [it.id for it in snapshot.missing]},
            code="PRODUCT_UNAVAILABLE",
        )

    totals = snapshot.totals()
    promo = dict(snapshot.cart.promo_code) if snapshot.cart.promo_code else None
    coupon_id = promo.get("coupon_id") if promo else None

    if coupon_id is not None and totals["subtotal"] < int(promo.get("min_order_amount") or 0):
        raise ValidationFailed(f"Minimum order amount for this coupon is Rs. {promo['min_order_amount']}")

    is_cod = payload.payment_method == PaymentMethod.COD.value
    order = Orders(
        order_number=await generate_unique_order_number(session),
        user_id=user_id,
        contact_email=str(payload.contact_email),
        shipping_address_json=payload.shipping_address.model_dump(),
        delivery_schedule={"date": schedule.date.isoformat(), "time_slot": schedule.time_slot},
        special_requests=payload.special_requests,
        subscribe_newsletter=payload.subscribe_newsletter,
        payment_method=payload.payment_method,
        payment_status=PaymentStatus.PENDING.value,
        order_status=OrderStatus.CONFIRMED.value if is_cod else OrderStatus.PENDING.value,
        subtotal=totals["subtotal"],
        shipping=totals["shipping"],
        discount=totals["discount_amount"],
        total=totals["total"],
        promo_code=promo,
        created_at=at,
        updated_at=at,
    )
    session.add(order)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        logger.warning("order.create.number_conflict", extra={"user_id": user_id})
        raise InvariantViolation("Order could not be created, please retry")

    for item, product in snapshot.lines:
        session.add(snapshot_order_item(order.id, item, product))

    if coupon_id is not None:
        consumed = await consume_coupon(session, coupon_id, user_id, order.id, at)
        if not consumed:
            await session.rollback()
            logger.info("order.create.coupon_unavailable", extra={"user_id": user_id, "coupon_id": coupon_id})
            raise InvariantViolation("Coupon has already been used or has expired", code="COUPON_UNAVAILABLE")

    if is_cod:
        await clear_user_cart(session, user_id)

    await session.commit()

    logger.info("order.created", extra={
        "order_id": order.id,
        "order_number": order.order_number,
        "user_id": user_id,
        "payment_method": order.payment_method,
        "total": order.total,
    })
    return await order_view(session, order)


async def load_order_for_actor(session: AsyncSession, order_pid, user_id: int, is_admin: bool) -> Orders:
    order = await get_order_by_pid(session, order_pid)
    if order is None:
        raise NotFound("Order not found")
    if order.user_id != user_id and not is_admin:
        raise Forbidden("Not authorized to access this order")
    return order


async def transition_order_status(session: AsyncSession, order: Orders, target: str, notes: Optional[str],
                                  config: RewardsConfig, at: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Move an order along the fulfillment graph.

    The write is a compare-and-swap on the status that was read, so two racing
    transitions cannot both succeed. Entering delivered triggers one loyalty award,
    which is best effort and never undoes the transition.
    """
    at = at or now()
    current = order.order_status

    if order.payment_status == PaymentStatus.FAILED.value and target != OrderStatus.CANCELLED.value:
        raise InvariantViolation(
            "Cannot process an order with failed payment. Please create a new order.",
            code="PAYMENT_FAILED",
        )

    if not can_transition(current, target):
        raise InvalidTransition(f"Cannot change order status from {current} to {target}")

    values: Dict[str, Any] = {"order_status": target, "updated_at": at}
    if target == OrderStatus.CANCELLED.value:
        values["cancelled_at"] = at
        values["cancel_reason"] = notes
    elif target == OrderStatus.DELIVERED.value:
        values["delivered_at"] = at
    elif notes:
        values["notes"] = notes

    swapped = await cas_order_status(session, order.id, current, values)
    if not swapped:
        await session.rollback()
        logger.warning("order.transition.conflict", extra={"order_id": order.id, "from": current, "to": target})
        raise InvariantViolation("Order was modified concurrently, reload and retry", code="CONCURRENT_MODIFICATION")

    await session.commit()
    await session.refresh(order)

    logger.info("order.transition", extra={"order_id": order.id, "from": current, "to": target})

    points_award = None
    if target == OrderStatus.DELIVERED.value:
        points_award = await award_points(session, order.user_id, order.id, order.total, config)

    return {"order": await order_view(session, order), "points_award": points_award}


async def update_order_status(session: AsyncSession, order_pid, target: str, notes: Optional[str],
                              config: RewardsConfig) -> Dict[str, Any]:
    order = await get_order_by_pid(session, order_pid)
    if order is None:
        raise NotFound("Order not found")
    return await transition_order_status(session, order, target, notes, config)


async def cancel_order(session: AsyncSession, order_pid, user_id: int, is_admin: bool, reason: Optional[str],
                       config: RewardsConfig) -> Dict[str, Any]:
    order = await load_order_for_actor(session, order_pid, user_id, is_admin)

    if order.order_status not in CUSTOMER_CANCELLABLE:
        raise InvariantViolation("This order cannot be cancelled", code="NOT_CANCELLABLE")

    result = await transition_order_status(session, order, OrderStatus.CANCELLED.value, reason, config)
    return result["order"]


async def refund_order(session: AsyncSession, order_pid, admin_id: int, payload: RefundIn,
                       at: Optional[datetime] = None) -> Dict[str, Any]:
    at = at or now()
    order = await get_order_by_pid(session, order_pid)
    if order is None:
        raise NotFound("Order not found")

    if order.payment_status != PaymentStatus.PAID.value:
        raise InvariantViolation("Can only refund orders that have been paid", code="NOT_PAID")

    if payload.amount is not None and payload.amount > order.total:
        raise ValidationFailed("Refund amount cannot exceed order total")

    refunded = await refund_paid_order(session, order.id, {
        "refund_amount": payload.amount or order.total,
        "refund_reason": payload.reason or DEFAULT_REFUND_REASON,
        "refund_notes": payload.notes or "",
        "refunded_at": at,
        "refunded_by": admin_id,
        "updated_at": at,
    })
    if not refunded:
        await session.rollback()
        raise InvariantViolation("Order was modified concurrently, reload and retry", code="CONCURRENT_MODIFICATION")

    await session.commit()
    await session.refresh(order)

    logger.info("order.refunded", extra={"order_id": order.id, "amount": order.refund_amount, "admin_id": admin_id})
    return await order_view(session, order)


async def get_order(session: AsyncSession, order_pid, user_id: int, is_admin: bool) -> Dict[str, Any]:
    order = await load_order_for_actor(session, order_pid, user_id, is_admin)
    return await order_view(session, order)


async def get_order_by_order_number(session: AsyncSession, order_number: str, user_id: int, is_admin: bool) -> Dict[str, Any]:
    order = await get_order_by_number(session, order_number)
    if order is None:
        raise NotFound("Order not found")
    if order.user_id != user_id and not is_admin:
        raise Forbidden("Not authorized to access this order")
    return await order_view(session, order)


async def search_orders(session: AsyncSession, *, user_id: Optional[int] = None, order_status: Optional[str] = None,
                        payment_status: Optional[str] = None, search: Optional[str] = None,
                        page: int = 1, limit: int = 10) -> Dict[str, Any]:
    offset = (page - 1) * limit
    orders, total = await list_orders(
        session,
        user_id=user_id,
        order_status=order_status,
        payment_status=payment_status,
        search=search,
        limit=limit,
        offset=offset,
    )
    items = await list_items_for_orders(session, [o.id for o in orders])

    return {
        "orders": [serialize_order(o, items.get(o.id, [])) for o in orders],
        "pagination": {
            "page": page,
            "limit": limit,
            "total_items": total,
            "total_pages": (total + limit - 1) // limit,
            "has_next": offset + len(orders) < total,
            "has_prev": page > 1,
        },
    }
