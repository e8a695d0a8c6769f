from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from cakeshop.common.custom_exceptions import InvariantViolation, NotFound, ValidationFailed
from cakeshop.common.utils import now
from cakeshop.rewards.constants import COUPON_CODE_MAX_ATTEMPTS, logger
from cakeshop.rewards.models import RewardsConfig
from cakeshop.rewards.repository import (
    coupon_code_exists,
    count_non_cancelled_orders,
    credit_points,
    debit_points_if_sufficient,
    get_user_balance,
    get_user_coupon_by_code,
    list_points_history,
    list_user_coupons,
    order_already_awarded,
)
from cakeshop.rewards.utils import (
    calculate_points_earned,
    coupon_state,
    generate_coupon_code,
    serialize_coupon,
    serialize_history_entry,
)
from cakeshop.schema.full_schema import Coupon, PointsEntryType, PointsHistory


async def award_points(session: AsyncSession, user_id: int, order_id: int, order_amount: int,
                       config: RewardsConfig) -> Dict[str, Any]:
    """
    Credit loyalty points for a delivered order.

    Best effort: any failure is logged and reported in the return value, never raised,
    so the fulfillment transition that triggered it stands on its own.
    """
    try:
        if await order_already_awarded(session, user_id, order_id):
            logger.warning("loyalty.award.duplicate", extra={"user_id": user_id, "order_id": order_id})
            return {"success": False, "error": "Points already awarded for this order"}

        order_count = await count_non_cancelled_orders(session, user_id)
        is_first_order = order_count == 1
        points_earned = calculate_points_earned(order_amount, is_first_order, config)

        description = "Earned from first order + bonus" if is_first_order else "Earned from order"
        credited = await credit_points(session, user_id, points_earned, description, order_id)
        if not credited:
            await session.rollback()
            logger.warning("loyalty.award.user_not_found", extra={"user_id": user_id, "order_id": order_id})
            return {"success": False, "error": "User not found"}

        await session.commit()

    except Exception as e:  # never propagates into the order transition
        await session.rollback()
        logger.exception("loyalty.award.failed", extra={"user_id": user_id, "order_id": order_id})
        return {"success": False, "error": str(e)}

    logger.info("loyalty.award.success", extra={
        "user_id": user_id,
        "order_id": order_id,
        "points_earned": points_earned,
        "first_order": is_first_order,
    })
    return {"success": True, "points_earned": points_earned}


async def _unique_coupon_code(session: AsyncSession) -> str:
    for _ in range(COUPON_CODE_MAX_ATTEMPTS):
        code = generate_coupon_code()
        if not await coupon_code_exists(session, code):
            return code
    logger.error("loyalty.coupon.code_exhausted")
    raise InvariantViolation("Could not generate a unique coupon code, please retry")


async def redeem_points(session: AsyncSession, user_id: int, tier_id: str, config: RewardsConfig,
                        at: Optional[datetime] = None) -> Dict[str, Any]:
    tier = config.get_tier(tier_id)
    if tier is None:
        raise ValidationFailed("Invalid reward tier")

    at = at or now()

    debited = await debit_points_if_sufficient(session, user_id, tier.points_cost)
    if not debited:
        await session.rollback()
        balance = await get_user_balance(session, user_id)
        if balance is None:
            raise NotFound("User not found")
        logger.info("loyalty.redeem.insufficient", extra={
            "user_id": user_id, "tier": tier.id, "balance": balance, "cost": tier.points_cost,
        })
        raise InvariantViolation(
            f"Insufficient points. Need {tier.points_cost}, have {balance} (short by {tier.points_cost - balance})",
            code="INSUFFICIENT_POINTS",
        )

    code = await _unique_coupon_code(session)
    coupon = Coupon(
        user_id=user_id,
        code=code,
        discount_type=tier.discount_type,
        discount_value=tier.discount_value,
        max_discount=tier.max_discount,
        min_order_amount=tier.min_order_amount,
        reward_tier_name=tier.name,
        reward_tier_points_cost=tier.points_cost,
        expires_at=at + timedelta(days=tier.validity_days),
        created_at=at,
    )
    session.add(coupon)
    await session.flush()

    session.add(PointsHistory(
        user_id=user_id,
        amount=-tier.points_cost,
        entry_type=PointsEntryType.REDEEMED.value,
        description=f"Redeemed {tier.name} coupon",
        related_coupon_id=coupon.id,
        created_at=at,
    ))

    try:
        # coupon, ledger row and balance decrement land together or not at all
        await session.commit()
    except IntegrityError:
        await session.rollback()
        logger.warning("loyalty.redeem.conflict", extra={"user_id": user_id, "tier": tier.id})
        raise InvariantViolation("Could not issue coupon, please retry")

    remaining = await get_user_balance(session, user_id)

    logger.info("loyalty.redeem.success", extra={
        "user_id": user_id, "tier": tier.id, "coupon_id": coupon.id, "remaining_points": remaining,
    })
    return {"coupon": serialize_coupon(coupon, at), "remaining_points": remaining}


async def get_points_summary(session: AsyncSession, user_id: int, limit: int = 100, offset: int = 0) -> Dict[str, Any]:
    balance = await get_user_balance(session, user_id)
    if balance is None:
        raise NotFound("User not found")
    history = await list_points_history(session, user_id, limit=limit, offset=offset)
    return {"balance": balance, "history": [serialize_history_entry(h) for h in history]}


async def list_tiers(session: AsyncSession, config: RewardsConfig, user_id: Optional[int]) -> Dict[str, Any]:
    user_points = 0
    if user_id is not None:
        user_points = await get_user_balance(session, user_id) or 0
    return {"tiers": [t.model_dump() for t in config.tiers], "user_points": user_points}


async def get_user_coupons(session: AsyncSession, user_id: int, status: Optional[str] = None) -> Dict[str, Any]:
    at = now()
    coupons = await list_user_coupons(session, user_id, status, at)

    if status in ("active", "used", "expired"):
        return {"coupons": [serialize_coupon(c, at) for c in coupons], "total": len(coupons)}

    categorized = {"active": [], "used": [], "expired": []}
    for c in coupons:
        categorized[coupon_state(c, at)].append(serialize_coupon(c, at))
    return {"coupons": categorized, "total": len(coupons)}


async def load_usable_coupon(session: AsyncSession, user_id: int, code: str, at: Optional[datetime] = None) -> Coupon:
    """The caller's coupon for code, rejected when it is used or past its expiry."""
    at = at or now()
    coupon = await get_user_coupon_by_code(session, user_id, code)
    if coupon is None:
        raise NotFound("Coupon not found")

    state = coupon_state(coupon, at)
    if state == "used":
        raise InvariantViolation("Coupon already used", code="COUPON_USED")
    if state == "expired":
        raise InvariantViolation("Coupon has expired", code="COUPON_EXPIRED")
    return coupon


async def validate_coupon(session: AsyncSession, user_id: int, code: str) -> Dict[str, Any]:
    if not code or not code.strip():
        raise ValidationFailed("Coupon code is required")
    at = now()
    coupon = await load_usable_coupon(session, user_id, code, at)
    return {"coupon": serialize_coupon(coupon, at), "is_valid": True}
