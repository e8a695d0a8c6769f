import secrets
from datetime import datetime
from typing import Any, Dict, Optional
from cakeshop.common.utils import as_utc, now
from cakeshop.rewards.constants import COUPON_CODE_ALPHABET, COUPON_CODE_LENGTH, COUPON_CODE_PREFIX
from cakeshop.rewards.models import RewardsConfig
from cakeshop.schema.full_schema import Coupon, PointsHistory


def calculate_points_earned(order_amount: int, is_first_order: bool, config: RewardsConfig) -> int:
    points = int(order_amount) // config.spending_ratio

    if is_first_order:
        points += config.first_order_bonus

    for milestone in config.milestones:
        if order_amount >= milestone.amount:
            points += milestone.bonus

    return points


def generate_coupon_code() -> str:
    suffix = "".join(secrets.choice(COUPON_CODE_ALPHABET) for _ in range(COUPON_CODE_LENGTH))
    return f"{COUPON_CODE_PREFIX}{suffix}"


def coupon_state(coupon: Coupon, at: Optional[datetime] = None) -> str:
    at = at or now()
    if coupon.is_used:
        return "used"
    if as_utc(coupon.expires_at) <= at:
        return "expired"
    return "active"


def serialize_coupon(coupon: Coupon, at: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "id": coupon.id,
        "code": coupon.code,
        "discount_type": coupon.discount_type,
        "discount_value": coupon.discount_value,
        "max_discount": coupon.max_discount,
        "min_order_amount": coupon.min_order_amount,
        "reward_tier": {
            "name": coupon.reward_tier_name,
            "points_cost": coupon.reward_tier_points_cost,
        },
        "is_used": coupon.is_used,
        "used_at": as_utc(coupon.used_at),
        "used_in_order": coupon.used_in_order,
        "expires_at": as_utc(coupon.expires_at),
        "status": coupon_state(coupon, at),
        "created_at": as_utc(coupon.created_at),
    }


def serialize_history_entry(entry: PointsHistory) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "amount": entry.amount,
        "type": entry.entry_type,
        "description": entry.description,
        "related_order_id": entry.related_order_id,
        "related_coupon_id": entry.related_coupon_id,
        "created_at": as_utc(entry.created_at),
    }
