import string
from cakeshop.common.logging_setup import get_logger

logger = get_logger("cakeshop.rewards")

COUPON_CODE_PREFIX = "SWEET"
COUPON_CODE_LENGTH = 6
COUPON_CODE_ALPHABET = string.ascii_uppercase + string.digits
COUPON_CODE_MAX_ATTEMPTS = 10

# points required to redeem a coupon of each tier
REWARD_TIERS = [
    {
        "id": "bronze",
        "name": "Bronze Reward",
        "points_cost": 100,
        "discount_type": "percentage",
        "discount_value": 5,
        "max_discount": 100,
        "min_order_amount": 500,
        "description": "5% off on orders above Rs. 500",
        "validity_days": 30,
    },
    {
        "id": "silver",
        "name": "Silver Reward",
        "points_cost": 250,
        "discount_type": "percentage",
        "discount_value": 10,
        "max_discount": 250,
        "min_order_amount": 1000,
        "description": "10% off on orders above Rs. 1000",
        "validity_days": 45,
    },
    {
        "id": "gold",
        "name": "Gold Reward",
        "points_cost": 500,
        "discount_type": "percentage",
        "discount_value": 15,
        "max_discount": 500,
        "min_order_amount": 1500,
        "description": "15% off on orders above Rs. 1500",
        "validity_days": 60,
    },
    {
        "id": "platinum",
        "name": "Platinum Reward",
        "points_cost": 1000,
        "discount_type": "percentage",
        "discount_value": 20,
        "max_discount": 1000,
        "min_order_amount": 2000,
        "description": "20% off on orders above Rs. 2000",
        "validity_days": 90,
    },
]

# bonus points for orders at or above each amount, additive
ORDER_MILESTONES = [
    {"amount": 1000, "bonus": 20},
    {"amount": 2000, "bonus": 50},
    {"amount": 5000, "bonus": 100},
]
