from cakeshop.common.logging_setup import get_logger
from cakeshop.config.settings import config_settings

logger = get_logger("cakeshop.cart")

MIN_ITEM_QTY = 1
MAX_ITEM_QTY = config_settings.MAX_CART_ITEM_QTY
DELIVERY_SHIPPING_FEE = config_settings.DELIVERY_SHIPPING_FEE
CUSTOM_CAKE_PRICE_PER_KG = config_settings.CUSTOM_CAKE_PRICE_PER_KG

# store-wide codes, anything else is looked up among the caller's reward coupons
STATIC_PROMO_CODES = {
    "SWEET10": {"discount": 10, "discount_type": "percentage"},
    "FLAT50": {"discount": 50, "discount_type": "fixed"},
}
