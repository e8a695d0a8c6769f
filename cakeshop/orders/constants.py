from datetime import timedelta, timezone
from cakeshop.common.logging_setup import get_logger
from cakeshop.config.settings import config_settings
from cakeshop.schema.full_schema import OrderStatus

logger = get_logger("cakeshop.orders")

ORDER_NUMBER_PREFIX = config_settings.ORDER_NUMBER_PREFIX
ORDER_NUMBER_DIGITS = 6
ORDER_NUMBER_MAX_ATTEMPTS = 10

STORE_TZ = timezone(timedelta(minutes=config_settings.STORE_UTC_OFFSET_MINUTES))
MIN_DELIVERY_LEAD = timedelta(hours=config_settings.MIN_DELIVERY_LEAD_HOURS)

# label -> slot start, "%I:%M %p"
DELIVERY_TIME_SLOTS = {
    "09:00 AM - 12:00 PM": "09:00 AM",
    "12:00 PM - 03:00 PM": "12:00 PM",
    "03:00 PM - 06:00 PM": "03:00 PM",
}

ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING.value: {OrderStatus.CONFIRMED.value, OrderStatus.CANCELLED.value},
    OrderStatus.CONFIRMED.value: {OrderStatus.PROCESSING.value, OrderStatus.CANCELLED.value},
    OrderStatus.PROCESSING.value: {OrderStatus.OUT_FOR_DELIVERY.value, OrderStatus.CANCELLED.value},
    OrderStatus.OUT_FOR_DELIVERY.value: {OrderStatus.DELIVERED.value},
    OrderStatus.DELIVERED.value: set(),
    OrderStatus.CANCELLED.value: set(),
}

CUSTOMER_CANCELLABLE = {OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value}

DEFAULT_REFUND_REASON = "Customer requested refund"
