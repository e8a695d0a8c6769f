from cakeshop.common.logging_setup import get_logger

logger = get_logger("cakeshop.payments")

# fields the outbound form signature covers, in this order
REQUEST_SIGNED_FIELD_NAMES = "total_amount,transaction_uuid,product_code"

GATEWAY_STATUS_COMPLETE = "COMPLETE"
# explicit, final failures. PENDING / AMBIGUOUS and refund states are left alone
GATEWAY_FAILURE_STATUSES = {"CANCELED", "NOT_FOUND", "FAILED"}

TRANSACTION_ID_PREFIX = "TXN"
TRANSACTION_ID_RANDOM_LEN = 7
