import base64
import binascii
import hashlib
import hmac
import json
import secrets
import string
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode
from cakeshop.common.custom_exceptions import ValidationFailed
from cakeshop.payments.constants import REQUEST_SIGNED_FIELD_NAMES, TRANSACTION_ID_PREFIX, TRANSACTION_ID_RANDOM_LEN
from cakeshop.payments.models import GatewayConfig

_BASE36 = string.digits + string.ascii_lowercase


def sign_message(message: str, secret_key: str) -> str:
    digest = hmac.new(secret_key.encode(), message.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def signing_message(fields: Mapping[str, Any], signed_field_names: str) -> Optional[str]:
    """'name=value' pairs joined by commas, in exactly the order the names are listed."""
    names = [n.strip() for n in signed_field_names.split(",") if n.strip()]
    if not names:
        return None
    parts = []
    for name in names:
        if name not in fields or fields[name] is None:
            return None
        parts.append(f"{name}={fields[name]}")
    return ",".join(parts)


def verify_signature(fields: Mapping[str, Any], secret_key: str) -> bool:
    signature = fields.get("signature")
    signed_field_names = fields.get("signed_field_names")
    if not isinstance(signature, str) or not isinstance(signed_field_names, str):
        return False

    message = signing_message(fields, signed_field_names)
    if message is None:
        return False

    expected = sign_message(message, secret_key)
    return hmac.compare_digest(expected.encode(), signature.encode())


def decode_callback_data(encoded: str) -> Dict[str, Any]:
    if not encoded:
        raise ValidationFailed("Missing payment data")
    try:
        padded = encoded + "=" * (-len(encoded) % 4)
        # accepts both the standard and the url-safe alphabet
        raw = base64.b64decode(padded, altchars=b"-_")
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeDecodeError):
        raise ValidationFailed("Malformed payment data")
    if not isinstance(data, dict):
        raise ValidationFailed("Malformed payment data")
    return data


def encode_callback_data(data: Mapping[str, Any]) -> str:
    return base64.b64encode(json.dumps(dict(data)).encode()).decode()


def parse_amount(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value).replace(",", "").strip())
    except InvalidOperation:
        return None


def amount_matches(declared: Any, expected_total: int) -> bool:
    amount = parse_amount(declared)
    return amount is not None and amount == Decimal(expected_total)


def generate_transaction_id(at: datetime) -> str:
    millis = int(at.timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(TRANSACTION_ID_RANDOM_LEN))
    return f"{TRANSACTION_ID_PREFIX}-{millis}-{suffix}"


def build_payment_form(total: int, transaction_uuid: str, config: GatewayConfig) -> Dict[str, str]:
    form = {
        "amount": str(total),
        "tax_amount": "0",
        "product_service_charge": "0",
        "product_delivery_charge": "0",
        "total_amount": str(total),
        "transaction_uuid": transaction_uuid,
        "product_code": config.merchant_code,
        "success_url": config.success_url,
        "failure_url": config.failure_url,
        "signed_field_names": REQUEST_SIGNED_FIELD_NAMES,
    }
    form["signature"] = sign_message(signing_message(form, REQUEST_SIGNED_FIELD_NAMES), config.secret_key)
    return form


def frontend_redirect(config: GatewayConfig, **params) -> str:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    return f"{config.frontend_url}/checkout?{query}"
