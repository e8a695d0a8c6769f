from datetime import datetime
from typing import Any, Dict, Optional, Tuple
import httpx
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from cakeshop.cart.repository import clear_user_cart
from cakeshop.common.custom_exceptions import (
    Forbidden,
    GatewayUnavailable,
    InvariantViolation,
    NotFound,
    PaymentVerificationFailed,
    ValidationFailed,
)
from cakeshop.common.retries import retry_http
from cakeshop.common.utils import as_utc, now
from cakeshop.orders.repository import cas_payment_update, confirm_payment, get_order_by_gateway_txn, get_order_by_pid
from cakeshop.payments.constants import GATEWAY_FAILURE_STATUSES, GATEWAY_STATUS_COMPLETE, logger
from cakeshop.payments.models import GatewayCallback, GatewayConfig, GatewayStatusResponse
from cakeshop.payments.utils import amount_matches, build_payment_form, generate_transaction_id, verify_signature
from cakeshop.schema.full_schema import OrderStatus, Orders, PaymentMethod, PaymentStatus

# reconciliation outcomes
PAID = "paid"
ALREADY_PAID = "already_paid"
FAILED = "failed"
ALREADY_FAILED = "already_failed"
ALREADY_REFUNDED = "already_refunded"
IGNORED = "ignored"


async def initiate_payment(session: AsyncSession, user_id: int, order_pid, config: GatewayConfig,
                           at: Optional[datetime] = None) -> Dict[str, Any]:
    at = at or now()
    order = await get_order_by_pid(session, order_pid)
    if order is None:
        raise NotFound("Order not found")
    if order.user_id != user_id:
        raise Forbidden("Not authorized to pay this order")
    if order.payment_method != PaymentMethod.ESEWA.value:
        raise ValidationFailed("Order is not set for eSewa payment")
    if order.payment_status == PaymentStatus.PAID.value:
        raise InvariantViolation("Order already paid", code="ALREADY_PAID")
    if order.payment_status == PaymentStatus.REFUNDED.value:
        raise InvariantViolation("Order has been refunded", code="ALREADY_REFUNDED")
    if order.order_status == OrderStatus.CANCELLED.value:
        raise InvariantViolation("Order has been cancelled", code="ORDER_CANCELLED")

    transaction_uuid = generate_transaction_id(at)

    # a failed attempt goes back to pending so the customer can retry
    stored = await cas_payment_update(session, order.id, {
        "gateway_transaction_id": transaction_uuid,
        "payment_status": PaymentStatus.PENDING.value,
        "updated_at": at,
    })
    if not stored:
        await session.rollback()
        raise InvariantViolation("Order is no longer payable", code="NOT_PAYABLE")

    await session.commit()

    logger.info("payment.initiated", extra={
        "order_id": order.id, "transaction_uuid": transaction_uuid, "retry": order.payment_status == PaymentStatus.FAILED.value,
    })
    return {
        "payment_url": config.payment_url,
        "form_data": build_payment_form(order.total, transaction_uuid, config),
        "transaction_uuid": transaction_uuid,
        "order_id": str(order.public_id),
    }


def _settled_outcome(order: Orders) -> Optional[str]:
    if order.payment_status == PaymentStatus.PAID.value:
        return ALREADY_PAID
    if order.payment_status == PaymentStatus.REFUNDED.value:
        return ALREADY_REFUNDED
    return None


async def _mark_failed(session: AsyncSession, order: Orders, at: datetime, reason: str) -> str:
    settled = _settled_outcome(order)
    if settled is not None:
        logger.warning("payment.failure_after_settled_ignored", extra={"order_id": order.id, "reason": reason})
        return settled
    if order.payment_status == PaymentStatus.FAILED.value:
        return ALREADY_FAILED

    updated = await cas_payment_update(session, order.id, {
        "payment_status": PaymentStatus.FAILED.value,
        "updated_at": at,
    })
    await session.commit()
    await session.refresh(order)

    if not updated:
        return _settled_outcome(order) or ALREADY_FAILED

    logger.info("payment.failed", extra={"order_id": order.id, "reason": reason})
    return FAILED


async def apply_gateway_status(session: AsyncSession, order: Orders, gateway_status: str, total_amount: Any,
                               reference_id: Optional[str], at: Optional[datetime] = None) -> str:
    """
    Fold a verified gateway answer into the order.

    Replays are no-ops: a paid or refunded order is never written again and every
    payment write is conditional on the payment still being pending or failed.
    """
    at = at or now()
    gateway_status = (gateway_status or "").upper()

    if gateway_status in GATEWAY_FAILURE_STATUSES:
        return await _mark_failed(session, order, at, gateway_status)

    if gateway_status != GATEWAY_STATUS_COMPLETE:
        logger.info("payment.status.ignored", extra={"order_id": order.id, "gateway_status": gateway_status})
        return IGNORED

    settled = _settled_outcome(order)
    if settled is not None:
        logger.info("payment.replay", extra={"order_id": order.id, "payment_status": order.payment_status})
        return settled

    if not amount_matches(total_amount, order.total):
        await _mark_failed(session, order, at, "amount_mismatch")
        logger.error("payment.amount_mismatch", extra={
            "order_id": order.id, "declared": str(total_amount), "expected": order.total,
        })
        raise PaymentVerificationFailed("Amount mismatch", code="AMOUNT_MISMATCH")

    if order.order_status == OrderStatus.CANCELLED.value:
        # money arrived for a cancelled order, record it so an admin can refund
        logger.warning("payment.paid_after_cancel", extra={"order_id": order.id})

    confirm_to = OrderStatus.CONFIRMED.value if order.order_status == OrderStatus.PENDING.value else None
    details = {
        "transaction_id": order.gateway_transaction_id,
        "reference_id": reference_id,
        "amount": order.total,
        "paid_at": at.isoformat(),
    }

    confirmed = await confirm_payment(session, order.id, details, order.order_status, confirm_to, at)
    if not confirmed:
        await session.rollback()
        await session.refresh(order)
        settled = _settled_outcome(order)
        if settled is not None:
            return settled
        raise InvariantViolation("Order was modified concurrently, retry", code="CONCURRENT_MODIFICATION")

    # gateway orders keep the cart until the money is in
    await clear_user_cart(session, order.user_id)
    await session.commit()
    await session.refresh(order)

    logger.info("payment.paid", extra={
        "order_id": order.id, "reference_id": reference_id, "order_status": order.order_status,
    })
    return PAID


async def reconcile_callback(session: AsyncSession, data: Dict[str, Any], config: GatewayConfig,
                             at: Optional[datetime] = None,
                             default_status: Optional[str] = None) -> Tuple[str, Orders]:
    """
    Verify a decoded gateway callback and apply it. Signature is checked before anything is read or written.

    default_status fills in a missing status only after the payload has been verified.
    """
    if not verify_signature(data, config.secret_key):
        logger.warning("payment.callback.signature_mismatch", extra={
            "transaction_uuid": data.get("transaction_uuid"), "signature": data.get("signature"),
        })
        raise PaymentVerificationFailed("Invalid payment signature", code="SIGNATURE_MISMATCH")

    if default_status and not data.get("status"):
        data = {**data, "status": default_status}

    try:
        callback = GatewayCallback.model_validate(data)
    except ValidationError:
        logger.warning("payment.callback.malformed", extra={"raw_payload": data})
        raise ValidationFailed("Malformed payment data")

    if callback.product_code != config.merchant_code:
        logger.warning("payment.callback.merchant_mismatch", extra={"product_code": callback.product_code})
        raise PaymentVerificationFailed("Unknown merchant", code="MERCHANT_MISMATCH")

    order = await get_order_by_gateway_txn(session, callback.transaction_uuid)
    if order is None:
        logger.warning("payment.callback.order_not_found", extra={"transaction_uuid": callback.transaction_uuid})
        raise NotFound("Order not found")

    outcome = await apply_gateway_status(session, order, callback.status, callback.total_amount,
                                         callback.transaction_code, at)
    return outcome, order


async def record_unsigned_failure(session: AsyncSession, transaction_uuid: str,
                                  at: Optional[datetime] = None) -> Tuple[str, Optional[Orders]]:
    """Failure redirect without signed data. Only ever moves a pending payment to failed."""
    order = await get_order_by_gateway_txn(session, transaction_uuid)
    if order is None:
        return IGNORED, None
    if order.payment_status != PaymentStatus.PENDING.value:
        return IGNORED, order

    updated = await cas_payment_update(session, order.id, {
        "payment_status": PaymentStatus.FAILED.value, "updated_at": at or now(),
    }, expected_payment_status=PaymentStatus.PENDING.value)
    await session.commit()
    await session.refresh(order)
    if updated:
        logger.info("payment.failed", extra={"order_id": order.id, "reason": "failure_redirect"})
        return FAILED, order
    return IGNORED, order


async def fetch_gateway_status(client: httpx.AsyncClient, order: Orders, config: GatewayConfig) -> GatewayStatusResponse:
    params = {
        "product_code": config.merchant_code,
        "total_amount": str(order.total),
        "transaction_uuid": order.gateway_transaction_id,
    }

    @retry_http(max_retries=config.max_retries, backoff_base=config.backoff_base)
    async def _request():
        resp = await client.get(config.status_url, params=params, timeout=config.status_timeout)
        resp.raise_for_status()
        return resp.json()

    try:
        body = await _request()
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("payment.status_check.unavailable", extra={"order_id": order.id, "error": repr(exc)})
        raise GatewayUnavailable("Payment gateway unavailable, try again later")

    try:
        return GatewayStatusResponse.model_validate(body)
    except ValidationError:
        logger.error("payment.status_check.malformed", extra={"order_id": order.id})
        raise GatewayUnavailable("Unexpected response from payment gateway")


def _status_view(order: Orders, gateway_status: Optional[str] = None, outcome: Optional[str] = None) -> Dict[str, Any]:
    return {
        "order_id": str(order.public_id),
        "order_number": order.order_number,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
        "order_status": order.order_status,
        "gateway_transaction_id": order.gateway_transaction_id,
        "gateway_details": order.gateway_details,
        "gateway_status": gateway_status,
        "reconciliation": outcome,
        "updated_at": as_utc(order.updated_at),
    }


async def check_payment_status(session: AsyncSession, order_pid, user_id: int, is_admin: bool, config: GatewayConfig,
                               refresh: bool = False, client: Optional[httpx.AsyncClient] = None) -> Dict[str, Any]:
    order = await get_order_by_pid(session, order_pid)
    if order is None:
        raise NotFound("Order not found")
    if order.user_id != user_id and not is_admin:
        raise Forbidden("Not authorized")

    if not refresh or client is None:
        return _status_view(order)

    if order.payment_method != PaymentMethod.ESEWA.value or not order.gateway_transaction_id:
        return _status_view(order)

    settled = _settled_outcome(order)
    if settled is not None:
        return _status_view(order, outcome=settled)

    answer = await fetch_gateway_status(client, order, config)
    if answer.transaction_uuid and answer.transaction_uuid != order.gateway_transaction_id:
        logger.error("payment.status_check.transaction_mismatch", extra={"order_id": order.id})
        raise PaymentVerificationFailed("Gateway answered for a different transaction", code="TRANSACTION_MISMATCH")

    # the status query was made with our total, a reply without one echoes it
    declared = answer.total_amount if answer.total_amount is not None else str(order.total)
    outcome = await apply_gateway_status(session, order, answer.status, declared, answer.ref_id)
    return _status_view(order, gateway_status=answer.status, outcome=outcome)
