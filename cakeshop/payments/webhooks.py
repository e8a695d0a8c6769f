from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from cakeshop.common.custom_exceptions import AppError
from cakeshop.db.dependencies import get_session
from cakeshop.payments.constants import logger
from cakeshop.payments.dependencies import get_gateway_config
from cakeshop.payments.models import GatewayConfig
from cakeshop.payments.services import ALREADY_PAID, ALREADY_REFUNDED, PAID, reconcile_callback, record_unsigned_failure
from cakeshop.payments.utils import decode_callback_data, frontend_redirect

webhooks_router = APIRouter()


async def _callback_params(request: Request) -> Dict[str, Any]:
    """The gateway redirects with ?data=... but some integrations POST it as a form or json body."""
    params: Dict[str, Any] = dict(request.query_params)
    if request.method == "POST":
        content_type = request.headers.get("content-type", "")
        if "application/json" in content_type:
            body = await request.json()
            if isinstance(body, dict):
                params.update(body)
        else:
            form = await request.form()
            params.update({k: v for k, v in form.items() if isinstance(v, str)})
    return params


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)


@webhooks_router.api_route("/esewa/success", methods=["GET", "POST"])
async def esewa_success(request: Request, session: AsyncSession = Depends(get_session),
                        config: GatewayConfig = Depends(get_gateway_config)):
    params = await _callback_params(request)

    try:
        data = decode_callback_data(params.get("data", ""))
        outcome, order = await reconcile_callback(session, data, config)
    except AppError as e:
        logger.warning("payment.callback.rejected", extra={"code": e.code, "reason": str(e.detail)})
        return _redirect(frontend_redirect(config, status="error", message=str(e.detail)))

    if outcome in (PAID, ALREADY_PAID):
        return _redirect(frontend_redirect(config, status="success", order_id=str(order.public_id),
                                           order_number=order.order_number))
    if outcome == ALREADY_REFUNDED:
        return _redirect(frontend_redirect(config, status="refunded", order_id=str(order.public_id),
                                           message="This payment has been refunded"))
    return _redirect(frontend_redirect(config, status="failed", order_id=str(order.public_id),
                                       message="Payment was not completed"))


@webhooks_router.api_route("/esewa/failure", methods=["GET", "POST"])
async def esewa_failure(request: Request, session: AsyncSession = Depends(get_session),
                        config: GatewayConfig = Depends(get_gateway_config)):
    params = await _callback_params(request)
    order_id: Optional[str] = None

    try:
        if params.get("data"):
            data = decode_callback_data(params["data"])
            # a signed payload on the failure route carries its own status, CANCELED only fills a gap
            _, order = await reconcile_callback(session, data, config, default_status="CANCELED")
            order_id = str(order.public_id)
        else:
            transaction_uuid = params.get("transaction_uuid") or params.get("pid")
            if transaction_uuid:
                _, order = await record_unsigned_failure(session, transaction_uuid)
                order_id = str(order.public_id) if order else None
    except AppError as e:
        logger.warning("payment.failure_callback.rejected", extra={"code": e.code, "reason": str(e.detail)})

    return _redirect(frontend_redirect(config, status="failed", order_id=order_id, message="Payment failed"))
