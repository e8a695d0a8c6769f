from uuid import UUID
import httpx
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from cakeshop.auth.dependencies import get_current_user_id, is_admin
from cakeshop.common.constants import request_id_ctx
from cakeshop.common.utils import success_response
from cakeshop.db.dependencies import get_session
from cakeshop.payments.dependencies import get_gateway_client, get_gateway_config
from cakeshop.payments.models import GatewayConfig, InitiatePaymentIn
from cakeshop.payments.services import check_payment_status, initiate_payment

payments_router = APIRouter()


@payments_router.post("/esewa/initiate")
async def initiate(payload: InitiatePaymentIn, user_id: int = Depends(get_current_user_id),
                   session: AsyncSession = Depends(get_session),
                   config: GatewayConfig = Depends(get_gateway_config)):
    data = await initiate_payment(session, user_id, payload.order_id, config)
    return success_response(data, 200, request_id=request_id_ctx.get(None))


@payments_router.get("/status/{order_id}")
async def payment_status(order_id: UUID, request: Request, refresh: bool = Query(False),
                         user_id: int = Depends(get_current_user_id),
                         session: AsyncSession = Depends(get_session),
                         config: GatewayConfig = Depends(get_gateway_config),
                         client: httpx.AsyncClient = Depends(get_gateway_client)):
    data = await check_payment_status(session, order_id, user_id, is_admin(request), config,
                                      refresh=refresh, client=client)
    return success_response(data, 200, request_id=request_id_ctx.get(None))
