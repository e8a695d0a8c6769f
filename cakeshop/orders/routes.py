from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from cakeshop.auth.dependencies import get_current_user_id, is_admin, require_admin
from cakeshop.common.constants import request_id_ctx
from cakeshop.common.utils import success_response
from cakeshop.db.dependencies import get_session
from cakeshop.orders.models import CancelIn, CreateOrderIn, OrderStatusName, PaymentStatusName, RefundIn, StatusUpdateIn
from cakeshop.orders.services import (
    cancel_order,
    get_order,
    get_order_by_order_number,
    place_order,
    refund_order,
    search_orders,
    update_order_status,
)
from cakeshop.rewards.dependencies import get_rewards_config
from cakeshop.rewards.models import RewardsConfig

orders_router = APIRouter()
orders_admin_router = APIRouter(dependencies=[Depends(require_admin)])


@orders_router.post("")
async def create_order(payload: CreateOrderIn, user_id: int = Depends(get_current_user_id),
                       session: AsyncSession = Depends(get_session)):
    data = await place_order(session, user_id, payload)
    return success_response(data, status.HTTP_201_CREATED, request_id=request_id_ctx.get(None))


@orders_router.get("")
async def my_orders(order_status: Optional[OrderStatusName] = Query(None, alias="status"),
                    payment_status: Optional[PaymentStatusName] = Query(None),
                    page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                    user_id: int = Depends(get_current_user_id), session: AsyncSession = Depends(get_session)):
    data = await search_orders(session, user_id=user_id, order_status=order_status,
                               payment_status=payment_status, page=page, limit=limit)
    return success_response(data, 200, request_id=request_id_ctx.get(None))


@orders_router.get("/number/{order_number}")
async def order_by_number(order_number: str, request: Request, user_id: int = Depends(get_current_user_id),
                          session: AsyncSession = Depends(get_session)):
    data = await get_order_by_order_number(session, order_number, user_id, is_admin(request))
    return success_response(data, 200, request_id=request_id_ctx.get(None))


@orders_router.get("/{order_id}")
async def order_by_id(order_id: UUID, request: Request, user_id: int = Depends(get_current_user_id),
                      session: AsyncSession = Depends(get_session)):
    data = await get_order(session, order_id, user_id, is_admin(request))
    return success_response(data, 200, request_id=request_id_ctx.get(None))


@orders_router.put("/{order_id}/cancel")
async def cancel(order_id: UUID, request: Request, payload: Optional[CancelIn] = None,
                 user_id: int = Depends(get_current_user_id), session: AsyncSession = Depends(get_session),
                 config: RewardsConfig = Depends(get_rewards_config)):
    reason = payload.reason if payload else None
    data = await cancel_order(session, order_id, user_id, is_admin(request), reason, config)
    return success_response(data, 200, request_id=request_id_ctx.get(None))

#--------------------------------------------------------------------------------------------------------

@orders_admin_router.get("")
async def all_orders(order_status: Optional[OrderStatusName] = Query(None, alias="status"),
                     payment_status: Optional[PaymentStatusName] = Query(None),
                     search: Optional[str] = Query(None, max_length=32),
                     page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                     session: AsyncSession = Depends(get_session)):
    data = await search_orders(session, order_status=order_status, payment_status=payment_status,
                               search=search, page=page, limit=limit)
    return success_response(data, 200, request_id=request_id_ctx.get(None))


@orders_admin_router.put("/{order_id}/status")
async def change_status(order_id: UUID, payload: StatusUpdateIn, session: AsyncSession = Depends(get_session),
                        config: RewardsConfig = Depends(get_rewards_config)):
    data = await update_order_status(session, order_id, payload.status, payload.notes, config)
    return success_response(data, 200, request_id=request_id_ctx.get(None))


@orders_admin_router.put("/{order_id}/refund")
async def refund(order_id: UUID, payload: RefundIn, admin_id: int = Depends(require_admin),
                 session: AsyncSession = Depends(get_session)):
    data = await refund_order(session, order_id, admin_id, payload)
    return success_response(data, 200, request_id=request_id_ctx.get(None))
