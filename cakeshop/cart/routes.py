from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from cakeshop.auth.dependencies import get_current_user_id
from cakeshop.cart.models import CartItemInput, CartSyncIn, CustomCakeInput, DeliveryTypeIn, PromoCodeIn, QuantityUpdateIn
from cakeshop.cart.services import (
    add_custom_item,
    add_item,
    apply_promo_code,
    clear_cart,
    get_cart_view,
    remove_item,
    remove_promo_code,
    set_delivery_type,
    sync_cart,
    update_item_quantity,
)
from cakeshop.common.constants import request_id_ctx
from cakeshop.common.utils import success_response
from cakeshop.db.dependencies import get_session

carts_router = APIRouter()


@carts_router.get("")
async def get_cart(user_id: int = Depends(get_current_user_id), session: AsyncSession = Depends(get_session)):
    data = await get_cart_view(session, user_id)
    return success_response(data, 200, request_id=request_id_ctx.get(None))


@carts_router.post("/items")
async def add_to_cart(payload: CartItemInput, user_id: int = Depends(get_current_user_id),
                      session: AsyncSession = Depends(get_session)):
    data = await add_item(session, user_id, payload)
    return success_response(data, status.HTTP_201_CREATED, request_id=request_id_ctx.get(None))


@carts_router.post("/custom-items")
async def add_custom_cake(payload: CustomCakeInput, user_id: int = Depends(get_current_user_id),
                          session: AsyncSession = Depends(get_session)):
    data = await add_custom_item(session, user_id, payload)
    return success_response(data, status.HTTP_201_CREATED, request_id=request_id_ctx.get(None))


@carts_router.post("/sync")
async def sync(payload: CartSyncIn, user_id: int = Depends(get_current_user_id),
               session: AsyncSession = Depends(get_session)):
    data = await sync_cart(session, user_id, payload)
    return success_response(data, 200, request_id=request_id_ctx.get(None))


@carts_router.put("/delivery")
async def update_delivery(payload: DeliveryTypeIn, user_id: int = Depends(get_current_user_id),
                          session: AsyncSession = Depends(get_session)):
    data = await set_delivery_type(session, user_id, payload.delivery_type)
    return success_response(data, 200, request_id=request_id_ctx.get(None))


@carts_router.post("/promo")
async def apply_promo(payload: PromoCodeIn, user_id: int = Depends(get_current_user_id),
                      session: AsyncSession = Depends(get_session)):
    data = await apply_promo_code(session, user_id, payload.code)
    return success_response(data, 200, request_id=request_id_ctx.get(None))


@carts_router.delete("/promo")
async def remove_promo(user_id: int = Depends(get_current_user_id), session: AsyncSession = Depends(get_session)):
    data = await remove_promo_code(session, user_id)
    return success_response(data, 200, request_id=request_id_ctx.get(None))


@carts_router.put("/items/{item_id}")
async def update_item(item_id: int, payload: QuantityUpdateIn, user_id: int = Depends(get_current_user_id),
                      session: AsyncSession = Depends(get_session)):
    data = await update_item_quantity(session, user_id, item_id, payload.quantity)
    return success_response(data, 200, request_id=request_id_ctx.get(None))


@carts_router.delete("/items/{item_id}")
async def delete_item(item_id: int, user_id: int = Depends(get_current_user_id),
                      session: AsyncSession = Depends(get_session)):
    data = await remove_item(session, user_id, item_id)
    return success_response(data, 200, request_id=request_id_ctx.get(None))


@carts_router.delete("")
async def empty_cart(user_id: int = Depends(get_current_user_id), session: AsyncSession = Depends(get_session)):
    data = await clear_cart(session, user_id)
    return success_response(data, 200, request_id=request_id_ctx.get(None))
