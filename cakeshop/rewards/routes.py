from typing import Literal, Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from cakeshop.auth.dependencies import get_current_user_id, get_optional_user_id
from cakeshop.common.constants import request_id_ctx
from cakeshop.common.utils import success_response
from cakeshop.db.dependencies import get_session
from cakeshop.rewards.dependencies import get_rewards_config
from cakeshop.rewards.models import RedeemIn, RewardsConfig
from cakeshop.rewards.services import get_points_summary, get_user_coupons, list_tiers, redeem_points, validate_coupon

rewards_router = APIRouter()


@rewards_router.get("/tiers")
async def reward_tiers(request: Request, session: AsyncSession = Depends(get_session),
                       config: RewardsConfig = Depends(get_rewards_config)):
    data = await list_tiers(session, config, get_optional_user_id(request))
    return success_response(data, 200, request_id=request_id_ctx.get(None))


@rewards_router.get("/points")
async def my_points(limit: int = Query(100, ge=1, le=500), offset: int = Query(0, ge=0),
                    user_id: int = Depends(get_current_user_id), session: AsyncSession = Depends(get_session)):
    data = await get_points_summary(session, user_id, limit=limit, offset=offset)
    return success_response(data, 200, request_id=request_id_ctx.get(None))


@rewards_router.post("/redeem")
async def redeem(payload: RedeemIn, user_id: int = Depends(get_current_user_id),
                 session: AsyncSession = Depends(get_session),
                 config: RewardsConfig = Depends(get_rewards_config)):
    data = await redeem_points(session, user_id, payload.tier_id, config)
    return success_response(data, status.HTTP_201_CREATED, request_id=request_id_ctx.get(None))


@rewards_router.get("/coupons")
async def my_coupons(coupon_status: Optional[Literal["active", "used", "expired", "all"]] = Query(None, alias="status"),
                     user_id: int = Depends(get_current_user_id), session: AsyncSession = Depends(get_session)):
    data = await get_user_coupons(session, user_id, coupon_status)
    return success_response(data, 200, request_id=request_id_ctx.get(None))


@rewards_router.get("/validate/{code}")
async def validate(code: str, user_id: int = Depends(get_current_user_id), session: AsyncSession = Depends(get_session)):
    data = await validate_coupon(session, user_id, code)
    return success_response(data, 200, request_id=request_id_ctx.get(None))
