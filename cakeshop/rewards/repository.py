from datetime import datetime
from typing import List, Optional
from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from cakeshop.schema.full_schema import Coupon, OrderStatus, Orders, PointsEntryType, PointsHistory, Users


async def get_user_balance(session: AsyncSession, user_id: int) -> Optional[int]:
    stmt = select(Users.sweet_points).where(Users.id == user_id, Users.deleted_at.is_(None))
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def count_non_cancelled_orders(session: AsyncSession, user_id: int) -> int:
    stmt = select(func.count(Orders.id)).where(
        Orders.user_id == user_id,
        Orders.order_status != OrderStatus.CANCELLED.value,
    )
    res = await session.execute(stmt)
    return int(res.scalar_one())


async def order_already_awarded(session: AsyncSession, user_id: int, order_id: int) -> bool:
    stmt = select(PointsHistory.id).where(
        PointsHistory.user_id == user_id,
        PointsHistory.related_order_id == order_id,
        PointsHistory.entry_type == PointsEntryType.EARNED.value,
    ).limit(1)
    res = await session.execute(stmt)
    return res.scalar_one_or_none() is not None


async def credit_points(session: AsyncSession, user_id: int, amount: int, description: str, order_id: Optional[int]) -> bool:
    """Balance increment and its earned ledger row, flushed together. Caller commits."""
    stmt = (
        update(Users)
        .where(Users.id == user_id, Users.deleted_at.is_(None))
        .values(sweet_points=Users.sweet_points + amount)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    if res.rowcount != 1:
        return False

    await session.execute(
        insert(PointsHistory).values(
            user_id=user_id,
            amount=amount,
            entry_type=PointsEntryType.EARNED.value,
            description=description,
            related_order_id=order_id,
        )
    )
    return True


async def debit_points_if_sufficient(session: AsyncSession, user_id: int, cost: int) -> bool:
    # balance check and decrement in one statement so concurrent redeems cannot overdraw
    stmt = (
        update(Users)
        .where(Users.id == user_id, Users.deleted_at.is_(None), Users.sweet_points >= cost)
        .values(sweet_points=Users.sweet_points - cost)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


async def list_points_history(session: AsyncSession, user_id: int, limit: int = 100, offset: int = 0) -> List[PointsHistory]:
    stmt = (
        select(PointsHistory)
        .where(PointsHistory.user_id == user_id)
        .order_by(PointsHistory.created_at.desc(), PointsHistory.id.desc())
        .limit(limit)
        .offset(offset)
    )
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def coupon_code_exists(session: AsyncSession, code: str) -> bool:
    res = await session.execute(select(Coupon.id).where(Coupon.code == code).limit(1))
    return res.scalar_one_or_none() is not None


async def get_user_coupon_by_code(session: AsyncSession, user_id: int, code: str) -> Optional[Coupon]:
    stmt = select(Coupon).where(Coupon.code == code.strip().upper(), Coupon.user_id == user_id)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def list_user_coupons(session: AsyncSession, user_id: int, status: Optional[str], at: datetime) -> List[Coupon]:
    stmt = select(Coupon).where(Coupon.user_id == user_id)

    if status == "active":
        stmt = stmt.where(Coupon.is_used.is_(False), Coupon.expires_at > at)
    elif status == "used":
        stmt = stmt.where(Coupon.is_used.is_(True))
    elif status == "expired":
        stmt = stmt.where(Coupon.is_used.is_(False), Coupon.expires_at <= at)

    stmt = stmt.order_by(Coupon.created_at.desc(), Coupon.id.desc())
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def consume_coupon(session: AsyncSession, coupon_id: int, user_id: int, order_id: int, at: datetime) -> bool:
    """Flip is_used false -> true together with the order link. False when already used or expired."""
    stmt = (
        update(Coupon)
        .where(
            Coupon.id == coupon_id,
            Coupon.user_id == user_id,
            Coupon.is_used.is_(False),
            Coupon.expires_at > at,
        )
        .values(is_used=True, used_at=at, used_in_order=order_id)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1
