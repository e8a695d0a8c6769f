from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from cakeshop.schema.full_schema import OrderItem, Orders, PaymentStatus

# a payment may only be (re)written while no money has settled
PAYABLE_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value)


async def order_number_exists(session: AsyncSession, order_number: str) -> bool:
    res = await session.execute(select(Orders.id).where(Orders.order_number == order_number).limit(1))
    return res.scalar_one_or_none() is not None


async def get_order_by_pid(session: AsyncSession, order_pid) -> Optional[Orders]:
    try:
        pid = order_pid if isinstance(order_pid, UUID) else UUID(str(order_pid))
    except (ValueError, TypeError):
        return None
    res = await session.execute(select(Orders).where(Orders.public_id == pid))
    return res.scalar_one_or_none()


async def get_order_by_number(session: AsyncSession, order_number: str) -> Optional[Orders]:
    res = await session.execute(select(Orders).where(Orders.order_number == order_number))
    return res.scalar_one_or_none()


async def get_order_by_gateway_txn(session: AsyncSession, transaction_id: str) -> Optional[Orders]:
    res = await session.execute(select(Orders).where(Orders.gateway_transaction_id == transaction_id))
    return res.scalar_one_or_none()


async def list_order_items(session: AsyncSession, order_id: int) -> List[OrderItem]:
    stmt = select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def list_items_for_orders(session: AsyncSession, order_ids: List[int]) -> Dict[int, List[OrderItem]]:
    grouped: Dict[int, List[OrderItem]] = {oid: [] for oid in order_ids}
    if not order_ids:
        return grouped
    stmt = select(OrderItem).where(OrderItem.order_id.in_(order_ids)).order_by(OrderItem.id)
    res = await session.execute(stmt)
    for item in res.scalars().all():
        grouped[item.order_id].append(item)
    return grouped


async def list_orders(session: AsyncSession, *, user_id: Optional[int] = None, order_status: Optional[str] = None,
                      payment_status: Optional[str] = None, search: Optional[str] = None,
                      limit: int = 10, offset: int = 0) -> Tuple[List[Orders], int]:
    filters = []
    if user_id is not None:
        filters.append(Orders.user_id == user_id)
    if order_status:
        filters.append(Orders.order_status == order_status)
    if payment_status:
        filters.append(Orders.payment_status == payment_status)
    if search:
        filters.append(Orders.order_number.ilike(f"%{search.strip()}%"))

    count_res = await session.execute(select(func.count(Orders.id)).where(*filters))
    total = int(count_res.scalar_one())

    stmt = (
        select(Orders)
        .where(*filters)
        .order_by(Orders.created_at.desc(), Orders.id.desc())
        .limit(limit)
        .offset(offset)
    )
    res = await session.execute(stmt)
    return list(res.scalars().all()), total


async def cas_order_status(session: AsyncSession, order_id: int, expected_status: str, values: Dict[str, Any]) -> bool:
    """Apply values only while the order is still in expected_status."""
    stmt = (
        update(Orders)
        .where(Orders.id == order_id, Orders.order_status == expected_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


async def cas_payment_update(session: AsyncSession, order_id: int, values: Dict[str, Any],
                             expected_payment_status: Optional[str] = None) -> bool:
    """Payment writes never touch a paid or refunded order."""
    stmt = update(Orders).where(Orders.id == order_id, Orders.payment_status.in_(PAYABLE_STATUSES))
    if expected_payment_status is not None:
        stmt = stmt.where(Orders.payment_status == expected_payment_status)
    stmt = stmt.values(**values).execution_options(synchronize_session=False)
    res = await session.execute(stmt)
    return res.rowcount == 1


async def confirm_payment(session: AsyncSession, order_id: int, gateway_details: Dict[str, Any],
                          loaded_order_status: str, confirm_to: Optional[str], at) -> bool:
    """Mark paid and, from pending, advance to confirmed. One statement guarded on both statuses."""
    values: Dict[str, Any] = {
        "payment_status": PaymentStatus.PAID.value,
        "gateway_details": gateway_details,
        "updated_at": at,
    }
    if confirm_to is not None:
        values["order_status"] = confirm_to

    stmt = (
        update(Orders)
        .where(
            Orders.id == order_id,
            Orders.payment_status.in_(PAYABLE_STATUSES),
            Orders.order_status == loaded_order_status,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


async def refund_paid_order(session: AsyncSession, order_id: int, values: Dict[str, Any]) -> bool:
    stmt = (
        update(Orders)
        .where(Orders.id == order_id, Orders.payment_status == PaymentStatus.PAID.value)
        .values(payment_status=PaymentStatus.REFUNDED.value, **values)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1
