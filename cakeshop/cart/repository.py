from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from cakeshop.common.utils import now
from cakeshop.schema.full_schema import Cart, CartItem


async def get_cart(session: AsyncSession, user_id: int) -> Optional[Cart]:
    res = await session.execute(select(Cart).where(Cart.user_id == user_id))
    return res.scalar_one_or_none()


async def get_or_create_cart(session: AsyncSession, user_id: int) -> Cart:
    cart = await get_cart(session, user_id)
    if cart:
        return cart

    cart = Cart(user_id=user_id)
    session.add(cart)
    try:
        await session.commit()
        await session.refresh(cart)
        return cart
    except IntegrityError:
        # concurrent first add created it
        await session.rollback()
        return await get_cart(session, user_id)


async def list_cart_items(session: AsyncSession, cart_id: int) -> List[CartItem]:
    stmt = select(CartItem).where(CartItem.cart_id == cart_id).order_by(CartItem.id)
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def get_cart_item(session: AsyncSession, cart_id: int, item_id: int) -> Optional[CartItem]:
    stmt = select(CartItem).where(CartItem.id == item_id, CartItem.cart_id == cart_id)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def insert_cart_item(session: AsyncSession, cart_id: int, product_id: Optional[int], quantity: int,
                           selected_weight: Dict[str, Any], customization: Optional[Dict[str, Any]]) -> CartItem:
    item = CartItem(
        cart_id=cart_id,
        product_id=product_id,
        quantity=quantity,
        selected_weight=selected_weight,
        customization=customization,
    )
    session.add(item)
    await session.flush()
    return item


async def delete_cart_items(session: AsyncSession, cart_id: int, item_ids: Iterable[int]) -> int:
    ids = list(item_ids)
    if not ids:
        return 0
    stmt = delete(CartItem).where(CartItem.cart_id == cart_id, CartItem.id.in_(ids))
    res = await session.execute(stmt)
    return res.rowcount


async def clear_user_cart(session: AsyncSession, user_id: int) -> bool:
    """Empty the user's cart and drop its promo. Caller owns the transaction."""
    cart = await get_cart(session, user_id)
    if cart is None:
        return False

    await session.execute(delete(CartItem).where(CartItem.cart_id == cart.id))
    cart.promo_code = None
    cart.updated_at = now()
    return True
