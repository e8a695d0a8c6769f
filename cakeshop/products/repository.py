from typing import Dict, Iterable
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from cakeshop.common.custom_exceptions import NotFound
from cakeshop.products.constants import logger
from cakeshop.schema.full_schema import Product


async def find_active_product_by_pid(session: AsyncSession, product_pid) -> Product:
    try:
        pid = product_pid if isinstance(product_pid, UUID) else UUID(str(product_pid))
    except (ValueError, TypeError):
        raise NotFound("Product not found")

    stmt = select(Product).where(
        Product.public_id == pid,
        Product.is_active.is_(True),
        Product.deleted_at.is_(None),
    )
    res = await session.execute(stmt)
    product = res.scalar_one_or_none()

    if not product:
        logger.warning("product.not_found", extra={"product_public_id": str(product_pid)})
        raise NotFound("Product not found")

    return product


async def fetch_active_products(session: AsyncSession, product_ids: Iterable[int]) -> Dict[int, Product]:
    """Fresh catalog read keyed by internal id. Inactive or deleted products are left out."""
    ids = {pid for pid in product_ids if pid is not None}
    if not ids:
        return {}

    stmt = select(Product).where(
        Product.id.in_(ids),
        Product.is_active.is_(True),
        Product.deleted_at.is_(None),
    )
    res = await session.execute(stmt)
    return {p.id: p for p in res.scalars().all()}
