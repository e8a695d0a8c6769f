from typing import Optional
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from cakeshop.schema.full_schema import Users


async def identify_user_by_pid(session: AsyncSession, user_pid: str) -> Optional[tuple[int, str]]:
    """Resolve a token subject to (internal user id, role). None for unknown or deleted users."""
    try:
        pid = UUID(str(user_pid))
    except (ValueError, TypeError):
        return None

    stmt = select(Users.id, Users.role).where(Users.public_id == pid, Users.deleted_at.is_(None))
    res = await session.execute(stmt)
    row = res.first()
    if not row:
        return None
    return row[0], row[1]
