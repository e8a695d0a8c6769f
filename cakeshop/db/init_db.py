import asyncio
from sqlmodel import SQLModel
from cakeshop.db.connection import async_engine
import cakeshop.schema.full_schema  # noqa: F401  registers every table on SQLModel.metadata


async def create_all(engine=async_engine):
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def drop_all(engine=async_engine):
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)


if __name__ == "__main__":
    asyncio.run(create_all())
