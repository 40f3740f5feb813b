# Локальний bootstrap схеми без alembic
import asyncio

from app.core.database import engine, Base
import app.models  # noqa: F401  реєструє всі таблиці в Base.metadata


async def init_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


if __name__ == "__main__":
    asyncio.run(init_db())
