from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from app.core.config import config


# pool_pre_ping: Supabase pooler закриває idle з'єднання
engine = create_async_engine(
	config.DATABASE_URL,
	echo=config.DEBUG_MODE,
	pool_pre_ping=True,
)
async_session = sessionmaker(
	bind=engine,
	expire_on_commit=False,
	class_=AsyncSession
)

Base = declarative_base()
