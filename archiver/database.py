# archiver/database.py
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from archiver.config import settings

engine = create_async_engine(settings.database_url)
SessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
Base = declarative_base()

async def init_models(bind=engine):
    # Import so the table is registered on Base.metadata
    from archiver import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

# Dependency to get a DB session in API routes
async def get_db():
    async with SessionLocal() as db:
        yield db
