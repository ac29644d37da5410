from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine,async_sessionmaker,AsyncSession
from sqlmodel import SQLModel
from storefront.db.utils import _normalize_db_url


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    db_url = _normalize_db_url(url)
    if db_url is None:
        raise RuntimeError("DATABASE_URL is not configured")
    connect_args = {}
    if db_url.startswith("sqlite"):
        # concurrent writers wait on the file lock instead of failing at once
        connect_args["timeout"] = 15
    return create_async_engine(db_url, echo=echo, connect_args=connect_args)


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine,class_=AsyncSession,expire_on_commit=False)


async def create_all_tables(engine: AsyncEngine) -> None:
    # table classes register themselves on SQLModel.metadata at import
    import storefront.schema.full_schema  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
