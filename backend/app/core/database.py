from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import Settings


def build_engine(settings: Settings) -> AsyncEngine:
    """按配置创建异步引擎"""
    db_url = settings.DATABASE_URL
    engine_kwargs = {
        "echo": settings.DEBUG,
        "future": True,
        "pool_pre_ping": True,
    }
    # 连接池配置（仅非 sqlite 场景启用）
    if not db_url.startswith("sqlite"):
        engine_kwargs.update(pool_size=20, max_overflow=10)

    return create_async_engine(db_url, **engine_kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """创建异步 Session 工厂"""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    从给定工厂获取数据库 Session，供 FastAPI 依赖使用
    """
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
