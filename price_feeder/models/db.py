import logging

import redis.asyncio as redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

Base = declarative_base()


class StartupError(RuntimeError):
    """启动阶段无法连接数据库或 Redis，进程应直接退出"""


def create_engine_from_settings(settings) -> AsyncEngine:
    """创建异步数据库引擎

    SQLite 不需要连接池参数，PostgreSQL/MySQL 需要 pool_pre_ping 等参数
    """
    engine_kwargs = {
        "echo": settings.DB_ECHO,
        "future": True,
    }

    if not settings.DATABASE_URL.startswith("sqlite"):
        engine_kwargs.update({
            "pool_pre_ping": True,
            "pool_recycle": 3600,
            "pool_size": 5,
            "max_overflow": 5,
        })

    return create_async_engine(settings.DATABASE_URL, **engine_kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        expire_on_commit=False,
        class_=AsyncSession,
    )


def create_redis_client(settings):
    return redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
    )


async def check_connections(engine: AsyncEngine, redis_client) -> None:
    """启动检查：数据库和 Redis 都必须可用，否则抛出 StartupError"""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        raise StartupError(f"Failed to connect to database: {e}") from e
    logger.info("Connected to database")

    try:
        await redis_client.ping()
    except Exception as e:
        raise StartupError(f"Failed to connect to Redis: {e}") from e
    logger.info("Connected to Redis")


async def ensure_tables(engine: AsyncEngine) -> None:
    """启动时创建缺失的表（幂等）"""
    # 注册模型到 Base.metadata
    from price_feeder.models.token_price import TokenPrice  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        raise StartupError(f"Failed to create tables: {e}") from e
    logger.info("Tables ready: %s", ", ".join(sorted(Base.metadata.tables)))
