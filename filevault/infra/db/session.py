from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from filevault.config.config_schema import DatabaseConfig
from filevault.core.logger import logger
import filevault.models  # noqa: F401  注册所有表模型


def create_engine(db_config: DatabaseConfig) -> AsyncEngine:
    """根据配置创建异步数据库引擎。"""
    return create_async_engine(db_config.url, echo=db_config.echo, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# 初始化数据库（启动时调用）
async def create_db_and_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("✅ Database tables are ready")
