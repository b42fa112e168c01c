"""
数据库会话管理

这个模块负责：
1. 创建数据库引擎（连接池）
2. 提供异步会话工厂
3. 实现 FastAPI 依赖注入的数据库会话获取函数

使用方式（在 FastAPI 路由中）：
    from app.db.session import get_db

    @router.get("/files")
    async def list_files(db: AsyncSession = Depends(get_db)):
        ...
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.config import get_settings
from app.db.base import Base

settings = get_settings()


def build_engine(database_url: str) -> AsyncEngine:
    """
    创建异步引擎

    SQLite（测试/本地）不支持连接池参数，仅对服务端数据库启用连接池配置。
    """
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=False, future=True)
    return create_async_engine(
        database_url,
        echo=False,
        future=True,
        pool_pre_ping=True,     # 取连接前先探活，避免使用已断开的连接
        pool_size=10,           # 连接池保持的连接数
        max_overflow=20,        # 允许超出 pool_size 的额外连接数
        pool_timeout=30,        # 获取连接的超时时间（秒）
        pool_recycle=1800,      # 连接回收时间（秒）
    )


engine = build_engine(settings.database_url)

# 提交后不自动过期对象，便于在 commit 之后继续读取字段
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    获取数据库会话（FastAPI 依赖注入函数）

    每个请求一个独立会话，请求结束后自动关闭。
    """
    async with SessionLocal() as session:
        yield session


async def init_models() -> None:
    """
    初始化数据库表（仅开发/测试环境使用）

    生产环境应使用 Alembic 迁移，此方法不会修改已存在的表结构。
    """
    from app import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
