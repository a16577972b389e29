"""数据库引擎配置

为什么需要单独的 engine 模块？
1. 分离关注点：引擎构造与事务传播逻辑分开
2. 延迟初始化：只在调用工厂函数时创建引擎，导入本模块不需要数据库驱动
3. 便于测试：可以传入不同的 Settings

设计说明：
- PostgreSQL 使用同步引擎（create_engine）
- TimescaleDB 使用异步引擎（create_async_engine）
- 连接池参数直接交给驱动连接池；SQLite 不传（其连接池类型不接受这些参数）
"""

from typing import Any

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from txscope.config import Settings
from txscope.config import settings as default_settings
from txscope.infrastructure.database.repositories.base_repository import BaseRepository


def _engine_options(url: str, settings: Settings) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.debug}
    if make_url(url).get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.pool_size,  # 连接池大小
            max_overflow=settings.max_overflow,  # 最大溢出连接数
            pool_pre_ping=settings.pool_pre_ping,  # 连接前检查（避免使用失效连接）
        )
    return options


def get_sync_engine(settings: Settings | None = None) -> Engine:
    """创建 PostgreSQL 同步引擎

    返回：
        Engine: 同步数据库引擎
    """
    settings = settings or default_settings
    return create_engine(settings.postgres_url, **_engine_options(settings.postgres_url, settings))


def get_async_engine(settings: Settings | None = None) -> AsyncEngine:
    """创建 TimescaleDB 异步引擎

    返回：
        AsyncEngine: 异步数据库引擎
    """
    settings = settings or default_settings
    return create_async_engine(
        settings.timescale_url, **_engine_options(settings.timescale_url, settings)
    )


def build_base_repository(settings: Settings | None = None) -> BaseRepository:
    """按配置创建两个引擎并组装 BaseRepository"""
    return BaseRepository(get_sync_engine(settings), get_async_engine(settings))


__all__ = ["build_base_repository", "get_async_engine", "get_sync_engine"]
