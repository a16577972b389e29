"""数据库基础设施 - SQLAlchemy 事务后端与引擎构造

为什么需要这个模块？
1. 把 SQLAlchemy Engine / AsyncEngine 适配为事务后端
2. 集中管理引擎构造（同步 PostgreSQL + 异步 TimescaleDB）
3. 导出 BaseRepository 供具体 Repository 继承
"""

from txscope.infrastructure.database.engine import (
    build_base_repository,
    get_async_engine,
    get_sync_engine,
)
from txscope.infrastructure.database.repositories import (
    POSTGRES_TX_KEY,
    TIMESCALE_TX_KEY,
    BaseRepository,
)
from txscope.infrastructure.database.transaction_manager import (
    AsyncSQLAlchemyDatabase,
    AsyncSQLAlchemyTransaction,
    SQLAlchemyDatabase,
    SQLAlchemyTransaction,
)

__all__ = [
    "AsyncSQLAlchemyDatabase",
    "AsyncSQLAlchemyTransaction",
    "BaseRepository",
    "POSTGRES_TX_KEY",
    "SQLAlchemyDatabase",
    "SQLAlchemyTransaction",
    "TIMESCALE_TX_KEY",
    "build_base_repository",
    "get_async_engine",
    "get_sync_engine",
]
