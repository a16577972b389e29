"""BaseRepository - PostgreSQL / TimescaleDB 事务传播基类

职责：
- 为 PostgreSQL（同步 Engine）和 TimescaleDB（AsyncEngine）各提供一个事务作用域
- 让多个 Repository 在同一个 CallContext 上共享同一个事务
- 提供执行面解析：Repository 只管写 SQL，不需要判断当前是否在事务中

为什么事务键定义在模块级别？
- 不同的 Repository 实例必须看到同一个事务
- 键按身份比较，其它模块不可能构造出相同的键

使用示例：
    class OrderRepository(BaseRepository):
        def add(self, ctx, order_id):
            self.postgres_executor(ctx).execute(
                ctx, "INSERT INTO orders (id) VALUES (:id)", {"id": order_id}
            )

    class PlaceOrderUseCase:
        def execute(self, ctx, order_id):
            return self.tx.with_postgres_tx(ctx, lambda tx_ctx: self.orders.add(tx_ctx, order_id))
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager, AbstractContextManager
from typing import TypeVar

from sqlalchemy import Engine
from sqlalchemy.ext.asyncio import AsyncEngine

from txscope.application.ports.transaction_manager import (
    AsyncQueryExecutor,
    AsyncTransactionHandle,
    QueryExecutor,
    TransactionHandle,
)
from txscope.application.services.transaction_scope import (
    AsyncTransactionScope,
    RollbackObserver,
    TransactionScope,
)
from txscope.domain.value_objects.call_context import CallContext, ContextKey
from txscope.infrastructure.database.transaction_manager import (
    AsyncSQLAlchemyDatabase,
    SQLAlchemyDatabase,
)

T = TypeVar("T")

POSTGRES_TX_KEY = ContextKey("postgres_tx")
TIMESCALE_TX_KEY = ContextKey("timescale_tx")


class BaseRepository:
    """事务传播基类（实现 TxRepository）

    依赖:
        - postgres_engine: PostgreSQL 同步引擎
        - timescale_engine: TimescaleDB 异步引擎
    """

    def __init__(
        self,
        postgres_engine: Engine,
        timescale_engine: AsyncEngine,
        *,
        on_rollback_error: RollbackObserver | None = None,
    ) -> None:
        self._postgres = TransactionScope(
            SQLAlchemyDatabase(postgres_engine, name="postgres"),
            POSTGRES_TX_KEY,
            name="postgres",
            on_rollback_error=on_rollback_error,
        )
        self._timescale = AsyncTransactionScope(
            AsyncSQLAlchemyDatabase(timescale_engine, name="timescale"),
            TIMESCALE_TX_KEY,
            name="timescale",
            on_rollback_error=on_rollback_error,
        )

    @property
    def postgres_db(self) -> SQLAlchemyDatabase:
        return self._postgres.backend  # type: ignore[return-value]

    @property
    def timescale_db(self) -> AsyncSQLAlchemyDatabase:
        return self._timescale.backend  # type: ignore[return-value]

    # ==================== 事务 ====================

    def with_postgres_tx(self, ctx: CallContext, fn: Callable[[CallContext], T]) -> T:
        """在 PostgreSQL 事务中执行 fn

        ctx 中已有事务时直接复用；否则开启新事务，
        fn 正常返回则提交，抛出异常则回滚并原样抛出。
        """
        return self._postgres.run_in_transaction(ctx, fn)

    async def with_timescale_tx(
        self, ctx: CallContext, fn: Callable[[CallContext], Awaitable[T]]
    ) -> T:
        """在 TimescaleDB 事务中执行 fn（规则同 with_postgres_tx）"""
        return await self._timescale.run_in_transaction(ctx, fn)

    def postgres_transaction(self, ctx: CallContext) -> AbstractContextManager[CallContext]:
        return self._postgres.transaction(ctx)

    def timescale_transaction(
        self, ctx: CallContext
    ) -> AbstractAsyncContextManager[CallContext]:
        return self._timescale.transaction(ctx)

    # ==================== 事务提取 ====================

    def get_postgres_tx(self, ctx: CallContext) -> tuple[TransactionHandle | None, bool]:
        tx = self._postgres.current(ctx)
        return tx, tx is not None

    def get_timescale_tx(
        self, ctx: CallContext
    ) -> tuple[AsyncTransactionHandle | None, bool]:
        tx = self._timescale.current(ctx)
        return tx, tx is not None

    # ==================== 执行面 ====================

    def postgres_executor(self, ctx: CallContext) -> QueryExecutor:
        """有事务返回事务句柄，否则返回 SQLAlchemyDatabase"""
        return self._postgres.executor(ctx)

    def timescale_executor(self, ctx: CallContext) -> AsyncQueryExecutor:
        return self._timescale.executor(ctx)


__all__ = ["BaseRepository", "POSTGRES_TX_KEY", "TIMESCALE_TX_KEY"]
