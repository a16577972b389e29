"""SQLAlchemy 事务后端适配器

职责：
- SQLAlchemyDatabase：关系型后端句柄（同步 Engine），可 begin，也可直接执行语句
- SQLAlchemyTransaction：同步事务句柄，commit / rollback 不接收 ctx
- AsyncSQLAlchemyDatabase / AsyncSQLAlchemyTransaction：时序后端（AsyncEngine），
  begin / commit / rollback / 查询都受 ctx 截止时间和取消信号约束

为什么事务句柄持有 Connection？
- 一个事务绑定一条连接，事务内的所有语句必须走同一条连接
- commit / rollback 之后立即归还连接，句柄随之终结，不能复用

为什么后端句柄的执行面每次都用 engine.begin()？
- 没有事务时，每条语句在自己的短事务里执行并自动提交
- 返回的行已全部取出，连接归还后仍可使用

同步与异步对 ctx 的处理不同：
- 同步（关系型）只在发起 I/O 之前检查 ctx；阻塞中的语句无法被打断，
  需要语句级超时时请在驱动侧配置（如 PostgreSQL 的 statement_timeout）
- 异步（时序）在等待期间同时监听截止时间和取消信号，先到者胜出，
  未完成的数据库调用会被取消
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from sqlalchemy import Connection, Engine, text
from sqlalchemy.engine import Row, Transaction
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncTransaction
from sqlalchemy.sql import Executable

from txscope.application.ports.transaction_manager import Params, Statement
from txscope.domain.exceptions import (
    ContextCancelledError,
    ContextDoneError,
    DeadlineExceededError,
    TransactionClosedError,
)
from txscope.domain.value_objects.call_context import CallContext

logger = logging.getLogger(__name__)

T = TypeVar("T")

# 取消信号是 threading.Event（可能由其它线程触发），只能轮询
CANCEL_POLL_INTERVAL = 0.01


def _as_statement(statement: Statement) -> Executable:
    if isinstance(statement, str):
        return text(statement)
    return statement


async def _wait_cancelled(ctx: CallContext) -> None:
    while not ctx.cancelled:
        await asyncio.sleep(CANCEL_POLL_INTERVAL)


async def _abandon(operation: asyncio.Future[Any]) -> None:
    operation.cancel()
    await asyncio.wait({operation})


async def _within_deadline(ctx: CallContext, make: Callable[[], Awaitable[T]]) -> T:
    """在 ctx 结束之前等待 make() 的结果

    截止时间和取消信号与数据库调用赛跑：ctx 先结束则取消调用并抛出对应异常；
    调用先结束则原样返回结果或原样抛出它自己的异常（包括驱动的 TimeoutError）。

    Raises:
        ContextCancelledError: ctx 已取消，或等待期间被取消
        DeadlineExceededError: ctx 已超时，或等待期间超时
    """
    ctx.raise_if_done()
    if ctx.deadline is None and not ctx.cancel_events:
        return await make()

    operation = asyncio.ensure_future(make())
    watcher = asyncio.ensure_future(_wait_cancelled(ctx)) if ctx.cancel_events else None
    waiting = {operation} if watcher is None else {operation, watcher}
    try:
        done, _ = await asyncio.wait(
            waiting, timeout=ctx.remaining(), return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        if watcher is not None:
            watcher.cancel()
        if not operation.done():
            # 外层任务被取消时也不能留下悬空的数据库调用
            operation.cancel()

    if operation in done:
        return operation.result()
    await _abandon(operation)
    if watcher is not None and watcher in done:
        raise ContextCancelledError()
    raise DeadlineExceededError()


# ==================== 同步（关系型） ====================


class SQLAlchemyTransaction:
    def __init__(
        self, connection: Connection, transaction: Transaction, *, name: str = "postgres"
    ) -> None:
        self._connection = connection
        self._transaction = transaction
        self._name = name
        self._closed = False

    @property
    def connection(self) -> Connection:
        return self._connection

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise TransactionClosedError(self._name)

    def execute(self, ctx: CallContext, statement: Statement, params: Params = None) -> int:
        self._check_open()
        ctx.raise_if_done()
        return self._connection.execute(_as_statement(statement), params).rowcount

    def query(
        self, ctx: CallContext, statement: Statement, params: Params = None
    ) -> list[Row[Any]]:
        self._check_open()
        ctx.raise_if_done()
        return list(self._connection.execute(_as_statement(statement), params).all())

    def query_row(
        self, ctx: CallContext, statement: Statement, params: Params = None
    ) -> Row[Any] | None:
        self._check_open()
        ctx.raise_if_done()
        return self._connection.execute(_as_statement(statement), params).first()

    def commit(self) -> None:
        self._check_open()
        try:
            self._transaction.commit()
        finally:
            self._close()

    def rollback(self) -> None:
        self._check_open()
        try:
            self._transaction.rollback()
        finally:
            self._close()

    def _close(self) -> None:
        self._closed = True
        self._connection.close()


class SQLAlchemyDatabase:
    """关系型后端句柄（同步 Engine）

    使用示例：
    >>> db = SQLAlchemyDatabase(create_engine("postgresql+psycopg://..."))
    >>> tx = db.begin(ctx)
    >>> tx.execute(ctx, "INSERT INTO orders (id) VALUES (:id)", {"id": 1})
    >>> tx.commit()
    """

    transaction_type = SQLAlchemyTransaction

    def __init__(self, engine: Engine, *, name: str = "postgres") -> None:
        self._engine = engine
        self.name = name

    @property
    def engine(self) -> Engine:
        return self._engine

    def begin(self, ctx: CallContext) -> SQLAlchemyTransaction:
        ctx.raise_if_done()
        connection = self._engine.connect()
        try:
            transaction = connection.begin()
        except BaseException:
            connection.close()
            raise
        return SQLAlchemyTransaction(connection, transaction, name=self.name)

    # 关系型驱动的 commit / rollback 不接收 ctx
    def commit(self, ctx: CallContext, tx: SQLAlchemyTransaction) -> None:
        tx.commit()

    def rollback(self, ctx: CallContext, tx: SQLAlchemyTransaction) -> None:
        tx.rollback()

    def execute(self, ctx: CallContext, statement: Statement, params: Params = None) -> int:
        ctx.raise_if_done()
        with self._engine.begin() as connection:
            return connection.execute(_as_statement(statement), params).rowcount

    def query(
        self, ctx: CallContext, statement: Statement, params: Params = None
    ) -> list[Row[Any]]:
        ctx.raise_if_done()
        with self._engine.begin() as connection:
            return list(connection.execute(_as_statement(statement), params).all())

    def query_row(
        self, ctx: CallContext, statement: Statement, params: Params = None
    ) -> Row[Any] | None:
        ctx.raise_if_done()
        with self._engine.begin() as connection:
            return connection.execute(_as_statement(statement), params).first()


# ==================== 异步（时序） ====================


class AsyncSQLAlchemyTransaction:
    def __init__(
        self,
        connection: AsyncConnection,
        transaction: AsyncTransaction,
        *,
        name: str = "timescale",
    ) -> None:
        self._connection = connection
        self._transaction = transaction
        self._name = name
        self._closed = False

    @property
    def connection(self) -> AsyncConnection:
        return self._connection

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise TransactionClosedError(self._name)

    async def execute(
        self, ctx: CallContext, statement: Statement, params: Params = None
    ) -> int:
        self._check_open()
        result = await _within_deadline(
            ctx, lambda: self._connection.execute(_as_statement(statement), params)
        )
        return result.rowcount

    async def query(
        self, ctx: CallContext, statement: Statement, params: Params = None
    ) -> list[Row[Any]]:
        self._check_open()
        result = await _within_deadline(
            ctx, lambda: self._connection.execute(_as_statement(statement), params)
        )
        return list(result.all())

    async def query_row(
        self, ctx: CallContext, statement: Statement, params: Params = None
    ) -> Row[Any] | None:
        self._check_open()
        result = await _within_deadline(
            ctx, lambda: self._connection.execute(_as_statement(statement), params)
        )
        return result.first()

    async def commit(self, ctx: CallContext) -> None:
        self._check_open()
        try:
            await _within_deadline(ctx, self._transaction.commit)
        finally:
            await self._close()

    async def rollback(self, ctx: CallContext) -> None:
        """回滚并归还连接

        ctx 已结束（或回滚途中结束）时不算回滚失败：
        连接归还时连接池的 reset-on-return 会回滚未完成的事务。
        """
        self._check_open()
        try:
            await _within_deadline(ctx, self._transaction.rollback)
        except ContextDoneError as exc:
            logger.info(
                "%s rollback skipped (%s), connection pool reset will roll back",
                self._name,
                type(exc).__name__,
            )
        finally:
            await self._close()

    async def _close(self) -> None:
        self._closed = True
        await self._connection.close()


class AsyncSQLAlchemyDatabase:
    """时序后端句柄（AsyncEngine，生产环境为 TimescaleDB + asyncpg）"""

    transaction_type = AsyncSQLAlchemyTransaction

    def __init__(self, engine: AsyncEngine, *, name: str = "timescale") -> None:
        self._engine = engine
        self.name = name

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def begin(self, ctx: CallContext) -> AsyncSQLAlchemyTransaction:
        connection = await _within_deadline(ctx, self._engine.connect)
        try:
            transaction = await _within_deadline(ctx, connection.begin)
        except BaseException:
            await connection.close()
            raise
        return AsyncSQLAlchemyTransaction(connection, transaction, name=self.name)

    async def commit(self, ctx: CallContext, tx: AsyncSQLAlchemyTransaction) -> None:
        await tx.commit(ctx)

    async def rollback(self, ctx: CallContext, tx: AsyncSQLAlchemyTransaction) -> None:
        await tx.rollback(ctx)

    async def execute(
        self, ctx: CallContext, statement: Statement, params: Params = None
    ) -> int:
        async with self._engine.begin() as connection:
            result = await _within_deadline(
                ctx, lambda: connection.execute(_as_statement(statement), params)
            )
            return result.rowcount

    async def query(
        self, ctx: CallContext, statement: Statement, params: Params = None
    ) -> list[Row[Any]]:
        async with self._engine.begin() as connection:
            result = await _within_deadline(
                ctx, lambda: connection.execute(_as_statement(statement), params)
            )
            return list(result.all())

    async def query_row(
        self, ctx: CallContext, statement: Statement, params: Params = None
    ) -> Row[Any] | None:
        async with self._engine.begin() as connection:
            result = await _within_deadline(
                ctx, lambda: connection.execute(_as_statement(statement), params)
            )
            return result.first()


__all__ = [
    "AsyncSQLAlchemyDatabase",
    "AsyncSQLAlchemyTransaction",
    "SQLAlchemyDatabase",
    "SQLAlchemyTransaction",
]
