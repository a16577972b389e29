"""TransactionManager Port - 事务传播抽象

目标：
- UseCase / Repository 依赖抽象事务控制，避免直接耦合数据库实现（DIP）
- 基础设施层提供 SQLAlchemy 等具体实现

这里定义三类能力：
1. 执行面（QueryExecutor）：execute / query / query_row，事务句柄和后端句柄都满足
2. 事务句柄（TransactionHandle）：执行面 + commit / rollback
3. 事务后端（TransactionBackend）：执行面 + begin，外加 commit / rollback 适配，
   让通用的 TransactionScope 不必关心各后端 commit 是否需要 ctx

同步（关系型）与异步（时序）各一套，签名保持一致。
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol, TypeVar, runtime_checkable

from sqlalchemy.engine import Row
from sqlalchemy.sql import Executable

from txscope.domain.value_objects.call_context import CallContext

T = TypeVar("T")

Statement = str | Executable
Params = dict[str, Any] | Sequence[dict[str, Any]] | None


# ==================== 同步 ====================


@runtime_checkable
class QueryExecutor(Protocol):
    def execute(self, ctx: CallContext, statement: Statement, params: Params = None) -> int: ...

    def query(
        self, ctx: CallContext, statement: Statement, params: Params = None
    ) -> list[Row[Any]]: ...

    def query_row(
        self, ctx: CallContext, statement: Statement, params: Params = None
    ) -> Row[Any] | None: ...


@runtime_checkable
class TransactionHandle(QueryExecutor, Protocol):
    """同步事务句柄：commit / rollback 不接收 ctx"""

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class TransactionBackend(QueryExecutor, Protocol):
    """同步事务后端：begin 返回事务句柄，commit / rollback 由后端适配"""

    transaction_type: type

    def begin(self, ctx: CallContext) -> TransactionHandle: ...

    def commit(self, ctx: CallContext, tx: Any) -> None: ...

    def rollback(self, ctx: CallContext, tx: Any) -> None: ...


@runtime_checkable
class TransactionManager(Protocol):
    """UseCase 依赖的事务边界（TransactionScope 实现）"""

    def run_in_transaction(self, ctx: CallContext, fn: Callable[[CallContext], T]) -> T: ...


# ==================== 异步 ====================


@runtime_checkable
class AsyncQueryExecutor(Protocol):
    async def execute(
        self, ctx: CallContext, statement: Statement, params: Params = None
    ) -> int: ...

    async def query(
        self, ctx: CallContext, statement: Statement, params: Params = None
    ) -> list[Row[Any]]: ...

    async def query_row(
        self, ctx: CallContext, statement: Statement, params: Params = None
    ) -> Row[Any] | None: ...


@runtime_checkable
class AsyncTransactionHandle(AsyncQueryExecutor, Protocol):
    """异步事务句柄：commit / rollback 接收 ctx（受截止时间约束）"""

    async def commit(self, ctx: CallContext) -> None: ...

    async def rollback(self, ctx: CallContext) -> None: ...


class AsyncTransactionBackend(AsyncQueryExecutor, Protocol):
    transaction_type: type

    async def begin(self, ctx: CallContext) -> AsyncTransactionHandle: ...

    async def commit(self, ctx: CallContext, tx: Any) -> None: ...

    async def rollback(self, ctx: CallContext, tx: Any) -> None: ...


@runtime_checkable
class AsyncTransactionManager(Protocol):
    async def run_in_transaction(
        self, ctx: CallContext, fn: Callable[[CallContext], Awaitable[T]]
    ) -> T: ...


# ==================== UseCase 视角 ====================


class TxRepository(Protocol):
    """UseCase 层使用的事务契约

    已存在事务时复用；否则开启新事务，并根据 fn 的结果自动提交或回滚。
    """

    def with_postgres_tx(self, ctx: CallContext, fn: Callable[[CallContext], T]) -> T: ...

    async def with_timescale_tx(
        self, ctx: CallContext, fn: Callable[[CallContext], Awaitable[T]]
    ) -> T: ...
