"""TransactionScope - 事务传播（复用或开启）

业务场景:
    - usecase → repository → sub-repository 的任意深度调用链共享同一个事务
    - 最外层调用开启事务，内层调用全部复用
    - 是否提交只由最外层工作单元的结果决定

职责:
    1. 判断 ctx 中是否已有本后端族的事务：有则复用，无则 begin
    2. 把新事务挂到子 ctx 上，运行工作单元
    3. 正常返回 → commit；抛出任何异常 → rollback 后原样重新抛出
    4. 解析执行面：有事务返回事务句柄，否则返回共享的后端句柄

事务边界:
    - 成功: commit（commit 失败直接抛给调用方）
    - 失败: rollback (best-effort)，回滚失败交给观察者，绝不覆盖原始异常
    - 非 Exception 的 BaseException（KeyboardInterrupt、CancelledError 等）同样先回滚再原样抛出

同一套控制流按执行模型实现两次（TransactionScope / AsyncTransactionScope），
再按后端族各实例化一次（关系型、时序），各自只管理自己的句柄。
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from txscope.application.ports.transaction_manager import (
    AsyncQueryExecutor,
    AsyncTransactionBackend,
    AsyncTransactionHandle,
    QueryExecutor,
    TransactionBackend,
    TransactionHandle,
)
from txscope.application.services.context_carrier import (
    attach_transaction,
    extract_transaction,
)
from txscope.domain.value_objects.call_context import CallContext, ContextKey

logger = logging.getLogger(__name__)

T = TypeVar("T")
BackendT = TypeVar("BackendT")


@dataclass(frozen=True)
class RollbackFailure:
    """回滚失败信息（交给观察者）

    Attributes:
        backend: 后端族名称（如 postgres、timescale）
        error: rollback 自身抛出的异常
        cause: 触发回滚的原始异常（最终抛给调用方的那个）
    """

    backend: str
    error: Exception
    cause: BaseException


RollbackObserver = Callable[[RollbackFailure], None]


def log_rollback_failure(failure: RollbackFailure) -> None:
    """默认观察者：记录 warning 日志"""
    logger.warning(
        "%s rollback failed while handling %s",
        failure.backend,
        type(failure.cause).__name__,
        exc_info=failure.error,
    )


class _ScopeBase(Generic[BackendT]):
    def __init__(
        self,
        backend: BackendT,
        key: ContextKey,
        *,
        name: str,
        on_rollback_error: RollbackObserver | None = None,
    ) -> None:
        """初始化事务作用域

        Args:
            backend: 后端句柄（begin / commit / rollback + 执行面）
            key: 本后端族在 CallContext 中使用的键
            name: 后端族名称，用于日志
            on_rollback_error: 回滚失败观察者，默认记录日志
        """
        self._backend = backend
        self._key = key
        self.name = name
        self._on_rollback_error = on_rollback_error or log_rollback_failure

    @property
    def backend(self) -> BackendT:
        return self._backend

    @property
    def key(self) -> ContextKey:
        return self._key

    def _extract(self, ctx: CallContext) -> tuple[Any, bool]:
        return extract_transaction(ctx, self._key, self._backend.transaction_type)  # type: ignore[attr-defined]

    def in_transaction(self, ctx: CallContext) -> bool:
        _, found = self._extract(ctx)
        return found

    def _log_abort(self, cause: BaseException) -> None:
        if isinstance(cause, Exception):
            logger.info("Rolling back %s transaction: %s", self.name, type(cause).__name__)
        else:
            logger.warning(
                "Rolling back %s transaction after abnormal exit: %s",
                self.name,
                type(cause).__name__,
            )

    def _report_rollback_failure(self, error: Exception, cause: BaseException) -> None:
        try:
            self._on_rollback_error(RollbackFailure(self.name, error, cause))
        except Exception:
            # 观察者失败不能覆盖原始异常
            logger.exception("Rollback observer for %s raised", self.name)


class TransactionScope(_ScopeBase[TransactionBackend]):
    """同步事务作用域（关系型后端）

    使用示例：
        scope = TransactionScope(SQLAlchemyDatabase(engine), POSTGRES_TX_KEY, name="postgres")

        def transfer(ctx):
            scope.executor(ctx).execute(ctx, "UPDATE ...")
            return scope.run_in_transaction(ctx, audit_repo.append)  # 复用同一事务

        scope.run_in_transaction(background(), transfer)
    """

    def current(self, ctx: CallContext) -> TransactionHandle | None:
        """取出 ctx 中本后端族的事务句柄，没有则返回 None"""
        tx, _ = self._extract(ctx)
        return tx

    def executor(self, ctx: CallContext) -> QueryExecutor:
        """解析执行面

        有事务返回事务句柄，否则返回后端句柄；Repository 不需要自己判断。
        """
        tx, found = self._extract(ctx)
        if found:
            return tx
        return self._backend

    @contextmanager
    def transaction(self, ctx: CallContext) -> Iterator[CallContext]:
        """事务上下文管理器

        Yields:
            已挂载事务的 ctx（复用时即原 ctx）
        """
        if self.in_transaction(ctx):
            logger.debug("Reusing %s transaction", self.name)
            yield ctx
            return

        tx = self._backend.begin(ctx)
        logger.debug("Began %s transaction", self.name)
        tx_ctx = attach_transaction(ctx, self._key, tx)
        try:
            yield tx_ctx
        except BaseException as exc:
            self._rollback(ctx, tx, exc)
            raise
        self._backend.commit(ctx, tx)
        logger.debug("Committed %s transaction", self.name)

    def run_in_transaction(self, ctx: CallContext, fn: Callable[[CallContext], T]) -> T:
        """在事务中执行 fn

        Returns:
            fn 的返回值（已提交）

        Raises:
            begin / commit 失败的异常，或 fn 抛出的原始异常（已回滚）
        """
        with self.transaction(ctx) as tx_ctx:
            return fn(tx_ctx)

    def _rollback(self, ctx: CallContext, tx: TransactionHandle, cause: BaseException) -> None:
        self._log_abort(cause)
        try:
            self._backend.rollback(ctx, tx)
        except Exception as error:
            self._report_rollback_failure(error, cause)


class AsyncTransactionScope(_ScopeBase[AsyncTransactionBackend]):
    """异步事务作用域（时序后端）

    与 TransactionScope 控制流一致，begin / commit / rollback 均为协程。
    """

    def current(self, ctx: CallContext) -> AsyncTransactionHandle | None:
        tx, _ = self._extract(ctx)
        return tx

    def executor(self, ctx: CallContext) -> AsyncQueryExecutor:
        tx, found = self._extract(ctx)
        if found:
            return tx
        return self._backend

    @asynccontextmanager
    async def transaction(self, ctx: CallContext) -> AsyncIterator[CallContext]:
        if self.in_transaction(ctx):
            logger.debug("Reusing %s transaction", self.name)
            yield ctx
            return

        tx = await self._backend.begin(ctx)
        logger.debug("Began %s transaction", self.name)
        tx_ctx = attach_transaction(ctx, self._key, tx)
        try:
            yield tx_ctx
        except BaseException as exc:
            await self._rollback(ctx, tx, exc)
            raise
        await self._backend.commit(ctx, tx)
        logger.debug("Committed %s transaction", self.name)

    async def run_in_transaction(
        self, ctx: CallContext, fn: Callable[[CallContext], Awaitable[T]]
    ) -> T:
        async with self.transaction(ctx) as tx_ctx:
            return await fn(tx_ctx)

    async def _rollback(
        self, ctx: CallContext, tx: AsyncTransactionHandle, cause: BaseException
    ) -> None:
        self._log_abort(cause)
        try:
            await self._backend.rollback(ctx, tx)
        except Exception as error:
            self._report_rollback_failure(error, cause)


__all__ = [
    "AsyncTransactionScope",
    "RollbackFailure",
    "RollbackObserver",
    "TransactionScope",
    "log_rollback_failure",
]
