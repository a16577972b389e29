"""应用层 Ports - 事务传播需要的外部能力接口

为什么需要 Ports？
1. 依赖倒置（DIP）：Repository 依赖抽象的执行面，而不是具体的 Engine
2. 可测试性：用 Fake 后端即可验证 begin / commit / rollback 的调用次数
"""

from txscope.application.ports.transaction_manager import (
    AsyncQueryExecutor,
    AsyncTransactionBackend,
    AsyncTransactionHandle,
    AsyncTransactionManager,
    QueryExecutor,
    TransactionBackend,
    TransactionHandle,
    TransactionManager,
    TxRepository,
)

__all__ = [
    "QueryExecutor",
    "TransactionHandle",
    "TransactionBackend",
    "TransactionManager",
    "AsyncQueryExecutor",
    "AsyncTransactionHandle",
    "AsyncTransactionBackend",
    "AsyncTransactionManager",
    "TxRepository",
]
