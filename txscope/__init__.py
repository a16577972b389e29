"""txscope - 关系型 / 时序数据库的事务传播

最外层调用开启事务，嵌套调用通过 CallContext 复用同一个事务，
提交或回滚只由最外层工作单元的结果决定。
"""

from txscope.application.services import (
    AsyncTransactionScope,
    RollbackFailure,
    TransactionScope,
    log_rollback_failure,
)
from txscope.domain import (
    CallContext,
    ContextCancelledError,
    ContextDoneError,
    ContextKey,
    DeadlineExceededError,
    TransactionClosedError,
    TxScopeError,
    background,
)
from txscope.infrastructure.database import (
    POSTGRES_TX_KEY,
    TIMESCALE_TX_KEY,
    AsyncSQLAlchemyDatabase,
    BaseRepository,
    SQLAlchemyDatabase,
)

__version__ = "0.1.0"

__all__ = [
    "AsyncSQLAlchemyDatabase",
    "AsyncTransactionScope",
    "BaseRepository",
    "CallContext",
    "ContextCancelledError",
    "ContextDoneError",
    "ContextKey",
    "DeadlineExceededError",
    "POSTGRES_TX_KEY",
    "RollbackFailure",
    "SQLAlchemyDatabase",
    "TIMESCALE_TX_KEY",
    "TransactionClosedError",
    "TransactionScope",
    "TxScopeError",
    "background",
    "log_rollback_failure",
]
