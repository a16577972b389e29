"""应用服务 - 事务作用域与上下文载体"""

from txscope.application.services.context_carrier import (
    attach_transaction,
    extract_transaction,
)
from txscope.application.services.transaction_scope import (
    AsyncTransactionScope,
    RollbackFailure,
    RollbackObserver,
    TransactionScope,
    log_rollback_failure,
)

__all__ = [
    "AsyncTransactionScope",
    "RollbackFailure",
    "RollbackObserver",
    "TransactionScope",
    "attach_transaction",
    "extract_transaction",
    "log_rollback_failure",
]
