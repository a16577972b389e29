"""领域层 - 调用链上下文与异常定义

这一层不依赖任何数据库或框架：
- CallContext / ContextKey：调用链上下文（值对象）
- TxScopeError 及其子类：本库自身的失败
"""

from txscope.domain.exceptions import (
    ContextCancelledError,
    ContextDoneError,
    DeadlineExceededError,
    TransactionClosedError,
    TxScopeError,
)
from txscope.domain.value_objects.call_context import CallContext, ContextKey, background

__all__ = [
    "CallContext",
    "ContextKey",
    "background",
    "TxScopeError",
    "ContextDoneError",
    "ContextCancelledError",
    "DeadlineExceededError",
    "TransactionClosedError",
]
