"""领域层异常定义

为什么需要这些异常？
1. 语义清晰：区分"上下文已结束"和"事务句柄已终结"两类问题
2. 异常分层：本库自身的异常 vs 数据库驱动异常（SQLAlchemyError）
3. 不包装：工作单元和数据库抛出的异常原样透传，这里只定义本库自己的失败

设计原则：
- 继承自 Exception
- 简单明了（不过度设计）
"""


class TxScopeError(Exception):
    """txscope 异常基类"""

    pass


class ContextDoneError(TxScopeError):
    """CallContext 已结束（被取消或超过截止时间）

    用途：
    - 后端在 begin / commit / rollback / 查询前检查上下文
    - 上下文已结束时立即失败，不再发起 I/O
    """

    pass


class ContextCancelledError(ContextDoneError):
    """CallContext 被显式取消"""

    def __init__(self, message: str = "call context cancelled"):
        super().__init__(message)


class DeadlineExceededError(ContextDoneError, TimeoutError):
    """CallContext 超过截止时间

    同时继承 TimeoutError：调用方可以按标准超时异常统一处理。
    """

    def __init__(self, message: str = "call context deadline exceeded"):
        super().__init__(message)


class TransactionClosedError(TxScopeError):
    """事务句柄已经提交或回滚，不能再次终结或继续使用"""

    def __init__(self, backend: str):
        self.backend = backend
        super().__init__(f"{backend} 事务已终结，不能再次使用")
