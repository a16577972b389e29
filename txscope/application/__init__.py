"""应用层 - 事务边界

Application 层职责：
1. 事务边界：决定复用已有事务还是开启新事务
2. 提交/回滚：只由最外层工作单元的结果决定
3. 执行面解析：Repository 无需判断当前是否处于事务中

设计原则：
- 依赖倒置：依赖 Port 接口，不依赖具体的 Engine
- 可测试性：使用 Fake 后端进行单元测试
"""

from txscope.application.services import (
    AsyncTransactionScope,
    RollbackFailure,
    TransactionScope,
)

__all__ = ["AsyncTransactionScope", "RollbackFailure", "TransactionScope"]
