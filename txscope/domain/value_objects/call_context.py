"""CallContext - 调用链上下文

职责：
1. 沿调用链（usecase → repository → sub-repository）传递键值对
2. 传递截止时间（deadline）与取消信号
3. 派生子上下文时不修改父上下文

设计原则：
- 值对象：不可变（frozen dataclass），派生即新建节点
- 链式结构：子节点持有父节点引用，查找时由近及远遍历
- 键使用 ContextKey：按对象身份比较，不同模块即使同名也不会冲突
- 无锁：节点创建后不再修改，唯一可变状态是取消用的 threading.Event

为什么不用全局状态或 contextvars？
- 调用方显式传递 ctx，数据流一目了然
- 兄弟调用拿到的是同一个父 ctx，天然看不到彼此派生出的子 ctx

示例：
    ctx = background().with_timeout(5)
    child = ctx.with_value(USER_KEY, "u_123")
    child.value(USER_KEY)   # "u_123"
    ctx.value(USER_KEY)     # None（父上下文不受影响）
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from txscope.domain.exceptions import ContextCancelledError, DeadlineExceededError


class ContextKey:
    """上下文键

    相等性和哈希都基于对象身份，name 只用于调试输出。
    """

    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"ContextKey({self.name!r})"


@dataclass(frozen=True, slots=True, eq=False)
class CallContext:
    """不可变的调用链上下文节点

    注意：不建议直接构造，请从 background() 开始派生
    """

    parent: CallContext | None = field(default=None, repr=False)
    key: ContextKey | None = None
    value_: Any = field(default=None, repr=False)
    # 生效的截止时间（time.monotonic() 时间轴），创建时已与父节点取较早者
    deadline: float | None = None
    cancel_events: tuple[threading.Event, ...] = field(default=(), repr=False)

    # ==================== 派生 ====================

    def with_value(self, key: ContextKey, value: Any) -> CallContext:
        if not isinstance(key, ContextKey):
            raise TypeError(f"context key must be a ContextKey, got {type(key).__name__}")
        return CallContext(
            parent=self,
            key=key,
            value_=value,
            deadline=self.deadline,
            cancel_events=self.cancel_events,
        )

    def with_deadline(self, deadline: float) -> CallContext:
        """派生带截止时间的子上下文（取与继承值中较早的一个）"""
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        return CallContext(
            parent=self,
            deadline=deadline,
            cancel_events=self.cancel_events,
        )

    def with_timeout(self, seconds: float) -> CallContext:
        return self.with_deadline(time.monotonic() + seconds)

    def with_cancel(self) -> tuple[CallContext, Callable[[], None]]:
        """派生可取消的子上下文

        Returns:
            (子上下文, cancel 函数)；cancel 只影响子上下文及其后代
        """
        event = threading.Event()
        child = CallContext(
            parent=self,
            deadline=self.deadline,
            cancel_events=(*self.cancel_events, event),
        )
        return child, event.set

    # ==================== 查询 ====================

    def lookup(self, key: ContextKey) -> tuple[Any, bool]:
        """由近及远查找 key

        Returns:
            (value, found)；值本身可以是 None，所以用 found 区分"未设置"
        """
        node: CallContext | None = self
        while node is not None:
            if node.key is key:
                return node.value_, True
            node = node.parent
        return None, False

    def value(self, key: ContextKey, default: Any = None) -> Any:
        found_value, found = self.lookup(key)
        return found_value if found else default

    def remaining(self) -> float | None:
        """距截止时间的剩余秒数；没有截止时间时返回 None"""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def cancelled(self) -> bool:
        return any(event.is_set() for event in self.cancel_events)

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def raise_if_done(self) -> None:
        """上下文已结束时抛出异常（取消优先于超时）

        Raises:
            ContextCancelledError: 已取消
            DeadlineExceededError: 已超过截止时间
        """
        if self.cancelled:
            raise ContextCancelledError()
        if self.expired:
            raise DeadlineExceededError()


_BACKGROUND = CallContext()


def background() -> CallContext:
    """根上下文：无值、无截止时间、不可取消（全局共享同一个实例）"""
    return _BACKGROUND


__all__ = ["CallContext", "ContextKey", "background"]
