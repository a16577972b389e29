"""Context Carrier - 在 CallContext 中存取事务句柄

每个后端族使用独立的 ContextKey；attach 是唯一的写入方。
"""

from __future__ import annotations

from typing import TypeVar

from txscope.domain.value_objects.call_context import CallContext, ContextKey

TxT = TypeVar("TxT")


def attach_transaction(ctx: CallContext, key: ContextKey, tx: object) -> CallContext:
    return ctx.with_value(key, tx)


def extract_transaction(
    ctx: CallContext, key: ContextKey, tx_type: type[TxT]
) -> tuple[TxT | None, bool]:
    """按类型检查取出事务句柄

    key 下的值类型不符时视为未找到。
    """
    value, found = ctx.lookup(key)
    if not found or not isinstance(value, tx_type):
        return None, False
    return value, True


__all__ = ["attach_transaction", "extract_transaction"]
