"""领域值对象"""

from txscope.domain.value_objects.call_context import CallContext, ContextKey, background

__all__ = ["CallContext", "ContextKey", "background"]
