"""Operation context carried into every log record.

The engine wraps each public operation in :func:`operation_context`
so log lines emitted anywhere underneath (allocator, ledger, signing)
carry the authority name and the operation.
"""

from __future__ import annotations

import contextlib
from contextvars import ContextVar
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

current_authority: ContextVar[str | None] = ContextVar("current_authority", default=None)
current_operation: ContextVar[str | None] = ContextVar("current_operation", default=None)


@contextlib.contextmanager
def operation_context(authority: str | None, operation: str) -> Iterator[None]:
    """Bind *authority* and *operation* for the duration of the block."""
    auth_token = current_authority.set(authority)
    op_token = current_operation.set(operation)
    try:
        yield
    finally:
        current_operation.reset(op_token)
        current_authority.reset(auth_token)
