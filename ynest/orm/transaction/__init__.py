"""事务管理模块

提供：
- 事务传播行为（REQUIRED, REQUIRES_NEW, MANDATORY, NEVER）
- 保存点支持
- 事务钩子（before_commit, after_commit 等）
- 提交抑制机制（事务上下文中自动忽略 commit=True）
- 带退避的重试

使用示例:
    from ynest.orm import transaction_manager as tm

    with tm.transaction() as tx:
        node.make_child_of(target)

        @tx.after_commit
        def on_committed(ctx):
            refresh_cache()
"""

from .state import TransactionState
from .exceptions import (
    TransactionError,
    TransactionNotActiveError,
    TransactionAlreadyCommittedError,
    HookExecutionError,
    PropagationError,
)
from .propagation import TransactionPropagation
from .hooks import TransactionHookType, TransactionHooks
from .context import TransactionContext
from .manager import (
    TransactionManager,
    transaction_manager,
    get_current_transaction,
)
from .retry import run_with_retry, transaction_with_retry

__all__ = [
    "TransactionState",
    "TransactionError",
    "TransactionNotActiveError",
    "TransactionAlreadyCommittedError",
    "HookExecutionError",
    "PropagationError",
    "TransactionPropagation",
    "TransactionHookType",
    "TransactionHooks",
    "TransactionContext",
    "TransactionManager",
    "transaction_manager",
    "get_current_transaction",
    "run_with_retry",
    "transaction_with_retry",
]
