"""事务钩子系统"""

from enum import Enum
from typing import Callable, List, Dict, Optional, TYPE_CHECKING

from ynest.log import get_logger

from .exceptions import HookExecutionError

if TYPE_CHECKING:
    from .context import TransactionContext

logger = get_logger("ynest.orm.transaction")


class TransactionHookType(str, Enum):
    """事务钩子类型"""

    BEFORE_COMMIT = "before_commit"
    """提交前（失败会阻止提交）"""

    AFTER_COMMIT = "after_commit"
    """提交后（失败不影响已提交的事务）"""

    AFTER_ROLLBACK = "after_rollback"
    """回滚后"""

    ON_ERROR = "on_error"
    """发生错误时，钩子额外接收异常对象"""


class TransactionHooks:
    """单个事务的钩子注册与执行"""

    def __init__(self):
        self._funcs: Dict[TransactionHookType, List[Callable]] = {
            hook_type: [] for hook_type in TransactionHookType
        }

    def register_func(self, hook_type: TransactionHookType, func: Callable) -> None:
        """注册函数钩子"""
        self._funcs[hook_type].append(func)

    def clear(self) -> None:
        for funcs in self._funcs.values():
            funcs.clear()

    def execute(
        self,
        hook_type: TransactionHookType,
        context: 'TransactionContext',
        error: Optional[Exception] = None,
        raise_on_error: bool = False
    ) -> List[Exception]:
        """执行指定类型的所有钩子

        Returns:
            执行过程中发生的异常列表
        """
        errors = []
        for func in self._funcs[hook_type]:
            try:
                if hook_type == TransactionHookType.ON_ERROR:
                    func(context, error)
                else:
                    func(context)
            except Exception as e:
                func_name = getattr(func, '__name__', str(func))
                hook_error = HookExecutionError(func_name, e)
                errors.append(hook_error)
                logger.error(f"钩子函数 {func_name} 执行失败: {e}")
                if raise_on_error:
                    raise hook_error from e
        return errors

    def execute_before_commit(self, context: 'TransactionContext') -> None:
        """before_commit 钩子失败会阻止提交"""
        self.execute(TransactionHookType.BEFORE_COMMIT, context, raise_on_error=True)

    def execute_after_commit(self, context: 'TransactionContext') -> List[Exception]:
        """after_commit 钩子失败仅记录日志"""
        return self.execute(TransactionHookType.AFTER_COMMIT, context)
