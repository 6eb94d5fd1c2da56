"""事务上下文

管理单个事务的生命周期
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Dict, Any, Callable

from sqlalchemy.orm import Session

from ynest.log import get_logger

from .state import TransactionState
from .propagation import TransactionPropagation
from .hooks import TransactionHooks, TransactionHookType
from .exceptions import (
    TransactionNotActiveError,
    TransactionAlreadyCommittedError,
)

logger = get_logger("ynest.orm.transaction")


class TransactionContext:
    """事务上下文

    负责状态跟踪、保存点、钩子执行和提交抑制。

    使用示例:
        with TransactionContext(session) as tx:
            node.save()

            with tx.savepoint():
                risky_operation()

            @tx.after_commit
            def on_committed(ctx):
                notify()
    """

    def __init__(
        self,
        session: Session,
        auto_commit: bool = True,
        propagation: TransactionPropagation = None,
        suppress_commit: bool = True
    ):
        """初始化事务上下文

        Args:
            session: SQLAlchemy Session 对象
            auto_commit: 是否在上下文结束时自动提交
            propagation: 事务传播行为
            suppress_commit: 是否抑制内部的 commit=True 调用
        """
        self._session = session
        self._auto_commit = auto_commit
        self._propagation = propagation or TransactionPropagation.REQUIRED
        self._suppress_commit = suppress_commit
        self._state = TransactionState.INACTIVE
        self._allow_commit_depth = 0
        self._savepoint_counter = 0
        self._hooks = TransactionHooks()
        self._nesting_level = 0

        # 在钩子之间传递数据
        self.data: Dict[str, Any] = {}

    @property
    def session(self) -> Session:
        return self._session

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == TransactionState.ACTIVE

    @property
    def nesting_level(self) -> int:
        return self._nesting_level

    @property
    def hooks(self) -> TransactionHooks:
        return self._hooks

    @property
    def propagation(self) -> TransactionPropagation:
        return self._propagation

    # ==================== 生命周期 ====================

    def begin(self) -> 'TransactionContext':
        """开始事务（SQLAlchemy 自动 begin，这里只切换状态）"""
        if self._state == TransactionState.ACTIVE:
            self._nesting_level += 1
            return self

        self._state = TransactionState.ACTIVE
        self._nesting_level = 1
        logger.debug("事务开始")
        return self

    def commit(self) -> None:
        """提交事务"""
        if self._state == TransactionState.COMMITTED:
            raise TransactionAlreadyCommittedError()
        if self._state != TransactionState.ACTIVE:
            raise TransactionNotActiveError(f"无法提交：事务状态为 {self._state.value}")

        if self._nesting_level > 1:
            self._nesting_level -= 1
            return

        try:
            self._hooks.execute_before_commit(self)
            self._session.commit()
            self._state = TransactionState.COMMITTED
            self._nesting_level = 0

            errors = self._hooks.execute_after_commit(self)
            if errors:
                logger.warning(f"{len(errors)} 个 after_commit 钩子执行失败")

            logger.debug("事务提交成功")
        except Exception as e:
            self._state = TransactionState.FAILED
            self._hooks.execute(TransactionHookType.ON_ERROR, self, error=e)
            raise

    def rollback(self) -> None:
        """回滚事务（幂等）"""
        if self._state == TransactionState.COMMITTED:
            raise TransactionAlreadyCommittedError("无法回滚：事务已提交")
        if self._state not in (TransactionState.ACTIVE, TransactionState.FAILED):
            return

        self._session.rollback()
        self._state = TransactionState.ROLLED_BACK
        self._nesting_level = 0
        self._hooks.execute(TransactionHookType.AFTER_ROLLBACK, self)
        logger.debug("事务回滚成功")

    # ==================== 保存点 ====================

    @contextmanager
    def savepoint(self, name: str = None):
        """创建保存点，块内异常只回滚到该保存点并继续抛出

        使用示例:
            with tx.savepoint("before_move"):
                node.make_child_of(target)
        """
        if not self.is_active:
            raise TransactionNotActiveError("无法创建保存点：事务未激活")

        if name is None:
            self._savepoint_counter += 1
            name = f"sp_{self._savepoint_counter}"

        nested = self._session.begin_nested()
        logger.debug(f"创建保存点: {name}")
        try:
            yield nested
        except Exception:
            if nested.is_active:
                nested.rollback()
            logger.debug(f"回滚到保存点: {name}")
            raise
        else:
            if nested.is_active:
                nested.commit()

    # ==================== 提交抑制 ====================

    @contextmanager
    def allow_commit(self):
        """临时允许 commit=True 生效"""
        self._allow_commit_depth += 1
        try:
            yield
        finally:
            self._allow_commit_depth -= 1

    def should_suppress_commit(self) -> bool:
        """CoreModel 据此判断 commit=True 是否应该被忽略"""
        return self.is_active and self._suppress_commit and self._allow_commit_depth == 0

    # ==================== 钩子装饰器 ====================

    def before_commit(self, func: Callable) -> Callable:
        self._hooks.register_func(TransactionHookType.BEFORE_COMMIT, func)
        return func

    def after_commit(self, func: Callable) -> Callable:
        self._hooks.register_func(TransactionHookType.AFTER_COMMIT, func)
        return func

    def after_rollback(self, func: Callable) -> Callable:
        self._hooks.register_func(TransactionHookType.AFTER_ROLLBACK, func)
        return func

    def on_error(self, func: Callable) -> Callable:
        self._hooks.register_func(TransactionHookType.ON_ERROR, func)
        return func

    # ==================== 上下文管理器 ====================

    def __enter__(self) -> 'TransactionContext':
        return self.begin()

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None:
            self._hooks.execute(TransactionHookType.ON_ERROR, self, error=exc_val)
            self.rollback()
            return False

        if self._auto_commit and self._nesting_level == 1:
            try:
                self.commit()
            except Exception:
                self.rollback()
                raise
        elif self._nesting_level > 1:
            self._nesting_level -= 1

        return False

    def __repr__(self) -> str:
        return (
            f"TransactionContext("
            f"state={self._state.value}, "
            f"nesting_level={self._nesting_level})"
        )
