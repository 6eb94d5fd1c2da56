"""事务管理器

提供事务管理的统一入口
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from functools import wraps
from typing import Callable, Optional, TypeVar, Generator

from sqlalchemy.orm import Session

from ynest.log import get_logger

from .propagation import TransactionPropagation
from .context import TransactionContext
from .exceptions import PropagationError

logger = get_logger("ynest.orm.transaction")

T = TypeVar('T')

# 当前事务上下文（线程/协程安全）
_current_transaction: ContextVar[Optional[TransactionContext]] = ContextVar(
    '_current_transaction', default=None
)


def get_current_transaction() -> Optional[TransactionContext]:
    """获取当前事务上下文，不在事务中则返回 None"""
    return _current_transaction.get()


class TransactionManager:
    """事务管理器（单例）

    使用示例:
        from ynest.orm import transaction_manager as tm

        with tm.transaction() as tx:
            a.make_child_of(b)
            c.make_root()
        # 两次移动在同一个事务中提交

        @tm.transactional()
        def reorganize(ids):
            ...
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        self._default_suppress_commit = True
        self._initialized = True

    def get_session(self) -> Session:
        """获取数据库 session"""
        from ..db_session import db_manager
        return db_manager.get_session()

    @property
    def current_transaction(self) -> Optional[TransactionContext]:
        return _current_transaction.get()

    def configure(self, suppress_commit_in_transaction: bool = None) -> None:
        """配置事务管理器

        Args:
            suppress_commit_in_transaction: 是否在事务中抑制 commit=True
        """
        if suppress_commit_in_transaction is not None:
            self._default_suppress_commit = suppress_commit_in_transaction

    @contextmanager
    def transaction(
        self,
        session: Session = None,
        propagation: TransactionPropagation = TransactionPropagation.REQUIRED,
        auto_commit: bool = True,
        suppress_commit: bool = None
    ) -> Generator[TransactionContext, None, None]:
        """创建事务上下文

        Args:
            session: 数据库会话，不传则自动获取
            propagation: 事务传播行为
            auto_commit: 是否自动提交
            suppress_commit: 是否抑制内部提交，None 则使用默认配置

        注意:
            加入外层事务（REQUIRED/MANDATORY）时，内层异常不会回滚，
            捕获后应重新抛出或主动调用外层 tx.rollback()。
        """
        if session is None:
            session = self.get_session()

        if suppress_commit is None:
            suppress_commit = self._default_suppress_commit

        current = self.current_transaction
        joined = current is not None and current.is_active

        if propagation == TransactionPropagation.MANDATORY and not joined:
            raise PropagationError("MANDATORY", "必须在事务中执行")
        if propagation == TransactionPropagation.NEVER and joined:
            raise PropagationError("NEVER", "不能在事务中执行")

        if joined and propagation in (
            TransactionPropagation.REQUIRED,
            TransactionPropagation.MANDATORY,
        ):
            current._nesting_level += 1
            logger.debug(f"{propagation.value.upper()}: 加入现有事务 (level={current._nesting_level})")
            try:
                yield current
            finally:
                if current._nesting_level > 0:
                    current._nesting_level -= 1
            return

        if joined and propagation == TransactionPropagation.REQUIRES_NEW:
            logger.debug("REQUIRES_NEW: 在现有事务中创建 savepoint")
            with current.savepoint():
                yield current
            return

        ctx = TransactionContext(
            session=session,
            auto_commit=auto_commit,
            propagation=propagation,
            suppress_commit=suppress_commit
        )

        token = _current_transaction.set(ctx)
        try:
            with ctx:
                yield ctx
        finally:
            _current_transaction.reset(token)

    def transactional(
        self,
        propagation: TransactionPropagation = TransactionPropagation.REQUIRED,
        suppress_commit: bool = None
    ):
        """事务装饰器

        使用示例:
            @tm.transactional()
            def regroup(node, target):
                node.make_child_of(target)
        """
        def decorator(func: Callable[..., T]) -> Callable[..., T]:
            @wraps(func)
            def wrapper(*args, **kwargs) -> T:
                with self.transaction(
                    propagation=propagation,
                    suppress_commit=suppress_commit
                ):
                    return func(*args, **kwargs)
            return wrapper

        return decorator

    def is_in_transaction(self) -> bool:
        """检查当前是否在事务中"""
        tx = self.current_transaction
        return tx is not None and tx.is_active


# 全局单例
transaction_manager = TransactionManager()
