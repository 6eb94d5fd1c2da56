"""ORM模块

提供：
- CoreModel: 核心模型基类，包含ID、时间戳、CRUD
- 数据库会话管理
- 事务管理
- 嵌套集合树形结构扩展

使用示例:
    from ynest.orm import CoreModel, init_database
    from ynest.orm.nestedset import NestedSetFieldsMixin, NestedSetMixin

    class Category(CoreModel, NestedSetFieldsMixin, NestedSetMixin):
        title = mapped_column(String(100))

    init_database("sqlite:///./tree.db")
    CoreModel.metadata.create_all(get_engine())
"""

from .core_model import Base, CoreModel, PKType
from .db_session import (
    db_manager,
    init_database,
    get_engine,
    db_session_scope,
)
from .transaction import (
    TransactionState,
    TransactionPropagation,
    TransactionContext,
    TransactionManager,
    transaction_manager,
    get_current_transaction,
    transaction_with_retry,
    run_with_retry,
)

__all__ = [
    "Base",
    "CoreModel",
    "PKType",
    "db_manager",
    "init_database",
    "get_engine",
    "db_session_scope",
    "TransactionState",
    "TransactionPropagation",
    "TransactionContext",
    "TransactionManager",
    "transaction_manager",
    "get_current_transaction",
    "transaction_with_retry",
    "run_with_retry",
]
