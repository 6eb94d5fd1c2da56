"""
ynest - 基于 SQLAlchemy 的嵌套集合树形结构库

提供左右值树的查询、移动、深度修复，以及配套的日志、配置、异常与事务管理
"""

from .version import __version__, __author__, __description__

# 导出异常
from .exceptions import (
    ErrorCode,
    BusinessException,
    MoveNotPossibleException,
    NodeNotFoundException,
    DepthRepairException,
    TreeIntegrityException,
    Err,
)

# 导出日志
from .log import get_logger, setup_root_logger

# 导出配置
from .config import AppSettings, NestedSetSettings, load_yaml_config

# 导出ORM
from .orm import (
    CoreModel,
    init_database,
    get_engine,
    db_session_scope,
    transaction_manager,
)
from .orm.nestedset import (
    NestedSetMixin,
    NestedSetFieldsMixin,
    MovePosition,
    MoveState,
    MoveResult,
    MoveObserver,
    CallbackMoveObserver,
)

__all__ = [
    "__version__",
    "__author__",
    "__description__",
    "ErrorCode",
    "BusinessException",
    "MoveNotPossibleException",
    "NodeNotFoundException",
    "DepthRepairException",
    "TreeIntegrityException",
    "Err",
    "get_logger",
    "setup_root_logger",
    "AppSettings",
    "NestedSetSettings",
    "load_yaml_config",
    "CoreModel",
    "init_database",
    "get_engine",
    "db_session_scope",
    "transaction_manager",
    "NestedSetMixin",
    "NestedSetFieldsMixin",
    "MovePosition",
    "MoveState",
    "MoveResult",
    "MoveObserver",
    "CallbackMoveObserver",
]
