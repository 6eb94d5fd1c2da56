"""异常模块

使用示例:
    from ynest.exceptions import Err, ErrorCode, MoveNotPossibleException

    raise Err.move_not_possible("目标节点在其他树中", code=ErrorCode.MOVE_ACROSS_FOREST)
"""

from .exceptions import (
    ErrorCode,
    ErrorCodeType,
    BusinessException,
    MoveNotPossibleException,
    NodeNotFoundException,
    DepthRepairException,
    TreeIntegrityException,
    Err,
)

__all__ = [
    "ErrorCode",
    "ErrorCodeType",
    "BusinessException",
    "MoveNotPossibleException",
    "NodeNotFoundException",
    "DepthRepairException",
    "TreeIntegrityException",
    "Err",
]
