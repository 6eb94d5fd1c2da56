"""业务异常类定义

定义树形结构操作使用的异常类体系。
"""

import copy
from enum import Enum
from typing import Optional, List, Any, Dict, Union


class ErrorCode(str, Enum):
    """错误代码枚举

    继承自 str，可以直接作为字符串使用。

    使用示例:
        from ynest import ErrorCode, MoveNotPossibleException

        try:
            node.make_child_of(child)
        except MoveNotPossibleException as e:
            if e.code == ErrorCode.MOVE_INTO_DESCENDANT:
                ...
    """

    # ==================== 通用错误 ====================
    BUSINESS_ERROR = "BUSINESS_ERROR"
    OPERATION_FAILED = "OPERATION_FAILED"

    # ==================== 移动相关 ====================
    MOVE_NOT_POSSIBLE = "MOVE_NOT_POSSIBLE"
    NODE_NOT_PERSISTED = "NODE_NOT_PERSISTED"
    INVALID_POSITION = "INVALID_POSITION"
    MOVE_TO_SELF = "MOVE_TO_SELF"
    MOVE_INTO_DESCENDANT = "MOVE_INTO_DESCENDANT"
    MOVE_ACROSS_FOREST = "MOVE_ACROSS_FOREST"
    NO_SIBLING = "NO_SIBLING"
    STALE_PLAN = "STALE_PLAN"

    # ==================== 资源相关 ====================
    NODE_NOT_FOUND = "NODE_NOT_FOUND"

    # ==================== 结构相关 ====================
    DEPTH_REPAIR_FAILED = "DEPTH_REPAIR_FAILED"
    TREE_INTEGRITY_ERROR = "TREE_INTEGRITY_ERROR"


# 类型别名，支持枚举和字符串
ErrorCodeType = Union[str, ErrorCode]


class BusinessException(Exception):
    """业务异常基类

    属性:
        message: 错误消息
        code: 错误代码（ErrorCode 枚举或字符串）
        details: 详细错误信息列表
        extra: 额外的上下文信息（节点ID、目标ID等）

    使用示例:
        raise BusinessException(
            "节点移动失败",
            code=ErrorCode.OPERATION_FAILED,
            node_id=3,
            target_id=7,
        )
    """

    def __init__(
        self,
        message: str,
        code: ErrorCodeType = ErrorCode.BUSINESS_ERROR,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        self.message = message
        self.code = code
        self.details = details or []
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            "message": self.message,
            "code": self.code,
            "details": copy.deepcopy(self.details),
            "extra": copy.deepcopy(self.extra)
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r})"
        )


class MoveNotPossibleException(BusinessException):
    """非法移动异常

    移动请求在写入任何数据之前被拒绝时抛出：
    节点未持久化、位置非法、目标为自身、目标在自身子树内、目标在其他树中。
    """

    def __init__(
        self,
        message: str = "无法执行该移动",
        code: ErrorCodeType = ErrorCode.MOVE_NOT_POSSIBLE,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        super().__init__(message=message, code=code, details=details, **extra)


class NodeNotFoundException(BusinessException):
    """节点不存在异常（按ID解析目标节点失败）"""

    def __init__(
        self,
        message: str = "节点不存在",
        code: ErrorCodeType = ErrorCode.NODE_NOT_FOUND,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        super().__init__(message=message, code=code, details=details, **extra)


class DepthRepairException(BusinessException):
    """深度修复失败异常

    结构重写已经提交，仅深度字段未能修复。
    执行器不会抛出它，而是记录在 MoveResult.depth_error 中。
    """

    def __init__(
        self,
        message: str = "深度修复失败",
        code: ErrorCodeType = ErrorCode.DEPTH_REPAIR_FAILED,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        super().__init__(message=message, code=code, details=details, **extra)


class TreeIntegrityException(BusinessException):
    """树结构完整性异常，details 中列出所有违反的约束"""

    def __init__(
        self,
        message: str = "树结构不完整",
        code: ErrorCodeType = ErrorCode.TREE_INTEGRITY_ERROR,
        details: Optional[List[str]] = None,
        **extra: Any
    ):
        super().__init__(message=message, code=code, details=details, **extra)


class Err:
    """异常快捷创建类

    使用示例:
        from ynest import Err

        raise Err.move_not_possible("不能移动到自身", code=ErrorCode.MOVE_TO_SELF)
        raise Err.not_found("目标节点不存在", node_id=42)
    """

    @staticmethod
    def move_not_possible(message: str = "无法执行该移动", **kwargs) -> MoveNotPossibleException:
        """非法移动

        Args:
            message: 错误消息
            **kwargs: 额外参数（code, details, node_id, target_id 等）
        """
        return MoveNotPossibleException(message, **kwargs)

    @staticmethod
    def not_found(message: str = "节点不存在", **kwargs) -> NodeNotFoundException:
        """节点不存在"""
        return NodeNotFoundException(message, **kwargs)

    @staticmethod
    def depth_repair(message: str = "深度修复失败", **kwargs) -> DepthRepairException:
        """深度修复失败"""
        return DepthRepairException(message, **kwargs)

    @staticmethod
    def integrity(message: str = "树结构不完整", **kwargs) -> TreeIntegrityException:
        """树结构完整性错误"""
        return TreeIntegrityException(message, **kwargs)

    @staticmethod
    def fail(message: str = "操作失败", **kwargs) -> BusinessException:
        """通用业务异常"""
        return BusinessException(message, **kwargs)
