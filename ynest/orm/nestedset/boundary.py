"""节点边界快照

NodeBoundary 是节点左右值、深度、父节点和所在树的不可变快照，
所有包含关系判断都是纯函数，不访问数据库。
"""

from dataclasses import dataclass
from typing import Any, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from .schema import TreeSchema


@dataclass(frozen=True)
class NodeBoundary:
    """节点边界快照

    属性:
        id: 节点主键
        left / right: 左右值，left < right
        depth: 深度，根为 0，None 表示尚未计算
        parent_id: 父节点主键，根节点为 None
        forest: 所在树的分区键值
    """

    id: Any
    left: int
    right: int
    depth: Optional[int] = None
    parent_id: Any = None
    forest: Tuple[Any, ...] = ()

    @classmethod
    def of(cls, node: Any, schema: "TreeSchema") -> "NodeBoundary":
        """从模型实例读取当前属性值"""
        return cls(
            id=getattr(node, schema.pk_attr),
            left=getattr(node, schema.left),
            right=getattr(node, schema.right),
            depth=getattr(node, schema.depth),
            parent_id=getattr(node, schema.parent),
            forest=schema.forest_values(node),
        )

    @property
    def size(self) -> int:
        """right - left，移动前后保持不变"""
        return self.right - self.left

    def is_root(self) -> bool:
        """深度未设置或为 0，且没有父节点"""
        return not self.depth and self.parent_id is None

    def is_leaf(self) -> bool:
        return self.right - self.left == 1

    def is_child(self) -> bool:
        return not self.is_root()

    def in_same_forest(self, other: "NodeBoundary") -> bool:
        return self.forest == other.forest

    def is_descendant_of(self, other: "NodeBoundary") -> bool:
        """左值严格落在 other 的区间内，且在同一棵树中"""
        return (
            other.left < self.left < other.right
            and self.in_same_forest(other)
        )

    def is_ancestor_of(self, other: "NodeBoundary") -> bool:
        return (
            self.left < other.left < self.right
            and self.in_same_forest(other)
        )

    def contains(self, other: "NodeBoundary") -> bool:
        """other 的区间落在自身区间内（含自身）"""
        return (
            self.left <= other.left
            and other.right <= self.right
            and self.in_same_forest(other)
        )


__all__ = ["NodeBoundary"]
