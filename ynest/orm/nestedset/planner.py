"""移动规划

校验移动请求并计算左右值重写方案，不写入任何数据。

重写方案把两个相邻区间 [a, b] 和 [c, d] 互换位置：
被移动的子树占据其中一个，目标空位占据另一个。
落在 [a, b] 的左右值加上 d - b，落在 [c, d] 的左右值加上 a - c，其余不变。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple, Union

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from ynest.exceptions import Err, ErrorCode
from ynest.log import get_logger

from .boundary import NodeBoundary
from .queries import ContainmentQuery
from .schema import TreeSchema

logger = get_logger()


class MovePosition(str, Enum):
    """移动到目标节点的哪个位置"""

    CHILD = "child"
    """成为目标的最后一个子节点"""

    LEFT = "left"
    """成为目标的前一个兄弟"""

    RIGHT = "right"
    """成为目标的后一个兄弟"""

    @classmethod
    def parse(cls, value: Union[str, "MovePosition"]) -> "MovePosition":
        try:
            return cls(value)
        except ValueError:
            raise Err.move_not_possible(
                f"非法的移动位置: {value!r}，可选值为 child / left / right",
                code=ErrorCode.INVALID_POSITION,
                position=value,
            ) from None


# ==================== 目标引用 ====================

@dataclass(frozen=True)
class Resolved:
    """已加载的目标节点"""
    node: Any


@dataclass(frozen=True)
class ById:
    """按主键引用的目标节点"""
    id: Any


TargetRef = Union[Resolved, ById]


def target_ref(value: Any) -> TargetRef:
    """把模型实例或主键包装成 TargetRef"""
    if isinstance(value, (Resolved, ById)):
        return value
    if hasattr(value, "_sa_instance_state"):
        return Resolved(value)
    return ById(value)


# ==================== 移动方案 ====================

@dataclass(frozen=True)
class MovePlan:
    """一次移动的完整重写方案

    属性:
        node: 移动前被移动节点的边界快照
        target: 目标节点的边界快照
        position: 移动位置
        bound1 / bound2: 目标空位的两个边界
        a, b, c, d: 排序后的四个边界，[a, b] 与 [c, d] 互换，span 为 (a, d)
        new_parent_id: 被移动节点的新父节点（根位置为 None）
    """

    node: NodeBoundary
    target: NodeBoundary
    position: MovePosition
    bound1: int
    bound2: int
    a: int
    b: int
    c: int
    d: int
    new_parent_id: Any = None

    @property
    def boundaries(self) -> Tuple[int, int, int, int]:
        return self.a, self.b, self.c, self.d

    @property
    def span(self) -> Tuple[int, int]:
        """需要改写的左右值范围 [a, d]"""
        return self.a, self.d

    @property
    def is_noop(self) -> bool:
        """节点已经处在目标位置

        bound1 等于节点左值：目标空位就在节点左侧。
        bound1 等于节点右值：目标空位紧贴节点右侧（减 1 修正之后）。
        """
        return self.bound1 in (self.node.left, self.node.right)

    @property
    def forest(self) -> Tuple[Any, ...]:
        return self.node.forest

    def shift(self, value: int) -> int:
        """单个左右值在重写后的新值"""
        if self.a <= value <= self.b:
            return value + (self.d - self.b)
        if self.c <= value <= self.d:
            return value + (self.a - self.c)
        return value

    def __repr__(self) -> str:
        return (
            f"MovePlan(node={self.node.id}, target={self.target.id}, "
            f"position={self.position.value}, boundaries={self.boundaries}, "
            f"new_parent_id={self.new_parent_id})"
        )


def compute_plan(node: NodeBoundary, target: NodeBoundary, position: MovePosition) -> MovePlan:
    """根据边界快照计算重写方案（纯函数，不做合法性校验）"""
    if position == MovePosition.CHILD:
        bound1 = target.right
    elif position == MovePosition.LEFT:
        bound1 = target.left
    else:
        bound1 = target.right + 1

    # 子树移出后会留下空隙，目标在右侧时需要补偿
    if bound1 > node.right:
        bound1 -= 1

    bound2 = node.right + 1 if bound1 > node.right else node.left - 1

    a, b, c, d = sorted((node.left, node.right, bound1, bound2))

    new_parent_id = target.id if position == MovePosition.CHILD else target.parent_id

    return MovePlan(
        node=node,
        target=target,
        position=position,
        bound1=bound1,
        bound2=bound2,
        a=a, b=b, c=c, d=d,
        new_parent_id=new_parent_id,
    )


class MovePlanner:
    """移动规划器

    校验顺序（任一失败都抛出 MoveNotPossibleException，且不写入数据）:
        1. 节点已持久化
        2. 位置是 child / left / right 之一
        3. 解析目标（按主键找不到时抛出 NodeNotFoundException）
        4. 目标不是节点自身
        5. 目标不在节点的子树内
        6. 目标与节点在同一棵树中

    使用示例:
        planner = MovePlanner(TreeSchema.for_model(Category), session)
        plan = planner.plan(node, target_id, "left")
        if not plan.is_noop:
            ...
    """

    def __init__(self, schema: TreeSchema, session: Session):
        self.schema = schema
        self.session = session
        self.queries = ContainmentQuery(schema, session)

    def plan(
        self,
        node: Any,
        target: Any,
        position: Union[str, MovePosition],
    ) -> MovePlan:
        if not inspect(node).has_identity:
            raise Err.move_not_possible(
                "节点尚未保存，无法移动",
                code=ErrorCode.NODE_NOT_PERSISTED,
            )

        position = MovePosition.parse(position)

        # 以数据库中的最新左右值为准
        self.session.flush()
        target_node = self.resolve(target_ref(target))
        self.session.refresh(node)

        node_b = NodeBoundary.of(node, self.schema)
        target_b = NodeBoundary.of(target_node, self.schema)

        if target_b.id == node_b.id:
            raise Err.move_not_possible(
                "不能把节点移动到自身",
                code=ErrorCode.MOVE_TO_SELF,
                node_id=node_b.id,
            )

        if target_b.is_descendant_of(node_b):
            raise Err.move_not_possible(
                "不能把节点移动到自己的子孙节点",
                code=ErrorCode.MOVE_INTO_DESCENDANT,
                node_id=node_b.id,
                target_id=target_b.id,
            )

        if not target_b.in_same_forest(node_b):
            raise Err.move_not_possible(
                "不能把节点移动到另一棵树",
                code=ErrorCode.MOVE_ACROSS_FOREST,
                node_id=node_b.id,
                target_id=target_b.id,
            )

        plan = compute_plan(node_b, target_b, position)
        logger.debug(f"移动方案: {plan!r}, noop={plan.is_noop}")
        return plan

    def resolve(self, ref: TargetRef) -> Any:
        """解析目标引用并刷新为数据库中的最新状态"""
        if isinstance(ref, ById):
            found = self.queries.get(ref.id, fresh=True)
            if found is None:
                raise Err.not_found(
                    f"目标节点不存在: {ref.id}",
                    node_id=ref.id,
                )
            return found

        state = inspect(ref.node)
        if not state.has_identity:
            raise Err.move_not_possible(
                "目标节点尚未保存",
                code=ErrorCode.NODE_NOT_PERSISTED,
            )
        if state.session is self.session:
            self.session.refresh(ref.node)
            return ref.node

        identity = state.identity
        found = self.queries.get(identity[0] if len(identity) == 1 else identity, fresh=True)
        if found is None:
            raise Err.not_found(f"目标节点不存在: {identity}", node_id=identity)
        return found


__all__ = [
    "MovePosition",
    "Resolved",
    "ById",
    "TargetRef",
    "target_ref",
    "MovePlan",
    "compute_plan",
    "MovePlanner",
]
