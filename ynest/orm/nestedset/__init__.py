"""嵌套集合（Nested Set）树形结构扩展

主要组件:
- NestedSetMixin: 树形查询与移动方法 Mixin
- NestedSetFieldsMixin: lft / rgt / depth / parent_id 字段定义
- TreeSchema: 模型的左右值列描述
- ContainmentQuery: 基于区间包含的查询
- MovePlanner / MoveExecutor: 移动规划与执行
- MoveObserver: 移动事件观察者
- ForestLock: 同一棵树上移动的串行化

使用示例:
    from ynest.orm import CoreModel
    from ynest.orm.nestedset import NestedSetFieldsMixin, NestedSetMixin

    class Region(CoreModel, NestedSetFieldsMixin, NestedSetMixin):
        __tree_forest_by__ = "tenant_id"

        tenant_id = mapped_column(String(32))
        name = mapped_column(String(50))

    east = Region(tenant_id="t1", name="华东").save(commit=True)
    shanghai = Region(tenant_id="t1", name="上海").save(commit=True)
    shanghai.make_child_of(east)

    east.get_children()        # [shanghai]
    Region.validate_tree()     # []
"""

from .boundary import NodeBoundary
from .schema import TreeSchema
from .queries import ContainmentQuery
from .planner import (
    MovePosition,
    Resolved,
    ById,
    TargetRef,
    target_ref,
    MovePlan,
    compute_plan,
    MovePlanner,
)
from .events import MoveObserver, CallbackMoveObserver
from .locks import (
    ForestLock,
    NullForestLock,
    LocalForestLock,
    RowForestLock,
    default_forest_lock,
    forest_lock_for,
    lock_forest_rows,
)
from .executor import MoveState, MoveResult, MoveExecutor
from .fields import NestedSetFieldsMixin
from .mixin import NestedSetMixin
from .tree_utils import build_tree_list, check_nested_set

__all__ = [
    # Mixin 类
    "NestedSetMixin",
    "NestedSetFieldsMixin",

    # 引擎
    "NodeBoundary",
    "TreeSchema",
    "ContainmentQuery",
    "MovePosition",
    "Resolved",
    "ById",
    "TargetRef",
    "target_ref",
    "MovePlan",
    "compute_plan",
    "MovePlanner",
    "MoveState",
    "MoveResult",
    "MoveExecutor",

    # 观察者与锁
    "MoveObserver",
    "CallbackMoveObserver",
    "ForestLock",
    "NullForestLock",
    "LocalForestLock",
    "RowForestLock",
    "default_forest_lock",
    "forest_lock_for",
    "lock_forest_rows",

    # 工具函数
    "build_tree_list",
    "check_nested_set",
]
