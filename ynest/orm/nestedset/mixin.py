"""嵌套集合 Mixin

为模型提供基于左右值（Nested Set）的树形查询与移动方法。

嵌套集合模式说明：
    - 每个节点存储一个区间 [lft, rgt]，子孙节点的区间都落在祖先的区间内
    - 优点：祖先、子孙、子树统计都是单条范围查询
    - 缺点：移动节点需要改写一段连续范围内所有节点的左右值

使用示例:
    from ynest.orm import CoreModel
    from ynest.orm.nestedset import NestedSetFieldsMixin, NestedSetMixin

    class Category(CoreModel, NestedSetFieldsMixin, NestedSetMixin):
        title = mapped_column(String(100))

    books = Category(title="图书").save(commit=True)
    novel = Category(title="小说").save(commit=True)   # 新节点总是追加为根
    novel.make_child_of(books)

    books.get_descendants()   # [novel]
    novel.get_ancestors()     # [books]
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy import event, func, inspect, select
from sqlalchemy.orm import Session, object_session

from ynest.config import NestedSetSettings
from ynest.exceptions import Err, ErrorCode
from ynest.log import get_logger

from .boundary import NodeBoundary
from .events import MoveObserver
from .executor import MoveExecutor, MoveResult, MoveState
from .locks import ForestLock, lock_forest_rows
from .planner import MovePosition
from .queries import ContainmentQuery
from .schema import TreeSchema

logger = get_logger()


def _forest_arg(forest: Any) -> Optional[Tuple[Any, ...]]:
    """None 表示所有树，单个值包装为元组"""
    if forest is None or isinstance(forest, tuple):
        return forest
    return (forest,)


class NestedSetMixin:
    """嵌套集合 Mixin

    字段要求（使用者定义，或使用 NestedSetFieldsMixin）:
        - lft / rgt: 左右值
        - depth: 深度，根节点为 0
        - parent_id: 父节点ID

    可配置属性（子类可覆盖）:
        - __tree_left_field__ / __tree_right_field__: 左右值字段名
        - __tree_depth_field__ / __tree_parent_field__: 深度、父节点字段名
        - __tree_forest_by__: 分区字段名（字符串或元组），同一张表存放多棵独立的树
        - __tree_observers__: 移动观察者
        - __tree_settings__: NestedSetSettings，不设置则从环境变量读取

    注意：
        - __mapper_args__ 中的 batch=False 保证批量插入时每个节点都能看到前一个节点的右值，
          覆盖 __mapper_args__ 时需要保留
        - 移动会提交当前 session（已在事务中时除外）
    """

    __tree_left_field__: str = "lft"
    __tree_right_field__: str = "rgt"
    __tree_depth_field__: str = "depth"
    __tree_parent_field__: str = "parent_id"
    __tree_forest_by__: Union[str, Tuple[str, ...]] = ()
    __tree_observers__: Sequence[MoveObserver] = ()
    __tree_settings__: Optional[NestedSetSettings] = None

    __mapper_args__ = {"batch": False}

    # ==================== 内部工具 ====================

    @classmethod
    def tree_schema(cls) -> TreeSchema:
        return TreeSchema.for_model(cls)

    @classmethod
    def _class_session(cls) -> Session:
        return cls.query.session

    def _tree_session(self) -> Session:
        return object_session(self) or self._class_session()

    @classmethod
    def _tree_settings(cls) -> NestedSetSettings:
        return cls.__tree_settings__ or NestedSetSettings()

    @classmethod
    def tree_executor(
        cls,
        session: Session = None,
        observers: Sequence[MoveObserver] = None,
        lock: ForestLock = None,
        settings: NestedSetSettings = None,
    ) -> MoveExecutor:
        """构造移动执行器，未指定的参数使用类配置"""
        return MoveExecutor(
            cls.tree_schema(),
            session or cls._class_session(),
            observers=cls.__tree_observers__ if observers is None else observers,
            lock=lock,
            settings=settings or cls._tree_settings(),
        )

    def tree_queries(self) -> ContainmentQuery:
        return ContainmentQuery(self.tree_schema(), self._tree_session())

    def boundary(self) -> NodeBoundary:
        """当前属性值的边界快照"""
        return NodeBoundary.of(self, self.tree_schema())

    # ==================== 节点查询方法 ====================

    def get_ancestors(self) -> List:
        """祖先节点，从根节点开始"""
        return self.tree_queries().ancestors(self)

    def get_descendants(self, include_self: bool = False) -> List:
        """子孙节点，按先序遍历顺序"""
        descendants = self.tree_queries().descendants(self)
        return [self] + descendants if include_self else descendants

    def get_children(self) -> List:
        return self.tree_queries().children(self)

    def get_siblings(self) -> List:
        """兄弟节点（不包含自己），按左值排序"""
        return self.tree_queries().siblings(self)

    def get_left_sibling(self):
        return self.tree_queries().left_sibling(self)

    def get_right_sibling(self):
        return self.tree_queries().right_sibling(self)

    def get_parent(self):
        return self.tree_queries().parent(self)

    def get_root(self):
        return self.tree_queries().root(self)

    def get_descendant_count(self) -> int:
        return self.tree_queries().count_descendants(self)

    # ==================== 节点状态判断 ====================

    def is_root(self) -> bool:
        return self.boundary().is_root()

    def is_leaf(self) -> bool:
        return self.boundary().is_leaf()

    def is_child(self) -> bool:
        return self.boundary().is_child()

    def is_ancestor_of(self, node) -> bool:
        return self.boundary().is_ancestor_of(node.boundary())

    def is_descendant_of(self, node) -> bool:
        return self.boundary().is_descendant_of(node.boundary())

    def in_same_tree(self, node) -> bool:
        return self.boundary().in_same_forest(node.boundary())

    # ==================== 节点移动方法 ====================

    def move_to(
        self,
        target: Any,
        position: Union[str, MovePosition] = MovePosition.CHILD,
    ) -> MoveResult:
        """移动节点（连同整棵子树）

        Args:
            target: 目标节点实例或主键
            position: child 成为目标的最后一个子节点，
                      left / right 成为目标的前一个 / 后一个兄弟

        Raises:
            MoveNotPossibleException: 节点未保存、位置非法、目标为自身、目标在子树内、目标在其他树
            NodeNotFoundException: 按主键指定的目标不存在
        """
        return self.tree_executor(session=self._tree_session()).move(self, target, position)

    def make_child_of(self, target: Any) -> MoveResult:
        return self.move_to(target, MovePosition.CHILD)

    def make_previous_sibling_of(self, target: Any) -> MoveResult:
        return self.move_to(target, MovePosition.LEFT)

    def make_next_sibling_of(self, target: Any) -> MoveResult:
        return self.move_to(target, MovePosition.RIGHT)

    def move_left(self) -> MoveResult:
        """与左兄弟交换位置"""
        sibling = self.get_left_sibling()
        if sibling is None:
            raise Err.move_not_possible(
                "没有左兄弟节点",
                code=ErrorCode.NO_SIBLING,
                node_id=self.boundary().id,
            )
        return self.make_previous_sibling_of(sibling)

    def move_right(self) -> MoveResult:
        """与右兄弟交换位置"""
        sibling = self.get_right_sibling()
        if sibling is None:
            raise Err.move_not_possible(
                "没有右兄弟节点",
                code=ErrorCode.NO_SIBLING,
                node_id=self.boundary().id,
            )
        return self.make_next_sibling_of(sibling)

    def make_root(self) -> MoveResult:
        """移动到所在树根节点的右侧，已经是根节点时不做任何事"""
        if not inspect(self).has_identity:
            raise Err.move_not_possible(
                "节点尚未保存，无法移动",
                code=ErrorCode.NODE_NOT_PERSISTED,
            )
        root = self.get_root()
        if root is self:
            return MoveResult(state=MoveState.IDLE, node=self)
        return self.make_next_sibling_of(root)

    # ==================== 深度修复 ====================

    def repair_depths(self) -> int:
        """重新计算本节点及子孙的深度，返回被修正的节点数"""
        return self.tree_executor(session=self._tree_session()).repair_depths(self)

    # ==================== 类方法 ====================

    @classmethod
    def _class_queries(cls) -> ContainmentQuery:
        return ContainmentQuery(cls.tree_schema(), cls._class_session())

    @classmethod
    def get_roots(cls, forest: Any = None) -> List:
        """根节点，forest 为 None 时返回所有树的根"""
        return cls._class_queries().roots(_forest_arg(forest))

    @classmethod
    def get_leaves(cls, forest: Any = None) -> List:
        return cls._class_queries().leaves(_forest_arg(forest))

    @classmethod
    def rebuild_depths(cls, forest: Any = None) -> int:
        """重新计算整棵树（或所有树）的深度"""
        return cls.tree_executor().rebuild_depths(_forest_arg(forest))

    @classmethod
    def _tree_rows(cls, forest: Any = None) -> List[Dict[str, Any]]:
        queries = cls._class_queries()
        forest = _forest_arg(forest)
        stmt = select(cls) if forest is None else queries.select_forest(forest)
        nodes = queries.session.scalars(stmt.order_by(cls.tree_schema().left_col())).all()
        keys = [attr.key for attr in inspect(cls).column_attrs]
        return [{key: getattr(node, key) for key in keys} for node in nodes]

    @classmethod
    def get_tree_list(cls, forest: Any = None) -> List[dict]:
        """嵌套字典形式的树，每个节点带 children 列表"""
        from .tree_utils import build_tree_list

        s = cls.tree_schema()
        return build_tree_list(
            cls._tree_rows(forest),
            left_field=s.left,
            right_field=s.right,
            forest_fields=s.forest,
        )

    @classmethod
    def validate_tree(cls, forest: Any = None, raise_error: bool = False) -> List[str]:
        """检查左右值、父节点、深度是否一致

        Args:
            forest: 只检查指定的树，None 表示所有树
            raise_error: 有问题时抛出 TreeIntegrityException

        Returns:
            问题描述列表，为空表示树结构完整
        """
        from .tree_utils import check_nested_set

        s = cls.tree_schema()
        problems = check_nested_set(
            cls._tree_rows(forest),
            id_field=s.pk_attr,
            left_field=s.left,
            right_field=s.right,
            depth_field=s.depth,
            parent_field=s.parent,
            forest_fields=s.forest,
        )
        if problems:
            logger.warning(f"{cls.__name__} 树结构检查发现 {len(problems)} 个问题")
            if raise_error:
                raise Err.integrity(
                    f"{cls.__name__} 树结构不完整",
                    details=problems,
                )
        return problems


# ==================== 插入事件监听器 ====================

@event.listens_for(NestedSetMixin, "before_insert", propagate=True)
def event_before_insert_append_node(mapper, connection, target):
    """新节点追加为所在树最右侧的根节点

    只处理左值为空的节点，显式指定了左右值的行原样写入。

    读取 max(右值) 之前先锁住该树已有的行（lock_backend 为 none 时跳过），
    并发插入在数据库层排队，不会算出相同的左右值。
    锁持有到插入所在事务结束。树中还没有行时无行可锁，
    此时仍需调用方串行化首批插入。
    """
    model = type(target)
    s = TreeSchema.for_model(model)
    if getattr(target, s.left) is not None:
        return

    forest = s.forest_values(target)
    if model._tree_settings().lock_backend != "none":
        lock_forest_rows(connection, s, forest)

    max_right = connection.scalar(
        select(func.max(s.right_col())).where(*s.forest_clauses(forest))
    ) or 0

    setattr(target, s.left, max_right + 1)
    setattr(target, s.right, max_right + 2)
    setattr(target, s.depth, 0)
    setattr(target, s.parent, None)


__all__ = ["NestedSetMixin"]
