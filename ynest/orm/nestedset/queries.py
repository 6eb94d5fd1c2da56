"""包含关系查询层

所有语句都用 SQLAlchemy 表达式构建，并附加参照节点所在树的分区条件。
"""

from typing import Any, List, Optional, Tuple, Union

from sqlalchemy import select, func, and_, or_, inspect, Select
from sqlalchemy.orm import Session

from .boundary import NodeBoundary
from .schema import TreeSchema

NodeLike = Union[Any, NodeBoundary]


class ContainmentQuery:
    """基于左右值的树形查询

    使用示例:
        q = ContainmentQuery(TreeSchema.for_model(Category), session)
        q.ancestors(node)      # 从最外层祖先开始
        q.descendants(node)    # 按左值升序，即先序遍历
        q.left_sibling(node)   # 紧邻的左兄弟，没有则为 None
    """

    def __init__(self, schema: TreeSchema, session: Session):
        self.schema = schema
        self.session = session

    # ==================== 内部工具 ====================

    def boundary(self, node: NodeLike) -> NodeBoundary:
        if isinstance(node, NodeBoundary):
            return node
        return NodeBoundary.of(node, self.schema)

    def select_forest(self, forest: Tuple[Any, ...] = ()) -> Select:
        """模型查询，限定在指定树内"""
        return select(self.schema.model).where(*self.schema.forest_clauses(forest))

    def _all(self, stmt: Select) -> List:
        return list(self.session.scalars(stmt).all())

    def _first(self, stmt: Select):
        return self.session.scalars(stmt.limit(1)).first()

    # ==================== 作用域 ====================

    def only_roots(self, stmt: Select) -> Select:
        """深度为空或为 0 的节点"""
        depth = self.schema.depth_col()
        return stmt.where(or_(depth.is_(None), depth == 0))

    def only_leaves(self, stmt: Select) -> Select:
        s = self.schema
        return stmt.where(s.right_col() - s.left_col() == 1)

    def excluding(self, stmt: Select, identifier: Any) -> Select:
        return stmt.where(self.schema.pk() != identifier)

    # ==================== 语句构建 ====================

    def ancestors_stmt(self, node: NodeLike) -> Select:
        b = self.boundary(node)
        s = self.schema
        return (
            self.select_forest(b.forest)
            .where(s.left_col() < b.left, s.right_col() > b.right)
            .order_by(s.left_col().asc())
        )

    def descendants_stmt(self, node: NodeLike) -> Select:
        b = self.boundary(node)
        s = self.schema
        return (
            self.select_forest(b.forest)
            .where(s.left_col() > b.left, s.left_col() < b.right)
            .order_by(s.left_col().asc())
        )

    def children_stmt(self, node: NodeLike) -> Select:
        b = self.boundary(node)
        s = self.schema
        return (
            self.select_forest(b.forest)
            .where(s.parent_col() == b.id)
            .order_by(s.left_col().asc())
        )

    def siblings_stmt(self, node: NodeLike) -> Select:
        """同父节点（根节点为 parent IS NULL）的其他节点"""
        b = self.boundary(node)
        s = self.schema
        stmt = self.select_forest(b.forest).where(s.parent_col() == b.parent_id)
        return self.excluding(stmt, b.id).order_by(s.left_col().asc())

    # ==================== 查询 ====================

    def ancestors(self, node: NodeLike) -> List:
        return self._all(self.ancestors_stmt(node))

    def descendants(self, node: NodeLike) -> List:
        return self._all(self.descendants_stmt(node))

    def children(self, node: NodeLike) -> List:
        return self._all(self.children_stmt(node))

    def siblings(self, node: NodeLike) -> List:
        return self._all(self.siblings_stmt(node))

    def left_sibling(self, node: NodeLike):
        """左值小于自身的兄弟中最近的一个"""
        b = self.boundary(node)
        s = self.schema
        stmt = (
            self.siblings_stmt(b)
            .where(s.left_col() < b.left)
            .order_by(None)
            .order_by(s.left_col().desc())
        )
        return self._first(stmt)

    def right_sibling(self, node: NodeLike):
        """左值大于自身的兄弟中最近的一个"""
        b = self.boundary(node)
        stmt = self.siblings_stmt(b).where(self.schema.left_col() > b.left)
        return self._first(stmt)

    def parent(self, node: NodeLike):
        b = self.boundary(node)
        if b.parent_id is None:
            return None
        return self.session.get(self.schema.model, b.parent_id)

    def root(self, node: Any):
        """所在树的根节点

        - 已持久化：最外层祖先，没有祖先则为自身
        - 未持久化但设置了父节点：通过父节点行自关联查找包含它的最外层节点
        - 其他情况：自身
        """
        s = self.schema
        if inspect(node).has_identity:
            return self._first(self.ancestors_stmt(node)) or node

        parent_id = getattr(node, s.parent)
        if parent_id is None:
            return node

        t = s.table
        p = t.alias("p")
        stmt = (
            select(s.model)
            .join(p, and_(
                s.pk(p) == parent_id,
                s.left_col(t) <= s.left_col(p),
                s.right_col(t) >= s.right_col(p),
                *s.forest_join(t, p),
            ))
            .order_by(s.left_col(t).asc())
        )
        return self._first(stmt) or node

    def roots(self, forest: Optional[Tuple[Any, ...]] = None) -> List:
        """根节点，forest 为 None 时返回所有树的根"""
        stmt = select(self.schema.model) if forest is None else self.select_forest(forest)
        return self._all(self.only_roots(stmt).order_by(self.schema.left_col().asc()))

    def leaves(self, forest: Optional[Tuple[Any, ...]] = None) -> List:
        stmt = select(self.schema.model) if forest is None else self.select_forest(forest)
        return self._all(self.only_leaves(stmt).order_by(self.schema.left_col().asc()))

    def get(self, identifier: Any, fresh: bool = True):
        """按主键获取节点，fresh 为 True 时用数据库中的值覆盖已加载的状态"""
        return self.session.get(self.schema.model, identifier, populate_existing=fresh)

    def max_right(self, forest: Tuple[Any, ...] = ()) -> int:
        """树中最大的右值，空树为 0"""
        s = self.schema
        stmt = select(func.max(s.right_col())).where(*s.forest_clauses(forest))
        return self.session.scalar(stmt) or 0

    def count_descendants(self, node: NodeLike) -> int:
        b = self.boundary(node)
        s = self.schema
        stmt = (
            select(func.count())
            .select_from(s.table)
            .where(s.left_col() > b.left, s.left_col() < b.right, *s.forest_clauses(b.forest))
        )
        return self.session.scalar(stmt) or 0


__all__ = ["ContainmentQuery"]
