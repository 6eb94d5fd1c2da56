"""嵌套集合表结构描述

把模型类上的 __tree_*__ 配置解析为可直接用于构建 SQL 表达式的列对象，
查询层和执行器只通过它访问表、主键和左右值列。
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import inspect, Table
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.expression import FromClause
from sqlalchemy.sql.schema import Column


_schema_cache: Dict[type, "TreeSchema"] = {}


@dataclass(frozen=True)
class TreeSchema:
    """嵌套集合表结构描述

    属性中的字段名均为模型的属性名（不是数据库列名）。

    使用示例:
        schema = TreeSchema.for_model(Category)
        schema.column("lft")                 # Category.__table__.c.lft
        schema.forest_values(node)           # ("tenant-a",)
        schema.forest_clauses(("tenant-a",)) # [category.tenant_id = :param]
    """

    model: type
    left: str = "lft"
    right: str = "rgt"
    depth: str = "depth"
    parent: str = "parent_id"
    forest: Tuple[str, ...] = ()

    @classmethod
    def for_model(cls, model: type) -> "TreeSchema":
        """根据模型类属性构建（按类缓存）

        读取的类属性:
            __tree_left_field__ / __tree_right_field__ / __tree_depth_field__ /
            __tree_parent_field__ / __tree_forest_by__
        """
        schema = _schema_cache.get(model)
        if schema is None:
            forest = getattr(model, "__tree_forest_by__", ()) or ()
            if isinstance(forest, str):
                forest = (forest,)
            schema = cls(
                model=model,
                left=getattr(model, "__tree_left_field__", "lft"),
                right=getattr(model, "__tree_right_field__", "rgt"),
                depth=getattr(model, "__tree_depth_field__", "depth"),
                parent=getattr(model, "__tree_parent_field__", "parent_id"),
                forest=tuple(forest),
            )
            _schema_cache[model] = schema
        return schema

    # ==================== 表与列 ====================

    @property
    def mapper(self):
        return inspect(self.model)

    @property
    def table(self) -> Table:
        return self.mapper.local_table

    @property
    def pk_column(self) -> Column:
        return self.mapper.primary_key[0]

    @property
    def pk_attr(self) -> str:
        return self.mapper.get_property_by_column(self.pk_column).key

    def column(self, attr: str, source: Optional[FromClause] = None) -> Column:
        """按属性名取列，source 为表别名时返回别名上的同名列"""
        col = self.mapper.columns[attr]
        if source is None:
            return col
        return source.c[col.key]

    def pk(self, source: Optional[FromClause] = None) -> Column:
        if source is None:
            return self.pk_column
        return source.c[self.pk_column.key]

    def left_col(self, source: Optional[FromClause] = None) -> Column:
        return self.column(self.left, source)

    def right_col(self, source: Optional[FromClause] = None) -> Column:
        return self.column(self.right, source)

    def depth_col(self, source: Optional[FromClause] = None) -> Column:
        return self.column(self.depth, source)

    def parent_col(self, source: Optional[FromClause] = None) -> Column:
        return self.column(self.parent, source)

    # ==================== 树（forest）分区 ====================

    def forest_values(self, node: Any) -> Tuple[Any, ...]:
        """节点所在树的分区键值，顺序与 forest 配置一致"""
        return tuple(getattr(node, attr) for attr in self.forest)

    def forest_clauses(
        self,
        values: Tuple[Any, ...],
        source: Optional[FromClause] = None
    ) -> List[ColumnElement]:
        """把分区键值转换为等值条件（None 会被编译为 IS NULL）"""
        return [
            self.column(attr, source) == value
            for attr, value in zip(self.forest, values)
        ]

    def forest_join(self, left: FromClause, right: FromClause) -> List[ColumnElement]:
        """两个别名之间的同树关联条件（NULL 与 NULL 视为同一棵树）"""
        return [
            self.column(attr, left).is_not_distinct_from(self.column(attr, right))
            for attr in self.forest
        ]


__all__ = ["TreeSchema"]
