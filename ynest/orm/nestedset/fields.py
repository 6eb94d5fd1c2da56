"""嵌套集合字段定义

使用示例:
    from ynest.orm import CoreModel
    from ynest.orm.nestedset import NestedSetFieldsMixin, NestedSetMixin

    class Category(CoreModel, NestedSetFieldsMixin, NestedSetMixin):
        title = mapped_column(String(100))
"""

from typing import Optional

from sqlalchemy import Integer
from sqlalchemy.orm import Mapped, mapped_column


class NestedSetFieldsMixin:
    """嵌套集合字段 Mixin

    提供 lft / rgt / depth / parent_id 四个字段。
    字段名与 NestedSetMixin 的默认 __tree_*_field__ 配置一致，
    自定义字段名时不要使用本 Mixin，自行定义字段并设置对应的类属性。

    注意：parent_id 不带外键约束，需要时自行覆盖。
    """

    # 左值，插入时自动追加到树的最右侧
    lft: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
        comment="左值"
    )

    # 右值，叶子节点 rgt = lft + 1
    rgt: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
        comment="右值"
    )

    # 根节点为 0，NULL 表示尚未计算
    depth: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        default=None,
        comment="深度（根节点为0）"
    )

    parent_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        default=None,
        index=True,
        comment="父节点ID"
    )


__all__ = ["NestedSetFieldsMixin"]
