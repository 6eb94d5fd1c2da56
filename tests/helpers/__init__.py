"""测试辅助工具"""

from .tree_models import (
    TreeCategory,
    TenantRegion,
    CustomColumnNode,
    build_tree,
    snapshot,
)

__all__ = [
    "TreeCategory",
    "TenantRegion",
    "CustomColumnNode",
    "build_tree",
    "snapshot",
]
