"""嵌套集合工具函数

都是对字典列表的纯函数，不访问数据库。

使用示例:
    from ynest.orm.nestedset import build_tree_list, check_nested_set

    rows = [
        {"id": 1, "lft": 1, "rgt": 6, "depth": 0, "parent_id": None},
        {"id": 2, "lft": 2, "rgt": 3, "depth": 1, "parent_id": 1},
        {"id": 3, "lft": 4, "rgt": 5, "depth": 1, "parent_id": 1},
    ]
    tree = build_tree_list(rows)
    # [{"id": 1, ..., "children": [{"id": 2, ...}, {"id": 3, ...}]}]

    check_nested_set(rows)   # []
"""

from itertools import groupby
from typing import Any, Dict, List, Sequence, Tuple


def _forest_key(row: Dict[str, Any], forest_fields: Sequence[str]) -> Tuple:
    # None 排在最前，避免与其他值比较
    return tuple((row.get(f) is not None, row.get(f)) for f in forest_fields)


def _ordered(
    rows: List[Dict[str, Any]],
    left_field: str,
    forest_fields: Sequence[str],
) -> List[Dict[str, Any]]:
    return sorted(rows, key=lambda r: (_forest_key(r, forest_fields), r[left_field]))


def build_tree_list(
    nodes: List[Dict[str, Any]],
    left_field: str = "lft",
    right_field: str = "rgt",
    forest_fields: Sequence[str] = (),
    children_field: str = "children",
) -> List[Dict[str, Any]]:
    """按左右值区间把扁平列表构建为嵌套树

    不依赖 parent_id：区间包含即父子关系，同级按左值排序。
    不同 forest 的节点各自成树，结果中依次排列。

    Args:
        nodes: 节点字典列表，顺序任意
        left_field / right_field: 左右值字段名
        forest_fields: 分区字段名
        children_field: 输出中子节点列表的字段名

    Returns:
        根节点字典列表（均为副本，不修改输入）
    """
    roots: List[Dict[str, Any]] = []

    for _, group in groupby(
        _ordered(nodes, left_field, forest_fields),
        key=lambda r: _forest_key(r, forest_fields),
    ):
        stack: List[Dict[str, Any]] = []
        for row in group:
            node = dict(row)
            node[children_field] = []

            while stack and stack[-1][right_field] < node[left_field]:
                stack.pop()

            if stack:
                stack[-1][children_field].append(node)
            else:
                roots.append(node)
            stack.append(node)

    return roots


def check_nested_set(
    rows: List[Dict[str, Any]],
    id_field: str = "id",
    left_field: str = "lft",
    right_field: str = "rgt",
    depth_field: str = "depth",
    parent_field: str = "parent_id",
    forest_fields: Sequence[str] = (),
    check_depth: bool = True,
) -> List[str]:
    """检查嵌套集合约束，返回所有违反项的描述（为空表示完整）

    检查内容:
        - 每个节点 lft < rgt
        - 同一棵树内左右值不重复
        - 任意两个区间要么不相交、要么互相包含
        - parent_id 等于最近的包含节点
        - depth 等于祖先数量（根节点允许为 NULL），check_depth 为 False 时跳过
    """
    problems: List[str] = []

    for forest, group in groupby(
        _ordered(rows, left_field, forest_fields),
        key=lambda r: _forest_key(r, forest_fields),
    ):
        group = list(group)
        label = f"[{', '.join(str(v) for _, v in forest)}] " if forest else ""

        seen: Dict[int, Any] = {}
        for row in group:
            node_id, left, right = row[id_field], row[left_field], row[right_field]
            if left >= right:
                problems.append(f"{label}节点 {node_id}: 左值 {left} 不小于右值 {right}")
            for value in (left, right):
                if value in seen:
                    problems.append(
                        f"{label}节点 {node_id}: 边界值 {value} 与节点 {seen[value]} 重复"
                    )
                else:
                    seen[value] = node_id

        stack: List[Dict[str, Any]] = []
        for row in group:
            node_id = row[id_field]
            while stack and stack[-1][right_field] < row[left_field]:
                stack.pop()

            if stack and row[right_field] > stack[-1][right_field]:
                problems.append(
                    f"{label}节点 {node_id}: 区间与节点 {stack[-1][id_field]} 交叉"
                )

            expected_parent = stack[-1][id_field] if stack else None
            if row.get(parent_field) != expected_parent:
                problems.append(
                    f"{label}节点 {node_id}: 父节点应为 {expected_parent}，"
                    f"实际为 {row.get(parent_field)}"
                )

            depth = row.get(depth_field)
            expected_depth = len(stack)
            if check_depth and not (depth == expected_depth or (depth is None and expected_depth == 0)):
                problems.append(
                    f"{label}节点 {node_id}: 深度应为 {expected_depth}，实际为 {depth}"
                )

            stack.append(row)

    return problems


__all__ = ["build_tree_list", "check_nested_set"]
