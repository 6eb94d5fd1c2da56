"""包含关系查询测试

使用内存 SQLite 验证 ContainmentQuery 和 NestedSetMixin 的查询方法。
"""

import pytest
from sqlalchemy.orm import sessionmaker, scoped_session

from ynest.orm import CoreModel
from ynest.orm.nestedset import ContainmentQuery, TreeSchema

from tests.helpers import TreeCategory, TenantRegion, CustomColumnNode, build_tree


class TestContainmentQuery:
    """祖先 / 子孙 / 兄弟 / 根查询"""

    @pytest.fixture(autouse=True)
    def setup_db(self, memory_engine):
        """自动初始化数据库会话

        R(1,14)
        ├── S1(2,5)
        │   └── S1a(3,4)
        ├── S2(6,9)
        │   └── S2a(7,8)
        └── S3(10,13)
            └── S3a(11,12)
        """
        CoreModel.metadata.create_all(bind=memory_engine)
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=memory_engine)
        self.session_scope = scoped_session(SessionLocal)
        CoreModel.query = self.session_scope.query_property()
        self.session = self.session_scope()
        self.nodes = build_tree(self.session, TreeCategory, {
            "R": (1, 14),
            "S1": (2, 5), "S1a": (3, 4),
            "S2": (6, 9), "S2a": (7, 8),
            "S3": (10, 13), "S3a": (11, 12),
        })
        self.q = ContainmentQuery(TreeSchema.for_model(TreeCategory), self.session)
        yield
        self.session_scope.remove()

    def names(self, nodes):
        return [n.name for n in nodes]

    def test_sibling_ordering(self):
        """左值 2 / 6 / 10 的三个兄弟：中间节点的左右兄弟"""
        s2 = self.nodes["S2"]
        assert self.q.left_sibling(s2).name == "S1"
        assert self.q.right_sibling(s2).name == "S3"

    def test_no_sibling_at_edges(self):
        """最左没有左兄弟，最右没有右兄弟"""
        assert self.q.left_sibling(self.nodes["S1"]) is None
        assert self.q.right_sibling(self.nodes["S3"]) is None

    def test_siblings_exclude_self(self):
        """兄弟节点不包含自身，按左值排序"""
        assert self.names(self.q.siblings(self.nodes["S2"])) == ["S1", "S3"]

    def test_ancestors_outermost_first(self):
        """祖先从根节点开始"""
        assert self.names(self.q.ancestors(self.nodes["S2a"])) == ["R", "S2"]
        assert self.q.ancestors(self.nodes["R"]) == []

    def test_descendants_preorder(self):
        """子孙按先序遍历顺序"""
        assert self.names(self.q.descendants(self.nodes["R"])) == [
            "S1", "S1a", "S2", "S2a", "S3", "S3a",
        ]
        assert self.q.descendants(self.nodes["S3a"]) == []

    def test_children(self):
        """直接子节点"""
        assert self.names(self.q.children(self.nodes["R"])) == ["S1", "S2", "S3"]

    def test_parent(self):
        """父节点按 parent_id 获取，根节点为 None"""
        assert self.q.parent(self.nodes["S1a"]).name == "S1"
        assert self.q.parent(self.nodes["R"]) is None

    def test_root_of_persisted_node(self):
        """已持久化节点的根是最外层祖先，根节点的根是自身"""
        assert self.q.root(self.nodes["S3a"]).name == "R"
        assert self.q.root(self.nodes["R"]) is self.nodes["R"]

    def test_root_of_unpersisted_node_with_parent(self):
        """未持久化但设置了 parent_id 的节点通过父节点行找到根"""
        draft = TreeCategory(name="draft", parent_id=self.nodes["S2a"].id)
        assert self.q.root(draft).name == "R"

    def test_root_of_unpersisted_orphan(self):
        """未持久化且没有父节点时根是自身"""
        draft = TreeCategory(name="draft")
        assert self.q.root(draft) is draft

    def test_roots_and_leaves(self):
        """根节点与叶子节点作用域"""
        assert self.names(self.q.roots()) == ["R"]
        assert self.names(self.q.leaves()) == ["S1a", "S2a", "S3a"]

    def test_count_descendants(self):
        """子孙数量"""
        assert self.q.count_descendants(self.nodes["R"]) == 6
        assert self.q.count_descendants(self.nodes["S1"]) == 1
        assert self.q.count_descendants(self.nodes["S1a"]) == 0

    def test_max_right(self):
        """最大右值，空树为 0"""
        assert self.q.max_right() == 14

    def test_get_fresh(self):
        """get(fresh=True) 覆盖内存中未提交的修改"""
        s1 = self.nodes["S1"]
        s1.lft = 99
        fetched = self.q.get(s1.id)
        assert fetched is s1
        assert fetched.lft == 2


class TestMixinQueries:
    """NestedSetMixin 查询方法与判断方法"""

    @pytest.fixture(autouse=True)
    def setup_db(self, memory_engine):
        """R(1,10) A(2,5) A1(3,4) B(6,9)"""
        CoreModel.metadata.create_all(bind=memory_engine)
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=memory_engine)
        self.session_scope = scoped_session(SessionLocal)
        CoreModel.query = self.session_scope.query_property()
        self.session = self.session_scope()
        self.nodes = build_tree(self.session, TreeCategory, {
            "R": (1, 10), "A": (2, 5), "A1": (3, 4), "B": (6, 9),
        })
        yield
        self.session_scope.remove()

    def test_query_methods(self):
        """查询方法委托给 ContainmentQuery"""
        r, a, a1, b = (self.nodes[k] for k in ("R", "A", "A1", "B"))

        assert [n.name for n in a1.get_ancestors()] == ["R", "A"]
        assert [n.name for n in r.get_descendants()] == ["A", "A1", "B"]
        assert [n.name for n in a.get_descendants(include_self=True)] == ["A", "A1"]
        assert [n.name for n in r.get_children()] == ["A", "B"]
        assert [n.name for n in a.get_siblings()] == ["B"]
        assert a.get_right_sibling() is b
        assert b.get_left_sibling() is a
        assert a1.get_parent() is a
        assert a1.get_root() is r
        assert r.get_descendant_count() == 3

    def test_predicates(self):
        """节点状态判断"""
        r, a, a1, b = (self.nodes[k] for k in ("R", "A", "A1", "B"))

        assert r.is_root() and not r.is_child()
        assert a1.is_leaf() and not a.is_leaf()
        assert r.is_ancestor_of(a1)
        assert a1.is_descendant_of(a)
        assert not b.is_descendant_of(a)
        assert a.in_same_tree(b)

    def test_class_queries(self):
        """类方法 get_roots / get_leaves"""
        assert [n.name for n in TreeCategory.get_roots()] == ["R"]
        assert [n.name for n in TreeCategory.get_leaves()] == ["A1"]

    def test_tree_list(self):
        """嵌套字典形式的树"""
        tree = TreeCategory.get_tree_list()

        assert len(tree) == 1
        root = tree[0]
        assert root["name"] == "R"
        assert [c["name"] for c in root["children"]] == ["A", "B"]
        assert [c["name"] for c in root["children"][0]["children"]] == ["A1"]
        assert root["children"][1]["children"] == []


class TestForestQueries:
    """多棵树（forest）的查询隔离"""

    @pytest.fixture(autouse=True)
    def setup_db(self, memory_engine):
        CoreModel.metadata.create_all(bind=memory_engine)
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=memory_engine)
        self.session_scope = scoped_session(SessionLocal)
        CoreModel.query = self.session_scope.query_property()
        self.session = self.session_scope()
        self.t1 = build_tree(self.session, TenantRegion, {"R": (1, 6), "X": (2, 3), "Y": (4, 5)}, tenant_id="t1")
        self.t2 = build_tree(self.session, TenantRegion, {"R2": (1, 4), "Z": (2, 3)}, tenant_id="t2")
        yield
        self.session_scope.remove()

    def test_descendants_scoped_to_forest(self):
        """重叠的左右值不会跨树匹配"""
        assert [n.name for n in self.t1["R"].get_descendants()] == ["X", "Y"]
        assert [n.name for n in self.t2["R2"].get_descendants()] == ["Z"]
        assert [n.name for n in self.t2["Z"].get_ancestors()] == ["R2"]

    def test_roots_per_forest(self):
        """forest 为 None 时返回所有树的根，否则只返回指定树"""
        assert sorted(n.name for n in TenantRegion.get_roots()) == ["R", "R2"]
        assert [n.name for n in TenantRegion.get_roots("t2")] == ["R2"]
        assert [n.name for n in TenantRegion.get_leaves(("t1",))] == ["X", "Y"]

    def test_in_same_tree(self):
        """不同租户的节点不在同一棵树"""
        assert self.t1["X"].in_same_tree(self.t1["Y"])
        assert not self.t1["X"].in_same_tree(self.t2["Z"])

    def test_tree_list_per_forest(self):
        """每棵树各自成树"""
        tree = TenantRegion.get_tree_list()
        assert sorted(t["name"] for t in tree) == ["R", "R2"]
        assert [t["name"] for t in TenantRegion.get_tree_list("t2")] == ["R2"]


class TestCustomColumns:
    """自定义字段名"""

    @pytest.fixture(autouse=True)
    def setup_db(self, memory_engine):
        CoreModel.metadata.create_all(bind=memory_engine)
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=memory_engine)
        self.session_scope = scoped_session(SessionLocal)
        CoreModel.query = self.session_scope.query_property()
        self.session = self.session_scope()
        self.nodes = build_tree(self.session, CustomColumnNode, {"R": (1, 6), "A": (2, 3), "B": (4, 5)})
        yield
        self.session_scope.remove()

    def test_schema_reads_class_attributes(self):
        """TreeSchema 读取 __tree_*__ 配置"""
        s = TreeSchema.for_model(CustomColumnNode)
        assert (s.left, s.right, s.depth, s.parent) == ("left_value", "right_value", "level", "parent_node_id")
        assert s.forest == ()

    def test_queries_use_custom_columns(self):
        """查询使用自定义字段"""
        assert [n.name for n in self.nodes["R"].get_children()] == ["A", "B"]
        assert self.nodes["A"].get_right_sibling() is self.nodes["B"]

    def test_move_with_custom_columns(self):
        """移动使用自定义字段"""
        self.nodes["B"].make_previous_sibling_of(self.nodes["A"])
        assert (self.nodes["B"].left_value, self.nodes["B"].right_value) == (2, 3)
        assert (self.nodes["A"].left_value, self.nodes["A"].right_value) == (4, 5)
        assert CustomColumnNode.validate_tree() == []
