"""移动执行器测试

覆盖：
- 结构重写的重试
- 深度修复失败时的部分成功
- 加入外层事务
- 随机移动序列后的树完整性
- 深度重建与完整性检查
- 树级锁
"""

import gc
import random
import threading
from contextlib import contextmanager

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker, scoped_session

from ynest.config import NestedSetSettings
from ynest.exceptions import MoveNotPossibleException, TreeIntegrityException
from ynest.orm import CoreModel, transaction_manager
from ynest.orm.nestedset import (
    ForestLock,
    LocalForestLock,
    MoveExecutor,
    MovePosition,
    MoveState,
    NullForestLock,
    RowForestLock,
    TreeSchema,
    default_forest_lock,
    forest_lock_for,
)

from tests.helpers import TreeCategory, TenantRegion, build_tree, snapshot


def no_wait(**overrides):
    return NestedSetSettings(rewrite_retry_delay=0, **overrides)


class ExecutorTestBase:

    @pytest.fixture(autouse=True)
    def setup_db(self, memory_engine):
        """自动初始化数据库会话"""
        CoreModel.metadata.create_all(bind=memory_engine)
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=memory_engine)
        self.session_scope = scoped_session(SessionLocal)
        CoreModel.query = self.session_scope.query_property()
        self.session = self.session_scope()
        yield
        self.session_scope.remove()

    @pytest.fixture
    def nodes(self, setup_db):
        return build_tree(self.session, TreeCategory, {
            "R": (1, 10), "A": (2, 5), "A1": (3, 4), "B": (6, 9),
        })

    def state(self):
        return snapshot(self.session, TreeCategory)


class TestRewriteRetry(ExecutorTestBase):
    """结构重写遇到 OperationalError 时整体回滚并重试"""

    def test_retry_after_transient_error(self, nodes, monkeypatch):
        """第一次失败，第二次成功"""
        original = MoveExecutor._rewrite
        calls = []

        def flaky(self, plan):
            calls.append(plan)
            if len(calls) == 1:
                raise OperationalError("UPDATE tree_category", {}, Exception("database is locked"))
            return original(self, plan)

        monkeypatch.setattr(MoveExecutor, "_rewrite", flaky)
        result = TreeCategory.tree_executor(settings=no_wait()).move(nodes["A"], nodes["B"], "child")

        assert result.state == MoveState.DEPTH_REPAIRED
        assert result.attempts == 2
        assert self.state()["A"] == (5, 8, 2, "B")
        assert TreeCategory.validate_tree() == []

    def test_retries_exhausted(self, nodes, monkeypatch):
        """重试耗尽后抛出原异常，树保持移动前的状态"""
        before = self.state()

        def broken(self, plan):
            raise OperationalError("UPDATE tree_category", {}, Exception("deadlock"))

        monkeypatch.setattr(MoveExecutor, "_rewrite", broken)
        executor = TreeCategory.tree_executor(settings=no_wait(rewrite_max_retries=1))

        with pytest.raises(OperationalError):
            executor.move(nodes["A"], nodes["B"], "child")
        assert self.state() == before

    def test_validation_error_not_retried(self, nodes, monkeypatch):
        """业务异常不重试"""
        calls = []
        original = MoveExecutor._verify_plan

        def counting(self, plan):
            calls.append(plan)
            return original(self, plan)

        monkeypatch.setattr(MoveExecutor, "_verify_plan", counting)
        executor = TreeCategory.tree_executor(settings=no_wait())
        plan = executor.planner.plan(nodes["A"], nodes["B"], "right")
        nodes["B"].make_previous_sibling_of(nodes["A"])
        calls.clear()

        with pytest.raises(MoveNotPossibleException):
            executor.execute(plan)
        assert len(calls) == 1


class TestDepthRepairFailure(ExecutorTestBase):
    """深度修复失败不回滚已提交的结构重写"""

    def test_partial_success(self, nodes, monkeypatch):
        """结果为 COMMITTED 并带有 depth_error，左右值已生效"""
        def broken(self, forest, span):
            raise OperationalError("SELECT", {}, Exception("connection lost"))

        monkeypatch.setattr(MoveExecutor, "_repair_range", broken)
        executor = TreeCategory.tree_executor(settings=no_wait(depth_repair_max_retries=0))
        result = executor.move(nodes["A"], nodes["B"], "child")

        assert result.state == MoveState.COMMITTED
        assert result.moved
        assert result.partial
        assert result.depth_error is not None
        assert result.depth_error.extra["node_id"] == nodes["A"].id

        state = self.state()
        assert state["A"] == (5, 8, 1, "B")
        assert state["A1"] == (6, 7, 2, "A")
        assert TreeCategory.validate_tree()

        monkeypatch.undo()
        assert nodes["A"].repair_depths() == 2
        assert TreeCategory.validate_tree() == []

    def test_moved_observer_sees_partial_result(self, nodes, monkeypatch):
        """部分成功时 moved 观察者仍然被调用"""
        from ynest.orm.nestedset import CallbackMoveObserver

        def broken(self, forest, span):
            raise OperationalError("SELECT", {}, Exception("connection lost"))

        monkeypatch.setattr(MoveExecutor, "_repair_range", broken)
        seen = []
        executor = TreeCategory.tree_executor(
            observers=[CallbackMoveObserver(moved=lambda node, result: seen.append(result.partial))],
            settings=no_wait(depth_repair_max_retries=0),
        )
        executor.move(nodes["A"], nodes["B"], "child")
        assert seen == [True]

    def test_repair_is_idempotent(self, nodes):
        """深度已正确时修复不写入"""
        assert nodes["R"].repair_depths() == 0
        assert nodes["A"].repair_depths() == 0


class TestJoinedTransaction(ExecutorTestBase):
    """在外层事务中移动"""

    def test_moves_commit_together(self, nodes):
        """两次移动随外层事务一起提交"""
        with transaction_manager.transaction(session=self.session):
            nodes["A"].make_child_of(nodes["B"])
            nodes["A1"].make_root()

        assert self.state() == {
            "R": (1, 8, 0, None),
            "B": (2, 7, 1, "R"),
            "A": (5, 6, 2, "B"),
            "A1": (9, 10, 0, None),
        }
        assert TreeCategory.validate_tree() == []

    def test_outer_rollback_discards_moves(self, nodes):
        """外层事务异常时所有移动一起回滚"""
        before = self.state()

        with pytest.raises(RuntimeError):
            with transaction_manager.transaction(session=self.session):
                result = nodes["A"].make_child_of(nodes["B"])
                assert result.state == MoveState.DEPTH_REPAIRED
                raise RuntimeError("abort")

        assert self.state() == before

    def test_no_retry_inside_transaction(self, nodes, monkeypatch):
        """外层事务中不重试，异常直接抛出"""
        calls = []

        def broken(self, plan):
            calls.append(plan)
            raise OperationalError("UPDATE tree_category", {}, Exception("deadlock"))

        monkeypatch.setattr(MoveExecutor, "_rewrite", broken)

        with pytest.raises(OperationalError):
            with transaction_manager.transaction(session=self.session):
                TreeCategory.tree_executor(settings=no_wait()).move(nodes["A"], nodes["B"], "child")
        assert len(calls) == 1

    def test_depth_error_raised_inside_transaction(self, nodes, monkeypatch):
        """外层事务中深度修复失败直接抛出，由外层决定回滚"""
        def broken(self, forest, span):
            raise OperationalError("SELECT", {}, Exception("connection lost"))

        monkeypatch.setattr(MoveExecutor, "_repair_range", broken)
        before = self.state()

        with pytest.raises(OperationalError):
            with transaction_manager.transaction(session=self.session):
                nodes["A"].make_child_of(nodes["B"])

        assert self.state() == before


class TestRandomMoves(ExecutorTestBase):
    """随机移动序列后树结构始终完整"""

    NAMES = ["n0", "n1", "n2", "n3", "n4", "n5", "n6", "n7"]

    @pytest.mark.parametrize("seed", [1, 7, 42, 2024])
    def test_random_sequence(self, seed):
        """每次移动后左右值、父节点、深度都与区间包含关系一致"""
        rng = random.Random(seed)
        nodes = [TreeCategory(name=name).save(commit=True) for name in self.NAMES]
        positions = list(MovePosition)

        for _ in range(30):
            node, target = rng.choice(nodes), rng.choice(nodes)
            position = rng.choice(positions)
            try:
                result = node.move_to(target, position)
            except MoveNotPossibleException:
                assert TreeCategory.validate_tree() == []
                continue

            assert result.state in (MoveState.IDLE, MoveState.DEPTH_REPAIRED)
            assert TreeCategory.validate_tree() == []

        for node in nodes:
            assert node.depth == len(node.get_ancestors())
            assert node.get_descendant_count() == (node.rgt - node.lft - 1) // 2


class TestDepthRebuild(ExecutorTestBase):
    """深度重建与完整性检查"""

    def test_rebuild_all_depths(self, nodes):
        """清空深度后整体重建"""
        self.session.execute(update(TreeCategory).values(depth=None))
        self.session.commit()

        assert TreeCategory.rebuild_depths() == 4
        assert {name: row[2] for name, row in self.state().items()} == {
            "R": 0, "A": 1, "A1": 2, "B": 1,
        }

    def test_rebuild_single_forest(self):
        """只重建指定的树"""
        build_tree(self.session, TenantRegion, {"R": (1, 4), "X": (2, 3)}, tenant_id="t1")
        build_tree(self.session, TenantRegion, {"S": (1, 4), "Y": (2, 3)}, tenant_id="t2")
        self.session.execute(update(TenantRegion).values(depth=5))
        self.session.commit()

        assert TenantRegion.rebuild_depths("t1") == 2
        assert snapshot(self.session, TenantRegion, tenant_id="t1")["X"][2] == 1
        assert snapshot(self.session, TenantRegion, tenant_id="t2")["Y"][2] == 5

    def test_validate_detects_corruption(self, nodes):
        """左右值被破坏时返回问题列表"""
        self.session.execute(
            update(TreeCategory).where(TreeCategory.name == "A1").values(rgt=7)
        )
        self.session.commit()

        problems = TreeCategory.validate_tree()
        assert problems
        assert any("交叉" in p for p in problems)

    def test_validate_raise_error(self, nodes):
        """raise_error=True 时抛出 TreeIntegrityException"""
        self.session.execute(
            update(TreeCategory).where(TreeCategory.name == "B").values(parent_id=None)
        )
        self.session.commit()

        with pytest.raises(TreeIntegrityException) as exc_info:
            TreeCategory.validate_tree(raise_error=True)
        assert exc_info.value.details


class TestForestLocks(ExecutorTestBase):
    """树级锁"""

    def test_same_forest_is_serialized(self):
        """同一棵树的第二个持有者要等待第一个释放"""
        lock = LocalForestLock()
        schema = TreeSchema.for_model(TenantRegion)
        entered = threading.Event()

        def contender():
            with lock.hold(schema, ("t1",)):
                entered.set()

        with lock.hold(schema, ("t1",)):
            worker = threading.Thread(target=contender)
            worker.start()
            assert not entered.wait(0.1)

        assert entered.wait(2)
        worker.join(2)

    def test_other_forest_not_blocked(self):
        """不同树的移动互不等待"""
        lock = LocalForestLock()
        schema = TreeSchema.for_model(TenantRegion)
        entered = threading.Event()

        def contender():
            with lock.hold(schema, ("t2",)):
                entered.set()

        with lock.hold(schema, ("t1",)):
            worker = threading.Thread(target=contender)
            worker.start()
            assert entered.wait(2)
        worker.join(2)

    def test_lock_is_reentrant(self):
        """同一线程可以重复持有"""
        lock = LocalForestLock()
        schema = TreeSchema.for_model(TreeCategory)
        with lock.hold(schema, ()):
            with lock.hold(schema, ()):
                pass

    def test_unused_locks_released(self):
        """锁表只保留仍在使用的锁，分区用完后不再占用"""
        lock = LocalForestLock()
        schema = TreeSchema.for_model(TenantRegion)

        for tenant in ("t1", "t2", "t3"):
            with lock.hold(schema, (tenant,)):
                assert len(lock._locks) == 1
        gc.collect()

        assert len(lock._locks) == 0

    def test_lock_shared_while_held(self):
        """持有期间同一棵树取到的是同一把锁"""
        lock = LocalForestLock()
        schema = TreeSchema.for_model(TenantRegion)

        first = lock.get_lock(schema, ("t1",))
        assert lock.get_lock(schema, ("t1",)) is first
        assert lock.get_lock(schema, ("t2",)) is not first

    def test_base_lock_is_abstract(self):
        """ForestLock 不能直接实例化，子类必须实现 hold 与 lock_rows"""
        with pytest.raises(TypeError):
            ForestLock()

        class HoldOnly(ForestLock):
            @contextmanager
            def hold(self, schema, forest):
                yield

        with pytest.raises(TypeError):
            HoldOnly()

    def test_forest_lock_for(self):
        """按配置值选择锁实现"""
        assert forest_lock_for("local") is default_forest_lock
        assert isinstance(forest_lock_for("row"), RowForestLock)
        assert isinstance(forest_lock_for("none"), NullForestLock)
        with pytest.raises(ValueError):
            forest_lock_for("redis")

    def test_executor_uses_configured_lock(self):
        """执行器按 lock_backend 选择锁"""
        schema = TreeSchema.for_model(TreeCategory)
        executor = MoveExecutor(schema, self.session, settings=NestedSetSettings(lock_backend="row"))
        assert isinstance(executor.lock, RowForestLock)

    def test_move_with_row_lock(self, nodes):
        """行锁在 SQLite 上退化为普通查询，移动照常完成"""
        executor = TreeCategory.tree_executor(lock=RowForestLock())
        result = executor.move(nodes["A"], nodes["B"], "right")

        assert result.state == MoveState.DEPTH_REPAIRED
        assert self.state()["A"] == (6, 9, 1, "R")
