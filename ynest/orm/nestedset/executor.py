"""移动执行

把 MovePlan 应用到数据库：
    1. 一条条件 UPDATE 在单个事务中重写 [a, d] 范围内的左右值和被移动节点的父节点
    2. 重新读取节点和目标
    3. 按子树左右值范围批量修复深度（独立事务，独立重试）
    4. 通知观察者

状态流转: VALIDATED -> PLANNED -> IDLE | ABORTED | COMMITTED -> DEPTH_REPAIRED
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Optional, Tuple, Union

from sqlalchemy import and_, bindparam, case, func, null, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ynest.config import NestedSetSettings
from ynest.exceptions import Err, ErrorCode, DepthRepairException
from ynest.log import get_logger

from ..transaction import run_with_retry, transaction_manager
from .events import MoveObserver
from .locks import ForestLock, forest_lock_for
from .planner import MovePlan, MovePlanner, MovePosition
from .schema import TreeSchema

logger = get_logger()


class MoveState(str, Enum):
    """单次移动的状态"""

    VALIDATED = "validated"
    PLANNED = "planned"
    IDLE = "idle"
    """节点已在目标位置，未写入任何数据"""
    ABORTED = "aborted"
    """被 moving 观察者中止，未写入任何数据"""
    COMMITTED = "committed"
    """左右值已提交，深度未修复"""
    DEPTH_REPAIRED = "depth_repaired"


@dataclass
class MoveResult:
    """移动结果

    属性:
        state: 最终状态
        plan: 本次执行的方案，节点本身已是根节点时 make_root 不生成方案
        node: 被移动的节点（已重新读取）
        target: 重新读取后的目标节点，未写入时为 None
        attempts: 结构重写的尝试次数
        depth_repaired: 深度被修正的节点数
        depth_error: 深度修复失败时的异常
    """

    state: MoveState
    plan: Optional[MovePlan] = None
    node: Any = None
    target: Any = None
    attempts: int = 0
    depth_repaired: int = 0
    depth_error: Optional[DepthRepairException] = None

    @property
    def moved(self) -> bool:
        """左右值是否已经改写"""
        return self.state in (MoveState.COMMITTED, MoveState.DEPTH_REPAIRED)

    @property
    def partial(self) -> bool:
        """结构已提交但深度修复失败"""
        return self.state == MoveState.COMMITTED and self.depth_error is not None


class MoveExecutor:
    """移动执行器

    同一棵树上的整个移动过程（规划、重写、深度修复）都在树级锁内完成。

    事务:
        - 不在事务中：结构重写在独立事务中提交，OperationalError 时整体回滚并重试；
          深度修复在另一个事务中提交，失败时记录警告，结果状态为 COMMITTED
        - 已在事务中（REQUIRED 加入外层事务）：不重试、不单独提交，任何异常都交给外层

    使用示例:
        executor = MoveExecutor(
            TreeSchema.for_model(Category),
            session,
            observers=[CallbackMoveObserver(moved=on_moved)],
        )
        result = executor.move(node, target, "child")
        if result.partial:
            executor.repair_depths(result.node)
    """

    def __init__(
        self,
        schema: TreeSchema,
        session: Session,
        observers: Iterable[MoveObserver] = None,
        lock: ForestLock = None,
        settings: NestedSetSettings = None,
        planner: MovePlanner = None,
    ):
        self.schema = schema
        self.session = session
        self.settings = settings or NestedSetSettings()
        self.lock = lock or forest_lock_for(self.settings.lock_backend)
        self.planner = planner or MovePlanner(schema, session)
        self.queries = self.planner.queries
        self.observers: List[MoveObserver] = list(observers or ())

    # ==================== 入口 ====================

    def move(
        self,
        node: Any,
        target: Any,
        position: Union[str, MovePosition],
    ) -> MoveResult:
        """规划并执行一次移动

        Raises:
            MoveNotPossibleException: 校验失败，未写入任何数据
            NodeNotFoundException: 按主键指定的目标不存在
            OperationalError: 结构重写重试耗尽，数据保持移动前的状态
        """
        forest = self.schema.forest_values(node)
        with self.lock.hold(self.schema, forest):
            plan = self.planner.plan(node, target, position)
            logger.debug(f"[{MoveState.VALIDATED.value}] 节点 {plan.node.id} 校验通过")
            return self._apply(plan, node)

    def execute(self, plan: MovePlan, node: Any = None) -> MoveResult:
        """执行一个事先计算好的方案

        方案与数据库当前状态不一致时抛出 MoveNotPossibleException(STALE_PLAN)。
        """
        with self.lock.hold(self.schema, plan.forest):
            if node is None:
                node = self.queries.get(plan.node.id)
                if node is None:
                    raise Err.not_found(f"节点不存在: {plan.node.id}", node_id=plan.node.id)
            return self._apply(plan, node)

    # ==================== 执行流程 ====================

    def _apply(self, plan: MovePlan, node: Any) -> MoveResult:
        logger.debug(f"[{MoveState.PLANNED.value}] {plan!r}")

        if plan.is_noop:
            logger.debug(f"[{MoveState.IDLE.value}] 节点 {plan.node.id} 已在目标位置")
            return MoveResult(state=MoveState.IDLE, plan=plan, node=node)

        for observer in self.observers:
            if observer.moving(node, plan) is False:
                logger.info(f"移动被观察者 {observer.name} 中止: {plan!r}")
                return MoveResult(state=MoveState.ABORTED, plan=plan, node=node)

        in_outer = transaction_manager.is_in_transaction()
        attempts = 0

        def rewrite():
            nonlocal attempts
            attempts += 1
            self.session.flush()
            self.lock.lock_rows(self.session, self.schema, plan.forest)
            self._verify_plan(plan)
            return self._rewrite(plan)

        rowcount = run_with_retry(
            rewrite,
            session=self.session,
            max_retries=self.settings.rewrite_max_retries,
            retry_delay=self.settings.rewrite_retry_delay,
            backoff_multiplier=self.settings.retry_backoff_multiplier,
            max_delay=self.settings.retry_max_delay,
            label="结构重写",
        )
        # UPDATE 绕过了身份映射，已加载的节点需要重新读取
        self.session.expire_all()
        logger.debug(
            f"[{MoveState.COMMITTED.value}] 节点 {plan.node.id} 重写完成, "
            f"影响 {rowcount} 行, 尝试 {attempts} 次"
        )

        self.session.refresh(node)
        target = self.queries.get(plan.target.id)

        result = MoveResult(
            state=MoveState.COMMITTED,
            plan=plan,
            node=node,
            target=target,
            attempts=attempts,
        )

        try:
            result.depth_repaired = self.repair_depths(node)
            result.state = MoveState.DEPTH_REPAIRED
        except SQLAlchemyError as e:
            if in_outer:
                raise
            result.depth_error = Err.depth_repair(
                f"节点 {plan.node.id} 的深度修复失败: {type(e).__name__}: {e}",
                node_id=plan.node.id,
            )
            logger.warning(
                f"节点 {plan.node.id} 已移动但深度未修复，可调用 repair_depths 重试. "
                f"异常: {type(e).__name__}: {e}"
            )

        self._notify_moved(node, result)
        return result

    def _verify_plan(self, plan: MovePlan) -> None:
        """确认节点和目标的左右值与规划时一致"""
        s = self.schema
        stmt = (
            select(s.pk(), s.left_col(), s.right_col())
            .where(s.pk().in_([plan.node.id, plan.target.id]))
        )
        current = {row[0]: (row[1], row[2]) for row in self.session.execute(stmt)}
        for b in (plan.node, plan.target):
            if current.get(b.id) != (b.left, b.right):
                raise Err.move_not_possible(
                    "移动方案已过期，节点在规划之后被修改",
                    code=ErrorCode.STALE_PLAN,
                    node_id=b.id,
                    planned=(b.left, b.right),
                    current=current.get(b.id),
                )

    def _rewrite(self, plan: MovePlan) -> int:
        """一条 UPDATE 完成区间互换，并设置被移动节点的父节点"""
        s = self.schema
        left, right, parent, pk = s.left_col(), s.right_col(), s.parent_col(), s.pk()
        a, b, c, d = plan.boundaries

        def shifted(col):
            return case(
                (col.between(a, b), col + (d - b)),
                (col.between(c, d), col + (a - c)),
                else_=col,
            )

        new_parent = null() if plan.new_parent_id is None else plan.new_parent_id

        stmt = (
            update(s.table)
            .where(
                or_(left.between(*plan.span), right.between(*plan.span)),
                *s.forest_clauses(plan.forest),
            )
            .values({
                left: shifted(left),
                right: shifted(right),
                parent: case((pk == plan.node.id, new_parent), else_=parent),
            })
        )
        return self.session.execute(stmt).rowcount

    def _notify_moved(self, node: Any, result: MoveResult) -> None:
        for observer in self.observers:
            try:
                observer.moved(node, result)
            except Exception as e:
                logger.error(f"观察者 {observer.name} 处理 moved 事件失败: {type(e).__name__}: {e}")

    # ==================== 深度修复 ====================

    def repair_depths(self, node: Any) -> int:
        """重新计算节点及其子孙的深度，返回被修正的节点数（可重复执行）"""
        b = self.queries.boundary(node)
        return self._run_depth_repair(b.forest, (b.left, b.right))

    def rebuild_depths(self, forest: Optional[Tuple[Any, ...]] = None) -> int:
        """重新计算整棵树的深度，forest 为 None 时处理表中所有树"""
        return self._run_depth_repair(forest, None)

    def _run_depth_repair(self, forest, span) -> int:
        count = run_with_retry(
            lambda: self._repair_range(forest, span),
            session=self.session,
            max_retries=self.settings.depth_repair_max_retries,
            retry_delay=self.settings.rewrite_retry_delay,
            backoff_multiplier=self.settings.retry_backoff_multiplier,
            max_delay=self.settings.retry_max_delay,
            label="深度修复",
        )
        self.session.expire_all()
        return count

    def _repair_range(
        self,
        forest: Optional[Tuple[Any, ...]],
        span: Optional[Tuple[int, int]],
    ) -> int:
        """一次分组查询算出祖先数量，再用 executemany 写回有变化的行"""
        s = self.schema
        t = s.table.alias("t")
        anc = s.table.alias("anc")

        stmt = (
            select(s.pk(t), s.depth_col(t), func.count(s.pk(anc)))
            .select_from(t)
            .outerjoin(anc, and_(
                s.left_col(anc) < s.left_col(t),
                s.right_col(anc) > s.right_col(t),
                *s.forest_join(anc, t),
            ))
            .group_by(s.pk(t), s.depth_col(t))
        )
        if forest is not None:
            stmt = stmt.where(*s.forest_clauses(forest, t))
        if span is not None:
            stmt = stmt.where(s.left_col(t).between(*span))

        changes = [
            {"b_id": pk, "b_depth": ancestors}
            for pk, depth, ancestors in self.session.execute(stmt)
            if depth != ancestors
        ]
        if not changes:
            return 0

        self.session.execute(
            update(s.table)
            .where(s.pk() == bindparam("b_id"))
            .values({s.depth_col(): bindparam("b_depth")}),
            changes,
        )
        logger.debug(f"修正了 {len(changes)} 个节点的深度")
        return len(changes)


__all__ = ["MoveState", "MoveResult", "MoveExecutor"]
