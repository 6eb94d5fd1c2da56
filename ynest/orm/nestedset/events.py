"""移动事件观察者

观察者在构造执行器时显式传入，不存在全局事件分发器。
"""

from typing import Any, Callable, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .executor import MoveResult
    from .planner import MovePlan


class MoveObserver:
    """移动观察者基类

    子类按需覆盖：
    - moving: 结构重写之前调用，返回 False 会中止本次移动（不写入任何数据）
    - moved: 深度修复之后调用，异常只记录日志，不影响已提交的移动

    使用示例:
        class AuditObserver(MoveObserver):
            def moved(self, node, result):
                audit.record(node.id, result.plan.new_parent_id)

        executor = MoveExecutor(schema, session, observers=[AuditObserver()])
    """

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def moving(self, node: Any, plan: "MovePlan") -> Optional[bool]:
        return None

    def moved(self, node: Any, result: "MoveResult") -> None:
        return None


class CallbackMoveObserver(MoveObserver):
    """用函数构造观察者

    使用示例:
        guard = CallbackMoveObserver(moving=lambda node, plan: not node.locked)
    """

    def __init__(
        self,
        moving: Callable[[Any, "MovePlan"], Optional[bool]] = None,
        moved: Callable[[Any, "MoveResult"], None] = None,
    ):
        self._moving = moving
        self._moved = moved

    @property
    def name(self) -> str:
        func = self._moving or self._moved
        return getattr(func, "__name__", super().name)

    def moving(self, node, plan):
        if self._moving is None:
            return None
        return self._moving(node, plan)

    def moved(self, node, result):
        if self._moved is not None:
            self._moved(node, result)


__all__ = ["MoveObserver", "CallbackMoveObserver"]
