"""事务重试

处理死锁、锁等待超时等可重试的数据库异常
"""

import time
from functools import wraps
from typing import Callable, TypeVar, Tuple, Type

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ynest.log import get_logger

logger = get_logger("ynest.orm.transaction")

T = TypeVar('T')


def run_with_retry(
    func: Callable[[], T],
    session: Session = None,
    max_retries: int = 3,
    retry_delay: float = 0.1,
    retry_on: Tuple[Type[Exception], ...] = (OperationalError,),
    backoff_multiplier: float = 2.0,
    max_delay: float = 10.0,
    label: str = "事务",
) -> T:
    """在独立事务中执行 func，遇到 retry_on 异常时回滚并按指数退避重试

    每次尝试都是一个完整的事务：失败时整体回滚，不会留下部分写入。
    已处于外层事务中时只执行一次，异常直接抛给外层。

    Args:
        func: 无参可调用对象，在事务内执行
        session: 数据库会话，不传则由事务管理器获取
        max_retries: 最大重试次数（不包括首次尝试）
        retry_delay: 初始重试间隔（秒）
        retry_on: 需要重试的异常类型元组
        backoff_multiplier: 退避乘数
        max_delay: 最大延迟时间（秒）
        label: 日志中使用的操作名称

    Returns:
        func 的返回值
    """
    from .manager import transaction_manager

    # 加入外层事务时无法单独回滚，重试交给外层
    if transaction_manager.is_in_transaction():
        max_retries = 0

    current_delay = retry_delay

    for attempt in range(max_retries + 1):
        try:
            with transaction_manager.transaction(session=session):
                return func()
        except retry_on as e:
            if attempt >= max_retries:
                logger.error(
                    f"{label}重试 {max_retries} 次后仍失败. "
                    f"异常: {type(e).__name__}: {e}"
                )
                raise

            actual_delay = min(current_delay, max_delay)
            logger.warning(
                f"{label}执行失败 (尝试 {attempt + 1}/{max_retries + 1}), "
                f"{actual_delay:.2f}s 后重试. "
                f"异常: {type(e).__name__}: {e}"
            )
            time.sleep(actual_delay)
            current_delay *= backoff_multiplier

    raise RuntimeError("Unexpected state in run_with_retry")


def transaction_with_retry(
    max_retries: int = 3,
    retry_delay: float = 0.1,
    retry_on: Tuple[Type[Exception], ...] = (OperationalError,),
    backoff_multiplier: float = 2.0,
    max_delay: float = 10.0
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """带重试机制的事务装饰器

    使用示例:
        @transaction_with_retry(max_retries=3)
        def regroup(node_id, target_id):
            node = Category.get(node_id)
            node.make_child_of(target_id)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            return run_with_retry(
                lambda: func(*args, **kwargs),
                max_retries=max_retries,
                retry_delay=retry_delay,
                retry_on=retry_on,
                backoff_multiplier=backoff_multiplier,
                max_delay=max_delay,
            )
        return wrapper

    return decorator
