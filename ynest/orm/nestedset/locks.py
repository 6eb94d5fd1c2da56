"""树级移动锁

同一棵树（同一组 forest 键值）上的移动必须串行执行，不同树之间互不影响。
"""

import threading
import weakref
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Hashable, Iterator, Tuple, Union

from sqlalchemy import Connection, select
from sqlalchemy.orm import Session

from ynest.log import get_logger

from .schema import TreeSchema

logger = get_logger()


def lock_forest_rows(
    executor: Union[Session, Connection],
    schema: TreeSchema,
    forest: Tuple[Any, ...],
) -> None:
    """SELECT ... FOR UPDATE 锁住一棵树的所有行，锁持有到当前事务结束

    executor 可以是 Session，也可以是 flush 事件里拿到的 Connection。
    只选主键列，PostgreSQL 不允许 FOR UPDATE 与聚合函数同用。
    树中还没有任何行时没有可锁的对象。
    """
    stmt = (
        select(schema.pk())
        .where(*schema.forest_clauses(forest))
        .with_for_update()
    )
    executor.execute(stmt).all()
    logger.debug(f"已锁定树 {schema.table.name}{forest} 的所有行")


class ForestLock(ABC):
    """树级锁基类

    两个切入点：
    - hold: 包住整次移动（规划、重写、重试），用于进程内互斥
    - lock_rows: 在结构重写事务开始时调用，用于数据库行锁
    """

    @abstractmethod
    def hold(self, schema: TreeSchema, forest: Tuple[Any, ...]):
        """返回包住整次移动的上下文管理器"""
        pass

    @abstractmethod
    def lock_rows(self, session: Session, schema: TreeSchema, forest: Tuple[Any, ...]) -> None:
        """在重写事务内锁定树的行，不需要时直接返回"""
        pass


class NullForestLock(ForestLock):
    """不加锁，依赖数据库隔离级别"""

    @contextmanager
    def hold(self, schema: TreeSchema, forest: Tuple[Any, ...]) -> Iterator[None]:
        yield

    def lock_rows(self, session: Session, schema: TreeSchema, forest: Tuple[Any, ...]) -> None:
        return None


class LocalForestLock(ForestLock):
    """进程内锁，每个 (表名, forest 键值) 一把可重入锁

    锁表只保存弱引用，没有移动在用的锁会被回收，
    因此分区键值很多时锁表也不会一直增长。
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[Hashable, Any]" = weakref.WeakValueDictionary()

    def _key(self, schema: TreeSchema, forest: Tuple[Any, ...]) -> Hashable:
        return (schema.table.name, forest)

    def get_lock(self, schema: TreeSchema, forest: Tuple[Any, ...]):
        """取得 (表, 树) 对应的锁，调用方需持有返回值直到用完"""
        key = self._key(schema, forest)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, schema: TreeSchema, forest: Tuple[Any, ...]) -> Iterator[None]:
        lock = self.get_lock(schema, forest)
        with lock:
            yield

    def lock_rows(self, session: Session, schema: TreeSchema, forest: Tuple[Any, ...]) -> None:
        return None


class RowForestLock(ForestLock):
    """SELECT ... FOR UPDATE 锁住整棵树的行，锁随重写事务提交或回滚释放

    SQLite 不支持 FOR UPDATE，语句会被忽略。
    """

    @contextmanager
    def hold(self, schema: TreeSchema, forest: Tuple[Any, ...]) -> Iterator[None]:
        yield

    def lock_rows(self, session: Session, schema: TreeSchema, forest: Tuple[Any, ...]) -> None:
        lock_forest_rows(session, schema, forest)


# 进程内共享的默认锁
default_forest_lock = LocalForestLock()


def forest_lock_for(backend: str) -> ForestLock:
    """根据配置值选择锁实现：local / row / none"""
    if backend == "local":
        return default_forest_lock
    if backend == "row":
        return RowForestLock()
    if backend == "none":
        return NullForestLock()
    raise ValueError(f"未知的锁类型: {backend}")


__all__ = [
    "ForestLock",
    "NullForestLock",
    "LocalForestLock",
    "RowForestLock",
    "default_forest_lock",
    "forest_lock_for",
    "lock_forest_rows",
]
