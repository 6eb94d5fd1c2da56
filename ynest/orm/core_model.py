"""
ORM基础模型

提供主键、时间戳、自动表名与常用 CRUD 方法
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, ClassVar, List, Union, TYPE_CHECKING

from sqlalchemy import Integer, DateTime, func
from sqlalchemy.orm import (
    Mapped, mapped_column, declared_attr, declarative_base, Session, Query, object_session,
)

from ..utils import to_snake_case

if TYPE_CHECKING:
    from typing_extensions import Self


# 声明基类
Base = declarative_base()

# 主键类型别名
PKType = Union[int, str]


class CoreModel(Base):
    """ORM基础模型类

    提供功能：
    - 自增整数主键
    - 自动表名生成（驼峰转下划线）
    - 创建/更新时间戳
    - 常用 CRUD 方法，事务上下文中自动抑制 commit=True

    使用示例:
        from ynest.orm import CoreModel, init_database

        init_database("sqlite:///./tree.db")

        class Region(CoreModel):
            name: Mapped[str] = mapped_column(String(50))

        region = Region(name="华东")
        region.save(commit=True)
    """
    __abstract__ = True

    # query 属性在 init_database 后通过 scoped_session.query_property() 设置
    if TYPE_CHECKING:
        query: ClassVar[Query[Self]]
    else:
        query = None

    @declared_attr.directive
    def __tablename__(cls) -> str:
        """驼峰命名转下划线"""
        return to_snake_case(cls.__name__)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True, comment="主键")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        server_default=func.now(),
        comment="创建时间"
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=False),
        nullable=True,
        onupdate=func.now(),
        comment="更新时间"
    )

    def __repr__(self):
        return f"<{self.__class__.__name__} id={self.id}>"

    def __getattribute__(self, name):
        """访问 id 时，如果对象处于 pending 状态则自动 flush 以获取主键"""
        value = super().__getattribute__(name)

        if name == 'id' and value is None:
            try:
                state = super().__getattribute__('_sa_instance_state')
                session = state.session
                # flush 过程中（如 before_insert 事件）不能再次 flush
                if session is not None and state.pending and not session._flushing:
                    session.flush()
                    return super().__getattribute__(name)
            except (AttributeError, KeyError):
                pass

        return value

    @property
    def session(self) -> Session:
        """获取当前session

        优先使用对象已绑定的 session，其次是 query 属性的 session，最后是全局 scoped_session
        """
        bound = object_session(self)
        if bound is not None:
            return bound
        if self.__class__.query is not None:
            return self.__class__.query.session
        from .db_session import db_manager
        return db_manager.get_session()

    # ==================== CRUD 操作方法 ====================

    def save(self, commit: bool = False) -> Self:
        """保存对象（新增或更新）

        Args:
            commit: 是否立即提交
                   - 无事务时：执行 session.commit()
                   - 有事务时：commit 被抑制，只 flush
        """
        self.session.add(self)
        self.__is_commit(commit)
        return self

    def delete(self, commit: bool = False):
        """删除对象

        注意：嵌套集合模型删除节点不会收拢左右值，需要调用方维护。
        """
        self.session.delete(self)
        self.__is_commit(commit)

    def refresh(self, attribute_names: list = None) -> Self:
        """从数据库重新加载对象状态"""
        self.session.refresh(self, attribute_names=attribute_names)
        return self

    @classmethod
    def get(cls, id: PKType):
        """根据ID获取对象，不存在返回None"""
        return cls.query.session.get(cls, id)

    @classmethod
    def get_all(cls) -> List:
        """获取所有记录"""
        return cls.query.all()

    def __is_commit(self, commit=False):
        if commit:
            if self._should_suppress_commit():
                self.session.flush()
                return
            self.session.commit()

    def _should_suppress_commit(self) -> bool:
        from .transaction import get_current_transaction
        tx = get_current_transaction()
        if tx is not None and tx.should_suppress_commit():
            from ynest.log import get_logger
            get_logger("orm.transaction").debug("commit=True 被事务上下文抑制")
            return True
        return False
