"""数据库会话管理

提供引擎创建、scoped_session 管理和会话上下文
"""

from contextlib import contextmanager
from typing import Any, Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, scoped_session, Session
from sqlalchemy.pool import StaticPool

from ynest.log import get_logger

logger = get_logger("ynest.orm.db_session")


class DatabaseManager:
    """数据库管理器（单例）

    使用示例:
        from ynest.orm import db_manager

        db_manager.init(database_url="sqlite:///./tree.db")
        session = db_manager.get_session()
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        self._engine: Optional[Engine] = None
        self._session_scope: Optional[scoped_session] = None
        self._initialized = True

    @property
    def engine(self) -> Engine:
        """获取数据库引擎

        Raises:
            RuntimeError: 数据库未初始化时
        """
        if self._engine is None:
            raise RuntimeError("数据库未初始化，请先调用 init_database()")
        return self._engine

    @property
    def session_scope(self) -> scoped_session:
        if self._session_scope is None:
            raise RuntimeError("数据库未初始化，请先调用 init_database()")
        return self._session_scope

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None and self._session_scope is not None

    def init(
        self,
        database_url: str = None,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_timeout: int = 30,
        pool_recycle: int = 3600,
        pool_pre_ping: bool = True,
        config: Any = None,
        auto_setup_query: bool = True
    ):
        """初始化数据库连接

        Args:
            database_url: 数据库连接URL
            echo: 是否打印SQL
            config: DatabaseSettings 对象，提供后覆盖上面的同名参数
            auto_setup_query: 是否自动设置 CoreModel.query

        Returns:
            tuple: (engine, session_scope)
        """
        if config is not None:
            database_url = config.url or database_url
            echo = config.echo
            pool_size = config.pool_size
            max_overflow = config.max_overflow
            pool_timeout = config.pool_timeout
            pool_recycle = config.pool_recycle
            pool_pre_ping = config.pool_pre_ping

        if not database_url:
            raise ValueError("database_url 不能为空")

        if database_url.startswith("sqlite"):
            if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
                # 内存数据库：单连接
                self._engine = create_engine(
                    database_url,
                    echo=echo,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )
                logger.info("SQLite内存数据库引擎创建成功（StaticPool）")
            else:
                self._engine = create_engine(
                    database_url,
                    echo=echo,
                    connect_args={"check_same_thread": False, "timeout": pool_timeout},
                )
                logger.info("SQLite文件数据库引擎创建成功")
        else:
            self._engine = create_engine(
                database_url,
                echo=echo,
                pool_pre_ping=pool_pre_ping,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_recycle=pool_recycle,
            )
            logger.info("数据库引擎创建成功")

        session_maker = sessionmaker(autocommit=False, autoflush=True, bind=self._engine)
        self._session_scope = scoped_session(session_maker)

        if auto_setup_query:
            from .core_model import CoreModel
            CoreModel.query = self._session_scope.query_property()
            logger.info("CoreModel.query 属性已自动设置")

        return self._engine, self._session_scope

    def get_session(self) -> Session:
        """获取当前线程的 scoped session"""
        return self.session_scope()

    def cleanup(self):
        """移除当前线程的 session，未提交的更改会被丢弃"""
        if self._session_scope is not None:
            self._session_scope.remove()
            logger.debug("session_scope 移除完成")

    def dispose(self):
        """释放引擎与会话（测试或应用关闭时使用）"""
        self.cleanup()
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._session_scope = None


# 全局单例
db_manager = DatabaseManager()


def init_database(database_url: str = None, **kwargs):
    """初始化数据库连接，参数见 DatabaseManager.init()"""
    return db_manager.init(database_url=database_url, **kwargs)


def get_engine() -> Engine:
    return db_manager.engine


@contextmanager
def db_session_scope(auto_commit: bool = True) -> Generator[Session, None, None]:
    """脚本场景的 session 上下文管理器

    使用示例:
        with db_session_scope() as session:
            node = Category.get(1)
            node.make_root()
        # 自动提交并清理
    """
    session = db_manager.get_session()
    try:
        yield session
        if auto_commit:
            session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        db_manager.cleanup()
