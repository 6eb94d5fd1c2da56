"""事务传播行为"""

from enum import Enum


class TransactionPropagation(str, Enum):
    """事务传播行为

    定义在已有事务中再次开启事务时的处理方式。
    """

    REQUIRED = "required"
    """如果当前有事务则加入，没有则新建（默认）

    节点移动在调用方已开启的事务中执行时会加入该事务，
    提交时机由外层事务决定。
    """

    REQUIRES_NEW = "requires_new"
    """在现有事务中通过 savepoint 隔离执行，没有则新建"""

    MANDATORY = "mandatory"
    """必须在事务中执行，否则抛出异常"""

    NEVER = "never"
    """必须不在事务中执行，否则抛出异常"""
