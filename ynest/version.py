"""版本信息"""

__version__ = "0.1.0"
__author__ = "ynest"
__description__ = "基于 SQLAlchemy 的嵌套集合（Nested Set）树形结构库"
