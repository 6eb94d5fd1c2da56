"""配置模块"""

from .settings import (
    DatabaseSettings,
    LoggingSettings,
    NestedSetSettings,
    AppSettings,
)
from .loader import ConfigLoader, load_yaml_config

__all__ = [
    "DatabaseSettings",
    "LoggingSettings",
    "NestedSetSettings",
    "AppSettings",
    "ConfigLoader",
    "load_yaml_config",
]
