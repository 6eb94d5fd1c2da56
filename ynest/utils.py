"""通用工具函数"""

import re
from typing import Union


# 单位转换表（按长度降序排列）
_SIZE_UNITS = [
    ('TB', 1024 ** 4),
    ('GB', 1024 ** 3),
    ('MB', 1024 ** 2),
    ('KB', 1024),
    ('B', 1),
]


def parse_file_size(size_str: Union[str, int, float]) -> int:
    """解析文件大小字符串

    支持 B, KB, MB, GB, TB（不区分大小写），也可以直接传入字节数。

    Raises:
        ValueError: 当格式无效时抛出异常

    使用示例:
        >>> parse_file_size("10MB")
        10485760
        >>> parse_file_size(1024)
        1024
    """
    if isinstance(size_str, (int, float)):
        return int(size_str)

    text = str(size_str).strip().upper()
    if not text:
        raise ValueError("文件大小字符串不能为空")

    for unit, multiplier in _SIZE_UNITS:
        if text.endswith(unit):
            number = text[:-len(unit)].strip()
            try:
                return int(float(number) * multiplier)
            except ValueError:
                raise ValueError(f"无法解析文件大小: {size_str}") from None

    try:
        return int(float(text))
    except ValueError:
        raise ValueError(f"无法解析文件大小: {size_str}") from None


def to_snake_case(name: str) -> str:
    """驼峰命名转下划线命名（支持连续大写缩写）

    Examples:
        >>> to_snake_case("CategoryNode")
        'category_node'
        >>> to_snake_case("HTTPRoute")
        'http_route'
    """
    name = re.sub(r'([A-Z]+)([A-Z][a-z])', r'\1_\2', name)
    name = re.sub(r'([a-z0-9])([A-Z])', r'\1_\2', name)
    return name.lower()
