"""辅助函数模块.

提供各种通用辅助函数。
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional


def generate_uuid() -> str:
    """生成 UUID.

    Returns:
        UUID 字符串
    """
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """获取当前 UTC 时间（不带时区信息，便于数据库存储）."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_timestamp(dt: Optional[datetime] = None) -> str:
    """获取时间戳字符串.

    Args:
        dt: 日期时间对象，默认为当前 UTC 时间

    Returns:
        格式化的时间戳（YYYYmmdd_HHMMSS）
    """
    if dt is None:
        dt = utc_now()
    return dt.strftime("%Y%m%d_%H%M%S")


def format_file_size(size_bytes: float) -> str:
    """格式化文件大小.

    Args:
        size_bytes: 文件大小（字节）

    Returns:
        格式化后的大小字符串
    """
    for unit in ["B", "KB", "MB", "GB"]:
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} TB"


def clamp(value: float, min_val: float, max_val: float) -> float:
    """限制值在指定范围内.

    Args:
        value: 原始值
        min_val: 最小值
        max_val: 最大值

    Returns:
        限制后的值
    """
    return max(min_val, min(max_val, value))


def hex_to_rgba(hex_color: str, opacity: float = 1.0) -> tuple[int, int, int, int]:
    """十六进制颜色转 RGBA.

    支持 #RGB / #RRGGBB / #RRGGBBAA，透明度会与颜色自带的 alpha 相乘。

    Args:
        hex_color: 十六进制颜色字符串
        opacity: 额外的不透明度 (0-1)

    Returns:
        RGBA 元组
    """
    value = hex_color.lstrip("#")
    if len(value) == 3:
        value = "".join(c * 2 for c in value)
    r, g, b = (int(value[i:i + 2], 16) for i in (0, 2, 4))
    a = int(value[6:8], 16) if len(value) == 8 else 255
    return (r, g, b, int(round(a * clamp(opacity, 0.0, 1.0))))
