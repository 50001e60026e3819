"""应用设置模型."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from design_export.utils.constants import (
    CONVERSION_TIMEOUT,
    DATABASE_PATH,
    DEFAULT_RASTERIZER_BINARY,
    DEFAULT_TRANSCODER_BINARY,
    DEFAULT_WORKER_COUNT,
    EXPORT_ROOT,
    IMAGE_RETENTION_HOURS,
    JOB_TIMEOUT,
    MAX_RETRIES,
    VIDEO_RETENTION_HOURS,
)


class Settings(BaseSettings):
    """应用设置.

    支持从环境变量（前缀 ``DESIGN_EXPORT_``）和 .env 文件加载配置。

    Attributes:
        log_level: 日志级别
        export_root: 导出文件根目录
        database_url: 任务数据库 URL
        rasterizer_binary: 栅格化工具（ImageMagick）
        transcoder_binary: 视频转码工具（ffmpeg）
        conversion_timeout: 单次转换子进程超时（秒）
        job_timeout: 单个任务渲染+转换总超时（秒）
        worker_count: 并发 worker 数
        max_retries: 最大重试次数
        image_retention_hours: 图片产物保留时长
        video_retention_hours: 视频产物保留时长
        embed_images: 是否将图片内联为 data URI
    """

    model_config = SettingsConfigDict(
        env_prefix="DESIGN_EXPORT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 应用配置
    log_level: str = Field(
        default="INFO",
        description="日志级别",
    )

    # 存储配置
    export_root: Path = Field(
        default=EXPORT_ROOT,
        description="导出文件根目录",
    )

    database_url: Optional[str] = Field(
        default=None,
        description="任务数据库 URL",
    )

    # 转换配置
    rasterizer_binary: str = Field(
        default=DEFAULT_RASTERIZER_BINARY,
        description="栅格化工具",
    )

    transcoder_binary: str = Field(
        default=DEFAULT_TRANSCODER_BINARY,
        description="视频转码工具",
    )

    conversion_timeout: float = Field(
        default=CONVERSION_TIMEOUT,
        gt=0,
        description="转换子进程超时（秒）",
    )

    job_timeout: float = Field(
        default=JOB_TIMEOUT,
        gt=0,
        description="任务总超时（秒）",
    )

    embed_images: bool = Field(
        default=False,
        description="内联图片资源",
    )

    # 调度配置
    worker_count: int = Field(
        default=DEFAULT_WORKER_COUNT,
        ge=1,
        le=16,
        description="并发 worker 数",
    )

    max_retries: int = Field(
        default=MAX_RETRIES,
        ge=0,
        le=10,
        description="最大重试次数",
    )

    # 保留策略
    image_retention_hours: int = Field(
        default=IMAGE_RETENTION_HOURS,
        ge=1,
        description="图片产物保留时长（小时）",
    )

    video_retention_hours: int = Field(
        default=VIDEO_RETENTION_HOURS,
        ge=1,
        description="视频产物保留时长（小时）",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """验证日志级别."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"无效的日志级别: {v}，有效值: {valid_levels}")
        return upper_v

    @property
    def db_url(self) -> str:
        """获取数据库 URL."""
        return self.database_url or f"sqlite:///{DATABASE_PATH}"


# 全局设置实例
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """获取全局设置实例."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """重置全局设置（主要用于测试）."""
    global _settings
    _settings = None
