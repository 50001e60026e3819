"""导出任务模型.

Features:
    - 封闭的导出格式枚举（大小写不敏感，jpeg 归一为 jpg）
    - 导出选项（质量档位、尺寸、透明、背景色覆盖、动画覆盖）
    - 任务状态机（非法迁移抛出 JobStateError）
    - 任务状态视图与统计
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from design_export.models.layer import validate_color
from design_export.utils.constants import (
    IMAGE_RETENTION_HOURS,
    MAX_CANVAS_SIZE,
    MIME_TYPES,
    QUALITY_VALUES,
    VIDEO_RETENTION_HOURS,
)
from design_export.utils.exceptions import JobStateError, UnsupportedFormatError
from design_export.utils.helpers import generate_uuid, utc_now


# ===================
# 枚举定义
# ===================


class ExportFormat(str, Enum):
    """导出格式."""

    PNG = "png"
    JPG = "jpg"
    SVG = "svg"
    PDF = "pdf"
    GIF = "gif"
    MP4 = "mp4"
    WEBM = "webm"

    @classmethod
    def parse(cls, value: Any) -> "ExportFormat":
        """解析导出格式.

        Args:
            value: 格式字符串（大小写不敏感，支持 jpeg）

        Returns:
            ExportFormat 枚举

        Raises:
            UnsupportedFormatError: 不在支持的格式集合内
        """
        if isinstance(value, ExportFormat):
            return value
        normalized = str(value).strip().lower()
        if normalized == "jpeg":
            normalized = "jpg"
        try:
            return cls(normalized)
        except ValueError:
            raise UnsupportedFormatError(str(value)) from None

    @classmethod
    def accepted_names(cls) -> list[str]:
        """对外接受的格式名称（含别名）."""
        return ["png", "jpg", "jpeg", "svg", "pdf", "gif", "mp4", "webm"]

    @property
    def extension(self) -> str:
        return self.value

    @property
    def mime_type(self) -> str:
        """MIME 类型."""
        return MIME_TYPES[self.value]

    @property
    def is_video(self) -> bool:
        """是否为视频格式."""
        return self in (ExportFormat.MP4, ExportFormat.WEBM)

    @property
    def supports_transparency(self) -> bool:
        """是否支持透明背景."""
        return self in (ExportFormat.PNG, ExportFormat.GIF, ExportFormat.SVG)


class ExportQuality(str, Enum):
    """质量档位."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    ULTRA = "ultra"

    @property
    def numeric(self) -> int:
        """对应的数值质量 (1-100)."""
        return QUALITY_VALUES[self.value]


class JobStatus(str, Enum):
    """任务状态枚举."""

    CREATED = "created"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# 允许的状态迁移
JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.CREATED: frozenset({JobStatus.QUEUED, JobStatus.CANCELLED}),
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING, JobStatus.CANCELLED}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

CANCELLABLE_STATUSES = frozenset({JobStatus.CREATED, JobStatus.QUEUED})


# ===================
# 导出选项与产物
# ===================


class ExportOptions(BaseModel):
    """导出选项.

    Attributes:
        quality: 质量档位
        width: 输出宽度
        height: 输出高度
        scale: 缩放比例（未指定宽高时生效）
        transparent: 透明背景
        background_color: 背景色覆盖
        animation_settings: 动画设置覆盖
    """

    model_config = ConfigDict(populate_by_name=True)

    quality: ExportQuality = Field(default=ExportQuality.HIGH, description="质量档位")
    width: Optional[int] = Field(default=None, ge=1, le=MAX_CANVAS_SIZE, description="输出宽度")
    height: Optional[int] = Field(default=None, ge=1, le=MAX_CANVAS_SIZE, description="输出高度")
    scale: Optional[float] = Field(default=None, gt=0, le=10, description="缩放比例")
    transparent: bool = Field(default=False, description="透明背景")
    background_color: Optional[str] = Field(
        default=None,
        alias="backgroundColor",
        description="背景色覆盖",
    )
    animation_settings: Optional[dict[str, Any]] = Field(
        default=None,
        alias="animationSettings",
        description="动画设置覆盖",
    )

    @field_validator("background_color")
    @classmethod
    def check_background_color(cls, v: Optional[str]) -> Optional[str]:
        """验证背景色."""
        return validate_color(v)

    @property
    def has_resize(self) -> bool:
        """是否指定了输出尺寸."""
        return self.width is not None or self.height is not None

    @property
    def quality_value(self) -> int:
        return self.quality.numeric


class ArtifactInfo(BaseModel):
    """导出产物元数据."""

    path: str
    file_name: str
    size: int = Field(ge=0)
    mime_type: str


class ArtifactSummary(BaseModel):
    """对外展示的产物信息（不含内部路径）."""

    file_name: str
    size: int
    mime_type: str


class JobError(BaseModel):
    """对外展示的错误信息."""

    code: str
    message: str


class JobStatusView(BaseModel):
    """任务状态视图."""

    job_id: str
    status: JobStatus
    progress: int
    artifact: Optional[ArtifactSummary] = None
    error: Optional[JobError] = None


# ===================
# 导出任务
# ===================


class ExportJob(BaseModel):
    """导出任务.

    只有导出任务控制器会修改任务状态；终态任务不会回到非终态，
    重试会创建新的任务。

    Attributes:
        id: 任务ID
        design_id: 设计稿ID
        requester_id: 请求者ID
        format: 导出格式
        options: 导出选项
        status: 任务状态
        progress: 处理进度 (0-100)
        artifact: 产物元数据（完成后）
        error_code: 错误代码（失败后）
        error_message: 错误消息（失败后，面向用户）
        error_details: 错误详情（内部诊断用）
        retry_of: 被重试的原任务ID
        retry_count: 重试链长度
        created_at: 创建时间
        updated_at: 更新时间
        started_at: 开始处理时间
        completed_at: 结束时间
        expires_at: 过期时间
    """

    id: str = Field(default_factory=generate_uuid)
    design_id: str
    requester_id: str
    format: ExportFormat
    options: ExportOptions = Field(default_factory=ExportOptions)
    status: JobStatus = Field(default=JobStatus.CREATED)
    progress: int = Field(default=0, ge=0, le=100)
    artifact: Optional[ArtifactInfo] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    error_details: Optional[dict[str, Any]] = None
    retry_of: Optional[str] = None
    retry_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @field_validator("format", mode="before")
    @classmethod
    def parse_format(cls, v: Any) -> ExportFormat:
        return ExportFormat.parse(v)

    # ---------- 状态迁移 ----------

    def can_transition_to(self, status: JobStatus) -> bool:
        """是否允许迁移到目标状态."""
        return status in JOB_TRANSITIONS[self.status]

    def transition_to(self, status: JobStatus) -> None:
        """迁移到目标状态.

        Args:
            status: 目标状态

        Raises:
            JobStateError: 不允许的状态迁移
        """
        if not self.can_transition_to(status):
            raise JobStateError(
                f"任务 {self.id} 不能从 {self.status.value} 迁移到 {status.value}"
            )
        self.status = status
        self.updated_at = utc_now()

    def mark_queued(self) -> None:
        """标记为已入队."""
        self.transition_to(JobStatus.QUEUED)

    def mark_processing(self, progress: int = 10) -> None:
        """标记为处理中."""
        self.transition_to(JobStatus.PROCESSING)
        self.started_at = self.updated_at
        self.progress = progress

    def update_progress(self, progress: int) -> None:
        """更新处理进度."""
        self.progress = max(0, min(100, progress))
        self.updated_at = utc_now()

    def mark_completed(
        self,
        artifact: ArtifactInfo,
        retention_hours: Optional[int] = None,
    ) -> None:
        """标记为完成.

        Args:
            artifact: 产物元数据
            retention_hours: 产物保留时长，默认按格式决定
        """
        self.transition_to(JobStatus.COMPLETED)
        self.artifact = artifact
        self.progress = 100
        self._finish(retention_hours)

    def mark_failed(
        self,
        code: str,
        message: str,
        details: Optional[dict[str, Any]] = None,
        retention_hours: Optional[int] = None,
    ) -> None:
        """标记为失败.

        Args:
            code: 错误代码
            message: 面向用户的错误消息
            details: 内部诊断详情
            retention_hours: 记录保留时长，默认按格式决定
        """
        self.transition_to(JobStatus.FAILED)
        self.error_code = code
        self.error_message = message
        self.error_details = details
        self._finish(retention_hours)

    def mark_cancelled(self) -> None:
        """标记为已取消."""
        self.transition_to(JobStatus.CANCELLED)
        self.completed_at = self.updated_at

    def _finish(self, retention_hours: Optional[int]) -> None:
        hours = retention_hours if retention_hours is not None else self.retention_hours
        self.completed_at = self.updated_at
        self.expires_at = self.completed_at + timedelta(hours=hours)

    # ---------- 属性 ----------

    @property
    def retention_hours(self) -> int:
        """产物保留时长（小时）."""
        return VIDEO_RETENTION_HOURS if self.format.is_video else IMAGE_RETENTION_HOURS

    @property
    def is_finished(self) -> bool:
        """是否已结束 (完成、失败或取消)."""
        return self.status in TERMINAL_STATUSES

    @property
    def is_cancellable(self) -> bool:
        return self.status in CANCELLABLE_STATUSES

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """是否已过期.

        Args:
            now: 当前时间，默认为 UTC 当前时间
        """
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utc_now())

    # ---------- 派生 ----------

    def clone_for_retry(self) -> "ExportJob":
        """基于当前任务参数创建重试任务（新ID，状态为 created）."""
        return ExportJob(
            design_id=self.design_id,
            requester_id=self.requester_id,
            format=self.format,
            options=self.options.model_copy(deep=True),
            retry_of=self.id,
            retry_count=self.retry_count + 1,
        )

    def to_status_view(self) -> JobStatusView:
        """转换为对外状态视图."""
        artifact = None
        if self.status == JobStatus.COMPLETED and self.artifact is not None:
            artifact = ArtifactSummary(
                file_name=self.artifact.file_name,
                size=self.artifact.size,
                mime_type=self.artifact.mime_type,
            )
        error = None
        if self.status == JobStatus.FAILED:
            error = JobError(
                code=self.error_code or "INTERNAL_ERROR",
                message=self.error_message or "导出失败",
            )
        return JobStatusView(
            job_id=self.id,
            status=self.status,
            progress=self.progress,
            artifact=artifact,
            error=error,
        )


class JobStats(BaseModel):
    """任务统计信息.

    Attributes:
        total: 总任务数
        created: 已创建数
        queued: 排队数
        processing: 处理中数
        completed: 已完成数
        failed: 失败数
        cancelled: 已取消数
    """

    total: int = Field(default=0, ge=0)
    created: int = Field(default=0, ge=0)
    queued: int = Field(default=0, ge=0)
    processing: int = Field(default=0, ge=0)
    completed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    cancelled: int = Field(default=0, ge=0)

    @property
    def finished(self) -> int:
        """已结束的任务数（完成 + 失败 + 取消）."""
        return self.completed + self.failed + self.cancelled

    @property
    def success_rate(self) -> float:
        """成功率."""
        if self.finished == 0:
            return 0.0
        return self.completed / self.finished * 100

    @classmethod
    def from_counts(cls, counts: dict[str, int]) -> "JobStats":
        """从状态计数创建统计信息."""
        values = {status.value: counts.get(status.value, 0) for status in JobStatus}
        return cls(total=sum(values.values()), **values)

    @classmethod
    def from_jobs(cls, jobs: list[ExportJob]) -> "JobStats":
        """从任务列表创建统计信息."""
        counts: dict[str, int] = {}
        for job in jobs:
            counts[job.status.value] = counts.get(job.status.value, 0) + 1
        return cls.from_counts(counts)
