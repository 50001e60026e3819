"""导出任务控制器.

负责导出任务的状态机：创建、入队、处理、取消、重试，以及产物读取和
过期清理。

状态迁移::

    created → queued → processing → completed | failed
    created | queued → cancelled

Features:
    - 格式与选项在创建时同步校验，校验失败不会创建任务
    - queued → processing 通过仓储的原子认领完成
    - 进入 processing 之后的任何错误都会记录到任务上
    - 重试创建新任务，原失败任务保持不变
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from design_export.core.job_queue import JobQueue
from design_export.models.document import Document
from design_export.models.export_job import (
    CANCELLABLE_STATUSES,
    ArtifactInfo,
    ExportFormat,
    ExportJob,
    ExportOptions,
    JobStats,
    JobStatus,
    JobStatusView,
)
from design_export.services.blob_store import FileBlobStore, StagedArtifact
from design_export.services.design_repository import DesignRepository
from design_export.services.document_renderer import DocumentRenderer, RenderOverrides
from design_export.services.format_converter import BaseConverter
from design_export.services.job_repository import ExportJobRepository
from design_export.utils.constants import (
    IMAGE_RETENTION_HOURS,
    JOB_TIMEOUT,
    MAX_RETRIES,
    VIDEO_RETENTION_HOURS,
)
from design_export.utils.error_handler import (
    get_error_code,
    get_error_details,
    get_user_friendly_message,
    handle_exception,
)
from design_export.utils.exceptions import (
    AppException,
    ExportTimeoutError,
    JobNotFoundError,
    JobStateError,
    RetryLimitExceededError,
    StorageError,
    ValidationError,
)
from design_export.utils.helpers import utc_now
from design_export.utils.logger import setup_logger

logger = setup_logger(__name__)

# 处理中任务允许写入进度与结果的状态
PROCESSING_STATUSES = frozenset({JobStatus.PROCESSING})

# 处理进度节点
PROGRESS_RENDERED = 40
PROGRESS_CONVERTED = 90


class ArtifactHandle:
    """导出产物句柄.

    Attributes:
        job_id: 任务ID
        file_name: 文件名
        mime_type: MIME 类型
        size: 文件大小（字节）
    """

    def __init__(self, job_id: str, artifact: ArtifactInfo, blob_store: FileBlobStore) -> None:
        self.job_id = job_id
        self.file_name = artifact.file_name
        self.mime_type = artifact.mime_type
        self.size = artifact.size
        self._path = artifact.path
        self._blob_store = blob_store

    def open(self) -> BinaryIO:
        """以二进制流打开产物."""
        return self._blob_store.open(self._path)

    def read_bytes(self) -> bytes:
        """读取完整内容."""
        with self.open() as f:
            return f.read()

    def __repr__(self) -> str:
        return f"<ArtifactHandle(job_id={self.job_id}, file_name={self.file_name})>"


class ExportJobController:
    """导出任务控制器.

    Example:
        >>> controller = ExportJobController(repository, designs, renderer, converter, blob_store, queue)
        >>> job = await controller.create(design.id, "user-1", "png", {"width": 100})
        >>> await controller.process(job.id)
        >>> controller.get_status(job.id).status
        <JobStatus.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        repository: ExportJobRepository,
        designs: DesignRepository,
        renderer: DocumentRenderer,
        converter: BaseConverter,
        blob_store: FileBlobStore,
        queue: JobQueue,
        job_timeout: float = JOB_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        image_retention_hours: int = IMAGE_RETENTION_HOURS,
        video_retention_hours: int = VIDEO_RETENTION_HOURS,
    ) -> None:
        """初始化控制器.

        Args:
            repository: 任务仓储
            designs: 设计稿仓储
            renderer: 文档渲染器
            converter: 格式转换器
            blob_store: 产物存储
            queue: 任务队列
            job_timeout: 单个任务渲染+转换的总超时（秒）
            max_retries: 重试链最大长度
            image_retention_hours: 图片产物保留时长
            video_retention_hours: 视频产物保留时长
        """
        self.repository = repository
        self.designs = designs
        self.renderer = renderer
        self.converter = converter
        self.blob_store = blob_store
        self.queue = queue
        self.job_timeout = job_timeout
        self.max_retries = max_retries
        self.image_retention_hours = image_retention_hours
        self.video_retention_hours = video_retention_hours

    # ===================
    # 创建 / 取消 / 重试
    # ===================

    async def create(
        self,
        design_id: str,
        requester_id: str,
        export_format: Union[str, ExportFormat],
        options: Union[ExportOptions, dict[str, Any], None] = None,
    ) -> ExportJob:
        """创建导出任务并入队.

        Args:
            design_id: 设计稿ID
            requester_id: 请求者ID
            export_format: 导出格式（大小写不敏感）
            options: 导出选项

        Returns:
            处于 queued 状态的任务

        Raises:
            ValidationError: 格式不支持、选项无效或设计稿不存在
        """
        fmt = ExportFormat.parse(export_format)
        export_options = self._parse_options(options)
        # 设计稿不存在时抛出 DesignNotFoundError
        self.designs.get(design_id)

        job = ExportJob(
            design_id=design_id,
            requester_id=requester_id,
            format=fmt,
            options=export_options,
        )
        self.repository.add(job)
        await self._enqueue(job)

        logger.info(f"创建导出任务: {job.id} (设计稿 {design_id}, 格式 {fmt.value})")
        return job

    def cancel(self, job_id: str) -> ExportJob:
        """取消尚未开始处理的任务.

        Raises:
            JobNotFoundError: 任务不存在
            JobStateError: 任务已开始处理或已结束
        """
        job = self.get_job(job_id)
        if not job.is_cancellable:
            raise JobStateError(f"任务 {job_id} 当前状态为 {job.status.value}，无法取消")

        job.mark_cancelled()
        if not self.repository.save(job, expected_statuses=CANCELLABLE_STATUSES):
            current = self.get_job(job_id)
            raise JobStateError(f"任务 {job_id} 当前状态为 {current.status.value}，无法取消")

        logger.info(f"任务已取消: {job_id}")
        return job

    async def retry(self, job_id: str) -> ExportJob:
        """重试失败的任务.

        创建参数相同的新任务并入队，原任务保持 failed 不变。

        Raises:
            JobNotFoundError: 任务不存在
            JobStateError: 任务不是 failed 状态
            RetryLimitExceededError: 超过最大重试次数
        """
        job = self.get_job(job_id)
        if job.status != JobStatus.FAILED:
            raise JobStateError(f"只有失败的任务可以重试，当前状态: {job.status.value}")
        if job.retry_count >= self.max_retries:
            raise RetryLimitExceededError(self.max_retries)

        new_job = job.clone_for_retry()
        self.repository.add(new_job)
        await self._enqueue(new_job)

        logger.info(f"重试任务: {job_id} -> {new_job.id} (第 {new_job.retry_count} 次)")
        return new_job

    async def _enqueue(self, job: ExportJob) -> None:
        job.mark_queued()
        self.repository.save(job)
        await self.queue.put(job.id)

    @staticmethod
    def _parse_options(options: Union[ExportOptions, dict[str, Any], None]) -> ExportOptions:
        if options is None:
            return ExportOptions()
        if isinstance(options, ExportOptions):
            return options
        try:
            return ExportOptions.model_validate(options)
        except PydanticValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise ValidationError(f"导出选项无效: {fields}") from e

    # ===================
    # 处理
    # ===================

    async def process(self, job_id: str) -> Optional[ExportJob]:
        """处理任务.

        先原子认领任务（queued → processing），认领失败说明任务已被取消
        或已由其他 worker 处理，直接跳过。

        Args:
            job_id: 任务ID

        Returns:
            处理结束后的任务，未认领到时返回 None
        """
        job = self.repository.claim(job_id)
        if job is None:
            logger.info(f"任务未认领，跳过: {job_id}")
            return None

        logger.info(f"开始处理任务: {job_id}")
        try:
            artifact = await asyncio.wait_for(self._execute(job), timeout=self.job_timeout)
            job.mark_completed(artifact, self._retention_hours(job))
            logger.info(f"任务完成: {job_id} ({artifact.file_name}, {artifact.size} 字节)")
        except asyncio.TimeoutError:
            self._fail(job, ExportTimeoutError(self.job_timeout, "job"))
        except asyncio.CancelledError:
            self._fail(job, AppException("任务处理被中断", "INTERRUPTED"))
            self._save_result(job)
            raise
        except Exception as e:
            self._fail(job, e)

        self._save_result(job)
        return job

    def _save_result(self, job: ExportJob) -> None:
        """写入处理结果（仅当任务仍处于 processing）."""
        if not self.repository.save(job, expected_statuses=PROCESSING_STATUSES):
            logger.warning(f"任务 {job.id} 已不在 processing 状态，丢弃处理结果 ({job.status.value})")

    async def _execute(self, job: ExportJob) -> ArtifactInfo:
        """渲染并转换，返回产物元数据."""
        design = self.designs.snapshot(job.design_id)
        options = job.options
        if options.animation_settings is None and design.animation_settings:
            options = options.model_copy(update={"animation_settings": design.animation_settings})

        document = await asyncio.to_thread(
            self.renderer.render, design, RenderOverrides.from_options(options, job.format)
        )
        job.update_progress(PROGRESS_RENDERED)
        self.repository.save(job, expected_statuses=PROCESSING_STATUSES)

        staged = self.blob_store.stage(self.blob_store.artifact_path(design.id, job.id, job.format))
        try:
            await asyncio.to_thread(self._convert_staged, document, job.format, options, staged)
        except asyncio.CancelledError:
            # 转换线程无法被取消，由暂存产物负责在线程结束后清理文件
            staged.abandon()
            raise
        job.update_progress(PROGRESS_CONVERTED)
        self.repository.save(job, expected_statuses=PROCESSING_STATUSES)

        return self.blob_store.describe(staged.final_path, job.format)

    def _convert_staged(
        self,
        document: Document,
        export_format: ExportFormat,
        options: ExportOptions,
        staged: StagedArtifact,
    ) -> None:
        """在工作线程中转换到暂存文件，完成后发布为最终产物."""
        self.converter.convert(document, export_format, options, staged.staging_path)
        if not staged.publish():
            logger.info(f"任务已中止，丢弃转换结果: {staged.final_path.name}")

    def _fail(self, job: ExportJob, exception: BaseException) -> None:
        """将异常记录到任务上（面向用户的消息与内部诊断分开保存）."""
        handle_exception(
            exception,
            context=f"导出任务 {job.id} 失败",
            reraise=False,
            log_traceback=not isinstance(exception, AppException),
        )
        job.mark_failed(
            code=get_error_code(exception),
            message=get_user_friendly_message(exception),
            details=get_error_details(exception),
            retention_hours=self._retention_hours(job),
        )

    def _retention_hours(self, job: ExportJob) -> int:
        return self.video_retention_hours if job.format.is_video else self.image_retention_hours

    # ===================
    # 查询
    # ===================

    def get_job(self, job_id: str) -> ExportJob:
        """获取任务.

        Raises:
            JobNotFoundError: 任务不存在
        """
        job = self.repository.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def get_status(self, job_id: str) -> JobStatusView:
        """获取任务状态视图（不包含内部诊断信息）."""
        return self.get_job(job_id).to_status_view()

    def open_artifact(self, job_id: str) -> ArtifactHandle:
        """获取产物句柄.

        Raises:
            JobStateError: 任务未完成
            StorageError: 产物文件已不存在
        """
        job = self.get_job(job_id)
        if job.status != JobStatus.COMPLETED or job.artifact is None:
            raise JobStateError(f"任务 {job_id} 尚未完成，无法下载")
        if not self.blob_store.exists(job.artifact.path):
            raise StorageError(f"导出文件已过期或被删除: {job.artifact.file_name}")
        return ArtifactHandle(job.id, job.artifact, self.blob_store)

    def list_jobs(self, requester_id: str, limit: int = 50) -> list[ExportJob]:
        """列出请求者的任务（新任务在前）."""
        return self.repository.list_by_requester(requester_id, limit)

    def get_stats(self, requester_id: Optional[str] = None) -> JobStats:
        """获取任务统计."""
        return JobStats.from_counts(self.repository.count_by_status(requester_id))

    # ===================
    # 过期清理
    # ===================

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """删除已过期任务的产物文件和任务记录.

        Args:
            now: 当前时间，默认为 UTC 当前时间

        Returns:
            清理的任务数量
        """
        now = now or utc_now()
        count = 0
        for job in self.repository.list_expired(now):
            if job.artifact is not None:
                try:
                    self.blob_store.remove(Path(job.artifact.path))
                except StorageError as e:
                    handle_exception(e, context=f"清理产物 {job.id}", reraise=False, log_traceback=False)
                    continue
            self.repository.delete(job.id)
            count += 1

        if count:
            logger.info(f"已清理过期任务: {count} 个")
        return count
