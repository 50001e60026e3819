"""导出任务控制器单元测试."""

from __future__ import annotations

import asyncio
import time
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from design_export.core.export_controller import ExportJobController
from design_export.core.job_queue import AsyncioJobQueue
from design_export.models.design import Design
from design_export.models.export_job import ExportJob, JobStatus
from design_export.services.blob_store import FileBlobStore
from design_export.services.design_repository import DesignRepository
from design_export.services.document_renderer import DocumentRenderer
from design_export.services.format_converter import BaseConverter, PillowConverter
from design_export.services.job_repository import ExportJobRepository
from design_export.utils.exceptions import (
    ConversionError,
    DesignNotFoundError,
    JobNotFoundError,
    JobStateError,
    RenderError,
    RetryLimitExceededError,
    StorageError,
    UnsupportedFormatError,
    ValidationError,
)
from design_export.utils.helpers import utc_now


class FailingConverter(BaseConverter):
    """总是转换失败的转换器."""

    def _convert(self, document, export_format, options, output_path):
        output_path.write_bytes(b"partial")
        raise ConversionError(
            "rasterize 失败 (退出码 1)",
            command=["magick", "in.svg", "out.png"],
            returncode=1,
            output="convert: delegate library support not built-in",
        )


class SlowConverter(BaseConverter):
    """转换耗时超过任务超时的转换器."""

    def __init__(self, delay: float) -> None:
        self.delay = delay

    def _convert(self, document, export_format, options, output_path):
        time.sleep(self.delay)
        output_path.write_bytes(b"late")
        return []


class ExternallyFinishedConverter(PillowConverter):
    """转换期间由其他写入方将任务标记为失败."""

    def __init__(self, job_repository: ExportJobRepository) -> None:
        super().__init__()
        self.job_repository = job_repository
        self.job_id = ""

    def _convert(self, document, export_format, options, output_path):
        current = self.job_repository.get(self.job_id)
        current.mark_failed("EXTERNAL", "外部终止")
        self.job_repository.save(current)
        return super()._convert(document, export_format, options, output_path)


def make_controller(
    job_repository: ExportJobRepository,
    design_repository: DesignRepository,
    blob_store: FileBlobStore,
    queue: AsyncioJobQueue,
    converter: BaseConverter,
    **kwargs,
) -> ExportJobController:
    return ExportJobController(
        repository=job_repository,
        designs=design_repository,
        renderer=DocumentRenderer(blob_store),
        converter=converter,
        blob_store=blob_store,
        queue=queue,
        **kwargs,
    )


@pytest.fixture
def stored_design(design_repository: DesignRepository, sample_design: Design) -> Design:
    return design_repository.add(sample_design)


# ===================
# 创建
# ===================
class TestCreate:
    """测试创建任务."""

    @pytest.mark.asyncio
    async def test_create_queues_job(
        self,
        controller: ExportJobController,
        queue: AsyncioJobQueue,
        stored_design: Design,
    ) -> None:
        """测试创建后任务进入 queued 并入队."""
        job = await controller.create(stored_design.id, "user-1", "PNG", {"width": 100})

        assert job.status == JobStatus.QUEUED
        assert controller.get_job(job.id).status == JobStatus.QUEUED
        assert controller.get_job(job.id).options.width == 100
        assert queue.qsize() == 1
        assert await queue.get() == job.id

    @pytest.mark.asyncio
    async def test_unsupported_format(
        self,
        controller: ExportJobController,
        queue: AsyncioJobQueue,
        stored_design: Design,
    ) -> None:
        """测试不支持的格式同步报错，不创建任务."""
        with pytest.raises(UnsupportedFormatError):
            await controller.create(stored_design.id, "user-1", "bmp")

        assert queue.qsize() == 0
        assert controller.list_jobs("user-1") == []

    @pytest.mark.asyncio
    async def test_missing_design(self, controller: ExportJobController, queue: AsyncioJobQueue) -> None:
        with pytest.raises(DesignNotFoundError):
            await controller.create("missing", "user-1", "png")
        assert queue.qsize() == 0

    @pytest.mark.asyncio
    async def test_invalid_options(
        self,
        controller: ExportJobController,
        stored_design: Design,
    ) -> None:
        with pytest.raises(ValidationError):
            await controller.create(stored_design.id, "user-1", "png", {"width": 0})


# ===================
# 处理
# ===================
class TestProcess:
    """测试处理任务."""

    @pytest.mark.asyncio
    async def test_process_success(
        self,
        controller: ExportJobController,
        stored_design: Design,
    ) -> None:
        """测试成功处理后产物可下载."""
        job = await controller.create(stored_design.id, "user-1", "png")

        result = await controller.process(job.id)

        assert result.status == JobStatus.COMPLETED
        view = controller.get_status(job.id)
        assert view.status == JobStatus.COMPLETED
        assert view.progress == 100
        assert view.artifact.mime_type == "image/png"
        assert view.artifact.file_name.startswith(f"design_{stored_design.id}_{job.id}_")

        handle = controller.open_artifact(job.id)
        assert handle.read_bytes().startswith(b"\x89PNG")
        assert handle.size == view.artifact.size

    @pytest.mark.asyncio
    async def test_process_svg(self, controller: ExportJobController, stored_design: Design) -> None:
        job = await controller.create(stored_design.id, "user-1", "svg")
        await controller.process(job.id)

        handle = controller.open_artifact(job.id)
        assert handle.mime_type == "image/svg+xml"
        assert b"<svg" in handle.read_bytes()

    @pytest.mark.asyncio
    async def test_process_twice_is_noop(
        self,
        controller: ExportJobController,
        stored_design: Design,
    ) -> None:
        """测试同一任务只会被处理一次."""
        job = await controller.create(stored_design.id, "user-1", "png")

        assert await controller.process(job.id) is not None
        assert await controller.process(job.id) is None
        assert controller.get_job(job.id).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_conversion_failure(
        self,
        job_repository: ExportJobRepository,
        design_repository: DesignRepository,
        blob_store: FileBlobStore,
        queue: AsyncioJobQueue,
        export_root: Path,
        stored_design: Design,
    ) -> None:
        """测试转换失败：对外只暴露错误代码和友好消息."""
        controller = make_controller(
            job_repository, design_repository, blob_store, queue, FailingConverter()
        )
        job = await controller.create(stored_design.id, "user-1", "png")

        result = await controller.process(job.id)

        assert result.status == JobStatus.FAILED
        view = controller.get_status(job.id)
        assert view.error.code == "CONVERSION_ERROR"
        assert view.error.message
        assert "delegate" not in view.model_dump_json()

        stored = controller.get_job(job.id)
        assert "delegate library" in stored.error_details["output"]
        assert stored.error_details["returncode"] == 1
        assert list(export_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_render_failure(
        self,
        job_repository: ExportJobRepository,
        design_repository: DesignRepository,
        blob_store: FileBlobStore,
        queue: AsyncioJobQueue,
        stored_design: Design,
    ) -> None:
        controller = make_controller(
            job_repository, design_repository, blob_store, queue, PillowConverter()
        )
        controller.renderer = MagicMock()
        controller.renderer.render.side_effect = RenderError("bad layer")
        job = await controller.create(stored_design.id, "user-1", "png")

        await controller.process(job.id)

        assert controller.get_status(job.id).error.code == "RENDER_ERROR"

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_internal(
        self,
        job_repository: ExportJobRepository,
        design_repository: DesignRepository,
        blob_store: FileBlobStore,
        queue: AsyncioJobQueue,
        stored_design: Design,
    ) -> None:
        """测试未知异常同样使任务失败，而不是停留在 processing."""
        converter = MagicMock(spec=BaseConverter)
        converter.convert.side_effect = KeyError("boom")
        controller = make_controller(job_repository, design_repository, blob_store, queue, converter)
        job = await controller.create(stored_design.id, "user-1", "png")

        await controller.process(job.id)

        stored = controller.get_job(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error_code == "INTERNAL_ERROR"
        assert stored.error_message

    @pytest.mark.asyncio
    async def test_timeout(
        self,
        job_repository: ExportJobRepository,
        design_repository: DesignRepository,
        blob_store: FileBlobStore,
        queue: AsyncioJobQueue,
        stored_design: Design,
    ) -> None:
        """测试超时后任务失败."""
        controller = make_controller(
            job_repository,
            design_repository,
            blob_store,
            queue,
            SlowConverter(delay=0.5),
            job_timeout=0.05,
        )
        job = await controller.create(stored_design.id, "user-1", "png")

        await controller.process(job.id)

        view = controller.get_status(job.id)
        assert view.status == JobStatus.FAILED
        assert view.error.code == "TIMEOUT"
        await asyncio.sleep(0.6)

    @pytest.mark.asyncio
    async def test_timeout_discards_late_output(
        self,
        job_repository: ExportJobRepository,
        design_repository: DesignRepository,
        blob_store: FileBlobStore,
        queue: AsyncioJobQueue,
        stored_design: Design,
        export_root: Path,
    ) -> None:
        """测试超时后转换线程晚到的输出不会留在导出目录."""
        controller = make_controller(
            job_repository,
            design_repository,
            blob_store,
            queue,
            SlowConverter(delay=0.3),
            job_timeout=0.05,
        )
        job = await controller.create(stored_design.id, "user-1", "png")

        await controller.process(job.id)
        await asyncio.sleep(0.6)

        assert controller.get_job(job.id).artifact is None
        assert list(export_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_result_not_written_after_external_change(
        self,
        job_repository: ExportJobRepository,
        design_repository: DesignRepository,
        blob_store: FileBlobStore,
        queue: AsyncioJobQueue,
        stored_design: Design,
    ) -> None:
        """测试处理期间任务被其他写入方结束时，不覆盖其状态."""
        converter = ExternallyFinishedConverter(job_repository)
        controller = make_controller(job_repository, design_repository, blob_store, queue, converter)
        job = await controller.create(stored_design.id, "user-1", "png")
        converter.job_id = job.id

        await controller.process(job.id)

        stored = controller.get_job(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error_code == "EXTERNAL"

    @pytest.mark.asyncio
    async def test_design_deleted_after_create(
        self,
        controller: ExportJobController,
        design_repository: DesignRepository,
        stored_design: Design,
    ) -> None:
        job = await controller.create(stored_design.id, "user-1", "png")
        design_repository.delete(stored_design.id)

        await controller.process(job.id)

        assert controller.get_job(job.id).status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_design_animation_settings_used(
        self,
        controller: ExportJobController,
        stored_design: Design,
    ) -> None:
        """测试未指定动画设置时使用设计稿的设置."""
        stored_design.animation_settings = {"duration": 2, "fps": 12}
        controller.converter = MagicMock(wraps=controller.converter)
        job = await controller.create(stored_design.id, "user-1", "png")

        await controller.process(job.id)

        options = controller.converter.convert.call_args.args[2]
        assert options.animation_settings == {"duration": 2, "fps": 12}


# ===================
# 取消 / 重试
# ===================
class TestCancelAndRetry:
    """测试取消和重试."""

    @pytest.mark.asyncio
    async def test_cancel_queued(self, controller: ExportJobController, stored_design: Design) -> None:
        """测试取消后不再处理."""
        job = await controller.create(stored_design.id, "user-1", "png")

        cancelled = controller.cancel(job.id)

        assert cancelled.status == JobStatus.CANCELLED
        assert await controller.process(job.id) is None
        assert controller.get_job(job.id).status == JobStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_completed(self, controller: ExportJobController, stored_design: Design) -> None:
        job = await controller.create(stored_design.id, "user-1", "png")
        await controller.process(job.id)

        with pytest.raises(JobStateError):
            controller.cancel(job.id)
        assert controller.get_job(job.id).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_loses_race_with_claim(
        self,
        controller: ExportJobController,
        job_repository: ExportJobRepository,
        stored_design: Design,
    ) -> None:
        """测试任务在取消前被认领时取消失败."""
        job = await controller.create(stored_design.id, "user-1", "png")
        stale = controller.get_job(job.id)
        assert job_repository.claim(job.id) is not None

        controller.get_job = MagicMock(return_value=stale)
        with pytest.raises(JobStateError):
            controller.cancel(job.id)
        assert job_repository.get(job.id).status == JobStatus.PROCESSING

    def test_cancel_missing(self, controller: ExportJobController) -> None:
        with pytest.raises(JobNotFoundError):
            controller.cancel("missing")

    @pytest.mark.asyncio
    async def test_retry_creates_new_job(
        self,
        job_repository: ExportJobRepository,
        design_repository: DesignRepository,
        blob_store: FileBlobStore,
        queue: AsyncioJobQueue,
        stored_design: Design,
    ) -> None:
        """测试重试创建新任务，原任务保持失败."""
        controller = make_controller(
            job_repository, design_repository, blob_store, queue, FailingConverter()
        )
        job = await controller.create(stored_design.id, "user-1", "jpg", {"quality": "low"})
        await controller.process(job.id)

        retry = await controller.retry(job.id)

        assert retry.id != job.id
        assert retry.status == JobStatus.QUEUED
        assert retry.retry_of == job.id
        assert retry.options.quality.value == "low"
        assert controller.get_job(job.id).status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_retry_limit(
        self,
        job_repository: ExportJobRepository,
        design_repository: DesignRepository,
        blob_store: FileBlobStore,
        queue: AsyncioJobQueue,
        stored_design: Design,
    ) -> None:
        """测试超过最大重试次数."""
        controller = make_controller(
            job_repository, design_repository, blob_store, queue, FailingConverter(), max_retries=1
        )
        job = await controller.create(stored_design.id, "user-1", "png")
        await controller.process(job.id)
        retry = await controller.retry(job.id)
        await controller.process(retry.id)

        with pytest.raises(RetryLimitExceededError):
            await controller.retry(retry.id)

    @pytest.mark.asyncio
    async def test_retry_not_failed(self, controller: ExportJobController, stored_design: Design) -> None:
        job = await controller.create(stored_design.id, "user-1", "png")
        with pytest.raises(JobStateError):
            await controller.retry(job.id)


# ===================
# 查询与清理
# ===================
class TestQueriesAndPurge:
    """测试查询和过期清理."""

    @pytest.mark.asyncio
    async def test_open_artifact_not_completed(
        self,
        controller: ExportJobController,
        stored_design: Design,
    ) -> None:
        job = await controller.create(stored_design.id, "user-1", "png")
        with pytest.raises(JobStateError):
            controller.open_artifact(job.id)

    @pytest.mark.asyncio
    async def test_open_artifact_file_removed(
        self,
        controller: ExportJobController,
        stored_design: Design,
    ) -> None:
        job = await controller.create(stored_design.id, "user-1", "png")
        await controller.process(job.id)
        Path(controller.get_job(job.id).artifact.path).unlink()

        with pytest.raises(StorageError):
            controller.open_artifact(job.id)

    @pytest.mark.asyncio
    async def test_list_and_stats(self, controller: ExportJobController, stored_design: Design) -> None:
        first = await controller.create(stored_design.id, "user-1", "png")
        await controller.create(stored_design.id, "user-1", "svg")
        await controller.create(stored_design.id, "user-2", "png")
        await controller.process(first.id)

        assert len(controller.list_jobs("user-1")) == 2
        stats = controller.get_stats("user-1")
        assert stats.total == 2
        assert stats.completed == 1
        assert stats.queued == 1
        assert controller.get_stats().total == 3

    @pytest.mark.asyncio
    async def test_purge_expired(self, controller: ExportJobController, stored_design: Design) -> None:
        """测试过期任务的产物和记录都被删除."""
        job = await controller.create(stored_design.id, "user-1", "png")
        pending = await controller.create(stored_design.id, "user-1", "png")
        await controller.process(job.id)
        artifact_path = Path(controller.get_job(job.id).artifact.path)

        assert controller.purge_expired(utc_now()) == 0
        assert artifact_path.exists()

        purged = controller.purge_expired(utc_now() + timedelta(hours=25))

        assert purged == 1
        assert not artifact_path.exists()
        with pytest.raises(JobNotFoundError):
            controller.get_job(job.id)
        assert controller.get_job(pending.id).status == JobStatus.QUEUED

    @pytest.mark.asyncio
    async def test_purge_keeps_video_longer(
        self,
        controller: ExportJobController,
        job_repository: ExportJobRepository,
    ) -> None:
        job = ExportJob(design_id="d", requester_id="u", format="mp4")
        job_repository.add(job)
        job.mark_queued()
        job.mark_processing()
        job.mark_failed("CONVERSION_ERROR", "失败", retention_hours=controller.video_retention_hours)
        job_repository.save(job)

        assert controller.purge_expired(utc_now() + timedelta(hours=25)) == 0
        assert controller.purge_expired(utc_now() + timedelta(hours=73)) == 1
