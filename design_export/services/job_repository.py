"""导出任务仓储.

基于 SQLAlchemy 持久化导出任务。``claim`` 通过单条条件 UPDATE
完成 queued → processing 的原子认领，保证同一任务最多只有一个
worker 在处理。
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import delete, func, select, update

from design_export.models.database import ExportJobRecord
from design_export.models.export_job import (
    ArtifactInfo,
    ExportJob,
    ExportOptions,
    JobStatus,
    TERMINAL_STATUSES,
)
from design_export.services.database_service import DatabaseService
from design_export.utils.helpers import utc_now
from design_export.utils.logger import setup_logger

logger = setup_logger(__name__)


def _record_to_job(record: ExportJobRecord) -> ExportJob:
    """ORM 记录转换为任务模型."""
    artifact = None
    if record.artifact_path:
        artifact = ArtifactInfo(
            path=record.artifact_path,
            file_name=record.artifact_name or "",
            size=record.artifact_size or 0,
            mime_type=record.artifact_mime or "application/octet-stream",
        )
    return ExportJob(
        id=record.id,
        design_id=record.design_id,
        requester_id=record.requester_id,
        format=record.format,
        options=ExportOptions.model_validate(json.loads(record.options_json or "{}")),
        status=JobStatus(record.status),
        progress=record.progress or 0,
        artifact=artifact,
        error_code=record.error_code,
        error_message=record.error_message,
        error_details=json.loads(record.error_details_json) if record.error_details_json else None,
        retry_of=record.retry_of,
        retry_count=record.retry_count or 0,
        created_at=record.created_at,
        updated_at=record.updated_at,
        started_at=record.started_at,
        completed_at=record.completed_at,
        expires_at=record.expires_at,
    )


def _job_values(job: ExportJob) -> dict[str, Any]:
    """任务模型转换为表字段取值."""
    artifact = job.artifact
    return {
        "id": job.id,
        "design_id": job.design_id,
        "requester_id": job.requester_id,
        "format": job.format.value,
        "options_json": job.options.model_dump_json(),
        "status": job.status.value,
        "progress": job.progress,
        "artifact_path": artifact.path if artifact else None,
        "artifact_name": artifact.file_name if artifact else None,
        "artifact_size": artifact.size if artifact else None,
        "artifact_mime": artifact.mime_type if artifact else None,
        "error_code": job.error_code,
        "error_message": job.error_message,
        "error_details_json": (
            json.dumps(job.error_details, ensure_ascii=False, default=str)
            if job.error_details is not None
            else None
        ),
        "retry_of": job.retry_of,
        "retry_count": job.retry_count,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
        "expires_at": job.expires_at,
    }


class ExportJobRepository:
    """导出任务仓储.

    Attributes:
        database: 数据库服务
    """

    def __init__(self, database: DatabaseService) -> None:
        self.database = database

    def add(self, job: ExportJob) -> ExportJob:
        """新增任务.

        Args:
            job: 任务模型

        Returns:
            已保存的任务
        """
        with self.database.get_session() as session:
            session.add(ExportJobRecord(**_job_values(job)))
            session.commit()
        logger.debug(f"任务已保存: {job.id}")
        return job

    def get(self, job_id: str) -> Optional[ExportJob]:
        """获取任务，不存在返回 None."""
        with self.database.get_session() as session:
            record = session.get(ExportJobRecord, job_id)
            return _record_to_job(record) if record is not None else None

    def save(
        self,
        job: ExportJob,
        expected_statuses: Optional[Iterable[JobStatus]] = None,
    ) -> bool:
        """保存任务.

        写入是单条条件 UPDATE，指定 expected_statuses 时只有数据库中的
        当前状态属于该集合才会生效。

        Args:
            job: 任务模型
            expected_statuses: 允许写入的当前状态

        Returns:
            是否写入成功
        """
        values = _job_values(job)
        values.pop("id")
        query = update(ExportJobRecord).where(ExportJobRecord.id == job.id)
        if expected_statuses is not None:
            query = query.where(
                ExportJobRecord.status.in_([s.value for s in expected_statuses])
            )
        with self.database.get_session() as session:
            result = session.execute(query.values(**values))
            session.commit()
            return result.rowcount == 1

    def claim(self, job_id: str) -> Optional[ExportJob]:
        """原子认领任务（queued → processing）.

        Args:
            job_id: 任务ID

        Returns:
            认领成功返回处于 processing 的任务，否则返回 None
        """
        now = utc_now()
        with self.database.get_session() as session:
            result = session.execute(
                update(ExportJobRecord)
                .where(
                    ExportJobRecord.id == job_id,
                    ExportJobRecord.status == JobStatus.QUEUED.value,
                )
                .values(
                    status=JobStatus.PROCESSING.value,
                    progress=10,
                    started_at=now,
                    updated_at=now,
                )
            )
            session.commit()
            if result.rowcount != 1:
                logger.debug(f"任务认领失败: {job_id}")
                return None
        return self.get(job_id)

    def delete(self, job_id: str) -> bool:
        """删除任务记录."""
        with self.database.get_session() as session:
            result = session.execute(delete(ExportJobRecord).where(ExportJobRecord.id == job_id))
            session.commit()
            return result.rowcount > 0

    def list_by_requester(self, requester_id: str, limit: int = 50) -> list[ExportJob]:
        """按请求者列出任务（新任务在前）."""
        with self.database.get_session() as session:
            records = session.execute(
                select(ExportJobRecord)
                .where(ExportJobRecord.requester_id == requester_id)
                .order_by(ExportJobRecord.created_at.desc())
                .limit(limit)
            ).scalars()
            return [_record_to_job(r) for r in records]

    def list_expired(self, now: datetime) -> list[ExportJob]:
        """列出已过期的终态任务."""
        with self.database.get_session() as session:
            records = session.execute(
                select(ExportJobRecord).where(
                    ExportJobRecord.status.in_([s.value for s in TERMINAL_STATUSES]),
                    ExportJobRecord.expires_at.is_not(None),
                    ExportJobRecord.expires_at <= now,
                )
            ).scalars()
            return [_record_to_job(r) for r in records]

    def count_by_status(self, requester_id: Optional[str] = None) -> dict[str, int]:
        """按状态统计任务数."""
        with self.database.get_session() as session:
            query = select(ExportJobRecord.status, func.count()).group_by(ExportJobRecord.status)
            if requester_id is not None:
                query = query.where(ExportJobRecord.requester_id == requester_id)
            return {status: count for status, count in session.execute(query).all()}
