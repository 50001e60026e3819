"""数据库 ORM 模型."""

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

from design_export.utils.helpers import utc_now

Base = declarative_base()


class ExportJobRecord(Base):
    """导出任务表."""

    __tablename__ = "export_jobs"

    id = Column(String(36), primary_key=True)
    design_id = Column(String(64), nullable=False, index=True)
    requester_id = Column(String(64), nullable=False, index=True)
    format = Column(String(10), nullable=False)
    options_json = Column(Text, nullable=False, default="{}")
    status = Column(String(20), nullable=False, default="created", index=True)
    progress = Column(Integer, default=0)

    # 产物
    artifact_path = Column(Text)
    artifact_name = Column(String(255))
    artifact_size = Column(Integer)
    artifact_mime = Column(String(50))

    # 失败信息
    error_code = Column(String(50))
    error_message = Column(Text)
    error_details_json = Column(Text)

    # 重试链
    retry_of = Column(String(36))
    retry_count = Column(Integer, default=0)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    expires_at = Column(DateTime, index=True)

    def __repr__(self) -> str:
        return f"<ExportJobRecord(id={self.id}, status={self.status})>"
