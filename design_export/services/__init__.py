"""服务层模块."""

from design_export.services.blob_store import FileBlobStore
from design_export.services.database_service import DatabaseService
from design_export.services.design_repository import DesignRepository
from design_export.services.document_renderer import (
    DocumentRenderer,
    RenderOverrides,
)
from design_export.services.format_converter import (
    BaseConverter,
    ConversionResult,
    PillowConverter,
    SubprocessConverter,
)
from design_export.services.job_repository import ExportJobRepository
from design_export.services.svg_writer import to_svg, to_svg_string

__all__ = [
    # 存储
    "FileBlobStore",
    "DatabaseService",
    "DesignRepository",
    "ExportJobRepository",
    # 渲染
    "DocumentRenderer",
    "RenderOverrides",
    "to_svg",
    "to_svg_string",
    # 格式转换
    "BaseConverter",
    "ConversionResult",
    "PillowConverter",
    "SubprocessConverter",
]
