"""Pytest 配置和共享 fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from design_export.core.export_controller import ExportJobController
from design_export.core.job_queue import AsyncioJobQueue
from design_export.core.layer_ordering import DesignLocks, LayerOrderingEngine
from design_export.models.design import Design
from design_export.services.blob_store import FileBlobStore
from design_export.services.database_service import DatabaseService
from design_export.services.design_repository import DesignRepository
from design_export.services.document_renderer import DocumentRenderer
from design_export.services.format_converter import PillowConverter
from design_export.services.job_repository import ExportJobRepository


@pytest.fixture
def database():
    """内存数据库."""
    db = DatabaseService("sqlite:///:memory:")
    db.init_db()
    yield db
    db.close()


@pytest.fixture
def job_repository(database: DatabaseService) -> ExportJobRepository:
    return ExportJobRepository(database)


@pytest.fixture
def export_root(tmp_path: Path) -> Path:
    """导出目录."""
    root = tmp_path / "exports"
    root.mkdir()
    return root


@pytest.fixture
def blob_store(export_root: Path) -> FileBlobStore:
    return FileBlobStore(export_root, asset_root=export_root.parent)


@pytest.fixture
def locks() -> DesignLocks:
    return DesignLocks()


@pytest.fixture
def engine(locks: DesignLocks) -> LayerOrderingEngine:
    return LayerOrderingEngine(locks)


@pytest.fixture
def design_repository(locks: DesignLocks) -> DesignRepository:
    return DesignRepository(locks)


@pytest.fixture
def sample_design(engine: LayerOrderingEngine) -> Design:
    """示例设计稿：红色矩形在下，文字 "Hi" 在上."""
    design = Design(name="示例设计", canvas_width=200, canvas_height=100)
    engine.add_layer(
        design,
        "shape",
        {"id": "rect", "shapeType": "rectangle", "x": 10, "y": 10, "width": 80, "height": 40, "fill": "#ff0000"},
    )
    engine.add_layer(
        design,
        "text",
        {"id": "title", "text": "Hi", "x": 20, "y": 60, "fontSize": 24, "color": "#000000"},
    )
    return design


@pytest.fixture
def queue() -> AsyncioJobQueue:
    return AsyncioJobQueue()


@pytest.fixture
def controller(
    job_repository: ExportJobRepository,
    design_repository: DesignRepository,
    blob_store: FileBlobStore,
    queue: AsyncioJobQueue,
) -> ExportJobController:
    """使用 Pillow 转换器的任务控制器."""
    return ExportJobController(
        repository=job_repository,
        designs=design_repository,
        renderer=DocumentRenderer(blob_store),
        converter=PillowConverter(blob_store),
        blob_store=blob_store,
        queue=queue,
        job_timeout=30,
        max_retries=2,
    )
