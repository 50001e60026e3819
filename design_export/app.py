"""应用初始化和管理."""

from __future__ import annotations

from typing import Optional

from design_export.core.export_controller import ExportJobController
from design_export.core.export_worker import ExportWorkerPool
from design_export.core.job_queue import AsyncioJobQueue, JobQueue
from design_export.core.layer_ordering import DesignLocks, LayerOrderingEngine
from design_export.models.app_settings import Settings, get_settings
from design_export.services.blob_store import FileBlobStore
from design_export.services.database_service import DatabaseService
from design_export.services.design_repository import DesignRepository
from design_export.services.document_renderer import DocumentRenderer
from design_export.services.format_converter import (
    BaseConverter,
    PillowConverter,
    SubprocessConverter,
)
from design_export.services.job_repository import ExportJobRepository
from design_export.utils.exceptions import ConfigError
from design_export.utils.logger import enable_file_logging, set_log_level, setup_logger

logger = setup_logger(__name__)

# 可选的转换器实现
CONVERTER_BACKENDS = ("imagemagick", "pillow")


class Application:
    """应用管理类.

    负责应用的初始化、配置加载和服务组装。

    Attributes:
        settings: 应用设置
        controller: 导出任务控制器
        worker_pool: worker 池
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        converter_backend: str = "imagemagick",
        file_logging: bool = True,
    ) -> None:
        """初始化应用管理器.

        Args:
            settings: 应用设置，默认使用全局设置（从环境变量加载）
            converter_backend: 转换器实现（imagemagick 或 pillow）
            file_logging: 是否写入日志文件
        """
        if converter_backend not in CONVERTER_BACKENDS:
            raise ConfigError(f"未知的转换器: {converter_backend}，可选: {', '.join(CONVERTER_BACKENDS)}")
        self._settings = settings
        self._converter_backend = converter_backend
        self._file_logging = file_logging
        self._db_service: Optional[DatabaseService] = None
        self._initialized: bool = False

        self.blob_store: Optional[FileBlobStore] = None
        self.designs: Optional[DesignRepository] = None
        self.layers: Optional[LayerOrderingEngine] = None
        self.queue: Optional[JobQueue] = None
        self.controller: Optional[ExportJobController] = None
        self.worker_pool: Optional[ExportWorkerPool] = None

    def initialize(self) -> None:
        """初始化应用.

        执行以下初始化步骤:
        1. 加载配置
        2. 配置日志
        3. 初始化数据库
        4. 创建导出目录
        5. 组装服务
        """
        if self._initialized:
            logger.warning("应用已初始化，跳过重复初始化")
            return

        logger.info("开始初始化应用...")

        self._load_settings()
        self._configure_logging()
        self._init_database()
        self._init_storage()
        self._init_services()

        self._initialized = True
        logger.info("应用初始化完成")

    def _load_settings(self) -> None:
        """加载应用设置."""
        if self._settings is None:
            self._settings = get_settings()
        logger.debug(f"日志级别: {self._settings.log_level}")

    def _configure_logging(self) -> None:
        """配置日志级别和日志文件."""
        from design_export.utils.constants import LOG_DIR

        set_log_level(self.settings.log_level)
        if self._file_logging:
            enable_file_logging(LOG_DIR)

    def _init_database(self) -> None:
        """初始化数据库."""
        self._db_service = DatabaseService(self.settings.db_url)
        self._db_service.init_db()
        logger.debug("数据库初始化完成")

    def _init_storage(self) -> None:
        """创建导出目录."""
        self.blob_store = FileBlobStore(self.settings.export_root)
        self.blob_store.ensure_directories()
        logger.debug(f"导出目录: {self.settings.export_root}")

    def _create_converter(self) -> BaseConverter:
        if self._converter_backend == "pillow":
            return PillowConverter(self.blob_store)
        return SubprocessConverter(
            rasterizer_binary=self.settings.rasterizer_binary,
            transcoder_binary=self.settings.transcoder_binary,
            timeout=self.settings.conversion_timeout,
        )

    def _init_services(self) -> None:
        """组装各服务."""
        locks = DesignLocks()
        self.designs = DesignRepository(locks)
        self.layers = LayerOrderingEngine(locks)
        self.queue = AsyncioJobQueue()

        self.controller = ExportJobController(
            repository=ExportJobRepository(self._db_service),
            designs=self.designs,
            renderer=DocumentRenderer(self.blob_store, embed_images=self.settings.embed_images),
            converter=self._create_converter(),
            blob_store=self.blob_store,
            queue=self.queue,
            job_timeout=self.settings.job_timeout,
            max_retries=self.settings.max_retries,
            image_retention_hours=self.settings.image_retention_hours,
            video_retention_hours=self.settings.video_retention_hours,
        )
        self.worker_pool = ExportWorkerPool(
            self.controller,
            self.queue,
            concurrency=self.settings.worker_count,
        )
        logger.debug(f"服务初始化完成 (转换器: {self._converter_backend})")

    async def shutdown(self) -> None:
        """停止 worker 并释放资源."""
        if self.worker_pool is not None and self.worker_pool.is_running:
            await self.worker_pool.stop()
        self.cleanup()

    def cleanup(self) -> None:
        """清理应用资源."""
        logger.info("开始清理应用资源...")

        if self._db_service:
            self._db_service.close()
            logger.debug("数据库连接已关闭")

        logger.info("应用资源清理完成")

    @property
    def settings(self) -> Settings:
        """返回应用设置."""
        if self._settings is None:
            raise ConfigError("应用尚未加载配置")
        return self._settings

    @property
    def is_initialized(self) -> bool:
        """返回应用是否已初始化."""
        return self._initialized

    @property
    def db_service(self) -> Optional[DatabaseService]:
        """返回数据库服务实例."""
        return self._db_service
