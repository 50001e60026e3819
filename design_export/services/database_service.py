"""数据库服务模块."""

from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from design_export.utils.constants import DATABASE_PATH
from design_export.utils.logger import setup_logger

logger = setup_logger(__name__)


# 延迟导入，避免循环依赖
def _get_base():
    """获取 SQLAlchemy Base."""
    from design_export.models.database import Base
    return Base


class DatabaseService:
    """数据库服务.

    管理任务数据库连接和会话。默认使用 SQLite，也接受任意 SQLAlchemy URL。

    Attributes:
        url: 数据库 URL
        engine: SQLAlchemy 引擎
    """

    def __init__(self, url: Optional[str] = None) -> None:
        """初始化数据库服务.

        构造时不创建任何目录，目录在 init_db() 中创建。

        Args:
            url: 数据库 URL，默认使用配置路径下的 SQLite 文件
        """
        self.url = url or f"sqlite:///{DATABASE_PATH}"
        self._url = make_url(self.url)

        engine_kwargs: dict = {"echo": False}
        if self._url.get_backend_name() == "sqlite":
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if self.is_memory:
                # 内存数据库需要在所有连接间共享同一个连接
                engine_kwargs["poolclass"] = StaticPool

        # 创建引擎
        self.engine = create_engine(self.url, **engine_kwargs)

        # 创建会话工厂
        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

        logger.debug(f"数据库服务初始化完成: {self.url}")

    @property
    def is_memory(self) -> bool:
        """是否为 SQLite 内存数据库."""
        return self._url.get_backend_name() == "sqlite" and self._url.database in (None, "", ":memory:")

    @property
    def db_path(self) -> Optional[Path]:
        """SQLite 数据库文件路径，非文件数据库返回 None."""
        if self._url.get_backend_name() != "sqlite" or self.is_memory:
            return None
        return Path(self._url.database)

    def _ensure_directory(self) -> None:
        """确保数据库目录存在."""
        if self.db_path is not None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def init_db(self) -> None:
        """初始化数据库表.

        创建数据库目录和所有定义的表结构。
        """
        self._ensure_directory()
        Base = _get_base()
        Base.metadata.create_all(self.engine)
        logger.info("数据库表初始化完成")

    def get_session(self) -> Session:
        """获取数据库会话.

        Returns:
            SQLAlchemy Session 实例
        """
        return self.SessionLocal()

    def close(self) -> None:
        """关闭数据库连接."""
        self.engine.dispose()
        logger.debug("数据库连接已关闭")

    def __enter__(self) -> "DatabaseService":
        """上下文管理器入口."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """上下文管理器出口."""
        self.close()
