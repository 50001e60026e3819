"""文件存储服务.

负责导出产物的命名、写入位置、读取与清理，以及读取图片图层
引用的素材（本地路径或 http/https URL）。
"""

from __future__ import annotations

import base64
import mimetypes
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Optional, Union
from urllib.parse import urlparse

import httpx

from design_export.models.export_job import ArtifactInfo, ExportFormat
from design_export.utils.exceptions import StorageError
from design_export.utils.helpers import get_timestamp
from design_export.utils.logger import setup_logger

logger = setup_logger(__name__)

# 远程素材下载超时（秒）
SOURCE_FETCH_TIMEOUT = 30.0



def _unlink(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"删除文件失败: {path} ({e})")


class StagedArtifact:
    """分阶段写入的产物.

    转换器先写入同目录下的暂存文件，由转换线程调用 publish() 改名为
    最终路径。任务超时或中断时事件循环调用 abandon()：尚未发布的
    暂存文件由转换线程结束时删除，已发布的最终文件立即删除。

    Attributes:
        final_path: 最终产物路径
        staging_path: 暂存文件路径（保留扩展名，外部工具据此识别格式）
    """

    def __init__(self, final_path: Path) -> None:
        self.final_path = Path(final_path)
        self.staging_path = self.final_path.with_name(
            f".{self.final_path.stem}.part{self.final_path.suffix}"
        )
        self._lock = threading.Lock()
        self._abandoned = False
        self._published = False

    
    def is_abandoned(self) -> bool:
        return self._abandoned

    def publish(self) -> bool:
        """将暂存文件改名为最终路径.

        Returns:
            已放弃时删除暂存文件并返回 False

        Raises:
            StorageError: 改名失败
        """
        with self._lock:
            if self._abandoned:
                _unlink(self.staging_path)
                return False
            try:
                os.replace(self.staging_path, self.final_path)
            except OSError as e:
                _unlink(self.staging_path)
                raise StorageError(f"无法保存导出文件 {self.final_path.name}: {e}") from e
            self._published = True
            return True

    def abandon(self) -> None:
        """放弃产物，删除已写出的文件."""
        with self._lock:
            self._abandoned = True
            if self._published:
                _unlink(self.final_path)
            else:
                _unlink(self.staging_path)
        logger.debug(f"已放弃产物: {self.final_path.name}")


class FileBlobStore:
    """基于本地文件系统的存储.

    Attributes:
        export_root: 导出文件根目录
        asset_root: 相对素材路径的解析根目录
    """

    def __init__(
        self,
        export_root: Path,
        asset_root: Optional[Path] = None,
        timeout: float = SOURCE_FETCH_TIMEOUT,
    ) -> None:
        """初始化存储.

        构造时不创建目录，需在启动阶段调用 ensure_directories()。

        Args:
            export_root: 导出文件根目录
            asset_root: 素材根目录，默认使用当前工作目录
            timeout: 远程素材下载超时
        """
        self.export_root = Path(export_root)
        self.asset_root = Path(asset_root) if asset_root else None
        self._timeout = timeout

    def ensure_directories(self) -> None:
        """确保导出目录存在."""
        try:
            self.export_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"无法创建导出目录 {self.export_root}: {e}") from e
        logger.debug(f"导出目录已就绪: {self.export_root}")

    # ===================
    # 产物
    # ===================

    def artifact_path(
        self,
        design_id: str,
        job_id: str,
        export_format: ExportFormat,
        now: Optional[datetime] = None,
    ) -> Path:
        """生成产物路径.

        文件名格式: design_{designId}_{jobId}_{YYYYmmdd_HHMMSS}.{ext}

        Args:
            design_id: 设计稿ID
            job_id: 任务ID
            export_format: 导出格式
            now: 时间戳来源

        Returns:
            产物文件路径
        """
        file_name = f"design_{design_id}_{job_id}_{get_timestamp(now)}.{export_format.extension}"
        return self.export_root / file_name

    def stage(self, path: Union[str, Path]) -> StagedArtifact:
        """为最终产物路径创建暂存写入."""
        return StagedArtifact(Path(path))

    def describe(self, path: Union[str, Path], export_format: ExportFormat) -> ArtifactInfo:
        """读取产物元数据.

        Raises:
            StorageError: 产物不存在或为空
        """
        path = Path(path)
        try:
            size = path.stat().st_size
        except OSError as e:
            raise StorageError(f"导出文件不存在: {path.name}") from e
        if size <= 0:
            raise StorageError(f"导出文件为空: {path.name}")
        return ArtifactInfo(
            path=str(path),
            file_name=path.name,
            size=size,
            mime_type=export_format.mime_type,
        )

    def exists(self, path: Union[str, Path]) -> bool:
        return Path(path).is_file()

    def open(self, path: Union[str, Path]) -> BinaryIO:
        """以二进制流打开产物.

        Raises:
            StorageError: 无法打开
        """
        try:
            return open(path, "rb")
        except OSError as e:
            raise StorageError(f"无法读取导出文件: {Path(path).name}") from e

    def remove(self, path: Union[str, Path]) -> bool:
        """删除产物文件.

        Returns:
            文件存在并被删除时返回 True
        """
        path = Path(path)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"无法删除导出文件 {path.name}: {e}") from e
        logger.debug(f"已删除导出文件: {path}")
        return True

    # ===================
    # 素材
    # ===================

    def read_source(self, ref: str) -> bytes:
        """读取素材内容.

        Args:
            ref: 本地路径、file:// URL 或 http/https URL

        Returns:
            素材字节

        Raises:
            StorageError: 读取失败
        """
        parsed = urlparse(ref)
        if parsed.scheme in ("http", "https"):
            try:
                with httpx.Client(timeout=self._timeout, follow_redirects=True) as client:
                    response = client.get(ref)
                    response.raise_for_status()
                    return response.content
            except httpx.HTTPError as e:
                raise StorageError(f"素材下载失败: {ref} ({e})") from e

        path = Path(parsed.path) if parsed.scheme == "file" else Path(ref)
        if not path.is_absolute() and self.asset_root is not None:
            path = self.asset_root / path
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(f"素材读取失败: {ref}") from e

    def to_data_uri(self, ref: str) -> str:
        """将素材内联为 data URI."""
        if ref.startswith("data:"):
            return ref
        mime_type = mimetypes.guess_type(urlparse(ref).path)[0] or "application/octet-stream"
        encoded = base64.b64encode(self.read_source(ref)).decode("ascii")
        return f"data:{mime_type};base64,{encoded}"
