"""格式转换服务.

将渲染文档转换为目标导出格式。

Features:
    - SVG 直接序列化，不需要外部进程
    - 其他格式先写入临时 SVG，再调用 ImageMagick 栅格化
    - 视频格式先栅格化单帧，再调用 ffmpeg 转码
    - 纯 Python 的 Pillow 栅格化实现（不依赖外部工具）
    - 临时文件只在单次转换内有效，任何退出路径都会清理
"""

from __future__ import annotations

import base64
import io
import math
import subprocess
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from PIL import Image, ImageDraw, ImageFont
from pydantic import BaseModel, Field

from design_export.models.document import (
    AnyPrimitive,
    CirclePrimitive,
    Document,
    EllipsePrimitive,
    ImagePrimitive,
    RectPrimitive,
    TextPrimitive,
)
from design_export.models.export_job import ExportFormat, ExportOptions
from design_export.services.blob_store import FileBlobStore
from design_export.services.svg_writer import to_svg
from design_export.utils.constants import (
    CONVERSION_TIMEOUT,
    DEFAULT_RASTERIZER_BINARY,
    DEFAULT_TRANSCODER_BINARY,
    DEFAULT_VIDEO_DURATION,
    DEFAULT_VIDEO_FPS,
    DIAGNOSTIC_OUTPUT_TAIL,
)
from design_export.utils.exceptions import ConversionError, ExportTimeoutError, StorageError
from design_export.utils.helpers import format_file_size, hex_to_rgba
from design_export.utils.logger import setup_logger

logger = setup_logger(__name__)


# ===================
# 转换结果
# ===================


class ConversionResult(BaseModel):
    """转换结果.

    Attributes:
        output_path: 产物路径
        format: 导出格式
        size: 文件大小（字节）
        commands: 执行过的外部命令
    """

    output_path: str
    format: ExportFormat
    size: int = Field(ge=0)
    commands: list[list[str]] = Field(default_factory=list)


def output_size(document: Document, options: ExportOptions) -> tuple[int, int]:
    """计算输出尺寸.

    只指定宽或高时按画布比例推算另一边；未指定宽高时使用缩放比例。
    """
    width, height = document.width, document.height
    if options.width and options.height:
        return options.width, options.height
    if options.width:
        return options.width, max(1, round(height * options.width / width))
    if options.height:
        return max(1, round(width * options.height / height)), options.height
    if options.scale:
        return max(1, round(width * options.scale)), max(1, round(height * options.scale))
    return width, height


def animation_params(options: ExportOptions) -> tuple[float, int]:
    """获取视频时长（秒）与帧率."""
    settings: dict[str, Any] = options.animation_settings or {}
    duration = float(settings.get("duration") or DEFAULT_VIDEO_DURATION)
    fps = int(settings.get("fps") or DEFAULT_VIDEO_FPS)
    return max(duration, 0.1), max(fps, 1)


# ===================
# 转换器接口
# ===================


class BaseConverter(ABC):
    """格式转换器接口."""

    def convert(
        self,
        document: Document,
        export_format: ExportFormat,
        options: ExportOptions,
        output_path: Path,
    ) -> ConversionResult:
        """转换文档.

        SVG 直接写入；失败时删除不完整的输出文件。

        Args:
            document: 渲染文档
            export_format: 导出格式
            options: 导出选项
            output_path: 产物路径

        Returns:
            转换结果

        Raises:
            ConversionError: 转换失败或没有产生输出
            ExportTimeoutError: 外部进程超时
        """
        output_path = Path(output_path)
        try:
            if export_format == ExportFormat.SVG:
                self._write_svg(document, output_path)
                commands: list[list[str]] = []
            else:
                commands = self._convert(document, export_format, options, output_path)
            size = self._verify_output(output_path, commands[-1] if commands else None)
        except Exception:
            self._discard_partial(output_path)
            raise

        logger.info(f"转换完成: {output_path.name} ({export_format.value}, {format_file_size(size)})")
        return ConversionResult(
            output_path=str(output_path),
            format=export_format,
            size=size,
            commands=commands,
        )

    @abstractmethod
    def _convert(
        self,
        document: Document,
        export_format: ExportFormat,
        options: ExportOptions,
        output_path: Path,
    ) -> list[list[str]]:
        """执行非 SVG 格式的转换，返回执行过的外部命令."""

    @staticmethod
    def _write_svg(document: Document, output_path: Path) -> None:
        try:
            output_path.write_bytes(to_svg(document))
        except OSError as e:
            raise StorageError(f"无法写入导出文件 {output_path.name}: {e}") from e

    @staticmethod
    def _verify_output(output_path: Path, command: Optional[list[str]]) -> int:
        """确认输出文件存在且非空."""
        if not output_path.is_file() or output_path.stat().st_size == 0:
            raise ConversionError(
                f"转换未生成输出文件: {output_path.name}",
                command=command,
            )
        return output_path.stat().st_size

    @staticmethod
    def _discard_partial(output_path: Path) -> None:
        try:
            output_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"删除不完整的输出文件失败: {output_path} ({e})")


# ===================
# 外部进程转换器
# ===================


class SubprocessConverter(BaseConverter):
    """基于外部命令行工具的转换器.

    栅格格式使用 ImageMagick，视频格式使用 ffmpeg。

    Example:
        >>> converter = SubprocessConverter(timeout=60)
        >>> result = converter.convert(document, ExportFormat.PNG, options, path)
    """

    def __init__(
        self,
        rasterizer_binary: str = DEFAULT_RASTERIZER_BINARY,
        transcoder_binary: str = DEFAULT_TRANSCODER_BINARY,
        timeout: float = CONVERSION_TIMEOUT,
    ) -> None:
        """初始化转换器.

        Args:
            rasterizer_binary: ImageMagick 命令
            transcoder_binary: ffmpeg 命令
            timeout: 单个子进程超时（秒）
        """
        self.rasterizer_binary = rasterizer_binary
        self.transcoder_binary = transcoder_binary
        self.timeout = timeout

    def _convert(
        self,
        document: Document,
        export_format: ExportFormat,
        options: ExportOptions,
        output_path: Path,
    ) -> list[list[str]]:
        commands: list[list[str]] = []
        with tempfile.TemporaryDirectory(prefix="design-export-") as temp_dir:
            svg_path = Path(temp_dir) / "document.svg"
            svg_path.write_bytes(to_svg(document))

            if export_format.is_video:
                frame_path = Path(temp_dir) / "frame.png"
                frame_command = self.build_raster_command(
                    svg_path, frame_path, ExportFormat.PNG, options
                )
                commands.append(frame_command)
                self._run(frame_command, "rasterize", frame_path)

                video_command = self.build_video_command(
                    frame_path, output_path, export_format, options
                )
                commands.append(video_command)
                self._run(video_command, "transcode", output_path)
            else:
                command = self.build_raster_command(svg_path, output_path, export_format, options)
                commands.append(command)
                self._run(command, "rasterize", output_path)
        return commands

    def build_raster_command(
        self,
        input_path: Path,
        output_path: Path,
        export_format: ExportFormat,
        options: ExportOptions,
    ) -> list[str]:
        """构建 ImageMagick 命令参数.

        Args:
            input_path: SVG 输入路径
            output_path: 输出路径
            export_format: 导出格式
            options: 导出选项

        Returns:
            命令参数列表
        """
        command = [self.rasterizer_binary]

        # 背景需要在读入 SVG 之前设置
        if export_format.supports_transparency:
            command += ["-background", "transparent"]
        elif export_format in (ExportFormat.JPG, ExportFormat.PDF):
            command += ["-background", "white"]

        command.append(str(input_path))

        if export_format == ExportFormat.JPG:
            command.append("-flatten")
        if export_format in (ExportFormat.JPG, ExportFormat.PDF):
            command += ["-quality", str(options.quality_value)]

        if options.has_resize:
            width = options.width if options.width is not None else ""
            height = options.height if options.height is not None else ""
            command += ["-resize", f"{width}x{height}"]
        elif options.scale and options.scale != 1:
            command += ["-resize", f"{options.scale * 100:g}%"]

        command.append(str(output_path))
        return command

    def build_video_command(
        self,
        frame_path: Path,
        output_path: Path,
        export_format: ExportFormat,
        options: ExportOptions,
    ) -> list[str]:
        """构建 ffmpeg 命令参数（静态帧循环为视频）."""
        duration, fps = animation_params(options)
        command = [
            self.transcoder_binary,
            "-y",
            "-loop", "1",
            "-framerate", str(fps),
            "-i", str(frame_path),
            "-t", f"{duration:g}",
        ]
        if export_format == ExportFormat.MP4:
            command += ["-c:v", "libx264", "-pix_fmt", "yuv420p"]
            # libx264 要求偶数尺寸
            command += ["-vf", "scale=trunc(iw/2)*2:trunc(ih/2)*2"]
        else:
            command += ["-c:v", "libvpx-vp9", "-b:v", "0", "-crf", str(self._video_crf(options))]
        command.append(str(output_path))
        return command

    @staticmethod
    def _video_crf(options: ExportOptions) -> int:
        """质量档位映射为 VP9 CRF（数值越小质量越高）."""
        return max(4, min(63, round(63 - options.quality_value * 0.55)))

    def _run(self, command: list[str], stage: str, expected_output: Path) -> subprocess.CompletedProcess:
        """执行外部命令并检查退出码与输出文件.

        Raises:
            ConversionError: 命令不存在、退出码非 0 或未生成输出
            ExportTimeoutError: 超时
        """
        logger.debug(f"执行命令: {' '.join(command)}")
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            logger.error(f"{stage} 超时: {command[0]} ({self.timeout:g}秒)")
            raise ExportTimeoutError(self.timeout, stage) from e
        except FileNotFoundError as e:
            raise ConversionError(f"未找到转换工具: {command[0]}", command=command) from e
        except OSError as e:
            raise ConversionError(f"无法启动转换工具 {command[0]}: {e}", command=command) from e

        output = ((completed.stdout or "") + (completed.stderr or ""))[-DIAGNOSTIC_OUTPUT_TAIL:]
        if completed.returncode != 0:
            logger.error(f"{stage} 失败: 退出码 {completed.returncode}")
            raise ConversionError(
                f"{stage} 失败 (退出码 {completed.returncode})",
                command=command,
                returncode=completed.returncode,
                output=output,
            )
        if not expected_output.is_file():
            raise ConversionError(
                f"{stage} 未生成输出文件",
                command=command,
                returncode=completed.returncode,
                output=output,
            )
        return completed


# ===================
# Pillow 转换器
# ===================


def _rgba(color: Optional[str], opacity: float = 1.0) -> Optional[tuple[int, int, int, int]]:
    """颜色转 RGBA，none/transparent 返回 None."""
    if not color or color in ("none", "transparent"):
        return None
    return hex_to_rgba(color, opacity)


def _load_font(font_family: str, font_size: int, bold: bool, italic: bool) -> ImageFont.ImageFont:
    """加载字体，找不到时回退到默认字体."""
    candidates = [font_family, f"{font_family}.ttf"]
    if bold and italic:
        candidates.insert(0, f"{font_family} Bold Italic.ttf")
    elif bold:
        candidates.insert(0, f"{font_family} Bold.ttf")
    elif italic:
        candidates.insert(0, f"{font_family} Italic.ttf")
    for candidate in candidates:
        try:
            return ImageFont.truetype(candidate, font_size)
        except OSError:
            continue
    try:
        return ImageFont.load_default(font_size)
    except TypeError:
        return ImageFont.load_default()


class PillowConverter(BaseConverter):
    """基于 Pillow 的进程内转换器.

    不依赖外部工具，适合测试和没有安装 ImageMagick 的环境。
    只保证结构正确，不追求与矢量渲染完全一致。
    """

    def __init__(self, blob_store: Optional[FileBlobStore] = None) -> None:
        self._blob_store = blob_store

    def _convert(
        self,
        document: Document,
        export_format: ExportFormat,
        options: ExportOptions,
        output_path: Path,
    ) -> list[list[str]]:
        if export_format.is_video:
            raise ConversionError(f"当前转换器不支持视频格式: {export_format.value}")

        image = self.rasterize(document)
        target_size = output_size(document, options)
        if target_size != image.size:
            image = image.resize(target_size, Image.Resampling.LANCZOS)

        try:
            if export_format == ExportFormat.PNG:
                image.save(output_path, "PNG")
            elif export_format == ExportFormat.GIF:
                image.save(output_path, "GIF")
            elif export_format == ExportFormat.JPG:
                self._flatten(image).save(output_path, "JPEG", quality=options.quality_value)
            elif export_format == ExportFormat.PDF:
                self._flatten(image).save(output_path, "PDF", quality=options.quality_value)
            else:
                raise ConversionError(f"不支持的转换格式: {export_format.value}")
        except OSError as e:
            raise ConversionError(f"图片保存失败: {e}") from e
        return []

    def rasterize(self, document: Document) -> Image.Image:
        """将文档绘制为 RGBA 图片."""
        background = (0, 0, 0, 0)
        if document.background_color:
            background = _rgba(document.background_color) or background
        canvas = Image.new("RGBA", (document.width, document.height), background)

        if document.background_image:
            source = self._load_image(document.background_image)
            if source is not None:
                canvas.alpha_composite(source.resize(canvas.size, Image.Resampling.LANCZOS))

        for primitive in document.primitives:
            patch = self._draw_primitive(primitive)
            if patch is not None:
                self._composite(canvas, patch, primitive)
        return canvas

    @staticmethod
    def _flatten(image: Image.Image) -> Image.Image:
        """将透明图片合成到白色背景上."""
        flattened = Image.new("RGB", image.size, (255, 255, 255))
        flattened.paste(image, mask=image.split()[3])
        return flattened

    def _draw_primitive(self, primitive: AnyPrimitive) -> Optional[Image.Image]:
        """在局部坐标系中绘制单个图元."""
        if isinstance(primitive, TextPrimitive):
            return self._draw_text(primitive)
        if isinstance(primitive, ImagePrimitive):
            return self._draw_image(primitive)
        return self._draw_shape(primitive)

    def _draw_shape(self, primitive: RectPrimitive | CirclePrimitive | EllipsePrimitive) -> Optional[Image.Image]:
        if isinstance(primitive, RectPrimitive):
            box = (0.0, 0.0, primitive.width, primitive.height)
        elif isinstance(primitive, CirclePrimitive):
            box = (
                primitive.cx - primitive.r,
                primitive.cy - primitive.r,
                primitive.cx + primitive.r,
                primitive.cy + primitive.r,
            )
        else:
            box = (
                primitive.cx - primitive.rx,
                primitive.cy - primitive.ry,
                primitive.cx + primitive.rx,
                primitive.cy + primitive.ry,
            )

        width, height = math.ceil(box[2]), math.ceil(box[3])
        if width <= 0 or height <= 0:
            return None

        patch = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        draw = ImageDraw.Draw(patch)
        fill = _rgba(primitive.fill)
        outline = _rgba(primitive.stroke)
        outline_width = max(1, round(primitive.stroke_width)) if outline else 0
        shape = (box[0], box[1], max(box[0], box[2] - 1), max(box[1], box[3] - 1))

        if isinstance(primitive, RectPrimitive) and primitive.corner_radius > 0:
            draw.rounded_rectangle(
                shape,
                radius=primitive.corner_radius,
                fill=fill,
                outline=outline,
                width=outline_width,
            )
        elif isinstance(primitive, RectPrimitive):
            draw.rectangle(shape, fill=fill, outline=outline, width=outline_width)
        else:
            draw.ellipse(shape, fill=fill, outline=outline, width=outline_width)
        return patch

    def _draw_text(self, primitive: TextPrimitive) -> Optional[Image.Image]:
        if not primitive.content:
            return None
        font = _load_font(
            primitive.font_family,
            max(1, round(primitive.font_size)),
            primitive.bold,
            primitive.italic,
        )
        measure = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
        bbox = measure.multiline_textbbox((0, 0), primitive.content, font=font)
        width = max(1, math.ceil(max(bbox[2], primitive.width)))
        height = max(1, math.ceil(bbox[3]))

        patch = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        draw = ImageDraw.Draw(patch)
        text_width = bbox[2] - bbox[0]
        if primitive.align == "center":
            x = (width - text_width) / 2
        elif primitive.align == "right":
            x = width - text_width
        else:
            x = 0
        draw.multiline_text(
            (x, 0),
            primitive.content,
            font=font,
            fill=_rgba(primitive.color) or (0, 0, 0, 0),
            align=primitive.align,
        )
        return patch

    def _draw_image(self, primitive: ImagePrimitive) -> Optional[Image.Image]:
        source = self._load_image(primitive.href)
        width, height = max(1, round(primitive.width)), max(1, round(primitive.height))
        if source is None:
            return None
        if primitive.preserve_aspect_ratio:
            source.thumbnail((width, height), Image.Resampling.LANCZOS)
            patch = Image.new("RGBA", (width, height), (0, 0, 0, 0))
            patch.paste(source, ((width - source.width) // 2, (height - source.height) // 2))
            return patch
        return source.resize((width, height), Image.Resampling.LANCZOS)

    def _load_image(self, href: str) -> Optional[Image.Image]:
        """读取图片素材，失败时返回 None."""
        try:
            if href.startswith("data:"):
                data = base64.b64decode(href.split(",", 1)[1])
            elif self._blob_store is not None:
                data = self._blob_store.read_source(href)
            else:
                data = Path(href).read_bytes()
            with Image.open(io.BytesIO(data)) as source:
                return source.convert("RGBA")
        except (OSError, ValueError, IndexError, StorageError) as e:
            logger.warning(f"图片素材读取失败，跳过: {href[:80]} ({e})")
            return None

    @staticmethod
    def _composite(canvas: Image.Image, patch: Image.Image, primitive: AnyPrimitive) -> None:
        """按图元变换（缩放、绕局部原点旋转、平移）合成到画布."""
        transform = primitive.transform

        scaled_size = (
            max(1, round(patch.width * abs(transform.scale_x))),
            max(1, round(patch.height * abs(transform.scale_y))),
        )
        if scaled_size != patch.size:
            patch = patch.resize(scaled_size, Image.Resampling.LANCZOS)
        if transform.scale_x < 0:
            patch = patch.transpose(Image.Transpose.FLIP_LEFT_RIGHT)
        if transform.scale_y < 0:
            patch = patch.transpose(Image.Transpose.FLIP_TOP_BOTTOM)

        offset_x, offset_y = 0.0, 0.0
        if transform.rotate % 360:
            # 计算旋转后四个角相对局部原点的最小坐标，作为粘贴偏移
            radians = math.radians(transform.rotate)
            cos_a, sin_a = math.cos(radians), math.sin(radians)
            corners = [(0, 0), (patch.width, 0), (0, patch.height), (patch.width, patch.height)]
            offset_x = min(x * cos_a - y * sin_a for x, y in corners)
            offset_y = min(x * sin_a + y * cos_a for x, y in corners)
            patch = patch.rotate(-transform.rotate, resample=Image.Resampling.BICUBIC, expand=True)

        if primitive.opacity < 1:
            alpha = patch.split()[3].point(lambda p: round(p * primitive.opacity))
            patch.putalpha(alpha)

        layer = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
        layer.paste(
            patch,
            (round(transform.translate_x + offset_x), round(transform.translate_y + offset_y)),
        )
        canvas.alpha_composite(layer)
