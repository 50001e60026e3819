"""文档渲染器.

将设计稿的图层按绘制顺序转换为与绘图 API 无关的渲染文档。

Features:
    - 按 z_index 升序输出图元（底层先绘制）
    - 跳过不可见图层及不可见图层的子树
    - 子图层叠加祖先图层的变换与不透明度
    - 按图层类型分派生成图元
    - 缺失属性使用默认值，未知形状类型不输出图元
"""

from __future__ import annotations

from typing import Callable, Optional

from pydantic import BaseModel, Field, field_validator

from design_export.models.design import BackgroundType, Design
from design_export.models.document import (
    AnyPrimitive,
    CirclePrimitive,
    Document,
    EllipsePrimitive,
    ImagePrimitive,
    RectPrimitive,
    TextPrimitive,
    Transform,
)
from design_export.models.export_job import ExportFormat, ExportOptions
from design_export.models.layer import (
    AnyLayer,
    GroupLayer,
    ImageLayer,
    LayerElement,
    ShapeLayer,
    ShapeType,
    TextLayer,
    validate_color,
)
from design_export.services.blob_store import FileBlobStore
from design_export.utils.exceptions import RenderError, StorageError
from design_export.utils.logger import setup_logger

logger = setup_logger(__name__)


# ===================
# 默认值
# ===================

DEFAULT_TEXT_CONTENT = ""
DEFAULT_FONT_FAMILY = "Arial"
DEFAULT_FONT_SIZE = 16.0
DEFAULT_TEXT_COLOR = "#000000"

# 形状未设置填充色时使用中性灰
DEFAULT_SHAPE_FILL = "#c8c8c8"


class RenderOverrides(BaseModel):
    """渲染覆盖参数（来自导出任务）.

    Attributes:
        background_color: 覆盖背景色
        transparent: 去掉背景
    """

    background_color: Optional[str] = Field(default=None, description="背景色覆盖")
    transparent: bool = Field(default=False, description="透明背景")

    @field_validator("background_color")
    @classmethod
    def check_color(cls, v: Optional[str]) -> Optional[str]:
        return validate_color(v)

    @classmethod
    def from_options(
        cls, options: ExportOptions, export_format: Optional[ExportFormat] = None
    ) -> "RenderOverrides":
        """从导出选项创建.

        Args:
            options: 导出选项
            export_format: 导出格式，不支持透明的格式（jpg、pdf、视频）忽略透明背景
        """
        transparent = options.transparent
        if transparent and export_format is not None and not export_format.supports_transparency:
            logger.info(f"{export_format.value} 不支持透明背景，保留背景")
            transparent = False
        return cls(background_color=options.background_color, transparent=transparent)


def layer_transform(layer: LayerElement) -> Transform:
    """提取图层的公共变换."""
    return Transform(
        translate_x=layer.x,
        translate_y=layer.y,
        rotate=layer.rotation,
        scale_x=layer.scale_x,
        scale_y=layer.scale_y,
    )


class DocumentRenderer:
    """文档渲染器.

    渲染过程只读取设计稿，不做任何修改。

    Example:
        >>> renderer = DocumentRenderer()
        >>> document = renderer.render(design)
        >>> document.primitive_types
        ['rect', 'text']
    """

    def __init__(
        self,
        blob_store: Optional[FileBlobStore] = None,
        embed_images: bool = False,
    ) -> None:
        """初始化渲染器.

        Args:
            blob_store: 素材存储，内联图片时使用
            embed_images: 是否将图片素材内联为 data URI
        """
        self._blob_store = blob_store
        self._embed_images = embed_images and blob_store is not None
        self._handlers: dict[type, Callable[[AnyLayer], Optional[AnyPrimitive]]] = {
            TextLayer: self._render_text_layer,
            ImageLayer: self._render_image_layer,
            ShapeLayer: self._render_shape_layer,
            GroupLayer: self._render_group_layer,
        }

    def render(self, design: Design, overrides: Optional[RenderOverrides] = None) -> Document:
        """渲染设计稿.

        Args:
            design: 设计稿
            overrides: 背景覆盖参数

        Returns:
            渲染文档

        Raises:
            RenderError: 渲染过程中出现无法恢复的错误
        """
        try:
            document = self._render(design, overrides or RenderOverrides())
        except RenderError:
            raise
        except Exception as e:
            raise RenderError(f"设计稿 {design.id} 渲染失败: {e}") from e

        logger.debug(
            f"渲染完成: {design.id}, 画布=({document.width}, {document.height}), "
            f"图元={len(document.primitives)}"
        )
        return document

    def _render(self, design: Design, overrides: RenderOverrides) -> Document:
        background_color, background_image = self._resolve_background(design, overrides)

        primitives: list[AnyPrimitive] = []
        for layer in design.get_layers_sorted():
            if not layer.visible:
                continue
            ancestors = [
                design.layers[ancestor_id]
                for ancestor_id in design.get_ancestor_ids(layer.id)
                if ancestor_id in design.layers
            ]
            # 任一祖先不可见时整棵子树都不绘制
            if not all(ancestor.visible for ancestor in ancestors):
                continue
            primitive = self._render_layer(layer)
            if primitive is None:
                continue
            if ancestors:
                primitive = self._nest(primitive, ancestors)
            primitives.append(primitive)

        return Document(
            width=design.canvas_width,
            height=design.canvas_height,
            background_color=background_color,
            background_image=background_image,
            primitives=primitives,
        )

    @staticmethod
    def _nest(primitive: AnyPrimitive, ancestors: list[AnyLayer]) -> AnyPrimitive:
        """将祖先图层（由近到远）的变换和不透明度叠加到图元上."""
        transform = primitive.transform
        opacity = primitive.opacity
        for ancestor in ancestors:
            transform = layer_transform(ancestor).compose(transform)
            opacity *= ancestor.opacity
        return primitive.model_copy(update={"transform": transform, "opacity": opacity})

    def _resolve_background(
        self,
        design: Design,
        overrides: RenderOverrides,
    ) -> tuple[Optional[str], Optional[str]]:
        """计算文档背景（颜色, 图片）."""
        if overrides.transparent:
            return None, None
        if overrides.background_color is not None:
            color = overrides.background_color
            return (None if color in ("none", "transparent") else color), None

        background = design.background
        if background.type == BackgroundType.TRANSPARENT:
            return None, None
        color = None if background.color in ("none", "transparent") else background.color
        if background.type == BackgroundType.IMAGE and background.src:
            return color, self._resolve_image_source(background.src)
        return color, None

    def _render_layer(self, layer: AnyLayer) -> Optional[AnyPrimitive]:
        """按图层类型分派."""
        handler = self._handlers.get(type(layer))
        if handler is None:
            raise RenderError(f"无法渲染的图层类型: {type(layer).__name__}")
        return handler(layer)

    def _render_text_layer(self, layer: TextLayer) -> TextPrimitive:
        """生成文字图元."""
        return TextPrimitive(
            layer_id=layer.id,
            transform=layer_transform(layer),
            opacity=layer.opacity,
            content=layer.content if layer.content is not None else DEFAULT_TEXT_CONTENT,
            font_family=layer.font_family or DEFAULT_FONT_FAMILY,
            font_size=layer.font_size or DEFAULT_FONT_SIZE,
            color=layer.color or DEFAULT_TEXT_COLOR,
            align=layer.align.value,
            bold=layer.bold,
            italic=layer.italic,
            width=layer.width,
        )

    def _render_image_layer(self, layer: ImageLayer) -> Optional[ImagePrimitive]:
        """生成图片图元，没有来源时不输出."""
        if not layer.has_source:
            logger.debug(f"图片图层没有来源，跳过: {layer.id}")
            return None
        return ImagePrimitive(
            layer_id=layer.id,
            transform=layer_transform(layer),
            opacity=layer.opacity,
            href=self._resolve_image_source(layer.src),
            width=layer.width,
            height=layer.height,
            preserve_aspect_ratio=layer.preserve_aspect_ratio,
        )

    def _render_shape_layer(self, layer: ShapeLayer) -> Optional[AnyPrimitive]:
        """生成形状图元，未知形状类型不输出."""
        shape_type = layer.known_shape_type
        if shape_type is None:
            logger.warning(f"未知形状类型，跳过: {layer.id} ({layer.shape_type})")
            return None

        fill = layer.fill or DEFAULT_SHAPE_FILL
        stroke = layer.stroke if layer.stroke not in (None, "none", "transparent") else None
        if layer.stroke_width <= 0:
            stroke = None
        stroke_width = layer.stroke_width if stroke else 0.0
        common = {
            "layer_id": layer.id,
            "transform": layer_transform(layer),
            "opacity": layer.opacity,
            "fill": fill,
            "stroke": stroke,
            "stroke_width": stroke_width,
        }

        if shape_type == ShapeType.RECTANGLE:
            return RectPrimitive(
                width=layer.width,
                height=layer.height,
                corner_radius=layer.corner_radius,
                **common,
            )
        if shape_type == ShapeType.CIRCLE:
            return CirclePrimitive(
                cx=layer.width / 2,
                cy=layer.height / 2,
                r=min(layer.width, layer.height) / 2,
                **common,
            )
        return EllipsePrimitive(
            cx=layer.width / 2,
            cy=layer.height / 2,
            rx=layer.width / 2,
            ry=layer.height / 2,
            **common,
        )

    def _render_group_layer(self, layer: GroupLayer) -> None:
        """分组图层本身不输出图元."""
        return None

    def _resolve_image_source(self, src: str) -> str:
        """按需将图片来源内联为 data URI，失败时保留原始引用."""
        if not self._embed_images:
            return src
        try:
            return self._blob_store.to_data_uri(src)
        except StorageError as e:
            logger.warning(f"图片内联失败，保留原始引用: {e}")
            return src
