"""数据模型模块."""

from design_export.models.design import (
    Background,
    BackgroundType,
    Design,
)
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
from design_export.models.export_job import (
    ArtifactInfo,
    ExportFormat,
    ExportJob,
    ExportOptions,
    ExportQuality,
    JobStats,
    JobStatus,
    JobStatusView,
)
from design_export.models.layer import (
    # 枚举
    LayerKind,
    ShapeType,
    TextAlign,
    # 常量
    LAYER_KIND_NAMES,
    # 图层类
    AnyLayer,
    GroupLayer,
    ImageLayer,
    LayerElement,
    Rect,
    ShapeLayer,
    TextLayer,
    # 辅助函数
    create_layer,
    generate_layer_id,
    parse_layer,
)

__all__ = [
    # 设计稿
    "Background",
    "BackgroundType",
    "Design",
    # 渲染文档
    "AnyPrimitive",
    "CirclePrimitive",
    "Document",
    "EllipsePrimitive",
    "ImagePrimitive",
    "RectPrimitive",
    "TextPrimitive",
    "Transform",
    # 导出任务
    "ArtifactInfo",
    "ExportFormat",
    "ExportJob",
    "ExportOptions",
    "ExportQuality",
    "JobStats",
    "JobStatus",
    "JobStatusView",
    # 图层
    "LayerKind",
    "ShapeType",
    "TextAlign",
    "LAYER_KIND_NAMES",
    "AnyLayer",
    "GroupLayer",
    "ImageLayer",
    "LayerElement",
    "Rect",
    "ShapeLayer",
    "TextLayer",
    "create_layer",
    "generate_layer_id",
    "parse_layer",
]
