"""图层数据模型.

提供设计稿图层树的数据模型，支持文字、图片、形状、分组四种图层。

Features:
    - 图层元素基类与子类（文字、图片、形状、分组）
    - 按 kind 区分的图层联合类型
    - 外部 camelCase 属性名兼容
    - 边界框计算辅助类型
"""

from __future__ import annotations

import re
import uuid
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from design_export.utils.exceptions import UnknownLayerKindError, ValidationError


# ===================
# 常量定义
# ===================

# 默认图层属性
DEFAULT_LAYER_WIDTH = 100.0
DEFAULT_LAYER_HEIGHT = 100.0
DEFAULT_LAYER_OPACITY = 1.0

# 可识别的颜色关键字
COLOR_KEYWORDS = {"none", "transparent"}

HEX_COLOR_PATTERN = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")


# ===================
# 枚举定义
# ===================


class LayerKind(str, Enum):
    """图层类型枚举."""

    TEXT = "text"  # 文字图层
    IMAGE = "image"  # 图片图层
    SHAPE = "shape"  # 形状图层
    GROUP = "group"  # 分组图层


class ShapeType(str, Enum):
    """已知的形状子类型.

    未知的子类型字符串会原样保存，渲染时输出为空。
    """

    RECTANGLE = "rectangle"
    CIRCLE = "circle"
    ELLIPSE = "ellipse"


class TextAlign(str, Enum):
    """文字对齐方式."""

    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


# 图层类型中文名称
LAYER_KIND_NAMES: dict[LayerKind, str] = {
    LayerKind.TEXT: "文字",
    LayerKind.IMAGE: "图片",
    LayerKind.SHAPE: "形状",
    LayerKind.GROUP: "分组",
}


# ===================
# 辅助函数
# ===================


def generate_layer_id() -> str:
    """生成唯一的图层ID.

    Returns:
        12位UUID字符串
    """
    return uuid.uuid4().hex[:12]


def validate_color(color: Optional[str]) -> Optional[str]:
    """验证颜色值.

    支持 #RGB / #RRGGBB / #RRGGBBAA 以及 none、transparent 关键字。

    Args:
        color: 颜色字符串

    Returns:
        验证后的颜色字符串（十六进制统一小写）

    Raises:
        ValueError: 颜色格式无效
    """
    if color is None:
        return None
    value = color.strip()
    if value.lower() in COLOR_KEYWORDS:
        return value.lower()
    if not HEX_COLOR_PATTERN.match(value):
        raise ValueError(f"无效的颜色值: {color}")
    return value.lower()


# ===================
# 边界框
# ===================


class Rect(BaseModel):
    """轴对齐矩形."""

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def union(self, other: "Rect") -> "Rect":
        """合并两个矩形，返回同时包含二者的最小矩形."""
        left = min(self.x, other.x)
        top = min(self.y, other.y)
        right = max(self.right, other.right)
        bottom = max(self.bottom, other.bottom)
        return Rect(x=left, y=top, width=right - left, height=bottom - top)


# ===================
# 图层基类
# ===================


class LayerElement(BaseModel):
    """图层元素基类.

    所有图层类型的基类，定义通用属性。父图层只通过 ``parent_id`` 引用，
    图层的归属始终是设计稿本身。

    Attributes:
        id: 图层唯一标识符
        name: 图层名称
        kind: 图层类型
        x: X坐标
        y: Y坐标
        width: 宽度
        height: 高度
        rotation: 旋转角度（度，绕图层局部原点）
        scale_x: 水平缩放
        scale_y: 垂直缩放
        opacity: 不透明度（0-1）
        visible: 是否可见
        locked: 是否锁定
        z_index: 层级索引（设计稿内唯一且连续，从0开始）
        animations: 动画列表
        mask: 蒙版描述
        parent_id: 父图层ID
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    id: str = Field(default_factory=generate_layer_id, description="图层唯一ID")
    name: str = Field(default="图层", max_length=255, description="图层名称")
    kind: LayerKind = Field(description="图层类型")

    # 位置和尺寸
    x: float = Field(default=0.0, description="X坐标")
    y: float = Field(default=0.0, description="Y坐标")
    width: float = Field(default=DEFAULT_LAYER_WIDTH, ge=0, description="宽度")
    height: float = Field(default=DEFAULT_LAYER_HEIGHT, ge=0, description="高度")

    # 变换属性
    rotation: float = Field(default=0.0, description="旋转角度")
    scale_x: float = Field(default=1.0, alias="scaleX", description="水平缩放")
    scale_y: float = Field(default=1.0, alias="scaleY", description="垂直缩放")
    opacity: float = Field(
        default=DEFAULT_LAYER_OPACITY,
        ge=0,
        le=1,
        description="不透明度",
    )

    # 层级和状态
    visible: bool = Field(default=True, description="是否可见")
    locked: bool = Field(default=False, description="是否锁定")
    z_index: int = Field(default=0, ge=0, alias="zIndex", description="层级索引")

    # 动画与蒙版
    animations: list[dict[str, Any]] = Field(default_factory=list, description="动画列表")
    mask: Optional[dict[str, Any]] = Field(default=None, description="蒙版")

    # 父图层（ID 引用）
    parent_id: Optional[str] = Field(default=None, alias="parentId", description="父图层ID")

    @property
    def bounds(self) -> Rect:
        """获取图层自身的边界框（不含旋转和缩放）."""
        return Rect(x=self.x, y=self.y, width=self.width, height=self.height)

    def clone(self, **changes: Any) -> "LayerElement":
        """克隆图层.

        Args:
            **changes: 需要覆盖的字段

        Returns:
            新的图层实例，具有新的ID
        """
        data = self.model_dump()
        data["id"] = generate_layer_id()
        data.update(changes)
        return self.__class__.model_validate(data)


# ===================
# 文字图层
# ===================


class TextLayer(LayerElement):
    """文字图层.

    文字相关属性均可缺省，渲染时使用默认值。

    Example:
        >>> layer = TextLayer(content="Hi", font_size=32, color="#ff0000")
        >>> layer.kind
        'text'
    """

    kind: Literal["text"] = Field(default="text", description="图层类型")

    content: Optional[str] = Field(default=None, alias="text", description="文字内容")
    font_family: Optional[str] = Field(default=None, alias="fontFamily", description="字体名称")
    font_size: Optional[float] = Field(default=None, gt=0, alias="fontSize", description="字号")
    color: Optional[str] = Field(default=None, description="文字颜色")
    align: TextAlign = Field(default=TextAlign.LEFT, description="对齐方式")
    bold: bool = Field(default=False, description="粗体")
    italic: bool = Field(default=False, description="斜体")

    @field_validator("color")
    @classmethod
    def check_color(cls, v: Optional[str]) -> Optional[str]:
        """验证颜色值."""
        return validate_color(v)


# ===================
# 图片图层
# ===================


class ImageLayer(LayerElement):
    """图片图层.

    ``src`` 为素材库中的路径或 URL。
    """

    kind: Literal["image"] = Field(default="image", description="图层类型")

    src: Optional[str] = Field(default=None, description="图片来源")
    preserve_aspect_ratio: bool = Field(
        default=True,
        alias="preserveAspectRatio",
        description="保持宽高比",
    )

    @property
    def has_source(self) -> bool:
        """是否已设置图片来源."""
        return bool(self.src)


# ===================
# 形状图层
# ===================


class ShapeLayer(LayerElement):
    """形状图层.

    Attributes:
        shape_type: 形状子类型（rectangle/circle/ellipse，其余值渲染为空）
        fill: 填充颜色
        stroke: 描边颜色
        stroke_width: 描边宽度
        corner_radius: 圆角半径（仅矩形）
    """

    kind: Literal["shape"] = Field(default="shape", description="图层类型")

    shape_type: str = Field(
        default=ShapeType.RECTANGLE.value,
        alias="shapeType",
        description="形状类型",
    )
    fill: Optional[str] = Field(default=None, description="填充颜色")
    stroke: Optional[str] = Field(default=None, description="描边颜色")
    stroke_width: float = Field(default=0.0, ge=0, alias="strokeWidth", description="描边宽度")
    corner_radius: float = Field(default=0.0, ge=0, alias="cornerRadius", description="圆角半径")

    @field_validator("fill", "stroke")
    @classmethod
    def check_color(cls, v: Optional[str]) -> Optional[str]:
        """验证颜色值."""
        return validate_color(v)

    @field_validator("shape_type")
    @classmethod
    def normalize_shape_type(cls, v: str) -> str:
        """形状类型统一小写."""
        return v.strip().lower()

    @property
    def known_shape_type(self) -> Optional[ShapeType]:
        """返回已知的形状类型，未知返回 None."""
        try:
            return ShapeType(self.shape_type)
        except ValueError:
            return None


# ===================
# 分组图层
# ===================


class GroupLayer(LayerElement):
    """分组图层.

    本身不产生绘制内容，子图层通过 ``parent_id`` 指向它。
    """

    kind: Literal["group"] = Field(default="group", description="图层类型")


# ===================
# 图层联合类型
# ===================

AnyLayer = Annotated[
    Union[TextLayer, ImageLayer, ShapeLayer, GroupLayer],
    Field(discriminator="kind"),
]

LAYER_CLASSES: dict[LayerKind, type[LayerElement]] = {
    LayerKind.TEXT: TextLayer,
    LayerKind.IMAGE: ImageLayer,
    LayerKind.SHAPE: ShapeLayer,
    LayerKind.GROUP: GroupLayer,
}


def parse_layer_kind(kind: Any) -> LayerKind:
    """解析图层类型.

    Args:
        kind: 图层类型（大小写不敏感）

    Returns:
        LayerKind 枚举

    Raises:
        UnknownLayerKindError: 不是可识别的图层类型
    """
    if isinstance(kind, LayerKind):
        return kind
    try:
        return LayerKind(str(kind).strip().lower())
    except ValueError:
        raise UnknownLayerKindError(str(kind)) from None


def create_layer(kind: Any, properties: Optional[dict[str, Any]] = None) -> AnyLayer:
    """按类型创建图层.

    Args:
        kind: 图层类型
        properties: 图层属性（支持 snake_case 与 camelCase 键名）

    Returns:
        对应类型的图层实例

    Raises:
        UnknownLayerKindError: 图层类型无法识别
        ValidationError: 属性值无效
    """
    layer_kind = parse_layer_kind(kind)
    data = dict(properties or {})
    data.pop("type", None)
    data["kind"] = layer_kind.value

    try:
        return LAYER_CLASSES[layer_kind].model_validate(data)  # type: ignore[return-value]
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ValidationError(f"{LAYER_KIND_NAMES[layer_kind]}图层属性无效: {fields}") from e


def parse_layer(data: dict[str, Any]) -> AnyLayer:
    """从字典反序列化图层.

    Args:
        data: 图层字典数据（需包含 kind）

    Returns:
        图层对象
    """
    kind = data.get("kind", data.get("type"))
    return create_layer(kind, data)
