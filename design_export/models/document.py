"""渲染文档模型.

文档是渲染器输出的、与绘图 API 无关的结构：画布属性加上一组
按绘制顺序排列的图元。格式转换器只依赖这里的结构。
"""

from __future__ import annotations

import math
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


class Transform(BaseModel):
    """图元变换.

    依次应用平移、绕局部原点旋转、缩放。
    """

    translate_x: float = 0.0
    translate_y: float = 0.0
    rotate: float = 0.0
    scale_x: float = 1.0
    scale_y: float = 1.0

    @property
    def is_identity(self) -> bool:
        """是否为单位变换."""
        return (
            self.translate_x == 0
            and self.translate_y == 0
            and self.rotate == 0
            and self.scale_x == 1
            and self.scale_y == 1
        )

    def compose(self, child: "Transform") -> "Transform":
        """将子变换嵌套在当前变换之下，返回等效的单个变换.

        子变换的平移先经当前变换缩放、旋转再平移；旋转角相加，缩放相乘。
        当前变换为非均匀缩放且子变换带旋转时结果为近似值。
        """
        x = child.translate_x * self.scale_x
        y = child.translate_y * self.scale_y
        radians = math.radians(self.rotate)
        cos_a, sin_a = math.cos(radians), math.sin(radians)
        return Transform(
            translate_x=self.translate_x + x * cos_a - y * sin_a,
            translate_y=self.translate_y + x * sin_a + y * cos_a,
            rotate=self.rotate + child.rotate,
            scale_x=self.scale_x * child.scale_x,
            scale_y=self.scale_y * child.scale_y,
        )


class Primitive(BaseModel):
    """图元基类.

    Attributes:
        layer_id: 来源图层ID
        transform: 变换
        opacity: 不透明度
    """

    layer_id: str
    transform: Transform = Field(default_factory=Transform)
    opacity: float = Field(default=1.0, ge=0, le=1)


class TextPrimitive(Primitive):
    """文字图元."""

    type: Literal["text"] = "text"
    content: str = ""
    font_family: str = "Arial"
    font_size: float = 16.0
    color: str = "#000000"
    align: str = "left"
    bold: bool = False
    italic: bool = False
    width: float = 0.0


class ImagePrimitive(Primitive):
    """图片图元."""

    type: Literal["image"] = "image"
    href: str
    width: float
    height: float
    preserve_aspect_ratio: bool = True


class RectPrimitive(Primitive):
    """矩形图元."""

    type: Literal["rect"] = "rect"
    width: float
    height: float
    fill: str
    stroke: Optional[str] = None
    stroke_width: float = 0.0
    corner_radius: float = 0.0


class CirclePrimitive(Primitive):
    """圆形图元（圆心为局部坐标）."""

    type: Literal["circle"] = "circle"
    cx: float
    cy: float
    r: float
    fill: str
    stroke: Optional[str] = None
    stroke_width: float = 0.0


class EllipsePrimitive(Primitive):
    """椭圆图元（圆心为局部坐标）."""

    type: Literal["ellipse"] = "ellipse"
    cx: float
    cy: float
    rx: float
    ry: float
    fill: str
    stroke: Optional[str] = None
    stroke_width: float = 0.0


AnyPrimitive = Annotated[
    Union[TextPrimitive, ImagePrimitive, RectPrimitive, CirclePrimitive, EllipsePrimitive],
    Field(discriminator="type"),
]


class Document(BaseModel):
    """渲染文档.

    Attributes:
        width: 画布宽度
        height: 画布高度
        background_color: 背景色，None 表示透明
        background_image: 背景图片来源
        primitives: 图元列表（先绘制的在前）
    """

    width: int = Field(ge=1)
    height: int = Field(ge=1)
    background_color: Optional[str] = None
    background_image: Optional[str] = None
    primitives: list[AnyPrimitive] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """是否没有任何图元."""
        return not self.primitives

    @property
    def primitive_types(self) -> list[str]:
        """按顺序返回图元类型."""
        return [p.type for p in self.primitives]
