"""SVG 序列化.

将渲染文档序列化为 SVG。输出只取决于文档内容：数值格式固定、
文本转义、不包含时间戳或随机 ID，同一文档多次序列化得到相同字节。
"""

from __future__ import annotations

import re
from xml.sax.saxutils import escape, quoteattr

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

SVG_NAMESPACE = "http://www.w3.org/2000/svg"
XLINK_NAMESPACE = "http://www.w3.org/1999/xlink"

TEXT_ANCHORS = {"left": "start", "center": "middle", "right": "end"}

# 多行文字的行距（字号的倍数）
LINE_HEIGHT = 1.2

# XML 1.0 不允许出现的字符（保留制表符和换行）
_ILLEGAL_XML_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")


def clean_text(text: str) -> str:
    """去掉 XML 中不合法的控制字符."""
    return _ILLEGAL_XML_CHARS.sub("", text)


def format_number(value: float) -> str:
    """固定格式输出数值（最多 4 位小数，去掉多余的 0）."""
    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def format_transform(transform: Transform) -> str:
    """输出 SVG transform 属性值（平移、旋转、缩放）."""
    return (
        f"translate({format_number(transform.translate_x)} {format_number(transform.translate_y)}) "
        f"rotate({format_number(transform.rotate)}) "
        f"scale({format_number(transform.scale_x)} {format_number(transform.scale_y)})"
    )


def _attrs(**attributes: object) -> str:
    """按传入顺序拼接属性，None 值跳过."""
    parts = []
    for name, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, float):
            value = format_number(value)
        parts.append(f"{name.replace('_', '-')}={quoteattr(clean_text(str(value)))}")
    return " ".join(parts)


def _paint_attrs(primitive: RectPrimitive | CirclePrimitive | EllipsePrimitive) -> dict:
    attributes: dict = {"fill": primitive.fill}
    if primitive.stroke:
        attributes["stroke"] = primitive.stroke
        attributes["stroke_width"] = float(primitive.stroke_width)
    return attributes


def _common_attrs(primitive: AnyPrimitive) -> dict:
    attributes: dict = {}
    if primitive.opacity < 1:
        attributes["opacity"] = float(primitive.opacity)
    if not primitive.transform.is_identity:
        attributes["transform"] = format_transform(primitive.transform)
    return attributes


def _text_element(primitive: TextPrimitive) -> str:
    anchor = TEXT_ANCHORS.get(primitive.align, "start")
    if anchor == "middle":
        x = primitive.width / 2
    elif anchor == "end":
        x = primitive.width
    else:
        x = 0.0
    attributes = _attrs(
        x=float(x),
        # 基线近似为字号
        y=float(primitive.font_size),
        font_family=primitive.font_family,
        font_size=float(primitive.font_size),
        font_weight="bold" if primitive.bold else None,
        font_style="italic" if primitive.italic else None,
        text_anchor=anchor if anchor != "start" else None,
        fill=primitive.color,
        **_common_attrs(primitive),
    )
    lines = clean_text(primitive.content).replace("\r\n", "\n").replace("\r", "\n").split("\n")
    if len(lines) == 1:
        return f"<text {attributes}>{escape(lines[0])}</text>"

    x_attr = quoteattr(format_number(float(x)))
    dy_attr = quoteattr(format_number(primitive.font_size * LINE_HEIGHT))
    spans = [f"<tspan x={x_attr}>{escape(lines[0])}</tspan>"]
    spans += [f"<tspan x={x_attr} dy={dy_attr}>{escape(line)}</tspan>" for line in lines[1:]]
    return f"<text {attributes}>{''.join(spans)}</text>"


def _image_element(primitive: ImagePrimitive) -> str:
    attributes = _attrs(
        x="0",
        y="0",
        width=float(primitive.width),
        height=float(primitive.height),
        preserveAspectRatio=None if primitive.preserve_aspect_ratio else "none",
        href=primitive.href,
        **_common_attrs(primitive),
    )
    return f"<image {attributes}/>"


def _rect_element(primitive: RectPrimitive) -> str:
    radius = float(primitive.corner_radius) if primitive.corner_radius > 0 else None
    attributes = _attrs(
        x="0",
        y="0",
        width=float(primitive.width),
        height=float(primitive.height),
        rx=radius,
        ry=radius,
        **_paint_attrs(primitive),
        **_common_attrs(primitive),
    )
    return f"<rect {attributes}/>"


def _circle_element(primitive: CirclePrimitive) -> str:
    attributes = _attrs(
        cx=float(primitive.cx),
        cy=float(primitive.cy),
        r=float(primitive.r),
        **_paint_attrs(primitive),
        **_common_attrs(primitive),
    )
    return f"<circle {attributes}/>"


def _ellipse_element(primitive: EllipsePrimitive) -> str:
    attributes = _attrs(
        cx=float(primitive.cx),
        cy=float(primitive.cy),
        rx=float(primitive.rx),
        ry=float(primitive.ry),
        **_paint_attrs(primitive),
        **_common_attrs(primitive),
    )
    return f"<ellipse {attributes}/>"


ELEMENT_WRITERS = {
    TextPrimitive: _text_element,
    ImagePrimitive: _image_element,
    RectPrimitive: _rect_element,
    CirclePrimitive: _circle_element,
    EllipsePrimitive: _ellipse_element,
}


def to_svg_string(document: Document) -> str:
    """序列化为 SVG 字符串."""
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        (
            f'<svg xmlns="{SVG_NAMESPACE}" xmlns:xlink="{XLINK_NAMESPACE}" '
            f'width="{document.width}" height="{document.height}" '
            f'viewBox="0 0 {document.width} {document.height}">'
        ),
    ]

    if document.background_color:
        lines.append(f'<rect width="100%" height="100%" fill={quoteattr(document.background_color)}/>')
    if document.background_image:
        lines.append(
            f'<image x="0" y="0" width="{document.width}" height="{document.height}" '
            f'preserveAspectRatio="xMidYMid slice" href={quoteattr(document.background_image)}/>'
        )

    for primitive in document.primitives:
        lines.append(ELEMENT_WRITERS[type(primitive)](primitive))

    lines.append("</svg>")
    return "\n".join(lines) + "\n"


def to_svg(document: Document) -> bytes:
    """序列化为 UTF-8 编码的 SVG 字节."""
    return to_svg_string(document).encode("utf-8")
