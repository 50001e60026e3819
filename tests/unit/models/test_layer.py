"""图层模型单元测试."""

from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from design_export.models.layer import (
    GroupLayer,
    ImageLayer,
    LayerKind,
    Rect,
    ShapeLayer,
    ShapeType,
    TextLayer,
    create_layer,
    parse_layer,
    validate_color,
)
from design_export.utils.exceptions import UnknownLayerKindError, ValidationError


# ===================
# 颜色校验测试
# ===================
class TestValidateColor:
    """测试颜色校验."""

    def test_hex_colors(self) -> None:
        """测试十六进制颜色."""
        assert validate_color("#FFF") == "#fff"
        assert validate_color("#FF0000") == "#ff0000"
        assert validate_color("#ff000080") == "#ff000080"

    def test_keywords(self) -> None:
        """测试颜色关键字."""
        assert validate_color("None") == "none"
        assert validate_color("transparent") == "transparent"

    def test_none_passthrough(self) -> None:
        assert validate_color(None) is None

    def test_invalid_color(self) -> None:
        """测试无效颜色."""
        with pytest.raises(ValueError):
            validate_color("red")


# ===================
# 图层创建测试
# ===================
class TestCreateLayer:
    """测试按类型创建图层."""

    def test_create_text_layer(self) -> None:
        """测试创建文字图层（camelCase 属性）."""
        layer = create_layer("text", {"text": "Hello", "fontSize": 32, "fontFamily": "Roboto"})

        assert isinstance(layer, TextLayer)
        assert layer.kind == LayerKind.TEXT
        assert layer.content == "Hello"
        assert layer.font_size == 32
        assert layer.font_family == "Roboto"

    def test_create_case_insensitive(self) -> None:
        """测试类型大小写不敏感."""
        assert isinstance(create_layer("SHAPE"), ShapeLayer)
        assert isinstance(create_layer(" Group "), GroupLayer)

    def test_unknown_kind(self) -> None:
        """测试未知类型."""
        with pytest.raises(UnknownLayerKindError):
            create_layer("video")

    def test_unknown_kind_is_validation_error(self) -> None:
        with pytest.raises(ValidationError):
            create_layer("sticker")

    def test_invalid_property(self) -> None:
        """测试属性值无效."""
        with pytest.raises(ValidationError):
            create_layer("shape", {"opacity": 2})

    def test_type_key_ignored(self) -> None:
        """测试 type 键不会覆盖图层类型."""
        layer = create_layer("image", {"type": "text", "src": "a.png"})
        assert isinstance(layer, ImageLayer)

    def test_parse_layer(self) -> None:
        """测试从字典反序列化."""
        layer = parse_layer({"type": "shape", "shapeType": "Circle", "fill": "#00FF00"})

        assert isinstance(layer, ShapeLayer)
        assert layer.shape_type == "circle"
        assert layer.known_shape_type == ShapeType.CIRCLE
        assert layer.fill == "#00ff00"


# ===================
# 图层属性测试
# ===================
class TestLayerElement:
    """测试图层通用属性."""

    def test_default_values(self) -> None:
        """测试默认值."""
        layer = GroupLayer()
        assert layer.x == 0
        assert layer.scale_x == 1.0
        assert layer.opacity == 1.0
        assert layer.visible is True
        assert layer.locked is False
        assert layer.parent_id is None
        assert layer.animations == []

    def test_kind_specific_defaults_are_empty(self) -> None:
        """测试类型属性缺省为空，由渲染器补默认值."""
        layer = TextLayer()
        assert layer.content is None
        assert layer.font_size is None
        assert layer.color is None

    def test_unknown_shape_type_kept(self) -> None:
        """测试未知形状类型原样保存."""
        layer = ShapeLayer(shape_type="star")
        assert layer.shape_type == "star"
        assert layer.known_shape_type is None

    def test_image_has_source(self) -> None:
        assert ImageLayer(src="a.png").has_source
        assert not ImageLayer().has_source

    def test_bounds(self) -> None:
        layer = ShapeLayer(x=5, y=10, width=20, height=30)
        assert layer.bounds == Rect(x=5, y=10, width=20, height=30)

    def test_clone_new_id(self) -> None:
        """测试克隆生成新ID."""
        layer = TextLayer(content="a", x=1)
        copy = layer.clone(x=11)

        assert copy.id != layer.id
        assert copy.x == 11
        assert copy.content == "a"
        assert isinstance(copy, TextLayer)

    def test_validate_assignment(self) -> None:
        """测试赋值校验."""
        layer = ShapeLayer()
        with pytest.raises(PydanticValidationError):
            layer.opacity = 5


class TestRect:
    """测试边界框."""

    def test_union(self) -> None:
        a = Rect(x=0, y=0, width=10, height=10)
        b = Rect(x=5, y=-5, width=20, height=10)

        merged = a.union(b)

        assert merged == Rect(x=0, y=-5, width=25, height=15)
