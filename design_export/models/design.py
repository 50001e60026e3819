"""设计稿数据模型.

设计稿持有画布属性、背景和扁平的图层集合（按图层ID索引），
父子关系只通过图层的 ``parent_id`` 表达。
"""

from __future__ import annotations

import json
import uuid
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from design_export.models.layer import AnyLayer, validate_color
from design_export.utils.constants import (
    DEFAULT_CANVAS_HEIGHT,
    DEFAULT_CANVAS_WIDTH,
    MAX_CANVAS_SIZE,
)
from design_export.utils.exceptions import LayerNotFoundError


class BackgroundType(str, Enum):
    """画布背景类型."""

    COLOR = "color"
    TRANSPARENT = "transparent"
    IMAGE = "image"


class Background(BaseModel):
    """画布背景描述.

    Attributes:
        type: 背景类型
        color: 背景颜色（type=color 时生效）
        src: 背景图片来源（type=image 时生效）
    """

    type: BackgroundType = Field(default=BackgroundType.COLOR, description="背景类型")
    color: str = Field(default="#ffffff", description="背景颜色")
    src: Optional[str] = Field(default=None, description="背景图片")

    @field_validator("color")
    @classmethod
    def check_color(cls, v: str) -> str:
        """验证背景色."""
        return validate_color(v) or "#ffffff"


def generate_design_id() -> str:
    """生成设计稿ID."""
    return uuid.uuid4().hex


class Design(BaseModel):
    """设计稿.

    Attributes:
        id: 设计稿ID
        name: 设计稿名称
        canvas_width: 画布宽度
        canvas_height: 画布高度
        background: 背景描述
        layers: 图层集合（图层ID -> 图层）
        animation_settings: 动画设置

    Example:
        >>> design = Design(name="海报", canvas_width=800, canvas_height=600)
        >>> design.layer_count
        0
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=generate_design_id, description="设计稿ID")
    name: str = Field(default="未命名设计", max_length=255, description="设计稿名称")

    # 画布属性
    canvas_width: int = Field(
        default=DEFAULT_CANVAS_WIDTH,
        ge=1,
        le=MAX_CANVAS_SIZE,
        alias="width",
        description="画布宽度",
    )
    canvas_height: int = Field(
        default=DEFAULT_CANVAS_HEIGHT,
        ge=1,
        le=MAX_CANVAS_SIZE,
        alias="height",
        description="画布高度",
    )
    background: Background = Field(default_factory=Background, description="背景")

    layers: dict[str, AnyLayer] = Field(default_factory=dict, description="图层集合")

    animation_settings: Optional[dict[str, Any]] = Field(
        default=None,
        alias="animationSettings",
        description="动画设置",
    )

    @field_validator("layers", mode="before")
    @classmethod
    def index_layers(cls, v: Any) -> Any:
        """允许以列表形式传入图层，按 id 建立索引."""
        if isinstance(v, list):
            indexed = {}
            for item in v:
                layer_id = item["id"] if isinstance(item, dict) else item.id
                indexed[layer_id] = item
            return indexed
        return v

    @property
    def canvas_size(self) -> tuple[int, int]:
        """获取画布尺寸."""
        return (self.canvas_width, self.canvas_height)

    @property
    def layer_count(self) -> int:
        """获取图层数量."""
        return len(self.layers)

    @property
    def max_z_index(self) -> int:
        """当前最大层级，没有图层时为 -1."""
        if not self.layers:
            return -1
        return max(layer.z_index for layer in self.layers.values())

    def has_layer(self, layer_id: str) -> bool:
        return layer_id in self.layers

    def get_layer(self, layer_id: str) -> AnyLayer:
        """根据ID获取图层.

        Raises:
            LayerNotFoundError: 图层不存在
        """
        try:
            return self.layers[layer_id]
        except KeyError:
            raise LayerNotFoundError(layer_id) from None

    def get_layers_sorted(self) -> list[AnyLayer]:
        """获取按 z_index 从小到大排序的图层列表（先绘制的在前）."""
        return sorted(self.layers.values(), key=lambda l: l.z_index)

    def normalize_z_indices(self) -> None:
        """按当前绘制顺序将层级重新编号为 0..N-1.

        层级相同的图层保持插入顺序。
        """
        for index, layer in enumerate(self.get_layers_sorted()):
            if layer.z_index != index:
                layer.z_index = index

    def get_children(self, layer_id: Optional[str]) -> list[AnyLayer]:
        """获取直接子图层，按 z_index 排序.

        Args:
            layer_id: 父图层ID，None 表示顶层图层
        """
        return [l for l in self.get_layers_sorted() if l.parent_id == layer_id]

    def get_descendant_ids(self, layer_id: str) -> list[str]:
        """获取所有后代图层ID（广度优先）."""
        result: list[str] = []
        frontier = [layer_id]
        seen = {layer_id}
        while frontier:
            current = frontier.pop(0)
            for child in self.get_children(current):
                if child.id in seen:
                    continue
                seen.add(child.id)
                result.append(child.id)
                frontier.append(child.id)
        return result

    def get_ancestor_ids(self, layer_id: str) -> list[str]:
        """沿 parent_id 链向上获取祖先图层ID（由近到远）."""
        result: list[str] = []
        current = self.layers.get(layer_id)
        seen = {layer_id}
        while current is not None and current.parent_id is not None:
            parent_id = current.parent_id
            if parent_id in seen:
                break
            seen.add(parent_id)
            result.append(parent_id)
            current = self.layers.get(parent_id)
        return result

    def to_json(self, indent: int = 2) -> str:
        """序列化为JSON字符串."""
        return json.dumps(self.model_dump(mode="json"), ensure_ascii=False, indent=indent)

    @classmethod
    def from_json(cls, json_str: str) -> "Design":
        """从JSON字符串反序列化."""
        return cls.model_validate(json.loads(json_str))

    @classmethod
    def from_file(cls, file_path: str) -> "Design":
        """从文件加载设计稿."""
        with open(file_path, "r", encoding="utf-8") as f:
            return cls.from_json(f.read())

    def save_to_file(self, file_path: str) -> None:
        """保存设计稿到文件."""
        with open(file_path, "w", encoding="utf-8") as f:
            f.write(self.to_json())
