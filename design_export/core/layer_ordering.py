"""图层层级引擎.

维护设计稿内图层的 z-index 与父子关系完整性：

- z-index 在每次操作完成后都是从 0 开始、连续且不重复的整数
- 父子关系无环，图层不能成为自己的祖先
- 同一设计稿的结构性修改通过设计稿级别的可重入锁串行化

Example:
    >>> engine = LayerOrderingEngine()
    >>> design = Design(name="海报")
    >>> rect = engine.add_layer(design, "shape", {"shapeType": "rectangle"})
    >>> text = engine.add_layer(design, "text", {"text": "Hi"})
    >>> engine.move_to_bottom(design, text.id)
    >>> [l.id for l in design.get_layers_sorted()] == [text.id, rect.id]
    True
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from pydantic import ValidationError as PydanticValidationError

from design_export.models.design import Design
from design_export.models.layer import AnyLayer, LayerElement, Rect, create_layer
from design_export.utils.exceptions import CycleError, ValidationError
from design_export.utils.helpers import clamp
from design_export.utils.logger import setup_logger

logger = setup_logger(__name__)

# 复制图层时的位置偏移
DUPLICATE_OFFSET = 10.0

# 变换属性（含外部 camelCase 名称）
TRANSFORM_FIELDS = {
    "x": "x",
    "y": "y",
    "width": "width",
    "height": "height",
    "rotation": "rotation",
    "scale_x": "scale_x",
    "scaleX": "scale_x",
    "scale_y": "scale_y",
    "scaleY": "scale_y",
    "opacity": "opacity",
}

# 只能通过专用操作修改的字段
STRUCTURAL_FIELDS = {"id", "kind", "type", "z_index", "zIndex", "parent_id", "parentId"}


class DesignLocks:
    """设计稿级别的锁注册表."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, design_id: str) -> threading.RLock:
        """获取设计稿对应的可重入锁."""
        with self._guard:
            lock = self._locks.get(design_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[design_id] = lock
            return lock

    @contextmanager
    def hold(self, design_id: str) -> Iterator[None]:
        """持有设计稿锁的上下文."""
        with self.get(design_id):
            yield

    def discard(self, design_id: str) -> None:
        """移除设计稿的锁（设计稿删除后调用）."""
        with self._guard:
            self._locks.pop(design_id, None)


def _field_name(layer: LayerElement, key: str) -> Optional[str]:
    """将外部属性名（字段名或别名）解析为模型字段名."""
    fields = type(layer).model_fields
    if key in fields:
        return key
    for name, info in fields.items():
        if info.alias == key:
            return name
    return None


class LayerOrderingEngine:
    """图层层级引擎.

    所有修改操作都在设计稿锁内完成，返回时 z-index 不变量成立。

    Attributes:
        locks: 设计稿锁注册表
    """

    def __init__(self, locks: Optional[DesignLocks] = None) -> None:
        self.locks = locks or DesignLocks()

    # ===================
    # 创建与删除
    # ===================

    def add_layer(
        self,
        design: Design,
        kind: Any,
        properties: Optional[dict[str, Any]] = None,
        parent_id: Optional[str] = None,
    ) -> AnyLayer:
        """添加图层.

        新图层位于最顶层（z-index = 图层数量，空设计稿为 0）。

        Args:
            design: 设计稿
            kind: 图层类型
            properties: 图层属性
            parent_id: 父图层ID

        Returns:
            新建的图层

        Raises:
            ValidationError: 图层类型无法识别或属性无效
            LayerNotFoundError: 父图层不存在
        """
        properties = {
            k: v for k, v in (properties or {}).items() if k not in STRUCTURAL_FIELDS - {"id"}
        }
        layer = create_layer(kind, properties)

        with self.locks.hold(design.id):
            if parent_id is not None:
                design.get_layer(parent_id)
            if design.has_layer(layer.id):
                raise ValidationError(f"图层ID已存在: {layer.id}")

            layer.parent_id = parent_id
            design.normalize_z_indices()
            layer.z_index = design.layer_count
            design.layers[layer.id] = layer

        logger.debug(f"添加图层: {layer.id} ({layer.kind}) z={layer.z_index}")
        return layer

    def duplicate_layer(self, design: Design, layer_id: str) -> AnyLayer:
        """复制图层.

        副本位置偏移 10，解除锁定，放在最顶层，父图层不变。

        Args:
            design: 设计稿
            layer_id: 源图层ID

        Returns:
            新图层
        """
        with self.locks.hold(design.id):
            source = design.get_layer(layer_id)
            design.normalize_z_indices()
            copy = source.clone(
                name=f"{source.name} 副本"[:255],
                x=source.x + DUPLICATE_OFFSET,
                y=source.y + DUPLICATE_OFFSET,
                locked=False,
                z_index=design.layer_count,
            )
            design.layers[copy.id] = copy

        logger.debug(f"复制图层: {layer_id} -> {copy.id}")
        return copy

    def delete(self, design: Design, layer_id: str, cascade: bool = True) -> list[str]:
        """删除图层.

        Args:
            design: 设计稿
            layer_id: 图层ID
            cascade: True 删除整棵子树；False 将直接子图层挂到被删图层的父图层下

        Returns:
            被删除的图层ID列表
        """
        with self.locks.hold(design.id):
            layer = design.get_layer(layer_id)

            if cascade:
                removed = [layer_id] + design.get_descendant_ids(layer_id)
            else:
                removed = [layer_id]
                for child in design.get_children(layer_id):
                    child.parent_id = layer.parent_id

            for removed_id in removed:
                del design.layers[removed_id]

            design.normalize_z_indices()

        logger.debug(f"删除图层: {layer_id} (cascade={cascade}, 共 {len(removed)} 个)")
        return removed

    # ===================
    # 父子关系
    # ===================

    def reparent(self, design: Design, layer_id: str, new_parent_id: Optional[str]) -> None:
        """设置父图层.

        Args:
            design: 设计稿
            layer_id: 图层ID
            new_parent_id: 新父图层ID，None 表示移到顶层

        Raises:
            CycleError: 新父图层是该图层本身或其后代
            LayerNotFoundError: 图层不存在
        """
        with self.locks.hold(design.id):
            layer = design.get_layer(layer_id)
            if new_parent_id is not None:
                design.get_layer(new_parent_id)
                # 从新父图层沿祖先链向上查找，不能遇到自己
                chain = [new_parent_id] + design.get_ancestor_ids(new_parent_id)
                if layer_id in chain:
                    raise CycleError(layer_id, new_parent_id)
            layer.parent_id = new_parent_id

        logger.debug(f"设置父图层: {layer_id} -> {new_parent_id}")

    def get_hierarchy(self, design: Design, layer_id: Optional[str] = None) -> list[dict[str, Any]]:
        """获取子图层树（按 z-index 排序）.

        Args:
            design: 设计稿
            layer_id: 根图层ID，None 表示设计稿顶层

        Returns:
            ``[{"layer": 图层, "children": [...]}, ...]``
        """
        with self.locks.hold(design.id):
            return self._hierarchy(design, layer_id, set())

    def _hierarchy(self, design: Design, layer_id: Optional[str], seen: set[str]) -> list[dict[str, Any]]:
        result = []
        for child in design.get_children(layer_id):
            if child.id in seen:
                continue
            seen.add(child.id)
            result.append({"layer": child, "children": self._hierarchy(design, child.id, seen)})
        return result

    def compute_bounds(self, design: Design, layer_id: str) -> Rect:
        """计算图层及其所有后代的边界框.

        边界框基于未旋转、未缩放的几何尺寸，是近似值。

        Args:
            design: 设计稿
            layer_id: 图层ID

        Returns:
            轴对齐边界框
        """
        with self.locks.hold(design.id):
            bounds = design.get_layer(layer_id).bounds
            for descendant_id in design.get_descendant_ids(layer_id):
                bounds = bounds.union(design.layers[descendant_id].bounds)
            return bounds

    # ===================
    # 层级顺序
    # ===================

    def move_to_index(self, design: Design, layer_id: str, new_z: int) -> None:
        """移动图层到指定层级.

        目标层级会被限制在 [0, N-1] 内；原位置与目标位置之间的图层依次
        让位一格。

        Args:
            design: 设计稿
            layer_id: 图层ID
            new_z: 目标层级
        """
        with self.locks.hold(design.id):
            layer = design.get_layer(layer_id)
            old_z = layer.z_index
            target = int(clamp(new_z, 0, design.layer_count - 1))
            if target == old_z:
                return

            for other in design.layers.values():
                if other.id == layer_id:
                    continue
                if old_z < target and old_z < other.z_index <= target:
                    other.z_index -= 1
                elif target < old_z and target <= other.z_index < old_z:
                    other.z_index += 1
            layer.z_index = target

        logger.debug(f"移动图层层级: {layer_id} {old_z} -> {target}")

    def move_up(self, design: Design, layer_id: str) -> bool:
        """与上方最近的图层交换层级.

        Returns:
            是否发生了移动（已在最顶层返回 False）
        """
        with self.locks.hold(design.id):
            layer = design.get_layer(layer_id)
            above = [l for l in design.layers.values() if l.z_index > layer.z_index]
            if not above:
                return False
            self._swap(layer, min(above, key=lambda l: l.z_index))
            return True

    def move_down(self, design: Design, layer_id: str) -> bool:
        """与下方最近的图层交换层级.

        Returns:
            是否发生了移动（已在最底层返回 False）
        """
        with self.locks.hold(design.id):
            layer = design.get_layer(layer_id)
            below = [l for l in design.layers.values() if l.z_index < layer.z_index]
            if not below:
                return False
            self._swap(layer, max(below, key=lambda l: l.z_index))
            return True

    def move_to_top(self, design: Design, layer_id: str) -> None:
        """移动到最顶层."""
        with self.locks.hold(design.id):
            self.move_to_index(design, layer_id, design.max_z_index + 1)

    def move_to_bottom(self, design: Design, layer_id: str) -> None:
        """移动到最底层."""
        self.move_to_index(design, layer_id, 0)

    def ordered_layers(self, design: Design) -> list[AnyLayer]:
        """按绘制顺序（z-index 升序）返回图层."""
        with self.locks.hold(design.id):
            return design.get_layers_sorted()

    @staticmethod
    def _swap(a: LayerElement, b: LayerElement) -> None:
        a_z, b_z = a.z_index, b.z_index
        a.z_index, b.z_index = b_z, a_z

    # ===================
    # 属性修改
    # ===================

    def update_transform(self, design: Design, layer_id: str, transform: dict[str, Any]) -> AnyLayer:
        """更新图层变换（位置、尺寸、旋转、缩放、不透明度）.

        Raises:
            ValidationError: 包含非变换属性或值无效
        """
        unknown = [k for k in transform if k not in TRANSFORM_FIELDS]
        if unknown:
            raise ValidationError(f"不支持的变换属性: {', '.join(unknown)}")
        return self._assign(
            design,
            layer_id,
            {TRANSFORM_FIELDS[k]: v for k, v in transform.items() if v is not None},
        )

    def update_properties(self, design: Design, layer_id: str, properties: dict[str, Any]) -> AnyLayer:
        """合并更新图层属性.

        id、类型、层级和父图层只能通过专用操作修改。

        Raises:
            ValidationError: 属性不存在、属于结构字段或值无效
        """
        structural = [k for k in properties if k in STRUCTURAL_FIELDS]
        if structural:
            raise ValidationError(f"属性不能直接修改: {', '.join(structural)}")

        with self.locks.hold(design.id):
            layer = design.get_layer(layer_id)
            changes: dict[str, Any] = {}
            for key, value in properties.items():
                name = _field_name(layer, key)
                if name is None:
                    raise ValidationError(f"{layer.kind} 图层不支持属性: {key}")
                changes[name] = value
            return self._assign(design, layer_id, changes)

    def set_visibility(self, design: Design, layer_id: str, visible: bool) -> AnyLayer:
        return self._assign(design, layer_id, {"visible": visible})

    def set_locked(self, design: Design, layer_id: str, locked: bool) -> AnyLayer:
        return self._assign(design, layer_id, {"locked": locked})

    def set_mask(self, design: Design, layer_id: str, mask: Optional[dict[str, Any]]) -> AnyLayer:
        return self._assign(design, layer_id, {"mask": mask})

    def set_animations(self, design: Design, layer_id: str, animations: list[dict[str, Any]]) -> AnyLayer:
        """替换动画列表."""
        return self._assign(design, layer_id, {"animations": list(animations)})

    def add_animation(self, design: Design, layer_id: str, animation: dict[str, Any]) -> AnyLayer:
        """追加动画."""
        with self.locks.hold(design.id):
            layer = design.get_layer(layer_id)
            return self._assign(design, layer_id, {"animations": [*layer.animations, animation]})

    def remove_animation(self, design: Design, layer_id: str, index: int) -> AnyLayer:
        """按索引移除动画，索引越界时不做修改."""
        with self.locks.hold(design.id):
            layer = design.get_layer(layer_id)
            if not 0 <= index < len(layer.animations):
                return layer
            animations = [a for i, a in enumerate(layer.animations) if i != index]
            return self._assign(design, layer_id, {"animations": animations})

    def _assign(self, design: Design, layer_id: str, changes: dict[str, Any]) -> AnyLayer:
        """校验后整体应用属性修改."""
        with self.locks.hold(design.id):
            layer = design.get_layer(layer_id)
            data = layer.model_dump()
            data.update(changes)
            try:
                updated = type(layer).model_validate(data)
            except PydanticValidationError as e:
                fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
                raise ValidationError(f"图层属性无效: {fields}") from e
            for name in changes:
                setattr(layer, name, getattr(updated, name))
            return layer

    # ===================
    # 完整性检查
    # ===================

    def check_integrity(self, design: Design) -> list[str]:
        """检查设计稿的层级与父子关系不变量.

        Returns:
            问题描述列表，为空表示完整
        """
        problems: list[str] = []
        with self.locks.hold(design.id):
            z_values = sorted(layer.z_index for layer in design.layers.values())
            if z_values != list(range(len(z_values))):
                problems.append(f"z-index 不连续或重复: {z_values}")

            for layer in design.layers.values():
                if layer.parent_id is None:
                    continue
                if not design.has_layer(layer.parent_id):
                    problems.append(f"图层 {layer.id} 的父图层不存在: {layer.parent_id}")
                    continue
                if layer.id in self._ancestor_chain(design, layer.id):
                    problems.append(f"图层 {layer.id} 存在循环父子关系")
        return problems

    @staticmethod
    def _ancestor_chain(design: Design, layer_id: str) -> list[str]:
        """沿 parent_id 向上遍历，遇到重复节点即停止（包含重复节点本身）."""
        chain: list[str] = []
        seen: set[str] = set()
        current = design.layers.get(layer_id)
        while current is not None and current.parent_id is not None:
            chain.append(current.parent_id)
            if current.parent_id in seen:
                break
            seen.add(current.parent_id)
            current = design.layers.get(current.parent_id)
        return chain
