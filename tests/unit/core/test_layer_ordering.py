"""图层层级引擎单元测试."""

from __future__ import annotations

import random
import threading

import pytest

from design_export.core.layer_ordering import LayerOrderingEngine
from design_export.models.design import Design
from design_export.models.layer import GroupLayer, Rect, ShapeLayer, TextLayer
from design_export.utils.exceptions import (
    CycleError,
    LayerNotFoundError,
    UnknownLayerKindError,
    ValidationError,
)


def z_values(design: Design) -> list[int]:
    return sorted(layer.z_index for layer in design.layers.values())


def order(design: Design) -> list[str]:
    return [layer.id for layer in design.get_layers_sorted()]


def assert_dense(design: Design) -> None:
    """z-index 从 0 开始连续且不重复."""
    assert z_values(design) == list(range(design.layer_count))


@pytest.fixture
def stack(engine: LayerOrderingEngine) -> Design:
    """a, b, c, d 自下而上排列的设计稿."""
    design = Design()
    for layer_id in "abcd":
        engine.add_layer(design, "shape", {"id": layer_id})
    return design


# ===================
# 添加与复制
# ===================
class TestAddLayer:
    """测试添加图层."""

    def test_first_layer_z_zero(self, engine: LayerOrderingEngine) -> None:
        design = Design()
        layer = engine.add_layer(design, "text", {"text": "Hi"})
        assert layer.z_index == 0
        assert isinstance(layer, TextLayer)

    def test_new_layer_on_top(self, stack: Design) -> None:
        assert order(stack) == ["a", "b", "c", "d"]
        assert_dense(stack)

    def test_structural_keys_ignored(self, engine: LayerOrderingEngine, stack: Design) -> None:
        """测试属性中的 zIndex/parentId 不会生效."""
        layer = engine.add_layer(stack, "shape", {"zIndex": 0, "parentId": "a"})
        assert layer.z_index == 4
        assert layer.parent_id is None

    def test_add_to_loaded_design_with_duplicate_z(self, engine: LayerOrderingEngine) -> None:
        """测试在层级重复的设计稿上添加图层后层级仍然连续."""
        design = Design(layers=[ShapeLayer(id="b"), TextLayer(id="a")])

        engine.add_layer(design, "shape", {"id": "c"})

        assert order(design) == ["b", "a", "c"]
        assert engine.check_integrity(design) == []

    def test_duplicate_on_loaded_design(self, engine: LayerOrderingEngine) -> None:
        design = Design(layers=[ShapeLayer(id="b"), ShapeLayer(id="a")])

        copy = engine.duplicate_layer(design, "b")

        assert copy.z_index == 2
        assert_dense(design)

    def test_add_with_parent(self, engine: LayerOrderingEngine) -> None:
        design = Design()
        group = engine.add_layer(design, "group")
        child = engine.add_layer(design, "shape", parent_id=group.id)
        assert child.parent_id == group.id

    def test_missing_parent(self, engine: LayerOrderingEngine) -> None:
        with pytest.raises(LayerNotFoundError):
            engine.add_layer(Design(), "shape", parent_id="missing")

    def test_unknown_kind(self, engine: LayerOrderingEngine) -> None:
        design = Design()
        with pytest.raises(UnknownLayerKindError):
            engine.add_layer(design, "sticker")
        assert design.layer_count == 0

    def test_duplicate_id(self, engine: LayerOrderingEngine, stack: Design) -> None:
        with pytest.raises(ValidationError):
            engine.add_layer(stack, "shape", {"id": "a"})

    def test_duplicate_layer(self, engine: LayerOrderingEngine) -> None:
        """测试复制：偏移 10、解锁、置顶."""
        design = Design()
        source = engine.add_layer(design, "shape", {"name": "按钮", "x": 5, "y": 7, "locked": True})
        engine.add_layer(design, "text")

        copy = engine.duplicate_layer(design, source.id)

        assert copy.id != source.id
        assert copy.name == "按钮 副本"
        assert (copy.x, copy.y) == (15, 17)
        assert copy.locked is False
        assert copy.z_index == 2
        assert_dense(design)


# ===================
# 删除
# ===================
class TestDeleteLayer:
    """测试删除图层."""

    def test_delete_renormalizes(self, engine: LayerOrderingEngine, stack: Design) -> None:
        removed = engine.delete(stack, "b")
        assert removed == ["b"]
        assert order(stack) == ["a", "c", "d"]
        assert_dense(stack)

    def test_cascade_delete(self, engine: LayerOrderingEngine, stack: Design) -> None:
        """测试级联删除整棵子树."""
        engine.reparent(stack, "c", "b")
        engine.reparent(stack, "d", "c")

        removed = engine.delete(stack, "b")

        assert set(removed) == {"b", "c", "d"}
        assert order(stack) == ["a"]
        assert_dense(stack)

    def test_non_cascade_reparents_children(self, engine: LayerOrderingEngine, stack: Design) -> None:
        """测试非级联删除时子图层挂到祖父图层下."""
        engine.reparent(stack, "b", "a")
        engine.reparent(stack, "c", "b")

        engine.delete(stack, "b", cascade=False)

        assert stack.layers["c"].parent_id == "a"
        assert_dense(stack)

    def test_delete_missing(self, engine: LayerOrderingEngine, stack: Design) -> None:
        with pytest.raises(LayerNotFoundError):
            engine.delete(stack, "missing")


# ===================
# 层级顺序
# ===================
class TestOrdering:
    """测试层级移动."""

    def test_move_to_index_up(self, engine: LayerOrderingEngine, stack: Design) -> None:
        engine.move_to_index(stack, "a", 2)
        assert order(stack) == ["b", "c", "a", "d"]
        assert_dense(stack)

    def test_move_to_index_down(self, engine: LayerOrderingEngine, stack: Design) -> None:
        engine.move_to_index(stack, "d", 1)
        assert order(stack) == ["a", "d", "b", "c"]
        assert_dense(stack)

    def test_move_to_index_clamped(self, engine: LayerOrderingEngine, stack: Design) -> None:
        """测试越界层级被限制在范围内."""
        engine.move_to_index(stack, "b", 99)
        assert order(stack) == ["a", "c", "d", "b"]
        engine.move_to_index(stack, "b", -5)
        assert order(stack) == ["b", "a", "c", "d"]
        assert_dense(stack)

    def test_move_to_top_and_bottom(self, engine: LayerOrderingEngine, stack: Design) -> None:
        engine.move_to_top(stack, "a")
        assert order(stack)[-1] == "a"
        engine.move_to_bottom(stack, "d")
        assert order(stack)[0] == "d"
        assert_dense(stack)

    def test_move_up_down(self, engine: LayerOrderingEngine, stack: Design) -> None:
        assert engine.move_up(stack, "b") is True
        assert order(stack) == ["a", "c", "b", "d"]
        assert engine.move_down(stack, "b") is True
        assert order(stack) == ["a", "b", "c", "d"]

    def test_move_at_boundary(self, engine: LayerOrderingEngine, stack: Design) -> None:
        """测试已在边界时不移动."""
        assert engine.move_up(stack, "d") is False
        assert engine.move_down(stack, "a") is False
        assert order(stack) == ["a", "b", "c", "d"]

    def test_random_operations_keep_dense(self, engine: LayerOrderingEngine) -> None:
        """测试任意操作序列后 z-index 始终连续."""
        rng = random.Random(7)
        design = Design()
        for _ in range(300):
            ids = list(design.layers)
            action = rng.choice(["add", "add", "delete", "move", "up", "down", "top", "bottom", "dup"])
            if action == "add" or not ids:
                engine.add_layer(design, rng.choice(["text", "shape", "group", "image"]))
            elif action == "delete":
                engine.delete(design, rng.choice(ids), cascade=rng.random() < 0.5)
            elif action == "move":
                engine.move_to_index(design, rng.choice(ids), rng.randint(-3, len(ids) + 3))
            elif action == "up":
                engine.move_up(design, rng.choice(ids))
            elif action == "down":
                engine.move_down(design, rng.choice(ids))
            elif action == "top":
                engine.move_to_top(design, rng.choice(ids))
            elif action == "bottom":
                engine.move_to_bottom(design, rng.choice(ids))
            else:
                engine.duplicate_layer(design, rng.choice(ids))
            assert_dense(design)
        assert engine.check_integrity(design) == []

    def test_concurrent_adds(self, engine: LayerOrderingEngine) -> None:
        """测试并发添加时层级不重复."""
        design = Design()

        def worker() -> None:
            for _ in range(25):
                engine.add_layer(design, "shape")

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert design.layer_count == 100
        assert_dense(design)


# ===================
# 父子关系
# ===================
class TestHierarchy:
    """测试父子关系."""

    def test_reparent_self(self, engine: LayerOrderingEngine, stack: Design) -> None:
        with pytest.raises(CycleError):
            engine.reparent(stack, "a", "a")

    def test_reparent_to_descendant(self, engine: LayerOrderingEngine, stack: Design) -> None:
        """测试不能挂到自己的后代下."""
        engine.reparent(stack, "b", "a")
        engine.reparent(stack, "c", "b")

        with pytest.raises(CycleError):
            engine.reparent(stack, "a", "c")
        assert stack.layers["a"].parent_id is None

    def test_reparent_to_root(self, engine: LayerOrderingEngine, stack: Design) -> None:
        engine.reparent(stack, "b", "a")
        engine.reparent(stack, "b", None)
        assert stack.layers["b"].parent_id is None

    def test_reparent_missing_parent(self, engine: LayerOrderingEngine, stack: Design) -> None:
        with pytest.raises(LayerNotFoundError):
            engine.reparent(stack, "a", "missing")

    def test_random_reparent_never_cycles(self, engine: LayerOrderingEngine) -> None:
        """测试任意重设父图层序列后不存在环."""
        rng = random.Random(11)
        design = Design()
        ids = [engine.add_layer(design, "group").id for _ in range(12)]
        for _ in range(200):
            layer_id = rng.choice(ids)
            parent_id = rng.choice(ids + [None])
            try:
                engine.reparent(design, layer_id, parent_id)
            except CycleError:
                pass
            for candidate in ids:
                assert candidate not in design.get_ancestor_ids(candidate)
        assert engine.check_integrity(design) == []

    def test_get_hierarchy(self, engine: LayerOrderingEngine, stack: Design) -> None:
        engine.reparent(stack, "b", "a")
        engine.reparent(stack, "c", "a")

        tree = engine.get_hierarchy(stack)

        assert [node["layer"].id for node in tree] == ["a", "d"]
        assert [node["layer"].id for node in tree[0]["children"]] == ["b", "c"]

    def test_compute_bounds(self, engine: LayerOrderingEngine) -> None:
        """测试边界框包含所有后代."""
        design = Design(
            layers=[
                GroupLayer(id="g", x=0, y=0, width=10, height=10, z_index=0),
                ShapeLayer(id="s", parent_id="g", x=50, y=20, width=10, height=5, z_index=1),
                ShapeLayer(id="t", parent_id="s", x=-5, y=0, width=1, height=1, z_index=2),
            ]
        )
        assert engine.compute_bounds(design, "g") == Rect(x=-5, y=0, width=65, height=25)


# ===================
# 属性修改
# ===================
class TestProperties:
    """测试属性修改."""

    def test_update_transform(self, engine: LayerOrderingEngine, stack: Design) -> None:
        layer = engine.update_transform(stack, "a", {"x": 12, "scaleX": 2, "rotation": 45})
        assert (layer.x, layer.scale_x, layer.rotation) == (12, 2, 45)
        assert stack.layers["a"] is layer

    def test_update_transform_rejects_other_keys(self, engine: LayerOrderingEngine, stack: Design) -> None:
        with pytest.raises(ValidationError):
            engine.update_transform(stack, "a", {"fill": "#fff"})

    def test_update_transform_invalid_value(self, engine: LayerOrderingEngine, stack: Design) -> None:
        """测试无效值不会部分写入."""
        with pytest.raises(ValidationError):
            engine.update_transform(stack, "a", {"x": 3, "opacity": 4})
        assert stack.layers["a"].x == 0

    def test_update_properties(self, engine: LayerOrderingEngine, stack: Design) -> None:
        layer = engine.update_properties(stack, "a", {"fill": "#00FF00", "cornerRadius": 4})
        assert layer.fill == "#00ff00"
        assert layer.corner_radius == 4

    def test_update_properties_structural(self, engine: LayerOrderingEngine, stack: Design) -> None:
        """测试结构字段只能通过专用操作修改."""
        with pytest.raises(ValidationError):
            engine.update_properties(stack, "a", {"zIndex": 3})
        with pytest.raises(ValidationError):
            engine.update_properties(stack, "a", {"parent_id": "b"})

    def test_update_properties_unknown(self, engine: LayerOrderingEngine, stack: Design) -> None:
        with pytest.raises(ValidationError):
            engine.update_properties(stack, "a", {"fontSize": 12})

    def test_visibility_and_lock(self, engine: LayerOrderingEngine, stack: Design) -> None:
        engine.set_visibility(stack, "a", False)
        engine.set_locked(stack, "a", True)
        assert stack.layers["a"].visible is False
        assert stack.layers["a"].locked is True

    def test_mask(self, engine: LayerOrderingEngine, stack: Design) -> None:
        engine.set_mask(stack, "a", {"shape": "circle"})
        assert stack.layers["a"].mask == {"shape": "circle"}
        engine.set_mask(stack, "a", None)
        assert stack.layers["a"].mask is None

    def test_animations(self, engine: LayerOrderingEngine, stack: Design) -> None:
        """测试动画增删."""
        engine.add_animation(stack, "a", {"type": "fade"})
        engine.add_animation(stack, "a", {"type": "slide"})
        engine.remove_animation(stack, "a", 0)
        assert stack.layers["a"].animations == [{"type": "slide"}]

        engine.remove_animation(stack, "a", 5)
        assert stack.layers["a"].animations == [{"type": "slide"}]

        engine.set_animations(stack, "a", [])
        assert stack.layers["a"].animations == []


class TestIntegrity:
    """测试完整性检查."""

    def test_detects_gaps_and_dangling_parent(self, engine: LayerOrderingEngine) -> None:
        design = Design(
            layers=[
                ShapeLayer(id="a", z_index=0),
                ShapeLayer(id="b", z_index=2, parent_id="ghost"),
            ]
        )
        problems = engine.check_integrity(design)
        assert len(problems) == 2
