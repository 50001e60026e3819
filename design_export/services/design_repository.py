"""设计稿仓储.

内存中的设计稿集合。渲染读取的是深拷贝快照，与后续的图层编辑互不影响。
"""

from __future__ import annotations

from typing import Optional

from design_export.core.layer_ordering import DesignLocks
from design_export.models.design import Design
from design_export.utils.exceptions import DesignNotFoundError
from design_export.utils.logger import setup_logger

logger = setup_logger(__name__)


class DesignRepository:
    """设计稿仓储.

    与图层层级引擎共享设计稿锁，快照不会读到编辑中途的状态。
    """

    def __init__(self, locks: Optional[DesignLocks] = None) -> None:
        self.locks = locks or DesignLocks()
        self._designs: dict[str, Design] = {}

    def add(self, design: Design) -> Design:
        """保存设计稿.

        外部载入的设计稿层级可能重复或不连续，保存时按绘制顺序重新编号。
        """
        with self.locks.hold(design.id):
            design.normalize_z_indices()
            self._designs[design.id] = design
        logger.debug(f"保存设计稿: {design.id} ({design.layer_count} 个图层)")
        return design

    def get(self, design_id: str) -> Design:
        """获取可编辑的设计稿.

        Raises:
            DesignNotFoundError: 设计稿不存在
        """
        try:
            return self._designs[design_id]
        except KeyError:
            raise DesignNotFoundError(design_id) from None

    def exists(self, design_id: str) -> bool:
        return design_id in self._designs

    def snapshot(self, design_id: str) -> Design:
        """获取设计稿的只读快照（深拷贝）.

        Raises:
            DesignNotFoundError: 设计稿不存在
        """
        design = self.get(design_id)
        with self.locks.hold(design_id):
            return design.model_copy(deep=True)

    def delete(self, design_id: str) -> bool:
        """删除设计稿（连同其全部图层）."""
        with self.locks.hold(design_id):
            removed = self._designs.pop(design_id, None)
        self.locks.discard(design_id)
        return removed is not None

    def list_ids(self) -> list[str]:
        return list(self._designs)
