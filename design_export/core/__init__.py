"""核心业务逻辑模块."""

from design_export.core.job_queue import (
    AsyncioJobQueue,
    JobQueue,
)
from design_export.core.layer_ordering import (
    DesignLocks,
    LayerOrderingEngine,
)

__all__ = [
    # 任务队列
    "AsyncioJobQueue",
    "JobQueue",
    # 图层层级
    "DesignLocks",
    "LayerOrderingEngine",
]
