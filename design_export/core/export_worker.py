"""导出 worker 池.

从任务队列取出任务ID，交给控制器处理。worker 之间相互独立，
单个任务失败不会影响其他任务，也不会终止 worker。
"""

from __future__ import annotations

import asyncio
from typing import Optional

from design_export.core.export_controller import ExportJobController
from design_export.core.job_queue import JobQueue
from design_export.utils.constants import DEFAULT_WORKER_COUNT
from design_export.utils.logger import setup_logger

logger = setup_logger(__name__)


class ExportWorkerPool:
    """导出 worker 池.

    Example:
        >>> pool = ExportWorkerPool(controller, queue, concurrency=2)
        >>> pool.start()
        >>> await pool.join()
        >>> await pool.stop()
    """

    def __init__(
        self,
        controller: ExportJobController,
        queue: JobQueue,
        concurrency: int = DEFAULT_WORKER_COUNT,
    ) -> None:
        """初始化 worker 池.

        Args:
            controller: 任务控制器
            queue: 任务队列
            concurrency: worker 数量
        """
        if concurrency < 1:
            raise ValueError(f"worker 数量必须大于 0: {concurrency}")
        self.controller = controller
        self.queue = queue
        self.concurrency = concurrency
        self._tasks: list[asyncio.Task] = []
        self.processed_count = 0
        self.error_count = 0

    @property
    def is_running(self) -> bool:
        """是否有 worker 在运行."""
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        """启动 worker（需要在事件循环中调用）."""
        if self.is_running:
            logger.warning("worker 池已在运行")
            return
        self._tasks = [
            asyncio.create_task(self._worker(index), name=f"export-worker-{index}")
            for index in range(self.concurrency)
        ]
        logger.info(f"worker 池已启动: {self.concurrency} 个 worker")

    async def join(self) -> None:
        """等待队列中的任务全部处理完毕."""
        await self.queue.join()

    async def stop(self) -> None:
        """停止所有 worker."""
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info(f"worker 池已停止 (处理 {self.processed_count} 个, 异常 {self.error_count} 个)")

    async def _worker(self, index: int) -> None:
        while True:
            job_id = await self.queue.get()
            try:
                job = await self.controller.process(job_id)
                if job is not None:
                    self.processed_count += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.error_count += 1
                logger.exception(f"worker {index} 处理任务 {job_id} 时出错: {e}")
            finally:
                self.queue.task_done()

    async def __aenter__(self) -> "ExportWorkerPool":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()


async def run_until_idle(pool: ExportWorkerPool, timeout: Optional[float] = None) -> None:
    """启动 worker 池，处理完当前队列后停止."""
    pool.start()
    try:
        await asyncio.wait_for(pool.join(), timeout=timeout)
    finally:
        await pool.stop()
