"""任务队列模块.

导出任务控制器只依赖 ``JobQueue`` 接口，队列可以是进程内的，
也可以替换为分布式实现。
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from design_export.utils.logger import setup_logger

logger = setup_logger(__name__)


class JobQueue(ABC):
    """任务队列接口（队列中只保存任务ID）."""

    @abstractmethod
    async def put(self, job_id: str) -> None:
        """入队."""

    @abstractmethod
    async def get(self) -> str:
        """出队，队列为空时等待."""

    @abstractmethod
    def task_done(self) -> None:
        """标记一个出队的任务已处理完毕."""

    @abstractmethod
    async def join(self) -> None:
        """等待所有已入队的任务处理完毕."""

    @abstractmethod
    def qsize(self) -> int:
        """当前排队数量."""


class AsyncioJobQueue(JobQueue):
    """基于 asyncio.Queue 的进程内队列.

    Example:
        >>> queue = AsyncioJobQueue()
        >>> await queue.put("job-1")
        >>> await queue.get()
        'job-1'
    """

    def __init__(self, maxsize: int = 0) -> None:
        """初始化队列.

        Args:
            maxsize: 最大长度，0 表示不限
        """
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)

    async def put(self, job_id: str) -> None:
        await self._queue.put(job_id)
        logger.debug(f"任务入队: {job_id} (排队 {self._queue.qsize()})")

    async def get(self) -> str:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()

    def qsize(self) -> int:
        return self._queue.qsize()

    @property
    def is_empty(self) -> bool:
        """队列是否为空."""
        return self._queue.empty()
