import asyncio
from typing import Awaitable, Callable, Set

from filevault.core.logger import get_logger


class BackgroundTaskRunner:
    """
    轻量的后台任务执行器。

    提交的任务与请求生命周期解耦：调用方不会等待任务完成，
    任务内抛出的异常只会记录日志，不会传播回提交方。
    正在运行的任务保存在集合中，防止被垃圾回收，并支持在关闭时统一取消。
    """

    def __init__(self, name: str = "background"):
        self.name = name
        self.logger = get_logger(self.__class__.__name__)
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(
            self,
            job: Callable[[], Awaitable[None]],
            *,
            delay: float = 0.0,
            label: str = "task",
    ) -> asyncio.Task:
        """
        提交一个后台任务。必须在运行中的事件循环里调用。

        Args:
            job: 无参数的协程函数，在 delay 秒后执行。
            delay: 启动前的等待时间（秒）。
            label: 仅用于日志的任务名称。
        """
        if self._closed:
            raise RuntimeError(f"BackgroundTaskRunner '{self.name}' is already shut down")

        task = asyncio.create_task(self._run(job, delay, label), name=f"{self.name}:{label}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, job: Callable[[], Awaitable[None]], delay: float, label: str) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.opt(exception=e).warning(f"[{self.name}] background task '{label}' failed: {e}")

    async def drain(self) -> None:
        """等待当前所有后台任务执行结束（包括执行过程中新提交的任务）。"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """取消所有未完成的任务，之后不再接受新任务。"""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.logger.info(f"🛑 BackgroundTaskRunner '{self.name}' stopped, {len(tasks)} task(s) cancelled")
