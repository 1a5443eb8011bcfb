"""
进程内周期任务

在 FastAPI lifespan 中启动，用于：
- 定期清理过期的 OAuth 握手状态
- 定期刷新即将过期的凭证（CREDENTIAL_REFRESH_MODE=inprocess）

stop() 会等待正在执行的一轮结束后再返回，仅在超时后才取消。
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from app.core.logging import logger


class PeriodicJob:
    """固定间隔（fixed delay）执行的后台协程"""

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        *,
        interval: float,
        initial_delay: float = 0.0,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self._func = func
        self.interval = float(interval)
        self.initial_delay = max(0.0, float(initial_delay))
        self._task: asyncio.Task | None = None
        self._stopped = asyncio.Event()
        self._stopped.set()
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopped.clear()
        self._task = asyncio.create_task(self._run(), name=f"periodic-{self.name}")
        logger.info(
            f"periodic_job_started name={self.name} interval={self.interval}s "
            f"initial_delay={self.initial_delay}s"
        )

    async def stop(self, timeout: float = 30.0) -> None:
        self._stopped.set()
        task = self._task
        if task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"periodic_job_stop_timeout name={self.name}, cancelling")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None

    async def run_once(self) -> Any:
        """执行一轮任务；异常只记录日志，不中断调度循环"""
        try:
            return await self._func()
        except Exception as exc:
            logger.exception(f"periodic_job_failed name={self.name}: {exc}")
            return None
        finally:
            self.runs += 1

    async def _wait(self, seconds: float) -> bool:
        """等待指定秒数，期间收到停止信号则返回 True"""
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _run(self) -> None:
        try:
            if self.initial_delay and await self._wait(self.initial_delay):
                return
            while not self._stopped.is_set():
                await self.run_once()
                if await self._wait(self.interval):
                    return
        finally:
            logger.info(f"periodic_job_stopped name={self.name} runs={self.runs}")
