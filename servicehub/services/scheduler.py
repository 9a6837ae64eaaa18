"""
并发调度模块。

一轮检查中为每个服务并发执行一个任务，等待全部任务结束后返回各服务的结果。
单个任务抛出的异常只记录在它自己的结果里，不会中断其他任务，也不会在本轮内重试。
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, Sequence, TypeVar

from servicehub.models.service import Service

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ServiceOutcome(Generic[T]):
    """单个服务在本轮的处理结果。

    success=False 表示外围处理代码抛出了异常（软件错误），
    与探测本身归类出的 OFFLINE 等网络状态不同。
    """
    service_id: int
    service_name: str
    success: bool
    result: Optional[T] = None
    error: Optional[str] = None


@dataclass
class CycleSummary:
    """本轮汇总计数。"""
    total: int
    successful: int
    failed: int
    duration_ms: int


class ConcurrentScheduler:
    """并发执行每个服务的任务，"全部结束再返回"，从不短路。"""

    def __init__(self, max_concurrency: int = 0):
        # 0 表示不限制并发
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency > 0 else None

    async def _run_one(
        self, service: Service, work: Callable[[Service], Awaitable[T]], settled: list
    ) -> None:
        try:
            if self._semaphore is not None:
                async with self._semaphore:
                    result = await work(service)
            else:
                result = await work(service)
            outcome = ServiceOutcome(service.id, service.name, True, result=result)
        except Exception as e:
            logger.error(f"Error checking {service.name}: {e}")
            outcome = ServiceOutcome(service.id, service.name, False, error=str(e) or type(e).__name__)
        # 按结束顺序追加
        settled.append(outcome)

    async def run(
        self, services: Sequence[Service], work: Callable[[Service], Awaitable[T]]
    ) -> tuple[list[ServiceOutcome[T]], CycleSummary]:
        """为每个服务执行 work(service)，返回 (按结束顺序排列的结果列表, 汇总)。"""
        start = time.monotonic()
        settled: list[ServiceOutcome[T]] = []
        await asyncio.gather(*(self._run_one(svc, work, settled) for svc in services))

        successful = sum(1 for o in settled if o.success)
        summary = CycleSummary(
            total=len(settled),
            successful=successful,
            failed=len(settled) - successful,
            duration_ms=int(round((time.monotonic() - start) * 1000)),
        )
        logger.info(
            "Health check completed: %d successful, %d failed (%d ms)",
            summary.successful, summary.failed, summary.duration_ms,
        )
        return settled, summary
