"""
健康检查轮次任务模块。

每个调度间隔（或手动触发时）执行一轮完整检查：
连接 Redis 和数据库 → 加载启用的服务 → 并发探测 → 逐个写入状态记录、检测变化、
解析接收人并分发通知 → 发布本轮完成事件 → 释放连接。

轮次状态机只有 IDLE 和 RUNNING 两个状态。运行中再次触发会被直接拒绝（不排队）；
跨进程（定时任务与手动命令）通过 Redis 锁避免重叠。
"""
import asyncio
import enum
import logging
import signal
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import AsyncContextManager, Callable, Optional

import httpx
from redis.exceptions import LockError
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.core.config import Settings, settings as default_settings
from servicehub.core.database import open_session
from servicehub.core.exceptions import CycleInProgressError, CycleSetupError
from servicehub.core.redis import CYCLE_LOCK_KEY, close_redis, create_redis
from servicehub.models.enums import TransitionCategory
from servicehub.models.service import Service
from servicehub.schemas.health import HealthCheckResult
from servicehub.services.dispatcher import DispatchReport, Dispatcher
from servicehub.services.health_probe import HealthProbe, build_probe_client
from servicehub.services.mailer import EmailSender
from servicehub.services.notification_router import NotificationRouter
from servicehub.services.scheduler import ConcurrentScheduler, CycleSummary, ServiceOutcome
from servicehub.services.status_store import StatusStore
from servicehub.services.transition import Transition, TransitionDetector

logger = logging.getLogger(__name__)


class CycleState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class CycleTrigger(str, enum.Enum):
    INTERVAL = "interval"
    MANUAL = "manual"


@dataclass
class ServiceCheckResult:
    """单个服务在本轮的完整处理结果。"""
    result: HealthCheckResult
    transition: Transition
    recipients: int
    dispatch: DispatchReport


@dataclass
class CycleReport:
    """一轮检查的报告。"""
    trigger: CycleTrigger
    started_at: datetime
    summary: CycleSummary
    outcomes: list[ServiceOutcome[ServiceCheckResult]] = field(default_factory=list)

    @property
    def notified(self) -> int:
        """本轮实际进入通知流程的服务数。"""
        return sum(1 for o in self.outcomes if o.success and o.result.transition.notify and o.result.recipients)


class _CycleContext:
    """一轮内共享的组件，随轮次创建和销毁。"""

    def __init__(self, store: StatusStore, probe: HealthProbe, redis, mailer: EmailSender):
        self.store = store
        self.probe = probe
        self.detector = TransitionDetector(store)
        self.router = NotificationRouter(store)
        # 会话不支持并发使用：探测、推送和邮件并发进行，写库串行
        self.db_lock = asyncio.Lock()
        self.dispatcher = Dispatcher(store, redis, mailer, db_lock=self.db_lock)


class CycleOrchestrator:
    """检查轮次编排器。

    数据库会话、Redis 客户端和 HTTP 客户端都通过工厂在轮次开始时获取、结束时释放，
    便于测试注入替身。
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncContextManager[AsyncSession]],
        redis_factory: Callable[[], object],
        mailer: Optional[EmailSender] = None,
        http_client_factory: Callable[[], httpx.AsyncClient] = build_probe_client,
        config: Optional[Settings] = None,
    ):
        self.config = config or default_settings
        self._session_factory = session_factory
        self._redis_factory = redis_factory
        self._mailer = mailer or EmailSender(self.config)
        self._http_client_factory = http_client_factory
        self._state = CycleState.IDLE

    @property
    def state(self) -> CycleState:
        return self._state

    async def run_cycle(self, trigger: CycleTrigger = CycleTrigger.MANUAL) -> CycleReport:
        """执行一轮检查。

        Raises:
            CycleInProgressError: 本进程或其他进程已有轮次在运行。
            CycleSetupError: 无法连接 Redis / 数据库或加载服务列表，本轮未处理任何服务。
        """
        if self._state == CycleState.RUNNING:
            logger.warning(f"Health check cycle already running, {trigger.value} trigger rejected")
            raise CycleInProgressError("Health check cycle already running")
        self._state = CycleState.RUNNING
        try:
            return await self._run(trigger)
        finally:
            self._state = CycleState.IDLE

    async def _run(self, trigger: CycleTrigger) -> CycleReport:
        started_at = datetime.now(timezone.utc)
        logger.info(f"Starting health check cycle ({trigger.value})...")

        async with AsyncExitStack() as stack:
            try:
                redis = self._redis_factory()
                stack.push_async_callback(close_redis, redis)
                await redis.ping()

                lock = redis.lock(
                    CYCLE_LOCK_KEY, timeout=self.config.cycle_lock_ttl, blocking=False, thread_local=False
                )
                if not await lock.acquire():
                    logger.warning(f"Cycle lock held by another process, {trigger.value} trigger rejected")
                    raise CycleInProgressError("Health check cycle running in another process")
                # 后注册先执行：先释放锁，再关闭 Redis
                stack.push_async_callback(self._release_lock, lock)

                db = await stack.enter_async_context(self._session_factory())
                store = StatusStore(db)
                services = await store.list_active_services()
            except CycleInProgressError:
                raise
            except Exception as e:
                logger.error(f"Health check cycle setup failed: {e}")
                raise CycleSetupError("Health check cycle setup failed", detail=str(e)) from e

            logger.info(f"Found {len(services)} active services to monitor")

            http_client = await stack.enter_async_context(self._http_client_factory())
            ctx = _CycleContext(
                store=store,
                probe=HealthProbe(http_client, self.config.probe_default_timeout),
                redis=redis,
                mailer=self._mailer,
            )
            scheduler = ConcurrentScheduler(self.config.probe_max_concurrency)
            outcomes, summary = await scheduler.run(services, partial(self._check_service, ctx))

            await ctx.dispatcher.publish_cycle_completed(summary)
            if summary.failed and self.config.system_alerts_enabled:
                await self._alert_failures(ctx, outcomes)

        return CycleReport(trigger=trigger, started_at=started_at, summary=summary, outcomes=outcomes)

    async def _check_service(self, ctx: _CycleContext, service: Service) -> ServiceCheckResult:
        """探测单个服务并处理结果。异常由调度器捕获为该服务的失败结果。"""
        result = await ctx.probe.check(service)
        async with ctx.db_lock:
            record = await ctx.store.insert_status_record(
                service.id,
                result.status,
                result.response_time_ms,
                result.status_code,
                result.error_message,
                checked_at=result.checked_at,
            )
            transition = await ctx.detector.detect(service, record)
            recipients = []
            if transition.notify:
                recipients = await ctx.router.resolve_recipients(transition.category)
        # 分发器只在写站内通知时重新获取 db_lock
        report = await ctx.dispatcher.dispatch(service, record, transition, recipients)
        return ServiceCheckResult(result=result, transition=transition, recipients=len(recipients), dispatch=report)

    async def _alert_failures(self, ctx: _CycleContext, outcomes: list[ServiceOutcome]) -> None:
        """本轮存在处理异常时发送系统告警。告警本身失败只记录日志。"""
        failed = [o for o in outcomes if not o.success]
        message = "\n".join(f"- {o.service_name}: {o.error}" for o in failed)
        try:
            async with ctx.db_lock:
                recipients = await ctx.router.resolve_recipients(TransitionCategory.SYSTEM_ALERT)
            await ctx.dispatcher.dispatch_system_alert(
                f"Health check errors for {len(failed)} service(s)", message, "error", recipients
            )
        except Exception:
            logger.exception("Failed to send system alert for health check errors")

    async def _release_lock(self, lock) -> None:
        try:
            await lock.release()
        except LockError as e:
            # 锁已过期或被其他进程持有，不能删除
            logger.warning(f"Cycle lock no longer owned at release: {e}")
        except Exception as e:
            logger.warning(f"Failed to release cycle lock: {e}")


def build_orchestrator(config: Optional[Settings] = None) -> CycleOrchestrator:
    """按配置创建使用真实 PostgreSQL / Redis / SMTP 的编排器。"""
    config = config or default_settings
    return CycleOrchestrator(
        session_factory=partial(open_session, config.database_url),
        redis_factory=partial(create_redis, config.redis_url),
        mailer=EmailSender(config),
        http_client_factory=partial(build_probe_client, config.probe_user_agent),
        config=config,
    )


async def health_cycle_loop(orchestrator: CycleOrchestrator, interval: int) -> None:
    """定时检查后台循环。单轮失败只记录日志，下一个间隔继续。"""
    logger.info(f"Health check scheduler started (interval {interval}s)")
    while True:
        try:
            await orchestrator.run_cycle(CycleTrigger.INTERVAL)
        except CycleInProgressError:
            logger.info("Previous health check cycle still running, skipping this interval")
        except CycleSetupError as e:
            logger.error(f"Health check cycle aborted: {e.message} ({e.detail})")
        except Exception:
            logger.exception("Error in health check cycle")
        await asyncio.sleep(interval)


async def run_until_signalled(orchestrator: CycleOrchestrator, interval: int) -> None:
    """前台运行定时循环，收到 SIGINT / SIGTERM 时取消循环任务。

    取消会沿正在运行的轮次向上传播，轮次锁、Redis 连接和数据库会话都会正常释放。
    """
    loop = asyncio.get_running_loop()
    task = asyncio.create_task(health_cycle_loop(orchestrator, interval))

    def _shutdown(sig: signal.Signals) -> None:
        logger.info(f"Received {sig.name}, shutting down...")
        task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _shutdown, sig)
    try:
        await task
    except asyncio.CancelledError:
        logger.info("Scheduler stopped")
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
