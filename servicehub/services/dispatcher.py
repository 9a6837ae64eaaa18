"""
通知分发服务模块。

将一次状态变化通过三个相互独立的渠道投递：
1. 持久化日志：为每个接收人写入一条站内通知（状态记录已由存储写入）；
2. 实时推送：在 service_status_update 频道发布状态事件，供仪表盘免轮询刷新；
3. 邮件：渲染事务邮件，一次批量发送给所有接收人。

每个渠道的失败单独捕获并记录，不会影响其他渠道，也不会回滚已完成的渠道。
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence

from servicehub.core.redis import SERVICE_HEALTH_CHECK, SERVICE_STATUS_UPDATE
from servicehub.models.enums import NotificationPriority, NotificationType, StatusValue, TransitionCategory
from servicehub.models.service import Service, ServiceStatus
from servicehub.models.user import User
from servicehub.schemas.health import HealthCheckEvent, StatusPayload, StatusUpdateEvent
from servicehub.services.email_renderer import (
    build_status_vars,
    render_status_html,
    render_status_subject,
    render_status_text,
    render_system_alert,
    status_marker,
)
from servicehub.services.mailer import EmailSender
from servicehub.services.scheduler import CycleSummary
from servicehub.services.status_store import StatusStore
from servicehub.services.transition import Transition

logger = logging.getLogger(__name__)

DURABLE_LOG = "durable_log"
BROADCAST = "broadcast"
EMAIL = "email"

# 新状态 → (站内通知类型, 优先级)
_NOTIFICATION_STYLE = {
    StatusValue.ONLINE: (NotificationType.SUCCESS, NotificationPriority.NORMAL),
    StatusValue.WARNING: (NotificationType.WARNING, NotificationPriority.NORMAL),
    StatusValue.ERROR: (NotificationType.ERROR, NotificationPriority.HIGH),
    StatusValue.OFFLINE: (NotificationType.ERROR, NotificationPriority.HIGH),
    StatusValue.TIMEOUT: (NotificationType.ERROR, NotificationPriority.HIGH),
}

_SEVERITY_STYLE = {
    "info": (NotificationType.INFO, NotificationPriority.LOW),
    "warning": (NotificationType.WARNING, NotificationPriority.NORMAL),
    "error": (NotificationType.ERROR, NotificationPriority.URGENT),
}


@dataclass
class ChannelResult:
    """单个渠道的投递结果。skipped=True 表示本次无需投递（例如无接收人）。"""
    channel: str
    success: bool
    error: Optional[str] = None
    skipped: bool = False


@dataclass
class DispatchReport:
    """一次分发的各渠道结果。"""
    results: list[ChannelResult] = field(default_factory=list)

    def get(self, channel: str) -> Optional[ChannelResult]:
        return next((r for r in self.results if r.channel == channel), None)

    @property
    def ok(self) -> bool:
        return all(r.success for r in self.results)


def notification_style(transition: Transition) -> tuple[str, str]:
    """按新状态决定站内通知的 (type, priority)。"""
    ntype, priority = _NOTIFICATION_STYLE.get(
        transition.current, (NotificationType.INFO, NotificationPriority.LOW)
    )
    if transition.category == TransitionCategory.ONLINE_TO_OFFLINE:
        priority = NotificationPriority.URGENT
    return ntype.value, priority.value


def build_notification_text(service: Service, transition: Transition, record: ServiceStatus) -> tuple[str, str]:
    """站内通知的 (标题, 正文)。"""
    title = f"{service.name} is {status_marker(transition.current)}"
    if transition.is_first_check:
        message = f"{service.name} first check reported {transition.current.value}"
    else:
        message = f"{service.name} changed from {transition.previous.value} to {transition.current.value}"
    if record.error_message:
        message = f"{message}: {record.error_message}"
    return title, message


class Dispatcher:
    """三渠道通知分发器。存储、Redis 客户端和邮件发送器均由调用方注入。

    db_lock 与调用方共享：只有写库步骤在锁内执行，实时推送和邮件不占用会话。
    """

    def __init__(self, store: StatusStore, redis, mailer: EmailSender, db_lock: Optional[asyncio.Lock] = None):
        self.store = store
        self.redis = redis
        self.mailer = mailer
        self.db_lock = db_lock or asyncio.Lock()

    async def dispatch(
        self,
        service: Service,
        record: ServiceStatus,
        transition: Transition,
        recipients: Sequence[User],
    ) -> DispatchReport:
        """投递一次状态记录。

        实时推送对每条状态记录都执行；站内通知和邮件仅在变化值得通知且有接收人时执行。
        """
        report = DispatchReport()
        deliver = transition.notify and bool(recipients)

        if deliver:
            report.results.append(await self._record_notifications(service, record, transition, recipients))
        else:
            report.results.append(ChannelResult(DURABLE_LOG, True, skipped=True))

        report.results.append(await self.publish_status(record))

        if deliver:
            report.results.append(await self._send_status_email(service, record, transition, recipients))
        else:
            report.results.append(ChannelResult(EMAIL, True, skipped=True))

        if deliver:
            logger.info(
                f"Dispatched {service.name} ({transition.describe()}) to {len(recipients)} recipients: "
                + ", ".join(f"{r.channel}={'ok' if r.success else 'failed'}" for r in report.results)
            )
        return report

    async def _record_notifications(
        self, service: Service, record: ServiceStatus, transition: Transition, recipients: Sequence[User]
    ) -> ChannelResult:
        title, message = build_notification_text(service, transition, record)
        ntype, priority = notification_style(transition)
        try:
            async with self.db_lock:
                await self.store.insert_notifications(
                    [u.id for u in recipients], ntype, title, message, service_id=service.id, priority=priority
                )
            return ChannelResult(DURABLE_LOG, True)
        except Exception as e:
            logger.exception(f"Failed to record notifications for {service.name}")
            return ChannelResult(DURABLE_LOG, False, error=str(e)[:500])

    async def publish_status(self, record: ServiceStatus) -> ChannelResult:
        """在 service_status_update 频道发布状态事件。"""
        event = StatusUpdateEvent(
            service_id=record.service_id,
            status=StatusPayload(
                id=record.id,
                service_id=record.service_id,
                status=record.status,
                response_time=record.response_time,
                status_code=record.status_code,
                error_message=record.error_message,
                checked_at=record.checked_at,
            ),
            timestamp=datetime.now(timezone.utc),
        )
        try:
            await self.redis.publish(SERVICE_STATUS_UPDATE, event.model_dump_json(by_alias=True))
            return ChannelResult(BROADCAST, True)
        except Exception as e:
            logger.exception(f"Failed to publish status update for service {record.service_id}")
            return ChannelResult(BROADCAST, False, error=str(e)[:500])

    async def _send_status_email(
        self, service: Service, record: ServiceStatus, transition: Transition, recipients: Sequence[User]
    ) -> ChannelResult:
        variables = build_status_vars(service, transition, record)
        subject = render_status_subject(service, transition)
        try:
            await self.mailer.send(
                [u.email for u in recipients],
                subject,
                render_status_text(variables),
                render_status_html(variables, transition.current),
            )
            return ChannelResult(EMAIL, True)
        except Exception as e:
            logger.warning(f"Email notification failed for {service.name}: {e}")
            return ChannelResult(EMAIL, False, error=str(e)[:500])

    async def publish_cycle_completed(self, summary: CycleSummary) -> ChannelResult:
        """在 service_health_check 频道发布本轮已完成的事件（仪表盘"最后检查时间"）。"""
        event = HealthCheckEvent(
            total=summary.total,
            successful=summary.successful,
            failed=summary.failed,
            duration_ms=summary.duration_ms,
        )
        try:
            await self.redis.publish(SERVICE_HEALTH_CHECK, event.model_dump_json(by_alias=True))
            return ChannelResult(BROADCAST, True)
        except Exception as e:
            logger.exception("Failed to publish health check event")
            return ChannelResult(BROADCAST, False, error=str(e)[:500])

    async def dispatch_system_alert(
        self, title: str, message: str, severity: str, recipients: Sequence[User]
    ) -> DispatchReport:
        """发送系统告警：站内通知 + 邮件，各自独立。"""
        report = DispatchReport()
        if not recipients:
            logger.info(f"No recipients for system alert: {title}")
            report.results += [ChannelResult(DURABLE_LOG, True, skipped=True), ChannelResult(EMAIL, True, skipped=True)]
            return report

        ntype, priority = _SEVERITY_STYLE.get(severity, _SEVERITY_STYLE["info"])
        try:
            async with self.db_lock:
                await self.store.insert_notifications(
                    [u.id for u in recipients], ntype.value, title, message, priority=priority.value
                )
            report.results.append(ChannelResult(DURABLE_LOG, True))
        except Exception as e:
            logger.exception(f"Failed to record system alert: {title}")
            report.results.append(ChannelResult(DURABLE_LOG, False, error=str(e)[:500]))

        subject, text, html = render_system_alert(title, message, severity, datetime.now(timezone.utc))
        try:
            await self.mailer.send([u.email for u in recipients], subject, text, html)
            report.results.append(ChannelResult(EMAIL, True))
        except Exception as e:
            logger.warning(f"System alert email failed: {e}")
            report.results.append(ChannelResult(EMAIL, False, error=str(e)[:500]))
        return report

