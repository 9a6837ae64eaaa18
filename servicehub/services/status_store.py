"""
状态存储服务模块。

基于异步 SQLAlchemy 会话实现健康检查核心所需的持久化契约：
追加状态记录、查询最新/前一条记录、列出启用的服务、写入站内通知、
按角色列出用户及其通知偏好。

每次写操作独立提交；失败时回滚后重新抛出，保证同一轮次的会话可以继续处理其他服务。
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.models.enums import StatusValue
from servicehub.models.notification import Notification
from servicehub.models.service import Service, ServiceStatus
from servicehub.models.user import NotificationPreference, User

logger = logging.getLogger(__name__)


class StatusStore:
    """持久化契约的数据库实现，绑定到一个轮次范围内的会话。"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def list_active_services(self) -> list[Service]:
        """列出所有启用监控的服务（按名称排序）。"""
        result = await self.db.execute(
            select(Service).where(Service.is_active == True).order_by(Service.name)  # noqa: E712
        )
        return list(result.scalars().all())

    async def insert_status_record(
        self,
        service_id: int,
        status: StatusValue | str,
        response_time_ms: Optional[int],
        status_code: Optional[int] = None,
        error_message: Optional[str] = None,
        checked_at: Optional[datetime] = None,
    ) -> ServiceStatus:
        """追加一条状态记录并返回。"""
        record = ServiceStatus(
            service_id=service_id,
            status=StatusValue(status).value,
            response_time=response_time_ms,
            status_code=status_code,
            error_message=error_message,
            checked_at=checked_at or datetime.now(timezone.utc),
        )
        self.db.add(record)
        await self._commit()
        return record

    async def latest_status_record(self, service_id: int) -> Optional[ServiceStatus]:
        """返回该服务最新的一条状态记录，没有记录时返回 None。"""
        result = await self.db.execute(
            select(ServiceStatus)
            .where(ServiceStatus.service_id == service_id)
            .order_by(ServiceStatus.checked_at.desc(), ServiceStatus.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def previous_status_record(self, record: ServiceStatus) -> Optional[ServiceStatus]:
        """返回给定记录之前的最新一条记录（同一服务），用于判断状态变化。"""
        result = await self.db.execute(
            select(ServiceStatus)
            .where(
                and_(
                    ServiceStatus.service_id == record.service_id,
                    ServiceStatus.id != record.id,
                    or_(
                        ServiceStatus.checked_at < record.checked_at,
                        and_(
                            ServiceStatus.checked_at == record.checked_at,
                            ServiceStatus.id < record.id,
                        ),
                    ),
                )
            )
            .order_by(ServiceStatus.checked_at.desc(), ServiceStatus.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def insert_notification(
        self,
        user_id: int,
        type: str,
        title: str,
        message: str,
        service_id: Optional[int] = None,
        priority: str = "normal",
    ) -> Notification:
        """写入一条站内通知。"""
        rows = await self.insert_notifications([user_id], type, title, message, service_id, priority)
        return rows[0]

    async def insert_notifications(
        self,
        user_ids: Iterable[int],
        type: str,
        title: str,
        message: str,
        service_id: Optional[int] = None,
        priority: str = "normal",
    ) -> list[Notification]:
        """为多个接收人批量写入同一条通知，一次提交。"""
        rows = [
            Notification(
                user_id=uid,
                type=type,
                title=title,
                message=message,
                service_id=service_id,
                priority=priority,
                is_read=False,
            )
            for uid in user_ids
        ]
        self.db.add_all(rows)
        await self._commit()
        return rows

    async def list_users_with_preferences(
        self, roles: Sequence[str]
    ) -> list[tuple[User, Optional[NotificationPreference]]]:
        """列出指定角色的已激活用户及其通知偏好（可能为 None）。"""
        role_values = [getattr(r, "value", r) for r in roles]
        result = await self.db.execute(
            select(User, NotificationPreference)
            .outerjoin(NotificationPreference, NotificationPreference.user_id == User.id)
            .where(and_(User.is_active == True, User.role.in_(role_values)))  # noqa: E712
            .order_by(User.id)
        )
        return [(user, pref) for user, pref in result.all()]
