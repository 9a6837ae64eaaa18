"""
通知接收人解析模块。

根据状态变化类别和用户通知偏好，确定应通知的用户：
- 候选人：已激活的管理员和高级用户（访客不接收主动通知）；
- 无偏好记录：管理员接收全部类别，高级用户不接收；
- 有偏好记录：必须开启邮件渠道，且该类别开关为真。
"""
import logging

from servicehub.models.enums import TransitionCategory, UserRole
from servicehub.models.user import NotificationPreference, User
from servicehub.services.status_store import StatusStore

logger = logging.getLogger(__name__)

CANDIDATE_ROLES = (UserRole.ADMIN, UserRole.POWER_USER)

# 类别 → 偏好字段
PREFERENCE_FIELDS = {
    TransitionCategory.STATUS_CHANGE: "status_changes",
    TransitionCategory.ONLINE_TO_OFFLINE: "online_to_offline",
    TransitionCategory.OFFLINE_TO_ONLINE: "offline_to_online",
    TransitionCategory.ERROR_ALERT: "error_alerts",
    TransitionCategory.WARNING_ALERT: "warning_alerts",
    TransitionCategory.SYSTEM_ALERT: "system_alerts",
}


def wants_notification(user: User, pref: NotificationPreference | None, category: TransitionCategory) -> bool:
    """判断单个用户是否接收该类别的通知。"""
    if pref is None:
        return user.role == UserRole.ADMIN.value
    if not pref.email_enabled:
        return False
    field = PREFERENCE_FIELDS.get(TransitionCategory(category))
    return bool(field and getattr(pref, field))


class NotificationRouter:
    """解析某类别通知的接收人列表。"""

    def __init__(self, store: StatusStore):
        self.store = store

    async def resolve_recipients(self, category: TransitionCategory) -> list[User]:
        candidates = await self.store.list_users_with_preferences(CANDIDATE_ROLES)
        recipients = [user for user, pref in candidates if wants_notification(user, pref, category)]
        if not recipients:
            logger.info(f"No notification recipients for category {TransitionCategory(category).value}")
        return recipients
