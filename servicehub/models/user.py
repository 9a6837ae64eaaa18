"""
用户模型 (User Model)

定义用户表和通知偏好表。用户的增删改由外部管理端负责，本核心只读取
角色和偏好以决定通知接收人。

Defines the user and notification-preference tables. User management belongs to
the admin collaborator; this core only reads roles and preferences to resolve
notification recipients.
"""
from datetime import datetime

from sqlalchemy import String, Boolean, DateTime, Integer, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column

from servicehub.core.database import Base
from servicehub.models.enums import UserRole


class User(Base):
    """
    用户表 (User Table)

    Table for user accounts: email, display name, role and active flag.
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)  # 用户邮箱 (User Email)
    name: Mapped[str] = mapped_column(String(100), nullable=False)  # 用户姓名 (User Name)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.GUEST.value)  # 用户角色 (User Role)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)  # 账户是否激活 (Account Active Status)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )  # 账户创建时间 (Account Creation Time)


class NotificationPreference(Base):
    """
    通知偏好表 (Notification Preference Table)

    每个用户最多一条。不存在时按角色默认：管理员接收全部，其他角色不接收。

    At most one row per user. When absent, administrators receive everything and
    other roles receive nothing.
    """
    __tablename__ = "notification_preferences"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )  # 用户 ID (User ID)
    email_enabled: Mapped[bool] = mapped_column(Boolean, default=True)  # 邮件渠道开关 (Email Channel Enabled)
    status_changes: Mapped[bool] = mapped_column(Boolean, default=False)  # 一般状态变化 (Generic Status Change)
    online_to_offline: Mapped[bool] = mapped_column(Boolean, default=True)  # 在线→离线 (Online to Offline)
    offline_to_online: Mapped[bool] = mapped_column(Boolean, default=False)  # 离线→在线 (Offline to Online)
    error_alerts: Mapped[bool] = mapped_column(Boolean, default=True)  # 错误告警 (Error Alerts)
    warning_alerts: Mapped[bool] = mapped_column(Boolean, default=False)  # 警告告警 (Warning Alerts)
    system_alerts: Mapped[bool] = mapped_column(Boolean, default=False)  # 系统告警 (System Alerts)


def default_preferences_for_role(role: str) -> dict:
    """新用户的默认通知偏好（供管理端创建用户时使用）。"""
    elevated = role in (UserRole.ADMIN.value, UserRole.POWER_USER.value)
    return {
        "email_enabled": True,
        "status_changes": elevated,
        "online_to_offline": True,
        "offline_to_online": elevated,
        "error_alerts": True,
        "warning_alerts": role == UserRole.ADMIN.value,
        "system_alerts": elevated,
    }
