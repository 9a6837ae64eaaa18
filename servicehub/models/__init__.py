"""
数据模型包 (Data Models Package)

集中导出所有 SQLAlchemy ORM 模型。
Centrally exports all SQLAlchemy ORM models.
"""
from servicehub.models.service import Service, ServiceStatus
from servicehub.models.user import User, NotificationPreference
from servicehub.models.notification import Notification

# 导出所有模型类供外部模块使用 (Export all model classes for external modules)
__all__ = [
    "Service", "ServiceStatus", "User", "NotificationPreference", "Notification",
]
