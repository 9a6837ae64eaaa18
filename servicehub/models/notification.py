"""
通知模型 (Notification Model)

站内通知表。本核心在状态变化需要通知时为每个接收人插入一条；
已读标记由外部界面修改，过期清理由外部任务负责。

In-app notification table. This core inserts one row per recipient for a
notify-worthy transition; the read flag and retention cleanup belong to
external collaborators.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, DateTime, Boolean, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from servicehub.core.database import Base


class Notification(Base):
    """
    通知表 (Notification Table)
    """
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    user_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 接收人 ID (Recipient ID)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="info")  # 通知类型：info/success/warning/error
    title: Mapped[str] = mapped_column(String(255), nullable=False)  # 标题 (Title)
    message: Mapped[str] = mapped_column(Text, nullable=False)  # 正文 (Message)
    service_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 关联服务 ID (Linked Service ID)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="normal")  # 优先级：low/normal/high/urgent
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)  # 是否已读 (Read Flag)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )  # 创建时间 (Creation Time)
