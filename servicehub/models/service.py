"""
服务模型 (Service Model)

定义被监控服务和健康检查状态记录的表结构。
服务配置由外部管理端维护，本核心只读；状态记录只追加，不修改也不删除。

Defines table structures for monitored services and health-check status records.
Service definitions are maintained by the admin collaborator and read-only here;
status records are append-only.
"""
from datetime import datetime

from sqlalchemy import String, Integer, DateTime, Boolean, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from servicehub.core.database import Base


class Service(Base):
    """
    服务表 (Service Table)

    存储被监控的 HTTP(S) 服务：基础 URL、可选健康检查路径、超时时间和启用状态。

    Table for monitored HTTP(S) services: base URL, optional health-check path,
    timeout and active flag.
    """
    __tablename__ = "services"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    name: Mapped[str] = mapped_column(String(255), nullable=False)  # 服务名称 (Service Name)
    url: Mapped[str] = mapped_column(String(500), nullable=False)  # 基础 URL (Base URL)
    health_endpoint: Mapped[str | None] = mapped_column(String(255), nullable=True)  # 健康检查路径 (Health-check Path)
    timeout_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 探测超时秒数，为空时使用默认值 (Probe Timeout in Seconds)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)  # 是否启用监控 (Is Monitoring Enabled)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)  # 服务分类 (Service Category)
    icon: Mapped[str | None] = mapped_column(String(20), nullable=True)  # 展示图标 (Display Icon)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )  # 创建时间 (Creation Time)

    @property
    def check_url(self) -> str:
        """完整探测地址：基础 URL 拼接健康检查路径。"""
        return f"{self.url}{self.health_endpoint}" if self.health_endpoint else self.url


class ServiceStatus(Base):
    """
    服务状态记录表 (Service Status Record Table)

    每次健康检查追加一条记录。某服务的"当前状态"即按 checked_at、id 倒序的第一条。

    One row appended per health check. The current status of a service is the
    first row ordered by checked_at, id descending.
    """
    __tablename__ = "service_status"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    service_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 服务 ID (Service ID)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # 状态值 (Status Value)
    response_time: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 响应时间毫秒数 (Response Time in ms)
    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)  # HTTP 状态码 (HTTP Status Code)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)  # 错误信息 (Error Message)
    checked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )  # 检查时间 (Check Time)
