"""
健康检查相关数据结构

定义单次探测结果，以及发布到 Redis 的实时事件载荷（字段使用 camelCase，供仪表盘直接消费）。
"""
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from servicehub.models.enums import StatusValue


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthCheckResult(BaseModel):
    """单次探测结果，仅在本轮内使用，不持久化。"""
    status: StatusValue
    response_time_ms: int
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    checked_at: datetime = Field(default_factory=_utcnow)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class StatusPayload(_CamelModel):
    """状态记录的推送表示。"""
    id: Optional[int] = None
    service_id: int
    status: str
    response_time: Optional[int] = None
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    checked_at: datetime


class StatusUpdateEvent(_CamelModel):
    """service_status_update 频道事件。"""
    service_id: int
    status: StatusPayload
    timestamp: datetime = Field(default_factory=_utcnow)


class HealthCheckEvent(_CamelModel):
    """service_health_check 频道事件：一轮检查已完成。"""
    total: int
    successful: int
    failed: int
    duration_ms: int
    timestamp: datetime = Field(default_factory=_utcnow)
