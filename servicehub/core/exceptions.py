"""
异常定义模块 (Exception Definitions Module)

定义健康检查核心的异常类型。探测层的网络错误不会抛出异常，而是归类为状态值；
这里只包含会跨越组件边界传播的错误。

Defines the exception types of the health-check core. Probe-level network errors
never raise; they are classified into status values. Only errors that cross
component boundaries live here.
"""
from typing import Optional


class ServiceHubError(Exception):
    """异常基类 (Base Exception)"""
    error: str = "servicehub_error"

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class CycleSetupError(ServiceHubError):
    """轮次启动失败：无法获取数据库或 Redis 连接 (Fatal Cycle Setup Failure)"""
    error = "cycle_setup_failed"


class CycleInProgressError(ServiceHubError):
    """已有检查轮次在运行，本次触发被拒绝 (Cycle Already Running)"""
    error = "cycle_in_progress"
