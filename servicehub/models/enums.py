"""
枚举定义 (Enumerations)

服务状态、用户角色、状态变化类别和通知类型/优先级。
数据库中以字符串存储，枚举继承 str 以便直接比较和序列化。

Service status values, user roles, transition categories and notification
type/priority. Stored as strings; the enums subclass ``str`` so they compare
and serialize as plain strings.
"""
import enum


class StatusValue(str, enum.Enum):
    """服务状态 (Service Status)。UNKNOWN 表示没有历史记录，不会写入数据库。"""
    ONLINE = "ONLINE"
    WARNING = "WARNING"
    ERROR = "ERROR"
    OFFLINE = "OFFLINE"
    TIMEOUT = "TIMEOUT"
    MAINTENANCE = "MAINTENANCE"
    UNKNOWN = "UNKNOWN"


class UserRole(str, enum.Enum):
    """用户角色 (User Role)"""
    ADMIN = "ADMIN"
    POWER_USER = "POWER_USER"
    GUEST = "GUEST"


class TransitionCategory(str, enum.Enum):
    """状态变化类别，与通知偏好字段一一对应 (Transition Category, one per preference flag)"""
    STATUS_CHANGE = "statusChange"
    ONLINE_TO_OFFLINE = "onlineToOffline"  # 恶化 (degradation)
    OFFLINE_TO_ONLINE = "offlineToOnline"  # 恢复 (recovery)
    ERROR_ALERT = "errorAlert"
    WARNING_ALERT = "warningAlert"
    SYSTEM_ALERT = "systemAlert"


class NotificationType(str, enum.Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class NotificationPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"
