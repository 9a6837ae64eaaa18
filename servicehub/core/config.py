"""
应用配置模块 (Application Configuration Module)

使用 Pydantic Settings 管理健康检查核心的所有配置项，支持从 .env 文件和环境变量读取。
提供数据库连接、Redis 发布订阅、SMTP 邮件和探测参数等各模块的配置管理。

Uses Pydantic Settings to manage all configuration items for the health-check core,
supporting reading from .env files and environment variables. Provides configuration
for database connections, Redis pub/sub, SMTP mail transport and probe parameters.
"""
import logging

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    应用全局配置类 (Application Global Configuration Class)

    字段名自动映射同名环境变量（不区分大小写），支持 .env 文件加载。

    Field names automatically map to same-named environment variables
    (case insensitive), supporting .env file loading.
    """

    # 数据库配置 (Database Configuration)
    postgres_host: str = "localhost"  # PostgreSQL 主机地址 (PostgreSQL Host)
    postgres_port: int = 5432  # PostgreSQL 端口号 (PostgreSQL Port)
    postgres_db: str = "servicehub"  # 数据库名称 (Database Name)
    postgres_user: str = "servicehub"  # 数据库用户名 (Database Username)
    postgres_password: str = "servicehub_dev_password"  # 数据库密码 (Database Password)
    database_url_override: str = ""  # 完整连接串，设置后优先使用 (Full DSN, takes precedence when set)

    # Redis 配置 (Redis Configuration)
    redis_host: str = "localhost"  # Redis 主机地址 (Redis Host)
    redis_port: int = 6379  # Redis 端口号 (Redis Port)
    redis_password: str = ""  # Redis 密码 (Redis Password)
    redis_url_override: str = ""  # 完整 Redis URL，设置后优先使用 (Full Redis URL, takes precedence when set)

    # SMTP 邮件配置 (SMTP Mail Configuration)
    smtp_host: str = "localhost"  # SMTP 服务器 (SMTP Host)
    smtp_port: int = 587  # SMTP 端口 (SMTP Port)
    smtp_user: str = ""  # SMTP 用户名 (SMTP Username)
    smtp_password: str = ""  # SMTP 密码 (SMTP Password)
    smtp_from: str = "noreply@servicehub.local"  # 发件人地址 (Sender Address)
    smtp_ssl: bool = False  # True 使用隐式 TLS（465），False 使用 STARTTLS (Implicit TLS vs STARTTLS)

    # 健康探测配置 (Health Probe Configuration)
    probe_default_timeout: int = 10  # 服务未配置超时时的默认值（秒） (Default Probe Timeout in Seconds)
    probe_user_agent: str = "ServiceHub-Monitor/1.0"  # 探测请求 User-Agent (Probe User-Agent)
    probe_max_concurrency: int = 0  # 单轮最大并发探测数，0 表示不限制 (Max Concurrent Probes, 0 = Unbounded)

    # 调度配置 (Scheduling Configuration)
    check_interval: int = 60  # 定时检查间隔（秒） (Check Interval in Seconds)
    cycle_lock_ttl: int = 300  # 跨进程轮次锁过期时间（秒） (Cross-process Cycle Lock TTL)
    system_alerts_enabled: bool = True  # 轮次内出现处理异常时发送系统告警 (Send System Alert on Processing Failures)

    # 其他 (Misc)
    app_url: str = "http://localhost:3000"  # 仪表盘地址，用于邮件链接 (Dashboard URL for Email Links)
    log_level: str = "INFO"  # 日志级别 (Log Level)

    @property
    def database_url(self) -> str:
        """
        构造 PostgreSQL 异步连接 URL (Build PostgreSQL Async Connection URL)

        生成适用于 asyncpg 驱动的连接字符串；设置 DATABASE_URL_OVERRIDE 时直接使用该值。
        """
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def redis_url(self) -> str:
        """构造 Redis 连接 URL (Build Redis Connection URL)，默认连接数据库 0。"""
        if self.redis_url_override:
            return self.redis_url_override
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/0"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}  # Pydantic 配置：自动加载 .env 文件 (Auto-load .env file)


# 全局配置实例 (Global Configuration Instance)
settings = Settings()

if not settings.smtp_user:
    logger.debug("SMTP_USER not set, mail transport will connect without authentication")
