"""
Redis 连接模块

提供 Redis 客户端的创建和关闭函数，以及实时推送使用的频道名称。
客户端由检查轮次按需创建并在结束时关闭，不保留全局单例。
"""
import redis.asyncio as redis

# 实时推送频道 (Real-time Channels)
SERVICE_STATUS_UPDATE = "service_status_update"
SERVICE_HEALTH_CHECK = "service_health_check"

# 跨进程轮次锁的键名
CYCLE_LOCK_KEY = "servicehub:health_cycle:lock"


def create_redis(url: str) -> redis.Redis:
    """创建 Redis 客户端（惰性连接，首次命令时建立连接）。"""
    return redis.from_url(url, decode_responses=True)


async def close_redis(client: redis.Redis | None) -> None:
    """关闭 Redis 连接，释放资源。"""
    if client is not None:
        await client.aclose()
