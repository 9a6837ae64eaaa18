"""
Service Hub 测试基础配置

提供 SQLite in-memory 异步数据库、内存 Redis 模拟、邮件发送模拟和数据构造等通用 fixture。
所有测试使用隔离的 SQLite 数据库，不依赖外部 PostgreSQL/Redis/SMTP。
"""
import os
import uuid
from datetime import datetime, timezone
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from redis.exceptions import LockError, LockNotOwnedError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# 必须在导入 servicehub 之前设置环境变量，避免读取真实配置
os.environ["POSTGRES_HOST"] = "localhost"
os.environ["REDIS_HOST"] = "localhost"
os.environ["SMTP_HOST"] = "localhost"
os.environ["SYSTEM_ALERTS_ENABLED"] = "true"

from servicehub.core.database import create_tables
from servicehub.models.enums import UserRole
from servicehub.models.service import Service, ServiceStatus
from servicehub.models.user import NotificationPreference, User

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ── Mock Redis ────────────────────────────────────────────────────────
class FakeRedis:
    """内存级 Redis 模拟，支持 get/set(nx)/delete/publish，并记录所有发布的消息。"""

    def __init__(self, fail_ping: bool = False, fail_publish: bool = False):
        self._store: dict[str, str] = {}
        self.published: list[tuple[str, str]] = []
        self.fail_ping = fail_ping
        self.fail_publish = fail_publish
        self.closed = False

    async def ping(self) -> bool:
        if self.fail_ping:
            raise ConnectionError("Error 111 connecting to localhost:6379. Connection refused.")
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False, **kwargs):
        if nx and key in self._store:
            return None
        self._store[key] = value
        return True

    async def delete(self, *keys: str) -> None:
        for k in keys:
            self._store.pop(k, None)

    async def publish(self, channel: str, message: str) -> int:
        if self.fail_publish:
            raise ConnectionError("Connection closed by server.")
        self.published.append((channel, message))
        return 1

    def lock(self, name: str, timeout: float | None = None, blocking: bool = True, **kwargs) -> "FakeLock":
        return FakeLock(self, name)

    async def aclose(self) -> None:
        self.closed = True

    def messages(self, channel: str) -> list[str]:
        return [m for c, m in self.published if c == channel]


class FakeLock:
    """redis-py 异步 Lock 的内存替身：按令牌持有，只有持有者能释放。"""

    def __init__(self, redis: FakeRedis, name: str):
        self.redis = redis
        self.name = name
        self.token: str | None = None

    async def acquire(self, **kwargs) -> bool:
        token = uuid.uuid4().hex
        if await self.redis.set(self.name, token, nx=True):
            self.token = token
            return True
        return False

    async def release(self) -> None:
        if self.token is None:
            raise LockError("Cannot release an unlocked lock")
        token, self.token = self.token, None
        if self.redis._store.get(self.name) != token:
            raise LockNotOwnedError("Cannot release a lock that's no longer owned")
        del self.redis._store[self.name]


# ── Mock 邮件发送 ──────────────────────────────────────────────────────
class FakeMailer:
    """记录每次发送的邮件；fail=True 时模拟 SMTP 失败。"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict] = []

    async def send(self, recipients, subject, text, html) -> None:
        if self.fail:
            raise ConnectionRefusedError("SMTP server unavailable")
        self.sent.append({"recipients": list(recipients), "subject": subject, "text": text, "html": html})


def refused(request: httpx.Request):
    """MockTransport 处理函数：模拟连接被拒绝。"""
    raise httpx.ConnectError("All connection attempts failed", request=request) from ConnectionRefusedError(
        111, "Connection refused"
    )


# ── Fixtures ──────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine():
    """每个测试独立的内存数据库引擎，已创建所有表。"""
    eng = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """提供一个干净的数据库会话。"""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def fake_mailer() -> FakeMailer:
    return FakeMailer()


async def add_service(db: AsyncSession, name: str = "api", url: str = "http://api.internal", **kwargs) -> Service:
    service = Service(name=name, url=url, is_active=kwargs.pop("is_active", True), **kwargs)
    db.add(service)
    await db.commit()
    await db.refresh(service)
    return service


async def add_user(db: AsyncSession, email: str, role: UserRole, is_active: bool = True, **prefs) -> User:
    """创建用户；传入偏好字段时同时创建通知偏好记录。"""
    user = User(email=email, name=email.split("@")[0], role=role.value, is_active=is_active)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    if prefs:
        db.add(NotificationPreference(user_id=user.id, **prefs))
        await db.commit()
    return user


async def add_status(db: AsyncSession, service: Service, status: str, checked_at: datetime) -> ServiceStatus:
    record = ServiceStatus(service_id=service.id, status=status, response_time=12, checked_at=checked_at)
    db.add(record)
    await db.commit()
    await db.refresh(record)
    return record


def t(minute: int) -> datetime:
    """固定基准时间上的分钟偏移。"""
    return datetime(2026, 10, 1, 12, minute, 0, tzinfo=timezone.utc)
