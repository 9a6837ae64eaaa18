"""检查轮次端到端测试：SQLite 内存库 + 模拟 Redis / SMTP / 目标服务。"""
import asyncio
import json
import os
import signal
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import select

from servicehub.core.config import Settings
from servicehub.core.database import open_session
from servicehub.core.exceptions import CycleInProgressError, CycleSetupError
from servicehub.core.redis import CYCLE_LOCK_KEY, SERVICE_HEALTH_CHECK, SERVICE_STATUS_UPDATE
from servicehub.models.enums import UserRole
from servicehub.models.notification import Notification
from servicehub.models.service import ServiceStatus
from servicehub.services.health_probe import build_probe_client
from servicehub.services.status_store import StatusStore
from servicehub.services.transition import TransitionDetector
from servicehub.tasks.health_cycle import (
    CycleOrchestrator,
    CycleState,
    CycleTrigger,
    health_cycle_loop,
    run_until_signalled,
)
from tests.conftest import FakeMailer, FakeRedis, add_service, add_status, add_user, refused


def _ago(minutes: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(minutes=minutes)


def _orchestrator(session_factory, redis, mailer, handler, **config) -> CycleOrchestrator:
    return CycleOrchestrator(
        session_factory=session_factory,
        redis_factory=lambda: redis,
        mailer=mailer,
        http_client_factory=lambda: build_probe_client(transport=httpx.MockTransport(handler)),
        config=Settings(probe_default_timeout=2, **config),
    )


async def _rows(session_factory, model) -> list:
    async with session_factory() as db:
        result = await db.execute(select(model).order_by(model.id))
        return list(result.scalars().all())


class TestCycleScenarios:
    async def test_online_service_goes_offline(self, session_factory, fake_redis, fake_mailer):
        async with session_factory() as db:
            service = await add_service(db, name="api", url="http://api.internal", health_endpoint="/health")
            await add_status(db, service, "ONLINE", _ago(5))
            admin = await add_user(db, "admin@example.com", UserRole.ADMIN)
            opted_in = await add_user(
                db, "oncall@example.com", UserRole.POWER_USER, email_enabled=True, online_to_offline=True
            )
            await add_user(db, "quiet@example.com", UserRole.POWER_USER, email_enabled=True, online_to_offline=False)
            await add_user(db, "guest@example.com", UserRole.GUEST)

        orchestrator = _orchestrator(session_factory, fake_redis, fake_mailer, refused)
        report = await orchestrator.run_cycle(CycleTrigger.MANUAL)

        assert (report.summary.total, report.summary.successful, report.summary.failed) == (1, 1, 0)
        assert report.notified == 1
        outcome = report.outcomes[0].result
        assert outcome.transition.describe() == "ONLINE -> OFFLINE"
        assert outcome.recipients == 2

        records = await _rows(session_factory, ServiceStatus)
        assert [r.status for r in records] == ["ONLINE", "OFFLINE"]
        assert records[-1].error_message == "Connection failed: ECONNREFUSED"

        notes = await _rows(session_factory, Notification)
        assert sorted((n.user_id, n.service_id) for n in notes) == [(admin.id, service.id), (opted_in.id, service.id)]

        assert len(fake_mailer.sent) == 1
        assert fake_mailer.sent[0]["subject"] == "🔴 api - Status Changed to OFFLINE"
        assert sorted(fake_mailer.sent[0]["recipients"]) == ["admin@example.com", "oncall@example.com"]

        status_events = [json.loads(m) for m in fake_redis.messages(SERVICE_STATUS_UPDATE)]
        assert [e["status"]["status"] for e in status_events] == ["OFFLINE"]
        assert len(fake_redis.messages(SERVICE_HEALTH_CHECK)) == 1

        assert orchestrator.state == CycleState.IDLE
        assert await fake_redis.get(CYCLE_LOCK_KEY) is None
        assert fake_redis.closed

    async def test_first_check_online_broadcasts_without_notifying(self, session_factory, fake_redis, fake_mailer):
        async with session_factory() as db:
            await add_service(db, name="web", url="http://web.internal")
            await add_user(db, "admin@example.com", UserRole.ADMIN)

        report = await _orchestrator(
            session_factory, fake_redis, fake_mailer, lambda req: httpx.Response(200)
        ).run_cycle()

        assert report.notified == 0
        assert report.outcomes[0].result.transition.is_first_check
        assert [r.status for r in await _rows(session_factory, ServiceStatus)] == ["ONLINE"]
        assert await _rows(session_factory, Notification) == []
        assert fake_mailer.sent == []
        assert len(fake_redis.messages(SERVICE_STATUS_UPDATE)) == 1

    async def test_repeated_error_notifies_once(self, session_factory, fake_redis, fake_mailer):
        async with session_factory() as db:
            await add_service(db, name="db-admin", url="http://db.internal")
            await add_user(db, "admin@example.com", UserRole.ADMIN)

        orchestrator = _orchestrator(session_factory, fake_redis, fake_mailer, lambda req: httpx.Response(500))
        first = await orchestrator.run_cycle()
        second = await orchestrator.run_cycle()

        assert first.notified == 1
        assert second.notified == 0
        assert second.outcomes[0].result.transition.changed is False
        assert [r.status for r in await _rows(session_factory, ServiceStatus)] == ["ERROR", "ERROR"]
        assert len(fake_mailer.sent) == 1
        assert len(await _rows(session_factory, Notification)) == 1
        assert len(fake_redis.messages(SERVICE_STATUS_UPDATE)) == 2
        assert len(fake_redis.messages(SERVICE_HEALTH_CHECK)) == 2

    async def test_services_processed_independently(self, session_factory, fake_redis, fake_mailer):
        async with session_factory() as db:
            for name in ("a", "b", "c", "d", "e"):
                await add_service(db, name=name, url=f"http://{name}.internal")

        def handler(req):
            if req.url.host == "c.internal":
                return refused(req)
            return httpx.Response(200)

        report = await _orchestrator(session_factory, fake_redis, fake_mailer, handler).run_cycle()

        assert report.summary.total == 5
        assert report.summary.successful == 5
        statuses = {o.service_name: o.result.result.status.value for o in report.outcomes}
        assert statuses == {"a": "ONLINE", "b": "ONLINE", "c": "OFFLINE", "d": "ONLINE", "e": "ONLINE"}
        assert len(await _rows(session_factory, ServiceStatus)) == 5

    async def test_inactive_services_not_checked(self, session_factory, fake_redis, fake_mailer):
        async with session_factory() as db:
            await add_service(db, name="retired", url="http://retired.internal", is_active=False)

        report = await _orchestrator(
            session_factory, fake_redis, fake_mailer, lambda req: httpx.Response(200)
        ).run_cycle()

        assert report.summary.total == 0
        assert await _rows(session_factory, ServiceStatus) == []
        assert len(fake_redis.messages(SERVICE_HEALTH_CHECK)) == 1


class TestCycleFailures:
    async def test_redis_unreachable_aborts_cycle(self, session_factory, fake_mailer):
        redis = FakeRedis(fail_ping=True)
        async with session_factory() as db:
            await add_service(db)

        orchestrator = _orchestrator(session_factory, redis, fake_mailer, lambda req: httpx.Response(200))
        with pytest.raises(CycleSetupError) as exc_info:
            await orchestrator.run_cycle()

        assert "Connection refused" in exc_info.value.detail
        assert orchestrator.state == CycleState.IDLE
        assert redis.closed
        assert await _rows(session_factory, ServiceStatus) == []

    async def test_database_unreachable_aborts_cycle(self, tmp_path, fake_redis, fake_mailer):
        missing = tmp_path / "missing" / "servicehub.db"
        orchestrator = CycleOrchestrator(
            session_factory=lambda: open_session(f"sqlite+aiosqlite:///{missing}"),
            redis_factory=lambda: fake_redis,
            mailer=fake_mailer,
            http_client_factory=lambda: build_probe_client(transport=httpx.MockTransport(refused)),
            config=Settings(),
        )

        with pytest.raises(CycleSetupError):
            await orchestrator.run_cycle()

        assert orchestrator.state == CycleState.IDLE
        assert fake_redis.closed
        assert await fake_redis.get(CYCLE_LOCK_KEY) is None
        assert fake_redis.published == []

    async def test_lock_held_by_other_process(self, session_factory, fake_redis, fake_mailer):
        async with session_factory() as db:
            await add_service(db)
        await fake_redis.set(CYCLE_LOCK_KEY, "other-process")

        orchestrator = _orchestrator(session_factory, fake_redis, fake_mailer, lambda req: httpx.Response(200))
        with pytest.raises(CycleInProgressError):
            await orchestrator.run_cycle(CycleTrigger.INTERVAL)

        assert await fake_redis.get(CYCLE_LOCK_KEY) == "other-process"
        assert await _rows(session_factory, ServiceStatus) == []
        assert orchestrator.state == CycleState.IDLE

    async def test_concurrent_trigger_rejected(self, session_factory, fake_redis, fake_mailer):
        async with session_factory() as db:
            await add_service(db)

        async def slow(req):
            await asyncio.sleep(0.1)
            return httpx.Response(200)

        orchestrator = _orchestrator(session_factory, fake_redis, fake_mailer, slow)
        first, second = await asyncio.gather(
            orchestrator.run_cycle(CycleTrigger.INTERVAL),
            orchestrator.run_cycle(CycleTrigger.MANUAL),
            return_exceptions=True,
        )

        assert first.summary.total == 1
        assert isinstance(second, CycleInProgressError)
        assert len(await _rows(session_factory, ServiceStatus)) == 1
        assert orchestrator.state == CycleState.IDLE

    async def test_processing_error_counts_as_failed_and_alerts(
        self, session_factory, fake_redis, fake_mailer, monkeypatch
    ):
        async with session_factory() as db:
            await add_service(db, name="broken", url="http://broken.internal")
            await add_service(db, name="fine", url="http://fine.internal")
            await add_user(db, "admin@example.com", UserRole.ADMIN)

        original = TransitionDetector.detect

        async def flaky_detect(self, service, record):
            if service.name == "broken":
                raise RuntimeError("detector exploded")
            return await original(self, service, record)

        monkeypatch.setattr(TransitionDetector, "detect", flaky_detect)

        report = await _orchestrator(
            session_factory, fake_redis, fake_mailer, lambda req: httpx.Response(200)
        ).run_cycle()

        assert (report.summary.successful, report.summary.failed) == (1, 1)
        failed = [o for o in report.outcomes if not o.success]
        assert failed[0].service_name == "broken"
        assert failed[0].error == "detector exploded"

        assert [m["subject"] for m in fake_mailer.sent] == ["🚨 Health check errors for 1 service(s)"]
        assert "- broken: detector exploded" in fake_mailer.sent[0]["text"]
        event = json.loads(fake_redis.messages(SERVICE_HEALTH_CHECK)[0])
        assert event["failed"] == 1

    async def test_processing_error_without_system_alerts(
        self, session_factory, fake_redis, fake_mailer, monkeypatch
    ):
        async with session_factory() as db:
            await add_service(db, name="broken", url="http://broken.internal")
            await add_user(db, "admin@example.com", UserRole.ADMIN)

        async def failing_detect(self, service, record):
            raise RuntimeError("detector exploded")

        monkeypatch.setattr(TransitionDetector, "detect", failing_detect)

        report = await _orchestrator(
            session_factory, fake_redis, fake_mailer, lambda req: httpx.Response(200),
            system_alerts_enabled=False,
        ).run_cycle()

        assert report.summary.failed == 1
        assert fake_mailer.sent == []


class TestCycleLoop:
    async def test_loop_survives_setup_failures(self, session_factory, fake_mailer, monkeypatch):
        orchestrator = _orchestrator(
            session_factory, FakeRedis(fail_ping=True), fake_mailer, lambda req: httpx.Response(200)
        )
        calls = 0
        real_sleep = asyncio.sleep

        async def fake_sleep(seconds):
            nonlocal calls
            calls += 1
            if calls >= 2:
                raise asyncio.CancelledError
            await real_sleep(0)

        monkeypatch.setattr("servicehub.tasks.health_cycle.asyncio.sleep", fake_sleep)

        with pytest.raises(asyncio.CancelledError):
            await health_cycle_loop(orchestrator, interval=60)
        assert calls == 2
        assert orchestrator.state == CycleState.IDLE


class TestCycleLock:
    async def test_lock_taken_over_after_expiry_is_not_released(self, session_factory, fake_redis, fake_mailer):
        async with session_factory() as db:
            await add_service(db)

        def handler(req):
            # 本轮的锁已过期并被另一个进程获取
            fake_redis._store[CYCLE_LOCK_KEY] = "other-process"
            return httpx.Response(200)

        report = await _orchestrator(session_factory, fake_redis, fake_mailer, handler).run_cycle()

        assert report.summary.successful == 1
        assert await fake_redis.get(CYCLE_LOCK_KEY) == "other-process"
        assert fake_redis.closed


class GatedMailer(FakeMailer):
    """发送时阻塞，直到测试放行；用于观察邮件发送期间的写库顺序。"""

    def __init__(self, events: list[str]):
        super().__init__()
        self.events = events
        self.release = asyncio.Event()

    async def send(self, recipients, subject, text, html) -> None:
        self.events.append("email-start")
        await asyncio.wait_for(self.release.wait(), timeout=2)
        self.events.append("email-end")
        await super().send(recipients, subject, text, html)


class TestCycleConcurrency:
    async def test_slow_email_does_not_block_other_writes(self, session_factory, fake_redis, monkeypatch):
        async with session_factory() as db:
            down = await add_service(db, name="down", url="http://down.internal")
            await add_status(db, down, "ONLINE", _ago(5))
            later = await add_service(db, name="later", url="http://later.internal")
            await add_user(db, "admin@example.com", UserRole.ADMIN)

        events: list[str] = []
        mailer = GatedMailer(events)
        original_insert = StatusStore.insert_status_record

        async def tracking_insert(self, service_id, *args, **kwargs):
            events.append(f"insert-{service_id}")
            record = await original_insert(self, service_id, *args, **kwargs)
            if service_id == later.id:
                mailer.release.set()
            return record

        monkeypatch.setattr(StatusStore, "insert_status_record", tracking_insert)

        async def handler(req):
            if req.url.host == "later.internal":
                await asyncio.sleep(0.2)
                return httpx.Response(200)
            return refused(req)

        report = await _orchestrator(session_factory, fake_redis, mailer, handler).run_cycle()

        assert events == [f"insert-{down.id}", "email-start", f"insert-{later.id}", "email-end"]
        assert report.summary.successful == 2
        assert len(mailer.sent) == 1


async def _wait_for_lock(redis: FakeRedis) -> None:
    for _ in range(200):
        if await redis.get(CYCLE_LOCK_KEY) is not None:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("cycle never acquired its lock")


def _hanging_handler():
    async def handler(req):
        await asyncio.sleep(5)
        return httpx.Response(200)

    return handler


class TestCycleShutdown:
    async def test_cancel_mid_cycle_releases_resources(self, session_factory, fake_redis, fake_mailer):
        async with session_factory() as db:
            await add_service(db)

        orchestrator = _orchestrator(session_factory, fake_redis, fake_mailer, _hanging_handler())
        task = asyncio.create_task(health_cycle_loop(orchestrator, interval=60))
        await _wait_for_lock(fake_redis)
        await asyncio.sleep(0.05)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert await fake_redis.get(CYCLE_LOCK_KEY) is None
        assert fake_redis.closed
        assert orchestrator.state == CycleState.IDLE
        assert await _rows(session_factory, ServiceStatus) == []

    async def test_sigterm_stops_loop_and_releases_resources(self, session_factory, fake_redis, fake_mailer):
        async with session_factory() as db:
            await add_service(db)

        orchestrator = _orchestrator(session_factory, fake_redis, fake_mailer, _hanging_handler())
        task = asyncio.create_task(run_until_signalled(orchestrator, interval=60))
        await _wait_for_lock(fake_redis)
        await asyncio.sleep(0.05)

        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.wait_for(task, timeout=2)

        assert await fake_redis.get(CYCLE_LOCK_KEY) is None
        assert fake_redis.closed
        assert orchestrator.state == CycleState.IDLE
