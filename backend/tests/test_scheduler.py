"""
Tests for the scheduled sweeps and the scheduler runner.
"""

import asyncio
from datetime import timedelta

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from ticketing.core.config import Settings
from ticketing.domain import EventStatus, TransactionStatus
from ticketing.scheduler import ScheduledTask, Scheduler, SweepLock, build_tasks
from ticketing.services import event_service, promotion_service


@pytest.mark.asyncio
async def test_sweep_expired_payments(service, storage, clock, customer, test_event):
    """Unpaid past the deadline: expired, points and seats come back."""
    record = await service.create_transaction(customer.id, test_event.id, quantity=3, points_requested=5000)
    assert storage.user(customer.id).points == 15000

    clock.advance(hours=2, minutes=10)
    assert await service.sweep_expired_payments() == 1

    assert storage.transaction(record.id).status == TransactionStatus.EXPIRED
    assert storage.user(customer.id).points == 20000
    assert storage.event(test_event.id).available_seats == 100

    # Re-running finds nothing
    assert await service.sweep_expired_payments() == 0
    assert storage.user(customer.id).points == 20000


@pytest.mark.asyncio
async def test_sweep_ignores_open_payment_windows(service, storage, clock, customer, test_event):
    record = await service.create_transaction(customer.id, test_event.id)
    clock.advance(hours=1)

    assert await service.sweep_expired_payments() == 0
    assert storage.transaction(record.id).status == TransactionStatus.WAITING_PAYMENT


@pytest.mark.asyncio
async def test_sweeps_with_no_rows(service):
    assert await service.sweep_expired_payments() == 0
    assert await service.sweep_expired_confirmations() == 0


@pytest.mark.asyncio
async def test_sweep_expired_confirmations(service, storage, clock, customer, test_event):
    record = await service.create_transaction(customer.id, test_event.id, points_requested=2000)
    await service.upload_payment_proof(record.id, customer.id, "https://bank.test/receipt.png")

    clock.advance(days=2)
    assert await service.sweep_expired_confirmations() == 0

    clock.advance(days=1, seconds=1)
    assert await service.sweep_expired_confirmations() == 1

    assert storage.transaction(record.id).status == TransactionStatus.REJECTED
    assert storage.user(customer.id).points == 20000
    assert storage.event(test_event.id).available_seats == 100


@pytest.mark.asyncio
async def test_sweep_continues_past_failed_row(service, storage, clock, make_event, monkeypatch):
    """One bad row is logged and skipped; the rest are processed."""
    users = [storage.add_user() for _ in range(3)]
    event = make_event()
    records = [await service.create_transaction(user.id, event.id) for user in users]
    bad = records[1]

    original = service.expire_transaction

    async def flaky_expire(transaction_id, trigger="scheduler"):
        if transaction_id == bad.id:
            raise RuntimeError("database hiccup")
        return await original(transaction_id, trigger=trigger)

    monkeypatch.setattr(service, "expire_transaction", flaky_expire)
    clock.advance(hours=3)

    assert await service.sweep_expired_payments() == 2

    assert storage.transaction(records[0].id).status == TransactionStatus.EXPIRED
    assert storage.transaction(bad.id).status == TransactionStatus.WAITING_PAYMENT
    assert storage.transaction(records[2].id).status == TransactionStatus.EXPIRED
    assert storage.event(event.id).available_seats == 9


@pytest.mark.asyncio
async def test_sync_event_statuses(storage, clock, make_event):
    started = make_event(starts_in=timedelta(hours=-1), duration=timedelta(hours=3))
    finished = make_event(starts_in=timedelta(days=-2), duration=timedelta(hours=3))
    finished_active = make_event(
        starts_in=timedelta(days=-2), duration=timedelta(hours=3), status=EventStatus.ACTIVE
    )
    future = make_event(starts_in=timedelta(days=5))
    cancelled = make_event(starts_in=timedelta(days=-2), status=EventStatus.CANCELLED)

    assert await event_service.sync_event_statuses(storage, clock) == 3

    assert storage.event(started.id).status == EventStatus.ACTIVE
    assert storage.event(finished.id).status == EventStatus.ENDED
    assert storage.event(finished_active.id).status == EventStatus.ENDED
    assert storage.event(future.id).status == EventStatus.UPCOMING
    assert storage.event(cancelled.id).status == EventStatus.CANCELLED

    # Idempotent
    assert await event_service.sync_event_statuses(storage, clock) == 0


@pytest.mark.asyncio
async def test_deactivate_expired_promotions(storage, clock, make_promotion):
    expired = make_promotion(code="OLD", valid_for=timedelta(days=-1))
    current = make_promotion(code="NEW")

    assert await promotion_service.deactivate_expired_promotions(storage, clock) == 1

    assert storage.promotion(expired.id).is_active is False
    assert storage.promotion(current.id).is_active is True
    assert await promotion_service.deactivate_expired_promotions(storage, clock) == 0


def test_build_tasks(service):
    settings = Settings(PAYMENT_SWEEP_INTERVAL_SECONDS=42)

    tasks = build_tasks(service, settings)

    assert [task.name for task in tasks] == [
        "sync_event_status",
        "sweep_expired_payments",
        "sweep_expired_confirmations",
        "deactivate_expired_promotions",
    ]
    assert tasks[1].interval == 42


@pytest.mark.asyncio
async def test_run_once_returns_count():
    async def job():
        return 7

    task = ScheduledTask("job", 60, job)

    assert await Scheduler([task]).run_once(task) == 7


@pytest.mark.asyncio
async def test_run_once_survives_job_error():
    async def broken():
        raise RuntimeError("boom")

    task = ScheduledTask("broken", 60, broken)
    scheduler = Scheduler([task])

    assert await scheduler.run_once(task) is None
    # Lock was released; the next run proceeds
    assert await scheduler.run_once(task) is None


@pytest.mark.asyncio
async def test_overlapping_run_is_skipped():
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow():
        started.set()
        await release.wait()
        return 1

    task = ScheduledTask("slow", 60, slow)
    scheduler = Scheduler([task])

    first = asyncio.create_task(scheduler.run_once(task))
    await started.wait()

    assert await scheduler.run_once(task) is None

    release.set()
    assert await first == 1


class FakeRedisLock:
    def __init__(self, acquired=True, error=None):
        self.acquired = acquired
        self.error = error
        self.released = False

    async def acquire(self):
        if self.error:
            raise self.error
        return self.acquired

    async def release(self):
        self.released = True


class FakeRedis:
    def __init__(self, lock: FakeRedisLock):
        self._lock = lock
        self.lock_calls = []

    def lock(self, name, timeout=None, blocking=True):
        self.lock_calls.append((name, timeout, blocking))
        return self._lock


@pytest.mark.asyncio
async def test_sweep_lock_uses_redis():
    redis_lock = FakeRedisLock()
    client = FakeRedis(redis_lock)

    async with SweepLock("payments", client, ttl=120).hold() as acquired:
        assert acquired is True

    assert client.lock_calls == [("ticketing:sweep:payments", 120, False)]
    assert redis_lock.released is True


@pytest.mark.asyncio
async def test_sweep_lock_held_by_other_replica():
    client = FakeRedis(FakeRedisLock(acquired=False))

    async with SweepLock("payments", client).hold() as acquired:
        assert acquired is False


@pytest.mark.asyncio
async def test_sweep_lock_fails_open_on_redis_error():
    redis_lock = FakeRedisLock(error=RedisConnectionError("down"))

    async with SweepLock("payments", FakeRedis(redis_lock)).hold() as acquired:
        assert acquired is True

    assert redis_lock.released is False


@pytest.mark.asyncio
async def test_scheduler_start_and_stop():
    ran = asyncio.Event()

    async def job():
        ran.set()
        return 0

    scheduler = Scheduler([ScheduledTask("tick", 0.01, job)])
    scheduler.start()
    assert scheduler.running

    await asyncio.wait_for(ran.wait(), timeout=2)
    await scheduler.stop()

    assert not scheduler.running
