"""Tests for backoff, the network gate, and re-issuing failed transfers."""

import asyncio

import pytest

from conftest import FakeClock, StubProbe
from video_fetch.errors import (
    NETWORK_UNAVAILABLE_MESSAGE,
    FatalTransferError,
    NetworkUnavailableError,
    TransientServerError,
)
from video_fetch.models import RetryPolicy, TransferRecord, TransferRequest
from video_fetch.registry import TransferRegistry
from video_fetch.retry import RetryScheduler, backoff_delay

REQUEST = TransferRequest("https://cdn.example.com/v.mp4", "v.mp4")


@pytest.mark.parametrize(
    "retry_number, expected",
    [(1, 2.0), (2, 4.0), (3, 8.0), (4, 16.0), (5, 30.0), (6, 30.0)],
)
def test_backoff_doubles_and_caps(retry_number, expected):
    assert backoff_delay(retry_number, 2.0, 30.0) == expected


class Starter:
    """Start primitive returning increasing ids, or raising queued errors first."""

    def __init__(self, errors=None):
        self.errors = list(errors or [])
        self.requests = []
        self.next_id = 10

    async def __call__(self, request):
        self.requests.append(request)
        if self.errors:
            raise self.errors.pop(0)
        self.next_id += 1
        return self.next_id


def make_scheduler(starter, probe=None, policy=None, registry=None, clock=None):
    clock = clock or FakeClock()
    registry = registry if registry is not None else TransferRegistry()
    scheduler = RetryScheduler(
        policy or RetryPolicy(),
        registry,
        starter,
        probe=probe or StubProbe(True),
        sleep=clock.sleep,
        clock=clock,
    )
    return scheduler, registry, clock


def test_retry_registers_new_id_and_drops_old():
    starter = Starter()
    scheduler, registry, clock = make_scheduler(starter)
    record = TransferRecord(REQUEST)
    registry.put(1, record)

    new_id = asyncio.run(scheduler.handle_failure(1, record, "SERVER_FAILED"))

    assert new_id == 11
    assert 1 not in registry
    new_record = registry.get(11)
    assert new_record.request is REQUEST
    assert new_record.retry_count == 1
    assert new_record.last_error == "SERVER_FAILED"
    assert new_record.last_attempt_time == clock.now
    assert clock.sleeps == [2.0]
    assert starter.requests == [REQUEST]


def test_non_retryable_failure_is_never_reissued():
    starter = Starter()
    scheduler, registry, clock = make_scheduler(starter)
    record = TransferRecord(REQUEST)
    registry.put(1, record)

    with pytest.raises(FatalTransferError) as excinfo:
        asyncio.run(scheduler.handle_failure(1, record, "PERMISSION_DENIED"))

    assert excinfo.value.reason == "PERMISSION_DENIED"
    assert starter.requests == []
    assert clock.sleeps == []
    assert len(registry) == 0


def test_retry_limit_reached():
    starter = Starter()
    scheduler, registry, _ = make_scheduler(starter)
    record = TransferRecord(REQUEST, retry_count=5)
    registry.put(7, record)

    with pytest.raises(FatalTransferError):
        asyncio.run(scheduler.handle_failure(7, record, "NETWORK_FAILED"))

    assert starter.requests == []
    assert len(registry) == 0


def test_network_failure_waits_for_recovery_first():
    probe = StubProbe(True)
    starter = Starter()
    scheduler, registry, clock = make_scheduler(starter, probe=probe)
    record = TransferRecord(REQUEST)
    registry.put(1, record)

    asyncio.run(scheduler.handle_failure(1, record, "NETWORK_DISCONNECTED"))

    assert probe.calls == [3]
    assert clock.sleeps == [2.0]


def test_server_failure_skips_network_check():
    probe = StubProbe(False)
    scheduler, registry, _ = make_scheduler(Starter(), probe=probe)
    record = TransferRecord(REQUEST)
    registry.put(1, record)

    assert asyncio.run(scheduler.handle_failure(1, record, "SERVER_BAD_CONTENT")) == 11
    assert probe.calls == []


def test_network_not_recovering_ends_without_backoff():
    probe = StubProbe(False)
    starter = Starter()
    scheduler, registry, clock = make_scheduler(starter, probe=probe)
    record = TransferRecord(REQUEST, retry_count=2)
    registry.put(1, record)

    with pytest.raises(NetworkUnavailableError) as excinfo:
        asyncio.run(scheduler.handle_failure(1, record, "INTERRUPTED"))

    assert excinfo.value.message == NETWORK_UNAVAILABLE_MESSAGE
    assert clock.sleeps == []
    assert starter.requests == []
    assert probe.calls == [3]
    assert len(registry) == 0


def test_failed_reissue_counts_as_an_attempt():
    starter = Starter(errors=[TransientServerError("HTTP 503", reason="SERVER_FAILED")])
    scheduler, registry, clock = make_scheduler(starter)
    record = TransferRecord(REQUEST)
    registry.put(1, record)

    new_id = asyncio.run(scheduler.handle_failure(1, record, "SERVER_FAILED"))

    assert clock.sleeps == [2.0, 4.0]
    assert registry.get(new_id).retry_count == 2
    assert len(registry) == 1


def test_reissue_failures_are_bounded_by_max_retries():
    errors = [TransientServerError("HTTP 503", reason="SERVER_FAILED") for _ in range(10)]
    starter = Starter(errors=errors)
    scheduler, registry, clock = make_scheduler(starter, policy=RetryPolicy(max_retries=3))
    record = TransferRecord(REQUEST)
    registry.put(1, record)

    with pytest.raises(FatalTransferError):
        asyncio.run(scheduler.handle_failure(1, record, "SERVER_FAILED"))

    assert len(starter.requests) == 3
    assert clock.sleeps == [2.0, 4.0, 8.0]
    assert len(registry) == 0


def test_non_retryable_reissue_error_stops_immediately():
    starter = Starter(errors=[OSError("FILE_ACCESS_DENIED")])
    scheduler, registry, clock = make_scheduler(starter)
    record = TransferRecord(REQUEST)
    registry.put(1, record)

    with pytest.raises(FatalTransferError) as excinfo:
        asyncio.run(scheduler.handle_failure(1, record, "SERVER_FAILED"))

    assert excinfo.value.reason == "FILE_ACCESS_DENIED"
    assert clock.sleeps == [2.0]


def test_abandoned_transfer_is_not_reissued():
    starter = Starter()
    registry = TransferRegistry()
    clock = FakeClock()

    async def abandoning_sleep(seconds):
        registry.delete(1)

    scheduler = RetryScheduler(
        RetryPolicy(), registry, starter, probe=StubProbe(True), sleep=abandoning_sleep, clock=clock
    )
    record = TransferRecord(REQUEST)
    registry.put(1, record)

    assert asyncio.run(scheduler.handle_failure(1, record, "SERVER_FAILED")) is None
    assert starter.requests == []
    assert len(registry) == 0


def test_custom_backoff_policy():
    scheduler, _, _ = make_scheduler(Starter(), policy=RetryPolicy(initial_delay=0.5, max_delay=3.0))
    assert [scheduler.delay_for(n) for n in range(1, 5)] == [0.5, 1.0, 2.0, 3.0]


class CountingRegistry(TransferRegistry):
    def __init__(self):
        super().__init__()
        self.deleted = []

    def delete(self, transfer_id):
        self.deleted.append(transfer_id)
        return super().delete(transfer_id)


def test_fatal_failure_removes_record_exactly_once():
    registry = CountingRegistry()
    scheduler, _, _ = make_scheduler(Starter(), registry=registry)
    record = TransferRecord(REQUEST)
    registry.put(4, record)

    with pytest.raises(FatalTransferError):
        asyncio.run(scheduler.handle_failure(4, record, "SERVER_FORBIDDEN"))

    assert registry.deleted == [4]
