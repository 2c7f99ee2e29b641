"""Shared fakes for the download pipeline tests."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from video_fetch.logger import TransferLogger
from video_fetch.models import ConflictPolicy, TransferEvent, TransferState
from video_fetch.platform import BlobStore, TransferPlatform


class FakeClock:
    """Monotonic clock whose sleep advances time instantly and records the delay."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class StubProbe:
    """Network probe that answers from a fixed script."""

    def __init__(self, recovered: bool = True) -> None:
        self.recovered = recovered
        self.calls = []

    async def await_recovery(self, max_attempts=None) -> bool:
        self.calls.append(max_attempts)
        return self.recovered


class FakePlatform(TransferPlatform):
    """Hands out transfer ids without moving any bytes; tests fire the events."""

    def __init__(self, start_errors=None, clock=None) -> None:
        super().__init__(TransferLogger())
        self.blob_store = BlobStore()
        self.start_errors = list(start_errors or [])
        self.started = []
        self.start_times = []
        self._clock = clock
        self._next_id = 100

    async def start(self, locator, filename, conflict_policy=ConflictPolicy.UNIQUIFY):
        if self.start_errors:
            raise self.start_errors.pop(0)
        self._next_id += 1
        self.started.append((self._next_id, locator, filename))
        if self._clock is not None:
            self.start_times.append(self._clock())
        return self._next_id

    @property
    def last_id(self) -> int:
        return self.started[-1][0]

    def fire(self, transfer_id, state: TransferState, reason=None) -> None:
        self._emit(TransferEvent(transfer_id, state, error_reason=reason))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def quiet_logger():
    return TransferLogger()
