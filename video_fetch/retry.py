"""Retry decisions for failed transfers: classification, backoff and the network gate."""

import asyncio
import time
from typing import Awaitable, Callable, Optional

from .errors import (
    NETWORK_UNAVAILABLE_MESSAGE,
    FatalTransferError,
    NetworkUnavailableError,
    classify_error,
)
from .logger import TransferLogger
from .models import RetryPolicy, TransferRecord, TransferRequest
from .network import NetworkHealthProbe
from .registry import TransferRegistry

StartTransfer = Callable[[TransferRequest], Awaitable[int]]


def backoff_delay(retry_number: int, initial_delay: float, max_delay: float) -> float:
    """Exponential backoff: initial, 2x, 4x, ... capped at ``max_delay``."""
    return min(initial_delay * (2 ** (retry_number - 1)), max_delay)


class RetryScheduler:
    """Re-issues failed transfers until they succeed to start or retries run out."""

    def __init__(
        self,
        policy: RetryPolicy,
        registry: TransferRegistry,
        start_transfer: StartTransfer,
        probe: Optional[NetworkHealthProbe] = None,
        logger: Optional[TransferLogger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.policy = policy
        self.registry = registry
        self.logger = logger or TransferLogger()
        self.probe = probe or NetworkHealthProbe(policy.network_probe, self.logger)
        self._start_transfer = start_transfer
        self._sleep = sleep
        self._clock = clock

    def delay_for(self, retry_number: int) -> float:
        return backoff_delay(retry_number, self.policy.initial_delay, self.policy.max_delay)

    def _give_up(self, transfer_id: int) -> None:
        self.registry.delete(transfer_id)

    async def handle_failure(
        self, transfer_id: int, record: TransferRecord, raw_error
    ) -> Optional[int]:
        """Retry the logical download behind a failed transfer.

        Returns the id of the replacement transfer, which is registered in
        place of ``transfer_id``, or None when the record was dropped from the
        registry while waiting. Raises FatalTransferError (or its subclass
        NetworkUnavailableError) after removing the record when no further
        attempt will be made.
        """
        retry_count = record.retry_count
        error = raw_error

        while True:
            verdict = classify_error(error, self.policy.retryable_reasons)
            self.logger.warning(f"Download failed (ID: {transfer_id}): {verdict.reason}")

            if not verdict.retryable or retry_count >= self.policy.max_retries:
                self._give_up(transfer_id)
                raise FatalTransferError(
                    "Download failed after reaching the retry limit or a "
                    f"non-retryable error: {verdict.reason}",
                    reason=verdict.reason,
                )

            next_retry = retry_count + 1

            if verdict.needs_network_check:
                self.logger.network_wait(verdict.reason)
                recovered = await self.probe.await_recovery(
                    self.policy.network_probe.max_attempts
                )
                if not recovered:
                    self.logger.error("Network did not recover, cancelling retries")
                    self._give_up(transfer_id)
                    raise NetworkUnavailableError(
                        NETWORK_UNAVAILABLE_MESSAGE, reason=verdict.reason
                    )

            delay = self.delay_for(next_retry)
            self.logger.retry(next_retry, self.policy.max_retries, delay, verdict.reason)
            await self._sleep(delay)

            if self.registry.get(transfer_id) is not record:
                self.logger.info(f"Transfer {transfer_id} is no longer tracked, dropping retry")
                return None

            try:
                new_id = await self._start_transfer(record.request)
            except Exception as exc:
                error = exc
                retry_count = next_retry
                continue

            self.registry.delete(transfer_id)
            self.registry.put(
                new_id,
                TransferRecord(
                    request=record.request,
                    retry_count=next_retry,
                    last_error=verdict.reason,
                    last_attempt_time=self._clock(),
                ),
            )
            self.logger.info(f"Retry {next_retry} started as transfer {new_id}")
            return new_id
