"""Entry point for download requests and the handler for transfer lifecycle events."""

import asyncio
import time
from typing import Dict, Optional, Set

from .errors import (
    LINK_EXPIRED_MESSAGE,
    DownloadError,
    FailureAnalyzer,
    FatalTransferError,
    LinkExpiredError,
    ValidationError,
    error_reason,
    is_link_error,
)
from .logger import TransferLogger
from .models import (
    INTERRUPTED,
    ConflictPolicy,
    RetryPolicy,
    TransferEvent,
    TransferRecord,
    TransferRequest,
    TransferState,
)
from .network import NetworkHealthProbe, check_url
from .notifier import Notifier
from .pacing import PacingGate
from .platform import TransferPlatform
from .registry import TransferRegistry
from .retry import RetryScheduler


class DownloadOrchestrator:
    """Validates, paces and starts downloads, then drives retries from lifecycle events.

    Every failure is turned into a response dict or a ``downloadFailed``
    notification here; exceptions from the platform never reach callers of
    :meth:`handle_message`.
    """

    def __init__(
        self,
        platform: TransferPlatform,
        policy: Optional[RetryPolicy] = None,
        registry: Optional[TransferRegistry] = None,
        notifier: Optional[Notifier] = None,
        pacing: Optional[PacingGate] = None,
        probe: Optional[NetworkHealthProbe] = None,
        logger: Optional[TransferLogger] = None,
        analyzer: Optional[FailureAnalyzer] = None,
        precheck: bool = False,
        sleep=asyncio.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.logger = logger or TransferLogger()
        self.platform = platform
        self.registry = registry or TransferRegistry()
        self.notifier = notifier or Notifier(self.logger)
        self.pacing = pacing or PacingGate(self.policy.pacing, logger=self.logger)
        self.probe = probe or NetworkHealthProbe(self.policy.network_probe, self.logger)
        self.analyzer = analyzer or FailureAnalyzer()
        self.precheck = precheck
        self.scheduler = RetryScheduler(
            self.policy,
            self.registry,
            self._start_transfer,
            probe=self.probe,
            logger=self.logger,
            sleep=sleep,
        )
        self._retry_tasks: Set[asyncio.Task] = set()
        self.platform.add_listener(self.handle_event)

    def initialize(self) -> None:
        """Forget transfers started before this process (re)started."""
        if len(self.registry):
            self.logger.info(f"Discarding {len(self.registry)} stale transfer records")
        self.registry.clear()

    async def _start_transfer(self, request: TransferRequest) -> int:
        return await self.platform.start(
            request.source_locator, request.target_filename, ConflictPolicy.UNIQUIFY
        )

    @staticmethod
    def validate(request: TransferRequest) -> None:
        if not request.source_locator:
            raise ValidationError("Download URL must not be empty")
        if not request.target_filename:
            raise ValidationError("Filename must not be empty")

    async def submit(self, request: TransferRequest) -> int:
        """Start a logical download and return the id of its first transfer.

        Raises ValidationError for incomplete requests and LinkExpiredError
        when the source link is rejected. A ``downloadFailed`` notification is
        emitted before any exception propagates.
        """
        try:
            self.validate(request)
            await self.pacing.wait_for_slot()
            if self.precheck and isinstance(request.source_locator, str):
                await check_url(request.source_locator, self.logger)
            transfer_id = await self._start_transfer(request)
        except Exception as exc:
            error = self._start_failure(exc)
            self.logger.error(f"Download request failed: {error.message}")
            self.analyzer.categorize_and_record(request.describe(), error)
            self.notifier.failed(error.message, need_refresh=error.need_refresh)
            if error is exc:
                raise
            raise error from exc

        self.registry.put(transfer_id, TransferRecord(request=request, last_attempt_time=time.time()))
        self.logger.info(f"Download started (ID: {transfer_id}): {request.target_filename}")
        self.notifier.started(transfer_id)
        return transfer_id

    @staticmethod
    def _start_failure(exc: Exception) -> DownloadError:
        message = error_reason(exc)
        if is_link_error(message):
            return LinkExpiredError(LINK_EXPIRED_MESSAGE, reason=message)
        if isinstance(exc, DownloadError):
            return exc
        return FatalTransferError(message)

    async def submit_blob(self, blob_url: str, filename: str) -> int:
        """Start a download from bytes previously registered with the platform's blob store."""
        return await self.submit(TransferRequest(source_locator=blob_url, target_filename=filename))

    async def handle_message(self, message: Dict) -> Dict:
        """Answer an inbound ``download`` or ``downloadBlob`` request."""
        action = message.get("action")
        try:
            if action == "download":
                request = TransferRequest(
                    source_locator=message.get("url") or "",
                    target_filename=message.get("filename") or "",
                )
                transfer_id = await self.submit(request)
            elif action == "downloadBlob":
                transfer_id = await self.submit_blob(
                    message.get("blobUrl") or "", message.get("filename") or ""
                )
            else:
                return {"success": False, "error": f"Unknown action: {action}"}
        except DownloadError as exc:
            response = {"success": False, "error": exc.message}
            if exc.need_refresh:
                response["needRefresh"] = True
            return response
        return {"success": True, "downloadId": transfer_id}

    def handle_event(self, event: TransferEvent) -> None:
        """React to a platform lifecycle event. Untracked ids are ignored."""
        record = self.registry.get(event.transfer_id)
        if record is None:
            return

        if event.state is TransferState.COMPLETE:
            self.logger.info(f"Download complete (ID: {event.transfer_id})")
            self.registry.delete(event.transfer_id)
            self.notifier.complete(event.transfer_id)
        elif event.state is TransferState.INTERRUPTED:
            self.logger.warning(f"Download interrupted (ID: {event.transfer_id})")
            raw_error = event.error_reason or INTERRUPTED
            task = asyncio.ensure_future(self._retry(event.transfer_id, record, raw_error))
            self._retry_tasks.add(task)
            task.add_done_callback(self._retry_tasks.discard)
        elif event.state is TransferState.PROGRESS:
            self.logger.debug(
                f"Transfer {event.transfer_id}: {event.bytes_received} bytes received"
            )

    async def _retry(self, transfer_id: int, record: TransferRecord, raw_error) -> Optional[int]:
        try:
            return await self.scheduler.handle_failure(transfer_id, record, raw_error)
        except DownloadError as exc:
            self.logger.error(exc.message)
            self.analyzer.categorize_and_record(record.request.target_filename, exc)
            self.notifier.failed(exc.message, need_refresh=exc.need_refresh)
        except Exception as exc:
            self.registry.delete(transfer_id)
            self.logger.record_exception(exc)
            self.analyzer.categorize_and_record(record.request.target_filename, exc)
            self.notifier.failed(error_reason(exc))
        return None

    @property
    def busy(self) -> bool:
        return bool(len(self.registry) or self._retry_tasks)

    async def wait_for_retries(self) -> None:
        """Wait for retry decisions already in progress to settle."""
        while self._retry_tasks:
            await asyncio.gather(*list(self._retry_tasks), return_exceptions=True)

    async def join(self, poll_interval: float = 0.1) -> None:
        """Wait until no transfer is tracked, no retry is pending and the
        platform has finished its transfer tasks.
        """
        while self.busy:
            await self.wait_for_retries()
            if len(self.registry):
                await asyncio.sleep(poll_interval)
        await self.platform.wait_closed()
