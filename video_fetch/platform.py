"""The transfer primitive: start a download and report its lifecycle events."""

import asyncio
import contextlib
import errno
import http.client
import itertools
import os
import socket
import ssl
import urllib.error
import urllib.parse
import urllib.request
import uuid
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Union

from .errors import ValidationError
from .logger import TransferLogger
from .models import (
    DEFAULT_REFERER,
    BinaryHandle,
    ConflictPolicy,
    Locator,
    TransferEvent,
    TransferState,
)

EventListener = Callable[[TransferEvent], None]

SAFE_HEADER_NAMES = (
    "accept",
    "accept-language",
    "content-language",
    "content-type",
    "referer",
)

DEFAULT_CHUNK_SIZE = 256 * 1024
DEFAULT_TIMEOUT = 30.0


def safe_headers(headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Merge caller headers over the defaults, keeping only allowed names."""
    merged = {"referer": DEFAULT_REFERER, "accept": "*/*"}
    for name, value in (headers or {}).items():
        if not isinstance(name, str) or not isinstance(value, str):
            continue
        lowered = name.lower()
        if lowered in SAFE_HEADER_NAMES:
            merged[lowered] = value
    return merged


def reason_for_status(status: int) -> str:
    if status == 401:
        return "SERVER_UNAUTHORIZED"
    if status == 403:
        return "SERVER_FORBIDDEN"
    if status in (404, 410):
        return "SERVER_BAD_CONTENT"
    if status == 416:
        return "SERVER_NO_RANGE"
    return "SERVER_FAILED"


def reason_for_exception(exc: BaseException) -> str:
    """Translate an exception raised while transferring into a failure code.

    Order matters: several of these exception types subclass each other.
    """
    if isinstance(exc, urllib.error.HTTPError):
        return reason_for_status(exc.code)
    if isinstance(exc, http.client.RemoteDisconnected):
        return "NETWORK_DISCONNECTED"
    if isinstance(exc, ConnectionResetError):
        return "CONNECTION_RESET"
    if isinstance(exc, (socket.timeout, TimeoutError)):
        return "NETWORK_TIMEOUT"
    if isinstance(exc, http.client.IncompleteRead):
        return "NETWORK_DISCONNECTED"
    if isinstance(exc, http.client.HTTPException):
        return "NETWORK_FAILED"
    if isinstance(exc, urllib.error.URLError):
        if isinstance(exc.reason, (socket.timeout, TimeoutError)):
            return "NETWORK_TIMEOUT"
        return "NETWORK_FAILED"
    if isinstance(exc, (ConnectionError, ssl.SSLError)):
        return "NETWORK_FAILED"
    if isinstance(exc, OSError):
        if exc.errno == errno.ENOSPC:
            return "FILE_NO_SPACE"
        if exc.errno in (errno.EACCES, errno.EPERM):
            return "FILE_ACCESS_DENIED"
        return "FILE_FAILED"
    return type(exc).__name__


class BlobStore:
    """Keeps fetched media bytes addressable by ``blob:`` URLs."""

    def __init__(self) -> None:
        self._blobs: Dict[str, BinaryHandle] = {}

    def create_url(self, handle: BinaryHandle) -> str:
        url = f"blob:{uuid.uuid4()}"
        self._blobs[url] = handle
        return url

    def resolve(self, url: str) -> Optional[BinaryHandle]:
        return self._blobs.get(url)

    def revoke(self, url: str) -> None:
        self._blobs.pop(url, None)

    def __len__(self) -> int:
        return len(self._blobs)


class TransferPlatform:
    """Starts transfers and reports their lifecycle to listeners."""

    def __init__(self, logger: Optional[TransferLogger] = None) -> None:
        self.logger = logger or TransferLogger()
        self._listeners: List[EventListener] = []

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def _emit(self, event: TransferEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                self.logger.error(
                    f"Listener failed on {event.state.value} event for transfer "
                    f"{event.transfer_id}: {exc}"
                )

    async def start(
        self,
        locator: Locator,
        filename: str,
        conflict_policy: Union[ConflictPolicy, str] = ConflictPolicy.UNIQUIFY,
    ) -> int:
        raise NotImplementedError

    async def wait_closed(self) -> None:
        """Wait for transfers that are still running. Nothing to wait for here."""


class LocalTransferPlatform(TransferPlatform):
    """Downloads into a local directory, one asyncio task per transfer.

    The HTTP body is streamed by urllib in a worker thread into a ``.part``
    file that is renamed into place once complete.
    """

    def __init__(
        self,
        output_dir: Union[str, Path],
        headers: Optional[Dict[str, str]] = None,
        user_agent: Optional[str] = None,
        blob_store: Optional[BlobStore] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
        logger: Optional[TransferLogger] = None,
    ) -> None:
        super().__init__(logger)
        self.output_dir = Path(output_dir)
        self.headers = safe_headers(headers)
        if user_agent:
            self.headers["user-agent"] = user_agent
        self.blob_store = blob_store or BlobStore()
        self.chunk_size = chunk_size
        self.timeout = timeout
        self._ids = itertools.count(1)
        self._reserved: Set[Path] = set()
        self._tasks: Set[asyncio.Task] = set()

    def _resolve_locator(self, locator: Locator) -> Locator:
        if isinstance(locator, BinaryHandle):
            return locator
        if not locator or not isinstance(locator, str):
            raise ValidationError(f"Invalid URL: {locator!r}")
        if locator.startswith("blob:"):
            handle = self.blob_store.resolve(locator)
            if handle is None:
                raise ValidationError(f"Invalid blob URL: {locator}")
            return handle
        parsed = urllib.parse.urlparse(locator)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError(f"Invalid URL: {locator}")
        return locator

    def _reserve_target(self, filename: str, policy: ConflictPolicy) -> Path:
        relative = Path(filename) if filename else None
        if relative is None or relative.is_absolute() or ".." in relative.parts:
            raise ValidationError(f"Invalid filename: {filename!r}")

        target = self.output_dir / relative
        target.parent.mkdir(parents=True, exist_ok=True)

        if policy is ConflictPolicy.UNIQUIFY:
            candidate = target
            counter = 1
            while candidate.exists() or candidate in self._reserved:
                candidate = target.with_name(f"{target.stem} ({counter}){target.suffix}")
                counter += 1
            target = candidate

        self._reserved.add(target)
        return target

    async def start(
        self,
        locator: Locator,
        filename: str,
        conflict_policy: Union[ConflictPolicy, str] = ConflictPolicy.UNIQUIFY,
    ) -> int:
        """Begin a transfer and return its id. Events follow asynchronously."""
        policy = ConflictPolicy(conflict_policy)
        source = self._resolve_locator(locator)
        await asyncio.to_thread(self.output_dir.mkdir, parents=True, exist_ok=True)
        target = self._reserve_target(filename, policy)

        transfer_id = next(self._ids)
        task = asyncio.create_task(self._run(transfer_id, source, target))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return transfer_id

    def _fetch(self, transfer_id: int, source: Locator, part_path: Path, loop) -> int:
        if isinstance(source, BinaryHandle):
            part_path.write_bytes(source.data)
            return len(source)

        def report(received: int) -> None:
            event = TransferEvent(transfer_id, TransferState.PROGRESS, bytes_received=received)
            loop.call_soon_threadsafe(self._emit, event)

        request = urllib.request.Request(source, headers=self.headers)
        received = 0
        with urllib.request.urlopen(request, timeout=self.timeout) as response, open(
            part_path, "wb"
        ) as handle:
            while True:
                chunk = response.read(self.chunk_size)
                if not chunk:
                    break
                handle.write(chunk)
                received += len(chunk)
                report(received)
        return received

    async def _run(self, transfer_id: int, source: Locator, target: Path) -> None:
        self._emit(TransferEvent(transfer_id, TransferState.STARTED))
        part_path = target.with_name(target.name + ".part")
        loop = asyncio.get_running_loop()

        try:
            received = await asyncio.to_thread(
                self._fetch, transfer_id, source, part_path, loop
            )
            await asyncio.to_thread(os.replace, part_path, target)
        except Exception as exc:
            reason = reason_for_exception(exc)
            self.logger.debug(f"Transfer {transfer_id} interrupted ({reason}): {exc}")
            with contextlib.suppress(OSError):
                part_path.unlink()
            self._reserved.discard(target)
            self._emit(
                TransferEvent(transfer_id, TransferState.INTERRUPTED, error_reason=reason)
            )
            return

        self._reserved.discard(target)
        self._emit(
            TransferEvent(transfer_id, TransferState.COMPLETE, bytes_received=received)
        )

    async def wait_closed(self) -> None:
        """Wait for every running transfer task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
