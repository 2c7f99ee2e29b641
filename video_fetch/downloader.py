"""Command-line download flow: resolve pages, submit downloads, wait for outcomes."""

import asyncio
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .errors import DownloadError, FailureAnalyzer
from .extractor import build_filename, fetch_blob, normalize_media_url, resolve_media
from .logger import TransferLogger
from .models import MediaInfo, RetryPolicy
from .orchestrator import DownloadOrchestrator
from .platform import BlobStore, LocalTransferPlatform
from .ytdlp_options import select_random_user_agent


@dataclass
class DownloadSummary:
    """Outcome counts for one run."""
    requested: int = 0
    started: int = 0
    completed: int = 0
    failed: int = 0

    def format(self) -> str:
        parts = [f"{self.completed}/{self.requested} downloaded"]
        if self.failed:
            parts.append(f"{self.failed} failed")
        pending = self.requested - self.completed - self.failed
        if pending > 0:
            parts.append(f"{pending} unfinished")
        return ", ".join(parts)


def build_download_message(
    url: str,
    args,
    logger: TransferLogger,
    blob_store: BlobStore,
    filename: Optional[str] = None,
    resolver: Callable[..., MediaInfo] = resolve_media,
) -> Dict:
    """Turn a page (or media) URL into an inbound ``download``/``downloadBlob`` message."""
    if args.direct:
        media = MediaInfo(url=normalize_media_url(url))
    else:
        media = resolver(url, args, logger)
        logger.info(f"Resolved media URL for {url}")

    filename = filename or build_filename(media.title, media.ext)

    if args.blob:
        handle = fetch_blob(media, timeout=args.timeout)
        return {
            "action": "downloadBlob",
            "blobUrl": blob_store.create_url(handle),
            "filename": filename,
        }
    return {"action": "download", "url": media.url, "filename": filename}


def build_orchestrator(
    args, logger: TransferLogger, analyzer: FailureAnalyzer
) -> DownloadOrchestrator:
    headers = {"referer": args.referer} if getattr(args, "referer", None) else None
    platform = LocalTransferPlatform(
        args.output,
        headers=headers,
        user_agent=select_random_user_agent(),
        timeout=args.timeout,
        logger=logger,
    )
    return DownloadOrchestrator(
        platform,
        policy=RetryPolicy.from_args(args),
        logger=logger,
        analyzer=analyzer,
        precheck=args.precheck,
    )


async def download_urls(
    urls: List[str],
    args,
    logger: Optional[TransferLogger] = None,
    analyzer: Optional[FailureAnalyzer] = None,
    resolver: Callable[..., MediaInfo] = resolve_media,
    orchestrator: Optional[DownloadOrchestrator] = None,
) -> DownloadSummary:
    """Download every URL and wait until each logical download has finished."""
    logger = logger or TransferLogger()
    analyzer = analyzer or FailureAnalyzer()
    orchestrator = orchestrator or build_orchestrator(args, logger, analyzer)
    orchestrator.initialize()
    blob_store = orchestrator.platform.blob_store
    summary = DownloadSummary(requested=len(urls))

    def on_notification(message: Dict) -> None:
        action = message.get("action")
        if action == "downloadStarted":
            summary.started += 1
            print(f"[started] download {message['downloadId']}")
        elif action == "downloadComplete":
            summary.completed += 1
            print(f"[done] download {message['downloadId']}")
        elif action == "downloadFailed":
            summary.failed += 1
            hint = " (refresh the page and retry)" if message.get("needRefresh") else ""
            print(f"[failed] {message.get('error')}{hint}")

    orchestrator.notifier.add_listener(on_notification)

    filename = getattr(args, "filename", None) if len(urls) == 1 else None
    blob_urls: List[str] = []

    for url in urls:
        # The logger is shared with running transfers: the URL goes in the message text
        try:
            message = await asyncio.to_thread(
                build_download_message, url, args, logger, blob_store, filename, resolver
            )
        except DownloadError as exc:
            summary.failed += 1
            analyzer.categorize_and_record(url, exc)
            logger.error(f"Skipping {url}: {exc}")
            continue

        if message["action"] == "downloadBlob":
            blob_urls.append(message["blobUrl"])
        await orchestrator.handle_message(message)

    await orchestrator.join()
    for blob_url in blob_urls:
        blob_store.revoke(blob_url)
    orchestrator.notifier.remove_listener(on_notification)
    return summary
