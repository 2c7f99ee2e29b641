"""Video page downloader with paced starts and network-aware retries."""

# Import main components for easier access
from .config import non_negative_float, parse_args, positive_int
from .downloader import DownloadSummary, build_download_message, download_urls
from .errors import (
    DownloadError,
    ErrorVerdict,
    ExtractionError,
    FailureAnalyzer,
    FatalTransferError,
    LinkExpiredError,
    NetworkUnavailableError,
    RemoteSourceError,
    TransientError,
    TransientNetworkError,
    TransientServerError,
    ValidationError,
    classify_error,
)
from .extractor import build_filename, extract_url_from_html, resolve_media
from .health_check import run_health_check
from .logger import TransferLogger
from .models import (
    RETRYABLE_REASONS,
    BinaryHandle,
    MediaInfo,
    NetworkProbeSettings,
    PacingSettings,
    RetryPolicy,
    TransferEvent,
    TransferRecord,
    TransferRequest,
    TransferState,
)
from .network import NetworkHealthProbe, check_url
from .notifier import Notifier
from .orchestrator import DownloadOrchestrator
from .pacing import PacingGate, PacingState
from .platform import BlobStore, LocalTransferPlatform, TransferPlatform
from .registry import TransferRegistry
from .retry import RetryScheduler, backoff_delay
from .sources import load_urls_from_file, load_urls_from_url, parse_url_line

__all__ = [
    # Main entry points
    "parse_args",
    "download_urls",
    "run_health_check",
    "DownloadOrchestrator",
    # Download pipeline
    "PacingGate",
    "PacingState",
    "RetryScheduler",
    "TransferRegistry",
    "NetworkHealthProbe",
    "Notifier",
    "TransferPlatform",
    "LocalTransferPlatform",
    "BlobStore",
    "backoff_delay",
    "check_url",
    # Page resolution
    "resolve_media",
    "extract_url_from_html",
    "build_filename",
    "build_download_message",
    # Sources
    "parse_url_line",
    "load_urls_from_file",
    "load_urls_from_url",
    # Models and data structures
    "BinaryHandle",
    "MediaInfo",
    "TransferRequest",
    "TransferRecord",
    "TransferEvent",
    "TransferState",
    "RetryPolicy",
    "NetworkProbeSettings",
    "PacingSettings",
    "DownloadSummary",
    "RETRYABLE_REASONS",
    # Errors
    "classify_error",
    "ErrorVerdict",
    "FailureAnalyzer",
    "DownloadError",
    "ValidationError",
    "LinkExpiredError",
    "ExtractionError",
    "TransientError",
    "TransientNetworkError",
    "TransientServerError",
    "FatalTransferError",
    "NetworkUnavailableError",
    "RemoteSourceError",
    "TransferLogger",
    # Configuration
    "positive_int",
    "non_negative_float",
]
