"""Data models, enums, and constants for the video fetcher."""

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Union


# Failure codes reported by the transfer platform that are worth retrying
RETRYABLE_REASONS: FrozenSet[str] = frozenset(
    {
        "NETWORK_FAILED",
        "SERVER_FAILED",
        "SERVER_BAD_CONTENT",
        "NETWORK_DISCONNECTED",
        "NETWORK_TIMEOUT",
        "INTERRUPTED",
        "NETWORK_ERROR",
        "CONNECTION_RESET",
    }
)

UNKNOWN_ERROR = "Unknown error"
INTERRUPTED = "INTERRUPTED"

# Defaults (seconds)
DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_RETRY_DELAY = 2.0
DEFAULT_MAX_RETRY_DELAY = 30.0
DEFAULT_PROBE_URL = "https://www.gstatic.com/generate_204"
DEFAULT_PROBE_ATTEMPTS = 3
DEFAULT_PROBE_INTERVAL = 5.0
DEFAULT_PROBE_TIMEOUT = 5.0
DEFAULT_MIN_INTERVAL = 3.0
DEFAULT_MAX_INTERVAL_WAIT = 10.0

DEFAULT_REFERER = "https://www.douyin.com/"

# User-Agent rotation pool to appear as different browsers
USER_AGENTS = [
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15',
    'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0',
]


@dataclass(frozen=True)
class BinaryHandle:
    """Media bytes fetched ahead of time, saved without touching the network again."""
    data: bytes
    content_type: Optional[str] = None

    def __len__(self) -> int:
        return len(self.data)


Locator = Union[str, BinaryHandle]


@dataclass(frozen=True)
class TransferRequest:
    """What the caller asked for: a source and the filename to save it under."""
    source_locator: Locator
    target_filename: str

    def describe(self) -> str:
        if isinstance(self.source_locator, BinaryHandle):
            return f"<{len(self.source_locator)} bytes>"
        return str(self.source_locator)


@dataclass
class TransferRecord:
    """Retry bookkeeping for one in-flight transfer id."""
    request: TransferRequest
    retry_count: int = 0
    last_error: Optional[str] = None
    last_attempt_time: float = field(default_factory=time.time)


class TransferState(Enum):
    """Lifecycle states reported by the transfer platform."""
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETE = "complete"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True)
class TransferEvent:
    """A lifecycle change for one transfer id."""
    transfer_id: int
    state: TransferState
    error_reason: Optional[str] = None
    bytes_received: int = 0


class ConflictPolicy(Enum):
    """What to do when the target file already exists."""
    UNIQUIFY = "uniquify"
    OVERWRITE = "overwrite"


@dataclass(frozen=True)
class NetworkProbeSettings:
    url: str = DEFAULT_PROBE_URL
    max_attempts: int = DEFAULT_PROBE_ATTEMPTS
    poll_interval: float = DEFAULT_PROBE_INTERVAL
    timeout: float = DEFAULT_PROBE_TIMEOUT


@dataclass(frozen=True)
class PacingSettings:
    enabled: bool = True
    min_interval: float = DEFAULT_MIN_INTERVAL
    max_wait: float = DEFAULT_MAX_INTERVAL_WAIT


@dataclass(frozen=True)
class RetryPolicy:
    """Process-wide retry configuration. Delays are in seconds."""
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay: float = DEFAULT_INITIAL_RETRY_DELAY
    max_delay: float = DEFAULT_MAX_RETRY_DELAY
    retryable_reasons: FrozenSet[str] = RETRYABLE_REASONS
    network_probe: NetworkProbeSettings = field(default_factory=NetworkProbeSettings)
    pacing: PacingSettings = field(default_factory=PacingSettings)

    @classmethod
    def from_args(cls, args) -> "RetryPolicy":
        """Build a policy from parsed command-line arguments."""
        return cls(
            max_retries=args.max_retries,
            initial_delay=args.initial_retry_delay,
            max_delay=args.max_retry_delay,
            network_probe=NetworkProbeSettings(
                url=args.probe_url,
                max_attempts=args.probe_attempts,
                poll_interval=args.probe_interval,
                timeout=args.probe_timeout,
            ),
            pacing=PacingSettings(
                enabled=not args.no_pacing,
                min_interval=args.min_interval,
                max_wait=args.max_interval_wait,
            ),
        )


@dataclass(frozen=True)
class MediaInfo:
    """A playable media URL resolved from a video page."""
    url: str
    title: Optional[str] = None
    ext: Optional[str] = None
    http_headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class ErrorPattern:
    """Tracks a specific failure category and its occurrences."""
    error_type: str
    count: int = 0
    targets: List[str] = field(default_factory=list)
    sample_messages: List[str] = field(default_factory=list)
    first_seen: Optional[float] = None
    last_seen: Optional[float] = None

    def record(self, target: Optional[str], message: str) -> None:
        """Record an occurrence of this failure category."""
        self.count += 1
        timestamp = time.time()

        if self.first_seen is None:
            self.first_seen = timestamp
        self.last_seen = timestamp

        if target and target not in self.targets:
            self.targets.append(target)

        # Keep only the first 5 sample messages to avoid memory bloat
        if len(self.sample_messages) < 5 and message not in self.sample_messages:
            self.sample_messages.append(message)


def normalize_url(url: str) -> str:
    """Normalize and validate a URL."""
    cleaned = url.strip()
    if not cleaned:
        raise ValueError("missing URL")

    if not re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", cleaned):
        cleaned = "https://" + cleaned.lstrip("/")

    return cleaned.rstrip("/")
