"""Failure classification and the exception hierarchy for the video fetcher."""

import sys
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

from .models import RETRYABLE_REASONS, UNKNOWN_ERROR, ErrorPattern


LINK_ERROR_FRAGMENTS = ("URL", "link")
NETWORK_FRAGMENTS = ("NETWORK", "INTERRUPTED")

LINK_EXPIRED_MESSAGE = "The video link may have expired, refresh the page and try again"
NETWORK_UNAVAILABLE_MESSAGE = "Network connection unavailable, check your network and try again"


class DownloadError(Exception):
    """Base class for every failure surfaced to a caller."""

    need_refresh = False

    def __init__(self, message: str, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason

    def __str__(self) -> str:
        return self.message


class ValidationError(DownloadError):
    """The request is missing a URL or filename. Never retried."""


class LinkExpiredError(ValidationError):
    """The source link is invalid or expired; the page should be refreshed."""

    need_refresh = True


class ExtractionError(DownloadError):
    """No playable media URL could be found on a page."""


class TransientError(DownloadError):
    """A failure that may go away on its own."""


class TransientNetworkError(TransientError):
    """Connection level failure; retried after the network is reachable again."""


class TransientServerError(TransientError):
    """Server side failure; retried with backoff only."""


class FatalTransferError(DownloadError):
    """Non-retryable failure or retries exhausted."""


class NetworkUnavailableError(FatalTransferError):
    """The network did not come back while waiting to retry."""


class RemoteSourceError(Exception):
    """Raised when a remote URL list cannot be retrieved or parsed."""


@dataclass(frozen=True)
class ErrorVerdict:
    """Normalized failure reason and whether it is worth another attempt."""
    reason: str
    retryable: bool

    @property
    def needs_network_check(self) -> bool:
        return any(fragment in self.reason for fragment in NETWORK_FRAGMENTS)

    @property
    def category(self) -> str:
        if self.needs_network_check:
            return "network"
        if self.retryable:
            return "server"
        return "fatal"


def _text_field(value) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


def error_reason(raw) -> str:
    """Reduce a failure of any shape to a single reason string."""
    try:
        if isinstance(raw, str):
            return raw or UNKNOWN_ERROR
        if isinstance(raw, DownloadError):
            return raw.reason or raw.message or UNKNOWN_ERROR
        if isinstance(raw, BaseException):
            return str(raw) or type(raw).__name__
        if isinstance(raw, Mapping):
            return (
                _text_field(raw.get("message"))
                or _text_field(raw.get("current"))
                or UNKNOWN_ERROR
            )
        if raw is not None:
            return (
                _text_field(getattr(raw, "message", None))
                or _text_field(getattr(raw, "current", None))
                or UNKNOWN_ERROR
            )
    except Exception:
        # Objects with hostile __str__ or __getattr__ still get a verdict
        pass
    return UNKNOWN_ERROR


def classify_error(
    raw, retryable_reasons: FrozenSet[str] = RETRYABLE_REASONS
) -> ErrorVerdict:
    """Classify a raw failure signal. Never raises."""
    reason = error_reason(raw)
    retryable = reason in retryable_reasons or any(
        fragment in reason for fragment in NETWORK_FRAGMENTS
    )
    return ErrorVerdict(reason=reason, retryable=retryable)


def is_link_error(message: str) -> bool:
    """True when a start failure points at a bad or expired source link."""
    return any(fragment in message for fragment in LINK_ERROR_FRAGMENTS)


def error_for_verdict(verdict: ErrorVerdict, message: Optional[str] = None) -> DownloadError:
    """Build the exception matching a verdict's category."""
    text = message or verdict.reason
    if verdict.category == "network":
        return TransientNetworkError(text, reason=verdict.reason)
    if verdict.category == "server":
        return TransientServerError(text, reason=verdict.reason)
    return FatalTransferError(text, reason=verdict.reason)


class FailureAnalyzer:
    """Collects terminal failures by category and suggests what to do next."""

    CATEGORIES = (
        "link_expired",
        "validation",
        "extraction",
        "network_unavailable",
        "retries_exhausted",
        "fatal",
        "unknown",
    )

    def __init__(self) -> None:
        self.patterns: Dict[str, ErrorPattern] = {
            name: ErrorPattern(name) for name in self.CATEGORIES
        }
        self.total_errors = 0
        self.error_log_path: Optional[str] = None

    def set_error_log_path(self, path: str) -> None:
        """Set the path for the detailed error log file."""
        self.error_log_path = path

    @staticmethod
    def categorize(error) -> str:
        if isinstance(error, LinkExpiredError) or getattr(error, "need_refresh", False):
            return "link_expired"
        if isinstance(error, ValidationError):
            return "validation"
        if isinstance(error, ExtractionError):
            return "extraction"
        if isinstance(error, NetworkUnavailableError):
            return "network_unavailable"
        if isinstance(error, FatalTransferError):
            verdict = classify_error(error.reason or "")
            return "retries_exhausted" if verdict.retryable else "fatal"
        return "unknown"

    def categorize_and_record(self, target: Optional[str], error) -> str:
        """Categorize a failure and record it. Returns the category."""
        self.total_errors += 1
        category = self.categorize(error)
        message = str(error)

        self.patterns[category].record(target, message)

        if self.error_log_path:
            self._append_to_error_log(target, category, message)

        return category

    def _append_to_error_log(self, target: Optional[str], category: str, message: str) -> None:
        """Append failure details to the error log file."""
        try:
            timestamp = datetime.now().isoformat()
            log_entry = f"[{timestamp}] [{category}] {target or 'unknown'}: {message}\n"

            with open(self.error_log_path, "a", encoding="utf-8") as f:
                f.write(log_entry)
        except OSError as e:
            # Don't fail the run if error logging fails
            print(f"Warning: Failed to write to error log: {e}", file=sys.stderr)

    def get_recommendations(self) -> List[str]:
        """Generate recommendations based on recorded failures."""
        if self.total_errors == 0:
            return ["No errors detected - all downloads completed successfully!"]

        recommendations = []
        counts = {name: pattern.count for name, pattern in self.patterns.items()}

        if counts["link_expired"]:
            recommendations.append(
                f"Expired links ({counts['link_expired']}): "
                "media URLs are short-lived. Re-run against the page URL instead of --direct."
            )
        if counts["validation"]:
            recommendations.append(
                f"Invalid requests ({counts['validation']}): "
                "every download needs both a source URL and a filename."
            )
        if counts["extraction"]:
            recommendations.append(
                f"No media found ({counts['extraction']}): "
                "the page may require login. Try --cookies-from-browser."
            )
        if counts["network_unavailable"]:
            recommendations.append(
                f"Network unavailable ({counts['network_unavailable']}): "
                "check your connection or --probe-url, then retry."
            )
        if counts["retries_exhausted"]:
            recommendations.append(
                f"Retries exhausted ({counts['retries_exhausted']}): "
                "the server kept failing. Raise --max-retries or --max-retry-delay."
            )
        if counts["fatal"]:
            recommendations.append(
                f"Non-retryable failures ({counts['fatal']}): "
                "check the output directory permissions and free space."
            )
        if counts["unknown"]:
            recommendations.append(
                f"Unknown errors ({counts['unknown']}): "
                "check the error log for details."
            )
        return recommendations

    def print_summary(self) -> None:
        """Print a formatted summary of failures."""
        if self.total_errors == 0:
            print("\nNo download failures.")
            return

        print("\n" + "=" * 70)
        print("Failure Analysis")
        print("=" * 70)
        print(f"Total failures: {self.total_errors}\n")

        sorted_patterns = sorted(
            self.patterns.items(), key=lambda item: item[1].count, reverse=True
        )
        for name, pattern in sorted_patterns:
            if pattern.count > 0:
                print(f"{name.replace('_', ' ').title()}: {pattern.count} occurrences")
                if pattern.sample_messages:
                    print(f"  Sample: {pattern.sample_messages[0][:80]}")
                print()

        print("=" * 70)
        print("Recommendations")
        print("=" * 70)
        for rec in self.get_recommendations():
            print(f"{rec}\n")

        if self.error_log_path:
            print(f"Detailed error log: {self.error_log_path}")
