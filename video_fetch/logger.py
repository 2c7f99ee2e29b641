"""Console logger for transfers, retries and media resolution."""

import sys
from typing import Optional


class TransferLogger:
    """Prints context-prefixed messages and counts warnings, errors and retries.

    The debug/info/warning/error methods match what yt-dlp expects from its
    ``logger`` option, so one instance serves both the extractor and the
    download pipeline.
    """

    IGNORED_FRAGMENTS = (
        "falling back on generic information extractor",
    )

    def __init__(self, verbose: bool = False) -> None:
        self.verbose = verbose
        self.current_transfer_id: Optional[int] = None
        self.current_url: Optional[str] = None
        self.warning_count = 0
        self.error_count = 0
        self.retry_count = 0
        self.network_waits = 0

    def set_context(
        self, transfer_id: Optional[int] = None, url: Optional[str] = None
    ) -> None:
        self.current_transfer_id = transfer_id
        self.current_url = url

    def clear_context(self) -> None:
        self.set_context(None, None)

    def _format_with_context(self, message: str) -> str:
        context_parts = []
        if self.current_transfer_id is not None:
            context_parts.append(f"transfer_id={self.current_transfer_id}")
        if self.current_url:
            context_parts.append(f"url={self.current_url}")
        if context_parts:
            return f"[{' '.join(context_parts)}] {message}"
        return message

    def _print(self, message: str, file=None) -> None:
        print(self._format_with_context(message), file=file or sys.stdout)

    @staticmethod
    def _ensure_text(message) -> str:
        if isinstance(message, bytes):
            return message.decode("utf-8", "ignore")
        return str(message)

    def _is_ignored(self, text: str) -> bool:
        lowered = text.lower()
        return any(fragment in lowered for fragment in self.IGNORED_FRAGMENTS)

    def debug(self, message) -> None:  # yt-dlp calls this
        if self.verbose:
            self._print(self._ensure_text(message))

    def info(self, message) -> None:
        self._print(self._ensure_text(message))

    def warning(self, message) -> None:
        text = self._ensure_text(message)
        if self._is_ignored(text):
            return
        self.warning_count += 1
        self._print(text, file=sys.stderr)

    def error(self, message) -> None:
        text = self._ensure_text(message)
        self.error_count += 1
        self._print(text, file=sys.stderr)

    def retry(self, attempt: int, max_retries: int, delay: float, reason: str) -> None:
        """Log a scheduled retry. Retries are never surfaced as notifications."""
        self.retry_count += 1
        self._print(
            f"Retry {attempt}/{max_retries} in {delay:.1f}s after {reason}",
            file=sys.stderr,
        )

    def network_wait(self, reason: str) -> None:
        self.network_waits += 1
        self._print(
            f"Network problem detected ({reason}), waiting for connectivity...",
            file=sys.stderr,
        )

    def record_exception(self, exc: BaseException) -> None:
        self.error(self._ensure_text(str(exc)) or type(exc).__name__)
