"""Resolve a playable media URL from a video page."""

import html as html_lib
import re
import time
import urllib.error
import urllib.request
from typing import Dict, Optional

import yt_dlp
from yt_dlp.utils import DownloadError as YtDlpDownloadError
from yt_dlp.utils import ExtractorError

from .errors import DownloadError, ExtractionError, classify_error, error_for_verdict
from .logger import TransferLogger
from .models import BinaryHandle, MediaInfo
from .platform import reason_for_exception
from .ytdlp_options import build_ydl_options, select_random_user_agent

# JSON fields that carry the play address in embedded page data
VIDEO_URL_PATTERNS = (
    re.compile(r'"playAddr":"([^"]+)"'),
    re.compile(r'"playApi":"([^"]+)"'),
    re.compile(r'"videoUrl":"([^"]+)"'),
)

TITLE_PATTERN = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]+')

DEFAULT_TITLE = "video"
DEFAULT_EXT = "mp4"
PAGE_TIMEOUT = 30.0


def normalize_media_url(url: str) -> str:
    """Make scheme-relative and plain-http media URLs absolute https URLs."""
    if url.startswith("//"):
        url = "https:" + url
    if url.startswith("http://"):
        url = "https://" + url[len("http://"):]
    return url


def extract_url_from_html(page: str) -> Optional[str]:
    """Find a play address in a page's embedded script data."""
    for pattern in VIDEO_URL_PATTERNS:
        match = pattern.search(page)
        if match and match.group(1):
            return match.group(1).replace("\\u002F", "/")
    return None


def extract_title_from_html(page: str) -> Optional[str]:
    match = TITLE_PATTERN.search(page)
    if not match:
        return None
    title = html_lib.unescape(match.group(1)).strip()
    return title or None


def sanitize_title(title: Optional[str], max_length: int = 150) -> str:
    cleaned = UNSAFE_FILENAME_CHARS.sub("_", title or "").strip(" ._")
    cleaned = re.sub(r"\s+", " ", cleaned)
    return cleaned[:max_length].rstrip() or DEFAULT_TITLE


def build_filename(
    title: Optional[str], ext: Optional[str] = None, timestamp_ms: Optional[int] = None
) -> str:
    """``<title>_<milliseconds>.<ext>``; the timestamp keeps repeated titles apart."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{sanitize_title(title)}_{timestamp_ms}.{ext or DEFAULT_EXT}"


def pick_format(info: dict) -> Optional[dict]:
    """Choose the entry whose ``url`` should be downloaded.

    yt-dlp lists formats worst to best, so the last progressive (audio and
    video) format wins; any format with a URL is the fallback.
    """
    if info.get("url"):
        return info

    formats = [fmt for fmt in info.get("formats") or [] if fmt.get("url")]
    progressive = [
        fmt
        for fmt in formats
        if fmt.get("vcodec") != "none"
        and fmt.get("acodec") != "none"
        and fmt.get("protocol", "https") in ("http", "https")
    ]
    candidates = progressive or formats
    return candidates[-1] if candidates else None


def _media_from_info(info: dict) -> Optional[MediaInfo]:
    if info.get("_type") == "playlist":
        entries = [entry for entry in info.get("entries") or [] if entry]
        if not entries:
            return None
        info = entries[0]

    fmt = pick_format(info)
    if not fmt:
        return None

    headers: Dict[str, str] = dict(fmt.get("http_headers") or info.get("http_headers") or {})
    return MediaInfo(
        url=normalize_media_url(fmt["url"]),
        title=info.get("title"),
        ext=fmt.get("ext") or info.get("ext"),
        http_headers=headers,
    )


def fetch_page(url: str, user_agent: str, timeout: float = PAGE_TIMEOUT) -> str:
    request = urllib.request.Request(
        url, headers={"User-Agent": user_agent, "Accept": "text/html,*/*"}
    )
    with urllib.request.urlopen(request, timeout=timeout) as response:
        charset = response.headers.get_content_charset() or "utf-8"
        return response.read().decode(charset, "replace")


def resolve_media(page_url: str, args, logger: Optional[TransferLogger] = None) -> MediaInfo:
    """Find a downloadable media URL for ``page_url``.

    Asks yt-dlp first, then falls back to scanning the page source.
    """
    logger = logger or TransferLogger()
    user_agent = select_random_user_agent()
    ydl_opts = build_ydl_options(args, logger, user_agent=user_agent)

    info = None
    try:
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            info = ydl.extract_info(page_url, download=False)
    except (YtDlpDownloadError, ExtractorError) as exc:
        logger.warning(f"yt-dlp could not resolve {page_url}: {exc}; scanning page source")

    if info:
        media = _media_from_info(info)
        if media:
            return media

    try:
        page = fetch_page(page_url, user_agent)
    except (urllib.error.URLError, OSError, ValueError) as exc:
        raise ExtractionError(f"Failed to load {page_url}: {exc}") from exc

    url = extract_url_from_html(page)
    if not url:
        raise ExtractionError(f"No video URL found on {page_url}")

    return MediaInfo(
        url=normalize_media_url(url),
        title=extract_title_from_html(page),
        ext=DEFAULT_EXT,
        http_headers={"User-Agent": user_agent, "Referer": page_url},
    )


def fetch_blob(media: MediaInfo, timeout: float = PAGE_TIMEOUT) -> BinaryHandle:
    """Download the media bytes up front so they can be saved from memory."""
    headers = {"Accept": "*/*", **media.http_headers}
    request = urllib.request.Request(media.url, headers=headers)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            data = response.read()
            content_type = response.headers.get("Content-Type")
    except Exception as exc:
        verdict = classify_error(reason_for_exception(exc))
        error: DownloadError = error_for_verdict(verdict, f"Video download failed, try again: {exc}")
        raise error from exc
    return BinaryHandle(data=data, content_type=content_type)
