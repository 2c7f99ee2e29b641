"""Loading lists of video URLs from local or remote text files."""

import re
import sys
import time
import urllib.error
import urllib.request
from typing import List, Optional

from .errors import RemoteSourceError
from .models import normalize_url


def parse_url_line(line: str) -> Optional[str]:
    """Parse one line of a URL list. Blank lines and comments yield None."""
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None

    comment_match = re.search(r"\s#", stripped)
    if comment_match:
        stripped = stripped[: comment_match.start()].rstrip()
        if not stripped:
            return None

    return normalize_url(stripped)


def _parse_lines(lines, origin: str) -> List[str]:
    urls: List[str] = []
    for idx, line in enumerate(lines, start=1):
        try:
            parsed = parse_url_line(line)
        except ValueError as exc:
            raise ValueError(f"{origin}:{idx}: {exc}") from exc
        if parsed:
            urls.append(parsed)
    return urls


def load_urls_from_file(path: str) -> List[str]:
    """Load URLs from a local file."""
    with open(path, "r", encoding="utf-8") as f:
        urls = _parse_lines(f, path)
    print(f"Loaded {len(urls)} URLs from {path}")
    return urls


def load_urls_from_url(url: str, max_retries: int = 4, base_delay: float = 2.0, sleep=time.sleep) -> List[str]:
    """Load URLs from a remote list with retry logic."""
    print(f"\nFetching URL list from {url} ...")

    data = ""
    for attempt in range(max_retries):
        try:
            with urllib.request.urlopen(url, timeout=30) as response:
                data = response.read().decode("utf-8")
            break  # Success, exit retry loop
        except (urllib.error.HTTPError, urllib.error.URLError) as exc:
            if attempt < max_retries - 1:
                delay = base_delay * (2 ** attempt)  # Exponential backoff: 2s, 4s, 8s
                print(f"Failed to fetch (attempt {attempt + 1}/{max_retries}): {exc}. Retrying in {delay}s...", file=sys.stderr)
                sleep(delay)
            else:
                raise RemoteSourceError(f"Failed to fetch URL list from {url} after {max_retries} attempts: {exc}") from exc

    try:
        urls = _parse_lines(data.splitlines(), url)
    except ValueError as exc:
        raise RemoteSourceError(f"Failed to parse URL list from {url}: {exc}") from exc
    print(f"Loaded {len(urls)} URLs from remote list")
    return urls
