"""Network reachability probing and the advisory source URL check."""

import asyncio
import http.client
import urllib.error
import urllib.parse
import urllib.request
from typing import Awaitable, Callable, Dict, Optional

from .logger import TransferLogger
from .models import DEFAULT_REFERER, NetworkProbeSettings


class NetworkHealthProbe:
    """Checks whether a well-known endpoint answers, optionally polling until it does."""

    def __init__(
        self,
        settings: Optional[NetworkProbeSettings] = None,
        logger: Optional[TransferLogger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or NetworkProbeSettings()
        self.logger = logger or TransferLogger()
        self._sleep = sleep

    def _probe_once(self) -> bool:
        request = urllib.request.Request(
            self.settings.url,
            method="HEAD",
            headers={"Cache-Control": "no-cache"},
        )
        try:
            with urllib.request.urlopen(request, timeout=self.settings.timeout):
                return True
        except urllib.error.HTTPError:
            # Any status code means the request reached something
            return True
        except http.client.HTTPException:
            return True
        except (urllib.error.URLError, OSError, ValueError) as exc:
            self.logger.warning(f"Network check against {self.settings.url} failed: {exc}")
            return False

    async def is_reachable(self) -> bool:
        """Issue a single probe."""
        return await asyncio.to_thread(self._probe_once)

    async def await_recovery(self, max_attempts: Optional[int] = None) -> bool:
        """Probe up to ``max_attempts`` times, sleeping between attempts.

        Returns True on the first successful probe and False once every
        attempt has failed.
        """
        attempts = self.settings.max_attempts if max_attempts is None else max_attempts
        for attempt in range(1, attempts + 1):
            if await self.is_reachable():
                if attempt > 1:
                    self.logger.info(f"Network reachable again after {attempt} checks")
                return True
            if attempt < attempts:
                await self._sleep(self.settings.poll_interval)
        return False


def _request_status(url: str, method: str, headers: Dict[str, str], timeout: float) -> int:
    request = urllib.request.Request(url, method=method, headers=headers)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            return response.status
    except urllib.error.HTTPError as exc:
        return exc.code


async def check_url(
    url,
    logger: Optional[TransferLogger] = None,
    timeout: float = 10.0,
    user_agent: Optional[str] = None,
) -> bool:
    """Advisory check of a media URL before downloading it.

    Returns False only for URLs that are malformed. Requests that fail are
    logged and still reported as usable so the download gets its chance.
    """
    logger = logger or TransferLogger()
    if not url or not isinstance(url, str):
        logger.warning(f"Invalid URL format: {url!r}")
        return False

    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        logger.warning(f"Invalid URL format: {url}")
        return False
    if not parsed.path or parsed.path == "/":
        logger.warning(f"URL has no path: {url}")
        return False

    headers = {"Referer": DEFAULT_REFERER, "Accept": "*/*", "Cache-Control": "no-cache"}
    if user_agent:
        headers["User-Agent"] = user_agent

    for method in ("HEAD", "GET"):
        try:
            status = await asyncio.to_thread(_request_status, url, method, headers, timeout)
        except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as exc:
            logger.warning(f"{method} check failed for {url}: {exc}")
            continue
        if status >= 400:
            logger.warning(f"{method} check for {url} returned HTTP {status}")
        return True

    logger.warning("URL check failed, continuing with the download anyway")
    return True
