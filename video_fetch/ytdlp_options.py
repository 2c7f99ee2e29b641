"""yt-dlp options for resolving media URLs without downloading."""

import random
import sys
from pathlib import Path
from typing import Dict, List, Optional

from .logger import TransferLogger
from .models import USER_AGENTS


def select_random_user_agent() -> str:
    """Select a random User-Agent from the pool to rotate through different browsers."""
    return random.choice(USER_AGENTS)


# Proxy lists read so far, by path; every page lookup in a run shares them
_proxy_pools: Dict[str, List[str]] = {}


def read_proxy_list(path: str) -> List[str]:
    """Proxies for page resolution, one per line. Unreadable files give no proxies."""
    try:
        lines = Path(path).read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        print(f"Warning: cannot read proxy list {path} ({exc}); resolving pages directly", file=sys.stderr)
        return []

    proxies = [line.strip() for line in lines if line.strip() and not line.lstrip().startswith("#")]
    if not proxies:
        print(f"Warning: proxy list {path} has no entries; resolving pages directly", file=sys.stderr)
    return proxies


def proxy_for_resolution(args) -> Optional[str]:
    """Proxy for the next page lookup: ``--proxy``, else a random ``--proxy-file`` entry."""
    if getattr(args, "proxy", None):
        return args.proxy

    path = getattr(args, "proxy_file", None)
    if not path:
        return None
    if path not in _proxy_pools:
        _proxy_pools[path] = read_proxy_list(path)
    pool = _proxy_pools[path]
    return random.choice(pool) if pool else None


def build_ydl_options(args, logger: TransferLogger, user_agent: Optional[str] = None) -> dict:
    """Build the yt-dlp options used to look up a page's media formats."""
    user_agent = user_agent or select_random_user_agent()
    proxy = proxy_for_resolution(args)

    http_headers = {"User-Agent": user_agent}
    referer = getattr(args, "referer", None)
    if referer:
        http_headers["Referer"] = referer

    ydl_opts = {
        "quiet": True,
        "no_warnings": False,
        "skip_download": True,
        "noplaylist": True,
        "logger": logger,
        "http_headers": http_headers,
    }

    if proxy:
        ydl_opts["proxy"] = proxy

    format_selector = getattr(args, "format", None)
    if format_selector:
        ydl_opts["format"] = format_selector

    cookies_from_browser = getattr(args, "cookies_from_browser", None)
    if cookies_from_browser:
        ydl_opts["cookiesfrombrowser"] = (cookies_from_browser,)

    debug_parts = [f"format={format_selector or 'yt-dlp-default'}"]
    if cookies_from_browser:
        debug_parts.append(f"cookies_from_browser={cookies_from_browser}")
    if referer:
        debug_parts.append(f"referer={referer}")
    user_agent_short = user_agent.split('(')[0].strip() if '(' in user_agent else user_agent[:50]
    debug_parts.append(f"user_agent={user_agent_short}")
    if proxy:
        debug_parts.append(f"proxy={proxy}")

    logger.debug("Constructed yt-dlp options: " + ", ".join(debug_parts))

    return ydl_opts
