#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
fetch_video.py

Find the playable video on a page and download it, retrying through
network trouble.

Usage:
    python fetch_video.py --url https://www.example.com/video/123
    python fetch_video.py --urls-file urls.txt --output ./downloads
    python fetch_video.py --direct --url https://cdn.example.com/clip.mp4 --filename clip.mp4
    python fetch_video.py --health-check
"""

from __future__ import annotations

import asyncio
import os
import sys
from typing import List, Optional

from video_fetch import (
    FailureAnalyzer,
    RemoteSourceError,
    TransferLogger,
    download_urls,
    load_urls_from_file,
    load_urls_from_url,
    parse_args,
    run_health_check,
)


def collect_urls(args) -> Optional[List[str]]:
    """Gather URLs from --url, --urls-file and --urls-url. None means a source failed."""
    urls = [url.strip() for url in args.url if url and url.strip()]

    if args.urls_file:
        try:
            urls.extend(load_urls_from_file(args.urls_file))
        except OSError as exc:
            print(f"Error: Failed to read {args.urls_file}: {exc}", file=sys.stderr)
            return None
        except ValueError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return None

    if args.urls_url:
        try:
            urls.extend(load_urls_from_url(args.urls_url))
        except RemoteSourceError as exc:
            print(exc, file=sys.stderr)
            return None

    return urls


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    if args.health_check:
        return run_health_check(args)

    urls = collect_urls(args)
    if urls is None:
        return 1
    if not urls:
        print("Error: You must provide --url, --urls-file, or --urls-url", file=sys.stderr)
        return 1
    if args.filename and len(urls) > 1:
        print("Warning: --filename ignored when downloading more than one URL", file=sys.stderr)

    os.makedirs(args.output, exist_ok=True)

    logger = TransferLogger(verbose=args.verbose)
    analyzer = FailureAnalyzer()
    if args.error_log:
        analyzer.set_error_log_path(args.error_log)
        print(f"Error logging enabled: {args.error_log}")

    try:
        summary = asyncio.run(download_urls(urls, args, logger=logger, analyzer=analyzer))
    except KeyboardInterrupt:
        print("\nStopping downloads.")
        return 130

    print(f"\n{summary.format()}")
    if logger.retry_count:
        print(f"Retries: {logger.retry_count}, network waits: {logger.network_waits}")
    analyzer.print_summary()

    print("\nAll done.")
    return 1 if summary.failed else 0


if __name__ == "__main__":
    sys.exit(main())
