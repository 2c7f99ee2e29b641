"""Configuration and argument parsing for the video fetcher."""

import argparse
import json
import os
import sys
from typing import Dict, List, Optional

from .models import (
    DEFAULT_INITIAL_RETRY_DELAY,
    DEFAULT_MAX_INTERVAL_WAIT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_RETRY_DELAY,
    DEFAULT_MIN_INTERVAL,
    DEFAULT_PROBE_ATTEMPTS,
    DEFAULT_PROBE_INTERVAL,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_PROBE_URL,
)

DEFAULT_CONFIG_PATH = "config.json"

VALID_CONFIG_KEYS = {
    'output', 'format', 'cookies_from_browser', 'proxy', 'proxy_file', 'referer',
    'max_retries', 'initial_retry_delay', 'max_retry_delay',
    'probe_url', 'probe_attempts', 'probe_interval', 'probe_timeout',
    'no_pacing', 'min_interval', 'max_interval_wait',
    'precheck', 'timeout', 'error_log', 'verbose', 'direct', 'blob',
}


def positive_int(value: str) -> int:
    """Return *value* parsed as a positive integer for argparse."""

    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise argparse.ArgumentTypeError(
            "Expected a positive integer"
        ) from exc

    if parsed <= 0:
        raise argparse.ArgumentTypeError("Expected a positive integer")

    return parsed


def non_negative_int(value: str) -> int:
    """Return *value* parsed as an integer >= 0 for argparse."""
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise argparse.ArgumentTypeError("Expected a non-negative integer") from exc

    if parsed < 0:
        raise argparse.ArgumentTypeError("Expected a non-negative integer")

    return parsed


def non_negative_float(value: str) -> float:
    """Return *value* parsed as a number of seconds >= 0 for argparse."""
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise argparse.ArgumentTypeError("Expected a number of seconds") from exc

    if parsed < 0:
        raise argparse.ArgumentTypeError("Expected a non-negative number of seconds")

    return parsed


def load_config_file(config_path: str) -> Dict[str, object]:
    """Load configuration from a JSON file.

    Returns a dictionary with configuration values that can be used as defaults
    for command-line arguments. If the file doesn't exist or is invalid, returns
    an empty dictionary.
    """
    if not os.path.exists(config_path):
        return {}

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except json.JSONDecodeError as exc:
        print(f"Warning: Failed to parse config file {config_path}: {exc}. Ignoring.", file=sys.stderr)
        return {}
    except OSError as exc:
        print(f"Warning: Failed to read config file {config_path}: {exc}. Ignoring.", file=sys.stderr)
        return {}

    if not isinstance(config, dict):
        print(f"Warning: Config file {config_path} must contain a JSON object. Ignoring.", file=sys.stderr)
        return {}

    # Validate config keys to prevent typos
    invalid_keys = set(config.keys()) - VALID_CONFIG_KEYS
    if invalid_keys:
        print(f"Warning: Unknown config keys ignored: {', '.join(sorted(invalid_keys))}", file=sys.stderr)

    return {k: v for k, v in config.items() if k in VALID_CONFIG_KEYS}


def _config_path_from_argv(argv: List[str]) -> str:
    if "--config" in argv:
        config_idx = argv.index("--config")
        if config_idx + 1 < len(argv):
            return argv[config_idx + 1]
    return DEFAULT_CONFIG_PATH


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Find the playable video on a page and download it, retrying through network trouble."
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help="Path to JSON configuration file (default: config.json)",
    )

    sources = parser.add_argument_group("sources")
    sources.add_argument(
        "--url",
        action="append",
        default=[],
        help="Video page URL (repeatable). With --direct, the media URL itself.",
    )
    sources.add_argument("--urls-file", help="Local text file with one URL per line")
    sources.add_argument("--urls-url", help="Remote text file with one URL per line")
    sources.add_argument(
        "--direct",
        action="store_true",
        help="Treat URLs as media URLs and skip page resolution",
    )
    sources.add_argument(
        "--blob",
        action="store_true",
        help="Fetch the media into memory first and save it from there",
    )

    output = parser.add_argument_group("output")
    output.add_argument("--output", default="downloads", help="Output directory (default: downloads)")
    output.add_argument("--filename", help="Filename to save under (single URL only)")
    output.add_argument("--error-log", help="Append terminal failures to this file")
    output.add_argument("--verbose", action="store_true", help="Print debug output")

    resolve = parser.add_argument_group("page resolution")
    resolve.add_argument("--format", help="yt-dlp format selector used to pick the media URL")
    resolve.add_argument("--cookies-from-browser", help="Load cookies from this browser (e.g. chrome)")
    resolve.add_argument("--proxy", help="Proxy URL for page resolution")
    resolve.add_argument("--proxy-file", help="File with one proxy URL per line; one is picked at random")
    resolve.add_argument("--referer", help="Referer header sent with page and media requests")

    retry = parser.add_argument_group("retries")
    retry.add_argument("--max-retries", type=non_negative_int, default=DEFAULT_MAX_RETRIES,
                       help=f"Retries per download (default: {DEFAULT_MAX_RETRIES})")
    retry.add_argument("--initial-retry-delay", type=non_negative_float, default=DEFAULT_INITIAL_RETRY_DELAY,
                       help=f"First backoff delay in seconds (default: {DEFAULT_INITIAL_RETRY_DELAY})")
    retry.add_argument("--max-retry-delay", type=non_negative_float, default=DEFAULT_MAX_RETRY_DELAY,
                       help=f"Backoff cap in seconds (default: {DEFAULT_MAX_RETRY_DELAY})")
    retry.add_argument("--timeout", type=non_negative_float, default=30.0,
                       help="Socket timeout for transfers in seconds (default: 30)")

    probe = parser.add_argument_group("network check")
    probe.add_argument("--probe-url", default=DEFAULT_PROBE_URL,
                       help=f"Endpoint used to test connectivity (default: {DEFAULT_PROBE_URL})")
    probe.add_argument("--probe-attempts", type=positive_int, default=DEFAULT_PROBE_ATTEMPTS,
                       help=f"Connectivity checks before giving up (default: {DEFAULT_PROBE_ATTEMPTS})")
    probe.add_argument("--probe-interval", type=non_negative_float, default=DEFAULT_PROBE_INTERVAL,
                       help=f"Seconds between connectivity checks (default: {DEFAULT_PROBE_INTERVAL})")
    probe.add_argument("--probe-timeout", type=non_negative_float, default=DEFAULT_PROBE_TIMEOUT,
                       help=f"Timeout of one connectivity check (default: {DEFAULT_PROBE_TIMEOUT})")
    probe.add_argument("--precheck", action="store_true",
                       help="Check each media URL before downloading (advisory only)")
    probe.add_argument("--health-check", action="store_true",
                       help="Test connectivity and exit")

    pacing = parser.add_argument_group("pacing")
    pacing.add_argument("--no-pacing", action="store_true", help="Start downloads back to back")
    pacing.add_argument("--min-interval", type=non_negative_float, default=DEFAULT_MIN_INTERVAL,
                        help=f"Minimum seconds between download starts (default: {DEFAULT_MIN_INTERVAL})")
    pacing.add_argument("--max-interval-wait", type=non_negative_float, default=DEFAULT_MAX_INTERVAL_WAIT,
                        help=f"Longest single pacing wait in seconds (default: {DEFAULT_MAX_INTERVAL_WAIT})")
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments, using the JSON config file for defaults."""
    argv = list(sys.argv[1:] if argv is None else argv)

    config_path = _config_path_from_argv(argv)
    config = load_config_file(config_path)
    if config:
        print(f"Loaded configuration from {config_path}")

    parser = build_parser()
    if config:
        parser.set_defaults(**config)
    return parser.parse_args(argv)
