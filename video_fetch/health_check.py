"""Health check: is the network reachable with the configured probe?"""

import asyncio
import time

from .logger import TransferLogger
from .models import NetworkProbeSettings
from .network import NetworkHealthProbe


def run_health_check(args) -> int:
    """Probe connectivity once and print a report. Returns a process exit code."""

    print("=" * 80)
    print("Video Fetcher Health Check".center(80))
    print("=" * 80)
    print()

    settings = NetworkProbeSettings(
        url=args.probe_url,
        max_attempts=args.probe_attempts,
        poll_interval=args.probe_interval,
        timeout=args.probe_timeout,
    )
    print(f"Testing connectivity with: {settings.url}")
    print(f"Probe timeout: {settings.timeout}s")
    print(
        f"Retry settings: max_retries={args.max_retries}, "
        f"backoff={args.initial_retry_delay}-{args.max_retry_delay}s"
    )
    print()

    logger = TransferLogger(verbose=getattr(args, "verbose", False))
    probe = NetworkHealthProbe(settings, logger)

    start_time = time.time()
    reachable = asyncio.run(probe.is_reachable())
    elapsed = time.time() - start_time

    print("=" * 80)
    print("Health Check Results".center(80))
    print("=" * 80)

    if reachable:
        print("✓ Status: HEALTHY")
        print(f"✓ Response time: {elapsed:.2f}s")
        if args.no_pacing:
            print("⚠ Pacing disabled: downloads will start back to back")
        else:
            print(f"✓ Downloads start at least {args.min_interval}s apart")
        print()
        print("Your network appears healthy. Downloads should work.")
        return 0

    print("✗ Status: UNHEALTHY")
    print(f"✗ Response time: {elapsed:.2f}s")
    print()
    print("Recommendations:")
    print("  1. Check your internet connection")
    print("  2. Check that the probe endpoint is reachable (--probe-url)")
    print("  3. Raise --probe-timeout on slow connections")
    return 1
