"""Cron entry point for sweeping expired result cache entries."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass

from photobatch.cache.result_cache import ResultCache
from photobatch.config import AppConfig, load_config


@dataclass(slots=True)
class SweepSummary:
    removed: int
    remaining: int
    dry_run: bool


def open_cache(config: AppConfig) -> ResultCache:
    return ResultCache(
        config.cache_dir,
        max_entries=config.cache.max_entries,
        max_bytes=config.cache.max_bytes,
        max_age_seconds=config.cache.max_age_days * 24 * 3600,
        evict_fraction=config.cache.evict_fraction,
    )


def perform_sweep(
    *,
    dry_run: bool,
    clear: bool = False,
    config: AppConfig | None = None,
    now: float | None = None,
) -> SweepSummary:
    """Sweep (or fully clear) the cache and return summary counters."""
    cache = open_cache(config or load_config())
    if clear:
        count = len(cache) if dry_run else cache.clear()
    elif dry_run:
        count = len(cache.expired_keys(now))
    else:
        count = cache.sweep_expired(now)
    remaining = len(cache) - count if dry_run else len(cache)
    return SweepSummary(removed=count, remaining=remaining, dry_run=dry_run)


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Remove expired entries from the result cache.")
    parser.add_argument("--dry-run", action="store_true", help="Only report counts without deleting files.")
    parser.add_argument("--all", action="store_true", dest="clear", help="Remove every entry, not only expired ones.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or [])
    try:
        summary = perform_sweep(dry_run=args.dry_run, clear=args.clear)
    except OSError as exc:
        print(f"cache sweep failed: {exc}", file=sys.stderr)
        return 2

    label = "cache sweep dry-run, expired" if summary.dry_run else "cache sweep done, removed"
    print(f"{label}={summary.removed}, remaining={summary.remaining}", file=sys.stdout)
    return 0


if __name__ == "__main__":
    sys.exit(main())
