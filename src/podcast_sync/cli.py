"""
Command-line interface for the podcast synchronizer.
"""

import argparse
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .config import load_config_file
from .errors import ConfigError
from .episode_downloader import DownloadSummary
from .factory import create_managers, sync_podcasts
from .utils import format_bytes


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for ``podcast-sync``."""
    parser = argparse.ArgumentParser(
        prog="podcast-sync",
        description="Download new podcast episodes from RSS feeds",
    )
    parser.add_argument(
        "podcasts",
        nargs="*",
        metavar="PODCAST",
        help="Podcasts to sync (default: all configured podcasts)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Config file (default: $PODCAST_SYNC_CONFIG or "
        "~/.config/podcast-sync/config.json)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        help="Maximum simultaneous downloads across all podcasts",
    )
    parser.add_argument(
        "--catch-up",
        action="store_true",
        help="Mark the current episodes as downloaded without fetching them",
    )
    parser.add_argument(
        "--list-only",
        action="store_true",
        help="List new episodes without downloading",
    )
    parser.add_argument(
        "--print",
        action="store_true",
        dest="print_paths",
        help="Print the paths of downloaded files to stdout",
    )
    parser.add_argument(
        "--no-progress", action="store_true", help="Disable progress bars"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point for the podcast synchronizer."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.concurrency is not None and args.concurrency < 1:
        print("Error: --concurrency must be at least 1", file=sys.stderr)
        sys.exit(1)

    try:
        global_config, podcast_configs = load_config_file(args.config)
        if not podcast_configs:
            print("Error: no podcasts configured", file=sys.stderr)
            sys.exit(1)

        now = datetime.now(timezone.utc)
        if args.list_only:
            failed = _list_new_episodes(
                global_config, podcast_configs, args, now
            )
            if failed:
                sys.exit(1)
            return

        print("Checking for new episodes...", file=sys.stderr)
        summary = sync_podcasts(
            global_config,
            podcast_configs,
            names=args.podcasts,
            concurrency=args.concurrency,
            catch_up=args.catch_up,
            show_progress=not args.no_progress,
            now=now,
        )
        _print_summary(summary)

        if args.print_paths:
            for path in summary.downloaded_paths():
                print(f'"{path}"')

        if summary.has_failures:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\nDownload interrupted by user", file=sys.stderr)
        sys.exit(130)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyError as e:
        print(f"Error: {e.args[0]}", file=sys.stderr)
        sys.exit(1)


def _list_new_episodes(global_config, podcast_configs, args, now) -> bool:
    """Print each podcast's new episodes; returns True on any failure."""
    managers, podcast_errors = create_managers(
        global_config, podcast_configs, args.podcasts, now
    )
    for name, manager in managers.items():
        new_episodes = manager.get_new_episodes(now, args.catch_up)
        print(f"Podcast: {name}")
        print(f"Data directory: {manager.get_podcast_data_dir()}")
        print(f"Found {len(new_episodes)} new episodes")
        for i, episode in enumerate(new_episodes, 1):
            print(f"  {i}. {episode.published:%Y-%m-%d} {episode.title}")

    for name, error in podcast_errors.items():
        print(f"Error: {name}: {error}", file=sys.stderr)
    return bool(podcast_errors)


def _print_summary(summary: DownloadSummary) -> None:
    for name, counts in summary.by_podcast().items():
        print(
            f"  {name}: {counts.downloaded} downloaded, "
            f"{counts.skipped} already downloaded, {counts.failed} failed",
            file=sys.stderr,
        )
    for result in summary.results:
        if result.error:
            print(
                f"  Failed: {result.podcast}: {result.episode.title}: "
                f"{result.error}",
                file=sys.stderr,
            )
    for name, error in summary.podcast_errors.items():
        print(f"  Error: {name}: {error}", file=sys.stderr)

    total_size = sum(
        os.path.getsize(path)
        for path in summary.downloaded_paths()
        if os.path.exists(path)
    )
    print("\nSyncing complete!", file=sys.stderr)
    print(
        f"{summary.successful} episodes downloaded "
        f"({format_bytes(total_size)}).",
        file=sys.stderr,
    )


if __name__ == "__main__":
    main()
