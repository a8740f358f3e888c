"""
Factory functions for creating PodcastManager instances.

This module provides simple factory functions that wire up dependencies
clearly, plus ``sync_podcasts`` which runs a whole sync.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .config import GlobalConfig, PodcastConfig, resolve_config
from .downloader import fetch_rss
from .episode_downloader import (
    DownloadManager,
    DownloadResult,
    DownloadSummary,
    DownloadTask,
    TagWriter,
)
from .errors import PodcastSyncError, TrackerError
from .manager import PodcastManager
from .models import Podcast
from .parser import PodcastParser
from .tracker import DownloadTracker


def create_manager_from_rss(
    podcast: Podcast,
    tracker: DownloadTracker,
    now: Optional[datetime] = None,
) -> PodcastManager:
    """Create PodcastManager by downloading and parsing the feed.

    Raises:
        FeedError: If the feed cannot be fetched or parsed
        PatternError: If the podcast's directories cannot be resolved
        TrackerError: If the tracker cannot be read
    """
    logger = logging.getLogger(__name__)
    logger.info("Creating PodcastManager from RSS URL: %s", podcast.url)

    rss_content = fetch_rss(podcast.url)
    channel, episodes = PodcastParser().parse(rss_content)

    manager = PodcastManager(podcast, channel, episodes, tracker, now)
    logger.info(
        "Successfully created PodcastManager for '%s' with %d episodes",
        podcast.name,
        len(episodes),
    )
    return manager


def create_podcast(
    name: str, global_config: GlobalConfig, podcast_config: PodcastConfig
) -> Podcast:
    """Resolve a podcast's settings into an immutable Podcast.

    Raises:
        InvalidConfigError: If its templates do not compile
    """
    return Podcast(name, resolve_config(global_config, podcast_config))


def create_managers(
    global_config: GlobalConfig,
    podcast_configs: Mapping[str, PodcastConfig],
    names: Optional[Iterable[str]] = None,
    now: Optional[datetime] = None,
) -> Tuple[Dict[str, PodcastManager], Dict[str, str]]:
    """Create a manager per selected podcast (all of them by default).

    A podcast whose config, feed or tracker fails is left out and its
    error message returned instead; the others are unaffected.

    Returns:
        Managers and errors, both keyed by podcast name

    Raises:
        KeyError: If ``names`` contains an unknown podcast
    """
    logger = logging.getLogger(__name__)
    selected = list(names) if names else list(podcast_configs)
    unknown = [name for name in selected if name not in podcast_configs]
    if unknown:
        raise KeyError(f"Unknown podcast(s): {', '.join(unknown)}")

    tracker = DownloadTracker()
    managers: Dict[str, PodcastManager] = {}
    podcast_errors: Dict[str, str] = {}
    for name in selected:
        try:
            podcast = create_podcast(
                name, global_config, podcast_configs[name]
            )
            managers[name] = create_manager_from_rss(podcast, tracker, now)
        except PodcastSyncError as e:
            logger.error("Skipping podcast '%s': %s", name, e)
            podcast_errors[name] = str(e)
    return managers, podcast_errors


def sync_podcasts(  # pylint: disable=too-many-arguments
    global_config: GlobalConfig,
    podcast_configs: Mapping[str, PodcastConfig],
    names: Optional[Iterable[str]] = None,
    concurrency: Optional[int] = None,
    catch_up: bool = False,
    show_progress: bool = True,
    tag_writer: Optional[TagWriter] = None,
    now: Optional[datetime] = None,
) -> DownloadSummary:
    """Sync the selected podcasts (all of them by default).

    Every podcast is planned first; the download tasks of all podcasts
    then share one worker pool. With ``catch_up`` every current feed
    episode is recorded as downloaded so only later ones are fetched.

    Raises:
        KeyError: If ``names`` contains an unknown podcast
    """
    logger = logging.getLogger(__name__)
    now = now or datetime.now(timezone.utc)
    managers, podcast_errors = create_managers(
        global_config, podcast_configs, names, now
    )

    results: List[DownloadResult] = []
    tasks: List[DownloadTask] = []
    for name, manager in managers.items():
        plan = manager.plan(now, catch_up)
        if catch_up:
            try:
                manager.mark_caught_up(now)
            except TrackerError as e:
                logger.error("Skipping podcast '%s': %s", name, e)
                podcast_errors[name] = str(e)
                continue
        results.extend(plan.results)
        tasks.extend(plan.tasks)

    if tasks:
        downloader = DownloadManager(
            concurrency_limit=concurrency or global_config.concurrency,
            tag_writer=tag_writer,
            show_progress=show_progress,
        )
        results.extend(downloader.run(tasks).results)

    return DownloadSummary.from_results(results, podcast_errors)
