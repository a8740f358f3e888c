"""
Main orchestration class for a single podcast.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from .episode_downloader import (
    DownloadManager,
    DownloadResult,
    DownloadSummary,
    DownloadTask,
)
from .errors import PatternError
from .models import Channel, DownloadStatus, Episode, Podcast, PodcastFiles
from .patterns import PatternContext
from .selection import choose_episodes
from .tracker import DownloadTracker, TrackerFile


@dataclass
class DownloadPlan:
    """Work for one podcast: tasks to run and results already decided."""

    tasks: List[DownloadTask] = field(default_factory=list)
    results: List[DownloadResult] = field(default_factory=list)

    @property
    def episodes(self) -> List[Episode]:
        """Episodes that will be fetched."""
        return [task.episode for task in self.tasks]


class PodcastManager:
    """
    Turns one podcast's parsed feed into download tasks, using its
    resolved config and its tracker.
    """

    def __init__(
        self,
        podcast: Podcast,
        channel: Channel,
        episodes: Sequence[Episode],
        tracker: DownloadTracker,
        now: Optional[datetime] = None,
    ):
        """Resolve the podcast's directories and load its tracker.

        Raises:
            PatternError: If ``download_path``, ``tracker_path`` or
                ``symlink`` cannot be evaluated
            TrackerError: If the tracker file cannot be read
        """
        self.logger = logging.getLogger(__name__)
        self.podcast = podcast
        self.channel = channel
        self.episodes = list(episodes)

        self.logger.info(
            "Initializing PodcastManager for podcast: '%s'", podcast.name
        )

        context = self._context(None, now)
        config = podcast.config
        self.download_dir = _as_path(
            config.download_path.evaluate(context, "download_path")
        )
        if config.tracker_path is not None:
            tracker_path = _as_path(
                config.tracker_path.evaluate(context, "tracker_path")
            )
        else:
            tracker_path = self.download_dir / PodcastFiles.TRACKER
        self.symlink_dir: Optional[Path] = None
        if config.symlink is not None:
            self.symlink_dir = _as_path(
                config.symlink.evaluate(context, "symlink")
            )

        self.tracker: TrackerFile = tracker.load(podcast.name, tracker_path)

    def get_podcast(self) -> Podcast:
        """Get currently loaded podcast."""
        return self.podcast

    def get_podcast_data_dir(self) -> Path:
        """Get the download directory for this podcast."""
        return self.download_dir

    def episode_id(self, episode: Episode, now: datetime) -> str:
        """Evaluate the podcast's ``id_pattern`` for an episode.

        Raises:
            PatternError: If the pattern cannot be evaluated
        """
        return self.podcast.config.id_pattern.evaluate(
            self._context(episode, now), "id_pattern"
        )

    def plan(self, now: datetime, catch_up: bool = False) -> DownloadPlan:
        """Select candidates and drop the ones already tracked.

        Episodes whose id cannot be evaluated are reported failed;
        tracked ones are reported skipped.
        """
        plan = DownloadPlan()
        candidates = choose_episodes(
            self.episodes, self.podcast.config, now, catch_up
        )
        seen: set[str] = set()

        for episode in candidates:
            try:
                episode_id = self.episode_id(episode, now)
            except PatternError as e:
                self.logger.error(
                    "Cannot evaluate id for '%s': %s", episode.title, e
                )
                plan.results.append(
                    self._result(episode, DownloadStatus.FAILED, str(e))
                )
                continue

            if episode_id in seen or self.tracker.contains(episode_id):
                self.logger.debug("Already downloaded: %s", episode_id)
                plan.results.append(
                    self._result(episode, DownloadStatus.SKIPPED)
                )
                continue
            seen.add(episode_id)

            plan.tasks.append(
                DownloadTask(
                    podcast=self.podcast,
                    channel=self.channel,
                    episode=episode,
                    episode_id=episode_id,
                    download_dir=self.download_dir,
                    tracker=self.tracker,
                    now=now,
                    symlink_dir=self.symlink_dir,
                )
            )

        self.logger.info(
            "Found %d new episodes out of %d total episodes",
            len(plan.tasks),
            len(self.episodes),
        )
        return plan

    def get_new_episodes(
        self, now: datetime, catch_up: bool = False
    ) -> List[Episode]:
        """Get episodes that haven't been downloaded yet."""
        return self.plan(now, catch_up).episodes

    def mark_caught_up(self, now: datetime) -> int:
        """Record every episode published before ``now`` as downloaded.

        Later episodes are left to the normal download path.

        Returns:
            Number of ids newly added to the tracker

        Raises:
            TrackerError: If the tracker file cannot be written
        """
        ids = []
        for episode in self.episodes:
            if episode.published >= now:
                continue
            try:
                ids.append(self.episode_id(episode, now))
            except PatternError as e:
                self.logger.warning(
                    "Not marking '%s' as caught up: %s", episode.title, e
                )
        added = self.tracker.record_many(ids)
        self.logger.info(
            "Caught up '%s': %d episode(s) marked as downloaded",
            self.podcast.name,
            added,
        )
        return added

    def download_episodes(
        self,
        downloader: DownloadManager,
        now: datetime,
        catch_up: bool = False,
    ) -> DownloadSummary:
        """Plan and download this podcast's new episodes."""
        plan = self.plan(now, catch_up)
        summary = downloader.run(plan.tasks)
        return DownloadSummary.from_results(plan.results + summary.results)

    def _context(
        self, episode: Optional[Episode], now: Optional[datetime]
    ) -> PatternContext:
        return PatternContext(
            podcast_name=self.podcast.name,
            channel=self.channel,
            episode=episode,
            now=now,
        )

    def _result(
        self,
        episode: Episode,
        status: DownloadStatus,
        error: Optional[str] = None,
    ) -> DownloadResult:
        return DownloadResult(
            podcast=self.podcast.name,
            episode=episode,
            status=status,
            error=error,
        )


def _as_path(value: str) -> Path:
    return Path(value).expanduser()
