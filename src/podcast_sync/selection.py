"""
Decide which feed episodes are eligible for download in a run.

Episodes arrive most-recent-first. Standard selection keeps that order;
backlog selection returns the released episodes oldest-first.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Sequence

from .config import BacklogMode, Config, DownloadMode, StandardMode
from .models import Episode


class BacklogState(Enum):
    """Where a backlog schedule currently stands."""

    PENDING = "pending"
    ACTIVE = "active"
    EXHAUSTED = "exhausted"


def select_episodes(
    episodes: Sequence[Episode],
    mode: StandardMode,
    now: datetime,
    catch_up: bool = False,
) -> list[Episode]:
    """Apply the standard filters, then the episode cap.

    Args:
        episodes: Feed episodes, most recent first
        mode: Resolved caps; None disables a filter
        now: Reference time for ``max_days`` and catch-up
        catch_up: Drop everything already published

    Returns:
        Eligible episodes in feed order
    """
    selected = list(episodes)

    if mode.earliest_date is not None:
        earliest = mode.earliest_date
        selected = [ep for ep in selected if ep.published >= earliest]

    if mode.max_days is not None:
        cutoff = now - timedelta(days=mode.max_days)
        selected = [ep for ep in selected if ep.published >= cutoff]

    if mode.max_episodes is not None:
        selected = selected[: max(mode.max_episodes, 0)]

    if catch_up:
        selected = [ep for ep in selected if ep.published >= now]

    return selected


def backlog_index(start: datetime, interval_days: int, now: datetime) -> int:
    """Number of whole intervals elapsed since ``start``.

    Negative before ``start``. Recomputed from the clock on every run,
    never stored.
    """
    interval = timedelta(days=interval_days)
    return (now - start) // interval


class BacklogScheduler:
    """Releases one more historical episode per elapsed interval."""

    def __init__(self, mode: BacklogMode):
        """Initialize with the podcast's backlog settings."""
        self.mode = mode

    def raw_index(self, now: datetime) -> int:
        """Unclamped index due at ``now``."""
        return backlog_index(self.mode.start, self.mode.interval_days, now)

    def index_due(self, now: datetime, episode_count: int) -> int:
        """Index of the newest released episode, or -1 if none is due."""
        raw = self.raw_index(now)
        if raw < 0 or episode_count == 0:
            return -1
        return min(raw, episode_count - 1)

    def state(self, now: datetime, episode_count: int) -> BacklogState:
        """Current schedule state for a feed of ``episode_count`` episodes."""
        raw = self.raw_index(now)
        if raw < 0 or episode_count == 0:
            return BacklogState.PENDING
        if raw >= episode_count:
            return BacklogState.EXHAUSTED
        return BacklogState.ACTIVE

    def select(
        self, episodes: Sequence[Episode], now: datetime
    ) -> list[Episode]:
        """Released episodes, oldest first.

        Args:
            episodes: Feed episodes, most recent first
            now: Current time
        """
        oldest_first = list(reversed(episodes))
        due = self.index_due(now, len(oldest_first))
        return oldest_first[: due + 1]


def choose_episodes(
    episodes: Sequence[Episode],
    config: Config,
    now: datetime,
    catch_up: bool = False,
) -> list[Episode]:
    """Pick candidates with whichever strategy the podcast is configured for.

    Backlog mode replaces ordinary selection entirely. Tracker filtering
    happens afterwards, regardless of strategy.
    """
    logger = logging.getLogger(__name__)
    mode: DownloadMode = config.mode

    if isinstance(mode, BacklogMode):
        scheduler = BacklogScheduler(mode)
        selected = scheduler.select(episodes, now)
        if catch_up:
            selected = [ep for ep in selected if ep.published >= now]
        logger.debug(
            "Backlog %s: %d of %d episodes released",
            scheduler.state(now, len(episodes)).value,
            len(selected),
            len(episodes),
        )
        return selected

    selected = select_episodes(episodes, mode, now, catch_up)
    logger.debug("Selected %d of %d episodes", len(selected), len(episodes))
    return selected
