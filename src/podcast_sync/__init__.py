"""
Podcast sync package - Decides which feed episodes to fetch, names and
stores them, and remembers what was already downloaded.

This package provides a modular approach with separate components for
templates, configuration, episode selection, tracking and downloading.
"""

from .config import GlobalConfig, PodcastConfig, load_config_file
from .episode_downloader import DownloadManager, DownloadSummary
from .factory import create_manager_from_rss, sync_podcasts
from .manager import PodcastManager
from .models import Channel, Episode, Podcast
from .patterns import PatternContext, compile_pattern

__all__ = [
    "create_manager_from_rss",
    "sync_podcasts",
    "load_config_file",
    "compile_pattern",
    "GlobalConfig",
    "PodcastConfig",
    "PatternContext",
    "DownloadManager",
    "DownloadSummary",
    "PodcastManager",
    "Channel",
    "Episode",
    "Podcast",
]
