"""
Data models for podcasts, channels and episodes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Mapping, Optional
from xml.etree.ElementTree import Element

if TYPE_CHECKING:
    from .config import Config


# Constants for podcast-level files
class PodcastFiles:
    """Standard file names inside a podcast download directory."""

    TRACKER = ".downloaded"
    PARTIAL_SUFFIX = ".part"


class DownloadStatus(Enum):
    """Outcome of one episode in one run."""

    DOWNLOADED = "downloaded"
    SKIPPED = "skipped"
    FAILED = "failed"


def find_xml_value(
    element: Optional[Element], key: str, namespaces: Mapping[str, str]
) -> Optional[str]:
    """Look up a direct child's text, or an attribute with ``tag@attr``.

    Namespaced tags use the feed's own prefix, e.g. ``itunes:author``.
    Returns None when the tag, the attribute or the prefix is unknown.
    """
    if element is None:
        return None

    tag, _, attribute = key.partition("@")
    if ":" in tag:
        prefix, local = tag.split(":", 1)
        uri = namespaces.get(prefix)
        if uri is None:
            return None
        tag = f"{{{uri}}}{local}"

    child = element.find(tag)
    if child is None:
        return None
    if attribute:
        return child.get(attribute)
    return (child.text or "").strip()


@dataclass(frozen=True)
class Channel:
    """Podcast-level feed metadata shared by all episodes of one run."""

    title: str
    raw: Optional[Element] = field(default=None, compare=False, repr=False)
    namespaces: Mapping[str, str] = field(
        default_factory=dict, compare=False, repr=False
    )

    def get_value(self, key: str) -> Optional[str]:
        """Get text (or ``@attr``) of a channel-level tag."""
        return find_xml_value(self.raw, key, self.namespaces)


@dataclass(frozen=True)
class Episode:
    """A single feed episode.

    Rebuilt from the feed on every run; only its evaluated id is ever
    persisted (in the tracker).
    """

    guid: str
    published: datetime
    url: str
    title: str = ""
    raw: Optional[Element] = field(default=None, compare=False, repr=False)
    namespaces: Mapping[str, str] = field(
        default_factory=dict, compare=False, repr=False
    )

    def get_value(self, key: str) -> Optional[str]:
        """Get text (or ``@attr``) of an episode-level tag."""
        return find_xml_value(self.raw, key, self.namespaces)


@dataclass(frozen=True)
class Podcast:
    """A subscribed podcast with its resolved configuration.

    ``name`` is the unique key used for trackers, logs and summaries.
    """

    name: str
    config: "Config"

    @property
    def url(self) -> str:
        """Feed URL."""
        return self.config.url
