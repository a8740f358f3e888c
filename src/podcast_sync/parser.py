"""
RSS parsing into a Channel and its Episodes.

Raw ``<channel>`` and ``<item>`` elements are kept on the models so
templates can read arbitrary tags from them.
"""

import io
import logging
from typing import Dict, List, Optional, Tuple
from xml.etree.ElementTree import Element

from defusedxml.ElementTree import ParseError, iterparse

from .errors import FeedParseError
from .models import Channel, Episode
from .utils import parse_rfc2822


class PodcastParser:
    """Parses feed documents. Stateless; one instance can be reused."""

    def __init__(self) -> None:
        """Initialize parser."""
        self.logger = logging.getLogger(__name__)

    def parse(self, rss_content: bytes) -> Tuple[Channel, List[Episode]]:
        """Parse a feed document.

        Returns:
            The channel and its episodes, most recent first

        Raises:
            FeedParseError: If the XML is malformed or has no channel
        """
        root, namespaces = self._read_xml(rss_content)

        channel_element = root.find("channel")
        if channel_element is None:
            raise FeedParseError("Feed has no <channel> element")

        channel = Channel(
            title=(channel_element.findtext("title") or "").strip(),
            raw=channel_element,
            namespaces=namespaces,
        )

        episodes: List[Episode] = []
        for position, item in enumerate(channel_element.findall("item")):
            episode = self._parse_item(item, namespaces)
            if episode is None:
                self.logger.warning(
                    "Skipping item %d in '%s': missing enclosure or pubDate",
                    position,
                    channel.title,
                )
                continue
            episodes.append(episode)

        # Stable, so equal timestamps keep document order.
        episodes.sort(key=lambda ep: ep.published, reverse=True)

        self.logger.info(
            "Parsed %d episodes from '%s'", len(episodes), channel.title
        )
        return channel, episodes

    def _read_xml(self, rss_content: bytes) -> Tuple[Element, Dict[str, str]]:
        """Build the element tree and collect namespace prefixes."""
        namespaces: Dict[str, str] = {}
        root: Optional[Element] = None
        try:
            for event, item in iterparse(
                io.BytesIO(rss_content), events=("start-ns", "start")
            ):
                if event == "start-ns":
                    prefix, uri = item
                    namespaces.setdefault(prefix, uri)
                elif root is None:
                    root = item
        except (ParseError, ValueError) as e:
            raise FeedParseError(f"Malformed feed XML: {e}") from e

        if root is None:
            raise FeedParseError("Empty feed document")
        return root, namespaces

    def _parse_item(
        self, item: Element, namespaces: Dict[str, str]
    ) -> Optional[Episode]:
        """Build an Episode, or None if required fields are missing."""
        enclosure = item.find("enclosure")
        url = enclosure.get("url", "").strip() if enclosure is not None else ""
        published = parse_rfc2822(item.findtext("pubDate") or "")
        if not url or published is None:
            return None

        guid = (item.findtext("guid") or "").strip() or url
        return Episode(
            guid=guid,
            published=published,
            url=url,
            title=(item.findtext("title") or "").strip(),
            raw=item,
            namespaces=namespaces,
        )
