"""
Factories for test episodes, feeds and mocked HTTP responses.
"""

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from typing import Dict, Iterable, List, Optional
from unittest.mock import Mock
from xml.etree.ElementTree import Element, SubElement

from podcast_sync.models import Episode


def create_test_episode(
    guid: str = "test-guid",
    title: str = "Test Episode",
    published: Optional[datetime] = None,
    url: Optional[str] = None,
    extra: Optional[Dict[str, str]] = None,
) -> Episode:
    """Create an Episode with a raw ``<item>`` holding its fields."""
    published = published or datetime(2024, 3, 27, tzinfo=timezone.utc)
    url = url or f"http://test.com/{guid}.mp3"

    item = Element("item")
    SubElement(item, "title").text = title
    SubElement(item, "guid").text = guid
    SubElement(item, "pubDate").text = format_datetime(published)
    SubElement(item, "enclosure", url=url, type="audio/mpeg")
    for tag, text in (extra or {}).items():
        SubElement(item, tag).text = text

    return Episode(
        guid=guid, published=published, url=url, title=title, raw=item
    )


def create_daily_episodes(
    count: int, newest: datetime, step: timedelta = timedelta(days=1)
) -> List[Episode]:
    """Episodes ``ep0``.. published ``step`` apart, most recent first."""
    return [
        create_test_episode(
            guid=f"ep{i}", title=f"Episode {i}", published=newest - step * i
        )
        for i in range(count)
    ]


def build_rss(
    episodes: Iterable[Episode], channel_title: str = "Test Podcast"
) -> bytes:
    """Render episodes as a minimal RSS 2.0 document."""
    items = []
    for episode in episodes:
        items.append(
            "<item>"
            f"<title>{episode.title}</title>"
            f"<guid>{episode.guid}</guid>"
            f"<pubDate>{format_datetime(episode.published)}</pubDate>"
            f'<enclosure url="{episode.url}" type="audio/mpeg"/>'
            "</item>"
        )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0" '
        'xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd">'
        f"<channel><title>{channel_title}</title>"
        "<itunes:author>Test Author</itunes:author>"
        f"{''.join(items)}</channel></rss>"
    ).encode("utf-8")


def create_mock_response(
    chunks: Iterable[bytes] = (b"audio data",),
    status_code: int = 200,
    headers: Optional[Dict[str, str]] = None,
) -> Mock:
    """Streaming ``requests`` response usable as a context manager."""
    mock_response = Mock()
    mock_response.status_code = status_code
    mock_response.headers = dict(headers or {})
    mock_response.iter_content.return_value = list(chunks)
    mock_response.raise_for_status.return_value = None
    mock_response.__enter__ = Mock(return_value=mock_response)
    mock_response.__exit__ = Mock(return_value=None)
    return mock_response
