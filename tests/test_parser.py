"""
Tests for feed parsing.
"""

import unittest
from datetime import datetime, timezone

from podcast_sync.errors import FeedParseError
from podcast_sync.parser import PodcastParser

FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd">
  <channel>
    <title>  Test Podcast </title>
    <itunes:author>Test Author</itunes:author>
    <itunes:image href="http://test.com/cover.jpg"/>
    <item>
      <title>Older</title>
      <guid>guid-older</guid>
      <pubDate>Mon, 25 Mar 2024 08:00:00 +0000</pubDate>
      <enclosure url="http://test.com/older.mp3" type="audio/mpeg"/>
      <itunes:episode>1</itunes:episode>
    </item>
    <item>
      <title>Newer</title>
      <pubDate>Wed, 27 Mar 2024 10:00:00 +0200</pubDate>
      <enclosure url="http://test.com/newer.mp3" type="audio/mpeg"/>
    </item>
    <item>
      <title>No enclosure</title>
      <guid>guid-none</guid>
      <pubDate>Thu, 28 Mar 2024 08:00:00 +0000</pubDate>
    </item>
    <item>
      <title>Bad date</title>
      <guid>guid-bad-date</guid>
      <pubDate>yesterday</pubDate>
      <enclosure url="http://test.com/bad.mp3" type="audio/mpeg"/>
    </item>
  </channel>
</rss>
"""


class TestPodcastParser(unittest.TestCase):
    """Test feed XML parsing."""

    def setUp(self) -> None:
        """Set up test fixtures."""
        self.parser = PodcastParser()

    def test_parse_channel_and_episodes(self) -> None:
        """Valid items become episodes, most recent first."""
        channel, episodes = self.parser.parse(FEED)

        self.assertEqual(channel.title, "Test Podcast")
        self.assertEqual([ep.title for ep in episodes], ["Newer", "Older"])

        newer, older = episodes
        self.assertEqual(
            newer.published, datetime(2024, 3, 27, 8, 0, tzinfo=timezone.utc)
        )
        self.assertEqual(older.guid, "guid-older")
        self.assertEqual(older.url, "http://test.com/older.mp3")

    def test_missing_guid_falls_back_to_url(self) -> None:
        """An item without a guid is identified by its enclosure."""
        _, episodes = self.parser.parse(FEED)
        self.assertEqual(episodes[0].guid, "http://test.com/newer.mp3")

    def test_raw_fragments_are_kept(self) -> None:
        """Arbitrary tags, namespaced ones included, stay reachable."""
        channel, episodes = self.parser.parse(FEED)

        self.assertEqual(channel.get_value("itunes:author"), "Test Author")
        self.assertEqual(
            channel.get_value("itunes:image@href"), "http://test.com/cover.jpg"
        )
        self.assertEqual(episodes[1].get_value("itunes:episode"), "1")
        self.assertEqual(episodes[1].get_value("enclosure@type"), "audio/mpeg")
        self.assertIsNone(episodes[1].get_value("nosuchtag"))
        self.assertIsNone(episodes[1].get_value("unknown:tag"))

    def test_malformed_xml(self) -> None:
        """Broken XML is a parse error."""
        with self.assertRaises(FeedParseError):
            self.parser.parse(b"<rss><channel><title>oops</channel>")

    def test_no_channel(self) -> None:
        """A document without a channel is a parse error."""
        with self.assertRaises(FeedParseError):
            self.parser.parse(b"<rss version='2.0'></rss>")

    def test_empty_channel(self) -> None:
        """A channel without items parses to no episodes."""
        channel, episodes = self.parser.parse(
            b"<rss><channel><title>Empty</title></channel></rss>"
        )
        self.assertEqual(channel.title, "Empty")
        self.assertEqual(episodes, [])


if __name__ == "__main__":
    unittest.main()
