"""
Tests for settings parsing and the global/per-podcast merge.
"""

import json
import os
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

from podcast_sync.config import (
    BacklogMode,
    ConfigOption,
    GlobalConfig,
    OptionState,
    PodcastConfig,
    StandardMode,
    default_config_path,
    load_config_file,
    resolve_config,
)
from podcast_sync.errors import ConfigNotFoundError, InvalidConfigError
from tests.base import PodcastTestBase


class TestConfigOption(unittest.TestCase):
    """Test the unset / disabled / value merge."""

    def test_unset_inherits_global(self) -> None:
        """An unset option takes the global value."""
        self.assertEqual(ConfigOption.unset().resolve(120), 120)

    def test_disabled_wins_over_global(self) -> None:
        """A disabled option is off even when the global value is set."""
        self.assertIsNone(ConfigOption.disabled().resolve(120))

    def test_value_wins_over_global(self) -> None:
        """A podcast value replaces the global one."""
        option = ConfigOption.of(30)
        self.assertTrue(option.is_enabled)
        self.assertEqual(option.resolve(120), 30)

    def test_unset_with_no_global(self) -> None:
        """Unset plus no global value means off."""
        self.assertIsNone(ConfigOption.unset().resolve(None))


class TestPodcastConfigFromDict(unittest.TestCase):
    """Test per-podcast settings parsing."""

    def test_false_disables_and_missing_is_unset(self) -> None:
        """``false`` and a missing key are different states."""
        config = PodcastConfig.from_dict(
            "show", {"url": "http://test.com/rss", "max_days": False}
        )

        self.assertEqual(config.max_days.state, OptionState.DISABLED)
        self.assertEqual(config.max_episodes.state, OptionState.UNSET)

    def test_values_are_parsed(self) -> None:
        """Options with values keep them; dates become UTC datetimes."""
        config = PodcastConfig.from_dict(
            "show",
            {
                "url": "http://test.com/rss",
                "max_episodes": 3,
                "earliest_date": "2024-01-15",
                "download_hook": "~/bin/hook.sh",
            },
        )

        self.assertEqual(config.max_episodes, ConfigOption.of(3))
        self.assertEqual(
            config.earliest_date.value,
            datetime(2024, 1, 15, tzinfo=timezone.utc),
        )
        self.assertEqual(config.download_hook.value, "~/bin/hook.sh")

    def test_url_is_required(self) -> None:
        """A podcast without a feed URL is invalid."""
        with self.assertRaises(InvalidConfigError):
            PodcastConfig.from_dict("show", {"max_days": 3})

    def test_unknown_setting(self) -> None:
        """Typos in setting names are reported."""
        with self.assertRaises(InvalidConfigError) as ctx:
            PodcastConfig.from_dict(
                "show", {"url": "http://test.com/rss", "max_dayz": 3}
            )
        self.assertIn("max_dayz", str(ctx.exception))

    def test_wrong_type(self) -> None:
        """Numbers must be integers."""
        with self.assertRaises(InvalidConfigError):
            PodcastConfig.from_dict(
                "show", {"url": "http://test.com/rss", "max_days": "30"}
            )

    def test_invalid_date(self) -> None:
        """Dates must be YYYY-MM-DD."""
        with self.assertRaises(InvalidConfigError):
            PodcastConfig.from_dict(
                "show",
                {"url": "http://test.com/rss", "earliest_date": "15/01/2024"},
            )


class TestBacklogValidation(unittest.TestCase):
    """Test the backlog setting combination rules."""

    def test_start_requires_interval(self) -> None:
        """``backlog_start`` alone is invalid."""
        with self.assertRaises(InvalidConfigError):
            PodcastConfig.from_dict(
                "show",
                {"url": "http://test.com/rss", "backlog_start": "2024-01-01"},
            )

    def test_interval_requires_start(self) -> None:
        """``backlog_interval`` alone is invalid."""
        with self.assertRaises(InvalidConfigError):
            PodcastConfig(url="http://test.com/rss", backlog_interval=5)

    def test_interval_must_be_positive(self) -> None:
        """A zero interval would release everything at once."""
        with self.assertRaises(InvalidConfigError):
            PodcastConfig(
                url="http://test.com/rss",
                backlog_start=datetime(2024, 1, 1, tzinfo=timezone.utc),
                backlog_interval=0,
            )

    def test_backlog_excludes_ordinary_caps(self) -> None:
        """Backlog and max_days cannot both be set on a podcast."""
        with self.assertRaises(InvalidConfigError):
            PodcastConfig.from_dict(
                "show",
                {
                    "url": "http://test.com/rss",
                    "backlog_start": "2024-01-01",
                    "backlog_interval": 7,
                    "max_days": 30,
                },
            )

    def test_backlog_allows_disabled_caps(self) -> None:
        """Explicitly disabled caps do not conflict with backlog mode."""
        config = PodcastConfig.from_dict(
            "show",
            {
                "url": "http://test.com/rss",
                "backlog_start": "2024-01-01",
                "backlog_interval": 7,
                "max_days": False,
            },
        )
        self.assertEqual(config.backlog_interval, 7)


class TestResolveConfig(unittest.TestCase):
    """Test merging global and per-podcast settings."""

    def setUp(self) -> None:
        """Set up test fixtures."""
        self.global_config = GlobalConfig(
            max_days=120, max_episodes=10, tracker_path="/trackers/{podname}"
        )

    def test_standard_mode_inherits(self) -> None:
        """Unset caps come from the global config."""
        config = resolve_config(
            self.global_config, PodcastConfig(url="http://test.com/rss")
        )

        self.assertEqual(config.mode, StandardMode(120, 10, None))
        self.assertFalse(config.is_backlog)
        self.assertEqual(str(config.tracker_path), "/trackers/{podname}")

    def test_disabled_overrides_global(self) -> None:
        """Disabled caps are off regardless of the global defaults."""
        podcast = PodcastConfig(
            url="http://test.com/rss",
            max_days=ConfigOption.disabled(),
            max_episodes=ConfigOption.of(3),
            tracker_path=ConfigOption.disabled(),
        )

        config = resolve_config(self.global_config, podcast)

        self.assertEqual(config.mode, StandardMode(None, 3, None))
        self.assertIsNone(config.tracker_path)

    def test_backlog_mode_replaces_caps(self) -> None:
        """A backlog podcast ignores the global caps."""
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        podcast = PodcastConfig(
            url="http://test.com/rss", backlog_start=start, backlog_interval=7
        )

        config = resolve_config(self.global_config, podcast)

        self.assertEqual(config.mode, BacklogMode(start, 7))
        self.assertTrue(config.is_backlog)

    def test_podcast_patterns_override_global(self) -> None:
        """Podcast templates replace global ones; tags are merged."""
        global_config = GlobalConfig(
            id3_tags={"TIT2": "{rss::episode::title}"}
        )
        podcast = PodcastConfig(
            url="http://test.com/rss",
            name_pattern="{guid}",
            id3_tags={"TALB": "{podname}"},
        )

        config = resolve_config(global_config, podcast)

        self.assertEqual(str(config.name_pattern), "{guid}")
        self.assertEqual(str(config.id_pattern), global_config.id_pattern)
        self.assertEqual(sorted(config.id3_tags), ["TALB", "TIT2"])

    def test_episode_pattern_in_download_path(self) -> None:
        """Per-podcast paths cannot use episode patterns."""
        podcast = PodcastConfig(
            url="http://test.com/rss", download_path="/podcasts/{guid}"
        )
        with self.assertRaises(InvalidConfigError) as ctx:
            resolve_config(self.global_config, podcast)
        self.assertIn("guid", str(ctx.exception))

    def test_malformed_template(self) -> None:
        """Template syntax errors surface as config errors."""
        podcast = PodcastConfig(url="http://test.com/rss", id_pattern="{guid")
        with self.assertRaises(InvalidConfigError):
            resolve_config(self.global_config, podcast)


class TestLoadConfigFile(PodcastTestBase):
    """Test reading the JSON config file."""

    def write_config(self, data: object) -> Path:
        """Write ``data`` as the config file."""
        path = Path(self.test_dir) / "config.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    def test_load(self) -> None:
        """Global settings and podcasts are read."""
        path = self.write_config(
            {
                "global": {"max_days": 30, "concurrency": 2},
                "podcasts": {
                    "news": {"url": "http://test.com/news.xml"},
                    "talk": {
                        "url": "http://test.com/talk.xml",
                        "max_days": False,
                    },
                },
            }
        )

        global_config, podcasts = load_config_file(path)

        self.assertEqual(global_config.max_days, 30)
        self.assertEqual(global_config.concurrency, 2)
        self.assertEqual(list(podcasts), ["news", "talk"])
        self.assertIs(podcasts["talk"].max_days.state, OptionState.DISABLED)

    def test_missing_file(self) -> None:
        """A missing file has its own error."""
        with self.assertRaises(ConfigNotFoundError):
            load_config_file(Path(self.test_dir) / "nope.json")

    def test_invalid_json(self) -> None:
        """Malformed JSON is an invalid config."""
        path = Path(self.test_dir) / "config.json"
        path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(InvalidConfigError):
            load_config_file(path)

    def test_bad_concurrency(self) -> None:
        """Concurrency must be at least one."""
        path = self.write_config({"global": {"concurrency": 0}})
        with self.assertRaises(InvalidConfigError):
            load_config_file(path)

    def test_default_path_from_environment(self) -> None:
        """$PODCAST_SYNC_CONFIG overrides the default location."""
        path = os.path.join(self.test_dir, "custom.json")
        with patch.dict(os.environ, {"PODCAST_SYNC_CONFIG": path}):
            self.assertEqual(default_config_path(), Path(path))


if __name__ == "__main__":
    unittest.main()
