"""
Global and per-podcast settings, and their merge into a resolved Config.

Optional per-podcast settings are tri-state: unset (inherit the global
value), disabled (``false`` in the config file, always "off") or a value.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Generic, Mapping, Optional, TypeVar, Union

from .errors import ConfigNotFoundError, InvalidConfigError, PatternError
from .patterns import Template, compile_pattern
from .utils import APP_NAME, parse_iso_date

T = TypeVar("T")

CONFIG_ENV_VAR = "PODCAST_SYNC_CONFIG"
DEFAULT_CONCURRENCY = 4


class OptionState(Enum):
    """State of a per-podcast optional setting."""

    UNSET = "unset"
    DISABLED = "disabled"
    VALUE = "value"


@dataclass(frozen=True)
class ConfigOption(Generic[T]):
    """Explicit ``Unset | Disabled | Value(T)`` setting."""

    state: OptionState = OptionState.UNSET
    value: Optional[T] = None

    @classmethod
    def unset(cls) -> "ConfigOption[T]":
        return cls(OptionState.UNSET)

    @classmethod
    def disabled(cls) -> "ConfigOption[T]":
        return cls(OptionState.DISABLED)

    @classmethod
    def of(cls, value: T) -> "ConfigOption[T]":
        return cls(OptionState.VALUE, value)

    @property
    def is_enabled(self) -> bool:
        return self.state is OptionState.VALUE

    def resolve(self, global_value: Optional[T]) -> Optional[T]:
        """Merge with the global value: disabled wins, unset inherits."""
        if self.state is OptionState.DISABLED:
            return None
        if self.state is OptionState.VALUE:
            return self.value
        return global_value


@dataclass(frozen=True)
class StandardMode:
    """Ordinary selection caps; None means the filter is off."""

    max_days: Optional[int] = None
    max_episodes: Optional[int] = None
    earliest_date: Optional[datetime] = None


@dataclass(frozen=True)
class BacklogMode:
    """Release one more historical episode every ``interval_days``."""

    start: datetime
    interval_days: int


DownloadMode = Union[StandardMode, BacklogMode]


@dataclass
class GlobalConfig:  # pylint: disable=too-many-instance-attributes
    """Settings shared by every podcast unless overridden."""

    download_path: str = "{home}/{appname}/{podname}"
    name_pattern: str = "{pubdate::%Y-%m-%d} {rss::episode::title}"
    id_pattern: str = "{guid}"
    max_days: Optional[int] = 120
    max_episodes: Optional[int] = 10
    earliest_date: Optional[datetime] = None
    download_hook: Optional[str] = None
    tracker_path: Optional[str] = None
    symlink: Optional[str] = None
    id3_tags: dict[str, str] = field(default_factory=dict)
    concurrency: int = DEFAULT_CONCURRENCY

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GlobalConfig":
        """Create GlobalConfig from a dictionary.

        Raises:
            InvalidConfigError: On unknown keys or badly typed values
        """
        _reject_unknown_keys("global", data, _GLOBAL_KEYS)
        config = cls()
        for key in ("download_path", "name_pattern", "id_pattern"):
            if key in data:
                setattr(config, key, _expect_str("global", key, data[key]))
        for key in ("max_days", "max_episodes"):
            if key in data:
                setattr(config, key, _optional_int("global", key, data[key]))
        for key in ("download_hook", "tracker_path", "symlink"):
            if key in data:
                setattr(config, key, _optional_str("global", key, data[key]))
        if "earliest_date" in data:
            raw = _optional_str(
                "global", "earliest_date", data["earliest_date"]
            )
            config.earliest_date = (
                _parse_date("global", "earliest_date", raw) if raw else None
            )
        if "id3_tags" in data:
            config.id3_tags = _expect_tags("global", data["id3_tags"])
        if "concurrency" in data:
            concurrency = _optional_int(
                "global", "concurrency", data["concurrency"]
            )
            if not concurrency or concurrency < 1:
                raise InvalidConfigError("global: 'concurrency' must be >= 1")
            config.concurrency = concurrency
        return config


@dataclass
class PodcastConfig:  # pylint: disable=too-many-instance-attributes
    """Per-podcast settings as written by the user, before merging."""

    url: str
    download_path: Optional[str] = None
    name_pattern: Optional[str] = None
    id_pattern: Optional[str] = None
    max_days: ConfigOption[int] = field(default_factory=ConfigOption.unset)
    max_episodes: ConfigOption[int] = field(default_factory=ConfigOption.unset)
    earliest_date: ConfigOption[datetime] = field(
        default_factory=ConfigOption.unset
    )
    download_hook: ConfigOption[str] = field(
        default_factory=ConfigOption.unset
    )
    tracker_path: ConfigOption[str] = field(default_factory=ConfigOption.unset)
    symlink: ConfigOption[str] = field(default_factory=ConfigOption.unset)
    backlog_start: Optional[datetime] = None
    backlog_interval: Optional[int] = None
    id3_tags: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.validate_backlog()

    def validate_backlog(self) -> None:
        """Backlog settings come in pairs and exclude ordinary caps.

        Raises:
            InvalidConfigError: If the combination is invalid
        """
        if self.backlog_start is None and self.backlog_interval is None:
            return
        if self.backlog_start is None:
            raise InvalidConfigError(
                "'backlog_interval' requires 'backlog_start'"
            )
        if self.backlog_interval is None:
            raise InvalidConfigError(
                "'backlog_start' requires 'backlog_interval'"
            )
        if self.backlog_interval < 1:
            raise InvalidConfigError(
                "'backlog_interval' must be at least 1 day"
            )
        for name in ("max_days", "max_episodes", "earliest_date"):
            if getattr(self, name).is_enabled:
                raise InvalidConfigError(
                    f"'{name}' is not compatible with backlog mode"
                )

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "PodcastConfig":
        """Create PodcastConfig from a dictionary.

        A value of ``false`` disables an optional setting; a missing key
        leaves it unset.

        Raises:
            InvalidConfigError: On unknown keys, missing url or bad values
        """
        _reject_unknown_keys(name, data, _PODCAST_KEYS)
        if "url" not in data:
            raise InvalidConfigError(f"{name}: 'url' is required")

        kwargs: dict[str, Any] = {"url": _expect_str(name, "url", data["url"])}
        for key in ("download_path", "name_pattern", "id_pattern"):
            if key in data:
                kwargs[key] = _expect_str(name, key, data[key])
        for key in ("max_days", "max_episodes"):
            kwargs[key] = _option(name, key, data, int)
        for key in ("download_hook", "tracker_path", "symlink"):
            kwargs[key] = _option(name, key, data, str)

        earliest = _option(name, "earliest_date", data, str)
        if earliest.is_enabled:
            earliest = ConfigOption.of(
                _parse_date(name, "earliest_date", earliest.value)
            )
        kwargs["earliest_date"] = earliest

        if "backlog_start" in data:
            start = _expect_str(name, "backlog_start", data["backlog_start"])
            kwargs["backlog_start"] = _parse_date(name, "backlog_start", start)
        if "backlog_interval" in data:
            kwargs["backlog_interval"] = _optional_int(
                name, "backlog_interval", data["backlog_interval"]
            )
        if "id3_tags" in data:
            kwargs["id3_tags"] = _expect_tags(name, data["id3_tags"])

        try:
            return cls(**kwargs)
        except InvalidConfigError as e:
            raise InvalidConfigError(f"{name}: {e}") from e


@dataclass(frozen=True)
class Config:  # pylint: disable=too-many-instance-attributes
    """Fully resolved, immutable settings for one podcast in one run."""

    url: str
    download_path: Template
    name_pattern: Template
    id_pattern: Template
    mode: DownloadMode
    download_hook: Optional[str] = None
    tracker_path: Optional[Template] = None
    symlink: Optional[Template] = None
    id3_tags: Mapping[str, Template] = field(default_factory=dict)

    @property
    def is_backlog(self) -> bool:
        return isinstance(self.mode, BacklogMode)


def resolve_config(
    global_config: GlobalConfig, podcast_config: PodcastConfig
) -> Config:
    """Merge global and per-podcast settings and compile their templates.

    Raises:
        InvalidConfigError: If a template is malformed or uses a pattern
            its setting cannot provide
    """
    if podcast_config.backlog_start is not None:
        mode: DownloadMode = BacklogMode(
            start=podcast_config.backlog_start,
            interval_days=podcast_config.backlog_interval or 1,
        )
    else:
        mode = StandardMode(
            max_days=podcast_config.max_days.resolve(global_config.max_days),
            max_episodes=podcast_config.max_episodes.resolve(
                global_config.max_episodes
            ),
            earliest_date=podcast_config.earliest_date.resolve(
                global_config.earliest_date
            ),
        )

    tracker_path = podcast_config.tracker_path.resolve(
        global_config.tracker_path
    )
    symlink = podcast_config.symlink.resolve(global_config.symlink)
    tags = {**global_config.id3_tags, **podcast_config.id3_tags}

    return Config(
        url=podcast_config.url,
        download_path=_compile(
            podcast_config.download_path or global_config.download_path,
            "download_path",
        ),
        name_pattern=_compile(
            podcast_config.name_pattern or global_config.name_pattern,
            "name_pattern",
        ),
        id_pattern=_compile(
            podcast_config.id_pattern or global_config.id_pattern, "id_pattern"
        ),
        mode=mode,
        download_hook=podcast_config.download_hook.resolve(
            global_config.download_hook
        ),
        tracker_path=(
            _compile(tracker_path, "tracker_path") if tracker_path else None
        ),
        symlink=_compile(symlink, "symlink") if symlink else None,
        id3_tags={
            key: _compile(value, "id3_tags") for key, value in tags.items()
        },
    )


def default_config_path() -> Path:
    """Config file location: $PODCAST_SYNC_CONFIG or the user config dir."""
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return Path("~/.config").expanduser() / APP_NAME / "config.json"


def load_config_file(
    path: Optional[Path] = None,
) -> tuple[GlobalConfig, dict[str, PodcastConfig]]:
    """Load the JSON config file.

    The file holds ``{"global": {...}, "podcasts": {"name": {...}}}``.

    Raises:
        ConfigNotFoundError: If the file does not exist
        InvalidConfigError: If the file is not valid
    """
    logger = logging.getLogger(__name__)
    config_path = path or default_config_path()
    if not config_path.exists():
        raise ConfigNotFoundError(f"Config file not found: {config_path}")

    logger.info("Loading config from %s", config_path)
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidConfigError(
            f"Invalid configuration in {config_path}: {e}"
        ) from e

    if not isinstance(data, dict):
        raise InvalidConfigError(f"{config_path}: top level must be an object")
    _reject_unknown_keys(str(config_path), data, {"global", "podcasts"})

    global_config = GlobalConfig.from_dict(data.get("global") or {})
    podcasts_data = data.get("podcasts") or {}
    if not isinstance(podcasts_data, dict):
        raise InvalidConfigError("'podcasts' must be an object")

    podcasts = {
        name: PodcastConfig.from_dict(name, _expect_mapping(name, value))
        for name, value in podcasts_data.items()
    }
    logger.info("Loaded %d podcast(s)", len(podcasts))
    return global_config, podcasts


# Validation helpers

_GLOBAL_KEYS = {
    "download_path",
    "name_pattern",
    "id_pattern",
    "max_days",
    "max_episodes",
    "earliest_date",
    "download_hook",
    "tracker_path",
    "symlink",
    "id3_tags",
    "concurrency",
}

_PODCAST_KEYS = (_GLOBAL_KEYS - {"concurrency"}) | {
    "url",
    "backlog_start",
    "backlog_interval",
}


def _compile(template: str, setting: str) -> Template:
    try:
        return compile_pattern(template, setting)
    except PatternError as e:
        raise InvalidConfigError(f"'{setting}': {e}") from e


def _reject_unknown_keys(
    where: str, data: Mapping[str, Any], known: set[str]
) -> None:
    unknown = sorted(set(data) - known)
    if unknown:
        raise InvalidConfigError(
            f"{where}: unknown setting(s): {', '.join(unknown)}"
        )


def _expect_mapping(where: str, value: Any) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise InvalidConfigError(f"{where}: expected an object")
    return value


def _expect_str(where: str, key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise InvalidConfigError(f"{where}: '{key}' must be a string")
    return value


def _expect_tags(where: str, value: Any) -> dict[str, str]:
    if not isinstance(value, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    ):
        raise InvalidConfigError(
            f"{where}: 'id3_tags' must map strings to strings"
        )
    return dict(value)


def _optional_int(where: str, key: str, value: Any) -> Optional[int]:
    if value is None or value is False:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidConfigError(f"{where}: '{key}' must be an integer")
    return value


def _optional_str(where: str, key: str, value: Any) -> Optional[str]:
    if value is None or value is False:
        return None
    return _expect_str(where, key, value)


def _option(
    where: str, key: str, data: Mapping[str, Any], kind: type
) -> ConfigOption:
    if key not in data:
        return ConfigOption.unset()
    value = data[key]
    if value is False:
        return ConfigOption.disabled()
    if isinstance(value, bool) or not isinstance(value, kind):
        raise InvalidConfigError(
            f"{where}: '{key}' must be a {kind.__name__} or false"
        )
    return ConfigOption.of(value)


def _parse_date(where: str, key: str, value: str) -> datetime:
    try:
        return parse_iso_date(value)
    except ValueError:
        raise InvalidConfigError(
            f"{where}: invalid '{key}' {value!r}, use YYYY-MM-DD"
        ) from None
