"""
Exception hierarchy for podcast syncing.
"""


class PodcastSyncError(Exception):
    """Base exception for all podcast-sync errors."""


class ConfigError(PodcastSyncError):
    """Configuration-related errors."""


class InvalidConfigError(ConfigError):
    """Invalid configuration data."""


class ConfigNotFoundError(ConfigError):
    """Configuration file not found."""


class FeedError(PodcastSyncError):
    """Feed retrieval and parsing errors."""


class FeedDownloadError(FeedError):
    """The feed document could not be fetched."""


class FeedParseError(FeedError):
    """The feed document is not well-formed RSS."""


class PatternError(PodcastSyncError):
    """Base class for template errors."""


class PatternParseError(PatternError):
    """Malformed template string."""


class PatternEvalError(PatternError):
    """A compiled template could not be evaluated."""


class DisallowedPatternError(PatternEvalError):
    """A pattern was used in a setting that cannot provide its data."""

    def __init__(self, pattern: str, setting: str) -> None:
        super().__init__(
            f"pattern '{pattern}' is not allowed in '{setting}'"
        )
        self.pattern = pattern
        self.setting = setting


class MissingTagError(PatternEvalError):
    """An XML tag or attribute referenced by a pattern does not exist."""


class TransferError(PodcastSyncError):
    """Enclosure transfer failed; any partial artifact is kept."""


class TrackerError(PodcastSyncError):
    """The download tracker file could not be read or written."""
