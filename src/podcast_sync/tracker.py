"""
Append-only record of downloaded episode ids, one file per podcast.

The tracker file is UTF-8 text with one id per line, in the order the
episodes were recorded. Duplicate lines are harmless. An id is appended
only after its file is fully written, so the tracker never claims an
episode that is not on disk.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Dict, Iterable, Set

from .errors import TrackerError


def normalize_id(episode_id: str) -> str:
    """Collapse an id onto a single line, as it is stored."""
    return episode_id.replace("\r", " ").replace("\n", " ").strip()


class TrackerFile:
    """Membership set for one podcast backed by an append-only file.

    Safe to share between worker threads: reads and appends are
    serialized by a per-file lock.
    """

    def __init__(self, path: Path):
        """Initialize for ``path``; call :meth:`load` before use."""
        self.path = Path(path)
        self.logger = logging.getLogger(__name__)
        self._ids: Set[str] = set()
        self._lock = threading.Lock()

    def load(self) -> Set[str]:
        """Read the file into memory; a missing file is an empty tracker.

        Raises:
            TrackerError: If the file exists but cannot be read
        """
        ids: Set[str] = set()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                for line in f:
                    entry = line.strip()
                    if entry:
                        ids.add(entry)
        except FileNotFoundError:
            self.logger.debug("No tracker yet at %s", self.path)
        except (OSError, UnicodeDecodeError) as e:
            raise TrackerError(f"Cannot read tracker {self.path}: {e}") from e

        with self._lock:
            self._ids = ids
        self.logger.debug(
            "Loaded %d tracked id(s) from %s", len(ids), self.path
        )
        return set(ids)

    def contains(self, episode_id: str) -> bool:
        """Check whether an id has already been recorded."""
        with self._lock:
            return normalize_id(episode_id) in self._ids

    def record(self, episode_id: str) -> None:
        """Append an id and flush it to disk before returning.

        Raises:
            TrackerError: If the tracker file cannot be written
        """
        entry = normalize_id(episode_id)
        if not entry:
            raise TrackerError("Refusing to record an empty episode id")

        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                prefix = "\n" if self._ends_mid_line() else ""
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(prefix + entry + "\n")
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                raise TrackerError(
                    f"Cannot write tracker {self.path}: {e}"
                ) from e
            self._ids.add(entry)
        self.logger.debug("Tracked %s in %s", entry, self.path)

    def record_many(self, episode_ids: Iterable[str]) -> int:
        """Record every id not yet tracked; returns how many were added."""
        added = 0
        for episode_id in episode_ids:
            if not self.contains(episode_id):
                self.record(episode_id)
                added += 1
        return added

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def _ends_mid_line(self) -> bool:
        """Whether the file's last line lacks its newline."""
        try:
            with open(self.path, "rb") as f:
                f.seek(0, os.SEEK_END)
                if f.tell() == 0:
                    return False
                f.seek(-1, os.SEEK_END)
                return f.read(1) != b"\n"
        except FileNotFoundError:
            return False


class DownloadTracker:
    """Tracker registry for the podcasts of one run.

    Trackers are keyed by their resolved file path, so podcasts that
    are configured to share a file also share its lock and its ids.
    Each file is loaded once per run; later calls consult memory.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self.logger = logging.getLogger(__name__)
        self._files: Dict[Path, TrackerFile] = {}
        self._podcasts: Dict[str, TrackerFile] = {}
        self._lock = threading.Lock()

    def load(self, podcast: str, path: Path) -> TrackerFile:
        """Load (or return the already loaded) tracker for a podcast.

        Raises:
            TrackerError: If the tracker file cannot be read
        """
        key = Path(path).expanduser().resolve()
        with self._lock:
            tracker = self._files.get(key)
            loaded = tracker is not None
            if tracker is None:
                tracker = TrackerFile(Path(path).expanduser())
                self._files[key] = tracker
            self._podcasts[podcast] = tracker
        if loaded:
            self.logger.debug(
                "Tracker for '%s' shares %s", podcast, tracker.path
            )
            return tracker

        try:
            tracker.load()
        except TrackerError:
            with self._lock:
                self._files.pop(key, None)
                self._podcasts.pop(podcast, None)
            raise
        self.logger.info(
            "Tracker for '%s': %d episode(s) already downloaded",
            podcast,
            len(tracker),
        )
        return tracker

    def get(self, podcast: str) -> TrackerFile:
        """Tracker previously loaded for ``podcast``.

        Raises:
            KeyError: If it was never loaded
        """
        with self._lock:
            return self._podcasts[podcast]

    def contains(self, podcast: str, episode_id: str) -> bool:
        """Check whether ``episode_id`` is tracked for ``podcast``."""
        return self.get(podcast).contains(episode_id)

    def record(self, podcast: str, episode_id: str) -> None:
        """Durably record ``episode_id`` for ``podcast``.

        Raises:
            TrackerError: If the tracker file cannot be written
        """
        self.get(podcast).record(episode_id)
