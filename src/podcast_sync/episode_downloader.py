"""
Download service for podcast episodes.

Runs per-episode download tasks on a bounded worker pool shared by all
podcasts, then finalizes each file: rename into place, optional tags
and symlink, the user's hook, and finally the tracker entry.
"""

import glob
import logging
import os
import subprocess
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import (
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Set,
    Tuple,
)

from tqdm import tqdm

from .config import DEFAULT_CONCURRENCY
from .downloader import download_file_to_path
from .errors import PatternError, TrackerError, TransferError
from .models import (
    Channel,
    DownloadStatus,
    Episode,
    Podcast,
    PodcastFiles,
)
from .patterns import PatternContext
from .tracker import TrackerFile
from .utils import guess_extension, sanitize_filename


class TagWriter(Protocol):
    """Reads and writes audio file tags (e.g. ID3)."""

    def read(self, path: Path) -> Mapping[str, str]:
        """Return the tags currently stored in ``path``."""
        ...  # pylint: disable=unnecessary-ellipsis

    def write(self, path: Path, tags: Mapping[str, str]) -> None:
        """Store ``tags`` in ``path``."""
        ...  # pylint: disable=unnecessary-ellipsis


@dataclass
class DownloadResult:
    """Result of a download operation."""

    podcast: str
    episode: Episode
    status: DownloadStatus
    file_path: Optional[str] = None
    error: Optional[str] = None
    hook_exit_code: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.status is not DownloadStatus.FAILED

    @property
    def was_cached(self) -> bool:
        return self.status is DownloadStatus.SKIPPED


@dataclass
class PodcastCounts:
    """Per-podcast tally of results."""

    downloaded: int = 0
    skipped: int = 0
    failed: int = 0


@dataclass
class DownloadSummary:
    """Summary of multiple download operations."""

    successful: int
    skipped: int
    failed: int
    results: list[DownloadResult]
    podcast_errors: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_results(
        cls,
        results: list[DownloadResult],
        podcast_errors: Optional[dict[str, str]] = None,
    ) -> "DownloadSummary":
        """Create summary from list of results."""
        successful = sum(
            1 for r in results if r.status is DownloadStatus.DOWNLOADED
        )
        skipped = sum(1 for r in results if r.status is DownloadStatus.SKIPPED)
        failed = sum(1 for r in results if r.status is DownloadStatus.FAILED)

        return cls(
            successful=successful,
            skipped=skipped,
            failed=failed,
            results=results,
            podcast_errors=dict(podcast_errors or {}),
        )

    @property
    def has_failures(self) -> bool:
        return self.failed > 0 or bool(self.podcast_errors)

    def by_podcast(self) -> Dict[str, PodcastCounts]:
        """Counts per podcast name, in first-seen order."""
        counts: Dict[str, PodcastCounts] = {}
        for result in self.results:
            tally = counts.setdefault(result.podcast, PodcastCounts())
            if result.status is DownloadStatus.DOWNLOADED:
                tally.downloaded += 1
            elif result.status is DownloadStatus.SKIPPED:
                tally.skipped += 1
            else:
                tally.failed += 1
        return counts

    def downloaded_paths(self) -> List[str]:
        """Final paths of the files written in this run."""
        return [
            r.file_path
            for r in self.results
            if r.status is DownloadStatus.DOWNLOADED and r.file_path
        ]


@dataclass(frozen=True)
class DownloadTask:
    """One episode ready to be fetched."""

    podcast: Podcast
    channel: Channel
    episode: Episode
    episode_id: str
    download_dir: Path
    tracker: TrackerFile
    now: datetime
    symlink_dir: Optional[Path] = None

    def context(
        self, tags: Optional[Mapping[str, str]] = None
    ) -> PatternContext:
        """Pattern context for this episode."""
        return PatternContext(
            podcast_name=self.podcast.name,
            channel=self.channel,
            episode=self.episode,
            tags=tags,
            now=self.now,
        )


class DownloadManager:
    """Bounded-concurrency executor for episode download tasks.

    The concurrency limit applies across all podcasts. A failure in one
    task never affects its siblings, except that a tracker write failure
    stops the remaining tasks of the same podcast.
    """

    def __init__(
        self,
        concurrency_limit: int = DEFAULT_CONCURRENCY,
        tag_writer: Optional[TagWriter] = None,
        show_progress: bool = True,
    ):
        """Initialize the manager.

        Args:
            concurrency_limit: Maximum simultaneous transfers
            tag_writer: Optional tagging collaborator for ``id3_tags``
            show_progress: Whether to show progress bars
        """
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        self.concurrency_limit = concurrency_limit
        self.tag_writer = tag_writer
        self.show_progress = show_progress
        self.logger = logging.getLogger(__name__)
        self._stop_event = threading.Event()
        self._aborted: Dict[str, str] = {}
        self._aborted_lock = threading.Lock()
        self._claimed: Set[str] = set()
        self._claimed_lock = threading.Lock()

    def stop(self) -> None:
        """Ask in-flight transfers to stop after their current chunk."""
        self._stop_event.set()

    def run(
        self,
        tasks: Sequence[DownloadTask],
        concurrency_limit: Optional[int] = None,
    ) -> DownloadSummary:
        """Download every task; returns one result per task.

        On KeyboardInterrupt, queued tasks are cancelled, running ones
        stop at the next chunk (keeping their ``.part`` file) and the
        interrupt is re-raised.
        """
        if not tasks:
            self.logger.info("No episodes to download")
            return DownloadSummary.from_results([])

        limit = self.concurrency_limit
        if concurrency_limit is not None:
            if concurrency_limit < 1:
                raise ValueError("concurrency_limit must be at least 1")
            limit = concurrency_limit
        self.logger.info(
            "Starting download of %d episodes with %d workers",
            len(tasks),
            limit,
        )

        results: list[DownloadResult] = []
        claimed: List[Tuple[DownloadTask, Path]] = []
        for task in tasks:
            try:
                claimed.append((task, self.claim_destination(task)))
            except (PatternError, TransferError) as e:
                result = self._failed(task, f"cannot resolve file name: {e}")
                results.append(result)
                self._log_result(result)

        executor = ThreadPoolExecutor(max_workers=limit)
        try:
            futures: Dict[Future, DownloadTask] = {
                executor.submit(self.download_episode, task, stem): task
                for task, stem in claimed
            }
            with tqdm(
                total=len(tasks),
                initial=len(results),
                unit="episode",
                desc="Downloading Episodes",
                disable=not self.show_progress,
            ) as progress_bar:
                for future in as_completed(futures):
                    result = future.result()
                    results.append(result)
                    self._log_result(result)
                    progress_bar.update(1)
        except KeyboardInterrupt:
            self.logger.warning("Interrupted, stopping downloads")
            self.stop()
            executor.shutdown(wait=True, cancel_futures=True)
            raise
        finally:
            executor.shutdown(wait=True)

        summary = DownloadSummary.from_results(results)
        self.logger.info(
            "Download results: %d successful, %d skipped, %d failed",
            summary.successful,
            summary.skipped,
            summary.failed,
        )
        return summary

    def download_episode(
        self, task: DownloadTask, stem: Optional[Path] = None
    ) -> DownloadResult:
        """Fetch and finalize one episode; never raises.

        ``stem`` is the destination already claimed by :meth:`run`;
        without it the destination is claimed here.
        """
        name = task.podcast.name
        aborted = self._aborted_reason(name)
        if aborted:
            return self._failed(
                task, f"skipped, tracker unavailable: {aborted}"
            )
        if self._stop_event.is_set():
            return self._failed(task, "interrupted")

        try:
            if stem is None:
                stem = self.claim_destination(task)
            final_path = self._fetch(task, stem)
        except PatternError as e:
            return self._failed(task, f"cannot resolve file name: {e}")
        except TransferError as e:
            return self._failed(task, str(e))
        except Exception as e:  # pylint: disable=broad-except
            self.logger.exception(
                "Unexpected error downloading %s", task.episode.title
            )
            return self._failed(task, str(e))

        self._apply_tags(task, final_path)
        self._create_symlink(task, final_path)
        hook_exit_code = self._run_hook(task, final_path)

        try:
            task.tracker.record(task.episode_id)
        except TrackerError as e:
            self._abort_podcast(name, str(e))
            return self._failed(task, f"tracker error: {e}")

        return DownloadResult(
            podcast=name,
            episode=task.episode,
            status=DownloadStatus.DOWNLOADED,
            file_path=str(final_path),
            hook_exit_code=hook_exit_code,
        )

    def claim_destination(self, task: DownloadTask) -> Path:
        """Reserve the extensionless destination path for a task.

        A name already claimed in this run, or already used by a
        finished file on disk, gets a numbered suffix (" (2)", " (3)",
        ...) so distinct episodes never share a file.

        Raises:
            PatternError: If ``name_pattern`` cannot be evaluated
            TransferError: If the evaluated name is empty
        """
        relative = task.podcast.config.name_pattern.evaluate(
            task.context(), "name_pattern"
        )
        stem = task.download_dir / safe_relative_path(relative)

        with self._claimed_lock:
            candidate = stem
            number = 1
            while (
                _claim_key(candidate) in self._claimed
                or _has_finished_file(candidate)
            ):
                number += 1
                candidate = stem.with_name(f"{stem.name} ({number})")
            self._claimed.add(_claim_key(candidate))

        if candidate != stem:
            self.logger.info(
                "'%s' is taken, saving '%s' as '%s'",
                stem.name,
                task.episode.title,
                candidate.name,
            )
        return candidate

    def _fetch(self, task: DownloadTask, stem: Path) -> Path:
        """Transfer into the stem's ``.part`` file and move into place."""
        try:
            stem.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TransferError(f"Cannot create {stem.parent}: {e}") from e

        partial_path = stem.with_name(stem.name + PodcastFiles.PARTIAL_SUFFIX)
        outcome = download_file_to_path(
            task.episode.url,
            str(partial_path),
            stop_event=self._stop_event,
            show_progress=self.show_progress,
        )

        extension = guess_extension(outcome.content_type, task.episode.url)
        final_path = stem.with_name(stem.name + extension)
        try:
            os.replace(partial_path, final_path)
        except OSError as e:
            raise TransferError(
                f"Cannot move {partial_path} into place: {e}"
            ) from e
        return final_path

    def _apply_tags(self, task: DownloadTask, path: Path) -> None:
        tag_templates = task.podcast.config.id3_tags
        if not tag_templates:
            return
        if self.tag_writer is None:
            self.logger.debug("No tag writer configured, skipping tags")
            return

        try:
            current = dict(self.tag_writer.read(path))
            context = task.context(tags=current)
            values = {
                key: template.evaluate(context, "id3_tags")
                for key, template in tag_templates.items()
            }
            self.tag_writer.write(path, values)
        except (PatternError, OSError, ValueError) as e:
            self.logger.warning("Could not tag %s: %s", path, e)

    def _create_symlink(self, task: DownloadTask, path: Path) -> None:
        if task.symlink_dir is None:
            return
        link = task.symlink_dir / path.name
        try:
            task.symlink_dir.mkdir(parents=True, exist_ok=True)
            if link.is_symlink() or link.exists():
                link.unlink()
            link.symlink_to(path.resolve())
            self.logger.debug("Linked %s -> %s", link, path)
        except OSError as e:
            self.logger.warning("Could not create symlink %s: %s", link, e)

    def _run_hook(self, task: DownloadTask, path: Path) -> Optional[int]:
        """Run the download hook; its exit status is reported, not enforced."""
        hook = task.podcast.config.download_hook
        if not hook:
            return None

        env = dict(os.environ)
        env.update(
            {
                "PODCAST_SYNC_PODCAST": task.podcast.name,
                "PODCAST_SYNC_EPISODE_PATH": str(path),
                "PODCAST_SYNC_EPISODE_GUID": task.episode.guid,
            }
        )
        try:
            completed = subprocess.run(
                [os.path.expanduser(hook), str(path)], env=env, check=False
            )
        except OSError as e:
            self.logger.warning(
                "Download hook %s failed to start: %s", hook, e
            )
            return None

        if completed.returncode != 0:
            self.logger.warning(
                "Download hook %s exited with %d for %s",
                hook,
                completed.returncode,
                path,
            )
        return completed.returncode

    def _failed(self, task: DownloadTask, error: str) -> DownloadResult:
        return DownloadResult(
            podcast=task.podcast.name,
            episode=task.episode,
            status=DownloadStatus.FAILED,
            error=error,
        )

    def _abort_podcast(self, podcast: str, reason: str) -> None:
        with self._aborted_lock:
            self._aborted.setdefault(podcast, reason)
        self.logger.error("Stopping downloads for '%s': %s", podcast, reason)

    def _aborted_reason(self, podcast: str) -> Optional[str]:
        with self._aborted_lock:
            return self._aborted.get(podcast)

    def _log_result(self, result: DownloadResult) -> None:
        if result.status is DownloadStatus.DOWNLOADED:
            self.logger.info("Downloaded: %s", result.episode.title)
        elif result.status is DownloadStatus.FAILED:
            self.logger.error(
                "Failed: %s - %s", result.episode.title, result.error
            )


def safe_relative_path(relative: str) -> Path:
    """Turn an evaluated name into a relative path of sanitized parts.

    ``/`` separates directories; empty, ``.`` and ``..`` parts cannot
    escape the download directory.
    """
    parts = [
        sanitize_filename(part)
        for part in relative.split("/")
        if part.strip()
    ]
    if not parts:
        raise TransferError(f"File name evaluated to nothing: {relative!r}")
    return Path(*parts)


def _claim_key(stem: Path) -> str:
    return os.path.normcase(os.path.abspath(stem))


def _has_finished_file(stem: Path) -> bool:
    """Whether ``stem`` plus a single extension already exists on disk."""
    for path in stem.parent.glob(glob.escape(stem.name) + ".*"):
        suffix = path.name[len(stem.name):]
        if suffix == path.suffix and suffix != PodcastFiles.PARTIAL_SUFFIX:
            return True
    return False
