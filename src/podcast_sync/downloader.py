"""
File downloading functionality for RSS feeds and episode enclosures.
"""

import logging
import os
import re
import threading
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import urlparse

import requests
from tqdm import tqdm

from .errors import FeedDownloadError, TransferError

REQUEST_TIMEOUT = 30
CHUNK_SIZE = 8192

_CONTENT_RANGE_TOTAL = re.compile(r"/\s*(\d+)\s*$")


@dataclass
class TransferOutcome:
    """What a completed transfer left at the partial path."""

    path: str
    size: int
    content_type: Optional[str] = None
    resumed_from: int = 0


# RSS Download Functions
def download_rss_from_url(rss_url: str) -> bytes:
    """Download RSS content from URL.

    Raises:
        FeedDownloadError: On network errors, bad status or empty body
    """
    logger = logging.getLogger(__name__)
    logger.info("Downloading RSS from %s", rss_url)
    try:
        response = requests.get(rss_url, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise FeedDownloadError(
            f"RSS download error for {rss_url}: {e}"
        ) from e

    if not response.content:
        raise FeedDownloadError(f"Empty RSS response from {rss_url}")
    logger.info(
        "Successfully downloaded RSS content (%d bytes)",
        len(response.content),
    )
    return response.content


def load_rss_from_file(rss_file_path: str) -> bytes:
    """Load RSS content from local file.

    Raises:
        FeedDownloadError: If the file is missing, unreadable or empty
    """
    logger = logging.getLogger(__name__)
    logger.info("Loading RSS from %s", rss_file_path)
    try:
        with open(rss_file_path, "rb") as f:
            rss_content = f.read()
    except OSError as e:
        raise FeedDownloadError(
            f"RSS file read error for {rss_file_path}: {e}"
        ) from e

    if not rss_content:
        raise FeedDownloadError(f"RSS file is empty: {rss_file_path}")
    logger.info("Successfully loaded RSS content (%d bytes)", len(rss_content))
    return rss_content


def fetch_rss(source: str) -> bytes:
    """Fetch a feed from an http(s) URL, a file:// URL or a local path."""
    parsed = urlparse(source)
    if parsed.scheme in ("http", "https"):
        return download_rss_from_url(source)
    if parsed.scheme == "file":
        return load_rss_from_file(parsed.path)
    return load_rss_from_file(os.path.expanduser(source))


# Enclosure Download Functions
def download_file_to_path(
    file_url: str,
    partial_path: str,
    stop_event: Optional[threading.Event] = None,
    show_progress: bool = True,
) -> TransferOutcome:
    """Download ``file_url`` into ``partial_path``, resuming if possible.

    An existing non-empty partial file triggers a ``Range`` request from
    its current length. The partial file is kept on every failure so the
    next attempt can resume.

    Args:
        file_url: Enclosure URL
        partial_path: Staging file (``.part``); caller renames on success
        stop_event: Set to interrupt the transfer between chunks
        show_progress: Whether to show a byte progress bar

    Raises:
        TransferError: On network error, bad status, truncation or stop
    """
    logger = logging.getLogger(__name__)
    output_filename = os.path.basename(partial_path)

    resume_from = 0
    if os.path.exists(partial_path):
        resume_from = os.path.getsize(partial_path)

    expected_total: Optional[int] = None
    headers = {}
    if resume_from > 0:
        headers["Range"] = f"bytes={resume_from}-"
        logger.info("Resuming %s from byte %d", output_filename, resume_from)
    else:
        logger.info("Downloading %s from %s", output_filename, file_url)

    try:
        with requests.get(
            file_url, headers=headers, stream=True, timeout=REQUEST_TIMEOUT
        ) as response:
            content_type = response.headers.get("content-type")

            if resume_from > 0 and response.status_code == 416:
                total = _content_range_total(response.headers)
                if total == resume_from:
                    logger.debug(
                        "Partial file already complete: %s", partial_path
                    )
                    return TransferOutcome(
                        partial_path, resume_from, content_type, resume_from
                    )
                raise TransferError(
                    f"Range not satisfiable for {file_url} "
                    f"(have {resume_from} bytes, server reports {total})"
                )

            response.raise_for_status()

            if resume_from > 0 and response.status_code != 206:
                logger.warning(
                    "Server ignored range request, restarting %s",
                    output_filename,
                )
                resume_from = 0

            expected_total = _expected_total(response, resume_from)
            mode = "ab" if resume_from > 0 else "wb"
            logger.debug(
                "Expecting %s bytes total for %s",
                expected_total if expected_total is not None else "unknown",
                output_filename,
            )

            os.makedirs(os.path.dirname(partial_path) or ".", exist_ok=True)
            with open(partial_path, mode) as output_file:
                with tqdm(
                    total=expected_total,
                    initial=resume_from,
                    unit="B",
                    unit_scale=True,
                    desc=output_filename,
                    leave=False,
                    disable=not show_progress,
                ) as progress_bar:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if stop_event is not None and stop_event.is_set():
                            raise TransferError(
                                "Interrupted while downloading "
                                f"{output_filename}"
                            )
                        if chunk:  # Filter out keep-alive chunks
                            output_file.write(chunk)
                            progress_bar.update(len(chunk))
                output_file.flush()
                os.fsync(output_file.fileno())
    except requests.exceptions.RequestException as e:
        raise TransferError(
            f"Download failed for {output_filename}: {e}"
        ) from e
    except OSError as e:
        raise TransferError(f"Cannot write {partial_path}: {e}") from e

    size = os.path.getsize(partial_path)
    if expected_total is not None and size > expected_total:
        # Cannot be resumed from; start over next time.
        os.remove(partial_path)
        raise TransferError(
            f"Oversized download for {output_filename}: "
            f"{size} of {expected_total} bytes, partial file discarded"
        )
    if expected_total is not None and size < expected_total:
        raise TransferError(
            f"Truncated download for {output_filename}: "
            f"{size} of {expected_total} bytes"
        )

    logger.info("Download complete: %s (%d bytes)", output_filename, size)
    return TransferOutcome(partial_path, size, content_type, resume_from)


# Helper Functions
def _content_range_total(headers: Mapping[str, str]) -> Optional[int]:
    """Total size from a ``Content-Range`` header, if present."""
    match = _CONTENT_RANGE_TOTAL.search(headers.get("content-range", ""))
    return int(match.group(1)) if match else None


def _expected_total(
    response: requests.Response, resume_from: int
) -> Optional[int]:
    """Final file size implied by the response, or None if unknown."""
    if response.status_code == 206:
        total = _content_range_total(response.headers)
        if total is not None:
            return total
    length = response.headers.get("content-length")
    if length is None or not length.isdigit():
        return None
    return resume_from + int(length)
