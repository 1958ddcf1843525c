# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path


HLS_HEADER_TAG = "#EXTM3U"
HLS_TARGET_DURATION_TAG = "#EXT-X-TARGETDURATION"
HLS_SEGMENT_DURATION_TAG = "#EXTINF"


@dataclass
class PlaylistArtifact:
    """A local segmented-stream index plus its segment directory."""

    path: Path
    ready: bool = False

    @property
    def directory(self) -> Path:
        return self.path.parent

    @property
    def uri(self) -> str:
        return self.path.resolve().as_uri()


def is_playlist_content_ready(content: str) -> bool:
    """Header tag plus at least one duration tag; a bare header is a partial write."""
    return HLS_HEADER_TAG in content and (
        HLS_SEGMENT_DURATION_TAG in content or HLS_TARGET_DURATION_TAG in content
    )


def is_playlist_ready(path: Path) -> bool:
    """Check that the index file exists, is non-empty and carries the required tags."""
    try:
        if not path.is_file() or path.stat().st_size == 0:
            return False
        return is_playlist_content_ready(path.read_text(encoding="utf-8", errors="replace"))
    except OSError as e:
        logging.getLogger("playlist").debug(f"error reading {path}: {e}")
        return False


def remove_stale_playlist(path: Path, logger: logging.Logger | None = None) -> None:
    """Delete a previous session's index so a readiness wait never sees it."""
    try:
        path.unlink()
        (logger or logging.getLogger("playlist")).info(f"deleted existing playlist {path}")
    except FileNotFoundError:
        pass


async def wait_for_playlist(
    path: Path,
    timeout_s: float,
    poll_s: float,
    logger: logging.Logger | None = None,
    abort: Callable[[], bool] | None = None,
) -> bool:
    """Poll path until it looks ready or timeout_s elapses.

    A timeout is not an error: returns False and the caller must treat the
    playlist as possibly not yet playable. abort is checked on every poll and
    ends the wait early (not ready) once it returns True.
    """
    logger = logger or logging.getLogger("playlist")
    loop = asyncio.get_running_loop()
    start = loop.time()
    deadline = start + timeout_s

    logger.info(f"waiting up to {timeout_s:.1f}s for {path}")
    while True:
        if is_playlist_ready(path):
            size = path.stat().st_size
            logger.info(f"playlist ready: {path} ({size} bytes) after {loop.time() - start:.2f}s")
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"playlist preview: {_preview(path, 200)!r}")
            return True

        if abort is not None and abort():
            logger.info(f"stopped waiting for {path}: writer is gone")
            return False

        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        await asyncio.sleep(min(poll_s, remaining))

    waited = loop.time() - start
    if path.exists():
        logger.warning(
            f"timeout: playlist exists but may be incomplete ({_size(path)} bytes): {_preview(path, 200)!r}"
        )
    else:
        logger.warning(f"timeout: playlist was never created (waited {waited:.2f}s)")
    return False


def _size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0


def _preview(path: Path, limit: int) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")[:limit]
    except OSError as e:
        return f"<unreadable: {e}>"
