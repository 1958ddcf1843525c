# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Two-phase transcode supervisor.

A session starts with a stream-copy remux. If that attempt completes with a
failure (not success, not a requested cancel) a constrained re-encode is
launched against the same input and output directory. A failed re-encode is
terminal and is reported with the process log. At most one session exists at
a time: a new start cancels the previous session and waits for it to finish
before launching anything.
"""

import asyncio
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from ..config import Config
from ..media.exceptions import TranscodeFailedError, TranscodeLaunchError
from ..media.playlist import PlaylistArtifact, remove_stale_playlist, wait_for_playlist
from ..utils.hardware import get_ffmpeg_exe_path
from ..utils.helpers import ensure_udp_marker
from .commands import TranscodeSettings, build_fallback_command, build_primary_command
from .runner import CompletionStatus, ProcessHandle, ProcessResult, ProcessRunner, SubprocessRunner


class TranscodePhase(Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"
    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_PHASES = frozenset({TranscodePhase.SUCCEEDED, TranscodePhase.CANCELLED, TranscodePhase.FAILED})


@dataclass
class TranscodeSession:
    input_url: str
    artifact: PlaylistArtifact
    phase: TranscodePhase = TranscodePhase.PRIMARY
    handle: ProcessHandle | None = None
    error: TranscodeFailedError | None = None
    results: list[tuple[TranscodePhase, ProcessResult]] = field(default_factory=list)
    cancel_requested: bool = False
    monitor: asyncio.Task | None = field(default=None, repr=False)

    @property
    def is_active(self) -> bool:
        return self.phase not in TERMINAL_PHASES

    @property
    def log(self) -> str:
        """Log of the most recent attempt."""
        return self.results[-1][1].log if self.results else ""


class TranscodeSupervisor:
    def __init__(
        self,
        settings: TranscodeSettings | None = None,
        runner: ProcessRunner | None = None,
        ffmpeg: str | None = None,
        *,
        ready_timeout_s: float | None = None,
        ready_poll_s: float | None = None,
        on_failure: Callable[[TranscodeSession], None] | None = None,
        logger: logging.Logger | None = None,
    ):
        config = Config()
        self.logger = logger or logging.getLogger("transcode")
        self.settings = settings or TranscodeSettings.from_config()
        self.runner = runner or SubprocessRunner(
            log_lines=int(config.get("transcode.log_lines")),
            grace_s=float(config.get("transcode.cancel_grace_s")),
            logger=self.logger,
        )
        self._ffmpeg = ffmpeg
        self.ready_timeout_s = (
            float(config.get("transcode.ready_timeout_s")) if ready_timeout_s is None else ready_timeout_s
        )
        self.ready_poll_s = float(config.get("transcode.ready_poll_s")) if ready_poll_s is None else ready_poll_s
        self.on_failure = on_failure
        self.session: TranscodeSession | None = None
        self._lock = asyncio.Lock()

    @property
    def ffmpeg(self) -> str:
        if self._ffmpeg is None:
            exe = get_ffmpeg_exe_path()
            if not exe:
                self.logger.error("ffmpeg not found on PATH and imageio-ffmpeg has no bundled binary")
                raise TranscodeLaunchError("ffmpeg executable not found")
            self._ffmpeg = exe
        return self._ffmpeg

    @property
    def is_active(self) -> bool:
        return self.session is not None and self.session.is_active

    async def start(self, input_url: str) -> PlaylistArtifact:
        """Start a session for input_url and wait (bounded) for its playlist.

        Returns the artifact with ready=False if the playlist did not appear in
        time. Raises TranscodeLaunchError if the remux cannot be spawned and
        TranscodeFailedError if both attempts fail before the playlist is ready.
        """
        session = await self.launch(input_url)
        return await self.wait_ready(session)

    async def launch(self, input_url: str) -> TranscodeSession:
        """Cancel any previous session and launch the remux for input_url. Does not wait."""
        async with self._lock:
            await self._cancel_session()

            source = ensure_udp_marker(input_url)
            os.makedirs(self.settings.output_dir, exist_ok=True)
            artifact = PlaylistArtifact(self.settings.playlist_path)
            remove_stale_playlist(artifact.path, self.logger)

            session = TranscodeSession(input_url=source, artifact=artifact)
            self.session = session
            try:
                session.handle = await self._launch(session, build_primary_command)
            except TranscodeLaunchError:
                session.phase = TranscodePhase.FAILED
                raise
            session.monitor = asyncio.create_task(self._monitor(session))
            session.monitor.add_done_callback(lambda task: self._on_monitor_done(session, task))
            return session

    async def wait_ready(self, session: TranscodeSession) -> PlaylistArtifact:
        """Wait (bounded) for the session's playlist. Returns early if the session ends."""
        artifact = session.artifact
        ready = await wait_for_playlist(
            artifact.path,
            self.ready_timeout_s,
            self.ready_poll_s,
            logger=self.logger,
            abort=lambda: session.phase in (TranscodePhase.FAILED, TranscodePhase.CANCELLED),
        )
        if session.phase is TranscodePhase.FAILED and session.error is not None:
            raise session.error
        # A session replaced while we were waiting does not own the playlist anymore
        artifact.ready = ready and self.session is session
        return artifact

    async def stop(self) -> None:
        async with self._lock:
            await self._cancel_session()

    async def _launch(self, session: TranscodeSession, build: Callable[..., list[str]]) -> ProcessHandle:
        args = build(self.ffmpeg, session.input_url, self.settings)
        self.logger.info(f"starting {session.phase.value} transcode: {' '.join(args)}")
        handle = await self.runner.start(args)
        self.logger.info(f"{session.phase.value} transcode session {handle.session_id} started")
        return handle

    async def _cancel_session(self) -> None:
        session = self.session
        if session is None or not session.is_active:
            return

        session.cancel_requested = True
        if session.handle is not None:
            await session.handle.cancel()
        if session.monitor is not None:
            # crashes are reported by _on_monitor_done
            await asyncio.wait([session.monitor])
        if session.is_active:
            session.phase = TranscodePhase.CANCELLED
        self.logger.info(f"transcode for {session.input_url} cancelled")

    async def _monitor(self, session: TranscodeSession) -> None:
        while True:
            handle = session.handle
            if handle is None:
                raise RuntimeError("transcode session has no process handle")
            result = await handle.wait()
            session.results.append((session.phase, result))

            if result.status is CompletionStatus.SUCCESS:
                self.logger.info(f"{session.phase.value} transcode session {handle.session_id} completed")
                session.phase = TranscodePhase.SUCCEEDED
                return

            if result.status is CompletionStatus.CANCEL or session.cancel_requested:
                self.logger.info(f"{session.phase.value} transcode session {handle.session_id} cancelled")
                session.phase = TranscodePhase.CANCELLED
                return

            self.logger.error(
                f"{session.phase.value} transcode session {handle.session_id} failed "
                f"with return code {result.returncode}"
            )
            self.logger.error(f"ffmpeg log:\n{result.log}")

            if session.phase is not TranscodePhase.PRIMARY:
                self._fail(session, "Transcoding failed after re-encode retry", result.returncode, result.log)
                return

            session.phase = TranscodePhase.FALLBACK
            self.logger.warning("remux failed, retrying with re-encode")
            try:
                session.handle = await self._launch(session, build_fallback_command)
            except TranscodeLaunchError as e:
                self._fail(session, "Transcoding failed after re-encode retry", None, str(e))
                return

            if session.cancel_requested:
                # stop() arrived while the re-encode was being spawned
                await session.handle.cancel()

    def _fail(self, session: TranscodeSession, message: str, returncode: int | None, log: str) -> None:
        failed_phase = session.phase
        session.phase = TranscodePhase.FAILED
        session.error = TranscodeFailedError(
            message,
            source_url=session.input_url,
            returncode=returncode,
            phase=failed_phase.value,
            log=log,
        )
        self.logger.error(f"transcode for {session.input_url} failed: {session.error}")
        if self.on_failure is not None:
            try:
                self.on_failure(session)
            except Exception as e:
                self.logger.error(f"failure callback raised: {e!r}")

    def _on_monitor_done(self, session: TranscodeSession, task: asyncio.Task) -> None:
        try:
            exc = task.exception()
        except asyncio.CancelledError:
            return
        if not exc:
            return

        self.logger.error(f"transcode monitor crashed: {exc!r}")
        handle = session.handle
        if handle is not None and not handle.done:
            # Nothing supervises this process anymore
            task.get_loop().create_task(handle.cancel())
        if session.is_active:
            log = f"{session.log}\nmonitor crashed: {exc!r}".strip()
            self._fail(session, "Transcode supervision failed", None, log)
