# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..media.capabilities import TranscodePolicy, log_decoder_inventory
from ..media.exceptions import (
    InvalidStreamUrlError,
    StreamOpenError,
    StreamSourceError,
    TranscodeFailedError,
    TranscodeLaunchError,
)
from ..media.playlist import PlaylistArtifact
from ..media.udp import UdpDataSource
from ..transcode.supervisor import TranscodeSession, TranscodeSupervisor
from ..utils.helpers import parse_endpoint, strip_udp_marker
from .options import PlayOptions


HANDOFF_STREAM = "stream"
HANDOFF_PLAYLIST = "playlist"

# Player error codes reported back through the API
PLAYER_ERROR_MESSAGES = {
    "network": "Network connection failed",
    "content_type": "Invalid content type - expected MPEG-TS",
    "container_malformed": "Stream format error - ensure the sender outputs MPEG-TS",
    "decoder_init": "Decoder initialization failed - check codec support",
    "decoder_query": "Decoder query failed - codec not supported",
}

MALFORMED_PLAYLIST_MARKERS = ("contentIsMalformed", "Loading finished before preparation", "malformed")
EXCEEDS_CAPABILITIES_MARKER = "EXCEEDS_CAPABILITIES"


def playback_error_hint(code: Optional[str], message: str, transcoding: bool) -> str:
    """Turn a player error into a user-facing message.

    Segmented-stream parse errors and decoder capability errors recommend
    forced transcoding, or note that it was already in use.
    """
    logger = logging.getLogger('streaming')
    message = message or ""

    if code == "playlist_parsing":
        if any(marker in message for marker in MALFORMED_PLAYLIST_MARKERS):
            logger.warning("segmented stream appears malformed - likely a stream-copy remux issue")
            if not transcoding:
                return "HLS stream malformed - try enabling forced transcoding"
            return "HLS parsing failed - stream may be incompatible"
        return f"HLS parsing error - {message}"

    if code == "decoder_capabilities":
        if EXCEEDS_CAPABILITIES_MARKER in message:
            logger.warning("stream format exceeds decoder capabilities")
            if not transcoding:
                return "Video format too demanding for this device - enable forced transcoding"
            return "Video decoder overloaded - stream may need further optimization"
        return f"Video decoder error - {message}"

    return PLAYER_ERROR_MESSAGES.get(code or "", f"Playback error: {message}")


def failure_hint(error: Exception, transcoding: bool) -> str:
    """Suggest the alternate path for a structural failure."""
    if isinstance(error, InvalidStreamUrlError):
        return "Check the stream URL, e.g. udp://@239.0.0.1:1234"
    if isinstance(error, (TranscodeLaunchError, TranscodeFailedError)):
        return "Transcoding failed - try playing without forced transcoding"
    if isinstance(error, StreamOpenError):
        return "Cannot receive the stream directly - check the address or try forced transcoding"
    if transcoding:
        return "Try playing without forced transcoding"
    return "Try enabling forced transcoding"


@dataclass
class PlaybackHandoff:
    """What the external player should open for the current play request."""

    kind: str
    uri: str
    options: PlayOptions
    artifact: Optional[PlaylistArtifact] = None
    forced: bool = False

    @property
    def transcoding(self) -> bool:
        return self.kind == HANDOFF_PLAYLIST

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "uri": self.uri,
            "ready": self.artifact.ready if self.artifact else True,
            "forced": self.forced,
            **self.options.get_applied_params(),
        }


class PlaybackOrchestrator:
    """Chooses the direct or transcode path per play request and owns the live resources.

    The choice is made once per request. A new request replaces the previous
    one: direct sources are closed and any transcode session is cancelled.
    """

    def __init__(
        self,
        supervisor: Optional[TranscodeSupervisor] = None,
        policy: Optional[TranscodePolicy] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger or logging.getLogger('streaming')
        self.supervisor = supervisor or TranscodeSupervisor(on_failure=self._on_transcode_failure)
        if self.supervisor.on_failure is None:
            self.supervisor.on_failure = self._on_transcode_failure
        self.policy = policy or TranscodePolicy()
        self.current: Optional[PlaybackHandoff] = None
        self.last_error: Optional[str] = None
        self._sources: set[UdpDataSource] = set()
        self._play_lock = asyncio.Lock()
        self._generation = 0

    async def play(self, options: PlayOptions) -> PlaybackHandoff:
        """Start playback of options.url and return the handoff for the player.

        Raises:
            InvalidStreamUrlError: the direct path was chosen for an unusable URL
            TranscodeLaunchError: the transcoder could not be started
            TranscodeFailedError: both transcode attempts failed before the playlist was ready
        """
        # The lock covers path selection and launch, not the readiness wait,
        # so stop() or a newer play() can cancel a session that is still warming up
        async with self._play_lock:
            self._generation += 1
            generation = self._generation
            options.log_info(f"sources={len(self._sources)}")
            self.last_error = None
            self.current = None
            self.close_direct_sources()

            await asyncio.to_thread(log_decoder_inventory, self.policy.oracle, self.logger)

            forced = False
            if options.is_udp and not options.force_transcode:
                forced = await asyncio.to_thread(self.policy.should_force_transcode, options.url)

            try:
                if options.force_transcode or forced:
                    if forced:
                        self.logger.info("automatically enabling transcoding for this stream")
                    session = await self.supervisor.launch(options.url)
                else:
                    handoff = await self._play_direct(options)
                    self._commit(generation, handoff, forced)
                    return handoff
            except StreamSourceError as e:
                self.last_error = str(e)
                raise

        try:
            artifact = await self.supervisor.wait_ready(session)
        except StreamSourceError as e:
            if generation == self._generation:
                self.last_error = str(e)
            raise
        if not artifact.ready:
            self.logger.warning(f"handing off {artifact.path} before it is ready")
        handoff = PlaybackHandoff(HANDOFF_PLAYLIST, artifact.uri, options, artifact=artifact, forced=forced)
        self._commit(generation, handoff, forced)
        return handoff

    def _commit(self, generation: int, handoff: PlaybackHandoff, forced: bool) -> None:
        if generation != self._generation:
            self.logger.info(f"play request for {handoff.options.url} was superseded")
            return
        self.current = handoff
        self.logger.info(f"handoff kind={handoff.kind} uri={handoff.uri} forced={forced}")

    async def _play_direct(self, options: PlayOptions) -> PlaybackHandoff:
        await self.supervisor.stop()
        uri = strip_udp_marker(options.url)
        if options.is_udp:
            try:
                parse_endpoint(uri, default_port=0)
            except ValueError as e:
                self.logger.error(f"invalid stream URL {uri}: {e}")
                raise InvalidStreamUrlError(f"Invalid stream URL: {e}", uri) from e
        return PlaybackHandoff(HANDOFF_STREAM, uri, options)

    async def stop(self) -> None:
        async with self._play_lock:
            self._generation += 1
            self.close_direct_sources()
            await self.supervisor.stop()
            if self.current is not None:
                self.logger.info(f"stopped {self.current.kind} playback of {self.current.options.url}")
            self.current = None

    def open_direct_source(self) -> UdpDataSource:
        """Open a new source on the current direct handoff. Blocking (socket bind).

        Raises:
            StreamOpenError: no direct UDP playback is active, or the open failed
        """
        current = self.current
        if current is None or current.kind != HANDOFF_STREAM or not current.options.is_udp:
            raise StreamOpenError("No direct UDP playback is active")

        source = UdpDataSource()
        source.open(current.uri)
        self._sources.add(source)
        return source

    def release_direct_source(self, source: UdpDataSource) -> None:
        self._sources.discard(source)
        source.close()

    def close_direct_sources(self) -> None:
        sources, self._sources = self._sources, set()
        for source in sources:
            source.close()

    def _on_transcode_failure(self, session: TranscodeSession) -> None:
        self.last_error = str(session.error)
        self.logger.error(f"{self.last_error} - {failure_hint(session.error, transcoding=True)}")

    def status(self) -> Dict[str, Any]:
        session = self.supervisor.session
        return {
            "playing": self.current is not None,
            "handoff": self.current.to_dict() if self.current else None,
            "transcode": {
                "phase": session.phase.value,
                "input": session.input_url,
                "ready": session.artifact.ready,
            } if session else None,
            "direct_sources": len(self._sources),
            "last_error": self.last_error,
        }
