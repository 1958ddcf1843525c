# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Media handling modules for UDP sources, playlists, and decoder capabilities."""

# Stream-layer exceptions
from .exceptions import (
    InvalidStreamUrlError,
    StreamOpenError,
    StreamSourceError,
    TranscodeError,
    TranscodeFailedError,
    TranscodeLaunchError,
)
from .capabilities import CapabilityOracle, CodecCapabilities, PyAvCapabilityOracle, TranscodePolicy
from .playlist import PlaylistArtifact, is_playlist_ready, wait_for_playlist
from .udp import END_OF_INPUT, LENGTH_UNSET, UdpDataSource


__all__ = [
    "END_OF_INPUT",
    "LENGTH_UNSET",
    "CapabilityOracle",
    "CodecCapabilities",
    "InvalidStreamUrlError",
    "PlaylistArtifact",
    "PyAvCapabilityOracle",
    "StreamOpenError",
    "StreamSourceError",
    "TranscodeError",
    "TranscodeFailedError",
    "TranscodeLaunchError",
    "TranscodePolicy",
    "UdpDataSource",
    "is_playlist_ready",
    "wait_for_playlist",
]
