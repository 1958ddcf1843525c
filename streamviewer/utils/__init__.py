# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Utility modules for URL handling, hardware detection, and metrics."""

from .hardware import available_hw_backends, get_ffmpeg_exe_path, pick_hw_backend
from .helpers import (
    StreamEndpoint,
    ensure_udp_marker,
    host_in_ranges,
    is_multicast_host,
    is_udp_url,
    parse_endpoint,
    strip_udp_marker,
)
from .metrics import RateMeter, ReceiveTracker


__all__ = [
    # Metrics
    "RateMeter",
    "ReceiveTracker",
    # Helpers
    "StreamEndpoint",
    # Hardware
    "available_hw_backends",
    "ensure_udp_marker",
    "get_ffmpeg_exe_path",
    "host_in_ranges",
    "is_multicast_host",
    "is_udp_url",
    "parse_endpoint",
    "pick_hw_backend",
    "strip_udp_marker",
]
