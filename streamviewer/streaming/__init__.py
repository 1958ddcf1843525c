# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Streaming module for streamviewer.

This module handles playback requests including:
- Play options built from control parameters
- Direct vs transcode path selection
- Player handoff and user-facing failure hints
"""

from .core import PlaybackHandoff, PlaybackOrchestrator, failure_hint, playback_error_hint
from .options import PlayOptions


__all__ = ["PlayOptions", "PlaybackHandoff", "PlaybackOrchestrator", "failure_hint", "playback_error_hint"]
