# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""HTTP API for playback control and player handoff."""

from .server import create_app, start_server


__all__ = ["create_app", "start_server"]
