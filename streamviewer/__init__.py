# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Receive UDP/multicast MPEG-TS and hand it to a player, transcoding when needed."""

__version__ = "0.1.0"
