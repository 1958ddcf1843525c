# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""External transcoder: command construction, process running and supervision."""

from .commands import FallbackEncoding, TranscodeSettings, build_fallback_command, build_primary_command
from .runner import (
    CompletionStatus,
    ProcessHandle,
    ProcessResult,
    ProcessRunner,
    SubprocessRunner,
    classify_exit,
)
from .supervisor import TranscodePhase, TranscodeSession, TranscodeSupervisor


__all__ = [
    "CompletionStatus",
    "FallbackEncoding",
    "ProcessHandle",
    "ProcessResult",
    "ProcessRunner",
    "SubprocessRunner",
    "TranscodePhase",
    "TranscodeSession",
    "TranscodeSettings",
    "TranscodeSupervisor",
    "build_fallback_command",
    "build_primary_command",
    "classify_exit",
]
