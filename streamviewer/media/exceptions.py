# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Stream and transcode exceptions.

Structural failures (cannot parse a URL, cannot bind a socket, cannot launch
the transcoder, both transcode attempts failed) are raised. Recoverable
conditions (receive timeouts, transient socket errors, a playlist that is
not ready yet, a failed decoder query) are absorbed where they happen and
never surface as exceptions.

Diagnostic detail is logged immediately before raising. The attributes are
structured data for callers deciding what to show or retry.
"""


class StreamSourceError(Exception):
    """Base exception for stream acquisition errors.

    Attributes:
        source_url: URL of the stream that caused the error
        error_code: Numeric error code (errno, process exit code)
        retryable: Whether the caller may reasonably retry
    """

    def __init__(
        self,
        message: str,
        source_url: str | None = None,
        error_code: int | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.source_url = source_url
        self.error_code = error_code
        self.retryable = retryable


class InvalidStreamUrlError(StreamSourceError):
    """The URL cannot be parsed into a usable endpoint (not retryable)."""

    def __init__(self, message: str, source_url: str | None = None):
        super().__init__(message, source_url, retryable=False)


class StreamOpenError(StreamSourceError):
    """Address resolution or socket bind failed.

    Fatal for the current open attempt. The caller decides whether a new play
    attempt is worthwhile, so no retry happens inside the source.
    """

    def __init__(self, message: str, source_url: str | None = None, error_code: int | None = None):
        super().__init__(message, source_url, error_code, retryable=False)


class TranscodeError(StreamSourceError):
    """Base exception for external transcoder problems."""


class TranscodeLaunchError(TranscodeError):
    """The transcoder executable is missing or could not be spawned."""

    def __init__(self, message: str, source_url: str | None = None):
        super().__init__(message, source_url, retryable=False)


class TranscodeFailedError(TranscodeError):
    """Both the remux and the re-encode attempt failed.

    Attributes:
        phase: Name of the phase whose process failed last
        log: Full text output of the failing process
    """

    def __init__(
        self,
        message: str,
        source_url: str | None = None,
        returncode: int | None = None,
        phase: str = "",
        log: str = "",
    ):
        super().__init__(message, source_url, error_code=returncode, retryable=True)
        self.phase = phase
        self.log = log
