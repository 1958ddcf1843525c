# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""External process execution for the transcoder.

A runner launches an argument list and hands back a handle whose wait()
resolves to a ProcessResult: a success/cancel/failure classification plus
the full text the process wrote to stderr. Cancellation is an explicit
request that resolves once the process has actually exited.
"""

import asyncio
import contextlib
import itertools
import logging
import os
import signal
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from enum import Enum

from ..media.exceptions import TranscodeLaunchError


_session_ids = itertools.count(1)


class CompletionStatus(Enum):
    SUCCESS = "success"
    CANCEL = "cancel"
    FAILURE = "failure"


@dataclass
class ProcessResult:
    status: CompletionStatus
    returncode: int | None
    log: str = ""


def classify_exit(returncode: int | None, cancel_requested: bool) -> CompletionStatus:
    """Map a process exit to a completion status. A requested cancel wins over the exit code."""
    if cancel_requested:
        return CompletionStatus.CANCEL
    if returncode == 0:
        return CompletionStatus.SUCCESS
    return CompletionStatus.FAILURE


class ProcessHandle(ABC):
    """A running (or finished) external process."""

    def __init__(self, args: list[str]):
        self.args = list(args)
        self.session_id = next(_session_ids)

    @property
    @abstractmethod
    def done(self) -> bool:
        """True once the process has exited."""

    @abstractmethod
    async def wait(self) -> ProcessResult:
        """Wait for the process to exit and return its classified result."""

    @abstractmethod
    async def cancel(self) -> None:
        """Request termination and wait until the process has exited. No-op if already done."""


class ProcessRunner(ABC):
    @abstractmethod
    async def start(self, args: list[str]) -> ProcessHandle:
        """Launch args; raises TranscodeLaunchError if the process cannot be spawned."""


class SubprocessHandle(ProcessHandle):
    """asyncio subprocess with stderr captured into a bounded line buffer."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        args: list[str],
        *,
        log_lines: int = 2000,
        grace_s: float = 5.0,
        logger: logging.Logger | None = None,
    ):
        super().__init__(args)
        self.process = process
        self.grace_s = grace_s
        self.logger = logger or logging.getLogger("transcode")
        self._lines: deque[str] = deque(maxlen=log_lines)
        self._cancel_requested = False
        self._drain_task = asyncio.create_task(self._drain_stderr())
        self._result_task = asyncio.create_task(self._wait_and_classify())

    @property
    def done(self) -> bool:
        return self.process.returncode is not None

    @property
    def log_text(self) -> str:
        return "\n".join(self._lines)

    async def _drain_stderr(self) -> None:
        stream = self.process.stderr
        if stream is None:
            return
        partial = ""
        while True:
            chunk = await stream.read(65536)
            if not chunk:
                break
            text = partial + chunk.decode("utf-8", errors="replace")
            # ffmpeg rewrites progress lines with bare carriage returns
            parts = text.replace("\r", "\n").split("\n")
            partial = parts.pop()
            self._lines.extend(p for p in parts if p.strip())
        if partial.strip():
            self._lines.append(partial)

    async def _wait_and_classify(self) -> ProcessResult:
        returncode = await self.process.wait()
        await self._drain_task
        status = classify_exit(returncode, self._cancel_requested)
        return ProcessResult(status=status, returncode=returncode, log=self.log_text)

    async def wait(self) -> ProcessResult:
        return await asyncio.shield(self._result_task)

    async def cancel(self) -> None:
        if self.done:
            return

        self._cancel_requested = True
        self.logger.info(f"cancelling transcode session {self.session_id} (pid={self.process.pid})")
        try:
            if os.name == "nt":
                self.process.terminate()
            else:
                # SIGINT lets ffmpeg finish the current segment and exit cleanly
                self.process.send_signal(signal.SIGINT)
        except ProcessLookupError:
            pass

        try:
            await asyncio.wait_for(asyncio.shield(self._result_task), timeout=self.grace_s)
        except asyncio.TimeoutError:
            self.logger.warning(f"session {self.session_id} ignored interrupt for {self.grace_s}s, killing")
            with contextlib.suppress(ProcessLookupError):
                self.process.kill()
            await asyncio.shield(self._result_task)


class SubprocessRunner(ProcessRunner):
    """Runs commands with asyncio.create_subprocess_exec."""

    def __init__(self, *, log_lines: int = 2000, grace_s: float = 5.0, logger: logging.Logger | None = None):
        self.log_lines = log_lines
        self.grace_s = grace_s
        self.logger = logger or logging.getLogger("transcode")

    async def start(self, args: list[str]) -> SubprocessHandle:
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self.logger.error(f"failed to launch {args[0]}: {e}")
            raise TranscodeLaunchError(f"Cannot launch {args[0]}: {e}") from e

        handle = SubprocessHandle(
            process, args, log_lines=self.log_lines, grace_s=self.grace_s, logger=self.logger
        )
        self.logger.debug(f"session {handle.session_id} started pid={process.pid}")
        return handle
