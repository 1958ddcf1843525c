"""
Pytest configuration for streamviewer tests.

Every test starts from the built-in configuration with the transcode output
directory redirected into the test's tmp_path.
"""

import asyncio
import socket

import pytest

from streamviewer.config import Config
from streamviewer.transcode.runner import CompletionStatus, ProcessHandle, ProcessResult, ProcessRunner


def pytest_configure(config):
    """Configure pytest-asyncio mode."""
    config.addinivalue_line("markers", "asyncio: mark test as async")


@pytest.fixture(autouse=True)
def reset_config(tmp_path):
    Config.load(None)
    Config().set("transcode.output_dir", str(tmp_path / "hls"))
    yield
    Config.load(None)


@pytest.fixture
def free_udp_port():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class FakeHandle(ProcessHandle):
    """Process handle completed by the test instead of a real process."""

    def __init__(self, args, runner):
        super().__init__(args)
        self.runner = runner
        self.cancelled = False
        self._result = asyncio.get_running_loop().create_future()

    @property
    def done(self) -> bool:
        return self._result.done()

    def finish(self, returncode: int, log: str = "") -> None:
        status = CompletionStatus.SUCCESS if returncode == 0 else CompletionStatus.FAILURE
        self._result.set_result(ProcessResult(status, returncode, log))

    def crash(self, exc: Exception) -> None:
        """Makes wait() raise exc, as if the process could no longer be observed."""
        self._result.set_exception(exc)

    async def wait(self) -> ProcessResult:
        return await asyncio.shield(self._result)

    async def cancel(self) -> None:
        if self.done:
            return
        self.cancelled = True
        self.runner.events.append(("cancel", self))
        self._result.set_result(ProcessResult(CompletionStatus.CANCEL, 255, "interrupted"))


class FakeRunner(ProcessRunner):
    """Records launches and cancellations in order."""

    def __init__(self):
        self.handles: list[FakeHandle] = []
        self.events: list[tuple[str, FakeHandle]] = []
        self.launch_error: Exception | None = None

    async def start(self, args):
        if self.launch_error is not None:
            raise self.launch_error
        handle = FakeHandle(args, self)
        self.handles.append(handle)
        self.events.append(("start", handle))
        return handle


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def wait_until():
    """Returns an async helper polling predicate until true or timeout."""

    async def _wait(predicate, timeout: float = 2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return _wait
