"""Shared test fixtures for the fanssh test suite."""

import asyncio
import logging
from types import SimpleNamespace

import asyncssh
import pytest
import structlog

import fanssh.ssh


# ---------------------------------------------------------------------------
# Fake asyncssh connection
# ---------------------------------------------------------------------------


class FakeStream:
    """Async line iterator standing in for an asyncssh SSHReader."""

    def __init__(self, text: str = ""):
        self._lines = text.splitlines(keepends=True)

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for line in self._lines:
            # Reason: yield to the loop between lines so the stdout and
            # stderr pumps really interleave.
            await asyncio.sleep(0)
            yield line


class FakeStdin:
    """Records write_eof() calls."""

    def __init__(self):
        self.eof = False

    def write_eof(self):
        self.eof = True


class FakeProcess:
    """Fake asyncssh SSHClientProcess with predetermined output.

    Attributes:
        stdout: Stream yielding the configured stdout lines.
        stderr: Stream yielding the configured stderr lines.
        exit_status: Exit status reported by wait().
        exit_signal: Exit signal tuple reported by wait(), or None.
    """

    def __init__(self, stdout="", stderr="", exit_status=0, exit_signal=None):
        self.stdout = FakeStream(stdout)
        self.stderr = FakeStream(stderr)
        self.stdin = FakeStdin()
        self.exit_status = exit_status
        self.exit_signal = exit_signal

    async def wait(self):
        """Return a completed-process record."""
        return SimpleNamespace(exit_status=self.exit_status, exit_signal=self.exit_signal)


class FakeConnection:
    """Fake asyncssh SSHClientConnection for one host."""

    def __init__(self, fake, host, response):
        self._fake = fake
        self.host = host
        self.response = response
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.closed = True

    async def create_process(self, command=None, **kwargs):
        """Record the command and return a FakeProcess (or raise)."""
        self._fake.commands.append((self.host, command, kwargs))
        if self.response.open_error is not None:
            raise self.response.open_error
        process = FakeProcess(
            stdout=self.response.stdout,
            stderr=self.response.stderr,
            exit_status=self.response.exit_status,
            exit_signal=self.response.exit_signal,
        )
        self._fake.processes.append(process)
        return process


class FakeSSH:
    """Configurable replacement for asyncssh.connect.

    Hosts that were never registered connect fine and produce no output.
    """

    def __init__(self):
        self.connects: list[tuple] = []
        self.commands: list[tuple] = []
        self.processes: list[FakeProcess] = []
        self.connections: list[FakeConnection] = []
        self._responses: dict[str, SimpleNamespace] = {}

    def register(
        self,
        host: str,
        stdout: str = "",
        stderr: str = "",
        exit_status: int = 0,
        exit_signal=None,
        connect_error: Exception | None = None,
        failures: int | None = None,
        open_error: Exception | None = None,
        delay: float = 0.0,
    ):
        """Set the behaviour for one host name.

        Args:
            connect_error: Raised by connect. With failures=None it is
                raised on every attempt, otherwise only on the first
                ``failures`` attempts.
            open_error: Raised by create_process.
            delay: Seconds connect takes before answering.
        """
        self._responses[host] = SimpleNamespace(
            stdout=stdout,
            stderr=stderr,
            exit_status=exit_status,
            exit_signal=exit_signal,
            connect_error=connect_error,
            failures=failures,
            open_error=open_error,
            delay=delay,
        )

    def attempts(self, host: str) -> int:
        """Number of connect calls made for a host."""
        return sum(1 for h, _, _ in self.connects if h == host)

    async def connect(self, host, port=(), **kwargs):
        """Stand-in for asyncssh.connect."""
        self.connects.append((host, port, kwargs))
        response = self._responses.get(host)
        if response is None:
            self.register(host)
            response = self._responses[host]

        if response.delay:
            await asyncio.sleep(response.delay)

        if response.connect_error is not None:
            if response.failures is None or self.attempts(host) <= response.failures:
                raise response.connect_error

        conn = FakeConnection(self, host, response)
        self.connections.append(conn)
        return conn


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Pin the login name and point HOME at an empty directory.

    Keeps tests independent of the real user's ~/.ssh and settings.
    """
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("LOGNAME", "tester")
    yield home


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo configure_logging() calls made by CLI tests."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def fake_ssh(monkeypatch):
    """Replace asyncssh.connect with a FakeSSH and drop the retry backoff."""
    fake = FakeSSH()
    monkeypatch.setattr(asyncssh, "connect", fake.connect)
    monkeypatch.setattr(fanssh.ssh, "RETRY_BACKOFF", 0)
    yield fake


@pytest.fixture
def host_file(tmp_path):
    """Factory writing a host file under tmp_path and returning its path.

    Returns:
        Callable[[str, str], Path]: (name, content) -> path.
    """

    def _write(name: str, content: str):
        path = tmp_path / name
        path.write_text(content)
        return path

    yield _write
