"""Run one command on one host and capture the outcome as text.

Every failure on a host is turned into an annotated line in that host's
output, so a job always yields exactly one JobResult.
"""

import sys
from dataclasses import dataclass

import asyncssh

from fanssh import ssh
from fanssh.auth import build_auth
from fanssh.config import RunOptions
from fanssh.hosts import HostDescriptor
from fanssh.log import get_logger


class JobError(Exception):
    """Base class for failures local to one host."""

    pass


class CommandEmpty(JobError):
    """Raised when there is no command to run."""

    pass


class ConnectError(JobError):
    """Raised when the host cannot be reached or the connection drops."""

    pass


class SessionSetupError(JobError):
    """Raised when a session cannot be opened on the connection."""

    pass


class StartError(JobError):
    """Raised when the remote command cannot be started."""

    pass


class RemoteExitError(JobError):
    """Raised when the remote command exits unsuccessfully."""

    pass


class ShellError(Exception):
    """Raised when the interactive remote shell fails. Fatal for the run."""

    pass


@dataclass
class JobResult:
    """Outcome of one job.

    Attributes:
        host_id: Id of the host the job ran on.
        output: Captured output, ending with an ERROR line on failure.
        failed: True if the job ended in a JobError.
    """

    host_id: int
    output: str
    failed: bool = False


def format_error(host: HostDescriptor, error: Exception) -> str:
    """Render a per-host error as a single ``ERROR:`` line."""
    message = str(error) or type(error).__name__
    return f"ERROR:{type(error).__name__} {host.id} {host.target} - {message}\n"


def append_error(output: str, host: HostDescriptor, error: Exception) -> str:
    """Append an error line, starting it on a fresh line."""
    if output and not output.endswith("\n"):
        output += "\n"
    return output + format_error(host, error)


async def execute(host: HostDescriptor, options: RunOptions) -> JobResult:
    """Run the command on one host.

    Never raises for host-level problems: they end up as an ERROR line at
    the end of the output, after whatever output was captured.

    Args:
        host: Host to run on. Its output field is set before returning.
        options: Run options with the command, retries and auth settings.

    Returns:
        JobResult: The host's output and whether it failed.
    """
    log = get_logger(__name__, job=host.id, user=host.username, host=host.address)
    log.info("executing command")

    lines: list[str] = []
    error: Exception | None = None
    try:
        await _run(host, options, lines)
    except JobError as exc:
        error = exc
    except Exception as exc:
        # Reason: an unexpected failure must still produce this host's
        # result or the dispatcher would wait for it forever.
        log.exception("job crashed")
        error = exc

    output = "".join(f"{line}\n" for line in lines)
    if error is not None:
        log.info("job failed", error=type(error).__name__, reason=str(error))
        output = append_error(output, host, error)

    host.output = output
    return JobResult(host_id=host.id, output=output, failed=error is not None)


async def _run(host: HostDescriptor, options: RunOptions, lines: list[str]) -> None:
    if not options.command:
        raise CommandEmpty("command cannot be zero length")

    auth = host.config or build_auth(host, options)

    try:
        conn = await ssh.dial(host, auth, retries=options.retries)
    except ValueError as exc:
        raise ConnectError(f"invalid address '{host.address}': {exc}") from exc
    except (OSError, asyncssh.Error) as exc:
        raise ConnectError(str(exc) or type(exc).__name__) from exc

    async with conn:
        try:
            process = await ssh.start_command(conn, options.command)
        except asyncssh.ChannelOpenError as exc:
            raise SessionSetupError(exc.reason or str(exc)) from exc
        except (OSError, asyncssh.Error) as exc:
            raise StartError(str(exc) or type(exc).__name__) from exc

        try:
            async for line in ssh.stream_output(process):
                lines.append(line)
            completed = await process.wait()
        except (OSError, asyncssh.Error) as exc:
            raise ConnectError(f"connection lost: {exc}") from exc

    if completed.exit_signal:
        raise RemoteExitError(f"command terminated by signal {completed.exit_signal[0]}")
    if completed.exit_status:
        raise RemoteExitError(f"command exited with status {completed.exit_status}")


async def run_shell(
    host: HostDescriptor, options: RunOptions, stdin=None, stdout=None, stderr=None
) -> None:
    """Open an interactive shell on one host using this process's terminal.

    Blocks until the remote shell exits.

    Raises:
        ShellError: If the connection or shell fails, or the shell exits
            with a non-zero status.
    """
    log = get_logger(__name__, job=host.id, user=host.username, host=host.address)
    log.info("creating interactive terminal")

    auth = host.config or build_auth(host, options)
    try:
        conn = await ssh.dial(host, auth, retries=options.retries)
        async with conn:
            log.info("remote shell started")
            status = await ssh.interactive_shell(
                conn, stdin or sys.stdin, stdout or sys.stdout, stderr or sys.stderr
            )
    except (ValueError, OSError, asyncssh.Error) as exc:
        raise ShellError(f"{host.target} - {exc}") from exc

    log.info("remote shell finished", status=status)
    if status:
        raise ShellError(f"{host.target} - remote shell exited with status {status}")
