"""SSH transport layer for remote command execution.

The only module that talks to asyncssh. Everything above it deals in
HostDescriptor, AuthConfig and lines of text.
"""

import asyncio
from collections.abc import AsyncIterator

import asyncssh

from fanssh.auth import AuthChainError, AuthConfig, answer_challenge
from fanssh.hosts import HostDescriptor
from fanssh.log import get_logger


log = get_logger(__name__)

RETRY_BACKOFF = 0.2
TERM_TYPE = "xterm"
TERM_SIZE = (80, 40)


class _Client(asyncssh.SSHClient):
    """SSH client that answers password and keyboard-interactive requests."""

    def __init__(self, auth: AuthConfig):
        self._auth = auth

    def password_auth_requested(self) -> str | None:
        return self._auth.password or None

    def kbdint_auth_requested(self) -> str | None:
        return ""

    def kbdint_challenge_received(
        self, name: str, instructions: str, lang: str, prompts: list
    ) -> list[str] | None:
        try:
            return answer_challenge(prompts, self._auth.password)
        except AuthChainError as exc:
            log.warning("keyboard-interactive declined", user=self._auth.username, reason=str(exc))
            # Reason: returning None aborts this method; asyncssh moves on to
            # the next one or fails the login with PermissionDenied.
            return None


def split_address(address: str) -> tuple[str, int]:
    """Split a ``host:port`` address.

    Raises:
        ValueError: If the port is not a number in 1..65535.
    """
    host, _, port_text = address.rpartition(":")
    port = int(port_text)
    if not 0 < port < 65536:
        raise ValueError(f"port {port} out of range")
    return host, port


def load_client_keys(auth: AuthConfig) -> list:
    """Load private keys for public-key auth, skipping unusable files."""
    keys = []
    for path in auth.key_files:
        try:
            keys.append(asyncssh.read_private_key(path))
        except (OSError, asyncssh.KeyImportError, asyncssh.KeyEncryptionError) as exc:
            log.info("skipping key file", path=str(path), reason=str(exc))
    return keys


def connect_options(auth: AuthConfig) -> dict:
    """Build keyword arguments for asyncssh.connect from an AuthConfig."""
    options: dict = {
        "username": auth.username,
        "known_hosts": None,
        "preferred_auth": auth.preferred_auth,
        "client_keys": load_client_keys(auth) if auth.key_files else None,
        "client_factory": lambda: _Client(auth),
    }
    if auth.algorithms:
        options["server_host_key_algs"] = list(auth.algorithms)
    return options


async def dial(
    host: HostDescriptor,
    auth: AuthConfig,
    retries: int = 0,
    backoff: float | None = None,
) -> asyncssh.SSHClientConnection:
    """Open an SSH connection, retrying on failure.

    Args:
        host: Target host.
        auth: Credentials and auth methods.
        retries: Extra attempts after the first failure.
        backoff: Seconds to sleep between attempts. Defaults to RETRY_BACKOFF.

    Returns:
        asyncssh.SSHClientConnection: The open connection.

    Raises:
        ValueError: If the host address has an invalid port.
        OSError | asyncssh.Error: The last failure once retries run out.
    """
    hostname, port = split_address(host.address)
    if backoff is None:
        backoff = RETRY_BACKOFF
    options = connect_options(auth)

    attempt = 0
    while True:
        try:
            return await asyncssh.connect(hostname, port, **options)
        except (OSError, asyncssh.Error) as exc:
            if attempt >= retries:
                raise
            attempt += 1
            log.debug(
                "retry",
                attempt=attempt,
                job=host.id,
                user=host.username,
                host=host.address,
                reason=str(exc),
            )
            await asyncio.sleep(backoff)


async def start_command(
    conn: asyncssh.SSHClientConnection, command: str
) -> asyncssh.SSHClientProcess:
    """Open a session on the connection and start a command in it.

    The command gets no input: stdin is closed as soon as it starts.
    """
    process = await conn.create_process(command, encoding="utf-8", errors="replace")
    process.stdin.write_eof()
    return process


async def stream_output(process: asyncssh.SSHClientProcess) -> AsyncIterator[str]:
    """Yield lines from stdout and stderr as they arrive.

    Each stream is read by its own task, so lines from the two streams are
    interleaved roughly in arrival order but not strictly chronologically.

    Args:
        process: A started remote process.

    Yields:
        str: One line of output, without its trailing newline.
    """
    lines: asyncio.Queue[str | None] = asyncio.Queue()

    async def _pump(stream) -> None:
        try:
            async for line in stream:
                await lines.put(line.rstrip("\r\n"))
        finally:
            await lines.put(None)

    pumps = [
        asyncio.create_task(_pump(process.stdout)),
        asyncio.create_task(_pump(process.stderr)),
    ]
    try:
        open_streams = len(pumps)
        while open_streams:
            line = await lines.get()
            if line is None:
                open_streams -= 1
            else:
                yield line
        for pump in pumps:
            # Surface read errors from either stream.
            pump.result()
    finally:
        for pump in pumps:
            pump.cancel()


async def interactive_shell(
    conn: asyncssh.SSHClientConnection, stdin, stdout, stderr
) -> int | None:
    """Start a login shell on a pseudo-terminal wired to the given streams.

    Blocks until the remote shell exits.

    Returns:
        int | None: The shell's exit status.
    """
    process = await conn.create_process(
        term_type=TERM_TYPE,
        term_size=TERM_SIZE,
        stdin=stdin,
        stdout=stdout,
        stderr=stderr,
    )
    completed = await process.wait()
    return completed.exit_status
