"""Authentication configuration for one host.

Builds the credentials and method list handed to the SSH client. The
handshake itself is left to asyncssh.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from fanssh.config import AuthMode, RunOptions
from fanssh.hosts import HostDescriptor
from fanssh.log import get_logger


log = get_logger(__name__)

# asyncssh names for each auth mode, in the order they are offered.
_PREFERRED_AUTH = {
    AuthMode.PUBLIC_KEY: "publickey",
    AuthMode.KEYBOARD_INTERACTIVE: "keyboard-interactive",
    AuthMode.PASSWORD: "password",
}


class AuthChainError(Exception):
    """Raised when the server asks more questions than can be answered."""

    pass


@dataclass(frozen=True)
class AuthConfig:
    """Credentials and methods for connecting to one host.

    Attributes:
        username: Remote login name.
        password: Password for password and keyboard-interactive auth.
        modes: Enabled auth modes.
        key_files: Private key files for public-key auth.
        algorithms: Host key algorithm override, empty for the default.
    """

    username: str
    password: str = field(default="", repr=False)
    modes: tuple[AuthMode, ...] = ()
    key_files: tuple[Path, ...] = ()
    algorithms: tuple[str, ...] = ()

    @property
    def preferred_auth(self) -> list[str]:
        """Return the enabled methods as asyncssh method names."""
        return [name for mode, name in _PREFERRED_AUTH.items() if mode in self.modes]


def answer_challenge(prompts: list, password: str) -> list[str]:
    """Answer one keyboard-interactive challenge.

    The server may send zero, one or many challenges during a login. An
    empty challenge gets an empty answer and a single prompt is assumed to
    be asking for the password.

    Args:
        prompts: Prompts in this challenge.
        password: Password to answer with.

    Returns:
        list[str]: One answer per prompt.

    Raises:
        AuthChainError: If the challenge has more than one prompt.
    """
    if len(prompts) == 0:
        return []
    if len(prompts) == 1:
        return [password]
    raise AuthChainError(f"unexpected authentication chain with {len(prompts)} prompts")


def find_key_files(username: str) -> list[Path]:
    """List private key files in the user's ~/.ssh directory.

    Picks up every ``id_*`` file that is not a ``.pub`` file. The local
    home of ``username`` is used when that account exists here, otherwise
    the invoking user's home.

    Args:
        username: Remote login name.

    Returns:
        list[Path]: Key files, sorted by name.
    """
    home = os.path.expanduser(f"~{username}")
    if home.startswith("~"):
        home = os.path.expanduser("~")
    ssh_dir = Path(home) / ".ssh"

    if not ssh_dir.is_dir():
        log.info("no ssh directory", path=str(ssh_dir))
        return []

    keys: list[Path] = []
    for path in sorted(ssh_dir.iterdir()):
        if path.name.startswith("id_") and not path.name.endswith(".pub"):
            log.info("key file", path=str(path))
            keys.append(path)
        else:
            log.debug("ignoring file", path=str(path))
    return keys


def build_auth(
    host: HostDescriptor,
    options: RunOptions,
    prompt: Callable[[str], str] | None = None,
) -> AuthConfig:
    """Build the authentication config for one host.

    Args:
        host: Resolved host, with its password already backfilled.
        options: Run options carrying the enabled modes and algorithms.
        prompt: Asks for the password when password or keyboard-interactive
            auth is enabled and none is known. Called at most once.

    Returns:
        AuthConfig: Config to dial the host with.
    """
    log.info("configuring ssh", job=host.id, user=host.username, host=host.address)

    key_files: tuple[Path, ...] = ()
    if AuthMode.PUBLIC_KEY in options.auth_modes:
        key_files = tuple(find_key_files(host.username))

    if options.algorithms:
        log.info("updating host key algorithms", algorithms=",".join(options.algorithms))

    password = host.password or options.password
    if not password and prompt is not None and _wants_password(options):
        password = prompt(f"{host.username}@{host.address}'s password")

    return AuthConfig(
        username=host.username,
        password=password,
        modes=options.auth_modes,
        key_files=key_files,
        algorithms=options.algorithms,
    )


def _wants_password(options: RunOptions) -> bool:
    return any(
        mode in options.auth_modes
        for mode in (AuthMode.PASSWORD, AuthMode.KEYBOARD_INTERACTIVE)
    )
