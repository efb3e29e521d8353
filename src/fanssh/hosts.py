"""Host specification parsing and host-file resolution.

A host expression is a comma separated list of terms. Each term is either
an inline host, ``[user[:password]@]host[:port]``, or a reference to a host
file, ``+path``. Host files hold one expression per line and may include
other host files.
"""

import getpass
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any


DEFAULT_PORT = 22


class ResolutionError(Exception):
    """Raised when a host expression cannot be resolved."""

    pass


class CycleError(ResolutionError):
    """Raised when a host file is referenced twice in one resolution."""

    pass


@dataclass
class HostDescriptor:
    """One resolved remote target.

    Attributes:
        id: 1-based position in resolution order.
        username: Login name on the remote host.
        password: Per-host password, empty when none was given.
        address: ``host:port`` string.
        host_file: Host file the entry came from, empty for inline hosts.
        config: Authentication config, filled in before dialing.
        output: Captured output, written once by the job that ran it.
    """

    id: int
    username: str
    address: str
    password: str = field(default="", repr=False)
    host_file: str = ""
    config: Any = field(default=None, repr=False)
    output: str = ""

    @property
    def target(self) -> str:
        """Return ``user@host:port`` for messages."""
        return f"{self.username}@{self.address}"


def default_username() -> str:
    """Return the invoking user's login name.

    Reads $LOGNAME first, falling back to getpass when it is unset or blank.
    """
    return os.environ.get("LOGNAME", "").strip() or getpass.getuser()


def parse_host_term(term: str, id: int = 1) -> HostDescriptor:
    """Parse an inline host term into a HostDescriptor.

    The term is split on the last '@' so passwords may contain '@'. The
    left side is split on the first ':' into username and password.

    Args:
        term: A ``[user[:password]@]host[:port]`` string.
        id: Sequence id to assign.

    Returns:
        HostDescriptor: The parsed host.

    Raises:
        ResolutionError: If the term or its host part is empty.
    """
    term = term.strip()
    if not term:
        raise ResolutionError("empty host specification")

    left, sep, host = term.rpartition("@")
    if sep:
        username, _, password = left.partition(":")
    else:
        username, password = default_username(), ""

    if not host:
        raise ResolutionError(f"missing host name in '{term}'")
    if not username:
        raise ResolutionError(f"missing user name in '{term}'")

    if ":" not in host:
        host = f"{host}:{DEFAULT_PORT}"

    return HostDescriptor(id=id, username=username, password=password, address=host)


def resolve(expression: str, visited: set[Path] | None = None) -> list[HostDescriptor]:
    """Resolve a host expression to an ordered list of hosts.

    File references are expanded in place, so hosts from a file occupy a
    contiguous run of ids where the reference appeared.

    Args:
        expression: Comma separated host terms and ``+file`` references.
        visited: Absolute paths of host files already opened in this
            resolution. A fresh set is used when omitted.

    Returns:
        list[HostDescriptor]: Hosts with ids 1..N in resolution order.

    Raises:
        CycleError: If a host file is referenced more than once.
        ResolutionError: If a host file cannot be read or a term is invalid.
    """
    if visited is None:
        visited = set()

    hosts: list[HostDescriptor] = []
    for term in expression.split(","):
        term = term.strip()
        if term.startswith("+"):
            for host in parse_host_file(term[1:], visited):
                hosts.append(replace(host, id=len(hosts) + 1))
        else:
            hosts.append(parse_host_term(term, id=len(hosts) + 1))
    return hosts


def parse_host_file(path: str | Path, visited: set[Path]) -> list[HostDescriptor]:
    """Resolve every expression listed in a host file.

    Blank lines and lines whose first non-whitespace character is '#' are
    skipped. Hosts keep the innermost file they were listed in.

    Args:
        path: Host file path, relative to the current directory.
        visited: Absolute paths already opened in this resolution.

    Returns:
        list[HostDescriptor]: Hosts in file order.

    Raises:
        CycleError: If the file was already visited.
        ResolutionError: If the file cannot be read.
    """
    path = Path(path)
    # Reason: abspath rather than resolve() so a symlinked host file keeps
    # the name the user wrote in diagnostics.
    canonical = Path(os.path.abspath(path))
    if canonical in visited:
        raise CycleError(f"nested reference found to file '{canonical}'")
    visited.add(canonical)

    try:
        lines = path.read_text().splitlines()
    except OSError as exc:
        raise ResolutionError(f"cannot read host file '{path}': {exc.strerror or exc}") from exc

    hosts: list[HostDescriptor] = []
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        for host in resolve(line, visited):
            hosts.append(host if host.host_file else replace(host, host_file=str(path)))
    return hosts


def apply_default_password(
    hosts: list[HostDescriptor], password: str
) -> list[HostDescriptor]:
    """Give hosts without an embedded password the default password.

    Args:
        hosts: Resolved hosts.
        password: Invocation-level default password, may be empty.

    Returns:
        list[HostDescriptor]: Hosts with passwords backfilled.
    """
    if not password:
        return hosts
    return [h if h.password else replace(h, password=password) for h in hosts]
