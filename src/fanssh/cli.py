"""fanssh CLI entry point."""

import asyncio
import sys
import traceback
from contextlib import aclosing
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.prompt import Prompt

from fanssh import __version__
from fanssh.config import (
    ConfigurationError,
    RunOptions,
    build_run_options,
    load_config,
    read_password_file,
)
from fanssh.dispatch import (
    TimeoutExceeded,
    configure_hosts,
    dispatch,
    effective_max_jobs,
    run_with_deadline,
)
from fanssh.executor import ShellError, run_shell
from fanssh.hosts import HostDescriptor, ResolutionError, apply_default_password, resolve
from fanssh.log import configure_logging, get_logger
from fanssh.present import render_result


app = typer.Typer(
    name="fanssh",
    help="fanssh — Run a command on many hosts over SSH.",
    add_completion=False,
)

err_console = Console(stderr=True)

log = get_logger(__name__)

# Reason: everything after the host-spec belongs to the remote command,
# including things that look like options (e.g. `ls -la`).
CONTEXT_SETTINGS = {
    "allow_interspersed_args": False,
    "ignore_unknown_options": True,
    "help_option_names": ["-h", "--help"],
}

EPILOG = """
Host-spec: [user[:password]@]host[:port] or +host-file, comma separated.
With no command and a single host, an interactive shell is started.
"""


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"fanssh {__version__}")
        raise typer.Exit()


def quote_token(token: str) -> str:
    """Quote one command argument for the remote shell.

    Only tokens holding whitespace or a double quote are wrapped, so globs
    and variables still expand on the remote side.
    """
    if any(c in token for c in " \t\"") or not token:
        return '"' + token.replace('"', '\\"') + '"'
    return token


def join_command(args: list[str]) -> str:
    """Rebuild the remote command line from the argument tail."""
    return " ".join(quote_token(arg) for arg in args)


def _stdin_is_tty() -> bool:
    """Check if stdin is an interactive terminal.

    Returns:
        bool: True if stdin is a tty.
    """
    return sys.stdin.isatty()


def ask_password(prompt: str) -> str:
    """Ask for a password on the terminal without echoing it."""
    return Prompt.ask(prompt, password=True, console=err_console)


def _fatal(exc: Exception) -> NoReturn:
    """Print a one-line diagnostic tagged with where it was raised, then exit 1."""
    frames = traceback.extract_tb(exc.__traceback__)
    tag = f"{Path(frames[-1].filename).stem}:{frames[-1].lineno}" if frames else "fanssh"
    err_console.print(f"ERROR:{tag} {exc}", markup=False, highlight=False, soft_wrap=True)
    raise typer.Exit(code=1)


def _log_summary(options: RunOptions, hosts: list[HostDescriptor]) -> None:
    log.info(
        "options",
        cmd=options.command,
        max_jobs=effective_max_jobs(options.max_jobs, len(hosts)),
        auth=",".join(m.value for m in options.auth_modes),
        hosts=len(hosts),
    )
    for host in hosts:
        log.info(
            "host", job=host.id, host=host.address, user=host.username, host_file=host.host_file
        )


async def _run_jobs(hosts: list[HostDescriptor], options: RunOptions) -> None:
    """Dispatch the command and print each result as it is drained."""
    by_id = {host.id: host for host in hosts}

    async with aclosing(dispatch(hosts, options)) as results:
        async for result in results:
            text = render_result(
                result, by_id[result.host_id], options.command, job_header=options.job_header
            )
            typer.echo(text, nl=False)


@app.command(context_settings=CONTEXT_SETTINGS, epilog=EPILOG)
def main(
    ctx: typer.Context,
    host_spec: Optional[str] = typer.Argument(
        None, metavar="HOST-SPEC", help="Hosts and +host-files, comma separated."
    ),
    command: Optional[list[str]] = typer.Argument(
        None, metavar="[COMMAND]...", help="Command to run. Omit for a remote shell."
    ),
    auth: Optional[str] = typer.Option(
        None, "--auth", "-a",
        help="Auth modes, comma separated: keyboard-interactive, password, public-key.",
    ),
    algorithms: Optional[str] = typer.Option(
        None, "--algorithms", "-A", help="Host key algorithms, comma separated (see ssh -Q key)."
    ),
    max_jobs: Optional[int] = typer.Option(
        None, "--max-jobs", "-j", help="Maximum number of concurrent jobs (default: one per host)."
    ),
    retries: Optional[int] = typer.Option(
        None, "--retries", "-r", help="Extra connection attempts per host."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", "-t", help="Abort the whole run after this many seconds."
    ),
    no_job_header: bool = typer.Option(
        False, "--no-job-header", "-n", help="Do not print a header before each host's output."
    ),
    password: Optional[str] = typer.Option(
        None, "--password", "-p", help="Default password. Prefer --password-file."
    ),
    password_file: Optional[Path] = typer.Option(
        None, "--password-file", "-P", help="Read the default password from a file."
    ),
    verbose: int = typer.Option(
        0, "--verbose", "-v", count=True, help="Increase verbosity (repeatable)."
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Run a command on one or more hosts over SSH.

    Connects to every host in HOST-SPEC, runs COMMAND on each and prints
    each host's combined stdout and stderr. Failures on a host are reported
    in that host's output and do not change the exit code.
    """
    if host_spec is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()

    configure_logging(verbose)

    try:
        if host_spec.startswith("-"):
            raise ConfigurationError(f"unrecognized option '{host_spec}'")

        settings = load_config()

        if password_file is not None:
            if password is not None:
                log.warning("overwriting previous password setting")
            password = read_password_file(password_file)

        options = build_run_options(
            settings,
            command=join_command(command or []),
            auth_modes=auth,
            algorithms=algorithms,
            max_jobs=max_jobs,
            retries=retries,
            timeout=timeout,
            password=password,
            verbose=verbose,
            job_header=False if no_job_header else None,
        )
        hosts = apply_default_password(resolve(host_spec), options.password)
        _log_summary(options, hosts)

        if not hosts:
            return
        if not options.command and len(hosts) > 1:
            raise ConfigurationError("cannot spawn remote shells on multiple hosts")

        # Reason: only prompt when someone is there to answer.
        configure_hosts(hosts, options, prompt=ask_password if _stdin_is_tty() else None)

        if not options.command:
            asyncio.run(run_with_deadline(run_shell(hosts[0], options), options.timeout))
        else:
            asyncio.run(run_with_deadline(_run_jobs(hosts, options), options.timeout))
    except (ConfigurationError, ResolutionError, ShellError, TimeoutExceeded) as exc:
        _fatal(exc)
