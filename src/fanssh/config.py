"""Run configuration loading and validation."""

from enum import Enum
from pathlib import Path

import tomllib
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


DEFAULT_CONFIG_PATH = Path.home() / ".config" / "fanssh" / "config.toml"

MAX_JOBS_LIMIT = 1_000_000


class ConfigurationError(Exception):
    """Raised for invalid options or settings. Nothing has run yet."""

    pass


class AuthMode(str, Enum):
    """Authentication methods the client may offer."""

    KEYBOARD_INTERACTIVE = "keyboard-interactive"
    PASSWORD = "password"
    PUBLIC_KEY = "public-key"


ALL_AUTH_MODES = ",".join(m.value for m in AuthMode)


def parse_auth_modes(value: str | list[str] | tuple) -> tuple[AuthMode, ...]:
    """Parse a comma separated, case-insensitive list of auth modes.

    Args:
        value: e.g. ``"password,public-key"``, or an already split list.

    Returns:
        tuple[AuthMode, ...]: Modes in the order given, without duplicates.

    Raises:
        ValueError: If a mode is not recognised.
    """
    items = value.split(",") if isinstance(value, str) else list(value)
    modes: list[AuthMode] = []
    for item in items:
        if isinstance(item, AuthMode):
            mode = item
        else:
            name = str(item).strip().lower()
            try:
                mode = AuthMode(name)
            except ValueError:
                raise ValueError(
                    f"unrecognized auth mode '{item}', valid modes: {', '.join(m.value for m in AuthMode)}"
                ) from None
        if mode not in modes:
            modes.append(mode)
    return tuple(modes)


def _split_algorithms(value: str | list[str] | tuple) -> tuple[str, ...]:
    items = value.split(",") if isinstance(value, str) else value
    return tuple(a.strip() for a in items if a.strip())


class Settings(BaseModel):
    """User defaults read from the TOML settings file.

    Attributes:
        auth: Comma separated auth modes.
        algorithms: Host key algorithm preference list; empty keeps asyncssh's.
        max_jobs: Default concurrency limit. None means one job per host.
        retries: Extra connection attempts per host.
        timeout: Global deadline in seconds, 0 disables it.
        job_header: Print a header block before each host's output.
    """

    auth: str = ALL_AUTH_MODES
    algorithms: list[str] = []
    max_jobs: int | None = None
    retries: int = 3
    timeout: float = 0
    job_header: bool = True


class RunOptions(BaseModel):
    """Immutable settings for one invocation.

    Built once before dispatch and shared read-only by every job.
    """

    model_config = ConfigDict(frozen=True)

    command: str = ""
    max_jobs: int | None = Field(default=None, ge=0, le=MAX_JOBS_LIMIT)
    retries: int = Field(default=3, ge=0)
    timeout: float = Field(default=0, ge=0)
    auth_modes: tuple[AuthMode, ...] = tuple(AuthMode)
    algorithms: tuple[str, ...] = ()
    password: str = Field(default="", repr=False)
    verbose: int = 0
    job_header: bool = True

    @field_validator("auth_modes", mode="before")
    @classmethod
    def parse_modes(cls, v):
        """Accept a comma separated string for auth_modes."""
        return parse_auth_modes(v)

    @field_validator("algorithms", mode="before")
    @classmethod
    def split_algorithms(cls, v):
        """Accept a comma separated string for algorithms."""
        return _split_algorithms(v)


def load_config(path: Path | None = None) -> Settings:
    """Load user defaults from a TOML file.

    Args:
        path: Settings file. Defaults to ~/.config/fanssh/config.toml.

    Returns:
        Settings: Loaded settings, or defaults when the file is missing.

    Raises:
        ConfigurationError: If the file is not valid TOML or has bad values.
    """
    config_path = path or DEFAULT_CONFIG_PATH

    if not config_path.exists():
        return Settings()

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
        return Settings(**data)
    except (tomllib.TOMLDecodeError, ValidationError) as exc:
        raise ConfigurationError(f"invalid settings file '{config_path}': {exc}") from exc


def read_password_file(path: str | Path) -> str:
    """Return the first non-blank line of a password file.

    '#' is not treated as a comment since a password may start with it.

    Raises:
        ConfigurationError: If the file cannot be read.
    """
    try:
        text = Path(path).read_text()
    except OSError as exc:
        raise ConfigurationError(f"cannot read password file '{path}': {exc.strerror or exc}") from exc

    for line in text.splitlines():
        line = line.strip()
        if line:
            return line
    return ""


def build_run_options(settings: Settings, **overrides) -> RunOptions:
    """Merge command line values over settings into a RunOptions.

    Overrides whose value is None fall back to the settings file.

    Raises:
        ConfigurationError: If any merged value is invalid.
    """
    values = {
        "auth_modes": settings.auth,
        "algorithms": settings.algorithms,
        "max_jobs": settings.max_jobs,
        "retries": settings.retries,
        "timeout": settings.timeout,
        "job_header": settings.job_header,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return RunOptions(**values)
    except ValidationError as exc:
        # Reason: report the first problem only, as one diagnostic line.
        error = exc.errors()[0]
        field_name = ".".join(str(p) for p in error["loc"])
        raise ConfigurationError(f"invalid value for '{field_name}': {error['msg']}") from exc
