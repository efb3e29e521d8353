"""Tests for authentication config building (auth.py)."""

import pytest

from fanssh.auth import AuthChainError, AuthConfig, answer_challenge, build_auth, find_key_files
from fanssh.config import AuthMode, RunOptions
from fanssh.hosts import HostDescriptor


def _host(**kwargs) -> HostDescriptor:
    values = {"id": 1, "username": "alice", "address": "h1:22"}
    values.update(kwargs)
    return HostDescriptor(**values)


# ---------------------------------------------------------------------------
# Keyboard-interactive
# ---------------------------------------------------------------------------


def test_empty_challenge_gets_empty_answer():
    """Servers may send an empty challenge; it needs no answer."""
    assert answer_challenge([], "pw") == []


def test_single_prompt_gets_password():
    """A single prompt is answered with the password."""
    assert answer_challenge([("Password: ", False)], "pw") == ["pw"]


def test_multiple_prompts_rejected():
    """More than one prompt is an auth chain we cannot answer."""
    with pytest.raises(AuthChainError):
        answer_challenge([("Password: ", False), ("OTP: ", True)], "pw")


def test_preferred_auth_order():
    """Methods are offered public-key first, whatever order they were given."""
    config = AuthConfig(
        username="u",
        modes=(AuthMode.PASSWORD, AuthMode.PUBLIC_KEY, AuthMode.KEYBOARD_INTERACTIVE),
    )
    assert config.preferred_auth == ["publickey", "keyboard-interactive", "password"]

    assert AuthConfig(username="u", modes=(AuthMode.PASSWORD,)).preferred_auth == ["password"]


# ---------------------------------------------------------------------------
# Key discovery and build_auth
# ---------------------------------------------------------------------------


@pytest.fixture
def ssh_dir(isolated_env):
    """Populate $HOME/.ssh with a mix of key and non-key files."""
    path = isolated_env / ".ssh"
    path.mkdir()
    for name in ["id_rsa", "id_rsa.pub", "id_ed25519", "config", "known_hosts"]:
        (path / name).write_text("x")
    return path


def test_find_key_files(ssh_dir):
    """Only id_* files without .pub are keys."""
    keys = find_key_files("no-such-local-user")

    assert [k.name for k in keys] == ["id_ed25519", "id_rsa"]


def test_find_key_files_no_ssh_dir():
    """No ~/.ssh directory simply means no keys."""
    assert find_key_files("no-such-local-user") == []


def test_build_auth_public_key(ssh_dir):
    """With public-key enabled the key files are collected."""
    options = RunOptions(command="ls", auth_modes="public-key", algorithms="ssh-ed25519")

    config = build_auth(_host(username="no-such-local-user"), options)

    assert [k.name for k in config.key_files] == ["id_ed25519", "id_rsa"]
    assert config.modes == (AuthMode.PUBLIC_KEY,)
    assert config.algorithms == ("ssh-ed25519",)


def test_build_auth_without_public_key(ssh_dir):
    """Key files are not read when public-key auth is off."""
    options = RunOptions(command="ls", auth_modes="password")

    config = build_auth(_host(), options)

    assert config.key_files == ()


def test_build_auth_password_precedence():
    """A host's own password wins over the default password."""
    options = RunOptions(command="ls", auth_modes="password", password="default")

    assert build_auth(_host(password="own"), options).password == "own"
    assert build_auth(_host(), options).password == "default"
    assert build_auth(_host(), options).username == "alice"


def test_build_auth_prompts_for_missing_password():
    """Without any password the prompt is asked once, naming user and host."""
    asked = []

    def prompt(text):
        asked.append(text)
        return "typed"

    options = RunOptions(command="ls", auth_modes="keyboard-interactive")
    config = build_auth(_host(), options, prompt=prompt)

    assert config.password == "typed"
    assert asked == ["alice@h1:22's password"]


@pytest.mark.parametrize(
    "host, modes, password",
    [
        ({"password": "own"}, "password", ""),
        ({}, "password", "default"),
        ({}, "public-key", ""),
    ],
)
def test_build_auth_skips_prompt(isolated_env, host, modes, password):
    """No prompt when a password is known or password auth is disabled."""

    def prompt(text):
        raise AssertionError(f"unexpected prompt: {text}")

    options = RunOptions(command="ls", auth_modes=modes, password=password)
    build_auth(_host(**host), options, prompt=prompt)
