import base64
import logging
import os
import shlex
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from .constants import APP_NAME, HOME_PREFIX, SSH_BASE_COMMAND
from .errors import AuthError
from .models import AuthDescriptor, AuthKind, classify_url

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class TokenAuth:
    """HTTP basic auth built from a username and an access token."""

    user: str
    access_token: str = field(repr=False)

    def header(self) -> str:
        """Returns the ``Authorization`` header git sends to the remote."""
        raw = f"{self.user}:{self.access_token}".encode()
        return f"Authorization: Basic {base64.b64encode(raw).decode()}"


@dataclass(frozen=True)
class KeyAuth:
    """An ssh private key, already read and decrypted.

    Attributes:
        user (str): The ssh login name. Empty defers to the URL or ssh config.
        key_path (Path): The key file on disk.
        private_key (Any): The decrypted key object.
        encrypted (bool): Whether the file on disk is passphrase-protected.
    """

    user: str
    key_path: Path
    private_key: Any = field(repr=False)
    encrypted: bool = False


def expand_key_path(key_file: str) -> Path:
    """Expands a leading ``~/`` to the current user's home directory."""
    if key_file.startswith(HOME_PREFIX):
        return Path.home() / key_file[len(HOME_PREFIX) :]
    return Path(key_file)


def _load_private_key(data: bytes, passphrase: str) -> tuple[Any, bool]:
    """Parses an OpenSSH or PEM private key, decrypting it only when required.

    Returns:
        tuple[Any, bool]: The key object and whether it was encrypted.

    Raises:
        TypeError: If the key is encrypted and no passphrase was supplied.
        ValueError: If the data is not a key or the passphrase is wrong.
    """
    loaders = (
        serialization.load_ssh_private_key,
        serialization.load_pem_private_key,
    )
    for loader in loaders:
        try:
            return loader(data, password=None), False
        except TypeError:
            if not passphrase:
                raise
            return loader(data, password=passphrase.encode()), True
        except ValueError:
            continue
    raise ValueError("unsupported private key format")


def resolve(descriptor: AuthDescriptor, url: str) -> TokenAuth | KeyAuth:
    """Turns a credential block into an auth capability for ``url``.

    HTTP(S) remotes get a TokenAuth with no I/O. Every other remote gets a
    KeyAuth, which requires reading and decrypting the private key file.

    Args:
        descriptor (AuthDescriptor): The repository's credential block.
        url (str): The remote URL, used only to choose the credential shape.

    Returns:
        TokenAuth | KeyAuth: The resolved capability.

    Raises:
        AuthError: If the key file is unreadable or cannot be decrypted.
    """
    if classify_url(url) is AuthKind.TOKEN:
        return TokenAuth(user=descriptor.user, access_token=descriptor.access_token)

    key_path = expand_key_path(descriptor.private_key_file)
    try:
        data = key_path.read_bytes()
    except OSError as e:
        raise AuthError(f"Cannot read private key {key_path}: {e}") from e

    try:
        key, encrypted = _load_private_key(data, descriptor.private_key_passphrase)
    except (TypeError, ValueError, UnsupportedAlgorithm) as e:
        raise AuthError(f"Cannot decrypt private key {key_path}: {e}") from e

    return KeyAuth(
        user=descriptor.user, key_path=key_path, private_key=key, encrypted=encrypted
    )


def _add_config(env: dict[str, str], key: str, value: str) -> None:
    """Appends a git config entry through the GIT_CONFIG_COUNT protocol."""
    index = int(env.get("GIT_CONFIG_COUNT", "0"))
    env[f"GIT_CONFIG_KEY_{index}"] = key
    env[f"GIT_CONFIG_VALUE_{index}"] = value
    env["GIT_CONFIG_COUNT"] = str(index + 1)


def ssh_command(key_path: Path, user: str = "") -> str:
    """Builds the GIT_SSH_COMMAND value for a key file."""
    cmd = f"{SSH_BASE_COMMAND} -i {shlex.quote(str(key_path))}"
    if user:
        cmd += f" -l {shlex.quote(user)}"
    return cmd


@contextmanager
def git_environment(auth: TokenAuth | KeyAuth) -> Iterator[dict[str, str]]:
    """Context manager yielding the environment git runs under for ``auth``.

    Tokens travel as an extra HTTP header configured through environment
    variables, so they never appear in argv or in ``.git/config``. Keys are
    handed to ssh by path; a passphrase-protected key is written decrypted to
    a private temporary file that only lives as long as the context.

    Args:
        auth (TokenAuth | KeyAuth): The resolved capability.

    Yields:
        dict[str, str]: A copy of the process environment with auth applied.
    """
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"

    if isinstance(auth, TokenAuth):
        _add_config(env, "http.extraHeader", auth.header())
        yield env
        return

    temp_key: Path | None = None
    key_path = auth.key_path
    if auth.encrypted:
        fd, name = tempfile.mkstemp(prefix="multi-git-sync-key-")
        temp_key = Path(name)
        with os.fdopen(fd, "wb") as f:
            f.write(
                auth.private_key.private_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PrivateFormat.OpenSSH,
                    encryption_algorithm=serialization.NoEncryption(),
                )
            )
        key_path = temp_key

    env["GIT_SSH_COMMAND"] = ssh_command(key_path, auth.user)
    try:
        yield env
    finally:
        if temp_key is not None:
            temp_key.unlink(missing_ok=True)
