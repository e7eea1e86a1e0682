import enum
from dataclasses import dataclass, field
from pathlib import Path

from .constants import HTTP_SCHEME_PREFIX


class AuthKind(enum.Enum):
    """The credential shape a remote URL calls for."""

    TOKEN = "token"
    KEY = "key"


def classify_url(url: str) -> AuthKind:
    """Picks the credential shape for a remote URL.

    The decision is a plain prefix check: anything starting with ``http``
    (which includes ``https``) uses token auth, everything else (scp-style
    ``git@host:path``, ``ssh://``, ``file://``, local paths) uses key auth.

    Args:
        url (str): The remote URL.

    Returns:
        AuthKind: TOKEN for HTTP(S) remotes, KEY otherwise.
    """
    if url.startswith(HTTP_SCHEME_PREFIX):
        return AuthKind.TOKEN
    return AuthKind.KEY


class Strategy(enum.Enum):
    """The sequence of git operations chosen for one sync."""

    CHECKOUT = "checkout"
    PULL = "pull"
    SHALLOW_REFRESH = "shallow-refresh"


@dataclass(frozen=True)
class AuthDescriptor:
    """The raw credential block of a repository entry.

    Attributes:
        user (str): Username for token auth, or the ssh login name.
        access_token (str): Token used as the HTTP basic-auth password.
        private_key_file (str): Path to the ssh private key. A leading ``~/``
            is expanded at resolution time.
        private_key_passphrase (str): Optional passphrase of the private key.
    """

    user: str = ""
    access_token: str = field(default="", repr=False)
    private_key_file: str = ""
    private_key_passphrase: str = field(default="", repr=False)


@dataclass(frozen=True)
class RepoDescriptor:
    """Declared intent for one mirrored repository.

    Attributes:
        url (str): The remote URL.
        branch (str): The branch to mirror.
        dest_dir (Path): The local destination directory.
        schedule (str): A standard 5-field cron expression.
        depth (int): History depth to fetch. 0 means full history.
        sub_path (str): Sub-directory to materialize. Empty means the whole tree.
        auth (AuthDescriptor): Credentials for the remote.
    """

    url: str
    branch: str
    dest_dir: Path
    schedule: str
    depth: int = 0
    sub_path: str = ""
    auth: AuthDescriptor = field(default_factory=AuthDescriptor)

    @property
    def sparse_paths(self) -> list[str]:
        """The sub-path set restricting the working tree (empty for the whole tree)."""
        clean = self.sub_path.strip("/")
        return [clean] if clean else []

    def __str__(self) -> str:
        return (
            f"URL:{self.url}, Branch:{self.branch}, "
            f"SubPath:{self.sub_path}, DestDir:{self.dest_dir}"
        )


@dataclass
class SyncOutcome:
    """The result of one sync attempt. Only ever logged, never persisted.

    Attributes:
        ok (bool): Whether the sync succeeded.
        strategy (Strategy | None): The strategy that ran, if one was chosen.
        head (str | None): The HEAD commit after a successful sync.
        updated (bool): False when the destination was already current.
        error (Exception | None): The cause of a failed sync.
    """

    ok: bool
    strategy: Strategy | None = None
    head: str | None = None
    updated: bool = False
    error: Exception | None = None

    @classmethod
    def success(
        cls, strategy: Strategy, head: str | None, updated: bool = True
    ) -> "SyncOutcome":
        return cls(ok=True, strategy=strategy, head=head, updated=updated)

    @classmethod
    def failure(
        cls, error: Exception, strategy: Strategy | None = None
    ) -> "SyncOutcome":
        return cls(ok=False, strategy=strategy, error=error)

    @property
    def is_noop(self) -> bool:
        """True for a successful sync that found nothing to update."""
        return self.ok and not self.updated
