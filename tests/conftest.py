"""Shared fixtures: generated ssh keys and a real local remote repository."""

import os
import shutil
import subprocess
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from multi_git_sync.models import AuthDescriptor, RepoDescriptor

KEY_PASSPHRASE = "correct horse"

requires_git = pytest.mark.skipif(
    shutil.which("git") is None, reason="git binary not available"
)


def git(*args: str, cwd: Path) -> str:
    """Runs a git command for test setup and returns its stdout."""
    res = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True
    )
    return res.stdout.strip()


class RemoteRepo:
    """A bare repository plus a scratch clone used to push new commits.

    Attributes:
        bare (Path): The bare repository the sync engine clones from.
        work (Path): A working copy used to author commits.
    """

    def __init__(self, root: Path):
        self.bare = root / "remote.git"
        self.work = root / "remote-work"
        root.mkdir(parents=True, exist_ok=True)

        git("init", "--bare", str(self.bare), cwd=root)
        git("symbolic-ref", "HEAD", "refs/heads/main", cwd=self.bare)
        git("init", str(self.work), cwd=root)
        git("symbolic-ref", "HEAD", "refs/heads/main", cwd=self.work)
        git("remote", "add", "origin", str(self.bare), cwd=self.work)

    @property
    def url(self) -> str:
        return self.bare.as_uri()

    def commit(
        self,
        files: dict[str, str],
        message: str = "update",
        deleted: tuple[str, ...] = (),
    ) -> str:
        """Writes ``files``, removes ``deleted``, commits and pushes to the bare repository.

        Returns:
            str: The new commit hash.
        """
        for name, content in files.items():
            path = self.work / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        for name in deleted:
            (self.work / name).unlink()
        git("add", "-A", cwd=self.work)
        git("commit", "-m", message, cwd=self.work)
        git("push", "origin", "main", cwd=self.work)
        return git("rev-parse", "HEAD", cwd=self.work)


@pytest.fixture(autouse=True)
def isolated_git(monkeypatch: pytest.MonkeyPatch) -> None:
    """Gives every git subprocess a fixed identity and no system config."""
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", os.devnull)
    monkeypatch.setenv("GIT_AUTHOR_NAME", "CI Bot")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "cibot@example.org")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "CI Bot")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "cibot@example.org")


@pytest.fixture
def ssh_key(tmp_path: Path) -> Path:
    """An unencrypted Ed25519 key in OpenSSH format."""
    key = Ed25519PrivateKey.generate()
    path = tmp_path / "keys" / "id_ed25519"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.OpenSSH,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    path.chmod(0o600)
    return path


@pytest.fixture(
    params=[serialization.PrivateFormat.OpenSSH, serialization.PrivateFormat.PKCS8],
    ids=["openssh", "pkcs8"],
)
def encrypted_key(tmp_path: Path, request: pytest.FixtureRequest) -> Path:
    """An Ed25519 key protected by KEY_PASSPHRASE.

    Covers both the ssh-keygen default (OpenSSH, bcrypt KDF) and PKCS8 PEM.
    """
    key = Ed25519PrivateKey.generate()
    path = tmp_path / "keys" / "id_encrypted"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=request.param,
            encryption_algorithm=serialization.BestAvailableEncryption(
                KEY_PASSPHRASE.encode()
            ),
        )
    )
    return path


@pytest.fixture
def remote(tmp_path: Path) -> RemoteRepo:
    """A remote with README.md at the root and two sub-directories."""
    repo = RemoteRepo(tmp_path / "upstream")
    repo.commit(
        {
            "README.md": "# multi-git-sync-test\n",
            "foo/readme.md": "foo v1\n",
            "bar/readme.md": "bar v1\n",
        },
        message="initial",
    )
    return repo


@pytest.fixture
def make_repo(tmp_path: Path, ssh_key: Path, remote: RemoteRepo):
    """Factory building a RepoDescriptor that points at the local remote."""

    def _make(
        name: str = "mirror", depth: int = 0, sub_path: str = "", **overrides
    ) -> RepoDescriptor:
        values = dict(
            url=remote.url,
            branch="main",
            dest_dir=tmp_path / "out" / name,
            schedule="*/5 * * * *",
            depth=depth,
            sub_path=sub_path,
            auth=AuthDescriptor(user="git", private_key_file=str(ssh_key)),
        )
        values.update(overrides)
        return RepoDescriptor(**values)

    return _make


def snapshot(dest: Path) -> dict[str, bytes]:
    """Maps every working-tree file (outside .git) to its content."""
    return {
        str(p.relative_to(dest)): p.read_bytes()
        for p in sorted(dest.rglob("*"))
        if p.is_file() and ".git" not in p.relative_to(dest).parts
    }
