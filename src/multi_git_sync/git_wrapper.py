import logging
import re
import subprocess
from collections.abc import Callable
from pathlib import Path

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


class GitError(RuntimeError):
    """A git command exited with a non-zero status.

    Attributes:
        command (list[str]): The git arguments that failed.
        stderr (str): The captured standard error of the command.
    """

    def __init__(self, command: list[str], stderr: str):
        self.command = command
        self.stderr = stderr.strip()
        super().__init__(f"Git error: {self.stderr or ' '.join(command)}")


def run_git(
    args: list[str],
    cwd: Path,
    env: dict | None = None,
) -> subprocess.CompletedProcess:
    """Executes a git command and returns the completed process.

    Args:
        args (list[str]): Arguments passed to the git binary.
        cwd (Path): The working directory for the command.
        env (Optional[dict], optional): Environment variables for the subprocess.
                                        Defaults to None (inherit).

    Returns:
        subprocess.CompletedProcess: The finished process with captured output.

    Raises:
        GitError: If the git command returns a non-zero exit code.
    """
    try:
        return subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
            env=env,
        )
    except subprocess.CalledProcessError as e:
        raise GitError(args, e.stderr or str(e)) from e


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    This class is the repository backend of the sync engine: it opens existing
    working copies, clones new ones, and exposes the handful of checkout, fetch,
    reset and pull operations a one-way mirror needs. Every command runs with
    the environment given at construction, which is how credentials reach git.

    Attributes:
        path (Path): The file system path to the repository root.
        env (dict | None): Environment variables applied to every git command.
    """

    def __init__(self, path: Path, env: dict | None = None):
        """Opens an existing repository.

        Args:
            path (Path): The path to the repository root directory.
            env (Optional[dict], optional): Environment for git subprocesses.

        Raises:
            ValueError: If the specified path does not contain a .git directory.
        """
        self.path = path
        self.env = env
        if not (self.path / ".git").exists():
            raise ValueError(f"Not a git repository: {self.path}")

    @classmethod
    def clone(
        cls,
        url: str,
        path: Path,
        branch: str,
        depth: int = 0,
        no_checkout: bool = True,
        env: dict | None = None,
        progress: Callable[[str], None] | None = None,
    ) -> "GitRepo":
        """Clones a remote repository into a new directory.

        Args:
            url (str): The remote URL.
            path (Path): The destination directory. Parents are created.
            branch (str): The branch HEAD should point at after the clone.
            depth (int, optional): Number of commits to fetch. 0 fetches full
                                   history. Defaults to 0.
            no_checkout (bool, optional): Skip populating the working tree.
                                          Defaults to True.
            env (Optional[dict], optional): Environment for git subprocesses.
            progress (Optional[Callable[[str], None]], optional): Receives each
                line of clone progress output.

        Returns:
            GitRepo: The freshly cloned repository.

        Raises:
            GitError: If the clone fails.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        cmd = ["clone", "--progress", "--branch", branch]
        if no_checkout:
            cmd.append("--no-checkout")
        if depth > 0:
            cmd.extend(["--depth", str(depth)])
        cmd.extend([url, str(path)])

        res = run_git(cmd, cwd=path.parent, env=env)
        if progress:
            for line in re.split(r"[\r\n]+", res.stderr):
                if line.strip():
                    progress(line.strip())
        return cls(path, env=env)

    def _run(self, args: list[str], env: dict | None = None) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            env (Optional[dict], optional): Overrides the repository environment
                                            for this one command.

        Returns:
            str: The stripped stdout of the command.

        Raises:
            GitError: If the git command returns a non-zero exit code.
        """
        res = run_git(args, cwd=self.path, env=env if env is not None else self.env)
        return res.stdout.strip()

    def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch.

        Returns:
            str: The name of the current branch, or an empty string when HEAD
                 is detached.
        """
        return self._run(["branch", "--show-current"])

    def checkout(self, branch: str, force: bool = False) -> None:
        """Checks out a branch, populating the working tree.

        Args:
            branch (str): The target branch name.
            force (bool, optional): Whether to force the checkout (discarding changes).
                                    Defaults to False.
        """
        cmd = ["checkout"]
        if force:
            cmd.append("-f")
        cmd.append(branch)
        self._run(cmd)

    def set_sparse_paths(self, paths: list[str]) -> None:
        """Restricts the working tree to the given directories.

        Uses non-cone patterns anchored at the repository root so that files in
        the top-level directory are not materialized either. Takes effect on
        the next checkout or reset.

        Args:
            paths (list[str]): Directories, relative to the repository root.
        """
        self._run(["config", "core.sparseCheckout", "true"])
        self._run(["config", "core.sparseCheckoutCone", "false"])

        info_dir = self.path / ".git" / "info"
        info_dir.mkdir(parents=True, exist_ok=True)
        patterns = [f"/{p.strip('/')}/" for p in paths]
        (info_dir / "sparse-checkout").write_text("\n".join(patterns) + "\n")

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision (tag, branch, relative ref) to a full SHA-1 hash.

        Args:
            rev (str): The revision to parse (e.g., 'HEAD', 'master').

        Returns:
            Optional[str]:  The full SHA-1 hash,
                            or None if the revision could not be resolved.
        """
        try:
            return self._run(["rev-parse", "--verify", "--quiet", rev])
        except GitError as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def head(self) -> str:
        """Reads the commit currently checked out.

        Returns:
            str: The SHA-1 hash of HEAD.

        Raises:
            GitError: If HEAD cannot be resolved.
        """
        return self._run(["rev-parse", "HEAD"])

    def remote_ref(self, remote: str, branch: str) -> str:
        """Resolves the tip of a remote-tracking branch.

        Args:
            remote (str): The remote name (e.g., 'origin').
            branch (str): The branch name on that remote.

        Returns:
            str: The SHA-1 hash of ``refs/remotes/<remote>/<branch>``.

        Raises:
            GitError: If the remote-tracking ref does not exist.
        """
        return self._run(["rev-parse", "--verify", f"refs/remotes/{remote}/{branch}"])

    def fetch(
        self, remote: str, branch: str, depth: int = 0, force: bool = True
    ) -> bool:
        """Fetches one branch from a remote into its remote-tracking ref.

        Args:
            remote (str): The remote name.
            branch (str): The branch to fetch.
            depth (int, optional): Limit history to this many commits. 0 fetches
                                   everything missing. Defaults to 0.
            force (bool, optional): Allow non-fast-forward updates of the
                                    remote-tracking ref. Defaults to True.

        Returns:
            bool: True if the remote-tracking ref moved, False if it was
                  already up to date.
        """
        tracking = f"refs/remotes/{remote}/{branch}"
        before = self.rev_parse(tracking)

        cmd = ["fetch"]
        if depth > 0:
            cmd.extend(["--depth", str(depth)])
        if force:
            cmd.append("--force")
        cmd.extend([remote, f"+refs/heads/{branch}:{tracking}"])
        self._run(cmd)

        return self.rev_parse(tracking) != before

    def reset_hard(self, commit: str, paths: list[str] | None = None) -> None:
        """Forcefully resets the working tree to a commit.

        With ``paths``, HEAD still moves to ``commit`` but only the index and
        working tree entries under those paths are rewritten; everything else
        on disk is left untouched.

        Args:
            commit (str): The target commit SHA or reference.
            paths (Optional[list[str]], optional): Restrict the reset to these
                                                   paths. Defaults to None.
        """
        if not paths:
            self._run(["reset", "--hard", commit])
            return

        self._run(["reset", "--soft", commit])
        self._run(
            ["restore", f"--source={commit}", "--staged", "--worktree", "--", *paths]
        )

    def discard_changes(self) -> None:
        """Drops local modifications to tracked files."""
        self._run(["reset", "--hard", "HEAD"])

    def pull(self, remote: str, branch: str, force: bool = True) -> bool:
        """Fast-forwards the current branch from a single remote branch.

        Args:
            remote (str): The remote name.
            branch (str): The remote branch to integrate.
            force (bool, optional): Allow non-fast-forward updates of the
                                    remote-tracking ref. Defaults to True.

        Returns:
            bool: True if HEAD moved, False if already up to date.
        """
        before = self.rev_parse("HEAD")

        cmd = ["pull", "--ff-only", "--no-rebase"]
        if force:
            cmd.append("--force")
        cmd.extend([remote, branch])
        self._run(cmd)

        return self.rev_parse("HEAD") != before
