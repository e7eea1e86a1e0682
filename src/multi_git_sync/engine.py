import logging
from collections.abc import Callable
from contextlib import contextmanager
from typing import Any, Iterator

from .auth import git_environment, resolve
from .constants import APP_NAME, DEFAULT_REMOTE
from .errors import AuthError, SyncError, TransportError, WorkingTreeError
from .git_wrapper import GitError, GitRepo
from .models import RepoDescriptor, Strategy, SyncOutcome

logger = logging.getLogger(APP_NAME)


class RepoLogAdapter(logging.LoggerAdapter):
    """Prefixes messages with the repository identity and attaches it as ``repo``."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs.setdefault("extra", {}).update(self.extra)
        return f"[{self.extra['repo']}] {msg}", kwargs


def repo_logger(repo: RepoDescriptor) -> RepoLogAdapter:
    """Returns the application logger bound to one repository's identity."""
    return RepoLogAdapter(logger, {"repo": str(repo)})


def select_strategy(present: bool, depth: int) -> Strategy:
    """Chooses the git operations for a destination.

    Args:
        present (bool): Whether the destination already holds a repository.
        depth (int): The declared history depth. 0 means full history.

    Returns:
        Strategy: CHECKOUT for an absent destination, SHALLOW_REFRESH for a
        present one with a depth limit, PULL otherwise.
    """
    if not present:
        return Strategy.CHECKOUT
    if depth > 0:
        return Strategy.SHALLOW_REFRESH
    return Strategy.PULL


@contextmanager
def _git_errors(
    error_cls: type[SyncError], action: str, *extra: type[Exception]
) -> Iterator[None]:
    """Re-raises backend failures inside the block as ``error_cls``.

    ``extra`` lists further exception types (local filesystem errors, say)
    that belong to the same failure class.
    """
    try:
        yield
    except (GitError, *extra) as e:
        detail = e.stderr if isinstance(e, GitError) and e.stderr else e
        raise error_cls(f"{action} failed: {detail}") from e


def probe(repo: RepoDescriptor, env: dict | None = None) -> GitRepo | None:
    """Opens the destination's existing working copy without touching it.

    Returns:
        GitRepo | None: The repository, or None when the destination is absent.
    """
    try:
        return GitRepo(repo.dest_dir, env=env)
    except ValueError:
        return None


class SyncEngine:
    """Decides and runs the minimal git operations that bring a destination
    in line with its repository descriptor.

    Attributes:
        remote (str): The remote name used for fetch and pull.
        progress (Callable[[str], None] | None): Receives clone progress lines.
            Defaults to the repository's DEBUG log.
    """

    def __init__(
        self,
        remote: str = DEFAULT_REMOTE,
        progress: Callable[[str], None] | None = None,
    ):
        self.remote = remote
        self.progress = progress

    def sync(self, repo: RepoDescriptor) -> SyncOutcome:
        """Brings ``repo.dest_dir`` up to date with the remote branch.

        Per-repository failures never escape; they are returned as a failed
        outcome carrying an AuthError, TransportError or WorkingTreeError.

        Args:
            repo (RepoDescriptor): The declared intent for the repository.

        Returns:
            SyncOutcome: Success with the resulting HEAD, or failure with a cause.
        """
        log = repo_logger(repo)
        try:
            auth = resolve(repo.auth, repo.url)
        except AuthError as e:
            return SyncOutcome.failure(e)

        with git_environment(auth) as env:
            existing = probe(repo, env)
            strategy = select_strategy(existing is not None, repo.depth)
            try:
                if existing is None:
                    log.info(
                        f"git clone --no-checkout {repo.url} -b {repo.branch} "
                        f"{repo.dest_dir} (SubPath: {repo.sub_path or '-'})"
                    )
                    existing = self._checkout(repo, env, log)
                    updated = True
                elif strategy is Strategy.PULL:
                    log.info(f"git pull {repo.dest_dir}")
                    updated = self._pull(existing, repo)
                else:
                    log.info(f"git fetch --depth {repo.depth}")
                    updated = self._shallow_refresh(existing, repo)

                with _git_errors(WorkingTreeError, "read HEAD"):
                    head = existing.head()
            except SyncError as e:
                return SyncOutcome.failure(e, strategy)

        return SyncOutcome.success(strategy, head, updated=updated)

    def _checkout(
        self, repo: RepoDescriptor, env: dict, log: logging.LoggerAdapter
    ) -> GitRepo:
        dest = repo.dest_dir
        with _git_errors(WorkingTreeError, f"prepare {dest}", OSError):
            if dest.exists() and (not dest.is_dir() or any(dest.iterdir())):
                raise WorkingTreeError(
                    f"Destination {dest} is not empty and is not a git repository"
                )
            dest.parent.mkdir(parents=True, exist_ok=True)

        with _git_errors(TransportError, "clone"):
            git_repo = GitRepo.clone(
                repo.url,
                dest,
                branch=repo.branch,
                depth=repo.depth,
                no_checkout=True,
                env=env,
                progress=self.progress or log.debug,
            )

        with _git_errors(WorkingTreeError, f"checkout {repo.branch}", OSError):
            if repo.sparse_paths:
                git_repo.set_sparse_paths(repo.sparse_paths)
            git_repo.checkout(repo.branch, force=True)
        return git_repo

    def _pull(self, git_repo: GitRepo, repo: RepoDescriptor) -> bool:
        with _git_errors(WorkingTreeError, "discard local changes"):
            branch = git_repo.current_branch() or repo.branch
            git_repo.discard_changes()

        with _git_errors(TransportError, "pull"):
            return git_repo.pull(self.remote, branch, force=True)

    def _shallow_refresh(self, git_repo: GitRepo, repo: RepoDescriptor) -> bool:
        head_before = git_repo.rev_parse("HEAD")

        with _git_errors(TransportError, f"fetch --depth {repo.depth}"):
            git_repo.fetch(self.remote, repo.branch, depth=repo.depth, force=True)
            target = git_repo.remote_ref(self.remote, repo.branch)

        with _git_errors(WorkingTreeError, f"reset --hard {target}"):
            git_repo.reset_hard(target, paths=repo.sparse_paths or None)

        return head_before != target


def read_head(repo: RepoDescriptor) -> str:
    """Reads the HEAD hash of a destination.

    Raises:
        ValueError: If the destination holds no repository.
        GitError: If HEAD cannot be resolved.
    """
    return GitRepo(repo.dest_dir).head()
