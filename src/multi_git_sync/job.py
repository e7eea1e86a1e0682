import logging
import threading
from pathlib import Path

from .engine import SyncEngine, read_head, repo_logger
from .models import RepoDescriptor, SyncOutcome

_dest_locks: dict[Path, threading.Lock] = {}
_dest_locks_lock = threading.Lock()


def destination_lock(dest_dir: Path) -> threading.Lock:
    """Returns the process-wide lock guarding one destination directory.

    Args:
        dest_dir (Path): The destination directory.

    Returns:
        threading.Lock: The same lock for every path resolving to ``dest_dir``.
    """
    key = dest_dir.expanduser().resolve()
    with _dest_locks_lock:
        if key not in _dest_locks:
            _dest_locks[key] = threading.Lock()
        return _dest_locks[key]


class RepositoryJob:
    """One repository's sync as an independently schedulable unit of work.

    ``run`` never raises: every failure is logged with the repository identity
    and turned into a failed outcome, so one repository cannot disturb the
    schedules of the others.

    Attributes:
        repo (RepoDescriptor): The repository this job mirrors.
        engine (SyncEngine): The engine performing the sync.
    """

    def __init__(self, repo: RepoDescriptor, engine: SyncEngine | None = None):
        self.repo = repo
        self.engine = engine or SyncEngine()

    def __repr__(self) -> str:
        return f"RepositoryJob({self.repo})"

    def run(self) -> SyncOutcome | None:
        """Runs one sync tick.

        A tick that finds the previous tick for the same destination still
        running is skipped.

        Returns:
            SyncOutcome | None: The outcome, or None if the tick was skipped.
        """
        log = repo_logger(self.repo)
        lock = destination_lock(self.repo.dest_dir)
        if not lock.acquire(blocking=False):
            log.warning("SKIPPED: previous sync of this destination is still running.")
            return None

        try:
            try:
                outcome = self.engine.sync(self.repo)
            except Exception as e:
                log.exception("Sync git repo failed unexpectedly.")
                return SyncOutcome.failure(e)

            if not outcome.ok:
                log.error(f"Sync git repo failed. error={outcome.error!r}")
                return outcome

            self._confirm_head(log)
            if outcome.is_noop:
                log.info("Sync git repo completed. Already up to date.")
            else:
                log.info(f"Sync git repo completed. HEAD is now {outcome.head}")
            return outcome
        finally:
            lock.release()

    def _confirm_head(self, log: logging.LoggerAdapter) -> None:
        """Logs the destination's HEAD as a best-effort confirmation."""
        try:
            ref = read_head(self.repo)
        except Exception as e:
            log.debug(f"HEAD confirmation skipped: {e}")
            return
        log.info(f"git show-ref --head HEAD: {ref}")
