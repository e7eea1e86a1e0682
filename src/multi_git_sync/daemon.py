import logging
import signal
import sys
from concurrent.futures import ThreadPoolExecutor
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import FrameType

from .config import Config
from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_MAX_LOG_SIZE,
    LOG_DATE_FORMAT,
    LOG_FORMAT,
)
from .engine import SyncEngine
from .errors import ConfigError
from .job import RepositoryJob
from .models import RepoDescriptor, SyncOutcome
from .scheduler import Scheduler

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)


def setup_logging(
    log_file: str | None = None,
    max_log_size: int = DEFAULT_MAX_LOG_SIZE,
    verbose: bool = False,
) -> None:
    """Configures the logging subsystem.

    Logging handlers serialize each record behind a lock, so jobs running on
    different threads never interleave within a line.

    Args:
        log_file (str | None): If set, also log to this file with rotation.
        max_log_size (int): Bytes before the log file is rotated.
        verbose (bool): Log at DEBUG instead of INFO.
    """
    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Always log to stderr (captured by systemd/docker).
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_log_size,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def build_jobs(config: Config, engine: SyncEngine | None = None) -> list[RepositoryJob]:
    """Creates one RepositoryJob per configured repository."""
    engine = engine or SyncEngine()
    return [RepositoryJob(repo, engine) for repo in config.repos]


def build_scheduler(config: Config, engine: SyncEngine | None = None) -> Scheduler:
    """Creates a Scheduler holding one job per repository, each on its own cron."""
    scheduler = Scheduler(max_workers=config.daemon.max_workers)
    for job in build_jobs(config, engine):
        scheduler.add(job.repo.schedule, job)
    return scheduler


def run_once(
    config: Config, engine: SyncEngine | None = None
) -> list[tuple[RepoDescriptor, SyncOutcome | None]]:
    """Syncs every configured repository once, concurrently.

    Returns:
        list[tuple[RepoDescriptor, SyncOutcome | None]]: Each repository with
        its outcome (None if the sync was skipped), in configuration order.
    """
    jobs = build_jobs(config, engine)
    if not jobs:
        return []
    workers = config.daemon.max_workers or len(jobs)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sync-once") as pool:
        outcomes = list(pool.map(lambda job: job.run(), jobs))
    return [(job.repo, outcome) for job, outcome in zip(jobs, outcomes)]


def install_signal_handlers(scheduler: Scheduler) -> None:
    """Stops the scheduler on SIGINT or SIGTERM."""

    def handler(signum: int, _frame: FrameType | None) -> None:
        logger.info(
            f"Received {signal.Signals(signum).name}, shutting down scheduler now."
        )
        scheduler.stop()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def load_config(config_path: Path) -> Config:
    """Loads the configuration, exiting the process on ConfigError."""
    try:
        return Config.load(config_path)
    except ConfigError as e:
        logger.error(f"Failed to load config {config_path}: {e}")
        sys.exit(1)


def main(config_path: Path = CONFIG_FILE, verbose: bool = False) -> None:
    """The main daemon entry point.

    Loads the configuration, schedules every repository and blocks until an
    interrupt or termination signal, then lets in-flight syncs finish.

    Args:
        config_path (Path): The TOML configuration file.
        verbose (bool): Log at DEBUG level.
    """
    setup_logging(verbose=verbose)
    config = load_config(config_path)
    setup_logging(config.daemon.log_file, config.daemon.max_log_size, verbose)

    try:
        scheduler = build_scheduler(config)
    except ConfigError as e:
        logger.error(f"Failed to build scheduler: {e}")
        sys.exit(1)

    install_signal_handlers(scheduler)
    logger.info(f"Start scheduler for {len(config.repos)} repo(s).")
    scheduler.run_forever()
    logger.info("Scheduler stopped.")


if __name__ == "__main__":
    main()
