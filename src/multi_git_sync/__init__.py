"""multi-git-sync: Keep local directories mirrored against remote git repositories.

This package provides the synchronization engine (checkout, pull or shallow
refresh, with optional sparse sub-paths), the per-repository cron scheduler,
and the daemon and command-line entry points that drive them.
"""

__version__ = "0.1.0"

from . import (
    auth,
    cli,
    config,
    constants,
    daemon,
    engine,
    errors,
    git_wrapper,
    job,
    models,
    schedule,
    scheduler,
)

__all__ = [
    "auth",
    "cli",
    "config",
    "constants",
    "daemon",
    "engine",
    "errors",
    "git_wrapper",
    "job",
    "models",
    "schedule",
    "scheduler",
]
