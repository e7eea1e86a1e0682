from pathlib import Path

"""Global constants and default path definitions for multi-git-sync.

This module defines the application identifiers, the default configuration
location, and the git defaults shared by the sync engine and the scheduler.
"""

# --- Identity ---
APP_NAME = "multi-git-sync"
"""str: The human-readable application name, also used as the logger name."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/multi-git-sync"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The default configuration file path."""

# --- Git / Logic Constants ---
DEFAULT_REMOTE = "origin"
"""str: The remote name created by clone and used for every fetch and pull."""

HTTP_SCHEME_PREFIX = "http"
"""str: URLs starting with this token authenticate with an access token."""

HOME_PREFIX = "~/"
"""str: Key file prefix expanded to the user's home directory."""

SSH_BASE_COMMAND = "ssh -o IdentitiesOnly=yes -o BatchMode=yes"
"""str: The ssh invocation git uses for key-authenticated remotes."""

DEFAULT_MAX_LOG_SIZE = 5 * 1024 * 1024
"""int: Max bytes for the log file before rotation."""

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
