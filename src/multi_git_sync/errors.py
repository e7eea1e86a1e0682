"""Error taxonomy for configuration and per-repository sync failures."""


class SyncError(Exception):
    """Base class for every error raised by multi-git-sync."""


class ConfigError(SyncError):
    """The configuration document is missing or malformed.

    Raised before any scheduling begins; the process exits non-zero.
    """


class AuthError(SyncError):
    """Credentials for a repository could not be resolved."""


class TransportError(SyncError):
    """The remote could not be reached or rejected a clone, fetch or pull."""


class WorkingTreeError(SyncError):
    """A local checkout, sparse setup or reset failed."""
