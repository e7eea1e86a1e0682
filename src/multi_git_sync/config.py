import logging
import os
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from . import schedule
from .constants import APP_NAME, CONFIG_FILE, DEFAULT_MAX_LOG_SIZE
from .errors import ConfigError
from .models import AuthDescriptor, RepoDescriptor

logger = logging.getLogger(APP_NAME)

REPO_KEYS = {"url", "branch", "depth", "subPath", "destDir", "schedule", "auth"}
ENV_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
AUTH_KEYS = {
    "user": "user",
    "accessToken": "access_token",
    "privateKeyFile": "private_key_file",
    "privateKeyPassphrase": "private_key_passphrase",
}


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def substitute_env(text: str, environ: dict[str, str] | None = None) -> str:
    """Replaces ``${VAR}`` references with environment values.

    Only the braced form is recognized, so any other ``$`` (in a token or a
    passphrase, say) is kept as written. Unset variables become empty strings.

    Args:
        text (str): The raw configuration document.
        environ (dict[str, str] | None): Variables to use. Defaults to os.environ.

    Returns:
        str: The document with every reference resolved.
    """
    values = os.environ if environ is None else environ
    return ENV_REFERENCE.sub(lambda m: values.get(m.group(1), ""), text)


@dataclass
class DaemonConfig:
    """Daemon operational settings.

    Attributes:
        log_file (str | None): Optional rotating log file, in addition to stderr.
        max_log_size (int): Max bytes for the log file before rotation.
        max_workers (int | None): Worker pool size. None sizes it from the job count.
    """

    log_file: str | None = None
    max_log_size: int = DEFAULT_MAX_LOG_SIZE
    max_workers: int | None = None


def _warn_unknown(section: str, data: dict, valid: set[str] | dict) -> None:
    invalid = set(data.keys()) - set(valid)
    if invalid:
        logger.warning(
            f"Unknown config keys in [{section}]: {', '.join(sorted(invalid))}. Ignoring."
        )


def _require_str(section: str, data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"[{section}].{key} is required")
    return value.strip()


def parse_auth(section: str, data: Any) -> AuthDescriptor:
    """Builds an AuthDescriptor from a ``[repos.auth]`` table."""
    if data is None:
        return AuthDescriptor()
    if not isinstance(data, dict):
        raise ConfigError(f"[{section}] must be a table")
    _warn_unknown(section, data, AUTH_KEYS)

    values = {}
    for key, attr in AUTH_KEYS.items():
        value = data.get(key, "")
        if not isinstance(value, str):
            raise ConfigError(f"[{section}].{key} must be a string")
        values[attr] = value
    return AuthDescriptor(**values)


def parse_repo(index: int, data: Any) -> RepoDescriptor:
    """Builds a RepoDescriptor from one ``[[repos]]`` entry.

    Args:
        index (int): Position of the entry, used in error messages.
        data (Any): The parsed entry.

    Returns:
        RepoDescriptor: The validated descriptor.

    Raises:
        ConfigError: If a required field is missing or a value is invalid.
    """
    section = f"repos.{index}"
    if not isinstance(data, dict):
        raise ConfigError(f"[{section}] must be a table")
    _warn_unknown(section, data, REPO_KEYS)

    depth = data.get("depth", 0)
    if isinstance(depth, bool) or not isinstance(depth, int) or depth < 0:
        raise ConfigError(f"[{section}].depth must be a non-negative integer")

    sub_path = data.get("subPath", "")
    if not isinstance(sub_path, str):
        raise ConfigError(f"[{section}].subPath must be a string")

    return RepoDescriptor(
        url=_require_str(section, data, "url"),
        branch=_require_str(section, data, "branch"),
        dest_dir=Path(_require_str(section, data, "destDir")).expanduser(),
        schedule=schedule.validate(_require_str(section, data, "schedule")),
        depth=depth,
        sub_path=sub_path.strip(),
        auth=parse_auth(f"{section}.auth", data.get("auth")),
    )


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        daemon (DaemonConfig): Daemon behavior settings.
        repos (list[RepoDescriptor]): The repositories to mirror.
    """

    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    repos: list[RepoDescriptor] = field(default_factory=list)

    @classmethod
    def load(cls, path: Path = CONFIG_FILE) -> "Config":
        """Reads, templates and validates a configuration file.

        Args:
            path (Path): The TOML configuration file.

        Returns:
            Config: The fully validated configuration.

        Raises:
            ConfigError: If the file is missing, unparsable or invalid.
        """
        try:
            raw = Path(path).read_text()
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        return cls.loads(raw, source=str(path))

    @classmethod
    def loads(cls, text: str, source: str = "<string>") -> "Config":
        """Parses a configuration document after environment substitution."""
        try:
            data = tomllib.loads(substitute_env(text))
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Config syntax error in {source}: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        """Builds a Config from an already-parsed document."""
        _warn_unknown("root", data, {"daemon", "repos"})
        instance = cls()

        if "daemon" in data:
            if not isinstance(data["daemon"], dict):
                raise ConfigError("[daemon] must be a table")
            instance.daemon = cls._update_dataclass(
                "daemon", instance.daemon, data["daemon"]
            )

        repos = data.get("repos", [])
        if not isinstance(repos, list):
            raise ConfigError("'repos' must be an array of tables ([[repos]])")
        instance.repos = [parse_repo(i, entry) for i, entry in enumerate(repos)]

        if not instance.repos:
            logger.warning("No repositories configured.")
        instance._warn_shared_destinations()
        return instance

    def _warn_shared_destinations(self) -> None:
        seen: dict[Path, str] = {}
        for repo in self.repos:
            key = repo.dest_dir.resolve()
            if key in seen:
                logger.warning(
                    f"destDir {repo.dest_dir} is shared by {seen[key]} and {repo.url}. "
                    "Overlapping syncs of the same destination are skipped."
                )
            else:
                seen[key] = repo.url

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        _warn_unknown(section_name, updates, set(valid_keys))

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k == "max_workers":
                    if isinstance(v, bool) or not isinstance(v, int) or v < 1:
                        raise ValueError(f"Invalid worker count '{v}'")
                    filtered_updates[k] = v
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)
