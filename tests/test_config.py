"""Tests for configuration loading, templating and validation."""

import logging
from pathlib import Path

import pytest

from multi_git_sync.config import Config, parse_size, substitute_env
from multi_git_sync.constants import DEFAULT_MAX_LOG_SIZE
from multi_git_sync.errors import ConfigError
from multi_git_sync.models import AuthDescriptor

MINIMAL_REPO = """
[[repos]]
url = "https://github.com/org/repo.git"
branch = "main"
destDir = "/srv/mirror/repo"
schedule = "*/5 * * * *"
"""


def write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(text)
    return path


def test_config_defaults() -> None:
    """Verifies that an empty configuration has sensible defaults."""
    conf = Config()
    assert conf.repos == []
    assert conf.daemon.log_file is None
    assert conf.daemon.max_log_size == DEFAULT_MAX_LOG_SIZE
    assert conf.daemon.max_workers is None


def test_load_full_repository_entry(tmp_path: Path) -> None:
    """Verifies that every repository key maps onto the descriptor."""
    path = write(
        tmp_path,
        """
[[repos]]
url = "git@github.com:org/repo.git"
branch = "release"
depth = 1
subPath = "docs/"
destDir = "~/mirrors/repo"
schedule = "0 * * * *"

[repos.auth]
user = "git"
privateKeyFile = "~/.ssh/id_ed25519"
privateKeyPassphrase = "secret"
""",
    )

    conf = Config.load(path)

    assert len(conf.repos) == 1
    repo = conf.repos[0]
    assert repo.url == "git@github.com:org/repo.git"
    assert repo.branch == "release"
    assert repo.depth == 1
    assert repo.sub_path == "docs/"
    assert repo.dest_dir == Path("~/mirrors/repo").expanduser()
    assert repo.schedule == "0 * * * *"
    assert repo.auth == AuthDescriptor(
        user="git",
        private_key_file="~/.ssh/id_ed25519",
        private_key_passphrase="secret",
    )


def test_missing_auth_table_gives_empty_credentials() -> None:
    """Verifies that repositories without [repos.auth] get empty credentials."""
    conf = Config.loads(MINIMAL_REPO)
    assert conf.repos[0].auth == AuthDescriptor()
    assert conf.repos[0].depth == 0
    assert conf.repos[0].sub_path == ""


def test_env_substitution(monkeypatch: pytest.MonkeyPatch) -> None:
    """Verifies that ${VAR} references are resolved before parsing."""
    monkeypatch.setenv("MGS_TOKEN", "pat-from-env")
    monkeypatch.setenv("MGS_ROOT", "/data")
    monkeypatch.delenv("MGS_UNSET", raising=False)

    conf = Config.loads(
        """
[[repos]]
url = "https://github.com/org/repo.git"
branch = "main"
destDir = "${MGS_ROOT}/repo"
schedule = "*/5 * * * *"
auth = { user = "bot${MGS_UNSET}", accessToken = "${MGS_TOKEN}" }
"""
    )

    repo = conf.repos[0]
    assert repo.dest_dir == Path("/data/repo")
    assert repo.auth.access_token == "pat-from-env"
    assert repo.auth.user == "bot"


def test_substitute_env_only_expands_braced_references() -> None:
    """Verifies unset variables become empty and bare dollars are left alone."""
    env = {"A": "1", "word": "X"}
    assert substitute_env("${A}-${B}", env) == "1-"
    assert substitute_env("$A pa$word cost: $$5 $", env) == "$A pa$word cost: $$5 $"


def test_literal_dollar_in_credentials_is_preserved(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Verifies that secrets containing '$' reach the descriptor unchanged."""
    monkeypatch.delenv("word", raising=False)

    conf = Config.loads(
        MINIMAL_REPO
        + 'auth = { accessToken = "t0k$en", privateKeyPassphrase = "pa$word" }\n'
    )

    assert conf.repos[0].auth.access_token == "t0k$en"
    assert conf.repos[0].auth.private_key_passphrase == "pa$word"


@pytest.mark.parametrize("key", ["url", "branch", "destDir", "schedule"])
def test_missing_required_field(key: str) -> None:
    """Verifies that each required repository field is enforced."""
    lines = [line for line in MINIMAL_REPO.splitlines() if not line.startswith(key)]

    with pytest.raises(ConfigError, match=rf"\[repos.0\].{key} is required"):
        Config.loads("\n".join(lines))


@pytest.mark.parametrize("depth", ["-1", '"1"', "true", "1.5"])
def test_invalid_depth(depth: str) -> None:
    """Verifies that depth must be a non-negative integer."""
    with pytest.raises(ConfigError, match="depth must be a non-negative integer"):
        Config.loads(MINIMAL_REPO + f"depth = {depth}\n")


def test_invalid_schedule() -> None:
    """Verifies that a malformed cron expression is rejected at load time."""
    text = MINIMAL_REPO.replace("*/5 * * * *", "*/5 * * *")
    with pytest.raises(ConfigError, match="Invalid cron expression"):
        Config.loads(text)


def test_toml_syntax_error(tmp_path: Path) -> None:
    """Verifies that unparsable files raise ConfigError naming the file."""
    path = write(tmp_path, "[[repos]\nurl = ")

    with pytest.raises(ConfigError, match="Config syntax error in"):
        Config.load(path)


def test_missing_file(tmp_path: Path) -> None:
    """Verifies that a missing file raises ConfigError rather than OSError."""
    with pytest.raises(ConfigError, match="Cannot read config file"):
        Config.load(tmp_path / "absent.toml")


def test_repos_must_be_array_of_tables() -> None:
    """Verifies that 'repos' written as a single table is rejected."""
    with pytest.raises(ConfigError, match="array of tables"):
        Config.loads('[repos]\nurl = "x"\n')


def test_unknown_keys_warn(caplog: pytest.LogCaptureFixture) -> None:
    """Verifies that unknown keys are reported and otherwise ignored."""
    conf = Config.loads(
        MINIMAL_REPO
        + 'subpath = "typo"\n'
        + '[repos.auth]\ntoken = "x"\n'
        + "[extra]\nfoo = 1\n"
    )

    assert conf.repos[0].sub_path == ""
    assert "Unknown config keys in [repos.0]: subpath" in caplog.text
    assert "Unknown config keys in [repos.0.auth]: token" in caplog.text
    assert "Unknown config keys in [root]: extra" in caplog.text


def test_no_repositories_warns(caplog: pytest.LogCaptureFixture) -> None:
    """Verifies that an empty configuration loads but warns."""
    conf = Config.loads("")

    assert conf.repos == []
    assert "No repositories configured." in caplog.text


def test_daemon_section() -> None:
    """Verifies that daemon settings parse human-readable sizes."""
    conf = Config.loads(
        '[daemon]\nlog_file = "/var/log/mgs.log"\nmax_log_size = "10MB"\n'
        "max_workers = 4\n" + MINIMAL_REPO
    )

    assert conf.daemon.log_file == "/var/log/mgs.log"
    assert conf.daemon.max_log_size == 10 * 1024 * 1024
    assert conf.daemon.max_workers == 4


def test_daemon_invalid_values_fall_back(caplog: pytest.LogCaptureFixture) -> None:
    """Verifies that invalid daemon values warn and keep their defaults."""
    conf = Config.loads(
        '[daemon]\nmax_log_size = "lots"\nmax_workers = 0\n' + MINIMAL_REPO
    )

    assert conf.daemon.max_log_size == DEFAULT_MAX_LOG_SIZE
    assert conf.daemon.max_workers is None
    assert "Config error in [daemon].max_log_size" in caplog.text
    assert "Config error in [daemon].max_workers" in caplog.text


def test_shared_destination_warns(caplog: pytest.LogCaptureFixture) -> None:
    """Verifies that two repositories targeting one destination load with a warning."""
    caplog.set_level(logging.WARNING)
    second = MINIMAL_REPO.replace("org/repo.git", "org/other.git")

    conf = Config.loads(MINIMAL_REPO + second)

    assert len(conf.repos) == 2
    assert "destDir /srv/mirror/repo is shared" in caplog.text


@pytest.mark.parametrize(
    "value, expected",
    [
        (1024, 1024),
        ("1k", 1024),
        ("2KB", 2048),
        ("1.5 mb", int(1.5 * 1024**2)),
        ("1G", 1024**3),
    ],
)
def test_parse_size(value: int | str, expected: int) -> None:
    """Verifies human-readable size parsing."""
    assert parse_size(value) == expected


def test_parse_size_rejects_garbage() -> None:
    with pytest.raises(ValueError, match="Invalid size format"):
        parse_size("ten megs")
