import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from . import __version__, daemon, schedule
from .config import Config
from .constants import APP_NAME, CONFIG_FILE
from .errors import ConfigError

logger = logging.getLogger(APP_NAME)
console = Console()
err_console = Console(stderr=True)


def _load_or_exit(config_path: Path) -> Config:
    """Loads the configuration, printing the error and exiting on failure."""
    try:
        return Config.load(config_path)
    except ConfigError as e:
        err_console.print(f"[bold red]Config Error:[/bold red] {e}")
        sys.exit(1)


def check_config(config_path: Path) -> None:
    """Validates the configuration and shows each repository's next sync time."""
    config = _load_or_exit(config_path)

    table = Table(title=f"Repositories ({config_path})")
    table.add_column("URL", style="cyan")
    table.add_column("Branch")
    table.add_column("Depth", justify="right")
    table.add_column("SubPath")
    table.add_column("DestDir")
    table.add_column("Schedule")
    table.add_column("Next Sync", style="green")

    for repo in config.repos:
        next_run = schedule.next_fire(repo.schedule)
        table.add_row(
            repo.url,
            repo.branch,
            str(repo.depth) if repo.depth else "full",
            repo.sub_path or "-",
            str(repo.dest_dir),
            repo.schedule,
            next_run.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)
    console.print(f"[bold green]✔ Config OK:[/bold green] {len(config.repos)} repo(s).")


def sync_once(config_path: Path, verbose: bool = False) -> None:
    """Syncs every repository immediately and prints a summary table.

    Exits with status 1 if any repository failed.
    """
    daemon.setup_logging(verbose=verbose)
    config = _load_or_exit(config_path)

    with console.status("Syncing repositories...", spinner="dots"):
        results = daemon.run_once(config)

    table = Table(title="Sync Results")
    table.add_column("DestDir", style="cyan")
    table.add_column("Strategy")
    table.add_column("Result")
    table.add_column("HEAD / Error")

    failed = 0
    for repo, outcome in results:
        if outcome is None:
            table.add_row(str(repo.dest_dir), "-", "[yellow]SKIPPED[/yellow]", "")
            continue
        strategy = outcome.strategy.value if outcome.strategy else "-"
        if outcome.ok:
            status = "[green]UP TO DATE[/green]" if outcome.is_noop else "[green]SYNCED[/green]"
            table.add_row(str(repo.dest_dir), strategy, status, outcome.head or "")
        else:
            failed += 1
            table.add_row(
                str(repo.dest_dir), strategy, "[bold red]FAILED[/bold red]", str(outcome.error)
            )

    console.print(table)
    if failed:
        sys.exit(1)


def main() -> None:
    """Main entry point for the multi-git-sync CLI."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Mirror remote git repositories into local directories on cron schedules.",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=CONFIG_FILE,
        help=f"The config file path (default: {CONFIG_FILE})",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Start the scheduler (default)")
    subparsers.add_parser("once", help="Sync every repository once and exit")
    subparsers.add_parser("check", help="Validate the config and show next sync times")

    args = parser.parse_args()

    if args.command == "once":
        sync_once(args.config, verbose=args.verbose)
        return
    elif args.command == "check":
        check_config(args.config)
        return

    # Default Action (run the daemon)
    daemon.main(args.config, verbose=args.verbose)


if __name__ == "__main__":
    main()
