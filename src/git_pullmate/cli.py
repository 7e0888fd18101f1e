import argparse
import logging
import os
import subprocess
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table
from rich.text import Text

from . import daemon, service, system
from .config import CONFIG_FILE, Config
from .constants import APP_NAME, LOG_FILE, VERSION
from .errors import ConfigError, GitError
from .git_wrapper import GitRepo
from .models import RepositoryOutcome, RepoStatus, RunSummary

logger = logging.getLogger(APP_NAME)
console = Console()

STATUS_STYLES = {
    RepoStatus.UPDATED: ("✔", "bold green"),
    RepoStatus.UP_TO_DATE: ("✔", "green"),
    RepoStatus.DIVERGED: ("⚠", "bold yellow"),
    RepoStatus.DIRTY: ("⚠", "yellow"),
    RepoStatus.NO_CURRENT_BRANCH: ("✘", "red"),
    RepoStatus.NOT_A_REPO: ("✘", "red"),
    RepoStatus.FAILED: ("✘", "bold red"),
}

DEFAULT_CONFIG_TEXT = """\
# Git PullMate Configuration

[core]
# Repositories to keep in sync (also see 'git-pullmate add').
repos = []

[options]
auto_fetch = true
notify = true
run_on_startup = true

[daemon]
# Wall-clock times for scheduled passes, or set an interval instead.
schedules = ["09:00", "18:00"]
# interval = "1hr"
"""


def render_outcome(outcome: RepositoryOutcome) -> Text:
    """Formats one repository outcome as a status line with its branch details."""
    symbol, style = STATUS_STYLES[outcome.status]
    line = Text()
    line.append(f"{symbol} {outcome.status.value:<17}", style=style)
    line.append(outcome.repository_name, style="bold")
    line.append(f" ({outcome.current_branch or 'unknown branch'})", style="dim")

    if outcome.branch_outcomes:
        for b in outcome.branch_outcomes:
            marker = "*" if b.is_current else " "
            line.append(f"\n    {marker} {b.branch_name}: {b.detail}", style="dim")
        for note in outcome.notes:
            line.append(f"\n    ! {note}", style="yellow")
    elif outcome.detail:
        line.append(f"\n    {outcome.detail}", style="dim")
    return line


def run_sync() -> int:
    """Runs one synchronization pass and prints per-repository results.

    Returns:
        int: The process exit code (1 if any repository failed).
    """
    config = Config.load()
    paths = system.configured_repos(config.core.repos)
    if not paths:
        console.print(
            "[yellow]No repositories configured. Run 'git-pullmate add' inside a "
            "repository or 'git-pullmate config' to edit the list.[/yellow]"
        )
        return 0

    listener = daemon.setup_logging(True, config.limits.max_log_size)
    try:
        orchestrator = daemon.SyncOrchestrator.from_config(config)
        with console.status(
            f"[bold blue]Syncing {len(paths)} repositories...[/bold blue]",
            spinner="dots",
        ):
            outcomes = orchestrator.run_pass(paths)
    except KeyboardInterrupt:
        console.print("\n[bold red]ABORTED.[/bold red] In-flight repositories finished.")
        return 130
    finally:
        listener.stop()

    for outcome in outcomes:
        console.print(render_outcome(outcome))

    summary = RunSummary.from_outcomes(outcomes)
    style = "bold red" if summary.failed else "bold green"
    console.print(f"\n[{style}]Summary:[/{style}] {summary}")
    return summary.exit_code


def add_repo(path_str: str | None) -> int:
    """Registers a repository path (default: the current directory)."""
    path = Path(path_str or Path.cwd()).expanduser().resolve()
    if not GitRepo.is_repository(path):
        console.print(f"[bold red]ERROR:[/bold red] Not a git repository: {path}")
        return 1
    if system.register_repo(path):
        console.print(f"✔ Registered: [cyan]{path}[/cyan]", style="green")
    else:
        console.print("Already registered.", style="dim")
    return 0


def remove_repo(path_str: str | None) -> int:
    """Removes a repository path from the registry (default: the current directory)."""
    path = Path(path_str or Path.cwd()).expanduser().resolve()
    if not system.unregister_repo(path):
        console.print(f"Path not registered: [cyan]{path}[/cyan]", style="yellow")
        return 1
    console.print(f"✔ Unregistered: [cyan]{path}[/cyan]", style="green")
    return 0


def list_repos() -> None:
    """Lists all configured repositories with a quick local health check."""
    config = Config.load()
    paths = system.configured_repos(config.core.repos)
    if not paths:
        console.print("[yellow]No repositories configured.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Repository", style="cyan")
    table.add_column("Branch")
    table.add_column("State")

    for raw in paths:
        branch = "-"
        try:
            path = Path(raw).expanduser()
        except RuntimeError:
            table.add_row(str(raw), branch, "[red]Unresolvable[/red]")
            continue
        display_path = str(path).replace(str(Path.home()), "~")

        if not path.exists():
            state = "[red]Missing[/red]"
        elif not GitRepo.is_repository(path):
            state = "[red]Not a repository[/red]"
        else:
            try:
                repo = GitRepo(path, timeout=config.limits.git_timeout)
                branch = repo.current_branch() or "(detached)"
                state = "[yellow]Dirty[/yellow]" if repo.is_dirty() else "[green]Clean[/green]"
            except GitError as e:
                logger.debug(f"Status check failed for {path}: {e}")
                state = "[bold red]Error[/bold red]"

        table.add_row(display_path, branch, state)

    console.print(table)
    if service.is_service_enabled():
        console.print("Scheduled sync: [green]installed[/green]")
    else:
        console.print(
            "Scheduled sync: [dim]not installed[/dim] (git-pullmate install-service)"
        )


def open_config() -> None:
    """Opens the global configuration file in the user's editor.

    Raises:
        ConfigError: If the file cannot be created or no editor can be launched.
    """
    if not CONFIG_FILE.exists():
        try:
            CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
            CONFIG_FILE.write_text(DEFAULT_CONFIG_TEXT)
        except OSError as e:
            raise ConfigError(f"Cannot create {CONFIG_FILE}: {e}") from e
        console.print(f"Created default config at [cyan]{CONFIG_FILE}[/cyan]")

    editor = os.environ.get("VISUAL") or os.environ.get("EDITOR")
    if not editor:
        if sys.platform == "darwin":
            editor = "open"
        elif sys.platform == "win32":
            editor = "notepad"
        else:
            editor = "nano"

    console.print(f"Opening [cyan]{CONFIG_FILE}[/cyan]...")
    try:
        subprocess.run([*editor.split(), str(CONFIG_FILE)])
    except OSError as e:
        raise ConfigError(f"Could not open editor '{editor}': {e}") from e


def show_config_reference() -> None:
    """Displays a formatted table of all available configuration options."""
    table = Table(title="Git PullMate Configuration Schema", show_lines=True)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Type", style="dim")
    table.add_column("Default", style="yellow")
    table.add_column("Description")

    table.add_row("core", "repos", "list[str]", "[]", "Repositories to keep in sync.")
    table.add_row(
        "options",
        "auto_fetch",
        "bool",
        "true",
        "Fetch all remotes before syncing. If false, cached remote refs are used.",
    )
    table.add_row("", "notify", "bool", "true", "Send desktop notifications.")
    table.add_row(
        "",
        "run_on_startup",
        "bool",
        "true",
        "Also run a pass at login/boot once the service is installed.",
    )
    table.add_row(
        "limits",
        "max_log_size",
        "int | str",
        '"10mb"',
        "Max size for log files before rotation (e.g., '5mb', '1gb').",
    )
    table.add_row(
        "",
        "git_timeout",
        "int | str",
        '"60s"',
        "Timeout for any single git command (e.g., '30s', '2m').",
    )
    table.add_row(
        "daemon",
        "workers",
        "int",
        "4",
        "Repositories synchronized in parallel.",
    )
    table.add_row(
        "",
        "schedules",
        "list[str]",
        '["09:00", "18:00"]',
        "Wall-clock times for scheduled passes.",
    )
    table.add_row(
        "",
        "interval",
        "int | str",
        "None",
        "Fixed time between passes (e.g., '1hr'). Overrides schedules.",
    )

    console.print(table)


def tail_log() -> None:
    """Follows the daemon log file in real-time."""
    if not LOG_FILE.exists():
        console.print(f"[red]No log file found yet at {LOG_FILE}.[/red]")
        return

    console.print(f"Tailing [bold cyan]{LOG_FILE}[/bold cyan] (Ctrl+C to stop)...")
    try:
        subprocess.run(["tail", "-n", "200", "-f", str(LOG_FILE)])
    except KeyboardInterrupt:
        console.print("\nStopped.", style="dim")


class PullMateHelpFormatter(argparse.HelpFormatter):
    """Custom help formatter grouping subcommands into categories."""

    def _format_action(self, action: argparse.Action) -> str:
        if isinstance(action, argparse._SubParsersAction):
            parts = []

            groups = {
                "Sync": ["run"],
                "Repositories": ["add", "remove", "list"],
                "Configuration": ["config", "log"],
                "Service": ["install-service", "uninstall-service"],
                "General": ["help"],
            }

            subactions = list(self._iter_indented_subactions(action))

            for group_name, commands in groups.items():
                group_actions = [a for a in subactions if a.dest in commands]
                if not group_actions:
                    continue

                parts.append(f"\n  {group_name}:\n")

                self._indent()
                for subaction in group_actions:
                    parts.append(self._format_action(subaction))
                self._dedent()

            return self._join_parts(parts)

        return super()._format_action(action)


def build_parser() -> argparse.ArgumentParser:
    """Builds the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        usage="%(prog)s [command] [options]",
        description="Keep local git checkouts fast-forwarded to their upstreams.",
        formatter_class=PullMateHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Sync all configured repositories now (default)")

    add_parser = subparsers.add_parser("add", help="Register a repository")
    add_parser.add_argument("path", nargs="?", help="Repository path (default: cwd)")
    remove_parser = subparsers.add_parser("remove", help="Unregister a repository")
    remove_parser.add_argument("path", nargs="?", help="Repository path (default: cwd)")
    subparsers.add_parser("list", help="List configured repositories")

    config_parser = subparsers.add_parser(
        "config", help="Open config file or view options"
    )
    config_parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List all available configuration options and their descriptions",
    )
    subparsers.add_parser("log", help="Tail the sync log file")

    install_parser = subparsers.add_parser(
        "install-service", help="Schedule background syncs and run at startup"
    )
    install_parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between syncs (default: use configured schedules)",
    )
    subparsers.add_parser("uninstall-service", help="Remove the scheduled sync")
    subparsers.add_parser("help", help="Show this help message")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the Git PullMate CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command in (None, "run"):
            return run_sync()
        elif args.command == "add":
            return add_repo(args.path)
        elif args.command == "remove":
            return remove_repo(args.path)
        elif args.command == "list":
            list_repos()
        elif args.command == "config":
            if args.list:
                show_config_reference()
            else:
                open_config()
        elif args.command == "log":
            tail_log()
        elif args.command == "install-service":
            service.install(interval=args.interval)
        elif args.command == "uninstall-service":
            with console.status("Uninstalling service...", spinner="dots"):
                service.uninstall()
        elif args.command == "help":
            parser.print_help()
    except (ConfigError, NotImplementedError, subprocess.CalledProcessError) as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
