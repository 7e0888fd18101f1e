import plistlib
import shutil
import subprocess
import sys
from pathlib import Path

from rich.console import Console

from .config import Config
from .constants import APP_LABEL, LOG_FILE

console = Console()


def get_executable() -> str:
    """Locates the installed daemon executable in the system path.

    Returns:
        str: The absolute path to the 'git-pullmate-daemon' executable.

    Raises:
        SystemExit: If the executable is not found in the PATH.
    """
    exe = shutil.which("git-pullmate-daemon")
    if not exe:
        console.print(
            "[bold red]ERROR:[/bold red] Could not find 'git-pullmate-daemon'. "
            "Ensure the package is installed."
        )
        sys.exit(1)
    return exe


def get_unit_path() -> Path:
    """Resolves the service definition path for the current OS.

    Returns:
        Path: The systemd .service file on Linux, or the LaunchAgent plist on macOS.

    Raises:
        NotImplementedError: On platforms without a supported scheduler.
    """
    home = Path.home()
    if sys.platform.startswith("linux"):
        return home / f".config/systemd/user/{APP_LABEL}.service"
    if sys.platform == "darwin":
        return home / f"Library/LaunchAgents/{APP_LABEL}.plist"
    raise NotImplementedError(f"Scheduling is not supported on {sys.platform}.")


def render_systemd_units(
    executable: str, config: Config, interval: int | None = None
) -> tuple[str, str]:
    """Builds the .service and .timer unit contents.

    A fixed `interval` (argument, else `daemon.interval`) wins over the
    wall-clock `daemon.schedules`. `options.run_on_startup` adds a boot trigger.

    Returns:
        tuple[str, str]: (service_content, timer_content).
    """
    interval = interval or config.daemon.interval

    service_content = f"""[Unit]
Description=Git PullMate repository sync

[Service]
Type=oneshot
ExecStart={executable}
"""

    triggers = []
    if config.options.run_on_startup:
        triggers.append("OnBootSec=2min")
    if interval:
        # OnUnitActiveSec alone never fires until the service has run once.
        triggers.append(f"OnActiveSec={interval}s")
        triggers.append(f"OnUnitActiveSec={interval}s")
    else:
        triggers.extend(f"OnCalendar=*-*-* {t}:00" for t in config.daemon.schedules)
        triggers.append("Persistent=true")

    trigger_lines = "\n".join(triggers)
    timer_content = f"""[Unit]
Description=Run Git PullMate on schedule

[Timer]
{trigger_lines}
Unit={APP_LABEL}.service

[Install]
WantedBy=timers.target
"""
    return service_content, timer_content


def render_launch_agent(
    executable: str, config: Config, interval: int | None = None
) -> bytes:
    """Builds the LaunchAgent plist for macOS.

    Returns:
        bytes: The serialized XML plist.
    """
    interval = interval or config.daemon.interval
    agent: dict = {
        "Label": APP_LABEL,
        "ProgramArguments": [executable],
        "RunAtLoad": config.options.run_on_startup,
        "StandardOutPath": str(LOG_FILE),
        "StandardErrorPath": str(LOG_FILE),
    }
    if interval:
        agent["StartInterval"] = interval
    else:
        agent["StartCalendarInterval"] = [
            {"Hour": int(t[:2]), "Minute": int(t[3:])} for t in config.daemon.schedules
        ]
    return plistlib.dumps(agent)


def install_linux(
    unit_path: Path, executable: str, config: Config, interval: int | None
) -> None:
    """Configures and enables a systemd user timer for Linux.

    Creates the .service and .timer unit files in the user's systemd configuration
    directory, reloads the daemon, and enables the timer.
    """
    base_dir = unit_path.parent
    base_dir.mkdir(parents=True, exist_ok=True)

    service_content, timer_content = render_systemd_units(executable, config, interval)
    unit_path.write_text(service_content)
    (base_dir / f"{APP_LABEL}.timer").write_text(timer_content)

    subprocess.run(["systemctl", "--user", "daemon-reload"], check=True)
    subprocess.run(
        ["systemctl", "--user", "enable", "--now", f"{APP_LABEL}.timer"], check=True
    )
    console.print(
        f"[bold green]SUCCESS:[/bold green] PullMate systemd timer active (Linux).\n"
        f"Check status: systemctl --user list-timers {APP_LABEL}.timer"
    )


def install_macos(
    plist_path: Path, executable: str, config: Config, interval: int | None
) -> None:
    """Writes and loads a LaunchAgent for macOS."""
    plist_path.parent.mkdir(parents=True, exist_ok=True)
    # Reload cleanly if a previous version is loaded.
    subprocess.run(["launchctl", "unload", str(plist_path)], stderr=subprocess.DEVNULL)
    plist_path.write_bytes(render_launch_agent(executable, config, interval))
    subprocess.run(["launchctl", "load", "-w", str(plist_path)], check=True)
    console.print(
        f"[bold green]SUCCESS:[/bold green] PullMate LaunchAgent loaded (macOS).\n"
        f"Check status: launchctl list {APP_LABEL}"
    )


def install(interval: int | None = None) -> None:
    """Installs the scheduled sync service and startup trigger.

    Args:
        interval (int | None, optional): Seconds between passes. When omitted,
                                         the configured schedules are used.
    """
    config = Config.load()
    exe = get_executable()
    path = get_unit_path()

    if interval:
        console.print(f"Installing scheduled sync (every {interval}s)...")
    else:
        console.print(
            f"Installing scheduled sync at {', '.join(config.daemon.schedules)}..."
        )

    if sys.platform.startswith("linux"):
        install_linux(path, exe, config, interval)
    elif sys.platform == "darwin":
        install_macos(path, exe, config, interval)


def uninstall() -> None:
    """Removes the scheduled sync service from systemd or launchd."""
    path = get_unit_path()

    if sys.platform.startswith("linux"):
        timer_name = f"{APP_LABEL}.timer"
        subprocess.run(
            ["systemctl", "--user", "disable", "--now", timer_name],
            stderr=subprocess.DEVNULL,
        )

        # Remove .service and .timer files.
        timer_path = path.parent / timer_name
        path.unlink(missing_ok=True)
        timer_path.unlink(missing_ok=True)

        subprocess.run(["systemctl", "--user", "daemon-reload"])

    elif sys.platform == "darwin":
        subprocess.run(
            ["launchctl", "unload", "-w", str(path)], stderr=subprocess.DEVNULL
        )
        path.unlink(missing_ok=True)

    console.print("[bold green]SUCCESS:[/bold green] Service uninstalled.")


def is_service_enabled() -> bool:
    """Checks whether the scheduled sync is installed for this user."""
    try:
        return get_unit_path().exists()
    except NotImplementedError:
        return False
