import logging
import os
import subprocess
import sys
from pathlib import Path

from .constants import APP_NAME, REGISTRY_FILE

logger = logging.getLogger(APP_NAME)


def get_registered_repos() -> list[Path]:
    """Reads the registry file and returns a list of registered repository paths."""
    if not REGISTRY_FILE.exists():
        return []
    with open(REGISTRY_FILE, "r") as f:
        return [Path(line.strip()) for line in f if line.strip()]


def register_repo(path: Path) -> bool:
    """Appends a repository path to the registry.

    Returns:
        bool: False if the path was already registered.
    """
    path = path.expanduser().resolve()
    if path in get_registered_repos():
        return False
    REGISTRY_FILE.parent.mkdir(parents=True, exist_ok=True)
    with open(REGISTRY_FILE, "a") as f:
        f.write(f"{path}\n")
    logger.info(f"REGISTERED: {path}")
    return True


def unregister_repo(path: Path) -> bool:
    """Removes a repository path from the registry, rewriting it atomically.

    Returns:
        bool: False if the path was not registered.
    """
    path = path.expanduser().resolve()
    current = get_registered_repos()
    if path not in current:
        return False

    tmp_file = REGISTRY_FILE.with_suffix(".tmp")
    try:
        with open(tmp_file, "w") as f:
            for p in current:
                if p != path:
                    f.write(f"{p}\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_file, REGISTRY_FILE)
    except OSError:
        tmp_file.unlink(missing_ok=True)
        raise
    logger.info(f"UNREGISTERED: {path}")
    return True


def configured_repos(core_repos: list[str]) -> list[str]:
    """Combines the config file's repository list with the registry.

    Order is config first, then registry; exact duplicates are dropped.
    """
    combined = [*core_repos, *(str(p) for p in get_registered_repos())]
    return list(dict.fromkeys(combined))


class SystemStrategy:
    """Base class defining the interface for system-level interactions."""

    def notify(self, title: str, message: str) -> None:
        """Sends a desktop notification.

        Args:
            title (str): The notification title.
            message (str): The notification body text.
        """
        pass


class MacOSStrategy(SystemStrategy):
    """System strategy implementation for macOS."""

    def notify(self, title: str, message: str) -> None:
        """Sends a notification using AppleScript."""
        # Sanitize quotes to prevent AppleScript syntax errors.
        clean_msg = message.replace('"', "'")
        clean_title = title.replace('"', "'")
        script = f'display notification "{clean_msg}" with title "{clean_title}"'
        try:
            subprocess.run(
                ["osascript", "-e", script], stderr=subprocess.DEVNULL, timeout=5
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"Notification failed: {e}")


class LinuxStrategy(SystemStrategy):
    """System strategy implementation for Linux."""

    def notify(self, title: str, message: str) -> None:
        """Sends a notification using `notify-send`."""
        try:
            subprocess.run(
                ["notify-send", "--app-name", APP_NAME, title, message],
                stderr=subprocess.DEVNULL,
                timeout=5,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"Notification failed: {e}")


def get_system() -> SystemStrategy:
    """Factory function to retrieve the platform-specific system strategy.

    Returns:
        SystemStrategy: An instance of MacOSStrategy, LinuxStrategy, or the base
        SystemStrategy depending on the operating system.
    """
    if sys.platform == "darwin":
        return MacOSStrategy()
    elif sys.platform.startswith("linux"):
        return LinuxStrategy()
    else:
        return SystemStrategy()
