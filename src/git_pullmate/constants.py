import os
from pathlib import Path

"""Global constants and path definitions for Git PullMate.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, and the defaults used when talking to the git binary.
"""

# --- Identity ---
APP_NAME = "git-pullmate"
"""str: The human-readable application name."""

APP_LABEL = "com.gitpullmate.sync"
"""str: The reverse-DNS style application identifier (systemd unit / LaunchAgent)."""

VERSION = "0.4.0"
"""str: The package version reported by `git-pullmate --version`."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "git-pullmate"
"""Path: The directory for runtime state data (logs, registry)."""

REGISTRY_FILE = STATE_DIR / "registry"
"""Path: The file storing the list of registered repositories, one per line."""

LOG_FILE = STATE_DIR / "daemon.log"
"""Path: The file path for the daemon process logs."""

PID_FILE = STATE_DIR / "daemon.pid"
"""Path: The file path storing the running daemon's process ID."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/git-pullmate"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

# --- Git ---
DEFAULT_GIT_TIMEOUT = 60
"""int: Seconds before any single git invocation is abandoned."""

DEFAULT_WORKERS = 4
"""int: Upper bound on repositories synchronized in parallel."""

GIT_ENV = {
    "GIT_TERMINAL_PROMPT": "0",
    "GIT_SSH_COMMAND": "ssh -o BatchMode=yes",
    "LC_ALL": "C",
}
"""dict[str, str]: Environment overrides keeping git non-interactive in the background."""

REFLOG_MESSAGE = "pullmate: fast-forward"
"""str: The reflog message recorded for direct branch ref moves."""
