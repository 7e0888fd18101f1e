import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_GIT_TIMEOUT,
    DEFAULT_WORKERS,
)

logger = logging.getLogger(APP_NAME)


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


def parse_time(value: int | str) -> int:
    """Converts human-readable time strings (e.g., '1hr', '30m') to seconds."""
    if isinstance(value, int):
        return value
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {"s": 1, "sec": 1, "m": 60, "min": 60, "h": 3600, "hr": 3600}
    return int(num * multiplier[unit])


def parse_clock(value: str) -> str:
    """Validates a wall-clock time ('9:00', '18:30') and normalizes it to 'HH:MM'."""
    match = re.match(r"^(\d{1,2}):(\d{2})$", str(value).strip())
    if not match:
        raise ValueError(f"Invalid clock time '{value}'")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid clock time '{value}'")
    return f"{hour:02d}:{minute:02d}"


@dataclass
class CoreConfig:
    """Core application settings.

    Attributes:
        repos (list[str]): Repository paths to keep synchronized (`~` allowed).
    """

    repos: list[str] = field(default_factory=list)


@dataclass
class OptionsConfig:
    """Behavioral switches.

    Attributes:
        auto_fetch (bool): Fetch all remotes before syncing each repository.
        notify (bool): Send desktop notifications for notable outcomes.
        run_on_startup (bool): Also run a pass at login/boot when the service
            is installed.
    """

    auto_fetch: bool = True
    notify: bool = True
    run_on_startup: bool = True


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
        git_timeout (int): Seconds before any single git command is abandoned.
    """

    max_log_size: int = 10 * 1024 * 1024
    git_timeout: int = DEFAULT_GIT_TIMEOUT


@dataclass
class DaemonConfig:
    """Scheduling and parallelism settings.

    Attributes:
        workers (int): Repositories synchronized in parallel.
        schedules (list[str]): Wall-clock times ('HH:MM') for scheduled passes.
        interval (int | None): Seconds between passes. Overrides `schedules` when set.
    """

    workers: int = DEFAULT_WORKERS
    schedules: list[str] = field(default_factory=lambda: ["09:00", "18:00"])
    interval: int | None = None


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        core (CoreConfig): Core settings.
        options (OptionsConfig): Behavioral switches.
        limits (LimitsConfig): Resource limits.
        daemon (DaemonConfig): Scheduling settings.
    """

    core: CoreConfig = field(default_factory=CoreConfig)
    options: OptionsConfig = field(default_factory=OptionsConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)

    # Cache for the parsed global configuration
    _global_cache: "Config | None" = None

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads configuration from defaults and the TOML file.

        Args:
            path (Path | None): An explicit config file. Bypasses the cache.

        Returns:
            Config: The merged configuration object.
        """
        if path is not None:
            instance = cls()
            if path.exists():
                instance._merge_from_file(path)
            return instance

        if cls._global_cache is None:
            instance = cls()
            if CONFIG_FILE.exists():
                instance._merge_from_file(CONFIG_FILE)
            cls._global_cache = instance

        cached = cls._global_cache
        return replace(
            cached,
            core=replace(cached.core, repos=list(cached.core.repos)),
            options=replace(cached.options),
            limits=replace(cached.limits),
            daemon=replace(cached.daemon, schedules=list(cached.daemon.schedules)),
        )

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if not data:
                return

            unknown = set(data) - {"core", "options", "limits", "daemon"}
            if unknown:
                logger.warning(
                    f"Unknown config sections in {path.name}: "
                    f"{', '.join(sorted(unknown))}. Ignoring."
                )

            if "core" in data:
                self.core = self._update_dataclass("core", self.core, data["core"])
            if "options" in data:
                self.options = self._update_dataclass(
                    "options", self.options, data["options"]
                )
            if "limits" in data:
                self.limits = self._update_dataclass(
                    "limits", self.limits, data["limits"]
                )
            if "daemon" in data:
                self.daemon = self._update_dataclass(
                    "daemon", self.daemon, data["daemon"]
                )

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        # 1. Catch and warn about typos / unknown keys
        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        # 2. Process valid keys
        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                filtered_updates[k] = _parse_value(k, v)
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)


_BOOL_KEYS = {"auto_fetch", "notify", "run_on_startup"}


def _parse_value(key: str, value: Any) -> Any:
    """Routes one config value through the parser its key requires."""
    if key == "max_log_size":
        return parse_size(value)
    if key in ("git_timeout", "interval"):
        return parse_time(value)
    if key == "schedules":
        if not isinstance(value, list):
            raise ValueError(f"Expected a list of 'HH:MM' times, got {value!r}")
        return [parse_clock(v) for v in value]
    if key == "repos":
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ValueError(f"Expected a list of paths, got {value!r}")
        return value
    if key == "workers":
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            raise ValueError(f"Expected a positive integer, got {value!r}")
        return value
    if key in _BOOL_KEYS and not isinstance(value, bool):
        raise ValueError(f"Expected true or false, got {value!r}")
    return value
