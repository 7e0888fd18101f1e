import atexit
import logging
import os
import queue
import signal
import sys
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from types import FrameType

from .config import Config
from .constants import APP_NAME, DEFAULT_WORKERS, LOG_FILE, PID_FILE
from .models import (
    NOTIFY_STATUSES,
    BranchStatus,
    Repository,
    RepositoryOutcome,
    RepoStatus,
    RunSummary,
)
from .sync import PathLocks, RepositorySynchronizer
from .system import SystemStrategy, configured_repos, get_system

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)

_LOG_LEVELS = {
    RepoStatus.FAILED: logging.ERROR,
    RepoStatus.NOT_A_REPO: logging.ERROR,
    RepoStatus.NO_CURRENT_BRANCH: logging.WARNING,
    RepoStatus.DIVERGED: logging.WARNING,
    RepoStatus.DIRTY: logging.WARNING,
}

_NOTIFY_TITLES = {
    RepoStatus.UPDATED: "PullMate",
    RepoStatus.DIVERGED: "PullMate Warning",
    RepoStatus.DIRTY: "PullMate Warning",
}


class SyncOrchestrator:
    """Runs the repository synchronizer across a set of repositories.

    Repositories are processed by a bounded thread pool; each one is isolated, so
    an unexpected exception in one becomes a Failed outcome and never aborts the
    pass. Logging and notification are fire-and-forget side effects of every
    finished repository.

    Attributes:
        synchronizer (RepositorySynchronizer): Syncs a single repository.
        notifier (SystemStrategy): Desktop notification backend.
        notify (bool): Whether notifications are sent at all.
        workers (int): Upper bound on repositories processed at once.
        log (logging.Logger): Receives one record per outcome plus a summary.
    """

    def __init__(
        self,
        synchronizer: RepositorySynchronizer,
        notifier: SystemStrategy | None = None,
        notify: bool = True,
        workers: int = DEFAULT_WORKERS,
        log: logging.Logger = logger,
    ):
        self.synchronizer = synchronizer
        self.notifier = notifier or SystemStrategy()
        self.notify = notify
        self.workers = max(1, workers)
        self.log = log

    @classmethod
    def from_config(
        cls,
        config: Config,
        notifier: SystemStrategy | None = None,
        locks: PathLocks | None = None,
        log: logging.Logger = logger,
    ) -> "SyncOrchestrator":
        """Wires an orchestrator from loaded configuration."""
        synchronizer = RepositorySynchronizer(
            auto_fetch=config.options.auto_fetch,
            timeout=config.limits.git_timeout,
            locks=locks,
            log=log,
        )
        return cls(
            synchronizer,
            notifier=notifier or get_system(),
            notify=config.options.notify,
            workers=config.daemon.workers,
            log=log,
        )

    def run_pass(
        self,
        repository_paths: list[str] | list[Path],
        cancel: threading.Event | None = None,
    ) -> list[RepositoryOutcome]:
        """Synchronizes every repository once.

        Args:
            repository_paths: Paths in configured order. A path listed twice is
                synced twice, one after the other.
            cancel (threading.Event | None): Once set, repositories not yet started
                are skipped and in-flight ones stop after their current branch.

        Returns:
            list[RepositoryOutcome]: Outcomes in configured order. Repositories
            skipped by cancellation have no outcome.
        """
        cancel = cancel or threading.Event()
        paths = list(repository_paths)
        if not paths:
            return []

        results: dict[int, RepositoryOutcome] = {}
        pool_size = min(self.workers, len(paths))
        with ThreadPoolExecutor(
            max_workers=pool_size, thread_name_prefix="pullmate"
        ) as executor:
            futures = {
                executor.submit(self._run_one, raw, cancel): idx
                for idx, raw in enumerate(paths)
            }
            try:
                for future in as_completed(futures):
                    if (outcome := future.result()) is not None:
                        results[futures[future]] = outcome
            except KeyboardInterrupt:
                cancel.set()
                raise

        outcomes = [results[idx] for idx in sorted(results)]
        summary = RunSummary.from_outcomes(outcomes)
        if cancel.is_set():
            self.log.warning(
                f"CANCELLED: {len(paths) - len(outcomes)} repositories not synced."
            )
        self.log.info(f"SUMMARY: {summary}", extra={"summary": asdict(summary)})
        return outcomes

    def _run_one(
        self, raw: str | Path, cancel: threading.Event
    ) -> RepositoryOutcome | None:
        if cancel.is_set():
            return None
        try:
            repository = Repository.from_config(raw)
        except (RuntimeError, OSError) as e:
            # e.g. `~nosuchuser/repo` or a symlink loop
            outcome = RepositoryOutcome(
                repository_name=Path(raw).name or str(raw),
                repository_path=Path(raw),
                current_branch=None,
                status=RepoStatus.NOT_A_REPO,
                detail=f"cannot resolve path {raw}: {e}",
            )
            self._report(outcome)
            return outcome

        try:
            outcome = self.synchronizer.sync(repository, cancel)
        except Exception as e:
            self.log.exception(f"LOOP ERROR {repository.path}")
            outcome = RepositoryOutcome(
                repository_name=repository.name,
                repository_path=repository.path,
                current_branch=None,
                status=RepoStatus.FAILED,
                detail=f"unexpected error: {e}",
            )
        self._report(outcome)
        return outcome

    def _report(self, outcome: RepositoryOutcome) -> None:
        level = _LOG_LEVELS.get(outcome.status, logging.INFO)
        self.log.log(level, outcome.summary_line(), extra={"outcome": outcome.to_dict()})

        if not self.notify or outcome.status not in NOTIFY_STATUSES:
            return
        title = _NOTIFY_TITLES.get(outcome.status, "PullMate Error")
        try:
            self.notifier.notify(title, _notification_text(outcome))
        except Exception as e:
            self.log.debug(f"Notification failed for {outcome.repository_name}: {e}")


def _notification_text(outcome: RepositoryOutcome) -> str:
    name = outcome.repository_name
    if outcome.status is RepoStatus.UPDATED:
        updated = [
            b.branch_name
            for b in outcome.branch_outcomes
            if b.status is BranchStatus.UPDATED
        ]
        return f"{name}: updated {', '.join(updated)}"
    if outcome.status is RepoStatus.DIVERGED:
        diverged = [
            b.branch_name
            for b in outcome.branch_outcomes
            if b.status is BranchStatus.DIVERGED
        ]
        return f"{name}: {', '.join(diverged)} diverged from upstream"
    if outcome.status is RepoStatus.DIRTY:
        return f"{name}: uncommitted changes, skipped"
    if outcome.status is RepoStatus.NOT_A_REPO:
        return f"{name}: not a git repository"
    return f"{name}: {outcome.detail}"


def setup_logging(interactive: bool, max_log_size: int) -> QueueListener:
    """Configures the logging subsystem behind a queue.

    Records are handed to a background listener thread, so synchronization
    never waits on disk or terminal writes. The caller must `stop()` the
    returned listener to flush it.

    Args:
        interactive (bool): If True, the rich console owns the terminal and only
            the log file is written. If False, logs go to stderr (captured by
            systemd/launchd) and the rotating log file.
        max_log_size (int): Bytes before the log file is rotated.

    Returns:
        QueueListener: The started listener.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    handlers: list[logging.Handler] = []
    if not interactive:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        handlers.append(stream_handler)

    try:
        LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE, maxBytes=max_log_size, backupCount=5
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)
    except OSError as e:
        print(f"WARNING: cannot write log file {LOG_FILE}: {e}", file=sys.stderr)

    for handler in list(logger.handlers):
        if isinstance(handler, QueueHandler):
            logger.removeHandler(handler)

    log_queue: queue.SimpleQueue = queue.SimpleQueue()
    logger.addHandler(QueueHandler(log_queue))
    listener = QueueListener(log_queue, *handlers, respect_handler_level=True)
    listener.start()
    return listener


def _claim_pid_file() -> bool:
    """Writes our PID unless another live daemon already holds the file.

    Returns:
        bool: True if this process may run a pass.
    """
    if PID_FILE.exists():
        try:
            other = int(PID_FILE.read_text().strip())
            if other != os.getpid():
                os.kill(other, 0)
                return False
        except (ValueError, ProcessLookupError):
            pass  # Stale or garbled PID file.
        except PermissionError:
            return False  # Alive, owned by someone else.

    try:
        PID_FILE.parent.mkdir(parents=True, exist_ok=True)
        PID_FILE.write_text(str(os.getpid()))
        atexit.register(lambda: PID_FILE.unlink(missing_ok=True))
    except OSError as e:
        logger.warning(f"Could not write PID file: {e}")
    return True


def main(interactive: bool = False) -> int:
    """Runs a single synchronization pass over all configured repositories.

    This is the entry point invoked by the OS scheduler.

    Args:
        interactive (bool, optional): Whether a user is watching (CLI). Background
                                      runs log to stderr and guard against
                                      overlapping with another daemon pass.

    Returns:
        int: The process exit code (1 if any repository failed).
    """
    config = Config.load()
    listener = setup_logging(interactive, config.limits.max_log_size)
    try:
        paths = configured_repos(config.core.repos)
        if not paths:
            logger.warning("No repositories configured. Run 'git-pullmate add'.")
            return 0

        if not interactive and not _claim_pid_file():
            logger.info("SKIPPED: another pass is already running.")
            return 0

        cancel = threading.Event()

        def stop_handler(signum: int, _frame: FrameType | None) -> None:
            logger.info(f"Received signal {signum}, finishing in-flight repositories.")
            cancel.set()

        signal.signal(signal.SIGTERM, stop_handler)
        if not interactive:
            signal.signal(signal.SIGINT, stop_handler)

        orchestrator = SyncOrchestrator.from_config(config)
        outcomes = orchestrator.run_pass(paths, cancel)
        return RunSummary.from_outcomes(outcomes).exit_code
    finally:
        listener.stop()


if __name__ == "__main__":
    sys.exit(main())
