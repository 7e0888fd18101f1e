"""Data model for a synchronization pass.

Repositories and branches are snapshots built from live on-disk state at the
start of each pass; outcomes are immutable records folded upward into the
repository and run summaries.
"""

import datetime
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class BranchStatus(str, Enum):
    """Result of synchronizing one branch."""

    UP_TO_DATE = "up-to-date"
    UPDATED = "updated"
    DIVERGED = "diverged"
    FAILED = "failed"


class RepoStatus(str, Enum):
    """Overall result of synchronizing one repository."""

    NOT_A_REPO = "not-a-repo"
    DIRTY = "dirty"
    NO_CURRENT_BRANCH = "no-current-branch"
    UPDATED = "updated"
    UP_TO_DATE = "up-to-date"
    DIVERGED = "diverged"
    FAILED = "failed"


# Highest first. A repository reports the worst condition any branch reached.
BRANCH_PRECEDENCE = (
    BranchStatus.FAILED,
    BranchStatus.DIVERGED,
    BranchStatus.UPDATED,
    BranchStatus.UP_TO_DATE,
)

NOTIFY_STATUSES = frozenset(
    {
        RepoStatus.UPDATED,
        RepoStatus.DIVERGED,
        RepoStatus.FAILED,
        RepoStatus.DIRTY,
        RepoStatus.NOT_A_REPO,
    }
)
"""frozenset[RepoStatus]: Repository statuses that raise a desktop notification."""


@dataclass(frozen=True)
class Repository:
    """A repository identified by its absolute path.

    Attributes:
        path (Path): The absolute path to the working directory.
    """

    path: Path

    @classmethod
    def from_config(cls, raw: str | Path) -> "Repository":
        """Builds a repository from a configured path, expanding `~`."""
        return cls(Path(raw).expanduser().resolve())

    @property
    def name(self) -> str:
        """The display name (the directory name)."""
        return self.path.name or str(self.path)


@dataclass(frozen=True)
class Branch:
    """A local branch with its commits resolved for one pass.

    Attributes:
        name (str): The short branch name (e.g. 'main').
        upstream (str | None): The full upstream ref (e.g. 'refs/remotes/origin/main').
            None means the branch is not tracked and is never synchronized.
        local_commit (str): The commit the local branch points to.
        remote_commit (str | None): The commit the upstream points to.
        is_current (bool): Whether the branch is checked out in this working tree.
    """

    name: str
    upstream: str | None
    local_commit: str
    remote_commit: str | None = None
    is_current: bool = False

    @property
    def ref(self) -> str:
        """The fully qualified local ref."""
        return f"refs/heads/{self.name}"


@dataclass(frozen=True)
class BranchOutcome:
    """The result of synchronizing one branch."""

    branch_name: str
    is_current: bool
    status: BranchStatus
    detail: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "branch": self.branch_name,
            "is_current": self.is_current,
            "status": self.status.value,
            "detail": self.detail,
        }


def _now() -> datetime.datetime:
    return datetime.datetime.now().astimezone()


@dataclass(frozen=True)
class RepositoryOutcome:
    """The result of synchronizing one repository.

    Attributes:
        repository_name (str): The display name of the repository.
        repository_path (Path): The absolute path that was synchronized.
        current_branch (str | None): The checked-out branch, if it was detected.
        status (RepoStatus): The aggregated repository status.
        branch_outcomes (tuple[BranchOutcome, ...]): Per-branch results, current
            branch first.
        detail (str): A human-readable explanation.
        notes (tuple[str, ...]): Repository-level remarks that are not tied to a
            branch, such as a fetch that fell back to cached refs.
        timestamp (datetime.datetime): When the outcome was produced.
    """

    repository_name: str
    repository_path: Path
    current_branch: str | None
    status: RepoStatus
    branch_outcomes: tuple[BranchOutcome, ...] = ()
    detail: str = ""
    notes: tuple[str, ...] = ()
    timestamp: datetime.datetime = field(default_factory=_now)

    def summary_line(self) -> str:
        """A one-line rendering used for logs and notifications."""
        branch = self.current_branch or "unknown branch"
        line = f"{self.status.value.upper()} {self.repository_name} ({branch})"
        return f"{line}: {self.detail}" if self.detail else line

    def to_dict(self) -> dict[str, Any]:
        return {
            "repository": self.repository_name,
            "path": str(self.repository_path),
            "current_branch": self.current_branch,
            "status": self.status.value,
            "branches": [b.to_dict() for b in self.branch_outcomes],
            "detail": self.detail,
            "notes": list(self.notes),
            "timestamp": self.timestamp.isoformat(),
        }


def aggregate_status(outcomes: list[BranchOutcome]) -> RepoStatus:
    """Folds branch outcomes into a repository status.

    Precedence is Failed > Diverged > Updated > UpToDate, so a failure is never
    masked by a simultaneously successful branch. No branches means UpToDate.
    """
    present = {o.status for o in outcomes}
    for status in BRANCH_PRECEDENCE:
        if status in present:
            return RepoStatus(status.value)
    return RepoStatus.UP_TO_DATE


@dataclass
class RunSummary:
    """Counts over one pass, as reported by the CLI and the run-level log record."""

    updated: int = 0
    up_to_date: int = 0
    diverged: int = 0
    skipped: int = 0
    failed: int = 0

    @classmethod
    def from_outcomes(cls, outcomes: list[RepositoryOutcome]) -> "RunSummary":
        summary = cls()
        for outcome in outcomes:
            summary.add(outcome.status)
        return summary

    def add(self, status: RepoStatus) -> None:
        if status is RepoStatus.UPDATED:
            self.updated += 1
        elif status is RepoStatus.UP_TO_DATE:
            self.up_to_date += 1
        elif status is RepoStatus.DIVERGED:
            self.diverged += 1
        elif status is RepoStatus.DIRTY:
            self.skipped += 1
        else:
            # FAILED, NOT_A_REPO and NO_CURRENT_BRANCH all need attention.
            self.failed += 1

    @property
    def exit_code(self) -> int:
        """1 if any repository failed, else 0. Divergence alone never fails a run."""
        return 1 if self.failed else 0

    def __str__(self) -> str:
        return (
            f"{self.updated} updated | {self.up_to_date} up-to-date | "
            f"{self.diverged} diverged | {self.skipped} skipped | {self.failed} failed"
        )
