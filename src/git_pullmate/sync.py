"""Per-repository and per-branch synchronization.

`RepositorySynchronizer` walks one repository through validity, dirty and branch
checks, fetches, then hands every tracked branch to `BranchSynchronizer`, which
classifies ancestry and applies the only mutation this package ever performs: a
fast-forward. Adapter failures are caught here and returned as outcome data.
"""

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from .ancestry import AncestryRelation, classify
from .constants import APP_NAME, DEFAULT_GIT_TIMEOUT
from .errors import (
    AncestryLookupError,
    BranchDetectionError,
    DirtyWorkingTreeError,
    GitError,
    GitTimeoutError,
    NetworkFetchError,
    RepoAccessError,
    UpdateApplicationError,
)
from .git_wrapper import GitRepo, TrackedBranch
from .models import (
    Branch,
    BranchOutcome,
    BranchStatus,
    Repository,
    RepositoryOutcome,
    RepoStatus,
    aggregate_status,
)

logger = logging.getLogger(APP_NAME)


def _short(ref: str) -> str:
    for prefix in ("refs/remotes/", "refs/heads/"):
        if ref.startswith(prefix):
            return ref[len(prefix) :]
    return ref


def _abbrev(commit: str | None) -> str:
    return (commit or "?")[:8]


class BranchSynchronizer:
    """Decides and applies the safe update for single branches of one repository.

    The checked-out branch is advanced with `merge --ff-only` so the index and
    working tree follow; every other branch is moved with a compare-and-swap
    `update-ref`. Results are classified by comparing commit ids before and after
    the update, never by reading git's prose.

    Attributes:
        repo (GitRepo): The repository adapter. Callers hold its path lock.
    """

    def __init__(self, repo: GitRepo, log: logging.Logger = logger):
        self.repo = repo
        self.log = log

    def resolve(self, tracked: TrackedBranch, is_current: bool) -> Branch:
        """Resolves the local and upstream commits of a listed branch.

        Raises:
            AncestryLookupError: If either side cannot be resolved.
        """
        try:
            local = self.repo.resolve_commit(f"refs/heads/{tracked.name}")
            remote = (
                self.repo.resolve_commit(tracked.upstream) if tracked.upstream else None
            )
        except GitError as e:
            raise AncestryLookupError(f"cannot resolve {tracked.name}: {e}") from e
        return Branch(
            name=tracked.name,
            upstream=tracked.upstream,
            local_commit=local,
            remote_commit=remote,
            is_current=is_current,
        )

    def sync(self, branch: Branch) -> BranchOutcome | None:
        """Synchronizes one branch with its upstream.

        Args:
            branch (Branch): The branch with commits resolved for this pass.

        Returns:
            BranchOutcome | None: The result, or None for an untracked branch.
        """
        if branch.upstream is None or branch.remote_commit is None:
            return None

        upstream_ref, target = branch.upstream, branch.remote_commit
        ancestry = classify(branch.local_commit, target, self.repo.merge_base)
        if ancestry.fast_forward_safe:
            if branch.is_current:
                return self._fast_forward_current(branch, upstream_ref, target)
            return self._move_ref(branch, upstream_ref, target)

        upstream = _short(upstream_ref)
        relation = ancestry.relation

        if relation is AncestryRelation.EQUAL:
            return self._outcome(branch, BranchStatus.UP_TO_DATE, "already up to date")
        if relation is AncestryRelation.REMOTE_IS_ANCESTOR:
            return self._outcome(
                branch, BranchStatus.UP_TO_DATE, f"local ahead of {upstream}"
            )
        if relation is AncestryRelation.DIVERGED:
            return self._outcome(
                branch,
                BranchStatus.DIVERGED,
                f"diverged from {upstream} at {_abbrev(ancestry.merge_base)}",
            )
        err = AncestryLookupError(f"merge-base lookup failed: {ancestry.error}")
        return self._outcome(branch, BranchStatus.FAILED, str(err))

    def _fast_forward_current(
        self, branch: Branch, upstream_ref: str, target: str
    ) -> BranchOutcome:
        before = branch.local_commit
        try:
            self.repo.fast_forward_merge(target)
        except GitError as e:
            return self._after_failed_update(branch, upstream_ref, e)

        try:
            after = self.repo.resolve_commit(branch.ref)
        except GitError as e:
            err = AncestryLookupError(f"merge ran but {branch.name} is unreadable: {e}")
            return self._outcome(branch, BranchStatus.FAILED, str(err))

        if after == before:
            return self._outcome(branch, BranchStatus.UP_TO_DATE, "already up to date")
        self.log.debug(f"{self.repo.path.name}: merged {branch.name} to {after}")
        return self._outcome(
            branch,
            BranchStatus.UPDATED,
            f"fast-forwarded {_abbrev(before)}..{_abbrev(after)}",
        )

    def _move_ref(
        self, branch: Branch, upstream_ref: str, target: str
    ) -> BranchOutcome:
        try:
            self.repo.update_ref(branch.ref, target, old_oid=branch.local_commit)
        except GitError as e:
            return self._after_failed_update(branch, upstream_ref, e)
        self.log.debug(f"{self.repo.path.name}: moved {branch.ref} to {target}")
        return self._outcome(
            branch,
            BranchStatus.UPDATED,
            f"fast-forwarded {_abbrev(branch.local_commit)}..{_abbrev(target)}",
        )

    def _after_failed_update(
        self, branch: Branch, upstream_ref: str, cause: GitError
    ) -> BranchOutcome:
        """Re-derives ancestry after a refused update.

        The branch or its upstream may have moved since classification. If the pair
        has diverged in the meantime the result is Diverged, otherwise Failed.
        """
        err = UpdateApplicationError(f"update of {branch.name} failed: {cause}")
        try:
            local = self.repo.resolve_commit(branch.ref)
            remote = self.repo.resolve_commit(upstream_ref)
        except GitError:
            return self._outcome(branch, BranchStatus.FAILED, str(err))

        again = classify(local, remote, self.repo.merge_base)
        if again.relation is AncestryRelation.DIVERGED:
            return self._outcome(
                branch,
                BranchStatus.DIVERGED,
                f"diverged from {_short(upstream_ref)} at "
                f"{_abbrev(again.merge_base)} during update",
            )
        return self._outcome(branch, BranchStatus.FAILED, str(err))

    @staticmethod
    def _outcome(branch: Branch, status: BranchStatus, detail: str) -> BranchOutcome:
        return BranchOutcome(
            branch_name=branch.name,
            is_current=branch.is_current,
            status=status,
            detail=detail,
        )


class PathLocks:
    """Hands out one lock per absolute repository path.

    Adapter calls against one working directory must never overlap, including when
    the same repository is configured twice.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Path, threading.Lock] = {}

    @contextmanager
    def hold(self, path: Path) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(path, threading.Lock())
        with lock:
            yield


class RepositorySynchronizer:
    """Runs one repository through a full synchronization pass.

    Args:
        repo_factory (Callable[..., GitRepo]): Builds the adapter for a path. Must
            raise `RepoAccessError` for anything that is not a repository.
        auto_fetch (bool): Whether to fetch all remotes before syncing branches.
        timeout (float): Per-command git timeout handed to the adapter.
        locks (PathLocks | None): Shared per-path locks. A private set is used
            when omitted.
        log (logging.Logger): Where progress and warnings go.
    """

    def __init__(
        self,
        repo_factory: Callable[..., GitRepo] = GitRepo,
        auto_fetch: bool = True,
        timeout: float = DEFAULT_GIT_TIMEOUT,
        locks: PathLocks | None = None,
        log: logging.Logger = logger,
    ):
        self.repo_factory = repo_factory
        self.auto_fetch = auto_fetch
        self.timeout = timeout
        self.locks = locks or PathLocks()
        self.log = log

    def sync(
        self, repository: Repository, cancel: threading.Event | None = None
    ) -> RepositoryOutcome:
        """Synchronizes every tracked branch of `repository`.

        Args:
            repository (Repository): The repository to synchronize.
            cancel (threading.Event | None): When set, no further branch is started;
                the branch update in flight always completes.

        Returns:
            RepositoryOutcome: The aggregated result. Never raises for git failures.
        """
        with self.locks.hold(repository.path):
            return self._sync_locked(repository, cancel)

    def _sync_locked(
        self, repository: Repository, cancel: threading.Event | None
    ) -> RepositoryOutcome:
        try:
            repo = self.repo_factory(repository.path, timeout=self.timeout)
        except RepoAccessError as e:
            return self._outcome(repository, None, RepoStatus.NOT_A_REPO, str(e))

        try:
            dirty = repo.is_dirty()
        except GitError as e:
            return self._outcome(
                repository, None, RepoStatus.FAILED, f"status check failed: {e}"
            )

        try:
            current = repo.current_branch()
        except GitTimeoutError as e:
            return self._outcome(
                repository, None, RepoStatus.FAILED, f"branch detection failed: {e}"
            )

        if dirty:
            err = DirtyWorkingTreeError("working tree has uncommitted changes")
            return self._outcome(repository, current, RepoStatus.DIRTY, str(err))

        if current is None:
            err = BranchDetectionError("cannot detect current branch (detached HEAD?)")
            return self._outcome(
                repository, None, RepoStatus.NO_CURRENT_BRANCH, str(err)
            )

        notes: list[str] = []
        if self.auto_fetch:
            try:
                repo.fetch_all()
            except GitError as e:
                fetch_err = NetworkFetchError(f"fetch failed, using cached refs: {e}")
                self.log.warning(f"FETCH {repository.name}: {fetch_err}")
                notes.append(str(fetch_err))

        try:
            listed = repo.tracked_branches()
        except GitError as e:
            return self._outcome(
                repository,
                current,
                RepoStatus.FAILED,
                "; ".join([*notes, f"cannot list branches: {e}"]),
                notes=tuple(notes),
            )

        outcomes = self._sync_branches(
            repo, repository, current, listed, notes, cancel
        )

        details = [*notes, *(f"{o.branch_name}: {o.detail}" for o in outcomes)]
        return self._outcome(
            repository,
            current,
            aggregate_status(outcomes),
            "; ".join(details) or "no tracked branches",
            tuple(outcomes),
            tuple(notes),
        )

    def _sync_branches(
        self,
        repo: GitRepo,
        repository: Repository,
        current: str,
        listed: list[TrackedBranch],
        notes: list[str],
        cancel: threading.Event | None,
    ) -> list[BranchOutcome]:
        # Current branch first, the rest in refname order.
        ordered = sorted(listed, key=lambda b: b.name != current)
        syncer = BranchSynchronizer(repo, self.log)
        outcomes: list[BranchOutcome] = []

        for tracked in ordered:
            if cancel is not None and cancel.is_set():
                notes.append("cancelled before all branches were synced")
                break
            if tracked.upstream is None:
                continue
            if tracked.upstream_gone:
                self.log.debug(
                    f"{repository.name}: {tracked.name} upstream is gone, skipping."
                )
                continue

            is_current = tracked.name == current
            if (
                not is_current
                and tracked.worktree is not None
                and tracked.worktree.resolve() != repository.path
            ):
                self.log.info(
                    f"{repository.name}: {tracked.name} is checked out in "
                    f"{tracked.worktree}, skipping."
                )
                continue

            try:
                branch = syncer.resolve(tracked, is_current)
            except AncestryLookupError as e:
                outcomes.append(
                    BranchOutcome(tracked.name, is_current, BranchStatus.FAILED, str(e))
                )
                continue

            if (outcome := syncer.sync(branch)) is not None:
                outcomes.append(outcome)

        return outcomes

    @staticmethod
    def _outcome(
        repository: Repository,
        current: str | None,
        status: RepoStatus,
        detail: str,
        branch_outcomes: tuple[BranchOutcome, ...] = (),
        notes: tuple[str, ...] = (),
    ) -> RepositoryOutcome:
        return RepositoryOutcome(
            repository_name=repository.name,
            repository_path=repository.path,
            current_branch=current,
            status=status,
            branch_outcomes=branch_outcomes,
            detail=detail,
            notes=notes,
        )
