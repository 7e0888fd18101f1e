"""End-to-end synchronization against real git repositories."""

import shutil
from collections.abc import Callable
from pathlib import Path

import pytest

from git_pullmate.daemon import SyncOrchestrator
from git_pullmate.git_wrapper import GitRepo
from git_pullmate.models import BranchStatus, Repository, RepoStatus
from git_pullmate.sync import RepositorySynchronizer

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")

Git = Callable[..., str]


@pytest.fixture
def remote_pair(tmp_path: Path, git_cmd: Git) -> tuple[Path, Path]:
    """Creates a bare remote with one commit on `main` and two clones of it.

    Returns:
        tuple[Path, Path]: (work, writer). `work` is the clone being synced;
        `writer` pushes new commits to the remote.
    """
    seed = tmp_path / "seed"
    seed.mkdir()
    git_cmd(seed, "init", "-q", "-b", "main")
    (seed / "README.md").write_text("hello\n")
    git_cmd(seed, "add", "README.md")
    git_cmd(seed, "commit", "-q", "-m", "initial")

    remote = tmp_path / "remote.git"
    git_cmd(tmp_path, "clone", "-q", "--bare", str(seed), str(remote))

    work = tmp_path / "work"
    writer = tmp_path / "writer"
    git_cmd(tmp_path, "clone", "-q", str(remote), str(work))
    git_cmd(tmp_path, "clone", "-q", str(remote), str(writer))
    return work, writer


def _push_commit(git_cmd: Git, repo: Path, branch: str, name: str) -> str:
    git_cmd(repo, "checkout", "-q", branch)
    (repo / name).write_text(f"{name}\n")
    git_cmd(repo, "add", name)
    git_cmd(repo, "commit", "-q", "-m", f"add {name}")
    git_cmd(repo, "push", "-q", "origin", f"HEAD:refs/heads/{branch}")
    return git_cmd(repo, "rev-parse", "HEAD")


def test_current_branch_fast_forwarded(
    remote_pair: tuple[Path, Path], git_cmd: Git
) -> None:
    """Verifies that new upstream commits land in the checked-out branch and tree."""
    work, writer = remote_pair
    new_head = _push_commit(git_cmd, writer, "main", "feature.txt")

    outcome = RepositorySynchronizer().sync(Repository.from_config(work))

    assert outcome.status is RepoStatus.UPDATED
    assert git_cmd(work, "rev-parse", "main") == new_head
    assert (work / "feature.txt").exists()
    assert git_cmd(work, "status", "--porcelain") == ""



def test_tag_named_like_branch_does_not_break_sync(
    remote_pair: tuple[Path, Path], git_cmd: Git
) -> None:
    """Verifies that a tag sharing the branch name leaves branch resolution intact."""
    work, writer = remote_pair
    git_cmd(writer, "tag", "main")
    git_cmd(writer, "push", "-q", "origin", "refs/tags/main")
    git_cmd(work, "fetch", "-q", "--tags")
    new_head = _push_commit(git_cmd, writer, "main", "feature.txt")

    outcome = RepositorySynchronizer().sync(Repository.from_config(work))

    assert outcome.status is RepoStatus.UPDATED
    (branch,) = outcome.branch_outcomes
    assert branch.branch_name == "main"
    assert branch.is_current
    assert branch.status is BranchStatus.UPDATED
    assert git_cmd(work, "rev-parse", "refs/heads/main") == new_head


def test_non_current_branch_moved_without_checkout(
    remote_pair: tuple[Path, Path], git_cmd: Git
) -> None:
    """Verifies that a tracked branch that is not checked out moves via its ref."""
    work, writer = remote_pair
    git_cmd(writer, "checkout", "-q", "-b", "dev")
    git_cmd(writer, "push", "-q", "-u", "origin", "dev")
    git_cmd(work, "fetch", "-q")
    git_cmd(work, "branch", "-q", "--track", "dev", "origin/dev")
    new_dev = _push_commit(git_cmd, writer, "dev", "dev.txt")

    outcome = RepositorySynchronizer().sync(Repository.from_config(work))

    assert outcome.status is RepoStatus.UPDATED
    statuses = {b.branch_name: b.status for b in outcome.branch_outcomes}
    assert statuses == {"main": BranchStatus.UP_TO_DATE, "dev": BranchStatus.UPDATED}
    assert git_cmd(work, "rev-parse", "dev") == new_dev
    assert git_cmd(work, "branch", "--show-current") == "main"
    assert not (work / "dev.txt").exists()


def test_diverged_branch_untouched(remote_pair: tuple[Path, Path], git_cmd: Git) -> None:
    """Verifies that local and remote commits on both sides leave the branch alone."""
    work, writer = remote_pair
    _push_commit(git_cmd, writer, "main", "theirs.txt")
    (work / "mine.txt").write_text("mine\n")
    git_cmd(work, "add", "mine.txt")
    git_cmd(work, "commit", "-q", "-m", "local work")
    local_head = git_cmd(work, "rev-parse", "HEAD")

    outcome = RepositorySynchronizer().sync(Repository.from_config(work))

    assert outcome.status is RepoStatus.DIVERGED
    assert git_cmd(work, "rev-parse", "HEAD") == local_head


def test_dirty_tree_skipped(remote_pair: tuple[Path, Path], git_cmd: Git) -> None:
    """Verifies that an untracked file blocks every write."""
    work, writer = remote_pair
    before = git_cmd(work, "rev-parse", "HEAD")
    _push_commit(git_cmd, writer, "main", "feature.txt")
    (work / "scratch.txt").write_text("wip\n")

    outcome = RepositorySynchronizer().sync(Repository.from_config(work))

    assert outcome.status is RepoStatus.DIRTY
    assert outcome.branch_outcomes == ()
    assert git_cmd(work, "rev-parse", "HEAD") == before


def test_orchestrated_pass_over_mixed_repositories(
    remote_pair: tuple[Path, Path], git_cmd: Git, tmp_path: Path
) -> None:
    """Verifies a full pass: updated, missing and repeated repositories in order."""
    work, writer = remote_pair
    _push_commit(git_cmd, writer, "main", "feature.txt")
    missing = tmp_path / "missing"

    orchestrator = SyncOrchestrator(RepositorySynchronizer(), notify=False, workers=2)
    outcomes = orchestrator.run_pass([work, missing, work])

    assert [o.status for o in outcomes] == [
        RepoStatus.UPDATED,
        RepoStatus.NOT_A_REPO,
        RepoStatus.UP_TO_DATE,
    ] or [o.status for o in outcomes] == [
        RepoStatus.UP_TO_DATE,
        RepoStatus.NOT_A_REPO,
        RepoStatus.UPDATED,
    ]
    assert GitRepo(work).current_branch() == "main"
