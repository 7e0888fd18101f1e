import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_pullmate.constants import REFLOG_MESSAGE
from git_pullmate.errors import GitCommandError, GitTimeoutError, RepoAccessError
from git_pullmate.git_wrapper import GitRepo


@pytest.fixture
def repo(tmp_path: Path) -> GitRepo:
    """A GitRepo over a bare `.git` directory, for tests that mock git itself."""
    (tmp_path / ".git").mkdir()
    return GitRepo(tmp_path, timeout=5)


def test_rejects_path_without_git_dir(tmp_path: Path) -> None:
    """Verifies that constructing a GitRepo on a plain directory raises."""
    with pytest.raises(RepoAccessError, match="Not a git repository"):
        GitRepo(tmp_path)


def test_git_file_counts_as_repository(tmp_path: Path) -> None:
    """Verifies that a `.git` file (linked worktree) is accepted."""
    (tmp_path / ".git").write_text("gitdir: /elsewhere/.git/worktrees/x\n")
    assert GitRepo.is_repository(tmp_path)
    assert not GitRepo.is_repository(tmp_path / "missing")


def test_run_is_non_interactive_and_bounded(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that every command carries the timeout and a no-prompt environment."""
    mock_run = mocker.patch(
        "subprocess.run", return_value=MagicMock(stdout="  abc123\n")
    )

    assert repo.resolve_commit("HEAD") == "abc123"

    args, kwargs = mock_run.call_args
    assert args[0] == ["git", "rev-parse", "--verify", "--quiet", "HEAD^{commit}"]
    assert kwargs["timeout"] == 5
    assert kwargs["cwd"] == repo.path
    assert kwargs["env"]["GIT_TERMINAL_PROMPT"] == "0"
    assert kwargs["env"]["LC_ALL"] == "C"


def test_run_maps_failures_to_git_errors(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that non-zero exits, timeouts and spawn errors raise typed errors."""
    mocker.patch(
        "subprocess.run",
        side_effect=subprocess.CalledProcessError(
            128, ["git"], stderr="fatal: Not possible to fast-forward\n"
        ),
    )
    with pytest.raises(GitCommandError) as exc_info:
        repo.fast_forward_merge("abc")
    assert exc_info.value.returncode == 128
    assert "Not possible to fast-forward" in str(exc_info.value)

    mocker.patch("subprocess.run", side_effect=subprocess.TimeoutExpired(["git"], 5))
    with pytest.raises(GitTimeoutError, match="timed out after 5s"):
        repo.fetch_all()

    mocker.patch("subprocess.run", side_effect=FileNotFoundError("git"))
    with pytest.raises(GitCommandError) as exc_info:
        repo.merge_base("a", "b")
    assert exc_info.value.returncode is None


def test_current_branch_none_when_detached(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that empty output (detached HEAD) or a git error yields None."""
    mock_run = mocker.patch.object(repo, "_run", return_value="")
    assert repo.current_branch() is None

    mock_run.side_effect = GitCommandError(["branch"], 128)
    assert repo.current_branch() is None

    mock_run.side_effect = None
    mock_run.return_value = "main"
    assert repo.current_branch() == "main"



def test_current_branch_timeout_propagates(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that a hung `branch --show-current` is an error, not a detached HEAD."""
    mocker.patch(
        "subprocess.run",
        side_effect=subprocess.TimeoutExpired(["git", "branch", "--show-current"], 5),
    )

    with pytest.raises(GitTimeoutError):
        repo.current_branch()


def test_update_ref_passes_old_value(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that update_ref performs a compare-and-swap when old_oid is given."""
    mock_run = mocker.patch.object(repo, "_run")

    repo.update_ref("refs/heads/dev", "new", old_oid="old")
    mock_run.assert_called_with(
        ["update-ref", "-m", REFLOG_MESSAGE, "refs/heads/dev", "new", "old"]
    )

    repo.update_ref("refs/heads/dev", "new")
    mock_run.assert_called_with(
        ["update-ref", "-m", REFLOG_MESSAGE, "refs/heads/dev", "new"]
    )


def test_tracked_branches_parsing(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that for-each-ref output is split into branch records."""
    mocker.patch.object(
        repo,
        "_run",
        return_value="\n".join(
            [
                "dev\x00refs/remotes/origin/dev\x00[behind 2]\x00",
                "main\x00refs/remotes/origin/main\x00\x00/home/u/project",
                "old\x00refs/remotes/origin/old\x00[gone]\x00",
                "scratch\x00\x00\x00",
                "garbage line",
            ]
        ),
    )

    branches = {b.name: b for b in repo.tracked_branches()}

    args = repo._run.call_args.args[0]
    assert args[0] == "for-each-ref"
    # lstrip keeps a branch named like a tag from coming back as `heads/<name>`.
    assert "%(refname:lstrip=2)" in args[1]

    assert set(branches) == {"dev", "main", "old", "scratch"}
    assert branches["dev"].upstream == "refs/remotes/origin/dev"
    assert not branches["dev"].upstream_gone
    assert branches["main"].worktree == Path("/home/u/project")
    assert branches["old"].upstream_gone
    assert branches["scratch"].upstream is None


def test_is_dirty_counts_untracked_files(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that any porcelain status line, untracked included, is dirty."""
    mock_run = mocker.patch.object(repo, "_run", return_value="?? notes.txt")
    assert repo.is_dirty()

    mock_run.return_value = ""
    assert not repo.is_dirty()
