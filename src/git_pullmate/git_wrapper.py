import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME, DEFAULT_GIT_TIMEOUT, GIT_ENV, REFLOG_MESSAGE
from .errors import GitCommandError, GitTimeoutError, RepoAccessError

logger = logging.getLogger(APP_NAME)

# NUL never appears in ref names or paths, so it is a safe field separator.
_BRANCH_FORMAT = "%00".join(
    [
        "%(refname:lstrip=2)",
        "%(upstream)",
        "%(upstream:track)",
        "%(worktreepath)",
    ]
)


@dataclass(frozen=True)
class TrackedBranch:
    """A local branch as listed by `for-each-ref`.

    Attributes:
        name (str): The short branch name.
        upstream (str | None): The full upstream ref, or None if the branch has no
            upstream configured.
        upstream_gone (bool): True if an upstream is configured but its
            remote-tracking ref no longer exists.
        worktree (Path | None): The worktree the branch is checked out in, if any.
    """

    name: str
    upstream: str | None
    upstream_gone: bool = False
    worktree: Path | None = None


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    Each method maps to one plumbing operation of the sync engine. Methods that can
    fail raise `GitCommandError` or `GitTimeoutError`; the synchronizers translate
    those into outcome records. Every invocation carries `timeout`.

    Attributes:
        path (Path): The file system path to the repository root.
        timeout (float): Seconds before a single git invocation is abandoned.
    """

    def __init__(self, path: Path, timeout: float = DEFAULT_GIT_TIMEOUT):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.
            timeout (float, optional): Per-command timeout in seconds.

        Raises:
            RepoAccessError: If the specified path does not contain a .git entry.
        """
        self.path = path
        self.timeout = timeout
        if not self.is_repository(path):
            raise RepoAccessError(f"Not a git repository: {self.path}")

    @staticmethod
    def is_repository(path: Path) -> bool:
        """Checks whether `path` is the root of a git working tree.

        A `.git` file (linked worktree or submodule) counts as well as a directory.
        """
        return path.is_dir() and (path / ".git").exists()

    def _run(self, args: list[str], env: dict | None = None) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            env (Optional[dict], optional): Extra environment variables layered on
                                            top of the non-interactive defaults.

        Returns:
            str: The stripped stdout of the command.

        Raises:
            GitCommandError: If git exits non-zero or cannot be spawned.
            GitTimeoutError: If the command exceeds `self.timeout`.
        """
        full_env = {**os.environ, **GIT_ENV, **(env or {})}
        try:
            res = subprocess.run(
                ["git", *args],
                cwd=self.path,
                capture_output=True,
                text=True,
                check=True,
                env=full_env,
                timeout=self.timeout,
            )
        except subprocess.CalledProcessError as e:
            raise GitCommandError(args, e.returncode, e.stderr or "") from e
        except subprocess.TimeoutExpired as e:
            raise GitTimeoutError(args, self.timeout) from e
        except OSError as e:
            raise GitCommandError(args, None, str(e)) from e
        return res.stdout.strip()

    def status_porcelain(self) -> list[str]:
        """Returns the porcelain (machine-readable) status of the repository.

        Returns:
            list[str]: A list of status lines returned by `git status --porcelain`.
        """
        output = self._run(["status", "--porcelain"])
        return output.splitlines() if output else []

    def is_dirty(self) -> bool:
        """Whether the working tree has staged, unstaged or untracked changes."""
        return bool(self.status_porcelain())

    def current_branch(self) -> str | None:
        """Retrieves the name of the currently checked-out branch.

        Returns:
            str | None: The branch name, or None on a detached HEAD or git error.

        Raises:
            GitTimeoutError: If git does not answer within `self.timeout`.
        """
        try:
            name = self._run(["branch", "--show-current"])
        except GitCommandError as e:
            logger.debug(f"Branch detection failed in {self.path.name}: {e}")
            return None
        return name or None

    def fetch_all(self) -> str:
        """Fetches every remote, including tags, pruning deleted remote branches.

        Returns:
            str: Whatever git reported (often empty).
        """
        return self._run(["fetch", "--all", "--tags", "--prune"])

    def resolve_commit(self, ref: str) -> str:
        """Resolves a revision to a full commit id.

        Args:
            ref (str): The revision to parse (e.g., 'HEAD', 'refs/heads/main').

        Returns:
            str: The full commit id.

        Raises:
            GitCommandError: If the revision does not name a commit.
        """
        return self._run(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"])

    def merge_base(self, a: str, b: str) -> str:
        """Finds the best common ancestor of two commits.

        Raises:
            GitCommandError: If the commits share no history or cannot be read.
        """
        return self._run(["merge-base", a, b])

    def fast_forward_merge(self, target: str) -> str:
        """Fast-forwards the checked-out branch, updating index and working tree.

        Only valid for the current branch. Refuses (non-zero exit) anything that is
        not a pure fast-forward.

        Args:
            target (str): The commit to advance to.
        """
        return self._run(["merge", "--ff-only", "--no-edit", target])

    def update_ref(self, ref: str, new_oid: str, old_oid: str | None = None) -> None:
        """Safely updates a reference to a new object ID.

        Args:
            ref (str): The reference to update (e.g., 'refs/heads/master').
            new_oid (str): The new SHA-1 hash.
            old_oid (Optional[str], optional): The expected old SHA-1 hash. If provided,
                                               the update will fail if the current ref
                                               does not match this value.
        """
        cmd = ["update-ref", "-m", REFLOG_MESSAGE, ref, new_oid]
        if old_oid:
            cmd.append(old_oid)
        self._run(cmd)

    def tracked_branches(self) -> list[TrackedBranch]:
        """Lists local branches together with their upstream configuration.

        Branches without an upstream are included with `upstream=None`.

        Returns:
            list[TrackedBranch]: One entry per local branch, in refname order.
        """
        output = self._run(["for-each-ref", f"--format={_BRANCH_FORMAT}", "refs/heads"])
        branches = []
        for line in output.splitlines():
            parts = line.split("\x00")
            if len(parts) != 4:
                logger.debug(f"Unparseable branch line in {self.path.name}: {line!r}")
                continue
            name, upstream, track, worktree = parts
            branches.append(
                TrackedBranch(
                    name=name,
                    upstream=upstream or None,
                    upstream_gone=track == "[gone]",
                    worktree=Path(worktree) if worktree else None,
                )
            )
        return branches
