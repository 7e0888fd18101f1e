"""Exception taxonomy for Git PullMate.

Adapter failures are raised as `GitError` subclasses. The synchronizers catch them
at branch or repository granularity and fold them into outcome records, wrapping
them in the domain errors below so the detail text names the failing stage.
"""


class PullMateError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(PullMateError):
    """The configuration file could not be created, read or opened."""


# --- Adapter ---


class GitError(PullMateError):
    """A git invocation failed."""


class GitCommandError(GitError):
    """A git command exited non-zero or could not be spawned.

    Attributes:
        args_list (list[str]): The git arguments that were executed.
        returncode (int | None): The exit status, or None if the process never ran.
        stderr (str): Whatever the command wrote to stderr.
    """

    def __init__(
        self, args_list: list[str], returncode: int | None, stderr: str = ""
    ) -> None:
        self.args_list = args_list
        self.returncode = returncode
        self.stderr = stderr.strip()
        cmd = " ".join(["git", *args_list])
        detail = self.stderr or f"exit status {returncode}"
        super().__init__(f"`{cmd}` failed: {detail}")


class GitTimeoutError(GitError):
    """A git command exceeded its timeout."""

    def __init__(self, args_list: list[str], timeout: float) -> None:
        self.args_list = args_list
        self.timeout = timeout
        cmd = " ".join(["git", *args_list])
        super().__init__(f"`{cmd}` timed out after {timeout:g}s")


# --- Synchronization stages ---


class RepoAccessError(PullMateError):
    """The path is missing or is not a git repository."""


class DirtyWorkingTreeError(PullMateError):
    """The working tree has uncommitted changes; no mutation is allowed."""


class BranchDetectionError(PullMateError):
    """The checked-out branch could not be determined (e.g. detached HEAD)."""


class NetworkFetchError(PullMateError):
    """Fetching from the remotes failed. Non-fatal: cached remote refs are used."""


class AncestryLookupError(PullMateError):
    """A commit could not be resolved or the merge-base query failed."""


class UpdateApplicationError(PullMateError):
    """The fast-forward merge or the direct ref move itself failed."""
