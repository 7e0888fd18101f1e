"""Shared fixtures: an in-memory stand-in for `GitRepo`."""

import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from git_pullmate.config import Config
from git_pullmate.errors import GitCommandError, RepoAccessError
from git_pullmate.git_wrapper import TrackedBranch


class FakeGit:
    """An in-memory repository with a commit DAG and the `GitRepo` surface.

    Attributes:
        parents (dict[str, list[str]]): Commit graph, child to parents.
        heads (dict[str, str]): Local branch name to commit.
        remotes (dict[str, str]): Full remote-tracking ref to commit.
        upstreams (dict[str, str]): Local branch name to full upstream ref.
        failures (dict[str, Exception]): Method name to the error it raises.
        before_update (Callable | None): Runs just before a fast-forward is applied,
            so tests can move refs underneath the synchronizer.
        calls (list[tuple]): Every adapter call, in order.
    """

    def __init__(self, path: Path, timeout: float = 60):
        self.path = path
        self.timeout = timeout
        self.parents: dict[str, list[str]] = {}
        self.heads: dict[str, str] = {}
        self.remotes: dict[str, str] = {}
        self.upstreams: dict[str, str] = {}
        self.gone: set[str] = set()
        self.worktrees: dict[str, Path] = {}
        self.current: str | None = None
        self.dirty = False
        self.failures: dict[str, Exception] = {}
        self.before_update: Callable[["FakeGit"], None] | None = None
        self.on_fetch: Callable[["FakeGit"], None] | None = None
        self.calls: list[tuple] = []

    # --- Graph building ---

    def commit(self, sha: str, *parents: str) -> str:
        self.parents[sha] = list(parents)
        return sha

    def chain(self, *shas: str) -> str:
        """Adds a linear history and returns its tip."""
        prev: str | None = None
        for sha in shas:
            self.commit(sha, *([prev] if prev else []))
            prev = sha
        assert prev is not None
        return prev

    def branch(
        self, name: str, local: str, remote: str | None = None, current: bool = False
    ) -> None:
        self.heads[name] = local
        if remote is not None:
            upstream = f"refs/remotes/origin/{name}"
            self.upstreams[name] = upstream
            self.remotes[upstream] = remote
        if current:
            self.current = name

    def ancestors(self, sha: str) -> set[str]:
        seen: set[str] = set()
        stack = [sha]
        while stack:
            c = stack.pop()
            if c in seen:
                continue
            seen.add(c)
            stack.extend(self.parents.get(c, []))
        return seen

    # --- GitRepo surface ---

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        if name in self.failures:
            raise self.failures[name]

    def is_dirty(self) -> bool:
        self._record("is_dirty")
        return self.dirty

    def current_branch(self) -> str | None:
        self._record("current_branch")
        return self.current

    def fetch_all(self) -> str:
        self._record("fetch_all")
        if self.on_fetch:
            self.on_fetch(self)
        return ""

    def resolve_commit(self, ref: str) -> str:
        self._record("resolve_commit", ref)
        if ref.startswith("refs/heads/") and ref[len("refs/heads/") :] in self.heads:
            return self.heads[ref[len("refs/heads/") :]]
        if ref in self.remotes:
            return self.remotes[ref]
        raise GitCommandError(["rev-parse", "--verify", "--quiet", ref], 1)

    def merge_base(self, a: str, b: str) -> str:
        self._record("merge_base", a, b)
        common = self.ancestors(a) & self.ancestors(b)
        if not common:
            raise GitCommandError(["merge-base", a, b], 1)
        # Best common ancestor: not a proper ancestor of another common one.
        best = [
            c for c in common if not any(c in self.ancestors(o) - {o} for o in common)
        ]
        return sorted(best)[0]

    def fast_forward_merge(self, target: str) -> str:
        self._record("fast_forward_merge", target)
        if self.before_update:
            self.before_update(self)
        assert self.current is not None
        head = self.heads[self.current]
        if head not in self.ancestors(target):
            raise GitCommandError(["merge", "--ff-only", target], 128, "Not possible")
        self.heads[self.current] = target
        return ""

    def update_ref(self, ref: str, new_oid: str, old_oid: str | None = None) -> None:
        self._record("update_ref", ref, new_oid, old_oid)
        if self.before_update:
            self.before_update(self)
        name = ref[len("refs/heads/") :]
        if old_oid is not None and self.heads.get(name) != old_oid:
            raise GitCommandError(["update-ref", ref, new_oid, old_oid], 128)
        self.heads[name] = new_oid

    def tracked_branches(self) -> list[TrackedBranch]:
        self._record("tracked_branches")
        return [
            TrackedBranch(
                name=name,
                upstream=self.upstreams.get(name),
                upstream_gone=name in self.gone,
                worktree=self.worktrees.get(name),
            )
            for name in sorted(self.heads)
        ]

    @property
    def mutations(self) -> list[tuple]:
        return [c for c in self.calls if c[0] in ("fast_forward_merge", "update_ref")]


class FakeGitFactory:
    """Builds `FakeGit` instances keyed by resolved path, like `GitRepo(path)`."""

    def __init__(self) -> None:
        self.repos: dict[Path, FakeGit] = {}

    def add(self, path: Path) -> FakeGit:
        path = path.resolve()
        fake = FakeGit(path)
        self.repos[path] = fake
        return fake

    def __call__(self, path: Path, timeout: float = 60) -> FakeGit:
        try:
            return self.repos[path]
        except KeyError:
            raise RepoAccessError(f"Not a git repository: {path}") from None


@pytest.fixture
def fake_git() -> FakeGitFactory:
    """A factory standing in for `GitRepo` in synchronizer tests."""
    return FakeGitFactory()


@pytest.fixture(autouse=True)
def clear_config_cache() -> Any:
    """Ensures every test starts with a clean config cache."""
    Config._global_cache = None
    yield
    Config._global_cache = None


@pytest.fixture
def git_cmd() -> Callable[..., str]:
    """Runs a real git command with a fixed identity (for end-to-end tests)."""

    def run(cwd: Path, *args: str) -> str:
        res = subprocess.run(
            [
                "git",
                "-c",
                "user.name=PullMate Test",
                "-c",
                "user.email=test@example.com",
                "-c",
                "commit.gpgsign=false",
                *args,
            ],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
        return res.stdout.strip()

    return run
