"""Git PullMate: Automated fast-forward synchronization for git repositories.

This package provides the command-line interface, the scheduled daemon pass, and
the synchronization engine that keeps local branches of many working trees
fast-forwarded to their upstreams without ever rewriting local history.
"""

from . import (
    ancestry,
    cli,
    config,
    constants,
    daemon,
    errors,
    git_wrapper,
    models,
    service,
    sync,
    system,
)

__all__ = [
    "ancestry",
    "cli",
    "config",
    "constants",
    "daemon",
    "errors",
    "git_wrapper",
    "models",
    "service",
    "sync",
    "system",
]
