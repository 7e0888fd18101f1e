"""Ancestry classification between a local branch tip and its upstream.

This is the only decision that authorizes a mutation: a branch is moved only when
its local commit is proven to be an ancestor of the remote commit. A divergent
pair must never come out as fast-forward safe.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .errors import GitError


class AncestryRelation(str, Enum):
    EQUAL = "equal"
    LOCAL_IS_ANCESTOR = "local-is-ancestor"
    REMOTE_IS_ANCESTOR = "remote-is-ancestor"
    DIVERGED = "diverged"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Ancestry:
    """A classified commit pair.

    Attributes:
        relation (AncestryRelation): How the two commits relate.
        merge_base (str | None): The common ancestor, when one was looked up.
        error (str | None): The lookup failure, set only for UNKNOWN.
    """

    relation: AncestryRelation
    merge_base: str | None = None
    error: str | None = None

    @property
    def fast_forward_safe(self) -> bool:
        return self.relation is AncestryRelation.LOCAL_IS_ANCESTOR


def classify(
    local: str, remote: str, merge_base_lookup: Callable[[str, str], str]
) -> Ancestry:
    """Classifies the relationship between `local` and `remote`.

    Args:
        local (str): The local branch commit.
        remote (str): The upstream commit.
        merge_base_lookup (Callable[[str, str], str]): Returns the merge-base of two
            commits, raising `GitError` if it cannot be determined.

    Returns:
        Ancestry: EQUAL, LOCAL_IS_ANCESTOR (fast-forward safe), REMOTE_IS_ANCESTOR
        (local ahead), DIVERGED, or UNKNOWN with the lookup error.
    """
    if local == remote:
        return Ancestry(AncestryRelation.EQUAL, merge_base=local)

    try:
        base = merge_base_lookup(local, remote)
    except GitError as e:
        return Ancestry(AncestryRelation.UNKNOWN, error=str(e))

    if base == local:
        return Ancestry(AncestryRelation.LOCAL_IS_ANCESTOR, merge_base=base)
    if base == remote:
        return Ancestry(AncestryRelation.REMOTE_IS_ANCESTOR, merge_base=base)
    return Ancestry(AncestryRelation.DIVERGED, merge_base=base)
