"""Branch relation classification.

A branch's current commit is compared against a reference commit (usually its
tracked upstream) and the result is folded into one of four values. Unknown
commits, diverged histories and unreachable services all collapse into
``Relation.NULL``: classification never raises.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Optional, Protocol, Sequence

from .observability import log_debug

if TYPE_CHECKING:
    from .service import RepositoryInspectionService


class Relation(str, Enum):
    """Relationship of a branch's current commit to its reference commit."""

    AHEAD = "ahead"  # reference is a strict ancestor of current
    BEHIND = "behind"  # current is a strict ancestor of reference
    SAME = "same"  # identical commit ids
    NULL = "null"  # unrelated, unknown, or undeterminable


class UnknownCommitError(LookupError):
    """Raised by a commit graph asked about an id it does not know."""

    def __init__(self, commit: str):
        super().__init__(f"Unknown commit: {commit}")
        self.commit = commit


class CommitGraph(Protocol):
    """Ancestry oracle over opaque commit ids."""

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Return True if ``ancestor`` is reachable from ``descendant``.

        Raises UnknownCommitError if either id is not known.
        """
        ...


class LayeredCommitGraph:
    """Ask several graphs in turn; the first one that knows both ids answers."""

    def __init__(self, layers: Sequence[CommitGraph]):
        self.layers = list(layers)

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        for layer in self.layers:
            try:
                return layer.is_ancestor(ancestor, descendant)
            except UnknownCommitError:
                continue
        raise UnknownCommitError(descendant)


def _lookup(graph: CommitGraph, ancestor: str, descendant: str) -> Optional[bool]:
    try:
        return graph.is_ancestor(ancestor, descendant)
    except Exception as e:
        log_debug(
            "[RELATION] Ancestry lookup failed",
            ancestor=ancestor,
            descendant=descendant,
            error=f"{type(e).__name__}: {e}",
        )
        return None


def classify(current: str, reference: Optional[str], graph: CommitGraph) -> Relation:
    """Classify ``current`` against ``reference`` using ``graph`` for ancestry.

    Each direction is asked separately so a graph that can only answer one of
    them still yields a result. Total: graph failures yield ``Relation.NULL``.
    """
    if not reference or not current:
        return Relation.NULL
    if current == reference:
        return Relation.SAME
    if _lookup(graph, reference, current):
        return Relation.AHEAD
    if _lookup(graph, current, reference):
        return Relation.BEHIND
    return Relation.NULL


async def classify_branch(
    service: "RepositoryInspectionService",
    project_id: str,
    branch: str,
    commit: str,
) -> Relation:
    """Ask the service for a branch relation, folding every failure into NULL."""
    try:
        value = await service.classify_relation(project_id, branch, commit)
    except Exception as e:
        log_debug(
            "[RELATION] classify_relation failed",
            project=project_id,
            branch=branch,
            error=f"{type(e).__name__}: {e}",
        )
        return Relation.NULL
    try:
        return Relation(value)
    except ValueError:
        log_debug(
            "[RELATION] Service returned an unknown relation",
            project=project_id,
            branch=branch,
            value=repr(value),
        )
        return Relation.NULL
