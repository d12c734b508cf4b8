"""Display helpers for project names and relations."""

from __future__ import annotations

import re
from typing import List, Optional

from .registry import Identity, ProjectSnapshot, RelationSummary
from .relation import Relation

UNKNOWN_PROJECT = "Unknown"

RELATION_MARKERS = {
    Relation.AHEAD: "↑",
    Relation.BEHIND: "↓",
    Relation.SAME: "=",
    Relation.NULL: "?",
}


def name_format(name: str) -> str:
    """Capitalize the first character and turn separators into spaces.

    >>> name_format("my-cool_project")
    'My cool project'
    """
    if not name:
        return ""
    return name[0].upper() + re.sub(r"[-_]", " ", name)[1:]


def _formatted(name: Optional[str]) -> Optional[str]:
    return name_format(name) if name else None


def display_names(identity: Identity) -> List[str]:
    """Names to show for a project, remote first.

    The local name is only shown when it differs from the remote one.
    """
    if identity.is_unknown:
        return [UNKNOWN_PROJECT]
    remote = _formatted(identity.remote_name)
    local = _formatted(identity.local_name)
    names = []
    if remote:
        names.append(remote)
    if local and local != remote:
        names.append(local)
    return names


def format_summary(summary: RelationSummary) -> str:
    parts = [
        f"{summary.ahead} ahead",
        f"{summary.behind} behind",
        f"{summary.same} same",
    ]
    if summary.null:
        parts.append(f"{summary.null} unknown")
    return ", ".join(parts)


def format_snapshot(snapshot: ProjectSnapshot) -> str:
    """Multi-line text block for one project."""
    title = " | ".join(display_names(snapshot.identity))
    lines = [f"{title}  [{snapshot.change_status.value}]"]
    if not snapshot.branch_commits:
        lines.append("  (no branches)")
    for branch, commit in sorted(snapshot.branch_commits.items()):
        relation = snapshot.branch_relations.get(branch, Relation.NULL)
        lines.append(f"  {RELATION_MARKERS[relation]} {branch}: {commit[:10]}")
    return "\n".join(lines)
