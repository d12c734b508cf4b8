"""Boundary to the repository inspection service.

The core only talks to repositories through this protocol. Every method is a
suspension point and may fail independently of the others.
"""

from __future__ import annotations

from typing import Mapping, Optional, Protocol, Sequence, runtime_checkable

from .relation import Relation


class ServiceError(Exception):
    """Transport or backend failure in the inspection service."""


class UnknownProjectError(ServiceError):
    """The service does not know the requested project id."""

    def __init__(self, project_id: str):
        super().__init__(f"Unknown project: {project_id}")
        self.project_id = project_id


class NoWorkingTreeError(ServiceError):
    """The project has no local working tree, so it has no change count."""

    def __init__(self, project_id: str):
        super().__init__(f"No working tree: {project_id}")
        self.project_id = project_id


@runtime_checkable
class RepositoryInspectionService(Protocol):
    async def resync_project_set(self) -> None:
        """Rescan the backing project set."""
        ...

    async def list_project_ids(self) -> Sequence[str]:
        ...

    async def remote_name(self, project_id: str) -> Optional[str]:
        ...

    async def local_name(self, project_id: str) -> Optional[str]:
        ...

    async def branch_commit_map(self, project_id: str) -> Mapping[str, str]:
        ...

    async def classify_relation(self, project_id: str, branch: str, commit: str) -> Relation:
        """Relation of ``commit`` on ``branch`` to the branch's reference commit."""
        ...

    async def change_count(self, project_id: str) -> int:
        """Changed files in the working tree.

        Raises:
            NoWorkingTreeError: If the project has no local working tree
        """
        ...
