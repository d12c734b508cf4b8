"""In-memory test doubles for the inspection service boundary.

Usage:
    from projectdeck.testing import FakeInspectionService, FakeProject, InMemoryCommitGraph

    graph = InMemoryCommitGraph({"c1": ["c0"], "c0": []})
    service = FakeInspectionService(
        {"p1": FakeProject(local_name="p1", branches={"main": "c1"}, references={"main": "c0"})},
        graph=graph,
    )

Calls are recorded in ``service.calls``. ``service.fail(method, error)`` makes
a method raise; ``service.hold(method, key)`` returns an ``asyncio.Event`` the
method waits on before answering, which lets tests control completion order.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .relation import Relation, UnknownCommitError, classify
from .service import ServiceError, UnknownProjectError


class InMemoryCommitGraph:
    """Commit graph built from a child -> parents mapping."""

    def __init__(self, parents: Optional[Mapping[str, Iterable[str]]] = None):
        self._parents: Dict[str, List[str]] = {}
        for commit, commit_parents in (parents or {}).items():
            self.add(commit, *commit_parents)

    def add(self, commit: str, *parents: str) -> None:
        self._parents[commit] = list(parents)
        for parent in parents:
            self._parents.setdefault(parent, [])

    def __contains__(self, commit: object) -> bool:
        return commit in self._parents

    def ancestors(self, commit: str) -> Set[str]:
        """All commits reachable from ``commit``, itself included."""
        if commit not in self._parents:
            raise UnknownCommitError(commit)
        seen: Set[str] = set()
        stack = [commit]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._parents.get(current, []))
        return seen

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        if ancestor not in self._parents:
            raise UnknownCommitError(ancestor)
        return ancestor in self.ancestors(descendant)


@dataclass
class FakeProject:
    remote_name: Optional[str] = None
    local_name: Optional[str] = None
    branches: Dict[str, str] = field(default_factory=dict)
    # branch -> reference commit
    references: Dict[str, str] = field(default_factory=dict)
    change_count: int = 0


class FakeInspectionService:
    """Scriptable RepositoryInspectionService."""

    def __init__(
        self,
        projects: Optional[Mapping[str, FakeProject]] = None,
        graph: Optional[InMemoryCommitGraph] = None,
    ):
        self.projects: Dict[str, FakeProject] = dict(projects or {})
        self.graph = graph or InMemoryCommitGraph()
        # Project set that the next resync switches to
        self.next_projects: Optional[Dict[str, FakeProject]] = None
        self.calls: List[Tuple[str, ...]] = []
        self._failures: Dict[Tuple[str, Optional[str]], Exception] = {}
        self._gates: Dict[Tuple[str, Optional[str]], asyncio.Event] = {}

    def fail(self, method: str, error: Optional[Exception] = None, key: Optional[str] = None) -> None:
        """Make ``method`` raise ``error`` (for ``key`` only, if given)."""
        self._failures[(method, key)] = error or ServiceError(f"{method} unavailable")

    def recover(self, method: str, key: Optional[str] = None) -> None:
        self._failures.pop((method, key), None)

    def hold(self, method: str, key: Optional[str] = None) -> asyncio.Event:
        """Block ``method`` (for ``key`` only, if given) until the event is set."""
        event = asyncio.Event()
        self._gates[(method, key)] = event
        return event

    def release(self, method: str, key: Optional[str] = None) -> None:
        event = self._gates.pop((method, key), None)
        if event is not None:
            event.set()

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    async def _enter(self, method: str, *args: str) -> None:
        self.calls.append((method, *args))
        key = args[-1] if args else None
        for gate_key in ((method, key), (method, None)):
            event = self._gates.get(gate_key)
            if event is not None:
                await event.wait()
                break
        for fail_key in ((method, key), (method, None)):
            error = self._failures.get(fail_key)
            if error is not None:
                raise error

    def _project(self, project_id: str) -> FakeProject:
        try:
            return self.projects[project_id]
        except KeyError:
            raise UnknownProjectError(project_id) from None

    async def resync_project_set(self) -> None:
        await self._enter("resync_project_set")
        if self.next_projects is not None:
            self.projects = self.next_projects
            self.next_projects = None

    async def list_project_ids(self) -> Sequence[str]:
        await self._enter("list_project_ids")
        return list(self.projects)

    async def remote_name(self, project_id: str) -> Optional[str]:
        await self._enter("remote_name", project_id)
        return self._project(project_id).remote_name

    async def local_name(self, project_id: str) -> Optional[str]:
        await self._enter("local_name", project_id)
        return self._project(project_id).local_name

    async def branch_commit_map(self, project_id: str) -> Mapping[str, str]:
        await self._enter("branch_commit_map", project_id)
        return dict(self._project(project_id).branches)

    async def classify_relation(self, project_id: str, branch: str, commit: str) -> Relation:
        await self._enter("classify_relation", project_id, branch)
        reference = self._project(project_id).references.get(branch)
        return classify(commit, reference, self.graph)

    async def change_count(self, project_id: str) -> int:
        await self._enter("change_count", project_id)
        return self._project(project_id).change_count
