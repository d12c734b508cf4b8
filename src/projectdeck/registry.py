"""Per-project view-models and the keyed registry that owns them."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from .observability import log_debug, log_warning, timeit
from .reconciler import BranchReconciler, ReconcilerState
from .relation import Relation
from .service import NoWorkingTreeError, RepositoryInspectionService

# Most recent diagnostics kept per project
MAX_DIAGNOSTICS = 20


class ChangeStatus(str, Enum):
    """Working-tree state derived from a change count."""

    UNKNOWN = "unknown"  # count not fetched (yet)
    CLEAN = "clean"
    DIRTY = "dirty"

    @classmethod
    def from_count(cls, count: Optional[int]) -> "ChangeStatus":
        if count is None:
            return cls.UNKNOWN
        if count < 0:
            raise ValueError(f"Change count must be non-negative, got {count}")
        return cls.CLEAN if count == 0 else cls.DIRTY


@dataclass(frozen=True)
class Identity:
    remote_name: Optional[str] = None
    local_name: Optional[str] = None

    @property
    def is_unknown(self) -> bool:
        """True when neither name is known; displayed as an unknown project."""
        return not self.remote_name and not self.local_name


@dataclass(frozen=True)
class RelationSummary:
    ahead: int = 0
    behind: int = 0
    same: int = 0
    null: int = 0

    @property
    def total(self) -> int:
        return self.ahead + self.behind + self.same + self.null

    @classmethod
    def from_relations(cls, relations: Mapping[str, Relation]) -> "RelationSummary":
        counts = {relation: 0 for relation in Relation}
        for relation in relations.values():
            counts[relation] += 1
        return cls(
            ahead=counts[Relation.AHEAD],
            behind=counts[Relation.BEHIND],
            same=counts[Relation.SAME],
            null=counts[Relation.NULL],
        )


@dataclass(frozen=True)
class Diagnostic:
    """Non-fatal failure while loading one field of a project."""

    field: str
    message: str
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class ProjectSnapshot:
    """Read-only view of a project for presentation."""

    project_id: str
    identity: Identity
    branch_commits: Mapping[str, str]
    branch_relations: Mapping[str, Relation]
    change_status: ChangeStatus
    change_count: Optional[int]
    state: ReconcilerState
    generation: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.project_id,
            "remote_name": self.identity.remote_name,
            "local_name": self.identity.local_name,
            "unknown": self.identity.is_unknown,
            "change_status": self.change_status.value,
            "change_count": self.change_count,
            "state": self.state.value,
            "generation": self.generation,
            "branches": {
                branch: {
                    "commit": commit,
                    "relation": self.branch_relations.get(branch, Relation.NULL).value,
                }
                for branch, commit in self.branch_commits.items()
            },
        }


class ProjectViewModel:
    """Identity, change status and branch relations of one project.

    This is the only writer of the project's fields. Loading fires the three
    field fetches and the reconciler's first cycle concurrently; each one
    fails on its own without blocking the others.
    """

    def __init__(self, project_id: str, service: RepositoryInspectionService):
        self.project_id = project_id
        self._service = service
        self._remote_name: Optional[str] = None
        self._local_name: Optional[str] = None
        self._change_count: Optional[int] = None
        self.diagnostics: Deque[Diagnostic] = deque(maxlen=MAX_DIAGNOSTICS)
        # field name -> token of its newest fetch; older fetches are dropped
        self._fetch_tokens: Dict[str, int] = {}
        self.reconciler = BranchReconciler(
            project_id, service, on_error=self._record
        )

    async def load(self) -> None:
        with timeit("project.load", project_id=self.project_id) as info:
            await asyncio.gather(
                self._load_remote_name(),
                self._load_local_name(),
                self._load_change_count(),
                self.reconciler.refresh(),
            )
            info["branches"] = len(self.reconciler.branch_relations)

    async def refresh(self) -> None:
        await self.load()

    async def reload_change_count(self) -> ChangeStatus:
        """Fetch the change count alone and return the resulting status."""
        await self._load_change_count()
        return self.change_status()

    async def poll(self) -> bool:
        """Re-check the branches and the change count.

        Returns True if new relations were published or the change status moved.
        """
        status = self.change_status()
        published, _ = await asyncio.gather(self.reconciler.poll(), self._load_change_count())
        return published or self.change_status() is not status

    def identity(self) -> Identity:
        return Identity(remote_name=self._remote_name, local_name=self._local_name)

    def branch_relations(self) -> Mapping[str, Relation]:
        return self.reconciler.branch_relations

    def change_status(self) -> ChangeStatus:
        return ChangeStatus.from_count(self._change_count)

    def relation_summary(self) -> RelationSummary:
        return RelationSummary.from_relations(self.reconciler.branch_relations)

    def snapshot(self) -> ProjectSnapshot:
        return ProjectSnapshot(
            project_id=self.project_id,
            identity=self.identity(),
            branch_commits=self.reconciler.branch_commits,
            branch_relations=self.reconciler.branch_relations,
            change_status=self.change_status(),
            change_count=self._change_count,
            state=self.reconciler.state,
            generation=self.reconciler.published_generation,
        )

    def _begin_fetch(self, field_name: str) -> int:
        token = self._fetch_tokens.get(field_name, 0) + 1
        self._fetch_tokens[field_name] = token
        return token

    def _is_stale(self, field_name: str, token: int) -> bool:
        if self._fetch_tokens.get(field_name) == token:
            return False
        log_debug(
            f"[PROJECT] Dropping superseded {field_name} result",
            project=self.project_id,
            token=token,
        )
        return True

    async def _load_remote_name(self) -> None:
        token = self._begin_fetch("remote_name")
        try:
            name = await self._service.remote_name(self.project_id)
        except Exception as e:
            if not self._is_stale("remote_name", token):
                self._record("remote_name", e)
            return
        if not self._is_stale("remote_name", token):
            self._remote_name = name

    async def _load_local_name(self) -> None:
        token = self._begin_fetch("local_name")
        try:
            name = await self._service.local_name(self.project_id)
        except Exception as e:
            if not self._is_stale("local_name", token):
                self._record("local_name", e)
            return
        if not self._is_stale("local_name", token):
            self._local_name = name

    async def _load_change_count(self) -> None:
        token = self._begin_fetch("change_count")
        try:
            count: Optional[int] = await self._service.change_count(self.project_id)
            ChangeStatus.from_count(count)
        except NoWorkingTreeError:
            count = None
        except Exception as e:
            if not self._is_stale("change_count", token):
                self._record("change_count", e)
            return
        if not self._is_stale("change_count", token):
            self._change_count = count

    def _record(self, field_name: str, error: Exception) -> None:
        message = f"{type(error).__name__}: {error}"
        self.diagnostics.append(Diagnostic(field=field_name, message=message))
        # The reconciler logs its own failures
        if field_name not in ("branch_commit_map", "poll"):
            log_warning(
                f"[PROJECT] Failed to load {field_name}",
                project=self.project_id,
                error=message,
            )


class ProjectRegistry:
    """Owned, ordered collection of view-models keyed by project id."""

    def __init__(self, service: RepositoryInspectionService):
        self._service = service
        self._models: Dict[str, ProjectViewModel] = {}

    def sync(self, ids: Iterable[str]) -> Tuple[List[str], List[str]]:
        """Match the registry to ``ids``. Returns (added, removed).

        Existing view-models are kept with their state; order follows ``ids``.
        """
        models: Dict[str, ProjectViewModel] = {}
        added: List[str] = []
        for project_id in ids:
            if project_id in models:
                continue
            model = self._models.get(project_id)
            if model is None:
                model = ProjectViewModel(project_id, self._service)
                added.append(project_id)
            models[project_id] = model
        removed = [project_id for project_id in self._models if project_id not in models]
        self._models = models
        return added, removed

    def get(self, project_id: str) -> Optional[ProjectViewModel]:
        return self._models.get(project_id)

    def ids(self) -> Tuple[str, ...]:
        return tuple(self._models)

    def __contains__(self, project_id: object) -> bool:
        return project_id in self._models

    def __len__(self) -> int:
        return len(self._models)

    def __iter__(self) -> Iterator[ProjectViewModel]:
        return iter(list(self._models.values()))

    async def load_all(self) -> None:
        await asyncio.gather(*(model.load() for model in self))

    def snapshots(self) -> List[ProjectSnapshot]:
        return [model.snapshot() for model in self]
