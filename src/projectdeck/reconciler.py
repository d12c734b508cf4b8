"""Per-project branch reconciliation.

A reconciler fetches a project's branch -> commit map, classifies every branch
concurrently and publishes the resulting branch -> relation map in one step.

Every cycle is tagged with a generation number. Results are only committed if
their generation is still the newest one when the last classification
finishes; superseded batches are dropped without being merged. Readers
therefore see either the previous complete map or the next complete map.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional

from .observability import log_action, log_debug, log_error, log_warning
from .relation import Relation, classify_branch
from .service import RepositoryInspectionService


class ReconcilerState(str, Enum):
    IDLE = "idle"
    FETCHING_COMMITS = "fetching_commits"
    CLASSIFYING_BRANCHES = "classifying_branches"
    READY = "ready"


RelationsCallback = Callable[[int, Mapping[str, Relation]], None]
ErrorCallback = Callable[[str, Exception], None]

_EMPTY: Mapping = MappingProxyType({})


class BranchReconciler:
    """State machine deriving branch relations for one project."""

    def __init__(
        self,
        project_id: str,
        service: RepositoryInspectionService,
        *,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.project_id = project_id
        self._service = service
        self._on_error = on_error
        self._state = ReconcilerState.IDLE
        self._generation = 0
        self._published_generation = 0
        self._commits: Mapping[str, str] = _EMPTY
        self._relations: Mapping[str, Relation] = _EMPTY
        # Commit map being classified by the newest in-flight generation
        self._pending: Optional[Dict[str, str]] = None
        self._subscribers: List[RelationsCallback] = []
        self.last_error: Optional[Exception] = None

    @property
    def state(self) -> ReconcilerState:
        return self._state

    @property
    def generation(self) -> int:
        """Newest generation started (published or not)."""
        return self._generation

    @property
    def published_generation(self) -> int:
        """Generation of the currently visible maps; 0 before the first publish."""
        return self._published_generation

    @property
    def branch_commits(self) -> Mapping[str, str]:
        return self._commits

    @property
    def branch_relations(self) -> Mapping[str, Relation]:
        return self._relations

    def subscribe(self, callback: RelationsCallback) -> Callable[[], None]:
        """Register a publish callback. Returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def refresh(self) -> bool:
        """Run one full fetch + classify cycle.

        Returns True if this cycle published its results, False if the fetch
        failed or a newer cycle superseded it.
        """
        generation = self._begin()
        try:
            commits = dict(await self._service.branch_commit_map(self.project_id))
        except Exception as e:
            if self._is_current(generation):
                self._settle()
                self._report("branch_commit_map", e)
            else:
                log_debug(
                    "[RECONCILE] Dropping failed fetch from superseded generation",
                    project=self.project_id,
                    generation=generation,
                )
            return False
        return await self._classify(generation, commits)

    async def poll(self) -> bool:
        """Re-run classification only if the commit map changed.

        The freshly fetched map is classified directly; no second fetch is made.
        Returns True if a new generation was published.
        """
        seen = self._generation
        try:
            commits = dict(await self._service.branch_commit_map(self.project_id))
        except Exception as e:
            if self._generation != seen:
                log_debug(
                    "[RECONCILE] Dropping failed poll overtaken by a newer cycle",
                    project=self.project_id,
                    generation=self._generation,
                )
            else:
                self._report("poll", e)
            return False

        if self._generation != seen:
            # A cycle started while we were fetching; its data is at least as new.
            return False
        if self._pending is not None and commits == self._pending:
            return False
        if self._pending is None and self._published_generation and commits == dict(self._commits):
            return False

        log_debug(
            "[RECONCILE] Commit map changed, reclassifying",
            project=self.project_id,
            branches=len(commits),
        )
        generation = self._begin()
        return await self._classify(generation, commits)

    async def watch(self, interval: float, stop: Optional[asyncio.Event] = None) -> None:
        """Poll every ``interval`` seconds until ``stop`` is set."""
        if stop is None:
            stop = asyncio.Event()
        while not stop.is_set():
            await self.poll()
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    def _begin(self) -> int:
        self._generation += 1
        self._pending = None
        self._state = ReconcilerState.FETCHING_COMMITS
        return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _settle(self) -> None:
        self._pending = None
        if self._published_generation:
            self._state = ReconcilerState.READY
        else:
            self._state = ReconcilerState.IDLE

    async def _classify(self, generation: int, commits: Dict[str, str]) -> bool:
        if not self._is_current(generation):
            return False
        self._state = ReconcilerState.CLASSIFYING_BRANCHES
        self._pending = commits

        branches = list(commits)
        results = await asyncio.gather(
            *(
                classify_branch(self._service, self.project_id, branch, commits[branch])
                for branch in branches
            )
        )

        if not self._is_current(generation):
            log_action(
                "reconcile.classify",
                outcome="stale",
                project_id=self.project_id,
                generation=generation,
                current_generation=self._generation,
            )
            return False

        self._commits = MappingProxyType(dict(commits))
        self._relations = MappingProxyType(dict(zip(branches, results)))
        self._published_generation = generation
        self._pending = None
        self._state = ReconcilerState.READY
        self.last_error = None
        log_action(
            "reconcile.classify",
            project_id=self.project_id,
            generation=generation,
            branches=len(branches),
        )
        self._notify(generation)
        return True

    def _notify(self, generation: int) -> None:
        for callback in list(self._subscribers):
            try:
                callback(generation, self._relations)
            except Exception as e:
                log_error(
                    "[RECONCILE] Subscriber failed",
                    project=self.project_id,
                    error=f"{type(e).__name__}: {e}",
                )

    def _report(self, stage: str, error: Exception) -> None:
        self.last_error = error
        log_warning(
            f"[RECONCILE] {stage} failed",
            project=self.project_id,
            error=f"{type(error).__name__}: {error}",
        )
        if self._on_error is not None:
            self._on_error(stage, error)
