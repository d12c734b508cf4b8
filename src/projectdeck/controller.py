"""Project list refresh."""

from __future__ import annotations

import asyncio
from typing import Optional, Tuple

from .observability import log_debug, timeit
from .registry import ProjectRegistry
from .service import RepositoryInspectionService, ServiceError


class RefreshError(ServiceError):
    """Resync or id listing failed; the previous id list is still published."""


class ProjectListController:
    """Resynchronizes the project set and publishes the resulting ids.

    Resync and listing run strictly in sequence so the listing never races a
    rescan. A refresh requested while one is running is a no-op.
    """

    def __init__(
        self,
        service: RepositoryInspectionService,
        registry: Optional[ProjectRegistry] = None,
    ):
        self._service = service
        self.registry = registry
        self._ids: Tuple[str, ...] = ()
        self._refreshing = False

    @property
    def ids(self) -> Tuple[str, ...]:
        return self._ids

    @property
    def is_refreshing(self) -> bool:
        """True while a refresh is in flight (refresh controls are disabled)."""
        return self._refreshing

    async def refresh(self) -> bool:
        """Resync and relist. Returns False if a refresh was already running.

        Projects that are new to the attached registry are loaded before this
        returns; existing ones keep their state.

        Raises:
            RefreshError: If resync or listing failed.
        """
        if self._refreshing:
            log_debug("[PROJECTS] Refresh already in flight, ignoring")
            return False

        self._refreshing = True
        try:
            with timeit("projects.refresh") as info:
                try:
                    await self._service.resync_project_set()
                    ids = tuple(await self._service.list_project_ids())
                except Exception as e:
                    raise RefreshError(f"Project refresh failed: {e}") from e
                info["projects"] = len(ids)

            self._ids = ids
            if self.registry is not None:
                await self._sync_registry(self.registry, ids)
        finally:
            self._refreshing = False
        return True

    async def _sync_registry(self, registry: ProjectRegistry, ids: Tuple[str, ...]) -> None:
        added, removed = registry.sync(ids)
        log_debug("[PROJECTS] Registry synced", added=len(added), removed=len(removed))
        models = [registry.get(project_id) for project_id in added]
        await asyncio.gather(*(model.load() for model in models if model is not None))
