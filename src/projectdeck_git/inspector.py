"""Repository inspection service backed by local git checkouts and GitHub.

Blocking GitPython work runs in worker threads via ``asyncio.to_thread``;
GitHub calls go through the async httpx client. Everything that touches the
working tree is re-read on every call so polling picks up new commits.
"""

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path
from typing import Any, Awaitable, Dict, List, Mapping, Optional, Sequence, TypeVar

from git import Repo
from git.exc import BadName, BadObject, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from projectdeck.config_schema import ProjectDeckConfig
from projectdeck.observability import log_debug, log_warning, timeit
from projectdeck.relation import LayeredCommitGraph, Relation, classify
from projectdeck.service import NoWorkingTreeError, ServiceError, UnknownProjectError

from .github import GitHubClient, GitHubError, ListParameters, Repository
from .local import (
    BranchHistoryGraph,
    LocalProject,
    RepoCommitGraph,
    list_local_projects,
    read_branch_commits,
    read_changes,
    upstream_commit,
)
from .matching import Project, match_projects

T = TypeVar("T")


def _open_repo(path: Path) -> Repo:
    try:
        return Repo(path)
    except (InvalidGitRepositoryError, NoSuchPathError) as e:
        raise ServiceError(f"Cannot open repository at {path}: {e}") from e


def _read_branch_commits(path: Path) -> Dict[str, str]:
    with _open_repo(path) as repo:
        return read_branch_commits(repo)


def _count_changes(path: Path) -> int:
    with _open_repo(path) as repo:
        try:
            return len(read_changes(repo))
        except GitCommandError as e:
            raise ServiceError(f"git status failed in {path}: {e}") from e


def _classify_upstream(path: Path, branch: str, commit: str, remote: str) -> Relation:
    with _open_repo(path) as repo:
        reference = upstream_commit(repo, branch, remote)
        return classify(commit, reference, RepoCommitGraph(repo))


def _has_commit(path: Path, commit: str) -> bool:
    with _open_repo(path) as repo:
        try:
            repo.commit(commit)
        except (BadName, BadObject, ValueError, GitCommandError):
            return False
        return True


def _classify_layered(path: Path, commit: str, reference: str, history: Sequence[str]) -> Relation:
    with _open_repo(path) as repo:
        graph = LayeredCommitGraph([RepoCommitGraph(repo), BranchHistoryGraph(reference, history)])
        return classify(commit, reference, graph)


class GitInspectionService:
    """RepositoryInspectionService over configured scan roots and GitHub.

    Project ids are uuids that stay stable across resyncs as long as the
    project's key (local path, else GitHub repo id) is still present.
    """

    def __init__(
        self,
        config: Optional[ProjectDeckConfig] = None,
        *,
        token: Optional[str] = None,
        github: Optional[GitHubClient] = None,
    ):
        self.config = config or ProjectDeckConfig.default()
        self._token = token
        self._github = github
        self._owns_github = False
        self._projects: Dict[str, Project] = {}
        self._ids_by_key: Dict[str, str] = {}
        # project id -> in-flight or finished listing of remote branch heads
        self._remote_heads: Dict[str, "asyncio.Task[Dict[str, str]]"] = {}

    async def __aenter__(self) -> "GitInspectionService":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._github is not None and self._owns_github:
            await self._github.aclose()
            self._github = None
            self._owns_github = False

    def _client(self) -> Optional[GitHubClient]:
        if not self.config.github.enabled:
            return None
        if self._github is None and self._token:
            self._github = GitHubClient(
                self._token,
                api_base=self.config.github.api_base,
                timeout=self.config.github.timeout,
            )
            self._owns_github = True
        return self._github

    async def _github_call(self, call: Awaitable[T]) -> T:
        try:
            return await call
        except GitHubError as e:
            raise ServiceError(f"GitHub request failed: {e}") from e

    def _project(self, project_id: str) -> Project:
        try:
            return self._projects[project_id]
        except KeyError:
            raise UnknownProjectError(project_id) from None

    # ------------------------------------------------------------------ #
    # Project set

    def _scan_roots(self) -> List[LocalProject]:
        projects: List[LocalProject] = []
        for root in self.config.scan_roots():
            try:
                projects.extend(
                    list_local_projects(
                        root,
                        include_plain_dirs=self.config.scan.include_plain_dirs,
                        remote=self.config.reconcile.remote,
                    )
                )
            except (FileNotFoundError, NotADirectoryError) as e:
                log_warning(f"[SCAN] Skipping root: {e}")
        return projects

    async def _list_remote_repos(self) -> List[Repository]:
        client = self._client()
        if client is None:
            return []
        settings = self.config.github
        params = ListParameters(
            visibility=settings.visibility,
            affiliation=settings.affiliation or None,
            per_page=settings.per_page,
        )
        return await self._github_call(client.list_repos(params))

    def _assign_ids(self, projects: Sequence[Project]) -> None:
        ids_by_key: Dict[str, str] = {}
        by_id: Dict[str, Project] = {}
        for project in projects:
            key = project.key()
            if key in ids_by_key:
                continue
            project_id = self._ids_by_key.get(key) or str(uuid.uuid4())
            ids_by_key[key] = project_id
            by_id[project_id] = project
        self._ids_by_key = ids_by_key
        self._projects = by_id
        self._remote_heads.clear()

    async def resync_project_set(self) -> None:
        with timeit("service.resync") as info:
            local = await asyncio.to_thread(self._scan_roots)
            remote = await self._list_remote_repos()
            self._assign_ids(match_projects(local, remote))
            info.update(local=len(local), remote=len(remote), projects=len(self._projects))

    async def list_project_ids(self) -> Sequence[str]:
        return list(self._projects)

    async def remote_name(self, project_id: str) -> Optional[str]:
        return self._project(project_id).remote_name()

    async def local_name(self, project_id: str) -> Optional[str]:
        return self._project(project_id).local_name()

    # ------------------------------------------------------------------ #
    # Working tree

    @staticmethod
    def _git_path(project: Project) -> Optional[Path]:
        if project.local is None or project.local.git is None:
            return None
        return project.local.path

    async def branch_commit_map(self, project_id: str) -> Mapping[str, str]:
        project = self._project(project_id)
        # A new commit map starts a new generation; remote heads are re-listed
        self._remote_heads.pop(project_id, None)
        path = self._git_path(project)
        if path is None:
            return {}
        return await asyncio.to_thread(_read_branch_commits, path)

    async def change_count(self, project_id: str) -> int:
        path = self._git_path(self._project(project_id))
        if path is None:
            raise NoWorkingTreeError(project_id)
        return await asyncio.to_thread(_count_changes, path)

    # ------------------------------------------------------------------ #
    # Relations

    async def classify_relation(self, project_id: str, branch: str, commit: str) -> Relation:
        project = self._project(project_id)
        path = self._git_path(project)
        if path is None:
            return Relation.NULL
        if self.config.reconcile.reference == "github":
            return await self._classify_github(project_id, project, path, branch, commit)
        return await asyncio.to_thread(
            _classify_upstream, path, branch, commit, self.config.reconcile.remote
        )

    async def _remote_branch_heads(self, project_id: str, client: GitHubClient, repo: Repository) -> Dict[str, str]:
        task = self._remote_heads.get(project_id)
        if task is None:
            task = asyncio.ensure_future(
                self._github_call(client.list_branches(repo.owner or "", repo.name))
            )
            self._remote_heads[project_id] = task
        try:
            return await task
        except ServiceError:
            if self._remote_heads.get(project_id) is task:
                del self._remote_heads[project_id]
            raise

    async def _classify_github(
        self,
        project_id: str,
        project: Project,
        path: Path,
        branch: str,
        commit: str,
    ) -> Relation:
        client = self._client()
        repo = project.remote
        if client is None or repo is None or not repo.owner:
            return Relation.NULL

        heads = await self._remote_branch_heads(project_id, client, repo)
        reference = heads.get(branch)
        if reference is None:
            log_debug("[RELATION] Branch not on remote", project=project_id, branch=branch)
            return Relation.NULL
        if reference == commit:
            return Relation.SAME

        history: Sequence[str] = ()
        if not await asyncio.to_thread(_has_commit, path, reference):
            history = await self._github_call(client.list_commits(repo.owner, repo.name, branch))
        return await asyncio.to_thread(_classify_layered, path, commit, reference, history)
