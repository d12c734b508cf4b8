"""Pair local repositories with GitHub repositories by remote URL."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from .github import Repository
from .local import LocalProject, RemoteUrlType

_SCHEMES = ("https://", "http://")


@dataclass
class Project:
    """A local directory, a GitHub repository, or both."""

    local: Optional[LocalProject] = None
    remote: Optional[Repository] = None

    def key(self) -> str:
        """Identity used to keep ids stable across rescans."""
        if self.local is not None:
            return str(self.local.path.resolve())
        if self.remote is not None:
            return f"github:{self.remote.id}"
        raise ValueError("Project has neither a local nor a remote side")

    def local_name(self) -> Optional[str]:
        return self.local.name if self.local is not None else None

    def remote_name(self) -> Optional[str]:
        return self.remote.name if self.remote is not None else None


def _normalize_url(url: str) -> str:
    if not url.endswith(".git"):
        url += ".git"
    for scheme in _SCHEMES:
        if url.startswith(scheme):
            return url[len(scheme):]
    return url


def match_remote_url(url_a: str, url_b: str) -> bool:
    """True if both URLs name the same repository.

    ``github.com/o/r``, ``https://github.com/o/r`` and
    ``https://github.com/o/r.git`` all match each other.
    """
    return _normalize_url(url_a) == _normalize_url(url_b)


def find_remote(local: LocalProject, remote_repos: Sequence[Repository]) -> Optional[Repository]:
    """GitHub repository matching the first remote of ``local``, if any."""
    if local.git is None or not local.git.remotes:
        return None
    remote = local.git.remotes[0]
    for repo in remote_repos:
        candidate = repo.url if remote.url_type is RemoteUrlType.HTTP else repo.ssh_url
        if candidate and match_remote_url(candidate, remote.url):
            return repo
    return None


def match_projects(
    local_projects: Sequence[LocalProject],
    remote_repos: Sequence[Repository],
) -> List[Project]:
    """Local projects (in order, matched where possible), then unmatched remotes."""
    projects: List[Project] = []
    matched_ids = set()
    for local in local_projects:
        remote = find_remote(local, remote_repos)
        if remote is not None:
            matched_ids.add(remote.id)
        projects.append(Project(local=local, remote=remote))

    for repo in remote_repos:
        if repo.id not in matched_ids:
            projects.append(Project(remote=repo))
    return projects
