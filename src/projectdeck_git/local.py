"""Local project discovery and git inspection with GitPython."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from git import Repo
from git.exc import BadName, BadObject, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from projectdeck.observability import log_debug, log_error, log_warning
from projectdeck.relation import UnknownCommitError


class RemoteUrlType(str, Enum):
    HTTP = "http"
    SSH = "ssh"


@dataclass(frozen=True)
class RemoteInfo:
    name: str
    url: str
    url_type: RemoteUrlType


@dataclass(frozen=True)
class FileChange:
    path: Optional[str]
    status: str  # porcelain XY code, e.g. "M", "??", "A"


@dataclass
class GitInfo:
    changes: List[FileChange] = field(default_factory=list)
    remotes: List[RemoteInfo] = field(default_factory=list)
    branch_commits: Dict[str, str] = field(default_factory=dict)
    upstream_commits: Dict[str, str] = field(default_factory=dict)


@dataclass
class LocalProject:
    path: Path
    git: Optional[GitInfo] = None

    @property
    def name(self) -> Optional[str]:
        """Directory name, or None if the path has no usable final component."""
        return self.path.name or None


def remote_url_type(url: str) -> Optional[RemoteUrlType]:
    """Classify a remote URL; None for schemes that can't be matched to GitHub."""
    if url.startswith("http"):
        return RemoteUrlType.HTTP
    if url.startswith("git@"):
        return RemoteUrlType.SSH
    return None


def is_git_dir(path: Path) -> bool:
    return (path / ".git").exists()


def open_repo(path: Path) -> Repo:
    return Repo(path)


def read_remotes(repo: Repo) -> List[RemoteInfo]:
    remotes: List[RemoteInfo] = []
    for remote in repo.remotes:
        try:
            urls = list(remote.urls)
        except GitCommandError as e:
            log_debug(f"[LOCAL] Could not read urls of remote {remote.name}: {e}")
            continue
        if not urls:
            continue
        url_type = remote_url_type(urls[0])
        if url_type is None:
            continue
        remotes.append(RemoteInfo(name=remote.name, url=urls[0], url_type=url_type))
    return remotes


def read_branch_commits(repo: Repo) -> Dict[str, str]:
    """Local branch name -> commit hexsha."""
    commits: Dict[str, str] = {}
    for head in repo.heads:
        try:
            commits[head.name] = head.commit.hexsha
        except ValueError as e:
            log_warning(f"[LOCAL] Skipping branch {head.name}: {e}")
    return commits


def upstream_commit(repo: Repo, branch: str, remote: str = "origin") -> Optional[str]:
    """Commit of the branch's tracked upstream, else of ``<remote>/<branch>``."""
    try:
        head = repo.heads[branch]
    except IndexError:
        return None
    tracking = head.tracking_branch()
    candidates = [tracking.path] if tracking is not None else []
    candidates.append(f"refs/remotes/{remote}/{branch}")
    for ref in candidates:
        try:
            return repo.commit(ref).hexsha
        except (BadName, BadObject, ValueError, GitCommandError):
            continue
    return None


def read_upstream_commits(repo: Repo, branches: Iterable[str], remote: str = "origin") -> Dict[str, str]:
    upstreams: Dict[str, str] = {}
    for branch in branches:
        commit = upstream_commit(repo, branch, remote)
        if commit is not None:
            upstreams[branch] = commit
    return upstreams


def read_changes(repo: Repo) -> List[FileChange]:
    """Changed, staged and untracked files. Ignored files are not reported."""
    output = repo.git.status("--porcelain", "--untracked-files=all")
    changes: List[FileChange] = []
    for line in output.splitlines():
        if len(line) < 4:
            continue
        changes.append(FileChange(path=line[3:] or None, status=line[:2].strip()))
    return changes


def read_git_info(repo: Repo, remote: str = "origin") -> GitInfo:
    branch_commits = read_branch_commits(repo)
    return GitInfo(
        changes=read_changes(repo),
        remotes=read_remotes(repo),
        branch_commits=branch_commits,
        upstream_commits=read_upstream_commits(repo, branch_commits, remote),
    )


def inspect_project(path: Path, remote: str = "origin") -> Optional[LocalProject]:
    """Inspect one directory. None if it looks like a repo but can't be opened."""
    if not is_git_dir(path):
        return LocalProject(path=path, git=None)
    try:
        repo = open_repo(path)
    except (InvalidGitRepositoryError, NoSuchPathError) as e:
        log_error(f"[LOCAL] Could not open repository at {path}: {e}")
        return None
    try:
        return LocalProject(path=path, git=read_git_info(repo, remote))
    except GitCommandError as e:
        log_error(f"[LOCAL] Could not inspect repository at {path}: {e}")
        return None
    finally:
        repo.close()


def list_local_projects(
    root: Path,
    *,
    include_plain_dirs: bool = True,
    remote: str = "origin",
) -> List[LocalProject]:
    """Every sub-directory of ``root`` as a project, sorted by name.

    Raises:
        FileNotFoundError: If root does not exist
        NotADirectoryError: If root is not a directory
    """
    root = root.expanduser()
    if not root.exists():
        raise FileNotFoundError(f"Scan root does not exist: {root}")
    if not root.is_dir():
        raise NotADirectoryError(f"Scan root is not a directory: {root}")

    projects: List[LocalProject] = []
    for path in sorted(root.iterdir()):
        if not path.is_dir():
            continue
        if not include_plain_dirs and not is_git_dir(path):
            continue
        project = inspect_project(path, remote)
        if project is not None:
            projects.append(project)
    return projects


class RepoCommitGraph:
    """Ancestry answered by a local repository."""

    def __init__(self, repo: Repo):
        self.repo = repo

    def _resolve(self, commit: str) -> str:
        try:
            return self.repo.commit(commit).hexsha
        except (BadName, BadObject, ValueError, GitCommandError):
            raise UnknownCommitError(commit) from None

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        ancestor_sha = self._resolve(ancestor)
        descendant_sha = self._resolve(descendant)
        return self.repo.is_ancestor(ancestor_sha, descendant_sha)


class BranchHistoryGraph:
    """Ancestry known only from a branch head and the full list of its commits.

    Can tell whether a commit is an ancestor of the head; every other
    question is unknown.
    """

    def __init__(self, head: str, history: Iterable[str]):
        self.head = head
        self.history: Set[str] = set(history)
        self.history.add(head)

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        if descendant != self.head:
            raise UnknownCommitError(descendant)
        return ancestor in self.history
