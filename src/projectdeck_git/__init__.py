"""Git and GitHub backed repository inspection for projectdeck."""

from .github import GitHubClient, GitHubError, Repository  # noqa: F401
from .inspector import GitInspectionService  # noqa: F401
from .local import LocalProject, list_local_projects  # noqa: F401
from .matching import Project, match_remote_url  # noqa: F401

__all__ = [
    "GitHubClient",
    "GitHubError",
    "GitInspectionService",
    "LocalProject",
    "Project",
    "Repository",
    "list_local_projects",
    "match_remote_url",
]
