"""projectdeck: branch status tracking across local projects."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("projectdeck")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .controller import ProjectListController, RefreshError  # noqa: F401
from .reconciler import BranchReconciler, ReconcilerState  # noqa: F401
from .registry import ChangeStatus, Identity, ProjectRegistry, ProjectViewModel  # noqa: F401
from .relation import Relation, classify, classify_branch  # noqa: F401
from .service import (  # noqa: F401
    NoWorkingTreeError,
    RepositoryInspectionService,
    ServiceError,
    UnknownProjectError,
)

__all__ = [
    "BranchReconciler",
    "ChangeStatus",
    "Identity",
    "NoWorkingTreeError",
    "ProjectListController",
    "ProjectRegistry",
    "ProjectViewModel",
    "ReconcilerState",
    "RefreshError",
    "Relation",
    "RepositoryInspectionService",
    "ServiceError",
    "UnknownProjectError",
    "classify",
    "classify_branch",
    "__version__",
]
