"""Core functionality for MCP Repo Pool."""

from mcp_repo_pool.core.archive import (
    ArchiveMounter,
    RepositoryFilesystem,
    StagingArea,
    UnpackMounter,
)
from mcp_repo_pool.core.config import PoolSettings, get_staging_path
from mcp_repo_pool.core.exceptions import (
    AlreadyRegisteredError,
    CanceledError,
    CannotOpenError,
    ConfigurationError,
    EndOfSequence,
    InvalidKindError,
    InvalidSessionError,
    NotFoundError,
    RepoPoolError,
)
from mcp_repo_pool.core.iterator import (
    CompositeRowIter,
    QueryContext,
    RowRepoIter,
    Session,
    new_row_repo_iter,
)
from mcp_repo_pool.core.registry import (
    Backend,
    RepositoryIter,
    RepositoryKind,
    RepositoryPool,
    id_from_path,
)
from mcp_repo_pool.core.repository import Repository
from mcp_repo_pool.core.rows import CommitsRowRepoIter

__all__ = [
    "AlreadyRegisteredError",
    "ArchiveMounter",
    "Backend",
    "CanceledError",
    "CannotOpenError",
    "CommitsRowRepoIter",
    "CompositeRowIter",
    "ConfigurationError",
    "EndOfSequence",
    "InvalidKindError",
    "InvalidSessionError",
    "NotFoundError",
    "PoolSettings",
    "QueryContext",
    "RepoPoolError",
    "Repository",
    "RepositoryFilesystem",
    "RepositoryIter",
    "RepositoryKind",
    "RepositoryPool",
    "RowRepoIter",
    "Session",
    "StagingArea",
    "UnpackMounter",
    "get_staging_path",
    "id_from_path",
    "new_row_repo_iter",
]
