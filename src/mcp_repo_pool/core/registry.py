"""Repository pool for MCP Repo Pool.

This module provides the registry of git repositories that row iterators
walk over. Repositories are registered either as plain directories or as
single-file archives, and are opened on demand: the pool never keeps an
opened repository around, each lookup returns a fresh handle owned by the
caller.
"""

import threading
from enum import Enum
from pathlib import Path, PurePath

from loguru import logger
from pydantic import BaseModel, Field

from .archive import RepositoryFilesystem, StagingArea
from .config import PoolSettings
from .exceptions import (
    AlreadyRegisteredError,
    CannotOpenError,
    EndOfSequence,
    InvalidKindError,
    NotFoundError,
    RepoPoolError,
)
from .repository import Repository


def id_from_path(prefix: int, path: Path | str) -> str:
    """Build a repository id from a path.

    Args:
        prefix: Number of leading path segments to strip. The last segment
            is always kept.
        path: Path the id is derived from

    Returns:
        Id using forward slashes as separator
    """
    if prefix < 0:
        raise ValueError(f"prefix must be >= 0, got {prefix}")

    pure = PurePath(path)
    parts = [p for p in pure.parts if p != pure.anchor]
    if not parts:
        return pure.as_posix()

    return "/".join(parts[min(prefix, len(parts) - 1) :])


class RepositoryKind(str, Enum):
    """How a backend's location is stored on disk."""

    PLAIN = "plain"
    ARCHIVE = "archive"


class Backend(BaseModel):
    """A registered repository location and how to open it."""

    id: str = Field(..., description="Unique identifier of the repository in the pool")
    path: Path = Field(..., description="Directory or archive file holding the repository")
    kind: RepositoryKind = Field(default=RepositoryKind.PLAIN, description="Storage kind")

    class Config:
        frozen = True

    def open(self, staging: StagingArea) -> Repository:
        """Open a new handle on the repository.

        Args:
            staging: Staging area used to mount archive-backed repositories

        Returns:
            A fresh Repository; the caller must close it
        """
        try:
            if self.kind == RepositoryKind.PLAIN:
                return Repository.from_path(self.id, self.path)
            elif self.kind == RepositoryKind.ARCHIVE:
                return Repository.from_archive(self.id, self.path, staging)
        except Exception as e:
            raise CannotOpenError(self.path, str(e)) from e

        raise InvalidKindError(self.kind)

    def filesystem(self, staging: StagingArea) -> RepositoryFilesystem:
        """Get a filesystem view on the repository location.

        Archive-backed views own a fresh staging directory and must be closed.
        """
        if self.kind == RepositoryKind.PLAIN:
            return RepositoryFilesystem(self.path)
        elif self.kind == RepositoryKind.ARCHIVE:
            try:
                return staging.mount(self.path)
            except Exception as e:
                raise CannotOpenError(self.path, str(e)) from e

        raise InvalidKindError(self.kind)


class RepositoryPool:
    """Ordered registry of repository backends.

    Backends are kept in registration order and looked up by id. The pool is
    expected to be fully populated before iteration starts; cursors created
    with :meth:`new_cursor` walk it in registration order.
    """

    def __init__(
        self,
        settings: PoolSettings | None = None,
        staging: StagingArea | None = None,
    ) -> None:
        self.settings = settings or PoolSettings()
        self.staging = staging or StagingArea.from_settings(self.settings)
        self._backends: dict[str, Backend] = {}
        self._order: list[str] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, repo_id: object) -> bool:
        return repo_id in self._backends

    def ids(self) -> list[str]:
        """Repository ids in registration order."""
        return list(self._order)

    def backends(self) -> list[Backend]:
        """Registered backends in registration order."""
        return [self._backends[repo_id] for repo_id in self._order]

    def get_backend(self, repo_id: str) -> Backend:
        backend = self._backends.get(repo_id)
        if backend is None:
            raise NotFoundError(repo_id)
        return backend

    def register(self, backend: Backend) -> Backend:
        """Insert a backend in the pool.

        Raises:
            AlreadyRegisteredError: If a backend with the same id exists
        """
        with self._lock:
            existing = self._backends.get(backend.id)
            if existing is not None:
                raise AlreadyRegisteredError(backend.id, existing.path)

            self._backends[backend.id] = backend
            self._order.append(backend.id)

        return backend

    def register_directory(self, path: Path | str, repo_id: str | None = None) -> Backend:
        """Check that a plain repository can be opened and register it.

        Args:
            path: Repository directory
            repo_id: Id to register under (defaults to the path)

        Raises:
            CannotOpenError: If the repository cannot be opened
            AlreadyRegisteredError: If the id is already taken
        """
        path = Path(path)
        backend = Backend(id=repo_id or str(path), path=path, kind=RepositoryKind.PLAIN)

        # Handles are never cached, the probe is closed right away.
        with backend.open(self.staging):
            pass

        return self.register(backend)

    def register_directory_tree(self, path: Path | str, id_prefix_strip: int = 0) -> list[Backend]:
        """Register every direct subdirectory of ``path`` as a plain repository.

        Ids are the subdirectory paths relative to ``path`` with
        ``id_prefix_strip`` leading segments removed. Entries that cannot be
        registered are logged and skipped.

        Returns:
            Backends registered by this call
        """
        root = Path(path)
        added = []

        for entry in sorted(root.iterdir()):
            if not entry.is_dir():
                continue

            repo_id = id_from_path(id_prefix_strip, entry.relative_to(root))
            try:
                added.append(self.register_directory(entry, repo_id))
            except RepoPoolError as e:
                logger.error(f"Repository could not be added: id={repo_id} path={entry} error={e}")
            else:
                logger.debug(f"Repository added: {entry}")

        return added

    def register_archive_tree(self, path: Path | str) -> list[Backend]:
        """Register all archives in ``path`` and in its direct subdirectories.

        Deeper directories are not visited. Ids are the archive paths relative
        to ``path``; files without the archive suffix are skipped.

        Returns:
            Backends registered by this call
        """
        root = Path(path)
        added: list[Backend] = []
        self._scan_archive_dir(root, root, added, recursive=True)
        return added

    def _scan_archive_dir(
        self, root: Path, directory: Path, added: list[Backend], recursive: bool
    ) -> None:
        for entry in sorted(directory.iterdir()):
            if entry.is_dir():
                if recursive:
                    self._scan_archive_dir(root, entry, added, recursive=False)
                continue

            relative = entry.relative_to(root).as_posix()
            if not entry.name.endswith(self.settings.archive_suffix):
                logger.warning(f"Found a non-archive file, skipping: {relative}")
                continue

            backend = Backend(id=relative, path=entry, kind=RepositoryKind.ARCHIVE)
            try:
                added.append(self.register(backend))
            except AlreadyRegisteredError as e:
                logger.error(f"Repository could not be added: id={relative} error={e}")
            else:
                logger.debug(f"Repository added: {relative}")

    def register_archive_file(self, path: Path | str, repo_id: str | None = None) -> Backend:
        """Register a single archive file.

        Files without the archive suffix are registered anyway, with a warning.
        """
        path = Path(path)
        if not path.name.endswith(self.settings.archive_suffix):
            logger.warning(f"Found a non-archive file: {path.name}")

        backend = self.register(
            Backend(id=repo_id or str(path), path=path, kind=RepositoryKind.ARCHIVE)
        )
        logger.debug(f"Repository added: {path.name}")
        return backend

    def lookup(self, repo_id: str) -> Repository:
        """Open the repository registered under ``repo_id``.

        Raises:
            NotFoundError: If the id is not in the pool
            CannotOpenError: If the repository cannot be opened
        """
        return self.get_backend(repo_id).open(self.staging)

    def lookup_at(self, position: int) -> Repository:
        """Open the repository at a position in registration order.

        Raises:
            EndOfSequence: If the position is out of range
        """
        if position < 0 or position >= len(self._order):
            raise EndOfSequence()

        repo_id = self._order[position]
        if not repo_id:
            raise EndOfSequence()

        return self.lookup(repo_id)

    def new_cursor(self) -> "RepositoryIter":
        """Create an independent cursor positioned on the first repository."""
        return RepositoryIter(self)


class RepositoryIter:
    """Cursor over the repositories of a pool, in registration order.

    Each call to ``next()`` opens the repository at the current position and
    moves forward, even when opening fails. Cursors hold no resources.
    """

    def __init__(self, pool: RepositoryPool) -> None:
        self.pool = pool
        self._position = 0
        self._lock = threading.Lock()

    @property
    def position(self) -> int:
        return self._position

    def __iter__(self) -> "RepositoryIter":
        return self

    def __next__(self) -> Repository:
        with self._lock:
            position = self._position
            self._position += 1

        return self.pool.lookup_at(position)

    def close(self) -> None:
        pass
