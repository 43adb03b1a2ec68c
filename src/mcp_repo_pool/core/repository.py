"""Opened repository handles."""

from pathlib import Path

from git import Repo
from loguru import logger

from .archive import RepositoryFilesystem, StagingArea


class Repository:
    """An opened repository and the id it is registered under.

    A handle is created fresh on every open and is owned by whoever opened
    it. Closing it releases the git object database and, for archive-backed
    repositories, the staging directory the archive was mounted on.
    """

    def __init__(
        self,
        repo_id: str,
        repo: Repo,
        filesystem: RepositoryFilesystem | None = None,
    ) -> None:
        self.id = repo_id
        self.repo = repo
        self.filesystem = filesystem
        self._closed = False

    @classmethod
    def from_path(cls, repo_id: str, path: Path | str) -> "Repository":
        """Open a plain repository stored in a directory."""
        return cls(repo_id, Repo(str(path)), RepositoryFilesystem(Path(path)))

    @classmethod
    def from_archive(
        cls, repo_id: str, path: Path | str, staging: StagingArea
    ) -> "Repository":
        """Open a repository packed in a single archive file.

        The archive is mounted over a new staging directory and the
        repository is opened on top of the mounted tree.
        """
        filesystem = staging.mount(Path(path))
        try:
            repo = Repo(str(filesystem.root))
        except Exception:
            filesystem.close()
            raise

        return cls(repo_id, repo, filesystem)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        try:
            self.repo.close()
        finally:
            if self.filesystem is not None:
                self.filesystem.close()
        logger.debug(f"Closed repository {self.id}")

    def __enter__(self) -> "Repository":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Repository(id={self.id!r})"
