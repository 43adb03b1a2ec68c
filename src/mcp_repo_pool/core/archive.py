"""Staging storage and filesystem views for archive-backed repositories.

An archive-backed repository is a single packed file. Opening one mounts the
archive over a private, freshly created staging directory; the resulting
:class:`RepositoryFilesystem` owns that directory and deletes it on close.
"""

import shutil
import tempfile
import threading
from pathlib import Path
from typing import Protocol

from loguru import logger

from .config import PoolSettings

TAR_FORMATS = frozenset({"tar", "gztar", "bztar", "xztar", "zstdtar"})


class ArchiveMounter(Protocol):
    """Mounts an archive file over a staging directory."""

    def mount(self, archive_path: Path, staging_dir: Path) -> Path:
        """Expose the archive contents under ``staging_dir``.

        Returns:
            Root directory of the mounted repository data
        """
        ...


class UnpackMounter:
    """Materializes an archive into the staging directory with shutil.

    Args:
        archive_format: Any format known to ``shutil.unpack_archive``.
            If None, the format is inferred from the archive file name.
    """

    def __init__(self, archive_format: str | None = None) -> None:
        self.archive_format = archive_format

    def mount(self, archive_path: Path, staging_dir: Path) -> Path:
        archive_format = self.archive_format or _guess_format(archive_path)

        # Tar members may not leave staging_dir. shutil's zip unpacking
        # already drops such names and takes no filter.
        options = {}
        if archive_format in TAR_FORMATS:
            options["filter"] = "data"

        shutil.unpack_archive(
            str(archive_path), str(staging_dir), format=archive_format, **options
        )
        return staging_dir


def _guess_format(archive_path: Path) -> str | None:
    name = archive_path.name.lower()
    for format_name, extensions, _ in shutil.get_unpack_formats():
        if any(name.endswith(ext) for ext in extensions):
            return format_name
    return None


class RepositoryFilesystem:
    """Filesystem view of one repository location.

    For plain repositories this is just the directory. For archive-backed
    repositories it also owns the staging directory the archive was mounted
    on, which is removed by :meth:`close`.
    """

    def __init__(
        self,
        root: Path,
        staging_dir: Path | None = None,
        staging: "StagingArea | None" = None,
    ) -> None:
        self.root = root
        self.staging_dir = staging_dir
        self._staging = staging
        self._closed = False

    @property
    def is_staged(self) -> bool:
        return self.staging_dir is not None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self.staging_dir is not None and self._staging is not None:
            self._staging.release(self.staging_dir)

    def __enter__(self) -> "RepositoryFilesystem":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"RepositoryFilesystem(root={str(self.root)!r}, staged={self.is_staged})"


class StagingArea:
    """Allocates private staging directories under a configured root.

    Every mount gets its own directory; nothing is shared between opens of the
    same archive. Live directories are tracked so :meth:`cleanup` can purge
    whatever handles were never closed.
    """

    def __init__(
        self,
        root: Path,
        prefix: str = "repo-pool-siva-",
        mounter: ArchiveMounter | None = None,
    ) -> None:
        self.root = Path(root)
        self.prefix = prefix
        self.mounter = mounter or UnpackMounter()
        self._live: set[Path] = set()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls, settings: PoolSettings, mounter: ArchiveMounter | None = None
    ) -> "StagingArea":
        """Create a staging area from pool settings."""
        if mounter is None:
            mounter = UnpackMounter(settings.archive_format)
        return cls(settings.staging_dir, prefix=settings.staging_prefix, mounter=mounter)

    def create(self) -> Path:
        """Create a new, uniquely named staging directory."""
        self.root.mkdir(parents=True, exist_ok=True)
        staging_dir = Path(tempfile.mkdtemp(prefix=self.prefix, dir=self.root))
        with self._lock:
            self._live.add(staging_dir)
        return staging_dir

    def mount(self, archive_path: Path) -> RepositoryFilesystem:
        """Mount an archive over a fresh staging directory.

        The staging directory is removed again if mounting fails.
        """
        staging_dir = self.create()
        try:
            root = self.mounter.mount(archive_path, staging_dir)
        except BaseException:
            self.release(staging_dir)
            raise

        logger.debug(f"Mounted {archive_path} at {staging_dir}")
        return RepositoryFilesystem(root=root, staging_dir=staging_dir, staging=self)

    def release(self, staging_dir: Path) -> None:
        """Delete a staging directory created by this area."""
        with self._lock:
            self._live.discard(staging_dir)
        shutil.rmtree(staging_dir, ignore_errors=True)
        logger.debug(f"Removed staging directory {staging_dir}")

    def live_directories(self) -> list[Path]:
        """Staging directories that are still owned by open handles."""
        with self._lock:
            return sorted(self._live)

    def cleanup(self) -> int:
        """Remove every staging directory still alive.

        Returns:
            Number of directories removed
        """
        with self._lock:
            leftovers = list(self._live)
            self._live.clear()

        for staging_dir in leftovers:
            shutil.rmtree(staging_dir, ignore_errors=True)

        if leftovers:
            logger.info(f"Removed {len(leftovers)} leftover staging directories")
        return len(leftovers)
