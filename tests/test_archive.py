"""Tests for archive staging and repository handles."""

import io
import shutil
import tarfile
import zipfile
from pathlib import Path

import pytest

from mcp_repo_pool.core.archive import RepositoryFilesystem, StagingArea, UnpackMounter
from mcp_repo_pool.core.exceptions import CannotOpenError
from mcp_repo_pool.core.registry import Backend, RepositoryKind
from mcp_repo_pool.core.repository import Repository


class FailingMounter:
    def mount(self, archive_path: Path, staging_dir: Path) -> Path:
        raise OSError(f"cannot mount {archive_path}")


@pytest.fixture
def staging(settings) -> StagingArea:
    return StagingArea.from_settings(settings)


class TestStagingArea:
    def test_each_directory_is_unique(self, staging, settings) -> None:
        first = staging.create()
        second = staging.create()

        assert first != second
        assert first.parent == settings.staging_dir
        assert first.name.startswith(settings.staging_prefix)
        assert staging.live_directories() == sorted([first, second])

    def test_release_removes_directory(self, staging) -> None:
        staging_dir = staging.create()
        (staging_dir / "data").write_text("x")

        staging.release(staging_dir)

        assert not staging_dir.exists()
        assert staging.live_directories() == []

    def test_cleanup_removes_leftovers(self, staging) -> None:
        dirs = [staging.create() for _ in range(3)]

        assert staging.cleanup() == 3
        assert not any(d.exists() for d in dirs)
        assert staging.cleanup() == 0

    def test_failed_mount_leaves_nothing_behind(self, settings, tmp_path) -> None:
        staging = StagingArea.from_settings(settings, mounter=FailingMounter())

        with pytest.raises(OSError):
            staging.mount(tmp_path / "r.siva")

        assert staging.live_directories() == []
        assert list(settings.staging_dir.iterdir()) == []

    def test_unpack_mounter_uses_configured_format(self, make_archive, tmp_path) -> None:
        archive = make_archive("r1.siva")
        target = tmp_path / "target"
        target.mkdir()

        root = UnpackMounter("tar").mount(archive, target)

        assert root == target
        assert (target / "HEAD").is_file()

    def test_unpack_mounter_unknown_format(self, make_archive, tmp_path) -> None:
        archive = make_archive("r1.siva")

        with pytest.raises(Exception):
            UnpackMounter().mount(archive, tmp_path)

    def test_unpack_mounter_infers_tar_from_name(self, make_archive, tmp_path) -> None:
        tar_path = make_archive("r1.siva").rename(tmp_path / "r1.tar")
        target = tmp_path / "target"
        target.mkdir()

        UnpackMounter().mount(tar_path, target)

        assert (target / "HEAD").is_file()

    def test_tar_member_cannot_leave_staging(self, tmp_path) -> None:
        archive = tmp_path / "evil.siva"
        payload = b"owned\n"
        with tarfile.open(archive, "w") as tar:
            member = tarfile.TarInfo("../escaped.txt")
            member.size = len(payload)
            tar.addfile(member, io.BytesIO(payload))
        target = tmp_path / "stage" / "s1"
        target.mkdir(parents=True)

        with pytest.raises(tarfile.TarError):
            UnpackMounter("tar").mount(archive, target)

        assert not (tmp_path / "stage" / "escaped.txt").exists()

    def test_zip_member_cannot_leave_staging(self, tmp_path) -> None:
        archive = tmp_path / "evil.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("../escaped.txt", "owned\n")
            zf.writestr("HEAD", "ref: refs/heads/master\n")
        target = tmp_path / "stage" / "s1"
        target.mkdir(parents=True)

        UnpackMounter().mount(archive, target)

        assert (target / "HEAD").is_file()
        assert not (tmp_path / "stage" / "escaped.txt").exists()


class TestRepositoryFilesystem:
    def test_plain_view_has_no_staging(self, tmp_path) -> None:
        with RepositoryFilesystem(tmp_path) as fs:
            assert fs.root == tmp_path
            assert not fs.is_staged
        assert tmp_path.exists()

    def test_archive_view_owns_staging(self, pool, make_archive) -> None:
        backend = Backend(id="r1", path=make_archive("r1.siva"), kind=RepositoryKind.ARCHIVE)

        fs = backend.filesystem(pool.staging)
        assert fs.is_staged
        assert (fs.root / "HEAD").is_file()

        fs.close()
        assert not fs.staging_dir.exists()
        fs.close()

    def test_archive_views_are_not_shared(self, pool, make_archive) -> None:
        backend = Backend(id="r1", path=make_archive("r1.siva"), kind=RepositoryKind.ARCHIVE)

        with backend.filesystem(pool.staging) as first, backend.filesystem(pool.staging) as second:
            assert first.staging_dir != second.staging_dir

    def test_unmountable_archive(self, pool, tmp_path) -> None:
        bogus = tmp_path / "bogus.siva"
        bogus.write_bytes(b"not an archive")
        backend = Backend(id="bogus", path=bogus, kind=RepositoryKind.ARCHIVE)

        with pytest.raises(CannotOpenError, match="bogus.siva"):
            backend.filesystem(pool.staging)
        assert pool.staging.live_directories() == []

    def test_escaping_archive_is_rejected(self, pool, settings, tmp_path) -> None:
        archive = tmp_path / "evil.siva"
        payload = b"owned\n"
        with tarfile.open(archive, "w") as tar:
            member = tarfile.TarInfo("../escaped.txt")
            member.size = len(payload)
            tar.addfile(member, io.BytesIO(payload))
        backend = Backend(id="evil", path=archive, kind=RepositoryKind.ARCHIVE)

        with pytest.raises(CannotOpenError, match="evil.siva"):
            backend.filesystem(pool.staging)

        assert not (settings.staging_dir / "escaped.txt").exists()
        assert pool.staging.live_directories() == []


class TestRepository:
    def test_from_path(self, make_repo) -> None:
        path = make_repo("plain")
        with Repository.from_path("plain", path) as repository:
            assert repository.id == "plain"
            assert not repository.repo.bare
            assert repository.filesystem.root == path
        assert repository.closed

    def test_archive_open_creates_private_staging(self, pool, make_archive) -> None:
        backend = Backend(id="r1", path=make_archive("r1.siva"), kind=RepositoryKind.ARCHIVE)

        first = backend.open(pool.staging)
        second = backend.open(pool.staging)
        assert first.filesystem.staging_dir != second.filesystem.staging_dir
        assert len(pool.staging.live_directories()) == 2

        first.close()
        second.close()
        assert pool.staging.live_directories() == []

    def test_archive_that_is_not_a_repository(self, pool, tmp_path) -> None:
        content = tmp_path / "content"
        content.mkdir()
        (content / "hello.txt").write_text("hi\n")
        tar_file = shutil.make_archive(str(tmp_path / "plain"), "tar", root_dir=content)
        archive = Path(tar_file).rename(tmp_path / "plain.siva")

        backend = Backend(id="plain", path=archive, kind=RepositoryKind.ARCHIVE)
        with pytest.raises(CannotOpenError):
            backend.open(pool.staging)

        assert pool.staging.live_directories() == []

    def test_close_releases_staging_when_git_close_fails(
        self, pool, make_archive, monkeypatch
    ) -> None:
        backend = Backend(id="r1", path=make_archive("r1.siva"), kind=RepositoryKind.ARCHIVE)
        repository = backend.open(pool.staging)
        staging_dir = repository.filesystem.staging_dir

        def broken_close():
            raise OSError("object database busy")

        monkeypatch.setattr(repository.repo, "close", broken_close)

        with pytest.raises(OSError, match="object database busy"):
            repository.close()

        assert repository.closed
        assert not staging_dir.exists()
        assert pool.staging.live_directories() == []
