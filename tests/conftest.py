"""Shared pytest fixtures for mcp-repo-pool tests.

Repositories are real git repositories created with GitPython. Archived
repositories are bare clones packed as tar files carrying the archive suffix,
so the default unpacking mounter can materialize them with format "tar".
"""

import shutil
from pathlib import Path
from typing import Callable, Iterator

import pytest
from git import Actor, Repo
from loguru import logger

from mcp_repo_pool.core.config import PoolSettings
from mcp_repo_pool.core.registry import RepositoryPool

ACTOR = Actor("Pool Tester", "tester@example.com")


def init_repo(path: Path, commits: int = 1) -> Path:
    """Create a git repository at ``path`` with ``commits`` commits."""
    path.mkdir(parents=True, exist_ok=True)
    repo = Repo.init(path)
    try:
        for i in range(commits):
            name = f"file{i}.txt"
            (path / name).write_text(f"content {i}\n")
            repo.index.add([name])
            repo.index.commit(f"commit {i}", author=ACTOR, committer=ACTOR)
    finally:
        repo.close()
    return path


def pack_repo(source: Path, archive_path: Path) -> Path:
    """Pack a bare clone of ``source`` into a tar file at ``archive_path``."""
    archive_path.parent.mkdir(parents=True, exist_ok=True)
    bare_dir = archive_path.parent / f".{archive_path.name}.bare"
    with Repo(source) as repo:
        repo.clone(str(bare_dir), bare=True).close()

    tar_file = shutil.make_archive(str(bare_dir), "tar", root_dir=bare_dir)
    shutil.rmtree(bare_dir)
    Path(tar_file).rename(archive_path)
    return archive_path


@pytest.fixture
def make_repo(tmp_path: Path) -> Callable[..., Path]:
    def _make(name: str, commits: int = 1) -> Path:
        return init_repo(tmp_path / "repos" / name, commits)

    return _make


@pytest.fixture
def make_archive(tmp_path: Path) -> Callable[..., Path]:
    def _make(relative: str, commits: int = 1) -> Path:
        source = init_repo(tmp_path / "sources" / relative.replace("/", "_"), commits)
        return pack_repo(source, tmp_path / "archives" / relative)

    return _make


@pytest.fixture
def settings(tmp_path: Path) -> PoolSettings:
    return PoolSettings(staging_dir=tmp_path / "staging", archive_format="tar")


@pytest.fixture
def pool(settings: PoolSettings) -> RepositoryPool:
    return RepositoryPool(settings)


@pytest.fixture
def git_init() -> Callable[..., Path]:
    return init_repo


@pytest.fixture
def log_warnings() -> Iterator[list[str]]:
    """Messages logged at WARNING or above while the test runs."""
    messages: list[str] = []
    handler_id = logger.add(lambda message: messages.append(str(message)), level="WARNING")
    yield messages
    logger.remove(handler_id)
