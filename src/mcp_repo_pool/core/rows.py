"""Row iterators over single repositories."""

from typing import Iterator

from git import Commit

from .iterator import Row
from .repository import Repository


class CommitsRowRepoIter:
    """Yields one row per commit reachable from a repository's HEAD.

    Rows are ``(repository_id, hexsha, author, committed_at, summary)`` with
    ``committed_at`` as a unix timestamp. Repositories without a valid HEAD
    produce no rows.
    """

    columns = ("repository_id", "hexsha", "author", "committed_at", "summary")

    def __init__(self, repository: Repository | None = None) -> None:
        self.repository = repository
        self._commits: Iterator[Commit] = iter(())
        if repository is not None and repository.repo.head.is_valid():
            self._commits = repository.repo.iter_commits("HEAD")

    def new_iterator(self, repository: Repository) -> "CommitsRowRepoIter":
        return CommitsRowRepoIter(repository)

    def __iter__(self) -> "CommitsRowRepoIter":
        return self

    def __next__(self) -> Row:
        commit = next(self._commits)
        return (
            self.repository.id,
            commit.hexsha,
            commit.author.name,
            commit.committed_date,
            commit.summary,
        )

    def close(self) -> None:
        self._commits = iter(())
