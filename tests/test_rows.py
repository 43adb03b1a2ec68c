"""Tests for the commit row iterator driven across a pool."""

from mcp_repo_pool.core.iterator import QueryContext, Session, new_row_repo_iter
from mcp_repo_pool.core.registry import Backend
from mcp_repo_pool.core.rows import CommitsRowRepoIter


def test_commits_across_plain_and_archived_repositories(pool, make_repo, make_archive, tmp_path):
    pool.register_directory(make_repo("plain", commits=2), "plain")
    make_archive("packed.siva", commits=3)
    pool.register_archive_tree(tmp_path / "archives")

    ctx = QueryContext(Session(pool))
    with new_row_repo_iter(ctx, CommitsRowRepoIter()) as row_iter:
        rows = list(row_iter)

    assert [row[0] for row in rows] == ["plain"] * 2 + ["packed.siva"] * 3
    assert rows[0][4] == "commit 1"
    assert rows[1][4] == "commit 0"
    assert all(row[2] == "Pool Tester" for row in rows)
    assert all(len(row[1]) == 40 for row in rows)
    assert pool.staging.live_directories() == []


def test_empty_repository_has_no_rows(pool, make_repo):
    pool.register_directory(make_repo("empty", commits=0), "empty")
    pool.register_directory(make_repo("full", commits=1), "full")

    with new_row_repo_iter(QueryContext(Session(pool)), CommitsRowRepoIter()) as row_iter:
        rows = list(row_iter)

    assert [row[0] for row in rows] == ["full"]


def test_broken_repository_skipped(pool, make_repo, tmp_path):
    pool.register(Backend(id="gone", path=tmp_path / "gone"))
    pool.register_directory(make_repo("full", commits=1), "full")

    ctx = QueryContext(Session(pool, skip_git_errors=True))
    with new_row_repo_iter(ctx, CommitsRowRepoIter()) as row_iter:
        rows = list(row_iter)

    assert len(rows) == 1
    assert CommitsRowRepoIter.columns[0] == "repository_id"
