#!/usr/bin/env python3
"""Smoke check for the repository pool against real directories.

Scans a directory tree of plain repositories and, optionally, a tree of
archived repositories, then walks every commit of the pool once.

Usage:
    uv run python scripts/check_repo_pool.py REPOS_DIR [ARCHIVES_DIR] [--skip-git-errors]
"""

import sys
import tempfile
import time
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from mcp_repo_pool.core import (
    CommitsRowRepoIter,
    PoolSettings,
    QueryContext,
    RepositoryPool,
    Session,
    new_row_repo_iter,
)


def check_pool(repos_dir: Path, archives_dir: Path | None, skip_git_errors: bool) -> None:
    print("=" * 60)
    print("Checking Repository Pool")
    print("=" * 60)

    with tempfile.TemporaryDirectory() as staging_dir:
        settings = PoolSettings(staging_dir=Path(staging_dir), skip_git_errors=skip_git_errors)
        pool = RepositoryPool(settings)

        print(f"\n1. Scanning repositories in: {repos_dir}")
        added = pool.register_directory_tree(repos_dir)
        print(f"   Registered {len(added)} repositories")

        if archives_dir is not None:
            print(f"\n2. Scanning archives in: {archives_dir}")
            added = pool.register_archive_tree(archives_dir)
            print(f"   Registered {len(added)} archived repositories")

        print(f"\n3. Walking commits of {len(pool)} repositories...")
        started = time.monotonic()
        per_repo: dict[str, int] = {}

        ctx = QueryContext(Session(pool, skip_git_errors=settings.skip_git_errors))
        with new_row_repo_iter(ctx, CommitsRowRepoIter()) as row_iter:
            for row in row_iter:
                per_repo[row[0]] = per_repo.get(row[0], 0) + 1

        elapsed = time.monotonic() - started
        for repo_id, count in per_repo.items():
            print(f"   - {repo_id}: {count} commits")
        print(f"   {sum(per_repo.values())} commits in {elapsed:.2f}s")

        leftovers = pool.staging.live_directories()
        assert not leftovers, f"staging directories left behind: {leftovers}"
        print("   ✓ No staging directories left behind")

    print("\n" + "=" * 60)
    print("Pool check passed! ✓")
    print("=" * 60)


def main() -> None:
    args = [a for a in sys.argv[1:] if a != "--skip-git-errors"]
    if not args:
        print(__doc__)
        sys.exit(2)

    archives_dir = Path(args[1]) if len(args) > 1 else None
    check_pool(Path(args[0]), archives_dir, "--skip-git-errors" in sys.argv)


if __name__ == "__main__":
    main()
