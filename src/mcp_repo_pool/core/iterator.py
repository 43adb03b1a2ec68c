"""Row iteration across every repository of a pool.

A query supplies a :class:`RowRepoIter`, a factory able to build a row
iterator for a single repository. :func:`new_row_repo_iter` drives it over
all repositories of the session's pool and exposes the result as one flat,
cancelable row stream.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Protocol, runtime_checkable

from loguru import logger

from .exceptions import CanceledError, EndOfSequence, InvalidSessionError
from .registry import RepositoryIter, RepositoryPool
from .repository import Repository

Row = tuple[Any, ...]

# A sub-iterator failing this many times in a row is treated as broken.
MAX_CONSECUTIVE_ROW_ERRORS = 100


@runtime_checkable
class RowRepoIter(Protocol):
    """Per-repository row iterator factory.

    ``new_iterator`` is called each time a repository is about to be
    iterated and returns an iterator over its rows, ending with
    ``StopIteration``. That iterator is closed once the repository is done.
    ``close`` on the factory itself releases resources shared by all
    repositories.
    """

    def new_iterator(self, repository: Repository) -> "RowRepoIter": ...

    def __next__(self) -> Row: ...

    def close(self) -> None: ...


@dataclass
class Session:
    """Per-connection state shared by the queries of one client."""

    pool: RepositoryPool
    skip_git_errors: bool = False


@dataclass
class QueryContext:
    """Execution context of one query: its session and cancellation signal."""

    session: Session | None
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def canceled(self) -> bool:
        return self.cancel_event.is_set()


class IterState(str, Enum):
    NO_ACTIVE_REPO = "no_active_repo"
    ACTIVE_REPO = "active_repo"
    DONE = "done"


class CompositeRowIter:
    """Flattened row stream over every repository yielded by a cursor.

    Repositories are visited in pool order and their rows are emitted
    contiguously, with no marker between repositories. When
    ``skip_git_errors`` is set, a repository that fails to open is skipped
    and a row that fails is dropped, iteration continuing with the same
    repository; otherwise the first failure ends the stream.

    ``next()`` and ``close()`` are serialized by one lock, so ``close()``
    may be called from another thread while a ``next()`` is running.
    """

    def __init__(
        self,
        ctx: QueryContext,
        repositories: RepositoryIter,
        iter_factory: RowRepoIter,
        skip_git_errors: bool = False,
        max_row_errors: int = MAX_CONSECUTIVE_ROW_ERRORS,
    ) -> None:
        self.ctx = ctx
        self.repositories = repositories
        self.iter_factory = iter_factory
        self.skip_git_errors = skip_git_errors
        self.max_row_errors = max_row_errors

        self._mu = threading.Lock()
        self._current: RowRepoIter | None = None
        self._current_repo: Repository | None = None
        self._state = IterState.NO_ACTIVE_REPO
        self._row_errors = 0
        self._closed = False

    @property
    def state(self) -> IterState:
        return self._state

    def __iter__(self) -> Iterator[Row]:
        return self

    def __next__(self) -> Row:
        with self._mu:
            while True:
                if self.ctx.canceled:
                    raise CanceledError()

                if self._state == IterState.DONE:
                    raise EndOfSequence()

                if self._state == IterState.NO_ACTIVE_REPO:
                    if not self._open_next_repository():
                        continue

                try:
                    row = next(self._current)
                except StopIteration:
                    self._finish_current()
                    continue
                except Exception as e:
                    if not self.skip_git_errors:
                        self._finish_current()
                        self._state = IterState.DONE
                        raise

                    self._row_errors += 1
                    if self._row_errors >= self.max_row_errors:
                        logger.warning(
                            f"Skipping rest of repository {self._current_repo.id} after "
                            f"{self._row_errors} consecutive row errors: {e}"
                        )
                        self._finish_current()
                    else:
                        logger.warning(f"Skipping row of repository {self._current_repo.id}: {e}")
                    continue

                self._row_errors = 0
                return row

    def _open_next_repository(self) -> bool:
        """Pull the next repository and build its row iterator.

        Returns:
            True if a repository became active, False if it was skipped
        """
        try:
            repository = next(self.repositories)
        except StopIteration:
            self._state = IterState.DONE
            raise EndOfSequence() from None
        except Exception as e:
            if not self.skip_git_errors:
                self._state = IterState.DONE
                raise

            logger.warning(f"Skipping repository that could not be opened: {e}")
            return False

        try:
            self._current = self.iter_factory.new_iterator(repository)
        except Exception as e:
            repository.close()
            if not self.skip_git_errors:
                self._state = IterState.DONE
                raise

            logger.warning(f"Skipping repository {repository.id}: {e}")
            return False

        self._current_repo = repository
        self._state = IterState.ACTIVE_REPO
        return True

    def _finish_current(self) -> None:
        current, repository = self._current, self._current_repo
        self._current = None
        self._current_repo = None
        self._state = IterState.NO_ACTIVE_REPO
        self._row_errors = 0
        _release(current, repository)

    def close(self) -> None:
        """Close the active repository iterator, if any, and the factory."""
        with self._mu:
            if self._closed:
                return
            self._closed = True

            current, repository = self._current, self._current_repo
            self._current = None
            self._current_repo = None
            self._state = IterState.DONE
            _release(current, repository)

            self.repositories.close()
            self.iter_factory.close()

    def __enter__(self) -> "CompositeRowIter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def _release(current: RowRepoIter | None, repository: Repository | None) -> None:
    # Close errors are ignored.
    if current is not None:
        try:
            current.close()
        except Exception as e:
            logger.debug(f"Ignoring error closing repository iterator: {e}")
    if repository is not None:
        repository.close()


def new_row_repo_iter(ctx: QueryContext, iter_factory: RowRepoIter) -> CompositeRowIter:
    """Create a row iterator over every repository of the session's pool.

    Args:
        ctx: Query context; must carry a :class:`Session`
        iter_factory: Builds the row iterator of each repository

    Raises:
        InvalidSessionError: If the context has no usable session
    """
    session = ctx.session
    if not isinstance(session, Session):
        raise InvalidSessionError(session)

    return CompositeRowIter(
        ctx,
        session.pool.new_cursor(),
        iter_factory,
        skip_git_errors=session.skip_git_errors,
    )
