"""Exception types for the repository pool."""

from pathlib import Path


class RepoPoolError(Exception):
    """Base exception for repository pool errors."""


class ConfigurationError(RepoPoolError):
    """Raised when pool settings are invalid."""


class InvalidKindError(RepoPoolError):
    """Raised when a backend carries an unknown repository kind."""

    def __init__(self, kind: object) -> None:
        super().__init__(f"invalid repo kind: {kind!r}")
        self.kind = kind


class AlreadyRegisteredError(RepoPoolError):
    """Raised when registering an id that is already in the pool.

    ``existing_path`` is the location of the backend that owns the id.
    """

    def __init__(self, repo_id: str, existing_path: Path | str) -> None:
        super().__init__(f"the repository is already registered: {existing_path}")
        self.repo_id = repo_id
        self.existing_path = existing_path


class CannotOpenError(RepoPoolError):
    """Raised when a repository could not be opened.

    The underlying failure is chained as ``__cause__``.
    """

    def __init__(self, path: Path | str, reason: str | None = None) -> None:
        message = f"the repository could not be opened: {path}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.path = path


class NotFoundError(RepoPoolError):
    """Raised when a repository id is not present in the pool."""

    def __init__(self, repo_id: str) -> None:
        super().__init__(f"repository id {repo_id} not found in the pool")
        self.repo_id = repo_id


class CanceledError(RepoPoolError):
    """Raised when the query owning an iterator has been canceled."""

    def __init__(self) -> None:
        super().__init__("session canceled")


class InvalidSessionError(RepoPoolError):
    """Raised when a query context does not carry a usable session."""

    def __init__(self, session: object) -> None:
        super().__init__(f"expecting repository pool session, but received: {session!r}")
        self.session = session


class EndOfSequence(StopIteration):
    """Signals that a cursor or row stream has no more items.

    This is a sentinel rather than a failure: it derives from ``StopIteration``
    so pool cursors and row iterators work in ``for`` loops.
    """
