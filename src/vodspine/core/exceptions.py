"""Custom exceptions.

vodspine uses a hierarchy of exceptions so callers can tell a stream that
ended from a unit of work that gave up:

Example:
    >>> from vodspine.core.exceptions import TerminalFetchError, FetchError
    >>> isinstance(TerminalFetchError("gone", status=404), FetchError)
    True
    >>> try:
    ...     raise CheckpointNotFoundError("videos.txt")
    ... except NotFoundError as e:
    ...     print(f"Caught: {type(e).__name__}")
    Caught: CheckpointNotFoundError
"""

from __future__ import annotations


class VodSpineError(Exception):
    """Base exception for vodspine.

    Example:
        >>> from vodspine.core.exceptions import VodSpineError
        >>> e = VodSpineError("something went wrong")
        >>> str(e)
        'something went wrong'
    """


class ConfigurationError(VodSpineError):
    """Configuration is invalid."""


class NotFoundError(VodSpineError):
    """Requested resource not found."""


class CheckpointError(VodSpineError):
    """A checkpoint could not be read or written."""


class CheckpointNotFoundError(CheckpointError, NotFoundError):
    """No checkpoint has been saved under the requested name.

    Example:
        >>> from vodspine.core.exceptions import CheckpointNotFoundError
        >>> err = CheckpointNotFoundError("discovery-state")
        >>> err.name
        'discovery-state'
    """

    def __init__(self, name: str) -> None:
        super().__init__(f"No checkpoint named {name!r}")
        self.name = name


class FetchError(VodSpineError):
    """A remote request did not produce a usable page.

    Attributes:
        url: The URL that was requested.
        status: HTTP status of the last response, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class TerminalFetchError(FetchError):
    """The stream cannot continue (404, invalid pagination).

    Only the cursor that hit it stops; sibling streams keep going.
    """


class RetriesExhaustedError(FetchError):
    """The retry cap was reached without a successful response.

    Example:
        >>> from vodspine.core.exceptions import RetriesExhaustedError
        >>> err = RetriesExhaustedError("https://x", attempts=16, status=503)
        >>> err.attempts
        16
    """

    def __init__(
        self,
        url: str,
        *,
        attempts: int,
        status: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            f"Gave up on {url} after {attempts} attempts (last status: {status})",
            url=url,
            status=status,
        )
        self.attempts = attempts
        self.cause = cause


class MalformedResponseError(FetchError):
    """A response was received but lacks the expected structure."""


class InvalidPhaseTransitionError(VodSpineError):
    """A crawl tried to move between phases the transition table forbids."""


__all__ = [
    "VodSpineError",
    "ConfigurationError",
    "NotFoundError",
    "CheckpointError",
    "CheckpointNotFoundError",
    "FetchError",
    "TerminalFetchError",
    "RetriesExhaustedError",
    "MalformedResponseError",
    "InvalidPhaseTransitionError",
]
