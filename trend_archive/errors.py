"""Scrape error taxonomy and the stage result types used by the pipeline."""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    FETCH = "fetch_error"
    PARSE = "parse_error"
    PERSIST = "persist_error"
    UNKNOWN = "unknown_error"


class ScrapeError(Exception):
    """Base exception for failures inside the scrape pipeline."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class FetchError(ScrapeError):
    """Raised on non-success HTTP status, timeout, or transport failure."""

    kind = ErrorKind.FETCH


class ParseError(ScrapeError):
    """Raised when the trending page structure cannot be recognized."""

    kind = ErrorKind.PARSE


class PersistError(ScrapeError):
    """Raised when the archive write fails."""

    kind = ErrorKind.PERSIST


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: Exception

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


def attempt(func: Callable[..., T], *args, **kwargs) -> Result:
    """Call ``func`` and capture its outcome as ``Ok`` or ``Err``."""
    try:
        return Ok(func(*args, **kwargs))
    except Exception as e:
        return Err(e)


def unwrap_or(result: Result, default: T) -> T:
    return result.value if isinstance(result, Ok) else default
