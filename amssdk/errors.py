"""Error types shared across the SDK."""

from __future__ import annotations

__all__ = [
    "AmsError",
    "AlreadyRunningError",
    "AbortedError",
    "AlreadyExistsError",
    "DontMatchError",
    "FailedError",
    "InProgressError",
    "InvalidArgumentError",
    "InvalidFormatError",
    "InvalidLengthError",
    "MalformedError",
    "NotAllowedError",
    "NotChangedError",
    "NotExecutableError",
    "NotFoundError",
    "NotSupportedError",
    "RequiredError",
    "OperationTimeoutError",
    "UnknownError",
    "ignore_not_found",
    "is_invalid_argument",
    "is_not_allowed",
    "is_not_found",
]


class AmsError(Exception):
    """Base error carrying the subject the error is about."""

    _template = "{what}"

    def __init__(self, what: str = "") -> None:
        self.what = what
        super().__init__(self._message())

    def _message(self) -> str:
        return self._template.format(what=self.what)

    def __str__(self) -> str:
        return self._message()


class AlreadyRunningError(AmsError):
    """An object was started again while it was already running."""

    _template = "Already running"


class AbortedError(AmsError):
    """An operation was aborted."""

    _template = "{what}"


class AlreadyExistsError(AmsError):
    """A resource already exists."""

    _template = "{what} already exists"


class DontMatchError(AmsError):
    """A value does not match the one that was expected."""

    def __init__(self, what: str, got: str, expected: str) -> None:
        self.got = got
        self.expected = expected
        super().__init__(what)

    def _message(self) -> str:
        return f"{self.what} don't match, got {self.got} but expected {self.expected}"


class FailedError(AmsError):
    """An operation has failed."""

    _template = "{what} failed"


class InProgressError(AmsError):
    """An operation is already in progress."""

    _template = "{what} already in progress"


class InvalidArgumentError(AmsError):
    """An invalid argument was given."""

    _template = "argument {what} is invalid"


class InvalidFormatError(AmsError):
    """An argument was given in an invalid format."""

    _template = "{what} invalid format"


class InvalidLengthError(AmsError):
    """An argument has an invalid length."""

    _template = "length of {what} is invalid"


class MalformedError(AmsError):
    """Malformed content was given."""

    _template = "{what} is malformed"


class NotAllowedError(AmsError):
    """An operation is not allowed."""

    _template = "{what} not allowed"


class NotChangedError(AmsError):
    """A value has not changed."""

    _template = "{what} not changed"


class NotExecutableError(AmsError):
    """A file lacks execute permission."""

    _template = "{what} not executable"


class NotFoundError(AmsError):
    """A resource does not exist."""

    _template = "{what} not found"


class NotSupportedError(AmsError):
    """A functionality is not supported."""

    _template = "{what} not supported"


class RequiredError(AmsError):
    """A required parameter is missing."""

    _template = "{what} is required"


class OperationTimeoutError(AmsError):
    """An operation timed out."""

    _template = "{what} timed out"


class UnknownError(AmsError):
    """A parameter was unknown."""

    _template = "{what} is unknown"


def ignore_not_found(err: BaseException | None) -> BaseException | None:
    """Return None when err is a NotFoundError, otherwise err itself."""
    if isinstance(err, NotFoundError):
        return None
    return err


def is_invalid_argument(err: BaseException | None) -> bool:
    """Tell whether err is an InvalidArgumentError."""
    return isinstance(err, InvalidArgumentError)


def is_not_allowed(err: BaseException | None) -> bool:
    """Tell whether err is a NotAllowedError."""
    return isinstance(err, NotAllowedError)


def is_not_found(err: BaseException | None) -> bool:
    """Tell whether err is a NotFoundError."""
    return isinstance(err, NotFoundError)