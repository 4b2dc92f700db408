"""Exceptions raised by the stores and lockers."""

from __future__ import annotations

from collections.abc import Iterable


class HTTPError(Exception):
    """An error that carries the HTTP status code a server should answer with."""

    default_message = "internal server error"
    default_status_code = 500

    def __init__(self, message: str | None = None, status_code: int | None = None) -> None:
        self.message = self.default_message if message is None else message
        self.status_code = self.default_status_code if status_code is None else status_code
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class FileLockedError(HTTPError):
    """The upload is locked by another request."""

    default_message = "file currently locked"
    default_status_code = 423


class NotFoundError(HTTPError):
    """The upload does not exist."""

    default_message = "upload not found"
    default_status_code = 404


class MultiError(Exception):
    """Several errors that occurred together, reported as one."""

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors = list(errors)
        lines = "".join(f"\t{err}\n" for err in self.errors)
        self.message = f"Multiple errors occurred:\n{lines}"
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class S3ServiceError(Exception):
    """An error reported by the S3 service, identified by its code."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


def is_s3_error(err: BaseException | None, code: str) -> bool:
    """Tell whether ``err`` is an S3 service error with the given code."""
    return isinstance(err, S3ServiceError) and err.code == code