from typing import Optional

from pydantic import ValidationError


class QueryServiceError(Exception):
    """The query service reported a failure or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class MalformedResponseError(QueryServiceError):
    """The query service answered with a payload we could not interpret."""


def describe_error(error: BaseException, fallback: str) -> str:
    """
    Message to store on a state slot for a failed operation.

    Malformed payloads collapse to the operation's fallback message; other
    errors keep their own text when they have one.
    """
    if isinstance(error, (MalformedResponseError, ValidationError)):
        return fallback
    if isinstance(error, QueryServiceError):
        return error.message or fallback
    message = str(error).strip()
    return message or fallback
