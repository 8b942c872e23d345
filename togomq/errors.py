"""Error taxonomy for the TogoMQ client.

Every failure surfaced by the client is a :class:`TogoMQError` carrying one
of the :class:`ErrorCode` categories.  Transport failures are translated by
:func:`wrap_grpc_error`; locally detected problems (empty topics, bad
configuration) are built directly with :func:`new_error`.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

import grpc


class ErrorCode(str, Enum):
    """Closed set of error categories."""

    CONNECTION = "CONNECTION_ERROR"
    AUTH = "AUTH_ERROR"
    VALIDATION = "VALIDATION_ERROR"
    PUBLISH = "PUBLISH_ERROR"
    SUBSCRIBE = "SUBSCRIBE_ERROR"
    STREAM = "STREAM_ERROR"
    CONFIGURATION = "CONFIG_ERROR"


_STATUS_TO_CODE = {
    grpc.StatusCode.UNAUTHENTICATED: ErrorCode.AUTH,
    grpc.StatusCode.INVALID_ARGUMENT: ErrorCode.VALIDATION,
    grpc.StatusCode.UNAVAILABLE: ErrorCode.CONNECTION,
}


class TogoMQError(Exception):
    """Error raised by the TogoMQ client.

    Args:
        code: Error category.
        message: Human-readable description.
        err: The underlying error, if any.
    """

    def __init__(
        self, code: ErrorCode, message: str, err: Optional[BaseException] = None
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.err = err

    def __str__(self) -> str:
        if self.err is not None:
            return f"[{self.code.value}] {self.message}: {self.err}"
        return f"[{self.code.value}] {self.message}"

    def unwrap(self) -> Optional[BaseException]:
        """Return the underlying error."""
        return self.err


def new_error(
    code: ErrorCode, message: str, err: Optional[BaseException] = None
) -> TogoMQError:
    """Build a :class:`TogoMQError` with its cause chained."""
    error = TogoMQError(code, message, err)
    error.__cause__ = err
    return error


def _status_code(err: BaseException) -> Optional[grpc.StatusCode]:
    # Errors raised by grpc calls are also grpc.Call objects exposing code().
    if not isinstance(err, grpc.RpcError):
        return None
    code = getattr(err, "code", None)
    if not callable(code):
        return None
    status = code()
    return status if isinstance(status, grpc.StatusCode) else None


def _status_details(err: BaseException) -> str:
    details = getattr(err, "details", None)
    if callable(details):
        return details() or ""
    return ""


def wrap_grpc_error(
    err: Optional[BaseException], context: str
) -> Optional[TogoMQError]:
    """Translate a transport failure into a :class:`TogoMQError`.

    Args:
        err: The failure raised by the transport, or *None*.
        context: Description of the operation that failed.

    Returns:
        *None* when *err* is *None*, otherwise the categorised error.
    """
    if err is None:
        return None

    status = _status_code(err)
    if status is None:
        return new_error(ErrorCode.STREAM, context, err)

    code = _STATUS_TO_CODE.get(status, ErrorCode.STREAM)
    return new_error(code, f"{context}: {_status_details(err)}", err)
