"""CloudKit Web Services server error codes and their client-side meaning."""

from __future__ import annotations

from enum import Enum
from typing import Final

from cloudkit_core.errors import (
    AuthenticationError,
    CloudKitError,
    ConflictError,
    NotFoundError,
    QueryFailedError,
    QuotaExceededError,
    RemoteError,
    RemoteReadError,
    RemoteWriteError,
    ThrottledError,
)
from cloudkit_core.types import AccountStatus, RecordID


class ServerErrorCode(str, Enum):
    """serverErrorCode values returned by CloudKit Web Services."""

    ACCESS_DENIED = "ACCESS_DENIED"
    ATOMIC_ERROR = "ATOMIC_ERROR"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    BAD_REQUEST = "BAD_REQUEST"
    CONFLICT = "CONFLICT"
    EXISTS = "EXISTS"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    NOT_FOUND = "NOT_FOUND"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    THROTTLED = "THROTTLED"
    TRY_AGAIN_LATER = "TRY_AGAIN_LATER"
    VALIDATING_REFERENCE_ERROR = "VALIDATING_REFERENCE_ERROR"
    ZONE_NOT_FOUND = "ZONE_NOT_FOUND"


SERVER_ERROR_DEFAULT_MESSAGES: Final[dict[str, str]] = {
    ServerErrorCode.ACCESS_DENIED.value: "You don't have permission to access the endpoint, record, zone, or database.",
    ServerErrorCode.ATOMIC_ERROR.value: "An atomic batch operation failed.",
    ServerErrorCode.AUTHENTICATION_FAILED.value: "Authentication was rejected.",
    ServerErrorCode.AUTHENTICATION_REQUIRED.value: "The request requires authentication but none was provided.",
    ServerErrorCode.BAD_REQUEST.value: "The request was not valid.",
    ServerErrorCode.CONFLICT.value: "The recordChangeTag value expired.",
    ServerErrorCode.EXISTS.value: "The resource that you attempted to create already exists.",
    ServerErrorCode.INTERNAL_ERROR.value: "An internal error occurred.",
    ServerErrorCode.NOT_FOUND.value: "The resource was not found.",
    ServerErrorCode.QUOTA_EXCEEDED.value: "The request would exceed the user's iCloud storage quota.",
    ServerErrorCode.THROTTLED.value: "The request was throttled. Try again later.",
    ServerErrorCode.TRY_AGAIN_LATER.value: "An internal error occurred. Try again later.",
    ServerErrorCode.VALIDATING_REFERENCE_ERROR.value: "The request violates a validating reference constraint.",
    ServerErrorCode.ZONE_NOT_FOUND.value: "The zone specified in the request was not found.",
}

NOT_FOUND_CODES: Final[frozenset[str]] = frozenset(
    {ServerErrorCode.NOT_FOUND.value, ServerErrorCode.ZONE_NOT_FOUND.value}
)

CONFLICT_CODES: Final[frozenset[str]] = frozenset(
    {ServerErrorCode.CONFLICT.value, ServerErrorCode.EXISTS.value}
)

THROTTLE_CODES: Final[frozenset[str]] = frozenset(
    {ServerErrorCode.THROTTLED.value, ServerErrorCode.TRY_AGAIN_LATER.value}
)

AUTHENTICATION_CODES: Final[frozenset[str]] = frozenset(
    {
        ServerErrorCode.AUTHENTICATION_FAILED.value,
        ServerErrorCode.AUTHENTICATION_REQUIRED.value,
    }
)

ACCOUNT_STATUS_BY_CODE: Final[dict[str, AccountStatus]] = {
    ServerErrorCode.AUTHENTICATION_REQUIRED.value: AccountStatus.NO_ACCOUNT,
    ServerErrorCode.ACCESS_DENIED.value: AccountStatus.RESTRICTED,
    ServerErrorCode.THROTTLED.value: AccountStatus.TEMPORARILY_UNAVAILABLE,
    ServerErrorCode.TRY_AGAIN_LATER.value: AccountStatus.TEMPORARILY_UNAVAILABLE,
    ServerErrorCode.INTERNAL_ERROR.value: AccountStatus.COULD_NOT_DETERMINE,
}

OPERATION_ERRORS: Final[dict[str, type[RemoteError]]] = {
    "read": RemoteReadError,
    "write": RemoteWriteError,
    "query": QueryFailedError,
}


def server_error_message(error_code: str, reason: str | None) -> str:
    """Return the server's reason, or the canonical message for the code.

    Args:
        error_code: serverErrorCode from the response body.
        reason: Free-text reason from the response body, if any.

    Returns:
        str: Message to attach to the raised exception.
    """

    if reason:
        return reason
    return SERVER_ERROR_DEFAULT_MESSAGES.get(
        error_code, f"CloudKit request failed ({error_code})."
    )


def error_for_code(
    error_code: str,
    reason: str | None = None,
    *,
    operation: str = "read",
    record_id: RecordID | None = None,
    retry_after_seconds: float | None = None,
) -> CloudKitError:
    """Build the taxonomy exception for a server error code.

    Args:
        error_code: serverErrorCode from the response body.
        reason: Free-text reason from the response body.
        operation: "read", "write" or "query"; picks the fallback class.
        record_id: Record the error refers to, when known.
        retry_after_seconds: Server-suggested delay for throttling errors.

    Returns:
        CloudKitError: Exception instance ready to raise.
    """

    message = server_error_message(error_code, reason)
    if error_code in NOT_FOUND_CODES:
        return NotFoundError(message, error_code, record_id=record_id)
    if error_code in CONFLICT_CODES:
        return ConflictError(message, error_code)
    if error_code == ServerErrorCode.QUOTA_EXCEEDED.value:
        return QuotaExceededError(message, error_code)
    if error_code in THROTTLE_CODES:
        return ThrottledError(
            message, error_code, retry_after_seconds=retry_after_seconds
        )
    if error_code in AUTHENTICATION_CODES:
        return AuthenticationError(message, error_code)
    return OPERATION_ERRORS.get(operation, RemoteError)(message, error_code)


def account_status_for_code(error_code: str) -> AccountStatus:
    """Map a users/current failure code onto an account status."""

    return ACCOUNT_STATUS_BY_CODE.get(error_code, AccountStatus.UNKNOWN)


HTTP_STATUS_CODES: Final[dict[int, str]] = {
    400: ServerErrorCode.BAD_REQUEST.value,
    401: ServerErrorCode.AUTHENTICATION_FAILED.value,
    403: ServerErrorCode.ACCESS_DENIED.value,
    404: ServerErrorCode.NOT_FOUND.value,
    409: ServerErrorCode.CONFLICT.value,
    412: ServerErrorCode.VALIDATING_REFERENCE_ERROR.value,
    421: ServerErrorCode.AUTHENTICATION_REQUIRED.value,
    429: ServerErrorCode.THROTTLED.value,
    500: ServerErrorCode.INTERNAL_ERROR.value,
    503: ServerErrorCode.TRY_AGAIN_LATER.value,
}


def code_for_status(status: int) -> str:
    """Fallback serverErrorCode for an HTTP error without a JSON body."""

    if status in HTTP_STATUS_CODES:
        return HTTP_STATUS_CODES[status]
    if status >= 500:
        return ServerErrorCode.INTERNAL_ERROR.value
    return ServerErrorCode.BAD_REQUEST.value
