"""Typed exceptions for CloudKit service failures.

Every failure surfaced by the service layer is a CloudKitError subclass.
Remote failures are wrapped, never retried, and keep the upstream server
error code when one was reported.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cloudkit_core.types import RecordID


class CloudKitError(Exception):
    """Base exception for CloudKit service failures.

    Attributes:
        server_error_code: Optional upstream server error code.
    """

    default_message = "CloudKit operation failed."

    def __init__(
        self, message: str | None = None, server_error_code: str | None = None
    ):
        super().__init__(message or self.default_message)
        self.server_error_code = server_error_code


# ============================================================
# Account availability
# ============================================================


class AccountError(CloudKitError):
    """The cloud account is not available for use."""

    default_message = "iCloud account status is unknown. Please check your settings."


class AccountNotFoundError(AccountError):
    """No account is signed in on this device or session."""

    default_message = "iCloud account not found. Please sign in to iCloud in Settings."


class AccountNotDeterminedError(AccountError):
    """Account status could not be determined."""

    default_message = (
        "iCloud account status could not be determined. Try again later."
    )


class AccountRestrictedError(AccountError):
    """Account access is restricted by policy."""

    default_message = "iCloud access is restricted. Some features may be unavailable."


class AccountTemporarilyUnavailableError(AccountError):
    """Account exists but cannot be used right now."""

    default_message = (
        "iCloud account is temporarily unavailable. Please try again later."
    )


class AccountUnknownError(AccountError):
    """The container reported a status this library does not recognize."""


# ============================================================
# Record conversion and lookup
# ============================================================


class DecodeError(CloudKitError, ValueError):
    """A fetched record could not be converted into the requested entity."""

    default_message = "Failed to initialize the CloudKit model."

    def __init__(
        self,
        message: str | None = None,
        server_error_code: str | None = None,
        record_id: RecordID | None = None,
    ):
        super().__init__(message, server_error_code)
        self.record_id = record_id


class NotFoundError(CloudKitError, LookupError):
    """No record (or subscription) exists with the requested identifier."""

    default_message = "The requested CloudKit record does not exist."

    def __init__(
        self,
        message: str | None = None,
        server_error_code: str | None = None,
        record_id: RecordID | None = None,
    ):
        super().__init__(message, server_error_code)
        self.record_id = record_id


# ============================================================
# Remote store failures
# ============================================================


class RemoteError(CloudKitError):
    """Transport, quota or conflict failure reported by the remote store."""


class RemoteReadError(RemoteError):
    """A single-record lookup failed for a reason other than absence."""

    default_message = "Failed to read the CloudKit record."


class RemoteWriteError(RemoteError):
    """The remote store rejected a save or delete."""

    default_message = "Failed to write the CloudKit record."


class ConflictError(RemoteWriteError):
    """The write conflicts with the server's copy of the record."""

    default_message = "The record was changed on the server."


class QueryFailedError(RemoteError):
    """A multi-record query failed."""

    default_message = "The CloudKit query failed. Please try again."


class RemoteConnectionError(RemoteError, ConnectionError):
    """The remote store could not be reached."""

    default_message = "Could not connect to CloudKit."


class AuthenticationError(RemoteError):
    """Credentials were missing or rejected by the remote store."""

    default_message = "CloudKit authentication failed."


class QuotaExceededError(RemoteError):
    """The request would exceed the container's storage quota."""

    default_message = "CloudKit storage quota exceeded."


class ThrottledError(RemoteError):
    """The remote store asked the client to slow down.

    retry_after_seconds is informational only; this library never retries.
    """

    default_message = "CloudKit is throttling requests. Please try again later."

    def __init__(
        self,
        message: str | None = None,
        server_error_code: str | None = None,
        retry_after_seconds: float | None = None,
    ):
        super().__init__(message, server_error_code)
        self.retry_after_seconds = retry_after_seconds


def as_remote_error(
    exc: BaseException, error_type: type[RemoteError] = RemoteError
) -> CloudKitError:
    """Return exc unchanged if it already belongs to the taxonomy, else wrap it.

    The wrapped error keeps the original as __cause__.
    """
    if isinstance(exc, CloudKitError):
        return exc
    wrapped = error_type(str(exc) or None)
    wrapped.__cause__ = exc
    return wrapped


@contextmanager
def translate_errors(
    error_type: type[RemoteError] = RemoteError,
) -> Iterator[None]:
    """Re-raise foreign exceptions from the wrapped block as error_type.

    CloudKitError subclasses pass through untouched.
    """
    try:
        yield
    except CloudKitError:
        raise
    except Exception as exc:
        raise error_type(str(exc) or None) from exc
