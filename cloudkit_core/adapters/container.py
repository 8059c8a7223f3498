"""Remote container adapter protocol.

Implemented by: cloudkit_web.CloudKitWebContainer (reference), or any
backend that can store records and run queries.

Responsible for every round trip to the cloud database: account status,
user identity, single-record reads and writes, queries and subscription
registration. The container is a long-lived, shared handle; the service
layer holds no other state.

Design:
    await container.fetch(RecordID("abc"))        -> Record
    await container.save(record)                   -> Record
    await container.delete(RecordID("abc"))        -> RecordID
    container.start_query(query, matched, done)    -> QueryOperation

Queries are callback-driven: start_query() returns immediately and the
container later awaits record_matched once per record followed by exactly
one query_finished. cloudkit_core.stream turns this into async iteration.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from cloudkit_core.types import (
    AccountStatus,
    Participant,
    QueryDescriptor,
    Record,
    RecordID,
    Subscription,
)

RecordMatched = Callable[[RecordID, Record | Exception], Awaitable[None]]
"""Per-record callback: the matched record, or the error fetching it."""

QueryFinished = Callable[[Exception | None], Awaitable[None]]
"""Final callback: None on success, the failure otherwise."""


@runtime_checkable
class QueryOperation(Protocol):
    """Handle on an in-flight query started by RemoteContainer.start_query()."""

    def cancel(self) -> None:
        """Stop the operation.

        After cancel() returns the container must not invoke either callback
        again. Cancelling a finished operation is a no-op.
        """
        ...


@runtime_checkable
class RemoteContainer(Protocol):
    """Stores records and runs queries against the cloud database.

    Principles:
    - Every method is one remote round trip; no retries, no caching.
    - Records cross the boundary by value; callers never share mutable state
      with the container.
    - Missing records raise cloudkit_core.errors.NotFoundError. Other failures
      raise RemoteError subclasses (or any exception, which the service wraps).
    """

    async def account_status(self) -> AccountStatus:
        """Report whether a usable account is signed in."""
        ...

    async def current_user_record_id(self) -> RecordID:
        """Return the record id identifying the current user."""
        ...

    async def fetch_participant(self, user_record_id: RecordID) -> Participant:
        """Look up the identity behind a user record id.

        Args:
            user_record_id: The user's record id.

        Returns:
            Participant whose name_components is None when withheld.
        """
        ...

    async def save(self, record: Record) -> Record:
        """Insert or overwrite a record.

        Returns:
            The stored record including server-assigned fields.
        """
        ...

    async def fetch(self, record_id: RecordID) -> Record:
        """Fetch a single record by id.

        Raises:
            NotFoundError: No record exists with this id.
        """
        ...

    async def delete(self, record_id: RecordID) -> RecordID:
        """Delete a record by id and return the id that was removed.

        Raises:
            NotFoundError: No record exists with this id.
        """
        ...

    def start_query(
        self,
        query: QueryDescriptor,
        record_matched: RecordMatched,
        query_finished: QueryFinished,
    ) -> QueryOperation:
        """Start a single query operation.

        Matches are reported in the order the store sorted them, at most
        query.results_limit of them, and only from this one operation (no
        follow-up pages).

        Args:
            query: What to fetch and how to order it.
            record_matched: Awaited once per matched record, in order.
            query_finished: Awaited once after the last match, or on failure.

        Returns:
            A handle whose cancel() stops further callbacks.
        """
        ...

    async def save_subscription(self, subscription: Subscription) -> Subscription:
        """Register a query subscription with the notification system."""
        ...

    async def delete_subscription(self, subscription_id: str) -> str:
        """Remove a subscription and return its id."""
        ...

    async def list_subscriptions(self) -> list[Subscription]:
        """Return every subscription registered in the database."""
        ...
