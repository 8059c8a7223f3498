"""Service facade over a RemoteContainer.

CloudKitService is the single entry point applications use. Every method
is one remote round trip (or, for read_many, one query operation) and
surfaces failures as CloudKitError subclasses; nothing is retried and no
result is cached.

Usage:
    service = CloudKitService(container, codec=entity_codec(Task))
    await service.check_account()
    saved = await service.create(task)
    open_tasks = await service.read_many(
        QueryDescriptor("Task", where("status", "open"), sort_keys("createdAt:desc"))
    )

The reactive variant of every operation is available through service.rx.
"""

from __future__ import annotations

import logging
from functools import cached_property
from typing import TYPE_CHECKING, Any, TypeVar

from cloudkit_core.adapters.codec import (
    RecordCodec,
    RecordPassthroughCodec,
    decode_record,
)
from cloudkit_core.adapters.container import RemoteContainer
from cloudkit_core.adapters.notify import PermissionAuthority
from cloudkit_core.errors import (
    AccountError,
    AccountNotDeterminedError,
    AccountNotFoundError,
    AccountRestrictedError,
    AccountTemporarilyUnavailableError,
    AccountUnknownError,
    RemoteReadError,
    RemoteWriteError,
    translate_errors,
)
from cloudkit_core.stream import QueryStreamAdapter
from cloudkit_core.types import (
    AccountStatus,
    NotificationOption,
    QueryDescriptor,
    Record,
    RecordID,
    Subscription,
    UserIdentity,
)

if TYPE_CHECKING:
    from cloudkit_core.reactive import ReactiveCloudKitService

logger = logging.getLogger(__name__)

E = TypeVar("E")

ACCOUNT_STATUS_ERRORS: dict[AccountStatus, type[AccountError]] = {
    AccountStatus.NO_ACCOUNT: AccountNotFoundError,
    AccountStatus.COULD_NOT_DETERMINE: AccountNotDeterminedError,
    AccountStatus.RESTRICTED: AccountRestrictedError,
    AccountStatus.TEMPORARILY_UNAVAILABLE: AccountTemporarilyUnavailableError,
    AccountStatus.UNKNOWN: AccountUnknownError,
}


def account_error_for(status: AccountStatus) -> AccountError | None:
    """Return the error describing an unusable account, or None if available."""
    if status is AccountStatus.AVAILABLE:
        return None
    return ACCOUNT_STATUS_ERRORS.get(status, AccountUnknownError)()


class CloudKitService:
    """Async CRUD, query, identity and subscription calls on one container.

    The container is a shared, long-lived handle passed in by the caller;
    the service itself is stateless and safe to use from concurrent tasks.

    Args:
        container: The remote container every call is delegated to.
        codec: Default codec for entity conversion. Defaults to passing raw
            Records through.
        permissions: Authority consulted by request_notification_permission().
    """

    def __init__(
        self,
        container: RemoteContainer,
        *,
        codec: RecordCodec[Any] | None = None,
        permissions: PermissionAuthority | None = None,
    ) -> None:
        self.container = container
        self.codec: RecordCodec[Any] = codec or RecordPassthroughCodec()
        self.permissions = permissions

    @cached_property
    def rx(self) -> ReactiveCloudKitService:
        """Observable-returning variants of every operation."""
        from cloudkit_core.reactive import ReactiveCloudKitService

        return ReactiveCloudKitService(self)

    # ============================================================
    # Account and user identity
    # ============================================================

    async def account_status(self) -> AccountStatus:
        """Current account status, fetched fresh on every call."""
        with translate_errors():
            return await self.container.account_status()

    async def check_account(self) -> bool:
        """Return True if a usable account is signed in.

        Raises:
            AccountError: The specific subclass matching the reported status.
        """
        status = await self.account_status()
        error = account_error_for(status)
        if error is not None:
            logger.debug("Account unavailable: %s", status.value)
            raise error
        return True

    async def get_user_id(self) -> str:
        """Record name identifying the current user."""
        with translate_errors():
            record_id = await self.container.current_user_record_id()
        return record_id.record_name

    async def get_user_information(self) -> UserIdentity:
        """Current user's record name and, when visible, display name.

        A withheld name is expected (privacy settings) and yields
        name=None rather than an error.
        """
        with translate_errors():
            record_id = await self.container.current_user_record_id()
            participant = await self.container.fetch_participant(record_id)

        name = None
        if participant.name_components is not None:
            name = participant.name_components.formatted()
        if name is None:
            logger.info("User name is hidden due to privacy settings.")
        return UserIdentity(record_name=record_id.record_name, name=name)

    # ============================================================
    # CRUD
    # ============================================================

    async def create(
        self, entity: Any, *, codec: RecordCodec[Any] | None = None
    ) -> Record:
        """Store a new entity and return the saved record.

        Raises:
            RemoteWriteError: The store rejected the write.
        """
        record = (codec or self.codec).encode(entity)
        with translate_errors(RemoteWriteError):
            saved = await self.container.save(record)
        logger.debug("Saved %s record %s", saved.record_type, saved.record_id)
        return saved

    async def update(
        self, entity: Any, *, codec: RecordCodec[Any] | None = None
    ) -> Record:
        """Overwrite an entity through the same write path as create()."""
        return await self.create(entity, codec=codec)

    async def read(
        self, record_id: RecordID | str, codec: RecordCodec[E] | None = None
    ) -> E:
        """Fetch and decode a single record.

        Raises:
            NotFoundError: No record exists with this id.
            DecodeError: The record exists but the codec rejected it.
            RemoteReadError: Any other lookup failure.
        """
        if isinstance(record_id, str):
            record_id = RecordID(record_id)
        with translate_errors(RemoteReadError):
            record = await self.container.fetch(record_id)
        return decode_record(codec or self.codec, record)

    def stream(
        self, query: QueryDescriptor, codec: RecordCodec[E] | None = None
    ) -> QueryStreamAdapter[E]:
        """Lazily iterate the entities matching a query.

        The caller owns the returned adapter and should close it (or use it
        as an async context manager) if it stops iterating early.
        """
        return QueryStreamAdapter(self.container, query, codec or self.codec)

    async def read_many(
        self, query: QueryDescriptor, codec: RecordCodec[E] | None = None
    ) -> list[E]:
        """Fetch every entity matching a query, in remote order.

        Raises:
            DecodeError: A matched record could not be decoded.
            RemoteError: The query failed.
        """
        return await self.stream(query, codec).to_list()

    async def delete(
        self, entity: Any, *, codec: RecordCodec[Any] | None = None
    ) -> RecordID:
        """Delete the record backing an entity and return its id.

        Raises:
            NotFoundError: No record exists with this id.
            RemoteWriteError: The store rejected the delete.
        """
        record_id = (codec or self.codec).encode(entity).record_id
        with translate_errors(RemoteWriteError):
            deleted = await self.container.delete(record_id)
        logger.debug("Deleted record %s", deleted)
        return deleted

    # ============================================================
    # Notifications and subscriptions
    # ============================================================

    async def request_notification_permission(
        self, options: NotificationOption
    ) -> bool:
        """Ask the permission authority to allow the given notification kinds."""
        if self.permissions is None:
            raise RuntimeError("No PermissionAuthority configured for this service")
        return await self.permissions.request_permission(options)

    async def subscribe(self, subscription: Subscription) -> Subscription:
        """Register a subscription; the caller owns its lifetime."""
        with translate_errors(RemoteWriteError):
            saved = await self.container.save_subscription(subscription)
        logger.info(
            "Subscribed %s to %s changes", saved.subscription_id, saved.record_type
        )
        return saved

    async def unsubscribe(self, subscription_id: str) -> str:
        """Remove a subscription by id and return the removed id."""
        with translate_errors(RemoteWriteError):
            removed = await self.container.delete_subscription(subscription_id)
        logger.info("Unsubscribed %s", removed)
        return removed

    async def list_subscriptions(self) -> list[Subscription]:
        """Every subscription currently registered in the database."""
        with translate_errors(RemoteReadError):
            return await self.container.list_subscriptions()
