"""Observable variants of the CloudKitService operations.

Each method returns a cold reactivex Observable built on the matching
CloudKitService coroutine, so both calling conventions share one code path
and fail with the same exceptions. Subscribing schedules the coroutine on
the running asyncio event loop; disposing the subscription cancels it.

Usage:
    service.rx.check_account().subscribe(
        on_next=print,
        on_error=lambda e: print("unavailable:", e),
    )
    service.rx.read_stream(query).subscribe(on_next=render_row)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

import reactivex
from reactivex import Observable, abc
from reactivex.disposable import Disposable

from cloudkit_core.adapters.codec import RecordCodec
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
    from cloudkit_core.service import CloudKitService

logger = logging.getLogger(__name__)

T = TypeVar("T")
E = TypeVar("E")


def from_coroutine(factory: Callable[[], Awaitable[T]]) -> Observable[T]:
    """Observable that runs factory() once per subscription.

    Emits the awaited result then completes, or forwards the exception via
    on_error. Must be subscribed from inside a running event loop.
    """

    def subscribe(
        observer: abc.ObserverBase[T],
        scheduler: abc.SchedulerBase | None = None,
    ) -> abc.DisposableBase:
        loop = asyncio.get_running_loop()
        task = loop.create_task(_await(factory))

        def forward(done: asyncio.Task[T]) -> None:
            if done.cancelled():
                return
            error = done.exception()
            if error is not None:
                observer.on_error(error)
                return
            observer.on_next(done.result())
            observer.on_completed()

        task.add_done_callback(forward)
        return Disposable(task.cancel)

    return reactivex.create(subscribe)


def from_query_stream(
    factory: Callable[[], QueryStreamAdapter[E]],
) -> Observable[E]:
    """Observable that republishes every entity of a fresh query stream.

    Disposing the subscription closes the stream, which cancels the remote
    query operation.
    """

    def subscribe(
        observer: abc.ObserverBase[E],
        scheduler: abc.SchedulerBase | None = None,
    ) -> abc.DisposableBase:
        loop = asyncio.get_running_loop()

        async def pump() -> None:
            async with factory() as entities:
                async for entity in entities:
                    observer.on_next(entity)

        task = loop.create_task(pump())

        def forward(done: asyncio.Task[None]) -> None:
            if done.cancelled():
                logger.debug("Query stream subscription disposed")
                return
            error = done.exception()
            if error is not None:
                observer.on_error(error)
                return
            observer.on_completed()

        task.add_done_callback(forward)
        return Disposable(task.cancel)

    return reactivex.create(subscribe)


async def _await(factory: Callable[[], Awaitable[T]]) -> T:
    return await factory()


class ReactiveCloudKitService:
    """Observable-returning mirror of CloudKitService.

    Obtain one through CloudKitService.rx rather than constructing it.
    """

    def __init__(self, service: CloudKitService) -> None:
        self.service = service

    # Account and user identity

    def account_status(self) -> Observable[AccountStatus]:
        return from_coroutine(self.service.account_status)

    def check_account(self) -> Observable[bool]:
        """Emits True, or errors with the matching AccountError."""
        return from_coroutine(self.service.check_account)

    def get_user_id(self) -> Observable[str]:
        return from_coroutine(self.service.get_user_id)

    def get_user_information(self) -> Observable[UserIdentity]:
        return from_coroutine(self.service.get_user_information)

    # CRUD

    def create(
        self, entity: Any, *, codec: RecordCodec[Any] | None = None
    ) -> Observable[Record]:
        return from_coroutine(lambda: self.service.create(entity, codec=codec))

    def read(
        self, record_id: RecordID | str, codec: RecordCodec[E] | None = None
    ) -> Observable[E]:
        return from_coroutine(lambda: self.service.read(record_id, codec))

    def read_many(
        self, query: QueryDescriptor, codec: RecordCodec[E] | None = None
    ) -> Observable[list[E]]:
        """Emits the complete result list once."""
        return from_coroutine(lambda: self.service.read_many(query, codec))

    def read_stream(
        self, query: QueryDescriptor, codec: RecordCodec[E] | None = None
    ) -> Observable[E]:
        """Emits each matching entity as the query produces it."""
        return from_query_stream(lambda: self.service.stream(query, codec))

    def update(
        self, entity: Any, *, codec: RecordCodec[Any] | None = None
    ) -> Observable[Record]:
        return from_coroutine(lambda: self.service.update(entity, codec=codec))

    def delete(
        self, entity: Any, *, codec: RecordCodec[Any] | None = None
    ) -> Observable[RecordID]:
        return from_coroutine(lambda: self.service.delete(entity, codec=codec))

    # Notifications and subscriptions

    def request_notification_permission(
        self, options: NotificationOption
    ) -> Observable[bool]:
        return from_coroutine(
            lambda: self.service.request_notification_permission(options)
        )

    def subscribe(self, subscription: Subscription) -> Observable[Subscription]:
        return from_coroutine(lambda: self.service.subscribe(subscription))

    def unsubscribe(self, subscription_id: str) -> Observable[str]:
        return from_coroutine(lambda: self.service.unsubscribe(subscription_id))

    def list_subscriptions(self) -> Observable[list[Subscription]]:
        return from_coroutine(self.service.list_subscriptions)
