"""Pull-based iteration over callback-driven container queries.

RemoteContainer.start_query() reports matches by awaiting a callback per
record and a final completion callback. QueryStreamAdapter turns that into
an async iterator of decoded entities:

    async with QueryStreamAdapter(container, query, codec) as tasks:
        async for task in tasks:
            ...

Handoff between the container and the consumer goes through a single-slot
queue: a record_matched callback does not return until the consumer side
has room for its item, so the producer is never more than one record ahead.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from types import TracebackType
from typing import Any, Generic, TypeVar

from cloudkit_core.adapters.codec import RecordCodec, decode_record
from cloudkit_core.adapters.container import QueryOperation, RemoteContainer
from cloudkit_core.errors import (
    CloudKitError,
    DecodeError,
    QueryFailedError,
    as_remote_error,
    translate_errors,
)
from cloudkit_core.types import QueryDescriptor, Record, RecordID

logger = logging.getLogger(__name__)

E = TypeVar("E")


class _Slot(Enum):
    ITEM = "item"
    ERROR = "error"
    END = "end"


class QueryStreamAdapter(Generic[E]):
    """Lazily runs one query and yields decoded entities in remote order.

    The remote operation starts on the first pull, not at construction.
    The sequence is finite and cannot be restarted: once it completes,
    fails or is closed, every further pull raises StopAsyncIteration.

    Failure policy:
    - A record the codec cannot decode ends the sequence with DecodeError.
      Bad records are never skipped.
    - A per-record or query-level failure ends the sequence with that error,
      wrapped in QueryFailedError unless it is already a CloudKitError.
    - Items yielded before a failure remain valid.

    Only one consumer may drive an adapter at a time.
    """

    def __init__(
        self,
        container: RemoteContainer,
        query: QueryDescriptor,
        codec: RecordCodec[E],
    ) -> None:
        self._container = container
        self._query = query
        self._codec = codec
        self._slot: asyncio.Queue[tuple[_Slot, Any]] | None = None
        self._operation: QueryOperation | None = None
        self._terminated = False  # producer side: no more items accepted
        self._finished = False  # consumer side: no more items delivered
        self._pulling = False
        self._yielded = 0

    @property
    def query(self) -> QueryDescriptor:
        return self._query

    @property
    def yielded(self) -> int:
        """Number of entities handed to the consumer so far."""
        return self._yielded

    @property
    def started(self) -> bool:
        return self._operation is not None

    @property
    def finished(self) -> bool:
        return self._finished

    def __aiter__(self) -> QueryStreamAdapter[E]:
        return self

    async def __anext__(self) -> E:
        if self._pulling:
            raise RuntimeError("QueryStreamAdapter is already being consumed")
        if self._finished:
            raise StopAsyncIteration

        self._pulling = True
        try:
            slot = self._start() if self._slot is None else self._slot
            kind, payload = await slot.get()
        except CloudKitError:
            self._finish()
            raise
        finally:
            self._pulling = False

        if kind is _Slot.ITEM:
            self._yielded += 1
            return payload  # type: ignore[no-any-return]

        self._finish()
        if kind is _Slot.ERROR:
            raise payload
        logger.debug(
            "Query on %s finished after %d records",
            self._query.record_type,
            self._yielded,
        )
        raise StopAsyncIteration

    async def aclose(self) -> None:
        """Abandon the sequence and cancel the remote operation.

        Safe to call at any point, including before the first pull and after
        natural completion.
        """
        if self._finished:
            return
        self._terminated = True
        if self._operation is not None:
            logger.debug(
                "Query on %s abandoned after %d records",
                self._query.record_type,
                self._yielded,
            )
        self._finish()
        if self._slot is not None:
            # Release a producer blocked on a full slot.
            while not self._slot.empty():
                self._slot.get_nowait()
            if self._pulling:
                # Wake a consumer waiting in another task.
                self._slot.put_nowait((_Slot.END, None))

    async def __aenter__(self) -> QueryStreamAdapter[E]:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def to_list(self) -> list[E]:
        """Drain the sequence into a list, closing it afterwards."""
        async with self:
            return [entity async for entity in self]

    # ------------------------------------------------------------------
    # Container callbacks
    # ------------------------------------------------------------------

    def _start(self) -> asyncio.Queue[tuple[_Slot, Any]]:
        self._slot = asyncio.Queue(maxsize=1)
        logger.debug(
            "Starting query on %s (sort=%s, limit=%s)",
            self._query.record_type,
            [k.field_name for k in self._query.sort_keys],
            self._query.results_limit,
        )
        with translate_errors(QueryFailedError):
            self._operation = self._container.start_query(
                self._query, self._record_matched, self._query_finished
            )
        return self._slot

    async def _record_matched(
        self, record_id: RecordID, result: Record | Exception
    ) -> None:
        if self._terminated:
            return
        if isinstance(result, Exception):
            await self._terminate(as_remote_error(result, QueryFailedError))
            return
        try:
            entity = decode_record(self._codec, result)
        except DecodeError as exc:
            logger.warning(
                "Aborting query on %s: record %s could not be decoded",
                self._query.record_type,
                record_id,
            )
            await self._terminate(exc)
            return
        assert self._slot is not None
        await self._slot.put((_Slot.ITEM, entity))

    async def _query_finished(self, error: Exception | None) -> None:
        if self._terminated:
            return
        if error is not None:
            await self._terminate(as_remote_error(error, QueryFailedError))
            return
        self._terminated = True
        assert self._slot is not None
        await self._slot.put((_Slot.END, None))

    async def _terminate(self, error: CloudKitError) -> None:
        self._terminated = True
        assert self._slot is not None
        await self._slot.put((_Slot.ERROR, error))

    def _finish(self) -> None:
        self._finished = True
        self._terminated = True
        if self._operation is not None:
            self._operation.cancel()
