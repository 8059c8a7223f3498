"""Tests for QueryStreamAdapter pull semantics, failures and cancellation."""

from __future__ import annotations

import asyncio

import pytest

from cloudkit_core.adapters.codec import EntityCodec, RecordPassthroughCodec
from cloudkit_core.errors import (
    CloudKitError,
    DecodeError,
    NotFoundError,
    QueryFailedError,
)
from cloudkit_core.stream import QueryStreamAdapter
from cloudkit_core.types import QueryDescriptor, Record, RecordID, sort_keys

from .fakes import FakeContainer, TaskItem, task_record, wait_until


def by_created(limit: int | None = None) -> QueryDescriptor:
    return QueryDescriptor("Task", sort_keys=sort_keys("createdAt"), results_limit=limit)


class _StrictCodec:
    """Codec whose decode indexes a field the records never carry."""

    def decode(self, record: Record) -> Record:
        record["missing_field"]
        return record

    def encode(self, entity: Record) -> Record:
        return entity


class TestOrderingAndCompletion:
    """Entities arrive in remote order and the sequence terminates cleanly."""

    @pytest.mark.asyncio
    async def test_yields_every_match_in_order(
        self, seeded: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """N matching records yield N entities in the container's order."""
        stream = QueryStreamAdapter(seeded, by_created(), task_codec)

        titles = [task.title async for task in stream]

        assert titles == [f"task-{i}" for i in range(1, 16)]
        assert stream.yielded == 15
        assert stream.finished

    @pytest.mark.asyncio
    async def test_re_evaluation_is_stable(
        self, seeded: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """Two adapters over the same data produce the same sequence."""
        first = await QueryStreamAdapter(seeded, by_created(), task_codec).to_list()
        second = await QueryStreamAdapter(seeded, by_created(), task_codec).to_list()

        assert first == second
        assert len(seeded.operations) == 2

    @pytest.mark.asyncio
    async def test_empty_result(
        self, container: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """No matches completes immediately with nothing yielded."""
        stream = QueryStreamAdapter(container, by_created(), task_codec)

        assert await stream.to_list() == []
        assert stream.finished

    @pytest.mark.asyncio
    async def test_results_limit_is_forwarded(
        self, seeded: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """The descriptor reaches the container untouched."""
        query = by_created(limit=4)
        tasks = await QueryStreamAdapter(seeded, query, task_codec).to_list()

        assert len(tasks) == 4
        assert seeded.operations[0].query is query

    @pytest.mark.asyncio
    async def test_passthrough_codec_yields_records(
        self, seeded: FakeContainer
    ) -> None:
        """RecordPassthroughCodec hands back the records themselves."""
        records = await QueryStreamAdapter(
            seeded, by_created(limit=2), RecordPassthroughCodec()
        ).to_list()

        assert all(isinstance(r, Record) for r in records)
        assert [r.record_id.record_name for r in records] == ["task-001", "task-002"]


class TestLaziness:
    """The remote operation starts on the first pull and only once."""

    @pytest.mark.asyncio
    async def test_construction_does_not_start_query(
        self, seeded: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """Building an adapter issues no remote call."""
        stream = QueryStreamAdapter(seeded, by_created(), task_codec)
        await asyncio.sleep(0)

        assert not stream.started
        assert seeded.operations == []

        await anext(stream)

        assert stream.started
        assert len(seeded.operations) == 1

    @pytest.mark.asyncio
    async def test_not_restartable(
        self, seeded: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """Pulling after completion raises StopAsyncIteration without a new query."""
        stream = QueryStreamAdapter(seeded, by_created(limit=2), task_codec)
        await stream.to_list()

        with pytest.raises(StopAsyncIteration):
            await anext(stream)
        assert [t async for t in stream] == []
        assert len(seeded.operations) == 1

    @pytest.mark.asyncio
    async def test_start_failure_is_wrapped(
        self, container: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """A container refusing to start the query surfaces as QueryFailedError."""
        container.failures["start_query"] = TypeError("unsupported predicate")
        stream = QueryStreamAdapter(container, by_created(), task_codec)

        with pytest.raises(QueryFailedError) as exc_info:
            await anext(stream)

        assert isinstance(exc_info.value.__cause__, TypeError)
        assert stream.finished


class TestBackpressure:
    """The producer never runs more than one item ahead of the consumer."""

    @pytest.mark.asyncio
    async def test_producer_waits_for_consumer(
        self, seeded: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """With no pulls after the first, the container stays blocked."""
        stream = QueryStreamAdapter(seeded, by_created(), task_codec)
        await anext(stream)
        for _ in range(50):
            await asyncio.sleep(0)

        operation = seeded.operations[0]
        assert not operation.finished
        assert operation.task is not None and not operation.task.done()

        await stream.aclose()


class TestDecodeFailure:
    """An undecodable record aborts the sequence; nothing is skipped."""

    @pytest.mark.asyncio
    async def test_abort_after_k_minus_one_items(
        self, container: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """Decode failure on record k yields k-1 entities then DecodeError."""
        container.add(task_record(1), task_record(2), task_record(4))
        created = task_record(3)["createdAt"]
        container.add(Record.new("Task", "task-003", status="open", createdAt=created))
        stream = QueryStreamAdapter(container, by_created(), task_codec)
        seen: list[str] = []

        with pytest.raises(DecodeError) as exc_info:
            async for task in stream:
                seen.append(task.title)

        assert seen == ["task-1", "task-2"]
        assert exc_info.value.record_id == RecordID("task-003")
        assert str(exc_info.value) == "Failed to initialize the CloudKit model."
        assert container.operations[0].cancelled

    @pytest.mark.asyncio
    async def test_items_before_failure_stay_valid(
        self, container: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """Entities yielded before the abort are complete values."""
        container.add(task_record(1), Record.new("Task", "broken", title=7))
        stream = QueryStreamAdapter(container, QueryDescriptor("Task"), task_codec)

        first = await anext(stream)
        with pytest.raises(DecodeError):
            await anext(stream)

        assert first == TaskItem(
            "task-1", "open", task_record(1)["createdAt"], "task-001"
        )
        with pytest.raises(StopAsyncIteration):
            await anext(stream)

    @pytest.mark.asyncio
    async def test_codec_exception_aborts_with_decode_error(
        self, container: FakeContainer
    ) -> None:
        """A codec that raises ends the sequence like one that returns None."""
        container.add(task_record(1))
        stream = QueryStreamAdapter(container, QueryDescriptor("Task"), _StrictCodec())

        with pytest.raises(DecodeError) as exc_info:
            await asyncio.wait_for(stream.to_list(), timeout=2)

        assert exc_info.value.record_id == RecordID("task-001")
        assert isinstance(exc_info.value.__cause__, KeyError)
        operation = container.operations[0]
        assert operation.cancelled
        assert operation.task is not None
        await wait_until(operation.task.done)
        assert operation.task.cancelled() or operation.task.exception() is None


class TestRemoteFailure:
    """Per-record and query-level errors end the sequence."""

    @pytest.mark.asyncio
    async def test_per_record_error_keeps_taxonomy_type(
        self, seeded: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """A CloudKitError delivered for a record is raised as-is."""
        seeded.record_errors["task-003"] = NotFoundError(record_id=RecordID("task-003"))
        stream = QueryStreamAdapter(seeded, by_created(), task_codec)

        seen = []
        with pytest.raises(NotFoundError):
            async for task in stream:
                seen.append(task)

        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_foreign_error_is_wrapped(
        self, seeded: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """Non-taxonomy errors become QueryFailedError with the cause attached."""
        seeded.record_errors["task-001"] = OSError("socket closed")
        stream = QueryStreamAdapter(seeded, by_created(), task_codec)

        with pytest.raises(QueryFailedError) as exc_info:
            await stream.to_list()

        assert isinstance(exc_info.value.__cause__, OSError)
        assert str(exc_info.value) == "socket closed"

    @pytest.mark.asyncio
    async def test_query_finished_error(
        self, seeded: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """A failing completion raises after every matched item was delivered."""
        seeded.query_error = ConnectionResetError()
        stream = QueryStreamAdapter(seeded, by_created(limit=3), task_codec)
        seen = []

        with pytest.raises(QueryFailedError) as exc_info:
            async for task in stream:
                seen.append(task)

        assert len(seen) == 3
        assert str(exc_info.value) == QueryFailedError.default_message
        assert isinstance(exc_info.value, CloudKitError)


class TestAbandonment:
    """Closing a stream cancels the operation and silences the container."""

    @pytest.mark.asyncio
    async def test_aclose_mid_iteration_cancels(
        self, seeded: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """No callback reaches the adapter after it was abandoned."""
        stream = QueryStreamAdapter(seeded, by_created(), task_codec)
        await anext(stream)
        await anext(stream)

        await stream.aclose()
        operation = seeded.operations[0]
        task = operation.task
        assert task is not None
        await wait_until(task.done)

        assert operation.cancelled
        assert task.cancelled()
        assert seeded.callbacks_after_cancel == 0
        assert stream.yielded == 2
        with pytest.raises(StopAsyncIteration):
            await anext(stream)

    @pytest.mark.asyncio
    async def test_break_out_of_context_manager(
        self, seeded: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """Leaving "async with" early closes the stream."""
        async with QueryStreamAdapter(seeded, by_created(), task_codec) as stream:
            async for task in stream:
                if task.title == "task-3":
                    break

        assert stream.finished
        assert seeded.operations[0].cancelled

    @pytest.mark.asyncio
    async def test_late_callbacks_are_ignored(
        self, seeded: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """A container that keeps calling back after cancel() changes nothing."""
        seeded.ignore_cancel = True
        stream = QueryStreamAdapter(seeded, by_created(), task_codec)
        await anext(stream)

        await stream.aclose()
        task = seeded.operations[0].task
        assert task is not None
        await asyncio.wait_for(task, timeout=5)

        assert seeded.callbacks_after_cancel > 0
        assert stream.yielded == 1
        with pytest.raises(StopAsyncIteration):
            await anext(stream)

    @pytest.mark.asyncio
    async def test_aclose_before_first_pull(
        self, seeded: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """Closing an unstarted stream never starts the query."""
        stream = QueryStreamAdapter(seeded, by_created(), task_codec)
        await stream.aclose()

        with pytest.raises(StopAsyncIteration):
            await anext(stream)
        assert seeded.operations == []

    @pytest.mark.asyncio
    async def test_aclose_wakes_waiting_consumer(
        self, container: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """A consumer blocked in another task finishes when the stream closes."""
        container.add(task_record(1))
        stream = QueryStreamAdapter(container, by_created(), task_codec)
        await anext(stream)
        # Hold the producer before it reports completion.
        container.operations[0].task.cancel()  # type: ignore[union-attr]

        pending = asyncio.ensure_future(anext(stream))
        await wait_until(lambda: stream._pulling)
        await stream.aclose()

        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(pending, timeout=5)


class TestSingleConsumer:
    """Only one pull may be outstanding at a time."""

    @pytest.mark.asyncio
    async def test_concurrent_pull_raises(
        self, container: FakeContainer, task_codec: EntityCodec[TaskItem]
    ) -> None:
        """A second concurrent __anext__ raises RuntimeError."""
        container.add(task_record(1))
        stream = QueryStreamAdapter(container, by_created(), task_codec)
        await anext(stream)
        container.operations[0].task.cancel()  # type: ignore[union-attr]

        first = asyncio.ensure_future(anext(stream))
        await wait_until(lambda: stream._pulling)

        with pytest.raises(RuntimeError, match="already being consumed"):
            await anext(stream)

        await stream.aclose()
        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(first, timeout=5)
