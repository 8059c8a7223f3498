"""Record codec protocol.

Implemented by: the integrating application, once per entity type.

Converts between opaque Records and typed domain entities. Decoding may
fail (a record missing a field, a wrong value type) and reports that by
returning None. A codec that raises instead is treated the same way:
decode_record() turns either outcome into DecodeError. Encoding is assumed
total.

Design:
    codec.decode(record)   -> Task | None
    codec.encode(task)     -> Record

Entity classes that already know how to build themselves from a record
can be adapted with entity_codec():

    class Task:
        @classmethod
        def from_record(cls, record: Record) -> Task | None: ...
        def to_record(self) -> Record: ...

    codec = entity_codec(Task)
"""

from __future__ import annotations

from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

from cloudkit_core.errors import DecodeError
from cloudkit_core.types import Record

E = TypeVar("E")


@runtime_checkable
class RecordCodec(Protocol[E]):
    """Converts records to entities and back."""

    def decode(self, record: Record) -> E | None:
        """Build an entity from a record, or None if the record is unusable."""
        ...

    def encode(self, entity: E) -> Record:
        """Build the record to store for an entity."""
        ...


@runtime_checkable
class CloudEntity(Protocol):
    """An entity type that converts itself to and from records."""

    @classmethod
    def from_record(cls, record: Record) -> Any:
        """Build an instance from a record, or return None."""
        ...

    def to_record(self) -> Record:
        """Return the record representing this instance."""
        ...


class EntityCodec(Generic[E]):
    """RecordCodec backed by a CloudEntity class."""

    def __init__(self, entity_type: type[E]) -> None:
        self.entity_type = entity_type

    def decode(self, record: Record) -> E | None:
        return self.entity_type.from_record(record)  # type: ignore[attr-defined,no-any-return]

    def encode(self, entity: E) -> Record:
        return entity.to_record()  # type: ignore[attr-defined,no-any-return]

    def __repr__(self) -> str:
        return f"EntityCodec({self.entity_type.__name__})"


class RecordPassthroughCodec:
    """Codec whose entities are the records themselves."""

    def decode(self, record: Record) -> Record:
        return record

    def encode(self, entity: Record) -> Record:
        return entity


def entity_codec(entity_type: type[E]) -> EntityCodec[E]:
    """Build a codec for a class exposing from_record() and to_record()."""
    if not (
        callable(getattr(entity_type, "from_record", None))
        and callable(getattr(entity_type, "to_record", None))
    ):
        raise TypeError(
            f"{entity_type.__name__} must define from_record() and to_record()"
        )
    return EntityCodec(entity_type)


def decode_record(codec: RecordCodec[E], record: Record) -> E:
    """Decode a record, raising DecodeError if the codec rejects it.

    Exceptions raised by the codec are chained as the DecodeError's cause.
    """
    try:
        entity = codec.decode(record)
    except Exception as exc:
        raise DecodeError(record_id=record.record_id) from exc
    if entity is None:
        raise DecodeError(record_id=record.record_id)
    return entity
