"""Shared data types for CloudKit adapter interfaces."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, Flag, auto
from types import MappingProxyType
from typing import Any

DEFAULT_ZONE_NAME = "_defaultZone"


# ============================================================
# Records: opaque values owned by the remote store
# ============================================================


@dataclass(frozen=True)
class RecordID:
    """Unique identifier of a record inside a record zone."""

    record_name: str
    zone_name: str = DEFAULT_ZONE_NAME

    def __str__(self) -> str:
        if self.zone_name == DEFAULT_ZONE_NAME:
            return self.record_name
        return f"{self.zone_name}/{self.record_name}"


@dataclass(frozen=True)
class Record:
    """A key/value bag stored in the remote database.

    Records are values: once returned from the container they are never
    mutated. Use with_fields() to derive a modified copy before saving.

    Attributes:
        record_type: Remote record kind (e.g. "Task").
        record_id: Unique identifier of the record.
        fields: Read-only mapping of field name to value.
        change_tag: Server-assigned revision marker, None until saved.
        created_at: Server-assigned creation timestamp.
        modified_at: Server-assigned modification timestamp.
    """

    record_type: str
    record_id: RecordID
    fields: Mapping[str, Any] = field(default_factory=dict)
    change_tag: str | None = None
    created_at: datetime | None = None
    modified_at: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    @classmethod
    def new(
        cls, record_type: str, record_name: str | None = None, **fields: Any
    ) -> Record:
        """Build an unsaved record, generating a record name if none is given."""
        return cls(
            record_type=record_type,
            record_id=RecordID(record_name or str(uuid.uuid4())),
            fields=fields,
        )

    def __getitem__(self, key: str) -> Any:
        return self.fields[key]

    def __contains__(self, key: object) -> bool:
        return key in self.fields

    def get(self, key: str, default: Any = None) -> Any:
        """Return a field value, or default when the field is absent."""
        return self.fields.get(key, default)

    def with_fields(self, **changes: Any) -> Record:
        """Return a copy of this record with some fields replaced."""
        merged = dict(self.fields)
        merged.update(changes)
        return Record(
            record_type=self.record_type,
            record_id=self.record_id,
            fields=merged,
            change_tag=self.change_tag,
            created_at=self.created_at,
            modified_at=self.modified_at,
        )

    def __hash__(self) -> int:
        return hash((self.record_type, self.record_id, self.change_tag))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return (
            self.record_type == other.record_type
            and self.record_id == other.record_id
            and self.change_tag == other.change_tag
            and dict(self.fields) == dict(other.fields)
        )


# ============================================================
# Query description
# ============================================================


class Comparator(Enum):
    """Field comparison operators understood by the remote query engine."""

    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    LESS_THAN = "LESS_THAN"
    LESS_THAN_OR_EQUALS = "LESS_THAN_OR_EQUALS"
    GREATER_THAN = "GREATER_THAN"
    GREATER_THAN_OR_EQUALS = "GREATER_THAN_OR_EQUALS"
    IN = "IN"
    NOT_IN = "NOT_IN"
    BEGINS_WITH = "BEGINS_WITH"
    CONTAINS_ALL_TOKENS = "CONTAINS_ALL_TOKENS"


_LOCAL_COMPARISONS: dict[Comparator, Callable[[Any, Any], bool]] = {
    Comparator.EQUALS: lambda a, b: a == b,
    Comparator.NOT_EQUALS: lambda a, b: a != b,
    Comparator.LESS_THAN: lambda a, b: a < b,
    Comparator.LESS_THAN_OR_EQUALS: lambda a, b: a <= b,
    Comparator.GREATER_THAN: lambda a, b: a > b,
    Comparator.GREATER_THAN_OR_EQUALS: lambda a, b: a >= b,
    Comparator.IN: lambda a, b: a in b,
    Comparator.NOT_IN: lambda a, b: a not in b,
    Comparator.BEGINS_WITH: lambda a, b: str(a).startswith(str(b)),
    Comparator.CONTAINS_ALL_TOKENS: lambda a, b: set(str(b).lower().split())
    <= set(str(a).lower().split()),
}


@dataclass(frozen=True)
class FieldFilter:
    """A single field comparison, e.g. status EQUALS "open"."""

    field_name: str
    comparator: Comparator
    value: Any

    def matches(self, record: Record) -> bool:
        """Evaluate this filter against a record's fields."""
        if self.field_name not in record:
            return False
        try:
            return _LOCAL_COMPARISONS[self.comparator](
                record[self.field_name], self.value
            )
        except TypeError:
            return False


@dataclass(frozen=True)
class Predicate:
    """An AND-combination of field filters.

    An empty predicate matches every record of the queried type. The core
    never interprets predicates; they are handed to the container as-is.
    """

    filters: tuple[FieldFilter, ...] = ()

    def and_(self, other: Predicate) -> Predicate:
        """Return a predicate requiring both this and other to match."""
        return Predicate(self.filters + other.filters)

    def matches(self, record: Record) -> bool:
        """Evaluate every filter locally (used by in-memory containers)."""
        return all(f.matches(record) for f in self.filters)


def where(
    field_name: str, value: Any, comparator: Comparator = Comparator.EQUALS
) -> Predicate:
    """Build a single-filter predicate."""
    return Predicate((FieldFilter(field_name, comparator, value),))


@dataclass(frozen=True)
class SortKey:
    """One sort criterion. The first key in a sequence is the primary one."""

    field_name: str
    ascending: bool = True


@dataclass(frozen=True)
class QueryDescriptor:
    """Describes a multi-record fetch: kind, filter, sort order and limit.

    Attributes:
        record_type: Remote record kind to query.
        predicate: Opaque filter passed through to the container.
        sort_keys: Sort criteria in caller order; nothing is added implicitly.
        results_limit: Maximum number of records, or None for the store default.
    """

    record_type: str
    predicate: Any = field(default_factory=Predicate)
    sort_keys: tuple[SortKey, ...] = ()
    results_limit: int | None = None

    def __post_init__(self) -> None:
        if not self.record_type:
            raise ValueError("record_type must be a non-empty string")
        object.__setattr__(self, "sort_keys", tuple(self.sort_keys))
        if self.results_limit is not None:
            if isinstance(self.results_limit, bool) or not isinstance(
                self.results_limit, int
            ):
                raise ValueError("results_limit must be an int")
            if self.results_limit <= 0:
                raise ValueError(
                    f"results_limit must be positive, got {self.results_limit}"
                )


# ============================================================
# Account and user identity
# ============================================================


class AccountStatus(Enum):
    """Cloud account availability as reported by the container."""

    AVAILABLE = "available"
    NO_ACCOUNT = "no_account"
    RESTRICTED = "restricted"
    COULD_NOT_DETERMINE = "could_not_determine"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class NameComponents:
    """Parts of a person's name, any of which may be withheld."""

    given_name: str | None = None
    middle_name: str | None = None
    family_name: str | None = None
    nickname: str | None = None

    def formatted(self) -> str | None:
        """Display form of the name, or None when nothing is available."""
        parts = [
            p for p in (self.given_name, self.middle_name, self.family_name) if p
        ]
        if parts:
            return " ".join(parts)
        return self.nickname or None


@dataclass(frozen=True)
class Participant:
    """Identity of a user as returned by the container's participant lookup."""

    user_record_id: RecordID
    name_components: NameComponents | None = None


@dataclass(frozen=True)
class UserIdentity:
    """Returned by CloudKitService.get_user_information().

    name is None when the user's privacy settings hide it; that is a normal
    outcome, not a failure.
    """

    record_name: str
    name: str | None = None


# ============================================================
# Subscriptions and notifications
# ============================================================


class SubscriptionTrigger(Enum):
    """Record changes that fire a query subscription."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class NotificationOption(Flag):
    """Kinds of user-visible notification a permission request asks for."""

    ALERT = auto()
    BADGE = auto()
    SOUND = auto()
    PROVISIONAL = auto()


@dataclass(frozen=True)
class NotificationInfo:
    """Push payload settings attached to a subscription."""

    alert_body: str | None = None
    sound_name: str | None = None
    should_badge: bool = False
    should_send_content_available: bool = False


@dataclass(frozen=True)
class Subscription:
    """A registered interest in records matching a predicate.

    The subscription_id is the handle; whoever creates a subscription owns
    its lifetime and must unsubscribe it. Nothing is tracked locally.
    """

    subscription_id: str
    record_type: str
    predicate: Any = field(default_factory=Predicate)
    fires_on: frozenset[SubscriptionTrigger] = frozenset(
        {
            SubscriptionTrigger.CREATE,
            SubscriptionTrigger.UPDATE,
            SubscriptionTrigger.DELETE,
        }
    )
    notification_info: NotificationInfo = field(default_factory=NotificationInfo)

    def __post_init__(self) -> None:
        object.__setattr__(self, "fires_on", frozenset(self.fires_on))
        if not self.fires_on:
            raise ValueError("a subscription must fire on at least one trigger")


def sort_keys(*specs: str | SortKey | tuple[str, bool]) -> tuple[SortKey, ...]:
    """Normalize sort specifications into SortKey tuples.

    Accepts SortKey instances, (field, ascending) pairs, or strings in the
    form "field" / "field:asc" / "field:desc".
    """
    keys: list[SortKey] = []
    for spec in specs:
        keys.append(_sort_key(spec))
    return tuple(keys)


def _sort_key(spec: str | SortKey | tuple[str, bool]) -> SortKey:
    if isinstance(spec, SortKey):
        return spec
    if isinstance(spec, tuple):
        name, ascending = spec
        return SortKey(name, bool(ascending))
    name, _, direction = spec.partition(":")
    direction = direction.lower() or "asc"
    if direction not in ("asc", "desc"):
        raise ValueError(f"Unknown sort direction {direction!r} in {spec!r}")
    return SortKey(name, direction == "asc")