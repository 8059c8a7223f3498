"""JSON wire format for CloudKit Web Services.

Converts between cloudkit_core types and the request/response dictionaries
exchanged with the REST endpoints. Field values travel as
{"value": ..., "type": ...} pairs; timestamps are milliseconds since the
Unix epoch.
"""

from __future__ import annotations

import base64
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from cloudkit_core.types import (
    DEFAULT_ZONE_NAME,
    Comparator,
    FieldFilter,
    NameComponents,
    NotificationInfo,
    Participant,
    Predicate,
    QueryDescriptor,
    Record,
    RecordID,
    SortKey,
    Subscription,
    SubscriptionTrigger,
)

LIST_SUFFIX = "_LIST"


# ============================================================
# Field values
# ============================================================


def to_timestamp(value: datetime) -> int:
    """Milliseconds since the epoch; naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def from_timestamp(value: int | float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def _scalar_type(value: Any) -> str:
    if isinstance(value, bool) or isinstance(value, int):
        return "INT64"
    if isinstance(value, float):
        return "DOUBLE"
    if isinstance(value, str):
        return "STRING"
    if isinstance(value, datetime):
        return "TIMESTAMP"
    if isinstance(value, (bytes, bytearray)):
        return "BYTES"
    if isinstance(value, RecordID):
        return "REFERENCE"
    if isinstance(value, Mapping) and {"latitude", "longitude"} <= set(value):
        return "LOCATION"
    raise TypeError(f"Cannot encode {type(value).__name__} as a CloudKit field")


def _encode_scalar(value: Any, field_type: str) -> Any:
    if field_type == "INT64":
        return int(value)
    if field_type == "TIMESTAMP":
        return to_timestamp(value)
    if field_type == "BYTES":
        return base64.b64encode(bytes(value)).decode("ascii")
    if field_type == "REFERENCE":
        return {
            "recordName": value.record_name,
            "zoneID": {"zoneName": value.zone_name},
            "action": "NONE",
        }
    if field_type == "LOCATION":
        return dict(value)
    return value


def _decode_scalar(value: Any, field_type: str) -> Any:
    if field_type == "TIMESTAMP":
        return from_timestamp(value)
    if field_type == "BYTES":
        return base64.b64decode(value)
    if field_type == "REFERENCE":
        return record_id_from_wire(value)
    return value


def encode_value(value: Any) -> dict[str, Any]:
    """Encode a Python value as a CloudKit field value.

    bools are stored as INT64 (CloudKit has no boolean type). Lists take the
    type of their first element; empty lists are sent untyped.
    """
    if value is None:
        return {"value": None}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = list(value)
        if not items:
            return {"value": []}
        element_type = _scalar_type(items[0])
        return {
            "value": [_encode_scalar(item, element_type) for item in items],
            "type": element_type + LIST_SUFFIX,
        }
    field_type = _scalar_type(value)
    return {"value": _encode_scalar(value, field_type), "type": field_type}


def decode_value(payload: Mapping[str, Any]) -> Any:
    """Decode a {"value", "type"} field payload into a Python value."""
    value = payload.get("value")
    field_type = payload.get("type")
    if value is None or not field_type:
        return value
    if field_type.endswith(LIST_SUFFIX):
        element_type = field_type[: -len(LIST_SUFFIX)]
        return [_decode_scalar(item, element_type) for item in value]
    return _decode_scalar(value, field_type)


# ============================================================
# Records
# ============================================================


def zone_to_wire(zone_name: str) -> dict[str, str]:
    return {"zoneName": zone_name}


def record_id_from_wire(payload: Mapping[str, Any]) -> RecordID:
    zone = payload.get("zoneID") or {}
    return RecordID(
        record_name=str(payload["recordName"]),
        zone_name=zone.get("zoneName", DEFAULT_ZONE_NAME),
    )


def record_to_wire(record: Record) -> dict[str, Any]:
    """Serialize a record for records/modify."""
    body: dict[str, Any] = {
        "recordName": record.record_id.record_name,
        "recordType": record.record_type,
        "fields": {name: encode_value(v) for name, v in record.fields.items()},
    }
    if record.change_tag:
        body["recordChangeTag"] = record.change_tag
    return body


def record_from_wire(payload: Mapping[str, Any]) -> Record:
    """Deserialize a record dictionary returned by the server."""
    created = payload.get("created") or {}
    modified = payload.get("modified") or {}
    return Record(
        record_type=str(payload.get("recordType", "")),
        record_id=record_id_from_wire(payload),
        fields={
            name: decode_value(value)
            for name, value in (payload.get("fields") or {}).items()
        },
        change_tag=payload.get("recordChangeTag"),
        created_at=from_timestamp(created["timestamp"])
        if "timestamp" in created
        else None,
        modified_at=from_timestamp(modified["timestamp"])
        if "timestamp" in modified
        else None,
    )


def is_error_entry(payload: Mapping[str, Any]) -> bool:
    """True for per-record error entries inside a successful response."""
    return "serverErrorCode" in payload


# ============================================================
# Queries
# ============================================================


def predicate_to_wire(predicate: Any) -> list[dict[str, Any]]:
    """Translate a Predicate into a filterBy list.

    Raises:
        TypeError: The predicate is not a cloudkit_core Predicate.
    """
    if predicate is None:
        return []
    if not isinstance(predicate, Predicate):
        raise TypeError(
            "CloudKit Web Services queries need a Predicate, "
            f"got {type(predicate).__name__}"
        )
    return [
        {
            "fieldName": f.field_name,
            "comparator": f.comparator.value,
            "fieldValue": encode_value(f.value),
        }
        for f in predicate.filters
    ]


def predicate_from_wire(filters: list[Mapping[str, Any]] | None) -> Predicate:
    return Predicate(
        tuple(
            FieldFilter(
                field_name=str(f["fieldName"]),
                comparator=Comparator(f["comparator"]),
                value=decode_value(f.get("fieldValue") or {}),
            )
            for f in filters or ()
        )
    )


def sort_to_wire(sort_keys: tuple[SortKey, ...]) -> list[dict[str, Any]]:
    return [{"fieldName": k.field_name, "ascending": k.ascending} for k in sort_keys]


def query_to_wire(
    query: QueryDescriptor, zone_name: str = DEFAULT_ZONE_NAME
) -> dict[str, Any]:
    """Build the records/query request body."""
    body: dict[str, Any] = {
        "zoneID": zone_to_wire(zone_name),
        "query": {
            "recordType": query.record_type,
            "filterBy": predicate_to_wire(query.predicate),
            "sortBy": sort_to_wire(query.sort_keys),
        },
    }
    if query.results_limit is not None:
        body["resultsLimit"] = query.results_limit
    return body


# ============================================================
# Users
# ============================================================


def participant_from_wire(payload: Mapping[str, Any]) -> Participant:
    """Build a Participant from a users/lookup/id entry."""
    components = payload.get("nameComponents")
    name = None
    if components:
        name = NameComponents(
            given_name=components.get("givenName"),
            middle_name=components.get("middleName"),
            family_name=components.get("familyName"),
            nickname=components.get("nickname"),
        )
    return Participant(
        user_record_id=RecordID(str(payload["userRecordName"])),
        name_components=name,
    )


# ============================================================
# Subscriptions
# ============================================================


def subscription_to_wire(
    subscription: Subscription, zone_name: str = DEFAULT_ZONE_NAME
) -> dict[str, Any]:
    info = subscription.notification_info
    notification: dict[str, Any] = {
        "shouldBadge": info.should_badge,
        "shouldSendContentAvailable": info.should_send_content_available,
    }
    if info.alert_body is not None:
        notification["alertBody"] = info.alert_body
    if info.sound_name is not None:
        notification["soundName"] = info.sound_name
    return {
        "subscriptionID": subscription.subscription_id,
        "subscriptionType": "query",
        "zoneID": zone_to_wire(zone_name),
        "query": {
            "recordType": subscription.record_type,
            "filterBy": predicate_to_wire(subscription.predicate),
        },
        # Stable order keeps request bodies reproducible.
        "firesOn": sorted(t.value for t in subscription.fires_on),
        "notificationInfo": notification,
    }


def subscription_from_wire(payload: Mapping[str, Any]) -> Subscription:
    query = payload.get("query") or {}
    info = payload.get("notificationInfo") or {}
    fires_on = payload.get("firesOn") or [t.value for t in SubscriptionTrigger]
    return Subscription(
        subscription_id=str(payload["subscriptionID"]),
        record_type=str(query.get("recordType", "")),
        predicate=predicate_from_wire(query.get("filterBy")),
        fires_on=frozenset(SubscriptionTrigger(v) for v in fires_on),
        notification_info=NotificationInfo(
            alert_body=info.get("alertBody"),
            sound_name=info.get("soundName"),
            should_badge=bool(info.get("shouldBadge", False)),
            should_send_content_available=bool(
                info.get("shouldSendContentAvailable", False)
            ),
        ),
    )
