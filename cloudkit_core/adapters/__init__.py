"""Adapter protocol interfaces for the CloudKit service layer.

Each protocol defines a capability boundary supplied from outside the core:

    cloudkit_web.CloudKitWebContainer  → RemoteContainer
    application entity types           → RecordCodec / CloudEntity
    platform notification center       → PermissionAuthority

Protocols use structural subtyping (PEP 544): implementations satisfy the
interface without inheriting from it.
"""

from cloudkit_core.adapters.codec import (
    CloudEntity,
    EntityCodec,
    RecordCodec,
    RecordPassthroughCodec,
    decode_record,
    entity_codec,
)
from cloudkit_core.adapters.container import (
    QueryFinished,
    QueryOperation,
    RecordMatched,
    RemoteContainer,
)
from cloudkit_core.adapters.notify import PermissionAuthority

__all__ = [
    "CloudEntity",
    "EntityCodec",
    "PermissionAuthority",
    "QueryFinished",
    "QueryOperation",
    "RecordCodec",
    "RecordMatched",
    "RecordPassthroughCodec",
    "RemoteContainer",
    "decode_record",
    "entity_codec",
]
