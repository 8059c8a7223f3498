"""CloudKit utility: async and reactive convenience layer over a cloud database.

Account checks, CRUD against a single remote record store, queries exposed
as async iterators, and subscription registration, all delegated to a
pluggable RemoteContainer.
"""

__version__ = "1.0.0"

from cloudkit_core.adapters import (
    CloudEntity,
    PermissionAuthority,
    QueryOperation,
    RecordCodec,
    RecordPassthroughCodec,
    RemoteContainer,
    decode_record,
    entity_codec,
)
from cloudkit_core.config import CloudKitConfig, ContainerConfig, LoggingConfig
from cloudkit_core.errors import (
    # Base
    CloudKitError,
    # Account
    AccountError,
    AccountNotDeterminedError,
    AccountNotFoundError,
    AccountRestrictedError,
    AccountTemporarilyUnavailableError,
    AccountUnknownError,
    # Records
    DecodeError,
    NotFoundError,
    # Remote
    AuthenticationError,
    ConflictError,
    QueryFailedError,
    QuotaExceededError,
    RemoteConnectionError,
    RemoteError,
    RemoteReadError,
    RemoteWriteError,
    ThrottledError,
)
from cloudkit_core.service import CloudKitService
from cloudkit_core.stream import QueryStreamAdapter
from cloudkit_core.types import (
    AccountStatus,
    Comparator,
    FieldFilter,
    NameComponents,
    NotificationInfo,
    NotificationOption,
    Participant,
    Predicate,
    QueryDescriptor,
    Record,
    RecordID,
    SortKey,
    Subscription,
    SubscriptionTrigger,
    UserIdentity,
    sort_keys,
    where,
)

__all__ = [
    # Service
    "CloudKitService",
    "QueryStreamAdapter",
    # Adapter protocols
    "CloudEntity",
    "PermissionAuthority",
    "QueryOperation",
    "RecordCodec",
    "RecordPassthroughCodec",
    "RemoteContainer",
    "decode_record",
    "entity_codec",
    # Configuration
    "CloudKitConfig",
    "ContainerConfig",
    "LoggingConfig",
    # Errors
    "CloudKitError",
    "AccountError",
    "AccountNotDeterminedError",
    "AccountNotFoundError",
    "AccountRestrictedError",
    "AccountTemporarilyUnavailableError",
    "AccountUnknownError",
    "DecodeError",
    "NotFoundError",
    "AuthenticationError",
    "ConflictError",
    "QueryFailedError",
    "QuotaExceededError",
    "RemoteConnectionError",
    "RemoteError",
    "RemoteReadError",
    "RemoteWriteError",
    "ThrottledError",
    # Types
    "AccountStatus",
    "Comparator",
    "FieldFilter",
    "NameComponents",
    "NotificationInfo",
    "NotificationOption",
    "Participant",
    "Predicate",
    "QueryDescriptor",
    "Record",
    "RecordID",
    "SortKey",
    "Subscription",
    "SubscriptionTrigger",
    "UserIdentity",
    "sort_keys",
    "where",
]
