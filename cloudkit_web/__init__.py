"""CloudKit Web Services backend for cloudkit_core.

Provides CloudKitWebContainer, a RemoteContainer that talks to the CloudKit
REST API with aiohttp, plus the JSON wire codec and server error mapping it
relies on.

Usage:
    config = CloudKitConfig.from_env()
    async with CloudKitWebContainer(config.container) as container:
        service = CloudKitService(container)
        records = await service.read_many(QueryDescriptor("Task"))
"""

from cloudkit_web.client import CloudKitWebContainer, TaskQueryOperation
from cloudkit_web.error_codes import (
    ServerErrorCode,
    account_status_for_code,
    error_for_code,
)

__all__ = [
    "CloudKitWebContainer",
    "ServerErrorCode",
    "TaskQueryOperation",
    "account_status_for_code",
    "error_for_code",
]
