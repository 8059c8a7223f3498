"""Notification permission adapter protocol.

Implemented by: the host platform's notification center.

Asks the user (or the platform policy) whether this application may show
notifications. Subscriptions themselves are registered through the
RemoteContainer; this protocol only covers the local permission prompt.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from cloudkit_core.types import NotificationOption


@runtime_checkable
class PermissionAuthority(Protocol):
    """Grants or denies permission to deliver notifications."""

    async def request_permission(self, options: NotificationOption) -> bool:
        """Request permission for the given notification kinds.

        Args:
            options: Combination of NotificationOption flags.

        Returns:
            True if permission was granted.
        """
        ...
