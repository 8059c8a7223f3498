"""CloudKit Web Services container over aiohttp.

Implements the RemoteContainer protocol against the CloudKit REST API:

    {base_url}/database/1/{container}/{environment}/{database}/{operation}

Requests are authenticated with the ckAPIToken (and, for per-user access,
ckWebAuthToken) query parameters. Every failure is raised as a
cloudkit_core.errors.CloudKitError subclass.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

import aiohttp

from cloudkit_core.adapters.container import QueryFinished, RecordMatched
from cloudkit_core.config import ContainerConfig
from cloudkit_core.errors import (
    CloudKitError,
    RemoteConnectionError,
    RemoteError,
)
from cloudkit_core.types import (
    DEFAULT_ZONE_NAME,
    AccountStatus,
    Participant,
    QueryDescriptor,
    Record,
    RecordID,
    Subscription,
)

from .error_codes import (
    OPERATION_ERRORS,
    ServerErrorCode,
    account_status_for_code,
    code_for_status,
    error_for_code,
)
from .wire import (
    is_error_entry,
    participant_from_wire,
    query_to_wire,
    record_from_wire,
    record_id_from_wire,
    record_to_wire,
    subscription_from_wire,
    subscription_to_wire,
    zone_to_wire,
)

logger = logging.getLogger(__name__)

API_VERSION = "1"


class TaskQueryOperation:
    """QueryOperation backed by the asyncio task running the request."""

    def __init__(self, task: asyncio.Task[None]) -> None:
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        self._task.cancel()


class CloudKitWebContainer:
    """RemoteContainer speaking CloudKit Web Services.

    Args:
        config: Container identity, credentials and timeout.
        session: Optional shared aiohttp session. When omitted the container
            creates one lazily and closes it in close().
        zone_name: Record zone used for every request.
    """

    def __init__(
        self,
        config: ContainerConfig,
        session: aiohttp.ClientSession | None = None,
        *,
        zone_name: str = DEFAULT_ZONE_NAME,
    ) -> None:
        if not config.identifier:
            raise ValueError("container identifier is required")
        self.config = config
        self.zone_name = zone_name
        self._session = session
        self._owns_session = session is None
        self._queries: set[asyncio.Task[None]] = set()

    @property
    def database_url(self) -> str:
        c = self.config
        return (
            f"{c.base_url.rstrip('/')}/database/{API_VERSION}/"
            f"{c.identifier}/{c.environment}/{c.database}"
        )

    async def __aenter__(self) -> CloudKitWebContainer:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Cancel running queries and close the session if we own it."""
        for task in list(self._queries):
            task.cancel()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout)
            )
        return self._session

    def _auth_params(self) -> dict[str, str]:
        params = {"ckAPIToken": self.config.api_token}
        if self.config.web_auth_token:
            params["ckWebAuthToken"] = self.config.web_auth_token
        return params

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Mapping[str, Any] | None = None,
        operation: str = "read",
    ) -> dict[str, Any]:
        """Send one request and return the decoded JSON body.

        Raises:
            RemoteConnectionError: Transport failure or timeout.
            CloudKitError: The server answered with an error.
        """
        url = f"{self.database_url}/{path}"
        logger.debug("%s %s", method, path)
        try:
            async with self._get_session().request(
                method, url, params=self._auth_params(), json=json
            ) as response:
                try:
                    payload = await response.json(content_type=None)
                except ValueError:
                    payload = None
                status = response.status
                retry_after = response.headers.get("Retry-After")
        except asyncio.TimeoutError as exc:
            raise RemoteConnectionError(
                f"CloudKit request timed out after {self.config.request_timeout}s"
            ) from exc
        except aiohttp.ClientError as exc:
            raise RemoteConnectionError(str(exc) or None) from exc

        if not isinstance(payload, dict):
            payload = {}
        if status >= 400 or is_error_entry(payload):
            code = payload.get("serverErrorCode") or code_for_status(status)
            logger.warning("%s %s failed: HTTP %s %s", method, path, status, code)
            raise error_for_code(
                code,
                payload.get("reason"),
                operation=operation,
                retry_after_seconds=_retry_after(payload.get("retryAfter"), retry_after),
            )
        return payload

    def _first_entry(
        self,
        payload: Mapping[str, Any],
        key: str,
        *,
        operation: str,
        record_id: RecordID | None = None,
    ) -> dict[str, Any]:
        entries = payload.get(key) or []
        if not entries:
            raise OPERATION_ERRORS[operation](f"Empty {key!r} list in response")
        entry = entries[0]
        if is_error_entry(entry):
            raise error_for_code(
                entry["serverErrorCode"],
                entry.get("reason"),
                operation=operation,
                record_id=record_id,
                retry_after_seconds=_retry_after(entry.get("retryAfter"), None),
            )
        return entry

    # ------------------------------------------------------------------
    # Account and users
    # ------------------------------------------------------------------

    async def account_status(self) -> AccountStatus:
        """Status derived from a users/current round trip.

        A rejected API token is a configuration problem, not an account
        state, and is raised as AuthenticationError.
        """
        try:
            await self._request("GET", "users/current")
        except RemoteConnectionError:
            raise
        except CloudKitError as exc:
            code = exc.server_error_code
            if code is None or code == ServerErrorCode.AUTHENTICATION_FAILED.value:
                raise
            status = account_status_for_code(code)
            logger.debug(
                "users/current returned %s, account status %s",
                code,
                status.value,
            )
            return status
        return AccountStatus.AVAILABLE

    async def current_user_record_id(self) -> RecordID:
        payload = await self._request("GET", "users/current")
        if "userRecordName" not in payload:
            raise RemoteError("users/current response has no userRecordName")
        return RecordID(str(payload["userRecordName"]))

    async def fetch_participant(self, user_record_id: RecordID) -> Participant:
        payload = await self._request(
            "POST",
            "users/lookup/id",
            json={"users": [{"userRecordName": user_record_id.record_name}]},
        )
        entry = self._first_entry(
            payload, "users", operation="read", record_id=user_record_id
        )
        return participant_from_wire(entry)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def save(self, record: Record) -> Record:
        payload = await self._request(
            "POST",
            "records/modify",
            json={
                "operations": [
                    {"operationType": "forceReplace", "record": record_to_wire(record)}
                ],
                "zoneID": zone_to_wire(record.record_id.zone_name),
            },
            operation="write",
        )
        entry = self._first_entry(
            payload, "records", operation="write", record_id=record.record_id
        )
        return record_from_wire(entry)

    async def fetch(self, record_id: RecordID) -> Record:
        payload = await self._request(
            "POST",
            "records/lookup",
            json={
                "records": [{"recordName": record_id.record_name}],
                "zoneID": zone_to_wire(record_id.zone_name),
            },
        )
        entry = self._first_entry(
            payload, "records", operation="read", record_id=record_id
        )
        return record_from_wire(entry)

    async def delete(self, record_id: RecordID) -> RecordID:
        payload = await self._request(
            "POST",
            "records/modify",
            json={
                "operations": [
                    {
                        "operationType": "forceDelete",
                        "record": {"recordName": record_id.record_name},
                    }
                ],
                "zoneID": zone_to_wire(record_id.zone_name),
            },
            operation="write",
        )
        entry = self._first_entry(
            payload, "records", operation="write", record_id=record_id
        )
        if "recordName" not in entry:
            return record_id
        return record_id_from_wire(entry)

    def start_query(
        self,
        query: QueryDescriptor,
        record_matched: RecordMatched,
        query_finished: QueryFinished,
    ) -> TaskQueryOperation:
        """Run records/query in a background task and report via callbacks.

        Only the first page is delivered; a continuation marker in the
        response is logged and not followed.

        Raises:
            TypeError: The query predicate cannot be expressed on the wire.
        """
        body = query_to_wire(query, self.zone_name)
        task = asyncio.get_running_loop().create_task(
            self._run_query(query, body, record_matched, query_finished)
        )
        self._queries.add(task)
        task.add_done_callback(self._queries.discard)
        return TaskQueryOperation(task)

    async def _run_query(
        self,
        query: QueryDescriptor,
        body: dict[str, Any],
        record_matched: RecordMatched,
        query_finished: QueryFinished,
    ) -> None:
        try:
            payload = await self._request(
                "POST", "records/query", json=body, operation="query"
            )
            matches = [_query_match(entry) for entry in payload.get("records") or []]
            for record_id, result in matches:
                await record_matched(record_id, result)
        except Exception as exc:
            await query_finished(exc)
            return

        if payload.get("continuationMarker"):
            logger.debug(
                "Query on %s returned a continuation marker; further pages skipped",
                query.record_type,
            )
        await query_finished(None)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def save_subscription(self, subscription: Subscription) -> Subscription:
        payload = await self._request(
            "POST",
            "subscriptions/modify",
            json={
                "operations": [
                    {
                        "operationType": "create",
                        "subscription": subscription_to_wire(
                            subscription, self.zone_name
                        ),
                    }
                ]
            },
            operation="write",
        )
        entry = self._first_entry(payload, "subscriptions", operation="write")
        return subscription_from_wire(entry)

    async def delete_subscription(self, subscription_id: str) -> str:
        payload = await self._request(
            "POST",
            "subscriptions/modify",
            json={
                "operations": [
                    {
                        "operationType": "delete",
                        "subscription": {"subscriptionID": subscription_id},
                    }
                ]
            },
            operation="write",
        )
        entry = self._first_entry(payload, "subscriptions", operation="write")
        return str(entry.get("subscriptionID", subscription_id))

    async def list_subscriptions(self) -> list[Subscription]:
        payload = await self._request("GET", "subscriptions/list")
        return [subscription_from_wire(s) for s in payload.get("subscriptions") or []]


def _query_match(entry: Mapping[str, Any]) -> tuple[RecordID, Record | Exception]:
    if is_error_entry(entry):
        record_id = RecordID(str(entry.get("recordName", "")))
        return record_id, error_for_code(
            entry["serverErrorCode"],
            entry.get("reason"),
            operation="query",
            record_id=record_id,
        )
    record = record_from_wire(entry)
    return record.record_id, record


def _retry_after(*candidates: Any) -> float | None:
    for value in candidates:
        if value is None:
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return None
