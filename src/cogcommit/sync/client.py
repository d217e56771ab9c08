"""
Remote record service client.

Async httpx client for a PostgREST-style REST API (tables under ``/rest/v1``)
with object storage under ``/storage/v1``. The client is constructed
explicitly and passed to every sync function; ``reset()`` drops the cached
identity so the next call re-authenticates.

Filters are ``(column, expression)`` pairs built with the helpers below, e.g.
``[("user_id", eq(uid)), ("updated_at", gt(watermark))]``. A column may appear
more than once.
"""

import logging
from typing import Any, Iterable, Optional

import httpx

from cogcommit.config import settings
from cogcommit.constants import MACHINES_TABLE, USAGE_TABLE
from cogcommit.exceptions import CloudNotConfiguredError, NotAuthenticatedError
from cogcommit.models.remote import UsageInfo
from cogcommit.sync.credentials import (
    REFRESH_MARGIN_SECONDS,
    AuthTokens,
    CredentialProvider,
    FileCredentialProvider,
    get_machine_id,
)
from cogcommit.sync.retry import RetryConfig, check_response, with_async_retry

logger = logging.getLogger(__name__)

Filters = list[tuple[str, str]]


def eq(value: Any) -> str:
    return f"eq.{_format(value)}"


def gt(value: Any) -> str:
    return f"gt.{_format(value)}"


def is_null() -> str:
    return "is.null"


def not_null() -> str:
    return "not.is.null"


def in_(values: Iterable[Any]) -> str:
    return "in.(" + ",".join(_format(v) for v in values) + ")"


def _format(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


class RemoteClient:
    """
    Client for the remote record service.

    Usage:
        async with RemoteClient() as client:
            await client.ensure_authenticated()
            rows = await client.select(
                "cognitive_commits",
                filters=[("user_id", eq(client.user_id)), ("deleted_at", is_null())],
            )
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        anon_key: Optional[str] = None,
        credentials: Optional[CredentialProvider] = None,
        timeout: Optional[float] = None,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        machine_id: Optional[str] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Remote service URL (default: ``settings.remote_url``)
            anon_key: Public API key (default: ``settings.remote_anon_key``)
            credentials: Token source (default: file provider)
            timeout: Request timeout in seconds
            retry_config: Transport retry configuration
            transport: Optional httpx transport (tests)
            machine_id: This device's machine id (default: read from disk)
        """
        self.base_url = (base_url if base_url is not None else settings.remote_url).rstrip("/")
        self.anon_key = anon_key if anon_key is not None else settings.remote_anon_key
        self.credentials = credentials or FileCredentialProvider(
            remote_url=self.base_url, anon_key=self.anon_key
        )
        self.timeout = timeout or settings.remote_timeout
        self.retry_config = retry_config or RetryConfig()
        self._transport = transport
        self._machine_id = machine_id
        self._client: Optional[httpx.AsyncClient] = None
        self._tokens: Optional[AuthTokens] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.anon_key)

    @property
    def is_authenticated(self) -> bool:
        return self._tokens is not None

    @property
    def user_id(self) -> str:
        """Authenticated user id; call ``ensure_authenticated`` first."""
        if self._tokens is None:
            raise NotAuthenticatedError()
        return self._tokens.user_id

    @property
    def machine_id(self) -> str:
        if self._machine_id is None:
            self._machine_id = get_machine_id()
        return self._machine_id

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "apikey": self.anon_key,
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def ensure_authenticated(self) -> AuthTokens:
        """
        Make sure a valid access token is available, refreshing once if needed.

        Returns:
            Current tokens

        Raises:
            CloudNotConfiguredError: If the remote URL or key is missing
            NotAuthenticatedError: If no valid token is available after refresh
        """
        if not self.is_configured:
            raise CloudNotConfiguredError()

        tokens = self.credentials.load_tokens()
        if tokens is None or tokens.is_expired(margin=REFRESH_MARGIN_SECONDS):
            if await self.credentials.refresh_if_needed():
                tokens = self.credentials.load_tokens()
            else:
                tokens = None
        if tokens is None:
            self._tokens = None
            raise NotAuthenticatedError()

        self._tokens = tokens
        return tokens

    def reset(self) -> None:
        """Forget the cached identity; the next sync re-authenticates."""
        self._tokens = None

    async def close(self) -> None:
        """Close the async HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RemoteClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _auth_headers(self) -> dict[str, str]:
        if self._tokens is None:
            raise NotAuthenticatedError()
        return {"Authorization": f"Bearer {self._tokens.access_token}"}

    @with_async_retry()
    async def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        columns: str = "*",
        order: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """
        Select rows from a table.

        Args:
            table: Table name
            filters: ``(column, expression)`` pairs
            columns: Column list, may embed related tables
                (``*,sessions(*,turns(*))``)
            order: Order clause, e.g. ``updated_at.asc``
            limit: Maximum rows
            offset: Rows to skip

        Returns:
            List of row dicts
        """
        params: list[tuple[str, Any]] = [("select", columns)]
        params.extend(filters or [])
        if order:
            params.append(("order", order))
        if limit is not None:
            params.append(("limit", limit))
        if offset is not None:
            params.append(("offset", offset))

        response = await self.client.get(
            f"/rest/v1/{table}", params=params, headers=self._auth_headers()
        )
        check_response(response, self.retry_config)
        return response.json()

    async def select_one(
        self,
        table: str,
        filters: Optional[Filters] = None,
        columns: str = "*",
    ) -> Optional[dict[str, Any]]:
        rows = await self.select(table, filters=filters, columns=columns, limit=1)
        return rows[0] if rows else None

    @with_async_retry()
    async def upsert(
        self,
        table: str,
        records: list[dict[str, Any]],
        on_conflict: str = "id",
    ) -> list[dict[str, Any]]:
        """
        Insert or update rows by primary key.

        Args:
            table: Table name
            records: Rows to write
            on_conflict: Conflict key column

        Returns:
            Rows as stored by the server (with server-assigned columns)
        """
        if not records:
            return []
        headers = self._auth_headers()
        headers["Prefer"] = "resolution=merge-duplicates,return=representation"
        response = await self.client.post(
            f"/rest/v1/{table}",
            params={"on_conflict": on_conflict},
            json=records,
            headers=headers,
        )
        check_response(response, self.retry_config)
        return response.json()

    @with_async_retry()
    async def delete(self, table: str, filters: Filters) -> None:
        """
        Physically delete rows matching ``filters``.

        Raises:
            ValueError: If no filter is given
        """
        if not filters:
            raise ValueError("Refusing to delete without filters")
        headers = self._auth_headers()
        headers["Prefer"] = "return=minimal"
        response = await self.client.delete(
            f"/rest/v1/{table}", params=filters, headers=headers
        )
        check_response(response, self.retry_config)

    async def get_usage(self) -> Optional[UsageInfo]:
        """
        Fetch the user's usage projection.

        Returns:
            UsageInfo or None if the service has no row for this user
        """
        row = await self.select_one(USAGE_TABLE, filters=[("user_id", eq(self.user_id))])
        return UsageInfo.model_validate(row) if row else None

    async def get_machine_uuid(self) -> Optional[str]:
        """Remote id of this device in the machines table, if registered."""
        row = await self.select_one(
            MACHINES_TABLE,
            filters=[
                ("user_id", eq(self.user_id)),
                ("machine_id", eq(self.machine_id)),
            ],
            columns="id",
        )
        return row["id"] if row else None

    @with_async_retry()
    async def upload(
        self,
        bucket: str,
        key: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        """
        Upload an object (overwriting any existing one).

        Returns:
            Public URL of the object
        """
        headers = self._auth_headers()
        headers["Content-Type"] = content_type
        headers["x-upsert"] = "true"
        response = await self.client.post(
            f"/storage/v1/object/{bucket}/{key}", content=content, headers=headers
        )
        check_response(response, self.retry_config)
        return self.public_url(bucket, key)

    @with_async_retry()
    async def download(self, bucket: str, key: str) -> bytes:
        response = await self.client.get(
            f"/storage/v1/object/{bucket}/{key}", headers=self._auth_headers()
        )
        check_response(response, self.retry_config)
        return response.content

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{key}"
