"""
Zoom API client (Server-to-Server OAuth).

Tokens are cached until shortly before expiry. A 401 on a request forces
one token refresh and one retry. Transport errors, timeouts, rate limits
and 5xx responses raise MeetingProviderError so the reconciler can leave
the window pending and try again on a later tick.
"""

import base64
import logging
import os
import time
from urllib.parse import quote

import httpx
import sentry_sdk

from ..config import get_provider_timeout_seconds

logger = logging.getLogger(__name__)

ZOOM_API_BASE = "https://api.zoom.us/v2"
ZOOM_TOKEN_URL = "https://zoom.us/oauth/token"

# Refresh this many seconds before the token actually expires
TOKEN_EXPIRY_MARGIN = 60


class MeetingProviderError(Exception):
    """Transient provider failure; the request may succeed if retried."""


class ProviderNotFound(Exception):
    """The provider has no such resource (404 or Zoom's 3001 "not found")."""


def is_provider_configured() -> bool:
    return all(
        os.environ.get(name)
        for name in ("ZOOM_ACCOUNT_ID", "ZOOM_CLIENT_ID", "ZOOM_CLIENT_SECRET")
    )


def encode_meeting_uuid(uuid: str) -> str:
    """
    Encode a meeting instance UUID for use in a URL path.

    Zoom requires UUIDs that start with "/" or contain "//" to be encoded twice.
    """
    if uuid.startswith("/") or "//" in uuid:
        return quote(quote(uuid, safe=""), safe="")
    return quote(uuid, safe="")


class ZoomClient:
    def __init__(
        self,
        account_id: str,
        client_id: str,
        client_secret: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.account_id = account_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout if timeout is not None else get_provider_timeout_seconds()
        self._transport = transport
        self._token: str | None = None
        self._token_expires_at = 0.0

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _fetch_token(self) -> str:
        credentials = base64.b64encode(
            f"{self.client_id}:{self.client_secret}".encode()
        ).decode()
        try:
            async with self._client() as client:
                response = await client.post(
                    ZOOM_TOKEN_URL,
                    params={
                        "grant_type": "account_credentials",
                        "account_id": self.account_id,
                    },
                    headers={"Authorization": f"Basic {credentials}"},
                )
        except httpx.HTTPError as e:
            raise MeetingProviderError(f"Token request failed: {e}") from e

        if response.status_code != 200:
            raise MeetingProviderError(
                f"Token request returned {response.status_code}: {response.text[:200]}"
            )

        data = response.json()
        self._token = data["access_token"]
        self._token_expires_at = time.monotonic() + int(data.get("expires_in", 3600))
        return self._token

    async def _get_token(self, force_refresh: bool = False) -> str:
        if (
            force_refresh
            or self._token is None
            or time.monotonic() >= self._token_expires_at - TOKEN_EXPIRY_MARGIN
        ):
            return await self._fetch_token()
        return self._token

    async def get(self, path: str, params: dict | None = None) -> dict:
        """
        GET a JSON resource from the Zoom API.

        Raises:
            ProviderNotFound: 404, or 400 with Zoom's "not found" codes
            MeetingProviderError: Anything that may succeed on retry
        """
        token = await self._get_token()
        response = await self._send(path, params, token)

        if response.status_code == 401:
            logger.info("Zoom token rejected, refreshing")
            token = await self._get_token(force_refresh=True)
            response = await self._send(path, params, token)

        if response.status_code == 200:
            return response.json()

        if response.status_code == 404 or (
            response.status_code == 400 and _zoom_error_code(response) in (3001, 1001)
        ):
            raise ProviderNotFound(f"{path}: {response.text[:200]}")

        if response.status_code == 429:
            sentry_sdk.capture_message(f"Zoom rate limit: {path}", level="warning")

        raise MeetingProviderError(
            f"Zoom API {path} returned {response.status_code}: {response.text[:200]}"
        )

    async def _send(self, path: str, params: dict | None, token: str) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.get(
                    f"{ZOOM_API_BASE}{path}",
                    params=params,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            raise MeetingProviderError(f"Zoom API {path} request failed: {e}") from e


def _zoom_error_code(response: httpx.Response) -> int | None:
    try:
        return response.json().get("code")
    except ValueError:
        return None


_client: ZoomClient | None = None


def get_client() -> ZoomClient | None:
    """Get or create the shared client. Returns None if credentials are missing."""
    global _client

    if _client is not None:
        return _client

    if not is_provider_configured():
        return None

    _client = ZoomClient(
        account_id=os.environ["ZOOM_ACCOUNT_ID"],
        client_id=os.environ["ZOOM_CLIENT_ID"],
        client_secret=os.environ["ZOOM_CLIENT_SECRET"],
    )
    return _client


def set_client(client: ZoomClient | None) -> None:
    """Replace the shared client (tests and scripts)."""
    global _client
    _client = client
