from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncGenerator

import httpx

from auth import google_oauth2
from auth.consent_flow import ConsentFlow
from auth.errors import (
    AuthenticationError,
    AuthError,
    ConfigurationError,
    RefreshFailure,
)
from auth.token_store import CredentialRecord, TokenStore
from bloggermcp.constants import REFRESH_MARGIN_SECONDS
from bloggermcp.http import create_http_client

LOGGER = logging.getLogger("bloggermcp.auth")


class CredentialProvider:
    """Hands out a usable access token, refreshing or re-consenting as needed.

    Construct one per process and pass it to everything that needs to call
    the API. Calls are serialized, so concurrent callers share the outcome of
    a single refresh or consent flow.
    """

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        token_store: TokenStore,
        consent_flow: ConsentFlow | None = None,
        scopes: list[str] | None = None,
        refresh_margin_seconds: float = REFRESH_MARGIN_SECONDS,
        http_client: httpx.AsyncClient | None = None,
        refresh_token_fn=google_oauth2.refresh_token,
        revoke_token_fn=google_oauth2.revoke_token,
        now=time.time,
    ) -> None:
        if not client_id or not client_secret:
            raise ConfigurationError(
                "OAuth client credentials are missing. Set GOOGLE_CLIENT_ID and "
                "GOOGLE_CLIENT_SECRET."
            )

        self.client_id = client_id
        self.client_secret = client_secret
        self.token_store = token_store
        self.refresh_margin_seconds = refresh_margin_seconds

        self._own_http_client = http_client is None
        self._http_client = http_client or create_http_client()
        self.consent_flow = consent_flow or ConsentFlow(
            client_id=client_id,
            client_secret=client_secret,
            token_store=token_store,
            scopes=scopes,
            http_client=self._http_client,
        )
        self._refresh_token_fn = refresh_token_fn
        self._revoke_token_fn = revoke_token_fn
        self._now = now
        self._lock = asyncio.Lock()

    async def get_authenticated_client(self) -> str:
        async with self._lock:
            try:
                record = await self._acquire()
            except AuthError as error:
                raise AuthenticationError.from_error(error) from error
        return record.access_token

    async def _acquire(self) -> CredentialRecord:
        record = await self.token_store.load()
        if record is None:
            LOGGER.info("No cached credential; starting authorization flow")
            return await self.consent_flow.run()

        if not record.is_expired(now=self._now(), margin_seconds=self.refresh_margin_seconds):
            return record

        if record.refresh_token:
            try:
                return await self._refresh(record)
            except RefreshFailure as error:
                if error.transient:
                    raise
                LOGGER.warning("Refresh token rejected; re-authorization required: %s", error)
        else:
            LOGGER.info("Cached credential expired and has no refresh token")

        await self.token_store.clear()
        return await self.consent_flow.run()

    async def _refresh(self, record: CredentialRecord) -> CredentialRecord:
        LOGGER.info("Refreshing expired access token")
        tokens = await self._refresh_token_fn(
            client_id=self.client_id,
            client_secret=self.client_secret,
            refresh_token=record.refresh_token,
            client=self._http_client,
        )
        refreshed = tokens.to_record(previous=record)
        await self.token_store.save(refreshed)
        return refreshed

    async def revoke_auth(self) -> bool:
        """Revoke remotely (best effort) and always clear the local credential."""
        async with self._lock:
            revoked = False
            try:
                record = await self.token_store.load()
                if record is not None:
                    try:
                        await self._revoke_token_fn(
                            record.refresh_token or record.access_token,
                            client=self._http_client,
                        )
                        revoked = True
                    except AuthError as error:
                        LOGGER.warning(
                            "Remote revocation failed; clearing local credential anyway: %s", error
                        )
            finally:
                await self.token_store.clear()
        LOGGER.info("Local credential cleared")
        return revoked

    async def status(self) -> dict:
        record = await self.token_store.load()
        if record is None:
            return {"authenticated": False}
        return {
            "authenticated": True,
            "expired": record.is_expired(now=self._now()),
            "expires_at": record.expires_at_iso(),
            "has_refresh_token": record.refresh_token is not None,
            "scope": list(record.scope),
        }

    async def aclose(self) -> None:
        if self._own_http_client:
            await self._http_client.aclose()


class CredentialAuth(httpx.Auth):
    """httpx auth that signs each request with the provider's current token."""

    def __init__(self, provider: CredentialProvider) -> None:
        self._provider = provider

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        access_token = await self._provider.get_authenticated_client()
        request.headers["Authorization"] = f"Bearer {access_token}"
        yield request
