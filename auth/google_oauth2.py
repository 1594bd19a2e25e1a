from __future__ import annotations

import base64
import hashlib
import secrets
import time
import urllib.parse
from dataclasses import dataclass

import httpx

from auth.errors import RefreshFailure, RevocationFailure, TokenExchangeFailure
from auth.token_store import CredentialRecord
from bloggermcp.constants import HTTP_TIMEOUT_SECONDS

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"


class TokenEndpointError(RuntimeError):
    def __init__(self, status_code: int, error: str | None, description: str) -> None:
        super().__init__(f"Token request failed with status {status_code}: {description}")
        self.status_code = status_code
        self.error = error

    @property
    def is_transient(self) -> bool:
        return self.status_code == 429 or self.status_code >= 500


@dataclass
class TokenResponse:
    access_token: str
    refresh_token: str | None
    expires_in: int
    expires_at: float
    scope: str

    @classmethod
    def from_payload(cls, payload: dict, *, now: float | None = None) -> "TokenResponse":
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        expires_in = payload.get("expires_in")
        scope = payload.get("scope", "")

        if not isinstance(access_token, str) or not access_token:
            raise ValueError("Token response missing access_token.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise ValueError("Token response refresh_token must be a string.")
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
            raise ValueError("Token response missing expires_in.")
        if not isinstance(scope, str):
            raise ValueError("Token response scope must be a string.")

        issued_at = time.time() if now is None else now
        return cls(
            access_token=access_token,
            refresh_token=refresh_token or None,
            expires_in=int(expires_in),
            expires_at=issued_at + int(expires_in),
            scope=scope,
        )

    def to_record(self, previous: CredentialRecord | None = None) -> CredentialRecord:
        """Build the record to persist, carrying over what a refresh omits."""
        refresh_token = self.refresh_token
        scope = self.scope.split()
        if previous is not None:
            refresh_token = refresh_token or previous.refresh_token
            scope = scope or list(previous.scope)
        return CredentialRecord(
            access_token=self.access_token,
            expires_at=int(round(self.expires_at * 1000)),
            refresh_token=refresh_token,
            scope=scope,
        )


def generate_state() -> str:
    return secrets.token_urlsafe(32)


def generate_code_verifier() -> str:
    while True:
        verifier = secrets.token_urlsafe(64)
        if 43 <= len(verifier) <= 128:
            return verifier


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    state: str,
    code_challenge: str | None = None,
) -> str:
    query = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(scopes),
        "state": state,
        "access_type": "offline",
        "prompt": "consent",
    }
    if code_challenge:
        query["code_challenge"] = code_challenge
        query["code_challenge_method"] = "S256"
    return f"{GOOGLE_AUTHORIZE_URL}?{urllib.parse.urlencode(query)}"


def _error_details(response: httpx.Response) -> tuple[str | None, str]:
    try:
        body = response.json()
    except ValueError:
        return None, response.text
    if not isinstance(body, dict):
        return None, response.text
    error = body.get("error")
    description = body.get("error_description") or error or response.text
    return (error if isinstance(error, str) else None), str(description)


async def _token_request(
    url: str,
    payload: dict[str, str],
    *,
    client: httpx.AsyncClient | None = None,
) -> httpx.Response:
    own_client = client is None
    http_client = client or httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)

    try:
        response = await http_client.post(url, data=payload)
        response.raise_for_status()
    except httpx.HTTPStatusError as error:
        code, description = _error_details(error.response)
        raise TokenEndpointError(error.response.status_code, code, description) from error
    finally:
        if own_client:
            await http_client.aclose()

    return response


async def exchange_code(
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    code_verifier: str | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    payload = {
        "grant_type": "authorization_code",
        "client_id": client_id,
        "client_secret": client_secret,
        "code": code,
        "redirect_uri": redirect_uri,
    }
    if code_verifier:
        payload["code_verifier"] = code_verifier

    try:
        response = await _token_request(GOOGLE_TOKEN_URL, payload, client=client)
        return TokenResponse.from_payload(response.json())
    except (httpx.TransportError, TokenEndpointError, ValueError) as error:
        raise TokenExchangeFailure(
            f"Failed to exchange authorization code: {error}"
        ) from error


async def refresh_token(
    client_id: str,
    client_secret: str,
    refresh_token: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    payload = {
        "grant_type": "refresh_token",
        "client_id": client_id,
        "client_secret": client_secret,
        "refresh_token": refresh_token,
    }

    try:
        response = await _token_request(GOOGLE_TOKEN_URL, payload, client=client)
        return TokenResponse.from_payload(response.json())
    except httpx.TransportError as error:
        raise RefreshFailure(f"Token refresh failed: {error}", transient=True) from error
    except TokenEndpointError as error:
        raise RefreshFailure(
            f"Token refresh failed: {error}", transient=error.is_transient
        ) from error
    except ValueError as error:
        raise RefreshFailure(f"Token refresh returned an invalid payload: {error}") from error


async def revoke_token(
    token: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> None:
    try:
        await _token_request(GOOGLE_REVOKE_URL, {"token": token}, client=client)
    except (httpx.TransportError, TokenEndpointError) as error:
        raise RevocationFailure(f"Token revocation failed: {error}") from error
