from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from auth.consent_flow import ConsentFlow
from auth.credential_provider import CredentialAuth, CredentialProvider
from auth.errors import ConfigurationError
from auth.token_store import FileTokenStore
from bloggermcp.constants import LOGGER
from bloggermcp.env import Settings, load_env, load_settings, setup_logging, validate_settings
from bloggermcp.http import ApiKeyAuth, create_http_client
from bloggermcp.mcp_app import register_auth_tools

if TYPE_CHECKING:
    from fastmcp import FastMCP


def build_credential_provider(settings: Settings) -> CredentialProvider | None:
    if not settings.oauth_enabled:
        return None

    token_store = FileTokenStore(settings.token_path)
    http_client = create_http_client(
        timeout=settings.http_timeout,
        max_retries=settings.http_max_retries,
    )
    consent_flow = ConsentFlow(
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        token_store=token_store,
        scopes=settings.scopes,
        host=settings.callback_host,
        port=settings.callback_port,
        timeout_seconds=settings.consent_timeout,
        http_client=http_client,
    )
    return CredentialProvider(
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        token_store=token_store,
        consent_flow=consent_flow,
        refresh_margin_seconds=settings.refresh_margin,
        http_client=http_client,
    )


def resolve_auth(
    provider: CredentialProvider | None,
    api_key: str | None,
    *,
    require_write: bool = False,
) -> httpx.Auth:
    """Pick request auth: OAuth for writes, the API key for reads when available."""
    if provider is not None and (require_write or not api_key):
        return CredentialAuth(provider)
    if require_write:
        raise ConfigurationError(
            "OAuth authentication required. Please set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET."
        )
    if api_key:
        return ApiKeyAuth(api_key)
    raise ConfigurationError("No authentication method available.")


def create_mcp() -> "FastMCP":
    from fastmcp import FastMCP

    load_env()
    setup_logging()
    settings = load_settings()
    validate_settings(settings)

    provider = build_credential_provider(settings)
    mcp = FastMCP(name="Blogger MCP")
    if provider is not None:
        register_auth_tools(mcp, provider)
        LOGGER.info("Credential file: %s", settings.token_path)
    setattr(mcp, "_credential_provider", provider)
    return mcp


def main() -> None:
    mcp = create_mcp()
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
