from __future__ import annotations

from typing import TYPE_CHECKING

from .constants import APP_VERSION

if TYPE_CHECKING:
    from fastmcp import FastMCP

    from auth.credential_provider import CredentialProvider


def build_auth_tools(provider: "CredentialProvider") -> dict:
    async def authenticate() -> dict:
        """Make sure a valid Blogger credential is available, authorizing in the browser if needed."""
        await provider.get_authenticated_client()
        return await provider.status()

    async def auth_status() -> dict:
        """Report whether a Blogger credential is cached and when it expires."""
        return {**await provider.status(), "version": APP_VERSION}

    async def revoke_auth() -> dict:
        """Revoke the Blogger authorization and delete the cached credential."""
        revoked = await provider.revoke_auth()
        return {"revoked_remotely": revoked, "cleared": True}

    return {
        "authenticate": authenticate,
        "auth_status": auth_status,
        "revoke_auth": revoke_auth,
    }


def register_auth_tools(mcp: "FastMCP", provider: "CredentialProvider") -> None:
    for name, fn in build_auth_tools(provider).items():
        mcp.tool(name=name)(fn)
