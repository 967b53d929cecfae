"""Authentication module for Microsoft Graph API.

Provides MSAL-based OAuth2 device code flow authentication.

Usage:
    from m365admin.auth import GraphAuth

    auth = GraphAuth(
        client_id="your-client-id",
        tenant_id="your-tenant-id",
        scopes=["TeamworkDevice.Read.All", "User.Read.All"],
        token_cache_path="data/token_cache.json",
    )

    token = auth.get_access_token()
"""

from m365admin.auth.msal_auth import GraphAuth

__all__ = ["GraphAuth"]
