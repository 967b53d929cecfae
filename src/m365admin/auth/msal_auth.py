"""Delegated sign-in to Microsoft Graph with the MSAL device code flow.

An administrator runs the CLI, opens the verification URL on any device and
enters the code shown. Tokens (including the refresh token) are kept in a
local cache file so later runs sign in silently.

The Teams device inventory needs TeamworkDevice.Read.All and User.Read.All.
ensure_scopes() compares those with the scopes actually granted in the last
token response and, if any are missing, signs in again asking for them.

Usage:
    from m365admin.auth.msal_auth import GraphAuth

    auth = GraphAuth(
        client_id=config.auth.client_id,
        tenant_id=config.auth.tenant_id,
        scopes=config.auth.scopes,
        token_cache_path=config.auth.token_cache_path,
    )
    auth.ensure_scopes(["TeamworkDevice.Read.All", "User.Read.All"])
    token = auth.get_access_token()
"""

import os
import stat
from pathlib import Path
from typing import Any

import msal
from rich.console import Console
from rich.panel import Panel

from m365admin.core.errors import AuthenticationError
from m365admin.core.logging import get_logger

logger = get_logger(__name__)
console = Console(stderr=True)

APP_REGISTRATION_HELP = "Entra admin center → App registrations → your app"

# OAuth error codes returned by acquire_token_by_device_flow()
DEVICE_FLOW_ERRORS = {
    "authorization_pending": (
        "Authentication timed out. Run the command again and finish signing in "
        "before the code expires."
    ),
    "authorization_declined": "Authentication was declined. Accept the permission request to continue.",
    "expired_token": "The device code expired. Run the command again to get a new code.",
}

# Entra error codes found in error_description
AADSTS_ERRORS = {
    "AADSTS7000218": (
        "Device code flow is not enabled for this application. In "
        f"{APP_REGISTRATION_HELP} → Authentication, set 'Allow public client flows' to Yes."
    ),
    "AADSTS65001": (
        "The app has not been granted consent for the requested permissions. In "
        f"{APP_REGISTRATION_HELP} → API permissions, choose 'Grant admin consent'."
    ),
    "AADSTS50020": "The signed-in account does not belong to the configured tenant.",
}


def normalize_scope(scope: str) -> str:
    """Reduce a scope to its bare, case-folded permission name.

    Token responses may return either 'User.Read.All' or the resource-qualified
    'https://graph.microsoft.com/User.Read.All'.
    """
    return scope.rsplit("/", 1)[-1].strip().lower()


def describe_flow_error(result: dict[str, Any]) -> str:
    """Turn a failed device flow result into an actionable message."""
    error = result.get("error", "unknown_error")
    description = result.get("error_description") or "Authentication failed"
    if error in DEVICE_FLOW_ERRORS:
        return DEVICE_FLOW_ERRORS[error]
    for code, message in AADSTS_ERRORS.items():
        if code in description:
            return message
    return f"Authentication failed: {description}"


class TokenCacheFile:
    """MSAL serializable cache persisted to a file readable only by its owner."""

    def __init__(self, path: Path):
        self.path = path
        self.cache = msal.SerializableTokenCache()

    def load(self) -> None:
        if not self.path.exists():
            return
        try:
            self.cache.deserialize(self.path.read_text())
        except (OSError, ValueError) as e:
            # The next sign-in falls back to the device code flow
            logger.warning("Ignoring unreadable token cache", path=str(self.path), error=str(e))

    def save(self) -> None:
        if not self.cache.has_state_changed:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(self.cache.serialize())
            os.chmod(self.path, stat.S_IRUSR | stat.S_IWUSR)
        except OSError as e:
            logger.error("Failed to save token cache", path=str(self.path), error=str(e))

    def delete(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to delete token cache", path=str(self.path), error=str(e))


class GraphAuth:
    """Device code sign-in with a persistent cache and a scope gate.

    Attributes:
        client_id: Entra ID application (client) id of a public client app
        tenant_id: Directory id, or 'organizations' for any work account
        scopes: Scopes requested at sign-in; grows when ensure_scopes() needs more
        cache: The MSAL token cache backing the client application
    """

    def __init__(
        self,
        client_id: str,
        tenant_id: str,
        scopes: list[str],
        token_cache_path: str,
    ):
        if not client_id or not client_id.strip():
            raise ValueError(
                "client_id is required. Register a public client app under "
                "Entra admin center → App registrations and copy its Application (client) ID."
            )

        self.client_id = client_id
        self.tenant_id = tenant_id
        self.scopes = list(scopes)
        self._cache_file = TokenCacheFile(Path(token_cache_path))
        self._cache_file.load()
        self.cache = self._cache_file.cache
        self._granted: set[str] = set()

        self.app = msal.PublicClientApplication(
            client_id=client_id,
            authority=f"https://login.microsoftonline.com/{tenant_id}",
            token_cache=self.cache,
        )

    @property
    def token_cache_path(self) -> Path:
        return self._cache_file.path

    @property
    def granted_scopes(self) -> set[str]:
        """Normalized scopes granted by the most recent token response."""
        return set(self._granted)

    def get_access_token(self) -> str:
        """Return an access token, signing in interactively when the cache cannot help.

        Raises:
            AuthenticationError: If sign-in fails
        """
        accounts = self.app.get_accounts()
        if accounts:
            result = self.app.acquire_token_silent(scopes=self.scopes, account=accounts[0])
            if result and "access_token" in result:
                return self._accept(result)
            logger.debug(
                "Silent token acquisition failed",
                account=accounts[0].get("username"),
                error=(result or {}).get("error"),
            )
        return self._device_code_flow()

    def missing_scopes(self, required: list[str]) -> list[str]:
        """Required scopes that the last token response did not grant."""
        return [scope for scope in required if normalize_scope(scope) not in self._granted]

    def ensure_scopes(self, required: list[str]) -> None:
        """Make sure the session holds every scope in `required`.

        Missing scopes are added to the request and the administrator is asked
        to sign in once more. There is no second attempt.

        Raises:
            AuthenticationError: If the scopes are still missing afterwards
        """
        self.get_access_token()
        missing = self.missing_scopes(required)
        if not missing:
            return

        logger.warning("Session lacks required scopes, signing in again", missing=missing)
        requested = {normalize_scope(s) for s in self.scopes}
        self.scopes.extend(s for s in required if normalize_scope(s) not in requested)
        self._device_code_flow()

        still_missing = self.missing_scopes(required)
        if still_missing:
            raise AuthenticationError(
                f"Sign-in did not grant: {', '.join(still_missing)}. "
                f"{AADSTS_ERRORS['AADSTS65001']}"
            )

    def clear_cache(self) -> None:
        """Sign out: forget cached accounts and delete the cache file."""
        for account in self.app.get_accounts():
            self.app.remove_account(account)
        self._granted = set()
        self._cache_file.delete()
        logger.info("Signed out", path=str(self.token_cache_path))

    def _accept(self, result: dict[str, Any]) -> str:
        # Cache hits carry no "scope"; MSAL only returns them for a token matching self.scopes
        granted = result.get("scope", self.scopes)
        if isinstance(granted, str):
            granted = granted.split()
        self._granted = {normalize_scope(s) for s in granted if s}
        self._cache_file.save()
        return result["access_token"]

    def _device_code_flow(self) -> str:
        flow = self.app.initiate_device_flow(scopes=self.scopes)
        if "user_code" not in flow:
            reason = flow.get("error_description", "unknown error")
            logger.error("Device code flow could not start", error=reason)
            raise AuthenticationError(
                f"Could not start device code sign-in: {reason}. Check that "
                f"'Allow public client flows' is enabled in {APP_REGISTRATION_HELP} → Authentication."
            )

        self._display_auth_prompt(flow["verification_uri"], flow["user_code"])
        result = self.app.acquire_token_by_device_flow(flow)

        if "access_token" not in result:
            message = describe_flow_error(result)
            logger.error("Device code sign-in failed", error=result.get("error"))
            raise AuthenticationError(message)

        logger.info(
            "Signed in",
            username=result.get("id_token_claims", {}).get("preferred_username", "unknown"),
        )
        return self._accept(result)

    def _display_auth_prompt(self, verification_uri: str, user_code: str) -> None:
        console.print(
            Panel(
                f"Open [bold blue]{verification_uri}[/bold blue] and enter "
                f"[bold green]{user_code}[/bold green]\n\n"
                f"Sign in with an account allowed to read Teams devices.\n"
                f"Permissions requested: {', '.join(self.scopes)}",
                title="Microsoft 365 sign-in",
                border_style="bright_blue",
            )
        )
