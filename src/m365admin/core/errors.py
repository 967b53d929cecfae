"""Custom exception types for the Microsoft 365 admin helpers.

Error messages say what failed, where, why, and how to fix it when the fix
is known (e.g. which permission to grant in Entra ID).
"""


class M365AdminError(Exception):
    """Base exception for all m365admin errors."""

    pass


class ConfigValidationError(M365AdminError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(M365AdminError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class AuthenticationError(M365AdminError):
    """Raised when MSAL device code flow fails or required scopes cannot be obtained."""

    pass


class GraphAPIError(M365AdminError):
    """Raised when Microsoft Graph API returns an error or cannot be reached.

    Attributes:
        status_code: HTTP status code from the API (None for transport failures)
        error_code: Error code from Graph API response (if available)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class RateLimitExceeded(GraphAPIError):
    """Raised when Graph answers 429 Too Many Requests.

    Requests are not retried; the Retry-After value is kept so the caller
    can decide when to run again.
    """

    def __init__(self, message: str, retry_after: str | None = None):
        super().__init__(message, status_code=429, error_code="TooManyRequests")
        self.retry_after = retry_after
