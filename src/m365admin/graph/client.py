"""Synchronous Microsoft Graph client for the admin helpers.

Wraps a requests.Session with:
- a bearer token from GraphAuth on every call
- translation of Graph error bodies into GraphAPIError / RateLimitExceeded
- `$batch` submission, split into POSTs of at most 20 sub-requests
- collection of `@odata.nextLink` pages

Nothing is retried. A failed call, including a throttled one, surfaces to the
caller with the status and Graph error code attached.

Usage:
    from m365admin.graph.client import GraphClient

    client = GraphClient(auth)
    device = client.get("/teamwork/devices/abc")
    responses = client.batch([BatchRequest(id="abc", url="/teamwork/devices/abc/health")])
"""

from typing import Any

import requests

from m365admin.auth.msal_auth import GraphAuth
from m365admin.config_schema import GRAPH_BETA_URL
from m365admin.core.errors import AuthenticationError, GraphAPIError, RateLimitExceeded
from m365admin.core.logging import get_logger
from m365admin.graph.batch import (
    BATCH_MAX_SIZE,
    BatchRequest,
    BatchResponse,
    build_batch_payload,
)

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0

# Appended to the Graph error message for the statuses an administrator can act on
STATUS_HINTS = {
    401: "The access token was rejected. Run 'm365admin logout' and sign in again.",
    403: (
        "The signed-in account or app lacks permission. TeamworkDevice.Read.All and "
        "User.Read.All need admin consent in Entra ID."
    ),
    404: "No such resource; check the device id or endpoint.",
}


def parse_graph_error(response: requests.Response) -> tuple[str, str]:
    """Return (error_code, message) from a Graph error body, tolerating non-JSON bodies."""
    try:
        error = response.json().get("error") or {}
    except ValueError:
        return "unknown", response.text or f"HTTP {response.status_code}"
    return error.get("code", "unknown"), error.get("message") or response.text or ""


class GraphClient:
    """Microsoft Graph client bound to one signed-in session.

    Attributes:
        auth: Supplies access tokens
        base_url: Base URL that relative endpoints are joined to (beta by default)
        timeout: Per-request timeout in seconds
        session: Shared requests.Session
    """

    def __init__(
        self,
        auth: GraphAuth,
        base_url: str = GRAPH_BETA_URL,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.auth = auth
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()

    def _headers(self) -> dict[str, str]:
        try:
            token = self.auth.get_access_token()
        except AuthenticationError:
            raise
        except Exception as e:
            logger.error("Token acquisition raised unexpectedly", error=str(e))
            raise AuthenticationError(
                f"Cannot obtain a Microsoft Graph token: {e}. "
                "Run 'm365admin validate-config' to check the auth settings."
            ) from e
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _url(self, endpoint: str) -> str:
        # nextLink pages and v1.0 user lookups arrive as absolute URLs
        if endpoint.startswith(("https://", "http://")):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def _raise_for_status(self, response: requests.Response, method: str, endpoint: str) -> None:
        status = response.status_code
        error_code, message = parse_graph_error(response)
        logger.error(
            "Graph request failed",
            method=method,
            endpoint=endpoint,
            status_code=status,
            error_code=error_code,
            error_message=message[:200],
        )

        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitExceeded(
                f"Throttled by Microsoft Graph (429) on {endpoint}; "
                f"Retry-After: {retry_after or 'not given'}.",
                retry_after=retry_after,
            )

        text = f"Graph {method} {endpoint} failed ({status}): {message}"
        if status in STATUS_HINTS:
            text += f" {STATUS_HINTS[status]}"
        raise GraphAPIError(text, status_code=status, error_code=error_code)

    def request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send one request and return the decoded JSON body ({} for 204).

        Raises:
            AuthenticationError: If no token can be obtained
            RateLimitExceeded: On 429
            GraphAPIError: On any other error status or a transport failure
        """
        timeout = timeout or self.timeout
        headers = self._headers()
        logger.debug("Graph request", method=method, endpoint=endpoint)

        try:
            response = self.session.request(
                method=method,
                url=self._url(endpoint),
                headers=headers,
                params=params,
                json=json,
                timeout=timeout,
            )
        except requests.exceptions.Timeout:
            raise GraphAPIError(
                f"Graph {method} {endpoint} timed out after {timeout}s.", status_code=None
            ) from None
        except requests.exceptions.RequestException as e:
            raise GraphAPIError(
                f"Connection to Microsoft Graph failed: {e}", status_code=None
            ) from e

        if response.status_code >= 400:
            self._raise_for_status(response, method, endpoint)
        if response.status_code == 204:
            return {}
        return response.json()

    def get(self, endpoint: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.request("GET", endpoint, params=params)

    def post(self, endpoint: str, json: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.request("POST", endpoint, json=json)

    def collect_pages(self, first_page: dict[str, Any]) -> list[dict[str, Any]]:
        """Return the `value` items of a collection, following @odata.nextLink.

        Args:
            first_page: A collection body already in hand, e.g. a $batch sub-response
        """
        items = list(first_page.get("value") or [])
        next_link = first_page.get("@odata.nextLink")
        pages = 1
        while next_link:
            page = self.get(next_link)
            items.extend(page.get("value") or [])
            next_link = page.get("@odata.nextLink")
            pages += 1
        if pages > 1:
            logger.debug("Collected paged results", pages=pages, items=len(items))
        return items

    def batch(self, requests_: list[BatchRequest]) -> list[BatchResponse]:
        """Send sub-requests through $batch and return every sub-response.

        Lists longer than BATCH_MAX_SIZE go out as consecutive POSTs. A failed
        sub-request is returned with its status; only a failed POST raises.

        Raises:
            ValueError: If two sub-requests in one POST share an id
            GraphAPIError: If a $batch POST fails
        """
        responses: list[BatchResponse] = []
        for start in range(0, len(requests_), BATCH_MAX_SIZE):
            chunk = requests_[start : start + BATCH_MAX_SIZE]
            ids = [r.id for r in chunk]
            if len(set(ids)) != len(ids):
                raise ValueError(f"Duplicate sub-request ids in one $batch POST: {sorted(ids)}")

            logger.info("batch_request_sending", operation_count=len(chunk), chunk_start=start)
            body = self.post("/$batch", json=build_batch_payload(chunk))
            chunk_responses = [BatchResponse.from_dict(r) for r in body.get("responses", [])]

            throttled = [r.id for r in chunk_responses if r.status == 429]
            if throttled:
                logger.warning("Batch sub-requests throttled", request_ids=throttled)

            logger.info(
                "batch_request_complete", sent=len(chunk), received=len(chunk_responses)
            )
            responses.extend(chunk_responses)
        return responses
