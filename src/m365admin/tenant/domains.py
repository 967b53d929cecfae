"""Tenant domain lookup via the federation metadata endpoint.

Any domain registered in a Microsoft 365 tenant resolves, through the ACS
federation metadata document, to the tenant's list of allowed audiences.
Audiences of the form '<app-id>/<host>@<domain>' carry the tenant's domains.

The lookup never raises for remote failures: a domain that is not part of a
Microsoft 365 tenant (HTTP 400), a transport failure or a malformed response
each produce one warning and an empty result.

Usage:
    from m365admin.tenant.domains import get_tenant_domains

    for record in get_tenant_domains("contoso.com"):
        print(record.name)
"""

from dataclasses import dataclass
from typing import Any, Literal

import regex
import requests

from m365admin.config_schema import FEDERATION_METADATA_URL
from m365admin.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0
REGEX_TIMEOUT = 1.0

# Everything up to the first '@', then a suffix containing a dot
AUDIENCE_DOMAIN_PATTERN = regex.compile(r"^([^@]*@)(.*[.].*)$")

LookupErrorKind = Literal["expected_non_fatal", "transport_error", "unknown"]


@dataclass(frozen=True, slots=True)
class DomainRecord:
    """One domain associated with a tenant."""

    name: str


def classify_lookup_error(error: Exception) -> LookupErrorKind:
    """Map a failure of the metadata request to its error kind.

    HTTP 400 means the domain does not belong to a Microsoft 365 tenant. A body
    that is not JSON is "unknown" even though requests raises it as a
    RequestException.
    """
    if isinstance(error, requests.exceptions.JSONDecodeError):
        return "unknown"
    if isinstance(error, requests.exceptions.HTTPError):
        response = error.response
        if response is not None and response.status_code == 400:
            return "expected_non_fatal"
        return "transport_error"
    if isinstance(error, requests.exceptions.RequestException):
        return "transport_error"
    return "unknown"


def extract_audience_domain(audience: Any) -> str | None:
    """Return the domain part of an allowed audience, or None if it has none."""
    if not isinstance(audience, str):
        return None
    try:
        match = AUDIENCE_DOMAIN_PATTERN.match(audience, timeout=REGEX_TIMEOUT)
    except TimeoutError:
        logger.warning("Regex timeout matching audience", audience=audience[:50])
        return None
    if match is None:
        return None
    return match.group(2)


def parse_domains(metadata: dict[str, Any]) -> list[DomainRecord]:
    """Extract domain records from a federation metadata document.

    Order is preserved and duplicates are kept.
    """
    audiences = metadata.get("allowedAudiences") or []
    records = []
    for audience in audiences:
        name = extract_audience_domain(audience)
        if name is not None:
            records.append(DomainRecord(name=name))
    return records


class TenantDomainResolver:
    """Resolves a domain to every domain of the Microsoft 365 tenant owning it.

    Attributes:
        metadata_url_template: Metadata URL with a {domain} placeholder
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        metadata_url_template: str = FEDERATION_METADATA_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ):
        self.metadata_url_template = metadata_url_template
        self.timeout = timeout
        self.session = session or requests.Session()

    def get_domains(self, domain: str) -> list[DomainRecord]:
        """Look up the tenant domains for `domain`.

        Args:
            domain: A domain registered in the tenant (e.g. 'contoso.com')

        Returns:
            Domain records, empty when the lookup fails or the tenant has none

        Raises:
            ValueError: If domain is empty
        """
        if not domain or not domain.strip():
            raise ValueError("domain is required (e.g. 'contoso.com')")

        domain = domain.strip()
        url = self.metadata_url_template.format(domain=domain)
        logger.debug("Fetching federation metadata", domain=domain)

        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            records = parse_domains(response.json())
        except Exception as e:
            self._report_failure(domain, e)
            return []

        logger.info("Tenant domains resolved", domain=domain, count=len(records))
        return records

    def _report_failure(self, domain: str, error: Exception) -> None:
        kind = classify_lookup_error(error)
        if kind == "expected_non_fatal":
            logger.warning(
                "Domain is not part of a Microsoft 365 tenant",
                domain=domain,
                error_kind=kind,
            )
        elif kind == "transport_error":
            logger.warning(
                "Federation metadata request failed",
                domain=domain,
                error_kind=kind,
                error=str(error),
            )
        else:
            logger.warning(
                "Unexpected error while resolving tenant domains",
                domain=domain,
                error_kind=kind,
                error_type=type(error).__name__,
            )


def get_tenant_domains(
    domain: str,
    metadata_url_template: str = FEDERATION_METADATA_URL,
    timeout: float = DEFAULT_TIMEOUT,
) -> list[DomainRecord]:
    """Convenience wrapper around TenantDomainResolver.get_domains()."""
    resolver = TenantDomainResolver(metadata_url_template=metadata_url_template, timeout=timeout)
    return resolver.get_domains(domain)
