"""Tenant-level lookups that do not require a Graph session."""

from m365admin.tenant.domains import DomainRecord, TenantDomainResolver, get_tenant_domains

__all__ = ["DomainRecord", "TenantDomainResolver", "get_tenant_domains"]
