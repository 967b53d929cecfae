"""Microsoft Graph API client module.

Provides:
- GraphClient: authenticated requests, error mapping, pagination and $batch
- Batch primitives: BatchRequest, BatchResponse and SecondaryLookupQueue

Usage:
    from m365admin.auth import GraphAuth
    from m365admin.graph import BatchRequest, GraphClient

    auth = GraphAuth(client_id, tenant_id, scopes, cache_path)
    client = GraphClient(auth)
    responses = client.batch([BatchRequest(id="1", url="/teamwork/devices/")])
"""

from m365admin.graph.batch import BatchRequest, BatchResponse, SecondaryLookupQueue
from m365admin.graph.client import GraphClient

__all__ = [
    "BatchRequest",
    "BatchResponse",
    "GraphClient",
    "SecondaryLookupQueue",
]
