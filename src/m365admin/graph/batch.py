"""Graph JSON batching primitives.

Microsoft Graph's $batch endpoint accepts up to 20 sub-requests per POST and
answers with one response per sub-request, correlated by id. This module holds
the request/response types, the envelope serializer and the queue used to
accumulate secondary lookups across a device list.

Usage:
    from m365admin.graph.batch import BatchRequest, SecondaryLookupQueue

    queue = SecondaryLookupQueue(client.batch, flush_threshold=15)
    queue.queue_user("user-id")
    queue.flush_if_full()
    ...
    queue.flush()
    upn = queue.get("user-id").get("userPrincipalName", "")
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from m365admin.core.logging import get_logger

logger = get_logger(__name__)

BATCH_MAX_SIZE = 20  # Graph API limit per $batch POST
DEFAULT_FLUSH_THRESHOLD = 15

# Per-device lookups queued in detailed mode, in the order they are queued
DEVICE_DETAIL_KINDS = ("activity", "configuration", "health", "operations")


@dataclass(frozen=True, slots=True)
class BatchRequest:
    """One Graph sub-request inside a $batch POST."""

    id: str
    url: str
    method: str = "GET"

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "method": self.method, "url": self.url}


@dataclass(frozen=True, slots=True)
class BatchResponse:
    """One sub-response from a $batch POST."""

    id: str
    status: int
    body: Any = None

    @property
    def ok(self) -> bool:
        return self.status == 200

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BatchResponse":
        return cls(
            id=str(data.get("id", "")),
            status=int(data.get("status", 0)),
            body=data.get("body"),
        )


def build_batch_payload(requests: Iterable[BatchRequest]) -> dict[str, list[dict[str, str]]]:
    """Serialize sub-requests into a $batch envelope.

    The envelope always holds a JSON array, including for a single request.
    """
    return {"requests": [request.to_dict() for request in requests]}


def collect_bodies(responses: Iterable[BatchResponse]) -> dict[str, Any]:
    """Map sub-response id to body, keeping only 200 responses."""
    bodies: dict[str, Any] = {}
    for response in responses:
        if response.ok:
            bodies[response.id] = response.body
        else:
            logger.debug(
                "batch_subrequest_skipped",
                request_id=response.id,
                status=response.status,
            )
    return bodies


def device_detail_id(device_id: str, kind: str) -> str:
    """Request id for a per-device lookup, unique within a shared batch."""
    return f"{device_id}-{kind}"


def device_detail_requests(device_id: str) -> list[BatchRequest]:
    """Build the activity/configuration/health/operations lookups for a device."""
    return [
        BatchRequest(
            id=device_detail_id(device_id, kind),
            url=f"/teamwork/devices/{device_id}/{kind}",
        )
        for kind in DEVICE_DETAIL_KINDS
    ]


@dataclass
class SecondaryLookupQueue:
    """Accumulates secondary lookups and dispatches them in bounded batches.

    User lookups are deduplicated against everything queued or already sent
    during the lifetime of the queue. The queue is request-scoped: create one
    per orchestration call.

    Attributes:
        dispatch: Callable that sends one batch and returns its sub-responses
        flush_threshold: Flush once more than this many lookups are pending
        batches_sent: Number of batches dispatched so far
    """

    dispatch: Callable[[list[BatchRequest]], list[BatchResponse]]
    flush_threshold: int = DEFAULT_FLUSH_THRESHOLD
    batches_sent: int = field(default=0, init=False)
    _pending: list[BatchRequest] = field(default_factory=list, init=False, repr=False)
    _seen_users: set[str] = field(default_factory=set, init=False, repr=False)
    _bodies: dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def queue_user(self, user_id: str | None) -> bool:
        """Queue a user profile lookup unless already queued or fetched.

        Returns:
            True if a lookup was added
        """
        if not user_id or user_id in self._seen_users:
            return False
        self._seen_users.add(user_id)
        self._pending.append(BatchRequest(id=user_id, url=f"/users/{user_id}"))
        return True

    def queue_device_details(self, device_id: str) -> None:
        """Queue the four per-device detail lookups."""
        self._pending.extend(device_detail_requests(device_id))

    def flush_if_full(self) -> bool:
        """Dispatch pending lookups if their count exceeds the threshold.

        Returns:
            True if a batch was dispatched
        """
        if len(self._pending) > self.flush_threshold:
            self.flush()
            return True
        return False

    def flush(self) -> None:
        """Dispatch whatever is pending as one batch (no-op when empty)."""
        if not self._pending:
            return

        batch, self._pending = self._pending, []
        logger.debug("secondary_lookups_flushing", count=len(batch))
        responses = self.dispatch(batch)
        self.batches_sent += 1
        self._bodies.update(collect_bodies(responses))

    def get(self, request_id: str) -> dict[str, Any]:
        """Return the body for a completed lookup, or {} if it failed or never ran."""
        body = self._bodies.get(request_id)
        return body if isinstance(body, dict) else {}
