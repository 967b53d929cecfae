"""Teams device inventory over the Graph $batch endpoint.

Two paths:
- A single device id: one batch with the device and its four detail
  lookups, plus a direct user lookup for the signed-in account's UPN.
- A list: one batch of device-type queries, then secondary lookups (user
  profiles, and per-device details when detailed output is requested) queued
  across the whole list and flushed in bounded batches.

Both paths first check that the session holds TeamworkDevice.Read.All and
User.Read.All. Failure of a $batch POST propagates; a failed sub-request only
leaves the matching fields empty.

Usage:
    from m365admin.teams.devices import TeamsDeviceInventory

    inventory = TeamsDeviceInventory(client, auth)
    rooms = inventory.get_devices(device_filter="MTR", detailed=True)
    one = inventory.get_devices(device_id="a1b2c3")
"""

from collections.abc import Callable
from typing import Any

from m365admin.auth.msal_auth import GraphAuth
from m365admin.config_schema import GRAPH_V1_URL, TEAMS_DEVICE_SCOPES
from m365admin.core.errors import GraphAPIError
from m365admin.core.logging import get_logger
from m365admin.graph.batch import (
    DEFAULT_FLUSH_THRESHOLD,
    BatchRequest,
    SecondaryLookupQueue,
    collect_bodies,
    device_detail_id,
    device_detail_requests,
)
from m365admin.graph.client import GraphClient
from m365admin.teams.device_types import device_types_for_filter
from m365admin.teams.records import (
    TeamsDeviceDetailRecord,
    TeamsDeviceRecord,
    build_detail_record,
    build_device_record,
    record_sort_key,
)

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int], None]


def build_list_requests(device_filter: str | None) -> list[BatchRequest]:
    """Build the device-type queries for a filter category.

    No filter means a single unfiltered query.
    """
    if device_filter is None:
        return [BatchRequest(id="all", url="/teamwork/devices/")]
    return [
        BatchRequest(
            id=device_type,
            url=f"/teamwork/devices/?$filter=deviceType eq '{device_type}'",
        )
        for device_type in device_types_for_filter(device_filter)
    ]


def _current_user_id(device: dict[str, Any]) -> str | None:
    current_user = device.get("currentUser")
    if isinstance(current_user, dict):
        return current_user.get("id") or None
    return None


class TeamsDeviceInventory:
    """Retrieves Teams device records through Graph batches.

    Attributes:
        client: GraphClient pointed at the beta endpoint
        auth: GraphAuth used for the scope check
        flush_threshold: Pending secondary lookups that trigger a flush once exceeded
        users_base_url: Base URL for the direct user lookup of the single-device path
        progress: Optional callback receiving (devices_processed, devices_total)
    """

    def __init__(
        self,
        client: GraphClient,
        auth: GraphAuth,
        flush_threshold: int = DEFAULT_FLUSH_THRESHOLD,
        users_base_url: str = GRAPH_V1_URL,
        progress: ProgressCallback | None = None,
    ):
        self.client = client
        self.auth = auth
        self.flush_threshold = flush_threshold
        self.users_base_url = users_base_url.rstrip("/")
        self.progress = progress

    def get_devices(
        self,
        device_filter: str | None = None,
        device_id: str | None = None,
        detailed: bool = False,
    ) -> TeamsDeviceDetailRecord | list[TeamsDeviceRecord] | None:
        """Return one detailed record for `device_id`, or a sorted list of records.

        Args:
            device_filter: Filter category (see device_types.DEVICE_FILTERS)
            device_id: Teams device id; takes precedence over device_filter
            detailed: Include activity, configuration, health and operations in list output

        Raises:
            AuthenticationError: If the required scopes cannot be obtained
            GraphAPIError: If a $batch POST fails
            ValueError: If device_filter is not a known category
        """
        if device_id:
            return self.get_device(device_id)
        return self.list_devices(device_filter=device_filter, detailed=detailed)

    def _check_scopes(self) -> None:
        self.auth.ensure_scopes(TEAMS_DEVICE_SCOPES)

    def get_device(self, device_id: str) -> TeamsDeviceDetailRecord | None:
        """Fetch a single device with all detail lookups.

        Returns:
            The detailed record, or None if the device could not be read
        """
        self._check_scopes()

        requests = [BatchRequest(id=device_id, url=f"/teamwork/devices/{device_id}")]
        requests.extend(device_detail_requests(device_id))
        bodies = collect_bodies(self.client.batch(requests))

        device = bodies.get(device_id)
        if not isinstance(device, dict):
            logger.warning("Teams device not found", device_id=device_id)
            return None

        user: dict[str, Any] = {}
        user_id = _current_user_id(device)
        if user_id:
            try:
                user = self.client.get(f"{self.users_base_url}/users/{user_id}")
            except GraphAPIError as e:
                logger.warning(
                    "Current user lookup failed",
                    device_id=device_id,
                    user_id=user_id,
                    error=str(e),
                )

        def detail(kind: str) -> dict[str, Any]:
            body = bodies.get(device_detail_id(device_id, kind))
            return body if isinstance(body, dict) else {}

        return build_detail_record(
            device,
            user,
            activity=detail("activity"),
            configuration=detail("configuration"),
            health=detail("health"),
            operations=detail("operations"),
        )

    def list_devices(
        self,
        device_filter: str | None = None,
        detailed: bool = False,
    ) -> list[TeamsDeviceRecord]:
        """List devices for a filter category, joined with user and detail lookups.

        Returns:
            Records sorted by device type, manufacturer and model
        """
        list_requests = build_list_requests(device_filter)
        self._check_scopes()

        devices: list[dict[str, Any]] = []
        for response in self.client.batch(list_requests):
            if not response.ok or not isinstance(response.body, dict):
                logger.debug(
                    "Device list query returned no data",
                    request_id=response.id,
                    status=response.status,
                )
                continue
            devices.extend(self.client.collect_pages(response.body))

        logger.info(
            "Teams devices listed",
            device_filter=device_filter,
            queries=len(list_requests),
            devices=len(devices),
        )

        queue = SecondaryLookupQueue(self.client.batch, flush_threshold=self.flush_threshold)
        total = len(devices)
        detailed_ids: set[str] = set()
        for index, device in enumerate(devices, start=1):
            queue.queue_user(_current_user_id(device))
            device_id = device.get("id")
            # A device returned twice shares one set of detail lookups
            if detailed and device_id and device_id not in detailed_ids:
                detailed_ids.add(device_id)
                queue.queue_device_details(device_id)
            queue.flush_if_full()
            self._report_progress(index, total)
        queue.flush()

        logger.info(
            "Secondary lookups complete",
            batches=queue.batches_sent,
            detailed=detailed,
        )

        records = [self._join(device, queue, detailed) for device in devices]
        records.sort(key=record_sort_key)
        return records

    def _join(
        self,
        device: dict[str, Any],
        queue: SecondaryLookupQueue,
        detailed: bool,
    ) -> TeamsDeviceRecord:
        user_id = _current_user_id(device)
        user = queue.get(user_id) if user_id else {}

        if not detailed:
            return build_device_record(device, user)

        device_id = str(device.get("id", ""))
        return build_detail_record(
            device,
            user,
            activity=queue.get(device_detail_id(device_id, "activity")),
            configuration=queue.get(device_detail_id(device_id, "configuration")),
            health=queue.get(device_detail_id(device_id, "health")),
            operations=queue.get(device_detail_id(device_id, "operations")),
        )

    def _report_progress(self, completed: int, total: int) -> None:
        if self.progress is not None:
            self.progress(completed, total)
