"""Flat record types for Teams devices and the builders that fill them.

Two shapes exist:
- TeamsDeviceRecord: identity, hardware and health, returned by list queries
- TeamsDeviceDetailRecord: adds notes, asset tag, activity, configuration
  blocks, software versions and the outcome of the latest device operation

Builders accept raw Graph JSON bodies. Any body may be empty ({}) when its
sub-request failed; the matching fields are then left empty.
"""

from dataclasses import asdict, dataclass, field
from typing import Any

from m365admin.teams.device_types import convert_device_type


def _dig(data: Any, *keys: str) -> Any:
    """Follow nested keys through dicts, returning None at the first gap."""
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _join(values: Any) -> str:
    if not values:
        return ""
    if isinstance(values, str):
        return values
    return ", ".join(str(v) for v in values)


@dataclass(frozen=True, slots=True)
class TeamsDeviceRecord:
    """List-shape record for one Teams device."""

    device_id: str
    device_type: str
    manufacturer: str | None
    model: str | None
    user_display_name: str | None
    user_upn: str
    serial_number: str | None
    mac_addresses: str
    health_status: str | None
    activity_state: str | None
    created: str | None
    last_modified: str | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class TeamsDeviceDetailRecord(TeamsDeviceRecord):
    """Detailed record for one Teams device."""

    notes: str | None = None
    company_asset_tag: str | None = None
    last_modified_by: str | None = None

    # Activity
    active_peripherals: dict[str, Any] = field(default_factory=dict)

    # Configuration
    configuration_updated: str | None = None
    display_configuration: dict[str, Any] = field(default_factory=dict)
    camera_configuration: dict[str, Any] = field(default_factory=dict)
    speaker_configuration: dict[str, Any] = field(default_factory=dict)
    microphone_configuration: dict[str, Any] = field(default_factory=dict)
    teams_client_configuration: dict[str, Any] = field(default_factory=dict)
    hardware_configuration: dict[str, Any] = field(default_factory=dict)
    system_configuration: dict[str, Any] = field(default_factory=dict)

    # Health
    connection_status: str | None = None
    compute_status: str | None = None
    hdmi_ingest_status: str | None = None
    room_camera_status: str | None = None
    content_camera_status: str | None = None
    speaker_status: str | None = None
    communication_speaker_status: str | None = None
    microphone_status: str | None = None

    # Software versions
    admin_agent_version: str | None = None
    firmware_version: str | None = None
    company_portal_version: str | None = None
    oem_agent_version: str | None = None
    teams_app_version: str | None = None
    operating_system_version: str | None = None

    # Latest device operation; always strings, "" when there is none
    last_history_action: str = ""
    last_history_status: str = ""
    last_history_initiated_by: str = ""
    last_history_modified_date: str = ""
    last_history_error_code: str = ""


def record_sort_key(record: TeamsDeviceRecord) -> tuple[str, str, str]:
    """Sort key: device type, then manufacturer, then model."""
    return (record.device_type or "", record.manufacturer or "", record.model or "")


def _base_fields(device: dict[str, Any], user: dict[str, Any]) -> dict[str, Any]:
    return {
        "device_id": str(device.get("id", "")),
        "device_type": convert_device_type(device.get("deviceType")),
        "manufacturer": _dig(device, "hardwareDetail", "manufacturer"),
        "model": _dig(device, "hardwareDetail", "model"),
        "user_display_name": _dig(device, "currentUser", "displayName"),
        "user_upn": user.get("userPrincipalName") or "",
        "serial_number": _dig(device, "hardwareDetail", "serialNumber"),
        "mac_addresses": _join(_dig(device, "hardwareDetail", "macAddresses")),
        "health_status": device.get("healthStatus"),
        "activity_state": device.get("activityState"),
        "created": device.get("createdDateTime"),
        "last_modified": device.get("lastModifiedDateTime"),
    }


def build_device_record(device: dict[str, Any], user: dict[str, Any]) -> TeamsDeviceRecord:
    """Flatten a teamworkDevice body and its current user into a list record."""
    return TeamsDeviceRecord(**_base_fields(device, user))


def latest_operation(operations: dict[str, Any]) -> dict[str, Any]:
    """Return the most recent operation from an operations collection body.

    Operations are ordered newest-first by lastActionDateTime (falling back to
    startedDateTime); entries without timestamps keep the API order.
    """
    items = [op for op in operations.get("value") or [] if isinstance(op, dict)]
    if not items:
        return {}
    ordered = sorted(
        items,
        key=lambda op: op.get("lastActionDateTime") or op.get("startedDateTime") or "",
        reverse=True,
    )
    return ordered[0]


def _last_history_fields(operations: dict[str, Any]) -> dict[str, str]:
    operation = latest_operation(operations)
    return {
        "last_history_action": operation.get("operationType") or "",
        "last_history_status": operation.get("status") or "",
        "last_history_initiated_by": _dig(operation, "createdBy", "user", "displayName") or "",
        "last_history_modified_date": operation.get("lastActionDateTime") or "",
        "last_history_error_code": _dig(operation, "error", "code") or "",
    }


def _health_status(health: dict[str, Any], *path: str) -> str | None:
    return _dig(health, *path, "connection", "connectionStatus")


def _current_version(health: dict[str, Any], status_name: str) -> str | None:
    return _dig(health, "softwareUpdateHealth", status_name, "currentVersion")


def build_detail_record(
    device: dict[str, Any],
    user: dict[str, Any],
    activity: dict[str, Any],
    configuration: dict[str, Any],
    health: dict[str, Any],
    operations: dict[str, Any],
) -> TeamsDeviceDetailRecord:
    """Flatten a device and its four detail lookups into a detailed record."""
    return TeamsDeviceDetailRecord(
        **_base_fields(device, user),
        notes=device.get("notes"),
        company_asset_tag=device.get("companyAssetTag"),
        last_modified_by=_dig(device, "lastModifiedBy", "user", "displayName"),
        active_peripherals=activity.get("activePeripherals") or {},
        configuration_updated=configuration.get("createdDateTime"),
        display_configuration=configuration.get("displayConfiguration") or {},
        camera_configuration=configuration.get("cameraConfiguration") or {},
        speaker_configuration=configuration.get("speakerConfiguration") or {},
        microphone_configuration=configuration.get("microphoneConfiguration") or {},
        teams_client_configuration=configuration.get("teamsClientConfiguration") or {},
        hardware_configuration=configuration.get("hardwareConfiguration") or {},
        system_configuration=configuration.get("systemConfiguration") or {},
        connection_status=_dig(health, "connection", "connectionStatus"),
        compute_status=_health_status(health, "hardwareHealth", "computeHealth"),
        hdmi_ingest_status=_health_status(health, "hardwareHealth", "hdmiIngestHealth"),
        room_camera_status=_health_status(health, "peripheralsHealth", "roomCameraHealth"),
        content_camera_status=_health_status(health, "peripheralsHealth", "contentCameraHealth"),
        speaker_status=_health_status(health, "peripheralsHealth", "speakerHealth"),
        communication_speaker_status=_health_status(
            health, "peripheralsHealth", "communicationSpeakerHealth"
        ),
        microphone_status=_health_status(health, "peripheralsHealth", "microphoneHealth"),
        admin_agent_version=_current_version(health, "adminAgentSoftwareUpdateStatus"),
        firmware_version=_current_version(health, "firmwareSoftwareUpdateStatus"),
        company_portal_version=_current_version(health, "companyPortalSoftwareUpdateStatus"),
        oem_agent_version=_current_version(health, "partnerAgentSoftwareUpdateStatus"),
        teams_app_version=_current_version(health, "teamsClientSoftwareUpdateStatus"),
        operating_system_version=_current_version(health, "operatingSystemSoftwareUpdateStatus"),
        **_last_history_fields(operations),
    )
