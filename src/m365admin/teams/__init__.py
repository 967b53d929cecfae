"""Microsoft Teams device inventory.

Usage:
    from m365admin.teams import TeamsDeviceInventory

    inventory = TeamsDeviceInventory(client, auth)
    phones = inventory.get_devices(device_filter="Phone")
"""

from m365admin.teams.device_types import DEVICE_FILTERS, convert_device_type
from m365admin.teams.devices import TeamsDeviceInventory
from m365admin.teams.records import TeamsDeviceDetailRecord, TeamsDeviceRecord

__all__ = [
    "DEVICE_FILTERS",
    "TeamsDeviceDetailRecord",
    "TeamsDeviceInventory",
    "TeamsDeviceRecord",
    "convert_device_type",
]
