"""Teams device type tokens, display labels and filter categories."""

from typing import Literal, get_args

DeviceFilter = Literal[
    "Phone",
    "MTR",
    "MTRW",
    "MTRA",
    "SurfaceHub",
    "Display",
    "Panel",
    "SIPPhone",
]

DEVICE_FILTERS: tuple[str, ...] = get_args(DeviceFilter)

# Graph deviceType token -> label shown to administrators
DEVICE_TYPE_LABELS: dict[str, str] = {
    "ipPhone": "Phone",
    "lowCostPhone": "Phone",
    "teamsRoom": "MTR Windows",
    "collaborationBar": "MTR Android",
    "touchConsole": "Touch Console (MTRA)",
    "surfaceHub": "Surface Hub",
    "teamsDisplay": "Display",
    "teamsPanel": "Panel",
    "sip": "SIP Phone",
    "unknown": "Unknown",
}

FILTER_DEVICE_TYPES: dict[str, tuple[str, ...]] = {
    "Phone": ("ipPhone", "lowCostPhone"),
    "MTR": ("teamsRoom", "collaborationBar", "touchConsole"),
    "MTRW": ("teamsRoom",),
    "MTRA": ("collaborationBar", "touchConsole"),
    "SurfaceHub": ("surfaceHub",),
    "Display": ("teamsDisplay",),
    "Panel": ("teamsPanel",),
    "SIPPhone": ("sip",),
}


def convert_device_type(device_type: str | None) -> str:
    """Return the display label for a Graph deviceType token.

    Unrecognized tokens are returned unchanged; None becomes "".
    """
    if device_type is None:
        return ""
    return DEVICE_TYPE_LABELS.get(device_type, device_type)


def device_types_for_filter(device_filter: str) -> tuple[str, ...]:
    """Return the deviceType tokens queried for a filter category.

    Raises:
        ValueError: If the filter is not one of DEVICE_FILTERS
    """
    try:
        return FILTER_DEVICE_TYPES[device_filter]
    except KeyError:
        raise ValueError(
            f"Unknown device filter '{device_filter}'. "
            f"Valid filters: {', '.join(DEVICE_FILTERS)}"
        ) from None
