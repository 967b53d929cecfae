"""Tests for teams/devices.py.

Covers filter expansion, the list path (user deduplication, flush threshold,
join, ordering), the detailed list path and the single-device path.
"""

from typing import Any
from unittest.mock import MagicMock

import pytest

from m365admin.core.errors import AuthenticationError, GraphAPIError
from m365admin.graph.batch import BATCH_MAX_SIZE
from m365admin.teams.device_types import FILTER_DEVICE_TYPES
from m365admin.teams.devices import TeamsDeviceInventory, build_list_requests
from m365admin.teams.records import TeamsDeviceDetailRecord, TeamsDeviceRecord

from graph_fakes import FakeBatchGraph, make_device

PANEL_URL = "/teamwork/devices/?$filter=deviceType eq 'teamsPanel'"
ALL_URL = "/teamwork/devices/"


def _user(upn: str) -> dict[str, Any]:
    return {"id": upn.split("@")[0], "userPrincipalName": upn}


@pytest.fixture
def inventory(mock_client: MagicMock, mock_auth: MagicMock) -> TeamsDeviceInventory:
    return TeamsDeviceInventory(mock_client, mock_auth)


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------


class TestBuildListRequests:
    """Tests for build_list_requests()."""

    def test_no_filter_is_single_unfiltered_query(self) -> None:
        requests = build_list_requests(None)

        assert len(requests) == 1
        assert requests[0].url == ALL_URL

    def test_mtr_expands_to_three_type_queries(self) -> None:
        requests = build_list_requests("MTR")

        assert [r.url for r in requests] == [
            "/teamwork/devices/?$filter=deviceType eq 'teamsRoom'",
            "/teamwork/devices/?$filter=deviceType eq 'collaborationBar'",
            "/teamwork/devices/?$filter=deviceType eq 'touchConsole'",
        ]

    @pytest.mark.parametrize("device_filter", sorted(FILTER_DEVICE_TYPES))
    def test_each_filter_queries_exactly_its_types(self, device_filter: str) -> None:
        requests = build_list_requests(device_filter)

        queried = {r.url.split("eq '")[1].rstrip("'") for r in requests}
        assert queried == set(FILTER_DEVICE_TYPES[device_filter])
        assert len({r.id for r in requests}) == len(requests)

    def test_unknown_filter_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown device filter"):
            build_list_requests("Toaster")


# ---------------------------------------------------------------------------
# List path
# ---------------------------------------------------------------------------


class TestListDevices:
    """Tests for TeamsDeviceInventory.list_devices()."""

    def test_panel_scenario(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock
    ) -> None:
        """Three panels with distinct users: one list batch, one batch of 3 user lookups."""
        devices = [
            make_device("d1", manufacturer="Yealink", model="RoomPanel", user_id="u1"),
            make_device("d2", manufacturer="Crestron", model="TSS-770", user_id="u2"),
            make_device("d3", manufacturer="Logitech", model="Tap Scheduler", user_id="u3"),
        ]
        fake = FakeBatchGraph(
            {
                PANEL_URL: {"value": devices},
                "/users/u1": _user("u1@contoso.com"),
                "/users/u2": _user("u2@contoso.com"),
                "/users/u3": _user("u3@contoso.com"),
            }
        )
        mock_client.batch.side_effect = fake

        records = inventory.list_devices(device_filter="Panel")

        assert len(fake.batches) == 2
        assert [r.url for r in fake.batches[0]] == [PANEL_URL]
        assert sorted(r.url for r in fake.batches[1]) == ["/users/u1", "/users/u2", "/users/u3"]
        assert [r.manufacturer for r in records] == ["Crestron", "Logitech", "Yealink"]
        assert {r.user_upn for r in records} == {
            "u1@contoso.com",
            "u2@contoso.com",
            "u3@contoso.com",
        }
        assert all(type(r) is TeamsDeviceRecord for r in records)
        assert all(r.device_type == "Panel" for r in records)

    def test_scope_check_runs_first(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock, mock_auth: MagicMock
    ) -> None:
        mock_client.batch.side_effect = FakeBatchGraph({ALL_URL: {"value": []}})

        inventory.list_devices()

        mock_auth.ensure_scopes.assert_called_once_with(["TeamworkDevice.Read.All", "User.Read.All"])

    def test_scope_failure_propagates_without_graph_calls(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock, mock_auth: MagicMock
    ) -> None:
        mock_auth.ensure_scopes.side_effect = AuthenticationError("consent missing")

        with pytest.raises(AuthenticationError):
            inventory.list_devices()

        mock_client.batch.assert_not_called()

    def test_user_lookups_deduplicated(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock
    ) -> None:
        devices = [
            make_device("d1", user_id="u1"),
            make_device("d2", user_id="u1"),
            make_device("d3", user_id="u2"),
            make_device("d4", user_id=None),
            make_device("d5", user_id="u2"),
        ]
        fake = FakeBatchGraph(
            {
                ALL_URL: {"value": devices},
                "/users/u1": _user("u1@contoso.com"),
                "/users/u2": _user("u2@contoso.com"),
            }
        )
        mock_client.batch.side_effect = fake

        records = inventory.list_devices()

        user_lookups = [r for batch in fake.batches[1:] for r in batch]
        assert sorted(r.id for r in user_lookups) == ["u1", "u2"]
        upns = {r.device_id: r.user_upn for r in records}
        assert upns == {
            "d1": "u1@contoso.com",
            "d2": "u1@contoso.com",
            "d3": "u2@contoso.com",
            "d4": "",
            "d5": "u2@contoso.com",
        }

    def test_no_secondary_batch_without_users(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock
    ) -> None:
        fake = FakeBatchGraph({ALL_URL: {"value": [make_device("d1", user_id=None)]}})
        mock_client.batch.side_effect = fake

        records = inventory.list_devices()

        assert len(fake.batches) == 1
        assert records[0].user_upn == ""

    def test_flush_when_queue_exceeds_threshold_and_at_end(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock
    ) -> None:
        devices = [make_device(f"d{i}", user_id=f"u{i}") for i in range(20)]
        fake = FakeBatchGraph({ALL_URL: {"value": devices}})
        mock_client.batch.side_effect = fake

        inventory.list_devices()

        assert [len(batch) for batch in fake.batches] == [1, 16, 4]

    def test_detailed_batches_never_exceed_graph_limit(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock
    ) -> None:
        devices = [make_device(f"d{i}", user_id=f"u{i}") for i in range(10)]
        fake = FakeBatchGraph({ALL_URL: {"value": devices}})
        mock_client.batch.side_effect = fake

        inventory.list_devices(detailed=True)

        secondary = fake.batches[1:]
        assert [len(batch) for batch in secondary] == [20, 20, 10]
        assert all(len(batch) <= BATCH_MAX_SIZE for batch in secondary)
        for batch in secondary:
            ids = [r.id for r in batch]
            assert len(ids) == len(set(ids))

    def test_failed_list_query_is_skipped(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock
    ) -> None:
        room_url = "/teamwork/devices/?$filter=deviceType eq 'teamsRoom'"
        fake = FakeBatchGraph(
            {room_url: {"value": [make_device("d1", device_type="teamsRoom", user_id=None)]}},
        )
        mock_client.batch.side_effect = fake

        records = inventory.list_devices(device_filter="MTR")

        assert [r.device_id for r in records] == ["d1"]
        assert records[0].device_type == "MTR Windows"

    def test_batch_post_failure_propagates(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock
    ) -> None:
        mock_client.batch.side_effect = GraphAPIError("Connection failed")

        with pytest.raises(GraphAPIError):
            inventory.list_devices(device_filter="Phone")

    def test_next_link_pages_are_collected(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock
    ) -> None:
        first_page = {
            "value": [make_device("d1", user_id=None)],
            "@odata.nextLink": "https://graph.microsoft.com/beta/teamwork/devices?$skiptoken=x",
        }
        mock_client.batch.side_effect = FakeBatchGraph({ALL_URL: first_page})
        mock_client.collect_pages.side_effect = None
        mock_client.collect_pages.return_value = [
            make_device("d1", user_id=None),
            make_device("d2", user_id=None),
        ]

        records = inventory.list_devices()

        mock_client.collect_pages.assert_called_once_with(first_page)
        assert len(records) == 2

    def test_output_sorted_by_type_manufacturer_model(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock
    ) -> None:
        devices = [
            make_device("d1", "teamsRoom", "Lenovo", "ThinkSmart Core", user_id=None),
            make_device("d2", "ipPhone", "Yealink", "MP58", user_id=None),
            make_device("d3", "ipPhone", "Poly", "CCX 600", user_id=None),
            make_device("d4", "ipPhone", "Poly", "CCX 400", user_id=None),
            make_device("d5", "collaborationBar", "Neat", "Bar", user_id=None),
        ]
        mock_client.batch.side_effect = FakeBatchGraph({ALL_URL: {"value": devices}})

        records = inventory.list_devices()

        keys = [(r.device_type, r.manufacturer, r.model) for r in records]
        assert keys == sorted(keys)
        assert [r.device_id for r in records] == ["d5", "d1", "d4", "d3", "d2"]

    def test_progress_reported_per_device(
        self, mock_client: MagicMock, mock_auth: MagicMock
    ) -> None:
        progress = MagicMock()
        inventory = TeamsDeviceInventory(mock_client, mock_auth, progress=progress)
        devices = [make_device(f"d{i}", user_id=None) for i in range(3)]
        mock_client.batch.side_effect = FakeBatchGraph({ALL_URL: {"value": devices}})

        inventory.list_devices()

        assert [c.args for c in progress.call_args_list] == [(1, 3), (2, 3), (3, 3)]


class TestListDevicesDetailed:
    """Tests for the detailed list path."""

    def _bodies(self, device: dict[str, Any]) -> dict[str, Any]:
        device_id = device["id"]
        return {
            ALL_URL: {"value": [device]},
            "/users/user-001": _user("room@contoso.com"),
            f"/teamwork/devices/{device_id}/activity": {
                "activePeripherals": {"roomCamera": {"displayName": "Rally Camera"}}
            },
            f"/teamwork/devices/{device_id}/configuration": {
                "createdDateTime": "2024-03-02T00:00:00Z",
                "displayConfiguration": {"displayCount": 2},
                "hardwareConfiguration": {"processorModel": "i5"},
            },
            f"/teamwork/devices/{device_id}/health": {
                "connection": {"connectionStatus": "connected"},
                "hardwareHealth": {
                    "computeHealth": {"connection": {"connectionStatus": "connected"}}
                },
                "peripheralsHealth": {
                    "microphoneHealth": {"connection": {"connectionStatus": "disconnected"}}
                },
                "softwareUpdateHealth": {
                    "firmwareSoftwareUpdateStatus": {"currentVersion": "1.2.3"},
                    "teamsClientSoftwareUpdateStatus": {"currentVersion": "1449/1.0.96"},
                },
            },
            f"/teamwork/devices/{device_id}/operations": {
                "value": [
                    {
                        "operationType": "deviceRestart",
                        "status": "successful",
                        "lastActionDateTime": "2024-03-05T10:00:00Z",
                        "createdBy": {"user": {"displayName": "Admin"}},
                        "error": None,
                    }
                ]
            },
        }

    def test_detailed_records_are_joined(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock
    ) -> None:
        device = make_device("d1", device_type="teamsRoom")
        mock_client.batch.side_effect = FakeBatchGraph(self._bodies(device))

        records = inventory.list_devices(detailed=True)

        record = records[0]
        assert isinstance(record, TeamsDeviceDetailRecord)
        assert record.user_upn == "room@contoso.com"
        assert record.active_peripherals == {"roomCamera": {"displayName": "Rally Camera"}}
        assert record.display_configuration == {"displayCount": 2}
        assert record.connection_status == "connected"
        assert record.compute_status == "connected"
        assert record.microphone_status == "disconnected"
        assert record.firmware_version == "1.2.3"
        assert record.last_history_action == "deviceRestart"
        assert record.last_history_status == "successful"
        assert record.last_history_initiated_by == "Admin"
        assert record.last_history_error_code == ""

    def test_missing_detail_leaves_fields_empty(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock
    ) -> None:
        device = make_device("d1", device_type="teamsRoom")
        health_url = "/teamwork/devices/d1/health"
        mock_client.batch.side_effect = FakeBatchGraph(
            self._bodies(device), statuses={health_url: 503}
        )

        record = inventory.list_devices(detailed=True)[0]

        assert record.connection_status is None
        assert record.firmware_version is None
        assert record.display_configuration == {"displayCount": 2}
        assert record.last_history_action == "deviceRestart"

    def test_empty_operations_give_empty_history_strings(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock
    ) -> None:
        device = make_device("d1", device_type="teamsRoom")
        bodies = self._bodies(device)
        bodies["/teamwork/devices/d1/operations"] = {"value": []}
        mock_client.batch.side_effect = FakeBatchGraph(bodies)

        record = inventory.list_devices(detailed=True)[0]

        assert record.last_history_action == ""
        assert record.last_history_status == ""
        assert record.last_history_initiated_by == ""
        assert record.last_history_modified_date == ""
        assert record.last_history_error_code == ""

    def test_repeated_device_shares_detail_lookups(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock
    ) -> None:
        device = make_device("d1", device_type="teamsRoom")
        bodies = self._bodies(device)
        bodies[ALL_URL] = {"value": [device, dict(device)]}
        graph = FakeBatchGraph(bodies)
        mock_client.batch.side_effect = graph

        records = inventory.list_devices(detailed=True)

        assert len(records) == 2
        assert all(r.firmware_version == "1.2.3" for r in records)
        detail_urls = [r.url for batch in graph.batches[1:] for r in batch if "/d1/" in r.url]
        assert sorted(detail_urls) == sorted(set(detail_urls))
        assert len(detail_urls) == 4


# ---------------------------------------------------------------------------
# Single-device path
# ---------------------------------------------------------------------------


class TestGetDevice:
    """Tests for TeamsDeviceInventory.get_device() via get_devices(device_id=...)."""

    def _bodies(self, device: dict[str, Any], operations: list[dict[str, Any]]) -> dict[str, Any]:
        device_id = device["id"]
        return {
            f"/teamwork/devices/{device_id}": device,
            f"/teamwork/devices/{device_id}/activity": {"activePeripherals": {}},
            f"/teamwork/devices/{device_id}/configuration": {},
            f"/teamwork/devices/{device_id}/health": {
                "connection": {"connectionStatus": "connected"}
            },
            f"/teamwork/devices/{device_id}/operations": {"value": operations},
        }

    def test_single_batch_of_five_and_direct_user_lookup(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock
    ) -> None:
        device = make_device("dev-7", device_type="collaborationBar")
        fake = FakeBatchGraph(self._bodies(device, []))
        mock_client.batch.side_effect = fake
        mock_client.get.return_value = _user("bar@contoso.com")

        record = inventory.get_devices(device_id="dev-7", device_filter="Phone")

        assert len(fake.batches) == 1
        assert len(fake.batches[0]) == 5
        assert len({r.id for r in fake.batches[0]}) == 5
        mock_client.get.assert_called_once_with("https://graph.microsoft.com/v1.0/users/user-001")
        assert isinstance(record, TeamsDeviceDetailRecord)
        assert record.device_type == "MTR Android"
        assert record.user_upn == "bar@contoso.com"
        assert record.notes == "Lobby"
        assert record.company_asset_tag == "TAG-dev-7"
        assert record.mac_addresses == "00:11:22:33:44:55, 66:77:88:99:AA:BB"
        assert record.last_history_action == ""

    def test_no_current_user_gives_empty_upn(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock
    ) -> None:
        device = make_device("dev-7", user_id=None)
        mock_client.batch.side_effect = FakeBatchGraph(self._bodies(device, []))

        record = inventory.get_device("dev-7")

        mock_client.get.assert_not_called()
        assert record is not None
        assert record.user_upn == ""
        assert record.user_display_name is None

    def test_user_lookup_failure_leaves_upn_empty(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock
    ) -> None:
        device = make_device("dev-7")
        mock_client.batch.side_effect = FakeBatchGraph(self._bodies(device, []))
        mock_client.get.side_effect = GraphAPIError("Resource not found (404)", status_code=404)

        record = inventory.get_device("dev-7")

        assert record is not None
        assert record.user_upn == ""

    def test_latest_operation_used_for_history(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock
    ) -> None:
        operations = [
            {
                "operationType": "logUpload",
                "status": "failed",
                "lastActionDateTime": "2024-02-01T00:00:00Z",
                "error": {"code": "Timeout"},
            },
            {
                "operationType": "deviceRestart",
                "status": "successful",
                "lastActionDateTime": "2024-04-01T00:00:00Z",
                "createdBy": {"user": {"displayName": "Helpdesk"}},
            },
        ]
        device = make_device("dev-7", user_id=None)
        mock_client.batch.side_effect = FakeBatchGraph(self._bodies(device, operations))

        record = inventory.get_device("dev-7")

        assert record.last_history_action == "deviceRestart"
        assert record.last_history_status == "successful"
        assert record.last_history_initiated_by == "Helpdesk"
        assert record.last_history_modified_date == "2024-04-01T00:00:00Z"
        assert record.last_history_error_code == ""

    def test_device_not_found_returns_none(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock
    ) -> None:
        mock_client.batch.side_effect = FakeBatchGraph({})

        assert inventory.get_device("missing") is None
        mock_client.get.assert_not_called()

    def test_scope_check_runs(
        self, inventory: TeamsDeviceInventory, mock_client: MagicMock, mock_auth: MagicMock
    ) -> None:
        mock_client.batch.side_effect = FakeBatchGraph({})

        inventory.get_device("dev-7")

        mock_auth.ensure_scopes.assert_called_once()
