"""Shared fixtures: an isolated config environment and Graph/auth doubles."""

from pathlib import Path
from typing import Any, Generator
from unittest.mock import MagicMock

import pytest
import yaml

from m365admin.config import AUTH_ENV_OVERRIDES, CONFIG_PATH_ENV_VAR, reset_config
from m365admin.config_schema import AppConfig


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Start every test with no cached config and no M365ADMIN_* overrides."""
    for env_var in (CONFIG_PATH_ENV_VAR, *AUTH_ENV_OVERRIDES):
        monkeypatch.delenv(env_var, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def sample_config_dict() -> dict[str, Any]:
    """A valid config for a single-tenant app registration."""
    return {
        "schema_version": 1,
        "auth": {"client_id": "test-client-id", "tenant_id": "test-tenant-id"},
        "graph": {"batch_flush_threshold": 15},
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    return AppConfig(**sample_config_dict)


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_dict: dict[str, Any]) -> Path:
    """sample_config_dict written as config/config.yaml under tmp_path."""
    path = temp_config_dir / "config.yaml"
    path.write_text(yaml.safe_dump(sample_config_dict, sort_keys=False))
    return path


@pytest.fixture
def set_config_env(config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Point M365ADMIN_CONFIG_PATH at config_file."""
    monkeypatch.setenv(CONFIG_PATH_ENV_VAR, str(config_file))


@pytest.fixture
def mock_auth() -> MagicMock:
    """GraphAuth double whose scope check always passes."""
    auth = MagicMock()
    auth.ensure_scopes.return_value = None
    return auth


@pytest.fixture
def mock_client() -> MagicMock:
    """GraphClient double; collect_pages returns the first page's items only."""
    client = MagicMock()
    client.collect_pages.side_effect = lambda page: list(page.get("value", []))
    return client
