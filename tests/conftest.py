"""
Shared test fixtures for azdo-agent tests.

This module provides common fixtures used across all test types:
- A recording fake of the cloud provisioning client
- Sample requests, options and secrets
- Fake installer scripts in a temporary directory
- Isolated configuration directory
"""

from pathlib import Path
from typing import Any

import pytest

from azdo_agent.azure_cli import VMCreateSpec
from azdo_agent.config_manager import ConfigManager
from azdo_agent.exceptions import ProvisioningFailed
from azdo_agent.models import Platform, ProvisionOptions, ProvisionRequest, Secrets

FAKE_LINUX_INSTALLER = b"#!/usr/bin/env bash\necho 'installing agent'\nexit 0\n"
FAKE_WINDOWS_INSTALLER = b"param([string]$OrganizationUrl)\r\nWrite-Host 'installing'\r\n"


# ============================================================================
# CLOUD CLIENT FAKE
# ============================================================================


class RecordingCloudClient:
    """In-memory cloud client that records every primitive call.

    Set ``fail_on`` to a method name to make that call raise
    ProvisioningFailed with ``error_text``.
    """

    def __init__(self):
        self.calls: list[tuple[str, Any]] = []
        self.vm_response: dict[str, Any] = {
            "publicIpAddress": "20.1.2.3",
            "privateIpAddress": "10.0.0.4",
            "powerState": "VM running",
        }
        self.run_output = (
            "Enable succeeded: \n[stdout]\nAgent agent1 is running\n"
            "AZDO_BOOTSTRAP_EXIT=0\n\n[stderr]\n"
        )
        self.fail_on: str | None = None
        self.error_text = "ERROR: (SkuNotAvailable) The requested VM size is not available."

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if self.fail_on == name:
            raise ProvisioningFailed(name, self.error_text)

    @property
    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def args_for(self, name: str) -> tuple:
        return next(args for call_name, args in self.calls if call_name == name)

    def create_resource_group(self, name: str, location: str, tags: str = "") -> None:
        self._record("create_resource_group", name, location, tags)

    def create_vm(self, spec: VMCreateSpec) -> dict[str, Any]:
        self._record("create_vm", spec)
        return self.vm_response

    def wait_until_created(self, resource_group: str, name: str) -> None:
        self._record("wait_until_created", resource_group, name)

    def run_command(self, resource_group: str, name: str, command_id: str, script: str) -> str:
        self._record("run_command", resource_group, name, command_id, script)
        return self.run_output


@pytest.fixture
def fake_client():
    """Recording cloud client; inspect ``fake_client.calls`` after the run."""
    return RecordingCloudClient()


# ============================================================================
# MODEL FIXTURES
# ============================================================================


@pytest.fixture
def linux_request():
    return ProvisionRequest(
        organization_url="https://dev.azure.com/contoso",
        pool_name="SelfHostedPool",
        resource_group="rg-azdo-linux",
        location="eastus",
        vm_name="vm1",
        agent_name="agent1",
        platform=Platform.LINUX,
    )


@pytest.fixture
def windows_request():
    return ProvisionRequest(
        organization_url="https://dev.azure.com/contoso",
        pool_name="SelfHostedPool",
        resource_group="rg-azdo-win",
        location="eastus",
        vm_name="winvm1",
        agent_name="win-agent1",
        platform=Platform.WINDOWS,
    )


@pytest.fixture
def linux_options():
    return ProvisionOptions(agent_home="/home/azdoagent/azdo/linux-agent")


@pytest.fixture
def windows_options():
    return ProvisionOptions(
        vm_size="Standard_D4s_v3",
        vm_image="Win2022Datacenter",
        agent_home="C:/azdo/windows-agent",
    )


@pytest.fixture
def linux_secrets():
    return Secrets(access_token="tok123")  # noqa: S106


@pytest.fixture
def windows_secrets():
    return Secrets(access_token="tok123", admin_password="P@ssw0rd-Long-1")  # noqa: S106


# ============================================================================
# DIRECTORY FIXTURES
# ============================================================================


@pytest.fixture
def installers_dir(tmp_path) -> Path:
    """Temporary directory holding fake installer scripts of known content."""
    directory = tmp_path / "installers"
    directory.mkdir()
    (directory / "install-agent-linux.sh").write_bytes(FAKE_LINUX_INSTALLER)
    (directory / "install-agent-windows.ps1").write_bytes(FAKE_WINDOWS_INSTALLER)
    return directory


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch) -> Path:
    """Point ConfigManager at a temporary config file.

    Tests must never touch ~/.azdo-agent/config.toml.
    """
    config_file = tmp_path / ".azdo-agent" / "config.toml"

    def mock_get_path(custom_path=None):
        if custom_path:
            return Path(custom_path)
        return config_file

    monkeypatch.setattr(ConfigManager, "get_config_path", mock_get_path)
    return config_file


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Remove provisioning variables that would leak in from the developer shell."""
    for var in (
        "AZDO_PAT",
        "WIN_ADMIN_PASSWORD",
        "AGENT_VERSION",
        "AGENT_HOME",
        "WORK_DIR",
        "VM_SIZE",
        "VM_IMAGE",
        "ADMIN_USERNAME",
        "PUBLIC_IP",
        "VNET_NAME",
        "SUBNET_NAME",
        "DATA_DISK_SIZE",
        "TAGS",
    ):
        monkeypatch.delenv(var, raising=False)
