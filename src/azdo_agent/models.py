"""Data models for agent provisioning.

All models are immutable, process-local values. They are constructed once at
the CLI boundary and passed into the orchestrator unchanged.
"""

from dataclasses import dataclass, field
from enum import Enum


class Platform(str, Enum):
    """Target host platform."""

    LINUX = "linux"
    WINDOWS = "windows"

    @property
    def run_command_id(self) -> str:
        """Remote-command engine used by ``az vm run-command invoke``."""
        if self is Platform.WINDOWS:
            return "RunPowerShellScript"
        return "RunShellScript"

    @property
    def installer_filename(self) -> str:
        """File name of the packaged agent installer for this platform."""
        if self is Platform.WINDOWS:
            return "install-agent-windows.ps1"
        return "install-agent-linux.sh"


@dataclass(frozen=True)
class ProvisionRequest:
    """What to provision and where to register it."""

    organization_url: str
    pool_name: str
    resource_group: str
    location: str
    vm_name: str
    agent_name: str = ""
    platform: Platform = Platform.LINUX

    def __post_init__(self):
        # Agent name falls back to the VM name
        if not self.agent_name:
            object.__setattr__(self, "agent_name", self.vm_name)


@dataclass(frozen=True)
class ProvisionOptions:
    """Overridable provisioning settings.

    ``public_ip`` stays a raw string so validation can insist on exactly
    "true" or "false". Empty strings mean "not set".
    """

    agent_version: str = "3.233.1"
    agent_home: str = ""
    work_dir: str = "_work"
    vm_size: str = "Standard_D2s_v3"
    vm_image: str = "Ubuntu2204"
    admin_username: str = "azdoagent"
    public_ip: str = "true"
    vnet_name: str = ""
    subnet_name: str = ""
    data_disk_size: str = ""
    tags: str = "purpose=azdo-agent"

    @property
    def wants_public_ip(self) -> bool:
        return self.public_ip == "true"


@dataclass(frozen=True)
class Secrets:
    """Credentials for one provisioning run. Never persisted."""

    access_token: str = field(default="", repr=False)
    admin_password: str = field(default="", repr=False)

    def __repr__(self) -> str:
        token = "****" if self.access_token else "<unset>"
        password = "****" if self.admin_password else "<unset>"
        return f"Secrets(access_token={token}, admin_password={password})"


@dataclass(frozen=True)
class ProvisionResult:
    """Outcome of a successful provisioning run."""

    admin_username: str
    remote_output: str
    public_ip: str = ""
    private_ip: str = ""

    def connection_lines(self) -> list[str]:
        """Human-readable connection details, omitting absent addresses."""
        lines = []
        if self.public_ip:
            lines.append(f"Public IP : {self.public_ip}")
        if self.private_ip:
            lines.append(f"Private IP: {self.private_ip}")
        lines.append(f"Admin user: {self.admin_username}")
        return lines


__all__ = ["Platform", "ProvisionOptions", "ProvisionRequest", "ProvisionResult", "Secrets"]
