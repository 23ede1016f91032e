"""Azure CLI client for resource groups, VMs and run-command.

This module wraps the ``az`` command line with:
- Command display before execution (secrets redacted)
- A spinner while long-running commands block (TTY only)
- Structured results and ProvisioningFailed on non-zero exit

No retries are attempted and no client-side timeout is imposed: ``az`` waits
for Azure's own completion signal, and failures are surfaced verbatim.

Public API:
    CloudProvisioningClient: Protocol implemented by AzureCLIClient (and fakes)
    AzureCLIExecutor: Run one az command with visibility
    AzureCLIClient: The four provisioning primitives
    VMCreateSpec: Arguments for ``az vm create``
"""

import json
import logging
import os
import shlex
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Any, Protocol

from rich.console import Console
from rich.markup import escape

from azdo_agent.command_sanitizer import CommandSanitizer
from azdo_agent.exceptions import ProvisioningFailed

logger = logging.getLogger(__name__)


class TTYDetector:
    """Detect whether interactive terminal features should be used."""

    CI_ENV_VARS = ("CI", "GITHUB_ACTIONS", "TF_BUILD", "GITLAB_CI")

    @staticmethod
    def is_tty() -> bool:
        # Azure Pipelines sets TF_BUILD; never animate inside CI logs
        if any(os.getenv(var) for var in TTYDetector.CI_ENV_VARS):
            return False
        try:
            return sys.stdout.isatty()
        except AttributeError:
            return False

    @staticmethod
    def supports_interactive_features() -> bool:
        if os.getenv("TERM") == "dumb":
            return False
        return TTYDetector.is_tty()


class AzureCLIExecutor:
    """Execute Azure CLI commands with visibility.

    Examples:
        >>> executor = AzureCLIExecutor(show_progress=False)
        >>> result = executor.execute(["az", "group", "list"])
        Executing: az group list
        >>> result["success"]
        True
    """

    def __init__(
        self,
        show_progress: bool = True,
        timeout: int | None = None,
        console: Console | None = None,
    ):
        """Initialize Azure CLI executor.

        Args:
            show_progress: Whether to show a spinner while the command runs
            timeout: Command timeout in seconds (None = wait for az)
            console: Rich console for display (default: stderr console)

        Raises:
            ValueError: If timeout is negative
        """
        if timeout is not None and timeout < 0:
            raise ValueError("Timeout must be non-negative")

        self.show_progress = show_progress
        self.timeout = timeout
        self.console = console or Console(stderr=True)
        self.sanitizer = CommandSanitizer()

    def execute(self, command: list[str], status: str = "Waiting for Azure...") -> dict[str, Any]:
        """Execute Azure CLI command with visibility.

        Args:
            command: Command to execute as list (e.g., ["az", "vm", "list"])
            status: Spinner text shown while the command blocks

        Returns:
            Dictionary with returncode, stdout, stderr, success and error
        """
        if not command:
            raise TypeError("Command cannot be None or empty")

        display = " ".join(self.sanitizer.sanitize(command))
        self.console.print(
            f"[bold blue]Executing:[/bold blue] [cyan]{escape(display)}[/cyan]", highlight=False
        )
        logger.debug(f"Running: {display}")

        try:
            if self.show_progress and TTYDetector.supports_interactive_features():
                with self.console.status(status):
                    result = self._run(command)
            else:
                result = self._run(command)
        except subprocess.TimeoutExpired:
            message = f"Command timeout after {self.timeout} seconds"
            return self._failure(command, message)
        except FileNotFoundError as e:
            return self._failure(command, f"Command not found: {e}")
        except PermissionError as e:
            return self._failure(command, f"Permission denied: {e}")

        return {
            "returncode": result.returncode,
            "stdout": result.stdout,
            "stderr": result.stderr,
            "success": result.returncode == 0,
            "command": display,
            "error": result.stderr if result.returncode != 0 else None,
        }

    def _run(self, command: list[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            check=False,
        )

    def _failure(self, command: list[str], message: str) -> dict[str, Any]:
        return {
            "returncode": -1,
            "stdout": "",
            "stderr": message,
            "success": False,
            "command": " ".join(self.sanitizer.sanitize(command)),
            "error": message,
        }


@dataclass(frozen=True)
class VMCreateSpec:
    """Arguments for ``az vm create``.

    Linux VMs authenticate with a generated SSH key pair; Windows VMs with
    ``admin_password``.
    """

    resource_group: str
    name: str
    image: str
    size: str
    admin_username: str
    admin_password: str = field(default="", repr=False)
    public_ip: bool = True
    vnet_name: str = ""
    subnet_name: str = ""
    data_disk_size: str = ""
    tags: str = ""

    @property
    def auth_method(self) -> str:
        return "password" if self.admin_password else "ssh-keygen"

    def to_command(self) -> list[str]:
        cmd = [
            "az",
            "vm",
            "create",
            "--resource-group",
            self.resource_group,
            "--name",
            self.name,
            "--image",
            self.image,
            "--size",
            self.size,
            "--admin-username",
            self.admin_username,
        ]

        if self.admin_password:
            cmd.extend(
                ["--admin-password", self.admin_password, "--authentication-type", "password"]
            )
        else:
            cmd.extend(["--authentication-type", "ssh", "--generate-ssh-keys"])

        if self.tags:
            cmd.extend(["--tags", *shlex.split(self.tags)])

        cmd.extend(["--public-ip-sku", "Standard", "--output", "json"])

        if not self.public_ip:
            cmd.extend(["--public-ip-address", ""])
        if self.vnet_name:
            cmd.extend(["--vnet-name", self.vnet_name])
        if self.subnet_name:
            cmd.extend(["--subnet", self.subnet_name])
        if self.data_disk_size:
            cmd.extend(["--data-disk-sizes-gb", self.data_disk_size])

        return cmd


class CloudProvisioningClient(Protocol):
    """Primitives the orchestrator needs from a cloud provider."""

    def create_resource_group(self, name: str, location: str, tags: str = "") -> None: ...

    def create_vm(self, spec: VMCreateSpec) -> dict[str, Any]: ...

    def wait_until_created(self, resource_group: str, name: str) -> None: ...

    def run_command(self, resource_group: str, name: str, command_id: str, script: str) -> str: ...


class AzureCLIClient:
    """Cloud provisioning primitives backed by the ``az`` command line."""

    def __init__(self, executor: AzureCLIExecutor | None = None):
        self.executor = executor or AzureCLIExecutor()

    def _execute(self, step: str, command: list[str], status: str) -> str:
        result = self.executor.execute(command, status=status)
        if not result["success"]:
            raise ProvisioningFailed(step, result["stderr"] or result["stdout"])
        return result["stdout"]

    def create_resource_group(self, name: str, location: str, tags: str = "") -> None:
        """Create the resource group, or update it in place if it already exists."""
        cmd = ["az", "group", "create", "--name", name, "--location", location]
        if tags:
            cmd.extend(["--tags", *shlex.split(tags)])
        cmd.extend(["--output", "none"])
        self._execute("Resource group creation", cmd, f"Creating resource group {name}...")

    def create_vm(self, spec: VMCreateSpec) -> dict[str, Any]:
        """Create a VM and return the parsed ``az vm create`` response.

        An unparsable response is returned as an empty dict: the VM exists and
        only the endpoint details are lost.
        """
        stdout = self._execute("VM creation", spec.to_command(), f"Creating VM {spec.name}...")
        try:
            data = json.loads(stdout) if stdout.strip() else {}
        except json.JSONDecodeError:
            logger.warning("Could not parse VM creation response; IP addresses unavailable")
            return {}
        return data if isinstance(data, dict) else {}

    def wait_until_created(self, resource_group: str, name: str) -> None:
        cmd = [
            "az",
            "vm",
            "wait",
            "--resource-group",
            resource_group,
            "--name",
            name,
            "--created",
            "--output",
            "none",
        ]
        self._execute("VM creation", cmd, f"Waiting for VM {name}...")

    def run_command(self, resource_group: str, name: str, command_id: str, script: str) -> str:
        """Run ``script`` on the VM and return its combined output.

        run-command reports stdout and stderr as separate status entries
        (Windows) or as one entry (Linux); the messages are joined in order.
        A status code marked failed raises ProvisioningFailed with that text.
        """
        cmd = [
            "az",
            "vm",
            "run-command",
            "invoke",
            "--resource-group",
            resource_group,
            "--name",
            name,
            "--command-id",
            command_id,
            "--scripts",
            script,
            "--query",
            "value",
            "--output",
            "json",
        ]
        stdout = self._execute("Remote command", cmd, f"Bootstrapping agent on {name}...")
        try:
            statuses = json.loads(stdout) if stdout.strip() else []
        except json.JSONDecodeError:
            return stdout.rstrip("\n")
        if not isinstance(statuses, list):
            statuses = []
        statuses = [status for status in statuses if isinstance(status, dict)]

        output = "\n".join(
            str(status["message"]).rstrip("\n") for status in statuses if status.get("message")
        )
        if any("/failed" in str(status.get("code", "")) for status in statuses):
            raise ProvisioningFailed("Remote command", output)
        return output


__all__ = [
    "AzureCLIClient",
    "AzureCLIExecutor",
    "CloudProvisioningClient",
    "TTYDetector",
    "VMCreateSpec",
]
