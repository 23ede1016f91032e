"""Remote bootstrap orchestration.

Turns a freshly created Azure VM into a registered, running Azure DevOps agent:

1. Validate credentials and options (no remote calls yet)
2. Create or reuse the resource group
3. Create the VM and wait until Azure reports it created
4. Extract public/private IP addresses from the creation response
5. Build the run-command payload embedding the installer script
6. Execute the payload on the VM
7. Report endpoints, admin user and the remote output

Every failure aborts the run. Nothing is retried and nothing is torn down: a
VM created before a failing step stays in place for the operator.
"""

import logging
import re
import shlex
from collections.abc import Callable
from pathlib import Path
from typing import Any

from azdo_agent.azure_cli import AzureCLIClient, CloudProvisioningClient, VMCreateSpec
from azdo_agent.exceptions import InvalidConfiguration, MissingCredential, ProvisioningFailed
from azdo_agent.models import (
    Platform,
    ProvisionOptions,
    ProvisionRequest,
    ProvisionResult,
    Secrets,
)
from azdo_agent.prerequisites import PrerequisiteChecker
from azdo_agent.remote_script import RemoteScriptBuilder, remote_exit_status, strip_exit_marker

logger = logging.getLogger(__name__)


class AgentProvisioner:
    """Provision a VM and bootstrap it as a self-hosted agent."""

    def __init__(
        self,
        client: CloudProvisioningClient | None = None,
        installers_dir: Path | None = None,
        progress_callback: Callable[[str], None] | None = None,
    ):
        """Initialize provisioner.

        Args:
            client: Cloud provisioning client (default: AzureCLIClient)
            installers_dir: Directory holding the installer scripts
                (default: the packaged installers)
            progress_callback: Optional callback for progress updates
        """
        self.client = client or AzureCLIClient()
        self.installers_dir = installers_dir
        self.progress_callback = progress_callback

    def _report(self, message: str) -> None:
        if self.progress_callback:
            self.progress_callback(message)
        logger.info(message)

    @staticmethod
    def validate(request: ProvisionRequest, options: ProvisionOptions, secrets: Secrets) -> None:
        """Pre-flight checks. Raises before any remote call is made.

        Raises:
            MissingCredential: Access token (or windows admin password) absent
            InvalidConfiguration: Field-level option or request violation
        """
        if not secrets.access_token:
            raise MissingCredential("AZDO_PAT environment variable must be set.")
        if request.platform is Platform.WINDOWS and not secrets.admin_password:
            raise MissingCredential("WIN_ADMIN_PASSWORD environment variable must be set.")

        for field_name, env_name in (
            ("organization_url", "ORG_URL"),
            ("pool_name", "POOL_NAME"),
            ("resource_group", "RESOURCE_GROUP"),
            ("location", "LOCATION"),
            ("vm_name", "VM_NAME"),
        ):
            if not getattr(request, field_name):
                raise InvalidConfiguration(env_name, "must not be empty")

        if options.public_ip not in ("true", "false"):
            raise InvalidConfiguration("PUBLIC_IP", "must be 'true' or 'false'")

        if options.subnet_name and not options.vnet_name:
            raise InvalidConfiguration("SUBNET_NAME", "requires VNET_NAME to be set")

        if options.data_disk_size and not (
            re.fullmatch(r"[0-9]+", options.data_disk_size) and int(options.data_disk_size) > 0
        ):
            raise InvalidConfiguration("DATA_DISK_SIZE", "must be a positive integer (GB)")

        try:
            shlex.split(options.tags)
        except ValueError as e:
            raise InvalidConfiguration("TAGS", f"cannot be parsed ({e})") from e

        if not options.admin_username:
            raise InvalidConfiguration("ADMIN_USERNAME", "must not be empty")

    def load_installer(self, target: Platform) -> bytes:
        """Read the installer script's raw bytes.

        Raises:
            PrerequisiteMissing: If the script is not present
        """
        return PrerequisiteChecker.installer_path(target, self.installers_dir).read_bytes()

    @staticmethod
    def vm_spec(
        request: ProvisionRequest, options: ProvisionOptions, secrets: Secrets
    ) -> VMCreateSpec:
        return VMCreateSpec(
            resource_group=request.resource_group,
            name=request.vm_name,
            image=options.vm_image,
            size=options.vm_size,
            admin_username=options.admin_username,
            admin_password=secrets.admin_password if request.platform is Platform.WINDOWS else "",
            public_ip=options.wants_public_ip,
            vnet_name=options.vnet_name,
            subnet_name=options.subnet_name,
            data_disk_size=options.data_disk_size,
            tags=options.tags,
        )

    @staticmethod
    def extract_endpoints(vm_data: dict[str, Any]) -> tuple[str, str]:
        """Public and private IP from an ``az vm create`` response ('' if absent)."""
        public_ip = vm_data.get("publicIpAddress") or ""
        private_ip = vm_data.get("privateIpAddress") or ""
        return str(public_ip), str(private_ip)

    def provision(
        self, request: ProvisionRequest, options: ProvisionOptions, secrets: Secrets
    ) -> ProvisionResult:
        """Provision the VM and register it as an agent.

        Raises:
            MissingCredential: Required secret absent
            InvalidConfiguration: Option validation failed
            PrerequisiteMissing: Installer script not found
            ProvisioningFailed: VM creation or remote execution failed
        """
        self.validate(request, options, secrets)
        installer_bytes = self.load_installer(request.platform)
        script = RemoteScriptBuilder.build(request, options, secrets, installer_bytes)

        self._report(
            f"Creating resource group {request.resource_group} in {request.location} ..."
        )
        self.client.create_resource_group(request.resource_group, request.location, options.tags)

        self._report(
            f"Creating VM {request.vm_name} "
            f"(image: {options.vm_image}, size: {options.vm_size}) ..."
        )
        vm_data = self.client.create_vm(self.vm_spec(request, options, secrets))
        public_ip, private_ip = self.extract_endpoints(vm_data)
        self.client.wait_until_created(request.resource_group, request.vm_name)

        self._report(f"Bootstrapping Azure DevOps agent on {request.vm_name} ...")
        output = self.client.run_command(
            request.resource_group,
            request.vm_name,
            request.platform.run_command_id,
            script,
        )
        # run-command succeeds even when the installer fails on the VM
        status = remote_exit_status(output)
        if status != 0:
            if status is None:
                logger.error(f"Bootstrap script on {request.vm_name} reported no exit status")
            raise ProvisioningFailed("Remote command", output)

        self._report("Provisioning complete.")
        return ProvisionResult(
            admin_username=options.admin_username,
            remote_output=strip_exit_marker(output),
            public_ip=public_ip,
            private_ip=private_ip,
        )


def provision(
    request: ProvisionRequest,
    options: ProvisionOptions,
    secrets: Secrets,
    client: CloudProvisioningClient | None = None,
) -> ProvisionResult:
    """Provision with a default AgentProvisioner (convenience function)."""
    return AgentProvisioner(client=client).provision(request, options, secrets)


__all__ = ["AgentProvisioner", "provision"]
