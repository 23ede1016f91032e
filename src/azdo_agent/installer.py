"""Local agent installation.

Runs the packaged installer on the current machine using the same invocation
contract the remote bootstrap uses on a VM: organization URL, pool and agent
name as positional arguments; token, version, home and work directory in the
environment so the token never shows up in a process listing.
"""

import logging
import os
import socket
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from azdo_agent.exceptions import ProvisioningFailed
from azdo_agent.models import Platform, ProvisionOptions
from azdo_agent.prerequisites import PrerequisiteChecker
from azdo_agent.subprocess_helper import SubprocessResult, safe_run

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstallerInvocation:
    """Arguments and environment for one installer run."""

    organization_url: str
    pool_name: str
    agent_name: str
    access_token: str = field(repr=False)
    agent_version: str
    agent_home: str
    work_dir: str

    def environment(self, base: dict[str, str] | None = None) -> dict[str, str]:
        env = dict(os.environ if base is None else base)
        env["AZDO_PAT"] = self.access_token
        env["AGENT_VERSION"] = self.agent_version
        if self.agent_home:
            env["AGENT_HOME"] = self.agent_home
        env["WORK_DIR"] = self.work_dir
        return env


class LocalAgentInstaller:
    """Install and register an agent on this host."""

    def __init__(self, target: Platform, installers_dir: Path | None = None):
        self.target = target
        self.installers_dir = installers_dir

    @staticmethod
    def default_agent_name() -> str:
        return socket.gethostname()

    def build_invocation(
        self,
        organization_url: str,
        pool_name: str,
        access_token: str,
        options: ProvisionOptions,
        agent_name: str | None = None,
    ) -> InstallerInvocation:
        return InstallerInvocation(
            organization_url=organization_url,
            pool_name=pool_name,
            agent_name=agent_name or self.default_agent_name(),
            access_token=access_token,
            agent_version=options.agent_version,
            agent_home=options.agent_home,
            work_dir=options.work_dir,
        )

    def command(self, script: Path, invocation: InstallerInvocation) -> list[str]:
        if self.target is Platform.WINDOWS:
            return [
                "powershell",
                "-NoProfile",
                "-ExecutionPolicy",
                "Bypass",
                "-File",
                str(script),
                "-OrganizationUrl",
                invocation.organization_url,
                "-PoolName",
                invocation.pool_name,
                "-AgentName",
                invocation.agent_name,
            ]
        return [
            "bash",
            str(script),
            invocation.organization_url,
            invocation.pool_name,
            invocation.agent_name,
        ]

    def install(
        self,
        invocation: InstallerInvocation,
        on_output: Callable[[str], None] | None = None,
    ) -> SubprocessResult:
        """Run the installer and wait for it to finish.

        Args:
            invocation: Arguments and environment for the run
            on_output: Called with each line the installer prints

        Returns:
            SubprocessResult of the successful run

        Raises:
            PrerequisiteMissing: If the installer script is absent
            ProvisioningFailed: On any non-zero exit; stderr is the diagnostic
        """
        script = PrerequisiteChecker.installer_path(self.target, self.installers_dir)
        logger.info(f"Installing agent {invocation.agent_name} into {invocation.pool_name} ...")

        result = safe_run(
            self.command(script, invocation),
            env=invocation.environment(),
            on_output=on_output,
        )
        if result.returncode != 0:
            raise ProvisioningFailed("Agent installation", result.stderr or result.stdout)

        logger.info(f"Agent {invocation.agent_name} installed")
        return result


__all__ = ["InstallerInvocation", "LocalAgentInstaller"]
