"""Remote bootstrap script templating.

The installer script is shipped to the VM inside the run-command payload as a
single-line base64 blob. The payload itself is a small template with named
``%%SLOT%%`` placeholders that are filled in one pass: every placeholder in the
*template* is located once and replaced by its value, and substituted values
are never scanned again. A value that happens to contain ``%%AZDO_PAT%%`` is
therefore emitted literally.

Values are quoted for the target shell before substitution, so ``$``,
backticks and quotes in a pool name or token reach the installer unchanged.

Both templates end by printing ``AZDO_BOOTSTRAP_EXIT=<status>``. run-command
itself succeeds whenever the script was delivered, so that line is the only
record of whether the installer worked.

Public API:
    RemoteScriptTemplate: Typed template with named slots
    encode_installer: Base64-encode installer bytes for transport
    LINUX_TEMPLATE / WINDOWS_TEMPLATE: Platform bootstrap templates
    build_remote_script: Assemble the script for a provisioning run
    remote_exit_status / strip_exit_marker: Read the reported exit status
"""

import base64
import re
import shlex
from collections.abc import Callable
from dataclasses import dataclass
from typing import ClassVar

from azdo_agent.exceptions import InvalidConfiguration
from azdo_agent.models import Platform, ProvisionOptions, ProvisionRequest, Secrets

SLOT_PATTERN = re.compile(r"%%([A-Z0-9_]+)%%")

EXIT_MARKER = "AZDO_BOOTSTRAP_EXIT"
EXIT_MARKER_PATTERN = re.compile(rf"^{EXIT_MARKER}=(\d+)[ \t\r]*(?:\n|$)", re.MULTILINE)


def powershell_quote(value: str) -> str:
    """Single-quote ``value`` for PowerShell (no variable expansion)."""
    return "'" + value.replace("'", "''") + "'"


@dataclass(frozen=True)
class RemoteScriptTemplate:
    """Template text plus the set of slot names it must be rendered with.

    ``quote`` is applied to every value before it is substituted.
    """

    text: str
    slots: frozenset[str]
    quote: Callable[[str], str] = str

    @classmethod
    def from_text(
        cls, text: str, quote: Callable[[str], str] = str
    ) -> "RemoteScriptTemplate":
        return cls(text=text, slots=frozenset(SLOT_PATTERN.findall(text)), quote=quote)

    def render(self, values: dict[str, str]) -> str:
        """Substitute every slot in a single pass.

        Args:
            values: Slot name -> replacement text

        Returns:
            Rendered script

        Raises:
            ValueError: If a slot has no value or an unknown slot is supplied
        """
        missing = self.slots - values.keys()
        if missing:
            raise ValueError(f"No value for template slot(s): {', '.join(sorted(missing))}")

        unknown = values.keys() - self.slots
        if unknown:
            raise ValueError(f"Unknown template slot(s): {', '.join(sorted(unknown))}")

        quoted = {name: self.quote(value) for name, value in values.items()}
        return SLOT_PATTERN.sub(lambda match: quoted[match.group(1)], self.text)


def encode_installer(script_bytes: bytes) -> str:
    """Encode installer bytes as one line of base64 text."""
    return base64.b64encode(script_bytes).decode("ascii")


def remote_exit_status(output: str) -> int | None:
    """Exit status the bootstrap script reported, or None if it never did."""
    statuses = EXIT_MARKER_PATTERN.findall(output)
    return int(statuses[-1]) if statuses else None


def strip_exit_marker(output: str) -> str:
    return EXIT_MARKER_PATTERN.sub("", output).rstrip("\n")


LINUX_TEMPLATE = RemoteScriptTemplate.from_text(
    """set -euo pipefail
trap 'echo "AZDO_BOOTSTRAP_EXIT=$?"' EXIT
INSTALL_SCRIPT_B64=%%INSTALL_SCRIPT_B64%%
echo "$INSTALL_SCRIPT_B64" | base64 -d > /tmp/install-agent-linux.sh
chmod +x /tmp/install-agent-linux.sh
export AZDO_PAT=%%AZDO_PAT%%
export AGENT_VERSION=%%AGENT_VERSION%%
export AGENT_HOME=%%AGENT_HOME%%
export WORK_DIR=%%WORK_DIR%%
/tmp/install-agent-linux.sh %%ORG_URL%% %%POOL_NAME%% %%AGENT_NAME%%
""",
    quote=shlex.quote,
)

WINDOWS_TEMPLATE = RemoteScriptTemplate.from_text(
    """$ErrorActionPreference = 'Stop'
$status = 0
try {
    $scriptBytes = [Convert]::FromBase64String(%%INSTALL_SCRIPT_B64%%)
    $scriptPath = "C:\\azdo\\install-agent-windows.ps1"
    $scriptDir = Split-Path $scriptPath
    if (-not (Test-Path $scriptDir)) {
        New-Item -ItemType Directory -Path $scriptDir | Out-Null
    }
    [System.IO.File]::WriteAllBytes($scriptPath, $scriptBytes)
    $env:AZDO_PAT = %%AZDO_PAT%%
    $env:AGENT_VERSION = %%AGENT_VERSION%%
    $env:AGENT_HOME = %%AGENT_HOME%%
    $env:WORK_DIR = %%WORK_DIR%%
    $global:LASTEXITCODE = 0
    & $scriptPath -OrganizationUrl %%ORG_URL%% -PoolName %%POOL_NAME%% -AgentName %%AGENT_NAME%%
    if ($LASTEXITCODE) { $status = $LASTEXITCODE }
} catch {
    [Console]::Error.WriteLine($_.Exception.Message)
    $status = 1
}
Write-Output "AZDO_BOOTSTRAP_EXIT=$status"
exit $status
""",
    quote=powershell_quote,
)


class RemoteScriptBuilder:
    """Assemble the run-command payload for a provisioning run."""

    TEMPLATES: ClassVar[dict[Platform, RemoteScriptTemplate]] = {
        Platform.LINUX: LINUX_TEMPLATE,
        Platform.WINDOWS: WINDOWS_TEMPLATE,
    }

    @classmethod
    def slot_values(
        cls,
        request: ProvisionRequest,
        options: ProvisionOptions,
        secrets: Secrets,
        installer_b64: str,
    ) -> dict[str, str]:
        """Map slot names to run values.

        The administrator password is not a slot; it is passed at VM creation.
        """
        return {
            "INSTALL_SCRIPT_B64": installer_b64,
            "AZDO_PAT": secrets.access_token,
            "AGENT_VERSION": options.agent_version,
            "AGENT_HOME": options.agent_home,
            "WORK_DIR": options.work_dir,
            "ORG_URL": request.organization_url,
            "POOL_NAME": request.pool_name,
            "AGENT_NAME": request.agent_name,
        }

    @classmethod
    def build(
        cls,
        request: ProvisionRequest,
        options: ProvisionOptions,
        secrets: Secrets,
        installer_bytes: bytes,
    ) -> str:
        """Render the platform template for this run.

        Raises:
            InvalidConfiguration: If the template cannot be rendered
        """
        template = cls.TEMPLATES[request.platform]
        values = cls.slot_values(request, options, secrets, encode_installer(installer_bytes))
        try:
            return template.render(values)
        except ValueError as e:
            raise InvalidConfiguration("REMOTE_SCRIPT", str(e)) from e


def build_remote_script(
    request: ProvisionRequest,
    options: ProvisionOptions,
    secrets: Secrets,
    installer_bytes: bytes,
) -> str:
    """Convenience wrapper around RemoteScriptBuilder.build."""
    return RemoteScriptBuilder.build(request, options, secrets, installer_bytes)


__all__ = [
    "EXIT_MARKER",
    "LINUX_TEMPLATE",
    "SLOT_PATTERN",
    "WINDOWS_TEMPLATE",
    "RemoteScriptBuilder",
    "RemoteScriptTemplate",
    "build_remote_script",
    "encode_installer",
    "powershell_quote",
    "remote_exit_status",
    "strip_exit_marker",
]
