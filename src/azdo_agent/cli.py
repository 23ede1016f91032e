"""CLI entry point for azdo-agent.

Commands:
    azdo-agent provision linux|windows VM_NAME [AGENT_NAME]   # Azure VM agent
    azdo-agent install ORG_URL POOL [AGENT_NAME]              # Agent on this host
    azdo-agent verify ORG_URL POOL [--agent NAME]             # Check pool agents
    azdo-agent config show|set                                # Persistent defaults

Credentials are resolved here, at the boundary, and handed to the
orchestrator as an immutable Secrets value.
"""

import logging
import sys
from typing import NoReturn

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from azdo_agent import __version__
from azdo_agent.click_group import AgentGroup
from azdo_agent.config_manager import AgentConfig, ConfigError, ConfigManager
from azdo_agent.credential_resolver import (
    ACCESS_TOKEN_VAR,
    ADMIN_PASSWORD_VAR,
    CredentialResolver,
)
from azdo_agent.devops_client import AzureDevOpsClient, PoolQueryError
from azdo_agent.exceptions import AgentProvisioningError
from azdo_agent.installer import LocalAgentInstaller
from azdo_agent.models import Platform, ProvisionRequest, ProvisionResult, Secrets
from azdo_agent.orchestrator import AgentProvisioner
from azdo_agent.prerequisites import PrerequisiteChecker

logger = logging.getLogger(__name__)
console = Console()

PLATFORM_CHOICE = click.Choice([p.value for p in Platform], case_sensitive=False)


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error: {escape(message)}[/red]", highlight=False)
    sys.exit(1)


def _load_config() -> AgentConfig:
    try:
        return ConfigManager.load_config()
    except ConfigError as e:
        _fail(str(e))


def _require(value: str | None, name: str, config_key: str) -> str:
    if not value:
        _fail(
            f"{name} is required. Pass it as an option or run: "
            f"azdo-agent config set {config_key} VALUE"
        )
    return value


def _print_result(result: ProvisionResult, pool_name: str, target: Platform) -> None:
    if result.remote_output:
        console.print(result.remote_output, highlight=False, markup=False)

    console.print("\n[bold green]Provisioning complete.[/bold green] Connection details:")
    for line in result.connection_lines():
        console.print(f"  {line}", highlight=False)

    console.print("\n[bold]Next steps:[/bold]")
    console.print(
        f'  - Verify the agent is online: azdo-agent verify ORG_URL "{pool_name}" --agent NAME',
        highlight=False,
        markup=False,
    )
    if target is Platform.WINDOWS:
        console.print("  - Reset/rotate the admin password and PAT per your security policy.")
        console.print("  - Harden the VM (NSG rules, Just-In-Time access, Defender) before use.")
    else:
        console.print("  - Rotate the PAT if necessary; it was sent to the VM via run-command.")
        console.print("  - Lock down networking (NSG rules) and enable auto-shutdown/backups.")


@click.group(
    cls=AgentGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """azdo-agent - Self-hosted Azure DevOps agent provisioning.

    Creates Azure VMs and registers them as agents in an Azure DevOps pool,
    or installs an agent on the current machine.

    \b
    ENVIRONMENT:
        AZDO_PAT            Access token (Agent Pools: Read & manage)
        WIN_ADMIN_PASSWORD  Windows administrator password (windows only)
        AGENT_VERSION, AGENT_HOME, WORK_DIR, VM_SIZE, VM_IMAGE,
        ADMIN_USERNAME, PUBLIC_IP, VNET_NAME, SUBNET_NAME,
        DATA_DISK_SIZE, TAGS

    \b
    CONFIGURATION:
        Config file: ~/.azdo-agent/config.toml
        Environment variables override config file values.
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)


@main.command(name="provision")
@click.argument("platform", type=PLATFORM_CHOICE)
@click.argument("vm_name")
@click.argument("agent_name", required=False)
@click.option(
    "--org", "organization_url", help="Organization URL, e.g. https://dev.azure.com/contoso"
)
@click.option("--pool", "pool_name", help="Agent pool name")
@click.option("--resource-group", "--rg", "resource_group", help="Azure resource group")
@click.option("--location", help="Azure region, e.g. eastus")
def provision_command(
    platform: str,
    vm_name: str,
    agent_name: str | None,
    organization_url: str | None,
    pool_name: str | None,
    resource_group: str | None,
    location: str | None,
):
    """Provision an Azure VM and bootstrap it as a self-hosted agent.

    PLATFORM is linux or windows. AGENT_NAME defaults to VM_NAME.

    \b
    Examples:
      $ export AZDO_PAT=...
      $ azdo-agent provision linux vm1 --org https://dev.azure.com/contoso \\
          --pool SelfHostedPool --rg rg-azdo-linux --location eastus
      $ export WIN_ADMIN_PASSWORD=...
      $ azdo-agent provision windows winvm1 build-win-01 --rg rg-azdo-win --location eastus
    """
    target = Platform(platform.lower())
    config = _load_config()

    try:
        request = ProvisionRequest(
            organization_url=_require(
                organization_url or config.organization_url, "--org", "organization_url"
            ),
            pool_name=_require(pool_name or config.pool_name, "--pool", "pool_name"),
            resource_group=_require(
                resource_group or config.resource_group, "--resource-group", "resource_group"
            ),
            location=_require(location or config.location, "--location", "location"),
            vm_name=vm_name,
            agent_name=agent_name or "",
            platform=target,
        )

        resolver = CredentialResolver()
        secrets = Secrets(
            access_token=resolver.resolve(ACCESS_TOKEN_VAR),
            admin_password=(
                resolver.resolve(ADMIN_PASSWORD_VAR) if target is Platform.WINDOWS else ""
            ),
        )
        options = ConfigManager.build_options(target, config=config)

        PrerequisiteChecker.require_tools()
        provisioner = AgentProvisioner(
            progress_callback=lambda msg: console.print(f"[dim]{msg}[/dim]", highlight=False)
        )
        result = provisioner.provision(request, options, secrets)

    except AgentProvisioningError as e:
        _fail(str(e))

    _print_result(result, request.pool_name, target)


@main.command(name="install")
@click.argument("organization_url")
@click.argument("pool_name")
@click.argument("agent_name", required=False)
@click.option(
    "--platform",
    type=PLATFORM_CHOICE,
    help="Installer to run (default: detected from this host)",
)
def install_command(
    organization_url: str, pool_name: str, agent_name: str | None, platform: str | None
):
    """Install and register an agent on this machine.

    AGENT_NAME defaults to the host name. The access token is read from
    AZDO_PAT or prompted for, and is passed to the installer through its
    environment.

    \b
    Example:
      $ azdo-agent install https://dev.azure.com/contoso BuildPool build-agent-01
    """
    if platform:
        target = Platform(platform.lower())
    elif PrerequisiteChecker.detect_platform() == "windows":
        target = Platform.WINDOWS
    else:
        target = Platform.LINUX

    try:
        token = CredentialResolver().resolve(ACCESS_TOKEN_VAR)
        options = ConfigManager.build_options(target, config=_load_config(), local=True)

        installer = LocalAgentInstaller(target)
        invocation = installer.build_invocation(
            organization_url, pool_name, token, options, agent_name
        )
        installer.install(
            invocation,
            on_output=lambda line: console.print(line, highlight=False, markup=False),
        )
    except AgentProvisioningError as e:
        _fail(str(e))

    console.print(f"[green]Agent {escape(invocation.agent_name)} installed.[/green]")


@main.command(name="verify")
@click.argument("organization_url")
@click.argument("pool_name")
@click.option("--agent", "agent_name", help="Require this agent to be online")
def verify_command(organization_url: str, pool_name: str, agent_name: str | None):
    """List agents in a pool and check that an agent is online.

    \b
    Example:
      $ azdo-agent verify https://dev.azure.com/contoso SelfHostedPool --agent agent1
    """
    try:
        token = CredentialResolver().resolve(ACCESS_TOKEN_VAR)
        client = AzureDevOpsClient(organization_url, token)
        agents = client.list_agents(pool_name)
    except (AgentProvisioningError, PoolQueryError, ValueError) as e:
        _fail(str(e))

    table = Table(title=f"Agents in {pool_name}")
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Enabled")
    table.add_column("Version")
    for agent in agents:
        status_style = "green" if agent.status == "online" else "red"
        table.add_row(
            str(agent.agent_id),
            agent.name,
            f"[{status_style}]{agent.status}[/{status_style}]",
            "yes" if agent.enabled else "no",
            agent.version,
        )
    console.print(table)

    if agent_name:
        match = next((a for a in agents if a.name.lower() == agent_name.lower()), None)
        if match is None:
            _fail(f"Agent {agent_name} is not registered in pool {pool_name}")
        elif match.status != "online":
            _fail(f"Agent {agent_name} is registered but {match.status}")
        else:
            console.print(f"[green]Agent {agent_name} is online.[/green]")


@main.group(name="config")
def config_group():
    """Show or change persistent defaults (~/.azdo-agent/config.toml)."""
    pass


@config_group.command(name="show")
def config_show():
    """Show stored configuration."""
    config = _load_config()
    data = config.to_dict()
    if not data.get("options"):
        data.pop("options", None)
    if not data:
        console.print("No configuration stored.")
        return

    table = Table(title=str(ConfigManager.get_config_path()))
    table.add_column("Key")
    table.add_column("Value")
    for key, value in data.items():
        if key == "options":
            for option_key, option_value in value.items():
                table.add_row(option_key, option_value)
        else:
            table.add_row(key, value)
    console.print(table)


@config_group.command(name="set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Store a default value.

    KEY is organization_url, pool_name, resource_group, location, or an
    option name such as vm_size, vm_image, admin_username, public_ip,
    vnet_name, subnet_name, data_disk_size, tags, agent_version, agent_home,
    work_dir. Secrets cannot be stored.
    """
    try:
        ConfigManager.set_value(key, value)
    except ConfigError as e:
        _fail(str(e))
    console.print(f"[green]Saved {key}[/green]")


if __name__ == "__main__":
    main()
