"""Configuration management module.

Options are assembled once at the CLI boundary and handed to the orchestrator
as an immutable ProvisionOptions. Precedence, highest first:

1. Environment variables (AGENT_VERSION, VM_SIZE, PUBLIC_IP, ...)
2. Persistent defaults in ~/.azdo-agent/config.toml
3. Platform defaults

Security:
- Config file permissions: 0600 (owner read/write only)
- Secrets are never stored in the config file
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, ClassVar

try:
    import tomli  # type: ignore[import]
except ImportError:
    # Fallback for older Python versions
    try:
        import tomllib as tomli  # type: ignore[import]
    except ImportError as e:
        raise ImportError("toml library not available. Install with: pip install tomli") from e

import tomlkit

from azdo_agent.models import Platform, ProvisionOptions

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


# Option field -> environment variable
OPTION_ENV_VARS: dict[str, str] = {
    "agent_version": "AGENT_VERSION",
    "agent_home": "AGENT_HOME",
    "work_dir": "WORK_DIR",
    "vm_size": "VM_SIZE",
    "vm_image": "VM_IMAGE",
    "admin_username": "ADMIN_USERNAME",
    "public_ip": "PUBLIC_IP",
    "vnet_name": "VNET_NAME",
    "subnet_name": "SUBNET_NAME",
    "data_disk_size": "DATA_DISK_SIZE",
    "tags": "TAGS",
}

PLATFORM_DEFAULTS: dict[Platform, dict[str, str]] = {
    Platform.LINUX: {
        "vm_size": "Standard_D2s_v3",
        "vm_image": "Ubuntu2204",
        "agent_home": "/home/{admin_username}/azdo/linux-agent",
    },
    Platform.WINDOWS: {
        "vm_size": "Standard_D4s_v3",
        "vm_image": "Win2022Datacenter",
        "agent_home": "C:/azdo/windows-agent",
    },
}


@dataclass
class AgentConfig:
    """Persistent defaults stored in config.toml."""

    organization_url: str | None = None
    pool_name: str | None = None
    resource_group: str | None = None
    location: str | None = None
    options: dict[str, str] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values (TOML has no null)."""
        data: dict[str, Any] = {
            "organization_url": self.organization_url,
            "pool_name": self.pool_name,
            "resource_group": self.resource_group,
            "location": self.location,
        }
        if self.options:
            data["options"] = dict(self.options)
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentConfig":
        options = data.get("options") or {}
        return cls(
            organization_url=data.get("organization_url"),
            pool_name=data.get("pool_name"),
            resource_group=data.get("resource_group"),
            location=data.get("location"),
            options={str(k): str(v) for k, v in options.items()},
        )


class ConfigManager:
    """Manage the azdo-agent configuration file.

    Configuration is stored at ~/.azdo-agent/config.toml with secure permissions.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".azdo-agent"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    TOP_LEVEL_KEYS: ClassVar[set[str]] = {
        "organization_url",
        "pool_name",
        "resource_group",
        "location",
    }
    SECRET_KEYS: ClassVar[set[str]] = {
        "access_token",
        "admin_password",
        "azdo_pat",
        "win_admin_password",
    }

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        if custom_path:
            return Path(custom_path).expanduser().resolve()
        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> AgentConfig:
        """Load configuration; a missing file yields empty defaults.

        Raises:
            ConfigError: If the file exists but cannot be parsed
        """
        config_path = cls.get_config_path(custom_path)
        if not config_path.exists():
            logger.debug(f"No config file at {config_path}, using defaults")
            return AgentConfig(options={})

        try:
            with open(config_path, "rb") as f:
                data = tomli.load(f)
        except (OSError, tomli.TOMLDecodeError) as e:
            raise ConfigError(f"Failed to load config from {config_path}: {e}") from e

        logger.debug(f"Loaded config from {config_path}")
        return AgentConfig.from_dict(data)

    @classmethod
    def save_config(cls, config: AgentConfig, custom_path: str | None = None) -> None:
        """Write configuration atomically with 0600 permissions.

        Raises:
            ConfigError: If the file cannot be written
        """
        config_path = cls.get_config_path(custom_path)
        temp_path = config_path.with_suffix(".tmp")
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
            with open(temp_path, "w") as f:
                f.write(tomlkit.dumps(config.to_dict()))
            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config to {config_path}: {e}") from e

        logger.debug(f"Saved config to {config_path}")

    @classmethod
    def set_value(cls, key: str, value: str, custom_path: str | None = None) -> AgentConfig:
        """Persist one setting.

        ``key`` is a top-level key (organization_url, pool_name, resource_group,
        location) or a ProvisionOptions field name.

        Raises:
            ConfigError: For secrets or unknown keys
        """
        normalized = key.strip().lower().replace("-", "_")
        if normalized in cls.SECRET_KEYS:
            raise ConfigError(f"Refusing to store secret '{key}' in the config file")

        config = cls.load_config(custom_path)
        if normalized in cls.TOP_LEVEL_KEYS:
            setattr(config, normalized, value)
        elif normalized in OPTION_ENV_VARS:
            config.options = dict(config.options or {})
            config.options[normalized] = value
        else:
            valid = sorted(cls.TOP_LEVEL_KEYS | set(OPTION_ENV_VARS))
            raise ConfigError(f"Unknown config key '{key}'. Valid keys: {', '.join(valid)}")

        cls.save_config(config, custom_path)
        return config

    @classmethod
    def build_options(
        cls,
        target: Platform,
        environ: Mapping[str, str] | None = None,
        config: AgentConfig | None = None,
        local: bool = False,
    ) -> ProvisionOptions:
        """Assemble ProvisionOptions for ``target``.

        With ``local`` the agent is installed on this machine rather than a new
        VM, so an unset agent_home is left empty for the installer to default.

        No validation happens here; the orchestrator validates before any
        remote call.
        """
        environ = os.environ if environ is None else environ
        stored = (config.options if config else None) or {}
        platform_defaults = PLATFORM_DEFAULTS[target]
        base = ProvisionOptions()

        values: dict[str, str] = {}
        for option in fields(ProvisionOptions):
            name = option.name
            env_value = environ.get(OPTION_ENV_VARS[name], "")
            if env_value:
                values[name] = env_value
            elif stored.get(name):
                values[name] = stored[name]
            else:
                values[name] = platform_defaults.get(name, getattr(base, name))
                if local and name == "agent_home":
                    values[name] = ""

        # Default home is derived from the resolved admin user
        values["agent_home"] = values["agent_home"].replace(
            "{admin_username}", values["admin_username"]
        )

        return ProvisionOptions(**values)


__all__ = [
    "OPTION_ENV_VARS",
    "PLATFORM_DEFAULTS",
    "AgentConfig",
    "ConfigError",
    "ConfigManager",
]
