"""
Prerequisites Checker Module

Verifies the Azure CLI and the packaged agent installers are available before
any remote call is made.

Security Requirements:
- Read-only system checks
- No shell=True in subprocess calls
"""

import logging
import platform
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from azdo_agent.exceptions import PrerequisiteMissing
from azdo_agent.models import Platform

logger = logging.getLogger(__name__)

INSTALLERS_DIR = Path(__file__).parent / "installers"


@dataclass
class PrerequisiteResult:
    """Result of prerequisite checks."""

    all_available: bool
    missing: list[str]
    available: list[str]
    platform_name: str


class PrerequisiteChecker:
    """
    Check required external tools and companion scripts.

    Required tools:
    - az (Azure CLI) for cloud provisioning
    """

    REQUIRED_TOOLS: ClassVar[list[str]] = ["az"]

    @classmethod
    def check_tool(cls, tool_name: str) -> bool:
        """
        Check if a single tool is available in PATH.

        Security: Uses shutil.which (safe, no subprocess)
        """
        result = shutil.which(tool_name)
        if result:
            logger.debug(f"Found {tool_name} at {result}")
            return True
        logger.debug(f"Tool not found: {tool_name}")
        return False

    @classmethod
    def check_all(cls, tools: list[str] | None = None) -> PrerequisiteResult:
        """
        Check prerequisites and return comprehensive result.

        Example:
            >>> result = PrerequisiteChecker.check_all()
            >>> if not result.all_available:
            ...     print(f"Missing: {result.missing}")
        """
        missing: list[str] = []
        available: list[str] = []

        for tool in tools if tools is not None else cls.REQUIRED_TOOLS:
            if cls.check_tool(tool):
                available.append(tool)
            else:
                missing.append(tool)

        platform_name = cls.detect_platform()
        result = PrerequisiteResult(
            all_available=(len(missing) == 0),
            missing=missing,
            available=available,
            platform_name=platform_name,
        )

        if result.all_available:
            logger.debug(f"All prerequisites available ({platform_name})")
        else:
            logger.error(f"Missing prerequisites: {', '.join(missing)}")

        return result

    @classmethod
    def require_tools(cls, tools: list[str] | None = None) -> None:
        """Raise PrerequisiteMissing with install guidance if a tool is absent."""
        result = cls.check_all(tools)
        if not result.all_available:
            raise PrerequisiteMissing(
                cls.format_missing_message(result.missing, result.platform_name)
            )

    @classmethod
    def installer_path(cls, target: Platform, installers_dir: Path | None = None) -> Path:
        """Locate the packaged installer script for ``target``.

        Raises:
            PrerequisiteMissing: If the script is not present
        """
        path = (installers_dir or INSTALLERS_DIR) / target.installer_filename
        if not path.is_file():
            raise PrerequisiteMissing(f"Required script {path} not found.")
        return path

    @classmethod
    def detect_platform(cls) -> str:
        """
        Detect the operating system platform.

        Returns:
            str: Platform name (macos, linux, windows, unknown)
        """
        system = platform.system().lower()

        if system == "darwin":
            return "macos"
        if system in ("linux", "windows"):
            return system
        return "unknown"

    @classmethod
    def format_missing_message(cls, missing: list[str], platform_name: str) -> str:
        """
        Format user-friendly installation instructions for missing tools.

        Example:
            >>> print(PrerequisiteChecker.format_missing_message(["az"], "macos"))
        """
        if not missing:
            return "All prerequisites are installed."

        lines: list[str] = ["Missing required tools:", ""]
        lines.extend(f"  - {tool}" for tool in missing)
        lines.append("")

        if "az" in missing:
            lines.append("Install Azure CLI:")
            if platform_name == "macos":
                lines.append("  brew install azure-cli")
            elif platform_name == "linux":
                lines.append("  curl -sL https://aka.ms/InstallAzureCLIDeb | sudo bash")
            elif platform_name == "windows":
                lines.append("  Download from: https://aka.ms/installazurecliwindows")
            else:
                lines.append("  See: https://docs.microsoft.com/cli/azure/install-azure-cli")
            lines.append("")

        lines.append("Then sign in with 'az login' and run 'azdo-agent' again.")
        return "\n".join(lines)


__all__ = ["INSTALLERS_DIR", "PrerequisiteChecker", "PrerequisiteResult"]
