"""Azure CLI command sanitization for secure display.

Commands are echoed before they run. Two arguments carry secrets in this
tool: ``--admin-password`` (Windows VMs) and ``--scripts`` (the run-command
payload embeds the access token). Both are redacted before display or
logging; the command actually executed is never modified.

Usage:
    >>> CommandSanitizer().sanitize(["az", "vm", "create", "--admin-password", "S3cret!"])
    ['az', 'vm', 'create', '--admin-password', '***']
"""

import re
from re import Pattern
from typing import ClassVar


class CommandSanitizer:
    """Redact secret-bearing arguments from Azure CLI commands."""

    REDACTED = "***"

    SENSITIVE_PARAMS: ClassVar[set[str]] = {
        "--password",
        "--admin-password",
        "--scripts",
        "--token",
        "--access-token",
        "--secret",
    }

    # Values that look like secrets even outside a sensitive parameter
    SECRET_VALUE_PATTERNS: ClassVar[list[Pattern]] = [
        re.compile(r"(AZDO_PAT[\"']?\s*=\s*[\"']?)([^\s\"']+)"),
        re.compile(r"(\$env:AZDO_PAT\s*=\s*[\"'])([^\"']+)"),
    ]

    def __init__(self, additional_params: list[str] | None = None):
        """Initialize command sanitizer.

        Args:
            additional_params: Extra parameter names to treat as sensitive
        """
        self.additional_params = {p.lower() for p in additional_params or []}

    def sanitize(self, command: list[str]) -> list[str]:
        """Return a display-safe copy of ``command``.

        Examples:
            >>> CommandSanitizer().sanitize(["az", "login", "--password=abc"])
            ['az', 'login', '--password=***']
        """
        if command is None:
            raise TypeError("Command cannot be None")

        result: list[str] = []
        i = 0
        while i < len(command):
            arg = command[i]
            if self._is_sensitive_param(arg) and i + 1 < len(command):
                result.extend([arg, self.REDACTED])
                i += 2
                continue
            if arg.startswith("--") and "=" in arg:
                param, _ = arg.split("=", 1)
                if self._is_sensitive_param(param):
                    arg = f"{param}={self.REDACTED}"
            result.append(self.sanitize_text(arg))
            i += 1
        return result

    @classmethod
    def sanitize_text(cls, text: str) -> str:
        """Mask token assignments embedded in free text."""
        for pattern in cls.SECRET_VALUE_PATTERNS:
            text = pattern.sub(lambda m: m.group(1) + cls.REDACTED, text)
        return text

    def _is_sensitive_param(self, param: str) -> bool:
        param_lower = param.lower()
        return param_lower in self.SENSITIVE_PARAMS or param_lower in self.additional_params


__all__ = ["CommandSanitizer"]
