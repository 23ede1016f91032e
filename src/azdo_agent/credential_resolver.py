"""Credential resolution at the CLI boundary.

Secrets come from the process environment or, failing that, a single masked
prompt. Nothing is cached beyond the resolver instance and nothing is written
to disk.
"""

import logging
import os
import sys
from collections.abc import Callable, Mapping

import click

from azdo_agent.exceptions import MissingCredential

logger = logging.getLogger(__name__)

ACCESS_TOKEN_VAR = "AZDO_PAT"
ADMIN_PASSWORD_VAR = "WIN_ADMIN_PASSWORD"

PROMPTS = {
    ACCESS_TOKEN_VAR: "Enter Azure DevOps PAT (scope: Agent Pools (Read & manage))",
    ADMIN_PASSWORD_VAR: "Enter Windows administrator password",
}


class CredentialResolver:
    """Resolve named secrets from the environment or an interactive prompt."""

    def __init__(
        self,
        environ: Mapping[str, str] | None = None,
        interactive: bool | None = None,
        prompt: Callable[[str], str] | None = None,
    ):
        """Initialize resolver.

        Args:
            environ: Environment mapping (default: os.environ)
            interactive: Whether prompting is allowed (default: stdin is a TTY)
            prompt: Masked prompt function (default: click.prompt with hidden input)
        """
        self.environ = os.environ if environ is None else environ
        self.interactive = sys.stdin.isatty() if interactive is None else interactive
        self.prompt = prompt or self._click_prompt

    @staticmethod
    def _click_prompt(text: str) -> str:
        return click.prompt(text, hide_input=True, default="", show_default=False)

    def resolve(self, name: str) -> str:
        """Return the secret called ``name``.

        Raises:
            MissingCredential: If unset and no interactive input is possible,
                or the prompt returns nothing
        """
        value = self.environ.get(name, "")
        if value:
            logger.debug(f"{name} resolved from environment")
            return value

        if not self.interactive:
            raise MissingCredential(f"{name} environment variable must be set.")

        value = self.prompt(PROMPTS.get(name, f"Enter {name}"))
        if not value:
            raise MissingCredential(f"No value entered for {name}.")
        return value


__all__ = ["ACCESS_TOKEN_VAR", "ADMIN_PASSWORD_VAR", "CredentialResolver"]
