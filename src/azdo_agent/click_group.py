"""Custom Click group with automatic help display on errors.

Usage mistakes (missing arguments, bad choices, unknown commands) print the
error followed by the help of the command that was being invoked.
"""

from typing import Any

import click


class AgentGroup(click.Group):
    """Click group that auto-displays contextual help on usage errors."""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except (
            click.exceptions.UsageError,
            click.exceptions.BadParameter,
            click.exceptions.MissingParameter,
        ) as e:
            click.echo(f"Error: {e.format_message()}", err=True)

            # Prefer the subcommand context when the error came from one
            error_ctx = e.ctx if e.ctx else ctx
            click.echo("")
            click.echo(error_ctx.get_help())
            error_ctx.exit(e.exit_code)

    def resolve_command(
        self, ctx: click.Context, args: list[str]
    ) -> tuple[str | None, click.Command | None, list[str]]:
        """Show help when the command is not found."""
        try:
            return super().resolve_command(ctx, args)
        except click.UsageError as e:
            # Parameter errors are reported by invoke()
            if isinstance(e, click.exceptions.MissingParameter | click.exceptions.BadParameter):
                raise
            click.echo(f"Error: {e.format_message()}", err=True)
            click.echo("")
            click.echo(ctx.get_help())
            ctx.exit(2)


# Subgroups created with @main.group() also use AgentGroup
AgentGroup.group_class = AgentGroup
