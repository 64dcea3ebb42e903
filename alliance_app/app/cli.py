from __future__ import annotations

import click
from flask import current_app


@click.group("alliance")
def alliance_cli():
    """Alliance bot maintenance commands."""
    pass


@alliance_cli.command("scheduler")
def run_scheduler():
    """Run the dedicated scheduler process. Use in production as separate container or systemd service."""
    # Import lazily to avoid importing the job store at Flask startup when not needed
    from .scheduler import run

    current_app.logger.info("Starting scheduler via CLI")
    run()


@alliance_cli.command("sweep")
def sweep():
    """Tear down live resources left on finished or cancelled alliances."""
    from .jobs import sweep_leftover_resources

    count = sweep_leftover_resources()
    click.echo(f"Swept {count} alliance(s)")


@alliance_cli.command("register-commands")
@click.option("--guild", "guild_id", type=int, default=None, help="Register for one guild only (instant update).")
def register_commands(guild_id):
    """Publish the /alliance slash command definition to Discord."""
    from .gateway import DiscordGateway
    from .runtime import get_runtime

    runtime = get_runtime()
    application_id = current_app.config.get("DISCORD_APPLICATION_ID")
    if not application_id:
        raise click.ClickException("DISCORD_APPLICATION_ID is not configured")
    if not isinstance(runtime.gateway, DiscordGateway):
        raise click.ClickException("command registration needs the Discord gateway")
    commands = runtime.registry.command_definitions()
    result = runtime.gateway.register_commands(application_id, commands, guild_id)
    click.echo(f"Registered {len(result)} command(s)" + (f" for guild {guild_id}" if guild_id else ""))
