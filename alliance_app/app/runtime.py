from __future__ import annotations
from dataclasses import dataclass

from flask import Flask, current_app

from .background import BackgroundRunner
from .gateway import DiscordGateway, Gateway
from .interactions.registry import CommandRegistry
from .lifecycle import AllianceController
from .provisioning import Provisioner, TeardownQueue
from .renderer import RosterRenderer
from .sessions import SessionStore


@dataclass
class AllianceRuntime:
    gateway: Gateway
    sessions: SessionStore
    runner: BackgroundRunner
    provisioner: Provisioner
    teardown: TeardownQueue
    renderer: RosterRenderer
    controller: AllianceController
    registry: CommandRegistry


def build_runtime(app: Flask, gateway: Gateway | None = None) -> AllianceRuntime:
    logger = app.logger
    if gateway is None:
        gateway = DiscordGateway(
            app.config.get("DISCORD_BOT_TOKEN", ""),
            api_base=app.config.get("DISCORD_API_BASE", "https://discord.com/api/v10"),
            timeout=app.config.get("DISCORD_HTTP_TIMEOUT", 10),
            logger=logger,
        )
    sessions = SessionStore()
    runner = BackgroundRunner(app, enabled=app.config.get("BACKGROUND_ENABLED", True))
    provisioner = Provisioner(gateway, logger)
    teardown = TeardownQueue(
        gateway,
        runner,
        logger,
        interval=app.config.get("TEARDOWN_RETRY_SECONDS", 5),
        max_retries=app.config.get("TEARDOWN_MAX_RETRIES", 3),
    )
    renderer = RosterRenderer(gateway, logger)
    controller = AllianceController(sessions, gateway, provisioner, teardown, renderer, runner, logger)

    from .interactions.handlers import register_handlers

    registry = CommandRegistry(logger)
    register_handlers(registry)
    return AllianceRuntime(gateway, sessions, runner, provisioner, teardown, renderer, controller, registry)


def get_runtime() -> AllianceRuntime:
    return current_app.extensions["alliance"]
