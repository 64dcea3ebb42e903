from __future__ import annotations

from .create import CreateHandler
from .manage import CancelHandler, EditHandler, EndHandler, JoinHandler, LeaveHandler, StartHandler
from .registry import CommandRegistry
from .setup import SetupHandler

HANDLERS = [
    SetupHandler,
    CreateHandler,
    CancelHandler,
    JoinHandler,
    LeaveHandler,
    StartHandler,
    EndHandler,
    EditHandler,
]


def register_handlers(registry: CommandRegistry) -> CommandRegistry:
    for cls in HANDLERS:
        registry.register(cls())
    return registry
