"""One handler per root token.

A root token is the subcommand name of ``/alliance`` (``creer``, ``terminer``...)
and also the prefix of every ``custom_id`` the handler puts on its buttons, selects
and modals, so a feature's command and its follow-up components land in the same
handler.
"""
from __future__ import annotations
import logging
from abc import ABC
from typing import Optional

from ..errors import StorageError, UserError
from .payloads import APPLICATION_COMMAND, MESSAGE_COMPONENT, MODAL_SUBMIT, Interaction, reply

INTERNAL_ERROR = "❌ Erreur interne, réessaie plus tard."


class CommandHandler(ABC):
    root: str = ""
    description: str = ""

    def command(self, ix: Interaction) -> dict:
        raise UserError("❌ Commande non prise en charge.")

    def component(self, ix: Interaction) -> dict:
        raise UserError("❌ Action non prise en charge.")

    def modal(self, ix: Interaction) -> dict:
        raise UserError("❌ Formulaire non pris en charge.")


class CommandRegistry:
    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger("interactions")
        self._handlers: dict[str, CommandHandler] = {}

    def register(self, handler: CommandHandler) -> CommandHandler:
        if not handler.root:
            raise ValueError("handler has no root token")
        if handler.root in self._handlers:
            raise ValueError(f"duplicate handler for {handler.root!r}")
        self._handlers[handler.root] = handler
        return handler

    def resolve(self, root: str) -> Optional[CommandHandler]:
        return self._handlers.get(root)

    @property
    def roots(self) -> list[str]:
        return list(self._handlers)

    def handlers(self) -> list[CommandHandler]:
        return list(self._handlers.values())

    def dispatch(self, ix: Interaction) -> dict:
        handler = self.resolve(ix.root)
        if handler is None:
            self.logger.warning("No handler for interaction root %r (type=%s)", ix.root, ix.type)
            return reply("❌ Action inconnue.")
        try:
            if ix.type == APPLICATION_COMMAND:
                return handler.command(ix)
            if ix.type == MESSAGE_COMPONENT:
                return handler.component(ix)
            if ix.type == MODAL_SUBMIT:
                return handler.modal(ix)
            return reply("❌ Type d'interaction non pris en charge.")
        except UserError as exc:
            return reply(exc.message)
        except StorageError:
            return reply(INTERNAL_ERROR)
        except Exception:
            self.logger.exception("Unhandled error in %s handler", ix.root)
            return reply(INTERNAL_ERROR)

    def command_definitions(self) -> list[dict]:
        """Slash-command payload for the root ``/alliance`` command."""
        return [{
            "name": "alliance",
            "description": "Gestion des alliances",
            "type": 1,
            "options": [
                {"type": 1, "name": h.root, "description": h.description or h.root}
                for h in self._handlers.values()
            ],
        }]
