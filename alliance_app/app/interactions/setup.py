"""``/alliance setup``: per-community channels, roles and defaults (administrators only)."""
from __future__ import annotations

from .. import db
from ..errors import UserError
from ..models import BotSettings
from ..runtime import get_runtime
from .payloads import (BUTTON_SECONDARY, CHANNEL_FORUM, CHANNEL_TEXT, Interaction, button, channel_select, modal,
                       option, reply, role_select, row, string_select, text_input, update)
from .registry import CommandHandler

CHANNEL_FIELDS = {
    "command_channel_id": ("Salon des commandes", [CHANNEL_TEXT]),
    "ping_channel_id": ("Salon des annonces (ping)", [CHANNEL_TEXT]),
    "alliance_forum_channel_id": ("Forum des alliances", [CHANNEL_FORUM]),
    "log_channel_id": ("Salon de logs", [CHANNEL_TEXT]),
}
ROLE_FIELDS = {
    "organizer_role_id": "Rôle organisateur",
    "notify_role_id": "Rôle notifié",
}


def _mention(value, kind: str) -> str:
    if not value:
        return "_non défini_"
    return f"<#{value}>" if kind == "channel" else f"<@&{value}>"


def settings_panel(settings: BotSettings | None) -> tuple[str, list]:
    lines = ["⚙️ **Configuration du bot d'alliances**", ""]
    for field, (label, _) in CHANNEL_FIELDS.items():
        lines.append(f"• {label} : {_mention(getattr(settings, field, None), 'channel')}")
    for field, label in ROLE_FIELDS.items():
        lines.append(f"• {label} : {_mention(getattr(settings, field, None), 'role')}")
    if settings is not None:
        lines.append(f"• Bateaux par défaut : {settings.default_max_ships}")
        lines.append(f"• Inscriptions publiques : {'oui' if settings.allow_public_join else 'non'}")
        lines.append(f"• Fuseau horaire : {settings.timezone}")
    fields = [option(label, field) for field, (label, _) in CHANNEL_FIELDS.items()]
    fields += [option(label, field) for field, label in ROLE_FIELDS.items()]
    components = [
        row(string_select("setup:field", fields, "Paramètre à modifier")),
        row(button("setup:advanced", "Options avancées", BUTTON_SECONDARY)),
    ]
    return "\n".join(lines), components


def _require_admin(ix: Interaction) -> None:
    if not ix.is_admin:
        raise UserError("❌ Seuls les administrateurs du serveur peuvent configurer le bot.")


class SetupHandler(CommandHandler):
    root = "setup"
    description = "Configurer le bot pour ce serveur (administrateurs)"

    def command(self, ix):
        _require_admin(ix)
        content, components = settings_panel(db.session.get(BotSettings, ix.guild_id))
        return reply(content, components)

    def component(self, ix):
        _require_admin(ix)
        controller = get_runtime().controller
        if ix.action == "field":
            field = ix.first_value()
            if field in CHANNEL_FIELDS:
                label, types = CHANNEL_FIELDS[field]
                picker = channel_select(f"setup:value:{field}", types, label)
            elif field in ROLE_FIELDS:
                picker = role_select(f"setup:value:{field}", ROLE_FIELDS[field])
            else:
                raise UserError("❌ Paramètre inconnu.")
            return update(f"Choisis la nouvelle valeur pour **{field}** :",
                          [row(picker), row(button("setup:back", "⬅️ Retour", BUTTON_SECONDARY))])
        if ix.action == "value":
            field = ix.args[0] if ix.args else ""
            if field not in CHANNEL_FIELDS and field not in ROLE_FIELDS:
                raise UserError("❌ Paramètre inconnu.")
            settings = controller.update_settings(ix.guild_id, **{field: ix.int_value()})
            content, components = settings_panel(settings)
            return update("✅ Paramètre enregistré.\n\n" + content, components)
        if ix.action == "back":
            content, components = settings_panel(db.session.get(BotSettings, ix.guild_id))
            return update(content, components)
        if ix.action == "advanced":
            settings = db.session.get(BotSettings, ix.guild_id)
            return modal("setup:advanced", "Options avancées", [
                text_input("max_ships", "Nombre de bateaux par défaut (1-6)",
                           str(settings.default_max_ships) if settings else "6", max_length=1, required=True),
                text_input("timezone", "Fuseau horaire (ex. Europe/Paris)",
                           settings.timezone if settings else "Europe/Paris", max_length=64, required=True),
                text_input("public_join", "Inscriptions publiques (oui/non)",
                           "oui" if settings is None or settings.allow_public_join else "non",
                           max_length=3, required=True),
            ])
        return super().component(ix)

    def modal(self, ix):
        _require_admin(ix)
        if ix.action != "advanced":
            return super().modal(ix)
        values = ix.modal_values()
        try:
            max_ships = int(values.get("max_ships", "").strip())
        except ValueError:
            raise UserError("❌ Le nombre de bateaux doit être un nombre entre 1 et 6.")
        public = values.get("public_join", "").strip().lower()
        if public not in ("oui", "non"):
            raise UserError("❌ Réponds `oui` ou `non` pour les inscriptions publiques.")
        settings = get_runtime().controller.update_settings(
            ix.guild_id,
            default_max_ships=max_ships,
            timezone=values.get("timezone", "").strip(),
            allow_public_join=(public == "oui"),
        )
        content, components = settings_panel(settings)
        return update("✅ Options enregistrées.\n\n" + content, components)
