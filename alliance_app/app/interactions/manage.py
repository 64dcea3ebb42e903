"""Commands used inside an alliance thread: start, cancel, end, join, leave and edit."""
from __future__ import annotations

from ..crew import CUSTOM_ROLE_MAX_LENGTH, HULL_LABELS, ROLE_CHOICES, fleet_roster, hull_label, role_label
from ..errors import UserError
from ..models import Alliance, BotSettings, HullType
from ..runtime import get_runtime
from ..timeparse import format_day, format_hhmm
from .payloads import (BUTTON_DANGER, BUTTON_SECONDARY, Interaction, button, modal, option, reply, row,
                       string_select, text_input, update)
from .registry import CommandHandler

CUSTOM_ROLE = "__custom__"


def _managed_alliance(ix: Interaction) -> Alliance:
    controller = get_runtime().controller
    alliance = controller.find_for_thread(ix.guild_id, ix.channel_id)
    controller.require_manager(alliance, ix.user_id)
    return alliance


def _confirm(root: str, question: str, confirm_label: str) -> dict:
    return reply(question, [row(
        button(f"{root}:confirm", confirm_label, BUTTON_DANGER),
        button(f"{root}:keep", "Non, garder", BUTTON_SECONDARY),
    )])


class StartHandler(CommandHandler):
    root = "demarrer"
    description = "Démarrer l'alliance et créer ses salons"

    def command(self, ix):
        alliance = get_runtime().controller.start(ix.guild_id, ix.channel_id, ix.user_id)
        return reply(f"🚀 **{alliance.name}** démarre ! Création des rôles et des salons vocaux en cours…",
                     ephemeral=False)


class CancelHandler(CommandHandler):
    root = "annuler"
    description = "Annuler une alliance pas encore démarrée"

    def command(self, ix):
        alliance = _managed_alliance(ix)
        get_runtime().controller.require_open(alliance)
        return _confirm(self.root, f"Annuler **{alliance.name}** ?", "Oui, annuler")

    def component(self, ix):
        if ix.action == "keep":
            return update("Annulation abandonnée.")
        if ix.action == "confirm":
            alliance = get_runtime().controller.cancel(ix.guild_id, ix.channel_id, ix.user_id)
            return update(f"❌ **{alliance.name}** est annulée.")
        return super().component(ix)


class EndHandler(CommandHandler):
    root = "terminer"
    description = "Terminer l'alliance et supprimer ses salons"

    def command(self, ix):
        alliance = _managed_alliance(ix)
        return _confirm(self.root, f"Terminer **{alliance.name}** et supprimer ses salons et rôles ?",
                        "Oui, terminer")

    def component(self, ix):
        if ix.action == "keep":
            return update("Fin de l'alliance abandonnée.")
        if ix.action == "confirm":
            result = get_runtime().controller.end(ix.guild_id, ix.channel_id, ix.user_id)
            if result.already_finished:
                return update("ℹ️ Cette alliance était déjà terminée : nettoyage des salons restants lancé.")
            return update("✅ Alliance terminée. Les salons et rôles vont être supprimés.")
        return super().component(ix)


def _ship_options(alliance: Alliance) -> list[dict]:
    opts = []
    for crew in fleet_roster(alliance.ships, alliance.active_participants()):
        ship = crew.ship
        label = f"{ship.slot}. {hull_label(ship.hull_type)} - {role_label(ship.crew_role)}"
        desc = f"{len(crew.primary)}/{crew.capacity} places"
        if crew.replacements:
            desc += f", {len(crew.replacements)} remplaçant(s)"
        opts.append(option(label, str(ship.slot), desc))
    return opts


class JoinHandler(CommandHandler):
    root = "rejoindre"
    description = "Rejoindre un bateau de l'alliance"

    def command(self, ix):
        controller = get_runtime().controller
        alliance = controller.find_for_thread(ix.guild_id, ix.channel_id)
        controller.require_open(alliance)
        if not alliance.ships:
            raise UserError("❌ Cette alliance n'a aucun bateau configuré.")
        return reply(f"Sur quel bateau veux-tu embarquer pour **{alliance.name}** ?",
                     [row(string_select("rejoindre:ship", _ship_options(alliance), "Choisir un bateau"))])

    def component(self, ix):
        if ix.action != "ship":
            return super().component(ix)
        result = get_runtime().controller.join(ix.guild_id, ix.channel_id, ix.user_id, ix.user_name,
                                               ix.int_value())
        ship = result.ship
        text = f"✅ Tu es inscrit sur **{hull_label(ship.hull_type)} - {role_label(ship.crew_role)}**"
        if result.replacement:
            text += " en tant que **remplaçant** (le bateau est complet)"
        return update(text + ".")


class LeaveHandler(CommandHandler):
    root = "quitter"
    description = "Quitter l'alliance"

    def command(self, ix):
        controller = get_runtime().controller
        alliance = controller.find_for_thread(ix.guild_id, ix.channel_id)
        controller.require_open(alliance)
        return _confirm(self.root, f"Quitter **{alliance.name}** ?", "Oui, quitter")

    def component(self, ix):
        if ix.action == "keep":
            return update("Tu restes dans l'alliance.")
        if ix.action == "confirm":
            get_runtime().controller.leave(ix.guild_id, ix.channel_id, ix.user_id, ix.user_name)
            return update("👋 Tu as quitté l'alliance.")
        return super().component(ix)


def edit_panel(alliance: Alliance) -> tuple[str, list]:
    tzname = BotSettings.timezone_for(alliance.guild_id)
    content = (
        f"🛠️ **Modifier {alliance.name}**\n"
        f"• Date : {format_day(alliance.scheduled_at, tzname)} de {format_hhmm(alliance.scheduled_at, tzname)} "
        f"à {format_hhmm(alliance.sale_at, tzname)}\n"
        f"• Reprise des bateaux : {'✅ Prévu' if alliance.ships_reuse_planned else '❌ Non prévu'}\n"
    )
    components = [
        row(
            button("modifier:schedule", "🗓️ Date & horaires"),
            button("modifier:fleet", "🚢 Flotte"),
        ),
        row(string_select("modifier:reuse", [
            option("Reprise prévue", "yes", default=alliance.ships_reuse_planned),
            option("Pas de reprise", "no", default=not alliance.ships_reuse_planned),
        ], "Reprise des bateaux")),
    ]
    return content, components


def fleet_panel(alliance: Alliance, slot: int | None = None) -> tuple[str, list]:
    ships = sorted(alliance.ships, key=lambda s: s.slot)
    lines = ["🚢 **Modifier la flotte**", ""]
    for s in ships:
        marker = "➡️" if s.slot == slot else "•"
        lines.append(f"{marker} Bateau {s.slot} : {hull_label(s.hull_type)} - {role_label(s.crew_role)}")
    components = [row(string_select("modifier:ship", [
        option(f"Bateau {s.slot}", str(s.slot), default=(s.slot == slot)) for s in ships
    ], "Choisir un bateau"))]
    current = next((s for s in ships if s.slot == slot), None)
    if current is not None:
        components.append(row(string_select(f"modifier:hull:{slot}", [
            option(HULL_LABELS[h], str(int(h)), default=(current.hull_type == int(h))) for h in HullType
        ], "Type de coque")))
        roles = [option(r, r, default=(current.crew_role == r)) for r in ROLE_CHOICES]
        roles.append(option("Autre (personnalisé)…", CUSTOM_ROLE))
        components.append(row(string_select(f"modifier:role:{slot}", roles, "Rôle de l'équipage")))
    components.append(row(button("modifier:back", "⬅️ Retour", BUTTON_SECONDARY)))
    return "\n".join(lines), components


class EditHandler(CommandHandler):
    root = "modifier"
    description = "Modifier les horaires, la flotte ou la reprise"

    def command(self, ix):
        alliance = _managed_alliance(ix)
        get_runtime().controller.require_open(alliance)
        content, components = edit_panel(alliance)
        return reply(content, components)

    def _slot(self, ix) -> int:
        try:
            return int(ix.args[0])
        except (IndexError, ValueError):
            raise UserError("❌ Bateau invalide.")

    def component(self, ix):
        controller = get_runtime().controller
        if ix.action == "schedule":
            _managed_alliance(ix)
            return modal("modifier:schedule", "Modifier les horaires", [
                text_input("date", "Nouvelle date (JJ/MM), vide = inchangée", placeholder="18/11", max_length=10),
                text_input("start", "Nouvelle heure de début, vide = inchangée", placeholder="21h30", max_length=5),
                text_input("sale", "Nouvelle heure de vente, vide = inchangée", placeholder="23h", max_length=5),
            ])
        if ix.action == "back":
            content, components = edit_panel(_managed_alliance(ix))
            return update(content, components)
        if ix.action == "fleet":
            content, components = fleet_panel(_managed_alliance(ix))
            return update(content, components)
        if ix.action == "ship":
            content, components = fleet_panel(_managed_alliance(ix), ix.int_value())
            return update(content, components)
        if ix.action == "hull":
            slot = self._slot(ix)
            controller.edit_ship(ix.guild_id, ix.channel_id, ix.user_id, slot, hull=ix.hull_value())
            content, components = fleet_panel(controller.find_for_thread(ix.guild_id, ix.channel_id), slot)
            return update(content, components)
        if ix.action == "role":
            slot = self._slot(ix)
            if ix.first_value() == CUSTOM_ROLE:
                return modal(f"modifier:custom_role:{slot}", f"Rôle du bateau {slot}", [
                    text_input("role", "Rôle personnalisé", required=True, max_length=CUSTOM_ROLE_MAX_LENGTH),
                ])
            controller.edit_ship(ix.guild_id, ix.channel_id, ix.user_id, slot, role=ix.first_value())
            content, components = fleet_panel(controller.find_for_thread(ix.guild_id, ix.channel_id), slot)
            return update(content, components)
        if ix.action == "reuse":
            alliance = controller.set_reuse(ix.guild_id, ix.channel_id, ix.user_id, ix.first_value() == "yes")
            content, components = edit_panel(alliance)
            return update(content, components)
        return super().component(ix)

    def modal(self, ix):
        controller = get_runtime().controller
        values = ix.modal_values()
        if ix.action == "schedule":
            alliance = controller.edit_schedule(ix.guild_id, ix.channel_id, ix.user_id, values.get("date", ""),
                                                values.get("start", ""), values.get("sale", ""))
            content, components = edit_panel(alliance)
            return update("✅ Horaires mis à jour.\n\n" + content, components)
        if ix.action == "custom_role":
            slot = self._slot(ix)
            role = values.get("role", "").strip()
            if not role:
                raise UserError("❌ Le rôle ne peut pas être vide.")
            controller.edit_ship(ix.guild_id, ix.channel_id, ix.user_id, slot, role=role)
            content, components = fleet_panel(controller.find_for_thread(ix.guild_id, ix.channel_id), slot)
            return update(content, components)
        return super().modal(ix)
