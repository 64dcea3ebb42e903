"""``/alliance creer``: the creation wizard."""
from __future__ import annotations

from ..crew import CUSTOM_ROLE_MAX_LENGTH, HULL_LABELS, ROLE_CHOICES, hull_capacity
from ..errors import UserError
from ..models import HullType
from ..runtime import get_runtime
from ..sessions import ConfigurationSession
from .payloads import (BUTTON_DANGER, BUTTON_SECONDARY, BUTTON_SUCCESS, Interaction, button, modal, option, reply,
                       row, string_select, text_input, update, user_select)
from .registry import CommandHandler

CUSTOM_ROLE = "__custom__"


def _check(flag: bool) -> str:
    return "✅" if flag else "▫️"


def wizard_content(session: ConfigurationSession) -> str:
    lines = ["🏴‍☠️ **Création d'une alliance**", ""]
    if session.basic_ready():
        lines.append(f"{_check(True)} Date : **{session.date}**, début **{session.start_time}**, "
                     f"vente **{session.sale_time}**")
    else:
        lines.append(f"{_check(False)} Date et horaires : _à renseigner_")
    done = sum(1 for s in session.ships if s.complete)
    lines.append(f"{_check(session.fleet_ready())} Flotte : {done}/{session.max_ships} bateau(x) configuré(s)")
    lines.append(f"{_check(bool(session.deputy))} Bras droit : {session.deputy or '_aucun_'}")
    if session.reuse_set:
        lines.append(f"{_check(True)} Reprise des bateaux : {'prévue' if session.reuse else 'non prévue'}")
    else:
        lines.append(f"{_check(False)} Reprise des bateaux : _non précisée (non par défaut)_")
    lines += ["", "Clique sur **Valider** quand tout est prêt."]
    return "\n".join(lines)


def wizard_components(session: ConfigurationSession) -> list:
    return [
        row(
            button("creer:schedule", "🗓️ Date & horaires"),
            button("creer:fleet", "🚢 Configurer la flotte"),
        ),
        row(user_select("creer:deputy", "Bras droit (optionnel)")),
        row(string_select("creer:reuse", [
            option("Reprise prévue", "yes", default=session.reuse_set and session.reuse),
            option("Pas de reprise", "no", default=session.reuse_set and not session.reuse),
        ], "Reprise des bateaux")),
        row(
            button("creer:finish", "✅ Valider", BUTTON_SUCCESS),
            button("creer:abort", "Abandonner", BUTTON_DANGER),
        ),
    ]


def fleet_content(session: ConfigurationSession) -> str:
    lines = ["🚢 **Configuration de la flotte**", ""]
    for i, draft in enumerate(session.ships):
        marker = "➡️" if i == session.current_ship else "•"
        hull = HULL_LABELS[draft.hull] if draft.hull is not None else "_coque ?_"
        role = draft.role if draft.role is not None else "_rôle ?_"
        lines.append(f"{marker} Bateau {i + 1} : {hull} - {role}")
    return "\n".join(lines)


def fleet_components(session: ConfigurationSession) -> list:
    current = session.current_ship
    draft = session.ships[current]
    ships = [option(f"Bateau {i + 1}", str(i), default=(i == current)) for i in range(len(session.ships))]
    hulls = [
        option(f"{HULL_LABELS[h]} ({hull_capacity(h)} places)", str(int(h)), default=(draft.hull == h))
        for h in HullType
    ]
    roles = [option(r, r, default=(draft.role == r)) for r in ROLE_CHOICES]
    roles.append(option("Autre (personnalisé)…", CUSTOM_ROLE))
    return [
        row(string_select("creer:ship", ships, "Choisir un bateau")),
        row(string_select(f"creer:hull:{current}", hulls, "Type de coque")),
        row(string_select(f"creer:role:{current}", roles, "Rôle de l'équipage")),
        row(button("creer:back", "⬅️ Retour", BUTTON_SECONDARY)),
    ]


def _slot_arg(ix: Interaction, session: ConfigurationSession) -> int:
    try:
        index = int(ix.args[0])
    except (IndexError, ValueError):
        raise UserError("❌ Bateau invalide.")
    if not (0 <= index < session.max_ships):
        raise UserError("❌ Bateau invalide.")
    return index


class CreateHandler(CommandHandler):
    root = "creer"
    description = "Planifier une nouvelle alliance"

    def command(self, ix):
        session = get_runtime().controller.open_session(ix.guild_id, ix.user_id, ix.channel_id)
        return reply(wizard_content(session), wizard_components(session))

    def component(self, ix):
        controller = get_runtime().controller
        if ix.action == "abort":
            controller.sessions.discard(ix.guild_id, ix.user_id)
            return update("Création abandonnée.")
        session = controller.require_session(ix.guild_id, ix.user_id)

        if ix.action == "schedule":
            return modal("creer:schedule", "Date et horaires", [
                text_input("date", "Date (JJ/MM ou JJ/MM/AAAA)", session.date and _ddmm(session.date),
                           "18/11", required=True, max_length=10),
                text_input("start", "Heure de début", session.start_time, "21h30", required=True, max_length=5),
                text_input("sale", "Heure de vente", session.sale_time, "23h", required=True, max_length=5),
            ])
        if ix.action == "fleet":
            session.start_fleet()
            return update(fleet_content(session), fleet_components(session))
        if ix.action == "back":
            return update(wizard_content(session), wizard_components(session))
        if ix.action == "ship":
            index = ix.int_value()
            if not (0 <= index < session.max_ships):
                raise UserError("❌ Bateau invalide.")
            session.select_ship(index)
            return update(fleet_content(session), fleet_components(session))
        if ix.action == "hull":
            session.set_hull(_slot_arg(ix, session), ix.hull_value())
            return update(fleet_content(session), fleet_components(session))
        if ix.action == "role":
            index = _slot_arg(ix, session)
            if ix.first_value() == CUSTOM_ROLE:
                return modal(f"creer:custom_role:{index}", f"Rôle du bateau {index + 1}", [
                    text_input("role", "Rôle personnalisé", required=True, max_length=CUSTOM_ROLE_MAX_LENGTH),
                ])
            session.set_role(index, ix.first_value())
            return update(fleet_content(session), fleet_components(session))
        if ix.action == "deputy":
            session.deputy = f"<@{ix.first_value()}>"
            return update(wizard_content(session), wizard_components(session))
        if ix.action == "reuse":
            session.set_reuse(ix.first_value() == "yes")
            return update(wizard_content(session), wizard_components(session))
        if ix.action == "finish":
            alliance = controller.commit(ix.guild_id, ix.user_id)
            return update(f"✅ Alliance **{alliance.name}** créée ! Le fil d'annonce va être publié dans le forum.")
        return super().component(ix)

    def modal(self, ix):
        controller = get_runtime().controller
        session = controller.require_session(ix.guild_id, ix.user_id)
        values = ix.modal_values()
        if ix.action == "schedule":
            controller.set_schedule(session, ix.guild_id, values.get("date", ""), values.get("start", ""),
                                    values.get("sale", ""))
            return update(wizard_content(session), wizard_components(session))
        if ix.action == "custom_role":
            role = values.get("role", "").strip()
            if not role:
                raise UserError("❌ Le rôle ne peut pas être vide.")
            if len(role) > CUSTOM_ROLE_MAX_LENGTH:
                raise UserError(f"❌ Le rôle ne peut pas dépasser {CUSTOM_ROLE_MAX_LENGTH} caractères.")
            session.set_role(_slot_arg(ix, session), role)
            return update(fleet_content(session), fleet_components(session))
        return super().modal(ix)


def _ddmm(date_iso: str) -> str:
    year, month, day = date_iso.split("-")
    return f"{day}/{month}/{year}"
