"""Public roster message posted in the alliance thread."""
from __future__ import annotations
import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from . import db
from .crew import fleet_roster, hull_label, role_label
from .errors import GatewayError
from .gateway import Gateway
from .models import Alliance, BotSettings, ProvisionedResource, ResourceKind
from .timeparse import format_day, format_hhmm

ALLIANCE_GOLD_COLOR = 0xFFCF40


def build_roster_embed(alliance: Alliance, tzname: str | None = None) -> dict:
    start, sale = alliance.scheduled_at, alliance.sale_at
    start_str = format_hhmm(start, tzname)
    sale_str = format_hhmm(sale, tzname)
    replace_str = format_hhmm(start + timedelta(minutes=30), tzname)
    rdv1 = format_hhmm(sale - timedelta(minutes=30), tzname)
    rdv2 = format_hhmm(sale - timedelta(minutes=15), tzname)

    description = (
        "\n"
        f"**Alliance** : **{alliance.name}**\n"
        f"**Jour/heure** : *{format_day(start, tzname)}* de {start_str} à {sale_str}\n"
        f"**Organisateur** : <@{alliance.organizer_id}>\n"
        f"**Bras droit** : {alliance.right_hand or '_non défini_'}\n"
        f"**Reprise des bateaux** : {'✅ Prévu' if alliance.ships_reuse_planned else '❌ Non prévu'}\n"
    )
    fields = [{
        "name": "📜 Déroulement",
        "value": (
            f"\n- Début des try à **{start_str}**, remplacement des retardataires à **{replace_str}**\n"
            f"- RDV vers **{rdv1}-{rdv2}** pour vendre à **{sale_str}**"
        ),
        "inline": False,
    }]

    ships = list(alliance.ships)
    if not ships:
        fields.append({"name": "🚢 FLOTTE", "value": "\n_Aucun bateau configuré pour cette alliance._", "inline": False})
    else:
        fields.append({"name": "🚢 FLOTTE", "value": "\u200b", "inline": False})
        for crew in fleet_roster(ships, alliance.active_participants()):
            lines = [f"• <@{p.user_id}>" for p in crew.primary]
            lines += ["• _dispo_"] * crew.free_slots
            if crew.replacements:
                lines.append("*Remplaçants :*")
                lines += [f"• <@{p.user_id}>" for p in crew.replacements]
            else:
                lines.append("*Remplaçants :* _aucun_")
            title = (f"{hull_label(crew.ship.hull_type)} - {role_label(crew.ship.crew_role)} "
                     f"[{len(crew.primary)}/{crew.capacity}]")
            fields.append({"name": title, "value": "\n".join(lines) + "\n", "inline": False})

    return {
        "title": "🏴‍☠️ Alliance programmée",
        "color": ALLIANCE_GOLD_COLOR,
        "description": description,
        "fields": fields,
    }


class RosterRenderer:
    def __init__(self, gateway: Gateway, logger: logging.Logger | None = None):
        self.gateway = gateway
        self.logger = logger or logging.getLogger("renderer")

    def refresh_roster(self, alliance_id: int) -> Optional[int]:
        """Create the roster message in the alliance thread, or edit it in place.

        Returns the message id, or None when the alliance has no thread yet or the
        platform call failed (the failure is logged).
        """
        alliance = db.session.get(Alliance, alliance_id)
        if alliance is None or not alliance.thread_channel_id:
            return None
        embed = build_roster_embed(alliance, BotSettings.timezone_for(alliance.guild_id))
        existing = (
            ProvisionedResource.query
            .filter_by(alliance_id=alliance.id, kind=int(ResourceKind.message), deleted_at=None)
            .order_by(ProvisionedResource.id)
            .first()
        )
        try:
            if existing is not None:
                self.gateway.edit_message(alliance.thread_channel_id, existing.external_id, embeds=[embed])
                return existing.external_id
            message_id = self.gateway.send_message(alliance.thread_channel_id, embeds=[embed])
        except GatewayError:
            self.logger.exception("Failed to publish roster for alliance %s", alliance_id)
            return None
        try:
            db.session.add(ProvisionedResource(
                alliance_id=alliance.id,
                kind=int(ResourceKind.message),
                external_id=message_id,
                name="roster",
                auto_delete=False,
            ))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            self.logger.exception("Failed to record roster message for alliance %s", alliance_id)
        return message_id
