"""Alliance lifecycle: creation commit, start, cancel, end, edits, join and leave.

Every operation runs its guard checks and its writes inside one short transaction.
Status changes are written as ``UPDATE ... WHERE status IN (expected)`` so two
concurrent ``start`` calls cannot both succeed. Network side effects (provisioning,
thread creation, teardown, roster refresh) are submitted to the background runner
once the transaction has committed.
"""
from __future__ import annotations
import logging
import random
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Generator, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from . import db
from .background import BackgroundRunner
from .crew import CUSTOM_ROLE_MAX_LENGTH, FREE_ROLE, assign_crew, ship_role_name
from .errors import GatewayError, StorageError, UserError
from .gateway import Gateway
from .models import (Alliance, AllianceStatus, BotSettings, HullType, Participant, ProvisionedResource,
                     ResourceKind, Ship, User)
from .provisioning import Provisioner, TeardownQueue, record_resource
from .renderer import RosterRenderer
from .sessions import ConfigurationSession, SessionStore, clamp_ships
from .timeparse import (combine, format_day, format_hhmm, is_known_timezone, parse_date, parse_mention_id,
                        parse_time, resolve_window, to_local)

ALLIANCE_NAMES = [
    "Alliance des Sept Mers",
    "Alliance des Damnés",
    "Alliance des Flibustiers",
    "Alliance des Crânes Dorés",
    "Alliance des Grogophiles",
    "Alliance des Vieux Loups de Mer",
    "Alliance des Sans-Pavillon",
    "Alliance du Vent du Nord",
    "Alliance des No-Life",
    "Alliance des Sans-Savon",
    "Alliance des TBM",
]

FINISHED_PREFIX = "✅ [Terminé] "
CANCELLED_PREFIX = "❌ [Annulé] "

RUNNING = (AllianceStatus.matching, AllianceStatus.in_game)


@contextmanager
def transaction(logger: logging.Logger, what: str) -> Generator[None, None, None]:
    """Commit on success; roll back on any error.

    ``SQLAlchemyError`` is logged here and re-raised as ``StorageError`` so callers
    only have to render a generic reply.
    """
    try:
        yield
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("%s: database error", what)
        raise StorageError(what) from exc
    except Exception:
        db.session.rollback()
        raise


@dataclass
class JoinResult:
    alliance_id: int
    ship: Ship
    replacement: bool
    switched: bool


@dataclass
class EndResult:
    alliance_id: int
    already_finished: bool


class AllianceController:
    def __init__(self, sessions: SessionStore, gateway: Gateway, provisioner: Provisioner,
                 teardown: TeardownQueue, renderer: RosterRenderer, runner: BackgroundRunner,
                 logger: logging.Logger | None = None, clock: Callable[[], datetime] | None = None):
        self.sessions = sessions
        self.gateway = gateway
        self.provisioner = provisioner
        self.teardown = teardown
        self.renderer = renderer
        self.runner = runner
        self.logger = logger or logging.getLogger("lifecycle")
        self.clock = clock or datetime.utcnow

    # -- lookups and guards -------------------------------------------------

    def settings_for(self, guild_id: int) -> BotSettings:
        settings = db.session.get(BotSettings, guild_id)
        if settings is None:
            raise UserError("❌ Le bot n'est pas encore configuré sur ce serveur. Un administrateur doit lancer `/alliance setup`.")
        return settings

    def find_for_thread(self, guild_id: int, thread_id: int, lock: bool = False) -> Alliance:
        q = Alliance.query.filter_by(guild_id=guild_id, thread_channel_id=thread_id)
        if lock:
            q = q.with_for_update()
        alliance = q.first()
        if alliance is None:
            raise UserError("❌ Aucune alliance n'est liée à ce fil. Utilise cette commande dans le fil de l'alliance.")
        return alliance

    @staticmethod
    def is_manager(alliance: Alliance, user_id: int) -> bool:
        deputy_id = parse_mention_id(alliance.right_hand)
        return user_id == alliance.organizer_id or (deputy_id != 0 and user_id == deputy_id)

    def require_manager(self, alliance: Alliance, user_id: int) -> None:
        if not self.is_manager(alliance, user_id):
            raise UserError("❌ Seul l'organisateur ou le bras droit de l'alliance peut faire ça.")

    @staticmethod
    def require_open(alliance: Alliance) -> None:
        if alliance.state == AllianceStatus.finished:
            raise UserError("❌ Cette alliance est terminée.")
        if alliance.state == AllianceStatus.cancelled:
            raise UserError("❌ Cette alliance a été annulée.")

    def _transition(self, alliance: Alliance, expected: Iterable[AllianceStatus], new: AllianceStatus) -> None:
        old = alliance.state
        updated = (
            Alliance.query
            .filter(Alliance.id == alliance.id, Alliance.status.in_([int(s) for s in expected]))
            .update({"status": int(new), "updated_at": self.clock()}, synchronize_session=False)
        )
        if updated != 1:
            raise UserError("❌ L'alliance a changé d'état entre-temps, réessaie.")
        self.logger.info("Alliance %s: %s -> %s", alliance.id, old.name, new.name)

    # -- creation -----------------------------------------------------------

    def open_session(self, guild_id: int, user_id: int, channel_id: int) -> ConfigurationSession:
        settings = self.settings_for(guild_id)
        if not settings.command_channel_id:
            raise UserError("❌ Aucun salon de commandes n'est configuré. Un administrateur doit lancer `/alliance setup`.")
        if channel_id != settings.command_channel_id:
            raise UserError(f"❌ Cette commande doit être utilisée dans <#{settings.command_channel_id}>.")
        return self.sessions.open(guild_id, user_id, clamp_ships(settings.default_max_ships))

    def require_session(self, guild_id: int, user_id: int) -> ConfigurationSession:
        session = self.sessions.get(guild_id, user_id)
        if session is None:
            raise UserError("❌ Aucune création d'alliance en cours. Relance `/alliance creer`.")
        return session

    def set_schedule(self, session: ConfigurationSession, guild_id: int, date_text: str, start_text: str,
                     sale_text: str) -> None:
        date_iso = parse_date(date_text, today=self.clock().date())
        if date_iso is None:
            raise UserError("❌ Date invalide. Format attendu : JJ/MM ou JJ/MM/AAAA.")
        start = parse_time(start_text)
        if start is None:
            raise UserError("❌ Heure de début invalide. Exemples : 21h, 21h30, 21:30.")
        sale = parse_time(sale_text)
        if sale is None:
            raise UserError("❌ Heure de vente invalide. Exemples : 23h, 23h30, 23:30.")
        session.date, session.start_time, session.sale_time = date_iso, start, sale

    def commit(self, guild_id: int, user_id: int) -> Alliance:
        """Validate the wizard session and persist the alliance with its ships."""
        session = self.require_session(guild_id, user_id)
        if not session.reuse_set:
            session.set_reuse(False)
        if not session.ready():
            raise UserError("❌ Configuration incomplète : " + ", ".join(session.missing()) + ".")

        with transaction(self.logger, "commit alliance"):
            settings = self.settings_for(guild_id)
            if not settings.alliance_forum_channel_id:
                raise UserError("❌ Aucun forum d'alliances n'est configuré. Un administrateur doit lancer `/alliance setup`.")
            window = resolve_window(session.date, session.start_time, session.sale_time, settings.timezone)
            if window is None:
                raise UserError("❌ L'heure de vente doit être après l'heure de début.")
            scheduled_at, sale_at = window
            if scheduled_at <= self.clock():
                raise UserError("❌ Le début de l'alliance doit être dans le futur.")

            alliance = Alliance(
                guild_id=guild_id,
                organizer_id=user_id,
                right_hand=session.deputy,
                name=random.choice(ALLIANCE_NAMES),
                scheduled_at=scheduled_at,
                sale_at=sale_at,
                status=int(AllianceStatus.planned),
                max_ships=session.max_ships,
                ships_reuse_planned=session.reuse,
            )
            db.session.add(alliance)
            db.session.flush()
            for slot, draft in enumerate(session.ships, start=1):
                db.session.add(Ship(
                    alliance_id=alliance.id,
                    slot=slot,
                    hull_type=int(draft.hull),
                    crew_role=draft.role or FREE_ROLE,
                ))

        self.sessions.discard(guild_id, user_id)
        self.logger.info("Alliance %s created by %s in guild %s", alliance.id, user_id, guild_id)
        self.runner.submit(self.announce, alliance.id)
        return alliance

    def announce(self, alliance_id: int) -> Optional[int]:
        """Open the forum thread, post the roster and ping the notification role."""
        alliance = db.session.get(Alliance, alliance_id)
        settings = db.session.get(BotSettings, alliance.guild_id) if alliance else None
        if alliance is None or settings is None or not settings.alliance_forum_channel_id:
            self.logger.error("announce: alliance %s has no forum to post in", alliance_id)
            return None
        tzname = settings.timezone
        title = (f"{format_day(alliance.scheduled_at, tzname)} "
                 f"{format_hhmm(alliance.scheduled_at, tzname)} - {format_hhmm(alliance.sale_at, tzname)}")
        content = f"**{alliance.name}** organisée par <@{alliance.organizer_id}>"
        try:
            thread_id = self.gateway.create_forum_thread(settings.alliance_forum_channel_id, title, content)
        except GatewayError:
            self.logger.exception("Alliance %s: failed to create the forum thread", alliance_id)
            return None

        with transaction(self.logger, "record alliance thread"):
            alliance.thread_channel_id = thread_id
        record_resource(alliance.id, ResourceKind.thread, thread_id, title, auto_delete=False)
        self.renderer.refresh_roster(alliance.id)

        if settings.ping_channel_id and settings.notify_role_id:
            try:
                self.gateway.send_message(
                    settings.ping_channel_id,
                    f"<@&{settings.notify_role_id}> Nouvelle alliance planifiée ! Rendez-vous dans <#{thread_id}>",
                    allowed_mentions={"roles": [str(settings.notify_role_id)]},
                )
            except GatewayError:
                self.logger.warning("Alliance %s: notification ping failed", alliance_id)
        return thread_id

    # -- transitions --------------------------------------------------------

    def start(self, guild_id: int, thread_id: int, user_id: int) -> Alliance:
        with transaction(self.logger, "start alliance"):
            alliance = self.find_for_thread(guild_id, thread_id, lock=True)
            self.require_manager(alliance, user_id)
            if alliance.state in RUNNING:
                raise UserError("❌ Cette alliance a déjà démarré.")
            self.require_open(alliance)
            if not alliance.ships:
                raise UserError("❌ Cette alliance n'a aucun bateau configuré.")
            self._transition(alliance, (AllianceStatus.planned,), AllianceStatus.matching)
        self.runner.submit(self._after_start, alliance.id)
        return alliance

    def _after_start(self, alliance_id: int) -> None:
        self.provisioner.provision(alliance_id)
        self.renderer.refresh_roster(alliance_id)

    def cancel(self, guild_id: int, thread_id: int, user_id: int) -> Alliance:
        with transaction(self.logger, "cancel alliance"):
            alliance = self.find_for_thread(guild_id, thread_id, lock=True)
            self.require_manager(alliance, user_id)
            if alliance.state in RUNNING:
                raise UserError("❌ Cette alliance a déjà démarré : utilise `/alliance terminer`.")
            self.require_open(alliance)
            self._transition(alliance, (AllianceStatus.planned,), AllianceStatus.cancelled)
        self.runner.submit(self._after_cancel, alliance.id)
        return alliance

    def _after_cancel(self, alliance_id: int) -> None:
        alliance = db.session.get(Alliance, alliance_id)
        self.renderer.refresh_roster(alliance_id)
        self.rename_thread(alliance, CANCELLED_PREFIX)

    def end(self, guild_id: int, thread_id: int, user_id: int) -> EndResult:
        """Finish the alliance and tear down its resources.

        Ending an alliance that is already finished or cancelled is not an error:
        the status is left alone and any leftover resources are cleaned up.
        """
        with transaction(self.logger, "end alliance"):
            alliance = self.find_for_thread(guild_id, thread_id, lock=True)
            self.require_manager(alliance, user_id)
            if alliance.state == AllianceStatus.planned:
                raise UserError("❌ Cette alliance n'a pas encore démarré : utilise `/alliance annuler`.")
            already_finished = alliance.state.is_terminal
            if not already_finished:
                self._transition(alliance, RUNNING, AllianceStatus.finished)
        self.runner.submit(self._after_end, alliance.id)
        return EndResult(alliance.id, already_finished)

    def _after_end(self, alliance_id: int) -> None:
        alliance = db.session.get(Alliance, alliance_id)
        if alliance.state == AllianceStatus.finished:
            self.rename_thread(alliance, FINISHED_PREFIX)
        self.teardown.teardown(alliance_id)
        self.renderer.refresh_roster(alliance_id)

    def rename_thread(self, alliance: Alliance, prefix: str) -> None:
        if not alliance or not alliance.thread_channel_id:
            return
        try:
            name = self.gateway.get_channel_name(alliance.thread_channel_id)
            if not name.startswith(prefix):
                self.gateway.rename_channel(alliance.thread_channel_id, prefix + name)
        except GatewayError:
            self.logger.warning("Alliance %s: failed to rename thread %s", alliance.id, alliance.thread_channel_id)

    # -- edits --------------------------------------------------------------

    def _editable(self, guild_id: int, thread_id: int, user_id: int) -> Alliance:
        alliance = self.find_for_thread(guild_id, thread_id, lock=True)
        self.require_manager(alliance, user_id)
        self.require_open(alliance)
        return alliance

    def edit_schedule(self, guild_id: int, thread_id: int, user_id: int, date_text: str = "",
                      start_text: str = "", sale_text: str = "") -> Alliance:
        """Change date, start or sale time. Components left blank keep their current value."""
        with transaction(self.logger, "edit schedule"):
            alliance = self._editable(guild_id, thread_id, user_id)
            tzname = BotSettings.timezone_for(guild_id)
            start_local = to_local(alliance.scheduled_at, tzname)
            sale_local = to_local(alliance.sale_at, tzname)
            day_offset = (sale_local.date() - start_local.date()).days

            new_date = start_local.date().isoformat()
            if date_text.strip():
                new_date = parse_date(date_text, today=start_local.date())
                if new_date is None:
                    raise UserError("❌ Date invalide. Format attendu : JJ/MM ou JJ/MM/AAAA.")
            new_start = f"{start_local.hour:02d}:{start_local.minute:02d}"
            if start_text.strip():
                new_start = parse_time(start_text)
                if new_start is None:
                    raise UserError("❌ Heure de début invalide.")
            new_sale = f"{sale_local.hour:02d}:{sale_local.minute:02d}"
            if sale_text.strip():
                new_sale = parse_time(sale_text)
                if new_sale is None:
                    raise UserError("❌ Heure de vente invalide.")

            scheduled_at = combine(new_date, new_start, tzname)
            sale_day = (datetime.fromisoformat(new_date) + timedelta(days=day_offset)).date().isoformat()
            sale_at = combine(sale_day, new_sale, tzname)
            if scheduled_at is None or sale_at is None or sale_at <= scheduled_at:
                raise UserError("❌ L'heure de vente doit être après l'heure de début.")
            alliance.scheduled_at = scheduled_at
            alliance.sale_at = sale_at
        self.runner.submit(self.renderer.refresh_roster, alliance.id)
        return alliance

    def edit_ship(self, guild_id: int, thread_id: int, user_id: int, slot: int,
                  hull: HullType | None = None, role: str | None = None) -> Ship:
        with transaction(self.logger, "edit ship"):
            alliance = self._editable(guild_id, thread_id, user_id)
            ship = Ship.query.filter_by(alliance_id=alliance.id, slot=slot).first()
            if ship is None:
                raise UserError("❌ Bateau introuvable.")
            if hull is not None:
                ship.hull_type = int(hull)
            if role is not None:
                role = role.strip()
                if len(role) > CUSTOM_ROLE_MAX_LENGTH:
                    raise UserError(f"❌ Le rôle ne peut pas dépasser {CUSTOM_ROLE_MAX_LENGTH} caractères.")
                ship.crew_role = role or FREE_ROLE
        self.runner.submit(self.renderer.refresh_roster, alliance.id)
        return ship

    def set_reuse(self, guild_id: int, thread_id: int, user_id: int, reuse: bool) -> Alliance:
        with transaction(self.logger, "edit reuse flag"):
            alliance = self._editable(guild_id, thread_id, user_id)
            alliance.ships_reuse_planned = reuse
        self.runner.submit(self.renderer.refresh_roster, alliance.id)
        return alliance

    # -- crew membership ----------------------------------------------------

    def _check_user(self, user_id: int, user_name: str) -> User:
        user = User.upsert(user_id, user_name)
        if user.is_banned:
            reason = f" ({user.ban_reason})" if user.ban_reason else ""
            raise UserError(f"❌ Tu es banni des alliances{reason}.")
        return user

    def join(self, guild_id: int, thread_id: int, user_id: int, user_name: str, slot: int) -> JoinResult:
        """Put the user on the ship at ``slot``, moving them off any other ship."""
        with transaction(self.logger, "join alliance"):
            settings = self.settings_for(guild_id)
            if not settings.allow_public_join:
                raise UserError("❌ Les inscriptions publiques sont désactivées sur ce serveur.")
            alliance = self.find_for_thread(guild_id, thread_id)
            self.require_open(alliance)
            user = self._check_user(user_id, user_name)
            ship = Ship.query.filter_by(alliance_id=alliance.id, slot=slot).first()
            if ship is None:
                raise UserError("❌ Bateau introuvable.")

            active = Participant.query.filter_by(alliance_id=alliance.id, user_id=user_id, left_at=None).all()
            if any(p.ship_id == ship.id for p in active):
                raise UserError("❌ Tu es déjà inscrit sur ce bateau.")
            now = self.clock()
            previous_ships = [p.ship for p in active]
            for p in active:
                p.left_at = now
            db.session.add(Participant(alliance_id=alliance.id, user_id=user_id, ship_id=ship.id, joined_at=now))
            user.last_alliance_at = now
            db.session.flush()
            crew = assign_crew(ship, Participant.query.filter_by(ship_id=ship.id, left_at=None).all())
            replacement = all(p.user_id != user_id for p in crew.primary)
            running = alliance.state in RUNNING

        if running:
            self.runner.submit(self._sync_join_roles, alliance.id, user_id, ship.id,
                               [s.id for s in previous_ships])
        self.runner.submit(self.renderer.refresh_roster, alliance.id)
        return JoinResult(alliance.id, ship, replacement, bool(previous_ships))

    def _sync_join_roles(self, alliance_id: int, user_id: int, ship_id: int, previous_ship_ids: list[int]) -> None:
        alliance = db.session.get(Alliance, alliance_id)
        ship = db.session.get(Ship, ship_id)
        new_role = ship_role_name(ship)
        stale = [s for s in (db.session.get(Ship, i) for i in previous_ship_ids)
                 if s is not None and ship_role_name(s) != new_role]
        if stale:
            self.provisioner.revoke_ship_access(alliance, user_id, stale, still_member=True)
        self.provisioner.grant_ship_access(alliance, user_id, ship)

    def leave(self, guild_id: int, thread_id: int, user_id: int, user_name: str = "") -> list[Ship]:
        """Close every active participation of the user in the alliance."""
        with transaction(self.logger, "leave alliance"):
            alliance = self.find_for_thread(guild_id, thread_id)
            self.require_open(alliance)
            self._check_user(user_id, user_name)
            active = Participant.query.filter_by(alliance_id=alliance.id, user_id=user_id, left_at=None).all()
            if not active:
                raise UserError("❌ Tu n'es inscrit sur aucun bateau de cette alliance.")
            now = self.clock()
            ships = [p.ship for p in active]
            for p in active:
                p.left_at = now
            running = alliance.state in RUNNING

        if running:
            self.runner.submit(self._sync_leave_roles, alliance.id, user_id, [s.id for s in ships])
        self.runner.submit(self.renderer.refresh_roster, alliance.id)
        return ships

    def _sync_leave_roles(self, alliance_id: int, user_id: int, ship_ids: list[int]) -> None:
        alliance = db.session.get(Alliance, alliance_id)
        ships = [s for s in (db.session.get(Ship, i) for i in ship_ids) if s is not None]
        still_member = (
            Participant.query.filter_by(alliance_id=alliance_id, user_id=user_id, left_at=None).count() > 0
            or self.is_manager(alliance, user_id)
        )
        self.provisioner.revoke_ship_access(alliance, user_id, ships, still_member)

    # -- community settings -------------------------------------------------

    def update_settings(self, guild_id: int, **values) -> BotSettings:
        with transaction(self.logger, "update settings"):
            settings = db.session.get(BotSettings, guild_id)
            if settings is None:
                settings = BotSettings(guild_id=guild_id)
                db.session.add(settings)
            if "timezone" in values and not is_known_timezone(values["timezone"]):
                raise UserError("❌ Fuseau horaire inconnu.")
            if "default_max_ships" in values:
                values["default_max_ships"] = clamp_ships(values["default_max_ships"])
            for key, value in values.items():
                if not hasattr(BotSettings, key):
                    raise UserError(f"❌ Paramètre inconnu : {key}")
                setattr(settings, key, value)
        return settings

    def leftover_alliances(self) -> list[int]:
        """Finished or cancelled alliances that still own live auto-delete resources."""
        rows = (
            db.session.query(ProvisionedResource.alliance_id)
            .join(Alliance, Alliance.id == ProvisionedResource.alliance_id)
            .filter(
                ProvisionedResource.deleted_at.is_(None),
                ProvisionedResource.abandoned_at.is_(None),
                ProvisionedResource.auto_delete.is_(True),
                Alliance.status.in_([int(AllianceStatus.finished), int(AllianceStatus.cancelled)]),
            )
            .distinct()
            .all()
        )
        return [r[0] for r in rows]
