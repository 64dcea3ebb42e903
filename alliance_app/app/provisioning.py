"""Creation and teardown of the chat objects that exist for the duration of an alliance.

Every object created for an alliance gets a ``ProvisionedResource`` row, committed
as soon as the remote call returns and before any role is handed out. Teardown only
ever stamps ``deleted_at`` on those rows, so it can be re-run safely.
"""
from __future__ import annotations
import logging
import random
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from . import db
from .background import BackgroundRunner
from .crew import fleet_roster, ship_channel_name, ship_role_name
from .errors import GatewayError
from .gateway import CONNECT, VIEW_CHANNEL, DeleteOutcome, Gateway, Overwrite
from .models import Alliance, ProvisionedResource, ResourceKind, Ship
from .timeparse import parse_mention_id

ORGANIZER_ROLE_NAME = "Organisateur"
ORGANIZER_ROLE_COLOR = 0xF1C40F
DEPUTY_ROLE_NAME = "Bras droit"
DEPUTY_ROLE_COLOR = 0x1ABC9C

HUB_CHANNEL_NAMES = [
    "Avant-poste Golden Sands",
    "Avant-poste Sanctuary",
    "Avant-poste Ancient Spire",
    "Avant-poste Plunder",
    "Avant-poste Dagger Tooth",
    "Avant-poste Galleon's Grave",
    "Avant-poste Morrow's Peak",
]


def record_resource(alliance_id: int, kind: ResourceKind, external_id: int, name: str,
                    auto_delete: bool = True) -> ProvisionedResource:
    res = ProvisionedResource(
        alliance_id=alliance_id,
        kind=int(kind),
        external_id=external_id,
        name=name,
        auto_delete=auto_delete,
    )
    try:
        db.session.add(res)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    return res


def live_resources(alliance_id: int, kind: ResourceKind | None = None,
                   auto_delete_only: bool = False) -> list[ProvisionedResource]:
    q = ProvisionedResource.query.filter_by(alliance_id=alliance_id, deleted_at=None)
    if kind is not None:
        q = q.filter_by(kind=int(kind))
    if auto_delete_only:
        q = q.filter_by(auto_delete=True, abandoned_at=None)
    return q.order_by(ProvisionedResource.id).all()


def find_role(alliance_id: int, name: str) -> Optional[ProvisionedResource]:
    for res in live_resources(alliance_id, ResourceKind.role):
        if res.name == name:
            return res
    return None


class Provisioner:
    def __init__(self, gateway: Gateway, logger: logging.Logger | None = None):
        self.gateway = gateway
        self.logger = logger or logging.getLogger("provisioning")

    def _create(self, alliance: Alliance, kind: ResourceKind, name: str,
                factory: Callable[[], int]) -> Optional[int]:
        try:
            external_id = factory()
        except GatewayError:
            self.logger.exception("Alliance %s: failed to create %s %r", alliance.id, kind.name, name)
            return None
        record_resource(alliance.id, kind, external_id, name)
        self.logger.info("Alliance %s: created %s %r (%s)", alliance.id, kind.name, name, external_id)
        return external_id

    def _grant(self, guild_id: int, user_id: int, role_id: Optional[int]) -> bool:
        if not user_id or not role_id:
            return False
        try:
            self.gateway.grant_role(guild_id, user_id, role_id)
            return True
        except GatewayError:
            self.logger.warning("Failed to grant role %s to user %s", role_id, user_id)
            return False

    def _revoke(self, guild_id: int, user_id: int, role_id: Optional[int]) -> bool:
        if not user_id or not role_id:
            return False
        try:
            self.gateway.revoke_role(guild_id, user_id, role_id)
            return True
        except GatewayError:
            self.logger.warning("Failed to revoke role %s from user %s", role_id, user_id)
            return False

    def provision(self, alliance_id: int) -> dict[str, int]:
        """Create roles, category and voice channels for a started alliance, then hand out roles.

        Returns the created role ids by name. Individual creation failures are logged
        and skipped; whatever was created is recorded and will be torn down on end.
        """
        alliance = db.session.get(Alliance, alliance_id)
        if alliance is None:
            self.logger.error("provision: alliance %s not found", alliance_id)
            return {}
        guild_id = alliance.guild_id
        deputy_id = parse_mention_id(alliance.right_hand)
        ships = sorted(alliance.ships, key=lambda s: s.slot)

        roles: dict[str, int] = {}

        def make_role(name: str, color: int = 0, hoist: bool = False) -> None:
            if name in roles:
                return
            role_id = self._create(alliance, ResourceKind.role, name,
                                   lambda: self.gateway.create_role(guild_id, name, color, hoist, hoist))
            if role_id:
                roles[name] = role_id

        make_role(alliance.name)
        make_role(ORGANIZER_ROLE_NAME, ORGANIZER_ROLE_COLOR, hoist=True)
        if deputy_id:
            make_role(DEPUTY_ROLE_NAME, DEPUTY_ROLE_COLOR, hoist=True)
        for ship in ships:
            make_role(ship_role_name(ship))

        member_role_id = roles.get(alliance.name)
        category_id = self._create(alliance, ResourceKind.category, alliance.name,
                                   lambda: self.gateway.create_category(guild_id, alliance.name))

        overwrites = [Overwrite(guild_id, deny=VIEW_CHANNEL | CONNECT)]
        if member_role_id:
            overwrites.append(Overwrite(member_role_id, allow=VIEW_CHANNEL | CONNECT))

        hub_name = random.choice(HUB_CHANNEL_NAMES)
        self._create(alliance, ResourceKind.voice_channel, hub_name,
                     lambda: self.gateway.create_voice_channel(guild_id, hub_name, category_id, overwrites, 0))
        for position, ship in enumerate(ships, start=1):
            name = ship_channel_name(ship)
            self._create(alliance, ResourceKind.voice_channel, name,
                         lambda name=name, position=position: self.gateway.create_voice_channel(
                             guild_id, name, category_id, overwrites, position))

        # role grants: best effort, after every resource is recorded
        participants = alliance.active_participants()
        members = [p.user_id for p in participants] + [alliance.organizer_id, deputy_id]
        seen = set()
        for user_id in members:
            if user_id and user_id not in seen:
                seen.add(user_id)
                self._grant(guild_id, user_id, member_role_id)
        self._grant(guild_id, alliance.organizer_id, roles.get(ORGANIZER_ROLE_NAME))
        if deputy_id:
            self._grant(guild_id, deputy_id, roles.get(DEPUTY_ROLE_NAME))
        for crew in fleet_roster(ships, participants):
            ship_role_id = roles.get(ship_role_name(crew.ship))
            for p in crew.occupants:
                self._grant(guild_id, p.user_id, ship_role_id)

        self.logger.info("Alliance %s provisioned: %s roles, category=%s", alliance.id, len(roles), category_id)
        return roles

    def grant_ship_access(self, alliance: Alliance, user_id: int, ship: Ship) -> None:
        """Member role plus the ship role, for someone joining a running alliance."""
        member = find_role(alliance.id, alliance.name)
        ship_role = find_role(alliance.id, ship_role_name(ship))
        self._grant(alliance.guild_id, user_id, member.external_id if member else None)
        self._grant(alliance.guild_id, user_id, ship_role.external_id if ship_role else None)

    def revoke_ship_access(self, alliance: Alliance, user_id: int, ships: Iterable[Ship],
                           still_member: bool) -> None:
        for ship in ships:
            ship_role = find_role(alliance.id, ship_role_name(ship))
            self._revoke(alliance.guild_id, user_id, ship_role.external_id if ship_role else None)
        if not still_member:
            member = find_role(alliance.id, alliance.name)
            self._revoke(alliance.guild_id, user_id, member.external_id if member else None)


@dataclass
class TeardownItem:
    resource_id: int
    guild_id: int
    kind: ResourceKind
    external_id: int
    name: str = ""
    attempts: int = 0


@dataclass
class TeardownReport:
    deleted: int = 0
    queued: int = 0
    failed: int = 0
    skipped: list[int] = field(default_factory=list)


class TeardownQueue:
    """Deletes alliance resources and retries the rate-limited ones.

    Items that hit a rate limit are parked on a mutex-guarded list. A single
    interval job (every ``interval`` seconds) swaps the list out and retries each
    item; after ``max_retries`` further rate-limited attempts an item is abandoned.
    The job is paused while the list is empty.

    Hard errors and abandoned items get ``abandoned_at`` stamped on their row, which
    takes them out of every later teardown, including the periodic sweep.
    """

    JOB_ID = "teardown_retry"

    def __init__(self, gateway: Gateway, runner: BackgroundRunner | None = None,
                 logger: logging.Logger | None = None, interval: int = 5, max_retries: int = 3):
        self.gateway = gateway
        self.runner = runner
        self.logger = logger or logging.getLogger("teardown")
        self.interval = interval
        self.max_retries = max_retries
        self._lock = threading.Lock()
        self._pending: list[TeardownItem] = []
        self._queued_ids: set[int] = set()
        self._job = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def _ensure_job(self):
        if self._job is None and self.runner is not None:
            self._job = self.runner.add_interval(self.drain, self.interval, self.JOB_ID)
        return self._job

    def enqueue(self, item: TeardownItem) -> None:
        with self._lock:
            self._pending.append(item)
            self._queued_ids.add(item.resource_id)
            job = self._ensure_job()
            if job is not None:
                job.resume()

    def teardown(self, alliance_id: int) -> TeardownReport:
        """Delete every live auto-delete resource of the alliance: channels first, then roles."""
        report = TeardownReport()
        resources = live_resources(alliance_id, auto_delete_only=True)
        channels = [r for r in resources if r.resource_kind.is_channel]
        roles = [r for r in resources if r.resource_kind == ResourceKind.role]
        guild_id = db.session.get(Alliance, alliance_id).guild_id
        for res in channels + roles:
            with self._lock:
                already_queued = res.id in self._queued_ids
            if already_queued:
                report.skipped.append(res.id)
                continue
            item = TeardownItem(res.id, guild_id, res.resource_kind, res.external_id, res.name)
            outcome = self._attempt(item)
            if outcome in (DeleteOutcome.OK, DeleteOutcome.NOT_FOUND):
                report.deleted += 1
            elif outcome == DeleteOutcome.RATE_LIMITED:
                self.logger.info("Rate limited deleting %s %r, queued for retry", item.kind.name, item.name)
                self.enqueue(item)
                report.queued += 1
            else:
                report.failed += 1
        self.logger.info("Alliance %s teardown: deleted=%s queued=%s failed=%s",
                         alliance_id, report.deleted, report.queued, report.failed)
        return report

    def _attempt(self, item: TeardownItem) -> DeleteOutcome:
        if item.kind == ResourceKind.role:
            outcome = self.gateway.delete_role(item.guild_id, item.external_id)
        else:
            outcome = self.gateway.delete_channel(item.external_id)
        if outcome in (DeleteOutcome.OK, DeleteOutcome.NOT_FOUND):
            self._stamp(item.resource_id, "deleted_at")
        elif outcome == DeleteOutcome.ERROR:
            self.logger.error("Failed to delete %s %r (%s), not retrying", item.kind.name, item.name, item.external_id)
            self._stamp(item.resource_id, "abandoned_at")
        return outcome

    def _stamp(self, resource_id: int, column: str) -> None:
        """Record the final outcome of a delete on the resource row."""
        try:
            res = db.session.get(ProvisionedResource, resource_id)
            if res is not None and getattr(res, column) is None:
                setattr(res, column, datetime.utcnow())
                db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            self.logger.exception("Failed to set %s on resource %s", column, resource_id)

    def drain(self) -> int:
        """Retry the current batch once. Returns the number of items still pending."""
        with self._lock:
            batch, self._pending = self._pending, []
        for item in batch:
            outcome = self._attempt(item)
            if outcome == DeleteOutcome.RATE_LIMITED:
                item.attempts += 1
                if item.attempts < self.max_retries:
                    with self._lock:
                        self._pending.append(item)
                    continue
                self.logger.warning("Abandoning delete of %s %r (%s) after %s retries",
                                    item.kind.name, item.name, item.external_id, item.attempts)
                self._stamp(item.resource_id, "abandoned_at")
            with self._lock:
                self._queued_ids.discard(item.resource_id)
        with self._lock:
            remaining = len(self._pending)
            if remaining == 0 and self._job is not None:
                self._job.pause()
        return remaining
