from __future__ import annotations
from datetime import datetime
from enum import IntEnum
from flask import current_app
from . import db


class AllianceStatus(IntEnum):
    planned = 0
    matching = 1
    in_game = 2
    finished = 3
    cancelled = 4

    @property
    def is_terminal(self) -> bool:
        return self in (AllianceStatus.finished, AllianceStatus.cancelled)


class HullType(IntEnum):
    sloop = 0
    brig = 1
    galleon = 2


class ResourceKind(IntEnum):
    role = 0
    voice_channel = 1
    text_channel = 2
    category = 3
    thread = 4
    message = 5

    @property
    def is_channel(self) -> bool:
        return self in (ResourceKind.voice_channel, ResourceKind.text_channel, ResourceKind.category)


class User(db.Model):
    __tablename__ = "users"
    discord_id = db.Column(db.BigInteger, primary_key=True, autoincrement=False)
    name = db.Column(db.String(100), nullable=False, default="")
    gamertag = db.Column(db.String(100), nullable=True)
    is_banned = db.Column(db.Boolean, default=False, nullable=False)
    ban_reason = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    last_alliance_at = db.Column(db.DateTime, nullable=True)

    @classmethod
    def upsert(cls, discord_id: int, name: str) -> "User":
        """Fetch the user row, creating it on first contact. Refreshes the display name."""
        user = db.session.get(cls, discord_id)
        if user is None:
            user = cls(discord_id=discord_id, name=name or "")
            db.session.add(user)
        elif name and user.name != name:
            user.name = name
        return user


class BotSettings(db.Model):
    __tablename__ = "bot_settings"
    guild_id = db.Column(db.BigInteger, primary_key=True, autoincrement=False)
    command_channel_id = db.Column(db.BigInteger, nullable=True)
    ping_channel_id = db.Column(db.BigInteger, nullable=True)
    alliance_forum_channel_id = db.Column(db.BigInteger, nullable=True)
    log_channel_id = db.Column(db.BigInteger, nullable=True)
    organizer_role_id = db.Column(db.BigInteger, nullable=True)
    notify_role_id = db.Column(db.BigInteger, nullable=True)
    default_max_ships = db.Column(db.Integer, default=6, nullable=False)
    allow_public_join = db.Column(db.Boolean, default=True, nullable=False)
    timezone = db.Column(db.String(64), default="Europe/Paris", nullable=False)
    language = db.Column(db.String(8), default="fr", nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @classmethod
    def timezone_for(cls, guild_id: int) -> str:
        settings = db.session.get(cls, guild_id)
        if settings is not None and settings.timezone:
            return settings.timezone
        return current_app.config.get("DEFAULT_TIMEZONE", "Europe/Paris")


class Alliance(db.Model):
    __tablename__ = "alliances"
    id = db.Column(db.Integer, primary_key=True)
    guild_id = db.Column(db.BigInteger, nullable=False, index=True)
    organizer_id = db.Column(db.BigInteger, nullable=False)
    # deputy stored as the raw mention string ("<@123>"), empty when unset
    right_hand = db.Column(db.String(64), nullable=False, default="")
    name = db.Column(db.String(200), nullable=False)
    scheduled_at = db.Column(db.DateTime, nullable=False)
    sale_at = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.Integer, nullable=False, default=int(AllianceStatus.planned), index=True)
    max_ships = db.Column(db.Integer, nullable=False, default=6)
    ships_reuse_planned = db.Column(db.Boolean, nullable=False, default=False)
    thread_channel_id = db.Column(db.BigInteger, nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    ships = db.relationship("Ship", back_populates="alliance", order_by="Ship.slot", cascade="all, delete-orphan")
    participants = db.relationship("Participant", back_populates="alliance", cascade="all, delete-orphan")
    resources = db.relationship("ProvisionedResource", back_populates="alliance", cascade="all, delete-orphan")

    @property
    def state(self) -> AllianceStatus:
        return AllianceStatus(self.status)

    def active_participants(self) -> list["Participant"]:
        return (
            Participant.query.filter_by(alliance_id=self.id, left_at=None)
            .order_by(Participant.joined_at, Participant.id)
            .all()
        )


class Ship(db.Model):
    __tablename__ = "ships"
    id = db.Column(db.Integer, primary_key=True)
    alliance_id = db.Column(db.Integer, db.ForeignKey("alliances.id"), nullable=False, index=True)
    slot = db.Column(db.Integer, nullable=False)
    hull_type = db.Column(db.Integer, nullable=False, default=int(HullType.brig))
    crew_role = db.Column(db.String(50), nullable=False, default="")

    alliance = db.relationship("Alliance", back_populates="ships")

    __table_args__ = (db.UniqueConstraint("alliance_id", "slot", name="uq_ship_alliance_slot"),)

    @property
    def hull(self) -> HullType:
        return HullType(self.hull_type)


class Participant(db.Model):
    __tablename__ = "alliance_participants"
    id = db.Column(db.Integer, primary_key=True)
    alliance_id = db.Column(db.Integer, db.ForeignKey("alliances.id"), nullable=False, index=True)
    user_id = db.Column(db.BigInteger, nullable=False, index=True)
    ship_id = db.Column(db.Integer, db.ForeignKey("ships.id"), nullable=False, index=True)
    joined_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    # None while the membership is active
    left_at = db.Column(db.DateTime, nullable=True)

    alliance = db.relationship("Alliance", back_populates="participants")
    ship = db.relationship("Ship")

    @property
    def is_active(self) -> bool:
        return self.left_at is None


class ProvisionedResource(db.Model):
    __tablename__ = "provisioned_resources"
    id = db.Column(db.Integer, primary_key=True)
    alliance_id = db.Column(db.Integer, db.ForeignKey("alliances.id"), nullable=False, index=True)
    kind = db.Column(db.Integer, nullable=False)
    external_id = db.Column(db.BigInteger, nullable=False)
    name = db.Column(db.String(200), nullable=False, default="")
    auto_delete = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    # None while the remote object is live
    deleted_at = db.Column(db.DateTime, nullable=True)
    # set once teardown gave up on the remote object; never retried after that
    abandoned_at = db.Column(db.DateTime, nullable=True)

    alliance = db.relationship("Alliance", back_populates="resources")

    @property
    def resource_kind(self) -> ResourceKind:
        return ResourceKind(self.kind)

    @property
    def is_live(self) -> bool:
        return self.deleted_at is None
