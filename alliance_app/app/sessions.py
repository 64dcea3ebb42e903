"""In-memory state of the alliance creation wizard.

A session lives between the ``/alliance creer`` command and the final "finish"
button. It is never persisted: restarting the process simply drops it, and the
organizer starts over.
"""
from __future__ import annotations
import threading
from dataclasses import dataclass, field
from typing import Optional

from .models import HullType

MIN_SHIPS = 1
MAX_SHIPS = 6


def clamp_ships(value: int | None) -> int:
    if value is None:
        return MAX_SHIPS
    return max(MIN_SHIPS, min(MAX_SHIPS, int(value)))


@dataclass
class ShipDraft:
    hull: Optional[HullType] = None
    role: Optional[str] = None

    @property
    def hull_chosen(self) -> bool:
        return self.hull is not None

    @property
    def role_chosen(self) -> bool:
        return self.role is not None

    @property
    def complete(self) -> bool:
        return self.hull_chosen and self.role_chosen


@dataclass
class ConfigurationSession:
    guild_id: int
    user_id: int
    max_ships: int = MAX_SHIPS
    date: str = ""
    start_time: str = ""
    sale_time: str = ""
    # mention string, "" when no deputy was picked
    deputy: str = ""
    reuse: bool = False
    reuse_set: bool = False
    fleet_started: bool = False
    ships: list[ShipDraft] = field(default_factory=list)
    # slot currently being edited in the fleet step (0-based)
    current_ship: int = 0

    @property
    def key(self) -> tuple[int, int]:
        return (self.guild_id, self.user_id)

    def basic_ready(self) -> bool:
        return bool(self.date and self.start_time and self.sale_time)

    def fleet_ready(self) -> bool:
        if not self.fleet_started or len(self.ships) != self.max_ships:
            return False
        return all(s.complete for s in self.ships)

    def ready(self) -> bool:
        return self.basic_ready() and self.fleet_ready() and self.reuse_set

    def start_fleet(self) -> None:
        """Begin (or restart) the fleet step with one empty draft per ship."""
        self.fleet_started = True
        if len(self.ships) != self.max_ships:
            self.ships = [ShipDraft() for _ in range(self.max_ships)]
        self.current_ship = 0

    def select_ship(self, index: int) -> ShipDraft:
        if not self.fleet_started:
            self.start_fleet()
        if not (0 <= index < len(self.ships)):
            raise IndexError(index)
        self.current_ship = index
        return self.ships[index]

    def set_hull(self, index: int, hull: HullType) -> None:
        self.select_ship(index).hull = hull

    def set_role(self, index: int, role: str) -> None:
        self.select_ship(index).role = role

    def set_reuse(self, reuse: bool) -> None:
        self.reuse = reuse
        self.reuse_set = True

    def missing(self) -> list[str]:
        """Human-readable list of what still blocks ``ready()``."""
        out = []
        if not self.basic_ready():
            out.append("date et horaires")
        if not self.fleet_ready():
            out.append("configuration de la flotte")
        if not self.reuse_set:
            out.append("reprise des bateaux")
        return out


class SessionStore:
    """Sessions keyed by (guild id, user id).

    ``open`` always replaces an existing session for the same key: re-running
    the creation command means starting over.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: dict[tuple[int, int], ConfigurationSession] = {}

    def open(self, guild_id: int, user_id: int, max_ships: int | None = None) -> ConfigurationSession:
        session = ConfigurationSession(guild_id=guild_id, user_id=user_id, max_ships=clamp_ships(max_ships))
        with self._lock:
            self._sessions[session.key] = session
        return session

    def get(self, guild_id: int, user_id: int) -> Optional[ConfigurationSession]:
        with self._lock:
            return self._sessions.get((guild_id, user_id))

    def discard(self, guild_id: int, user_id: int) -> None:
        with self._lock:
            self._sessions.pop((guild_id, user_id), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
