"""Crew assignment: hull capacities and the primary crew / replacement split."""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable

from .models import HullType, Participant, Ship

HULL_CAPACITY = {
    HullType.sloop: 2,
    HullType.brig: 3,
    HullType.galleon: 4,
}

HULL_LABELS = {
    HullType.sloop: "Sloop",
    HullType.brig: "Brigantin",
    HullType.galleon: "Galion",
}

FREE_ROLE = "Libre"
ROLE_CHOICES = ["FDD", "Event", "Athéna", "Chasseur", FREE_ROLE]
CUSTOM_ROLE_MAX_LENGTH = 50


def hull_capacity(hull: int) -> int:
    return HULL_CAPACITY.get(HullType(hull), 3)


def hull_label(hull: int) -> str:
    return HULL_LABELS.get(HullType(hull), "Brigantin")


def role_label(crew_role: str | None) -> str:
    return crew_role or FREE_ROLE


def ship_role_name(ship: Ship) -> str:
    """Name of the per-ship chat role, shared by ships with the same hull and role."""
    return f"{hull_label(ship.hull_type)} {role_label(ship.crew_role)}"


def ship_channel_name(ship: Ship) -> str:
    return f"{hull_label(ship.hull_type)} - {role_label(ship.crew_role)}"


@dataclass
class Crew:
    ship: Ship
    capacity: int
    primary: list[Participant] = field(default_factory=list)
    replacements: list[Participant] = field(default_factory=list)

    @property
    def occupants(self) -> list[Participant]:
        return self.primary + self.replacements

    @property
    def free_slots(self) -> int:
        return self.capacity - len(self.primary)


def assign_crew(ship: Ship, participants: Iterable[Participant]) -> Crew:
    """Split the ship's active participants into primary crew and replacements.

    Ordering is first come, first served on ``joined_at``; the row id breaks ties
    between joins that landed on the same timestamp.
    """
    active = sorted(
        (p for p in participants if p.ship_id == ship.id and p.left_at is None),
        key=lambda p: (p.joined_at, p.id or 0),
    )
    cap = hull_capacity(ship.hull_type)
    return Crew(ship=ship, capacity=cap, primary=active[:cap], replacements=active[cap:])


def fleet_roster(ships: Iterable[Ship], participants: Iterable[Participant]) -> list[Crew]:
    """Crew of every ship, in slot order."""
    participants = list(participants)
    return [assign_crew(s, participants) for s in sorted(ships, key=lambda s: s.slot)]
