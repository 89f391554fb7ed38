"""Ship domain model for the Broadside engine."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True, order=True)
class Coordinate:
    """Immutable board coordinate."""

    row: int
    col: int


class Orientation(Enum):
    """Allowed ship orientations."""

    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"

    @classmethod
    def from_flag(cls, horizontal: bool) -> Orientation:
        return cls.HORIZONTAL if horizontal else cls.VERTICAL


class ShipType(Enum):
    """All supported ship classes."""

    CARRIER = "carrier"
    BATTLESHIP = "battleship"
    CRUISER = "cruiser"
    SUBMARINE = "submarine"
    DESTROYER = "destroyer"

    @property
    def length(self) -> int:
        """Return the number of contiguous cells the ship occupies."""
        return SHIP_LENGTHS[self]


SHIP_LENGTHS: Mapping[ShipType, int] = MappingProxyType(
    {
        ShipType.CARRIER: 5,
        ShipType.BATTLESHIP: 4,
        ShipType.CRUISER: 3,
        ShipType.SUBMARINE: 3,
        ShipType.DESTROYER: 2,
    }
)

_missing = set(ShipType) - set(SHIP_LENGTHS)
if _missing:  # pragma: no cover - guards edits to the enum
    raise RuntimeError(f"Ship types without a length: {sorted(t.value for t in _missing)}")

FLEET_SIZE = len(ShipType)


def footprint(ship_type: ShipType, start: Coordinate, orientation: Orientation) -> tuple[Coordinate, ...]:
    """Return the ordered cells a ship would cover, without bounds checks."""
    coords: list[Coordinate] = []
    for offset in range(ship_type.length):
        if orientation is Orientation.HORIZONTAL:
            coords.append(Coordinate(start.row, start.col + offset))
        else:
            coords.append(Coordinate(start.row + offset, start.col))
    return tuple(coords)


@dataclass(frozen=True)
class Ship:
    """A placed ship.

    ``positions`` is empty only in views that withhold the layout from an
    opponent.
    """

    ship_type: ShipType
    positions: tuple[Coordinate, ...]
    is_sunk: bool = False

    @classmethod
    def from_placement(cls, ship_type: ShipType, start: Coordinate, orientation: Orientation) -> Ship:
        return cls(ship_type=ship_type, positions=footprint(ship_type, start, orientation))

    @property
    def length(self) -> int:
        return self.ship_type.length

    def occupies(self, coord: Coordinate) -> bool:
        """Return True if the ship covers the coordinate."""
        return coord in self.positions

    def sunk(self) -> Ship:
        return replace(self, is_sunk=True)

    def without_positions(self) -> Ship:
        return replace(self, positions=())


@dataclass(frozen=True)
class Fleet:
    """Ordered collection of at most one ship per type."""

    ships: tuple[Ship, ...] = ()

    def __len__(self) -> int:
        return len(self.ships)

    def __iter__(self):
        return iter(self.ships)

    def has(self, ship_type: ShipType) -> bool:
        return any(ship.ship_type is ship_type for ship in self.ships)

    def is_ready(self) -> bool:
        """A fleet is ready once every ship type has been placed."""
        return len(self.ships) >= FLEET_SIZE and all(self.has(ship_type) for ship_type in ShipType)

    def missing(self) -> list[ShipType]:
        return [ship_type for ship_type in ShipType if not self.has(ship_type)]

    def owner_of(self, coord: Coordinate) -> Ship | None:
        """Return the ship occupying the coordinate, if any."""
        for ship in self.ships:
            if ship.occupies(coord):
                return ship
        return None

    def with_ship(self, ship: Ship) -> Fleet:
        return Fleet(self.ships + (ship,))

    def replacing(self, old: Ship, new: Ship) -> Fleet:
        return Fleet(tuple(new if ship is old else ship for ship in self.ships))

    def all_sunk(self) -> bool:
        """True when the fleet has ships and every one of them is sunk."""
        return bool(self.ships) and all(ship.is_sunk for ship in self.ships)
