"""Local rules an action must satisfy before anything is sent to the game.

Static checks look only at the request and at what the session already knows
(own celestials, relocation reservations) and never touch the network. State
checks run on snapshots the dispatcher has just read, before any submission.
Every failure is a PreconditionViolation carrying a named Reason.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Mapping, Optional

from . import objs
from .errors import PreconditionViolation, Reason
from .objs import Mission
from .types import Celestial, CelestialType, Coordinate, FleetDispatchInfos, PlanetInfos

logger = logging.getLogger(__name__)

MAX_POSITION = 15
DEFAULT_STRENGTH_RATIO = 5.0


def _fail(reason: Reason, detail: str = "") -> PreconditionViolation:
    msg = f"{reason.value}: {detail}" if detail else reason.value
    return PreconditionViolation(reason, msg)


class Validator:
    def __init__(self, strength_ratio: float = DEFAULT_STRENGTH_RATIO):
        self.strength_ratio = strength_ratio
        # celestial id -> reserved destination
        self._relocations: Dict[int, Coordinate] = {}

    # ---------- static ----------

    @staticmethod
    def owned(celestials: Iterable[Celestial], celestial_id: int) -> Celestial:
        for c in celestials:
            if c.id == celestial_id:
                return c
        raise _fail(Reason.INVALID_CELESTIAL_ID, str(celestial_id))

    @staticmethod
    def check_coordinate(coord: Coordinate, mission: Optional[int] = None) -> None:
        max_pos = objs.EXPEDITION_POSITION if mission == Mission.EXPEDITION else MAX_POSITION
        if not (
            1 <= coord.galaxy <= objs.MAX_GALAXIES
            and 1 <= coord.system <= objs.MAX_SYSTEMS
            and 1 <= coord.position <= max_pos
        ):
            raise _fail(Reason.INVALID_COORDINATE, str(coord))
        if mission == Mission.EXPEDITION and coord.position != objs.EXPEDITION_POSITION:
            raise _fail(Reason.INVALID_COORDINATE, "expeditions go to position 16")

    @staticmethod
    def check_ships(ships: Mapping[int, int]) -> None:
        if not ships or not any(n > 0 for n in ships.values()):
            raise _fail(Reason.NO_SHIP_SELECTED)
        for oid, n in ships.items():
            if not objs.is_ship(oid) or oid in objs.STATIONARY_SHIPS:
                raise _fail(Reason.INVALID_OBJECT_ID, f"{oid} cannot fly")
            if n < 0:
                raise _fail(Reason.INVALID_QUANTITY, f"{oid}: {n}")

    def check_fleet_request(
        self,
        ships: Mapping[int, int],
        destination: Coordinate,
        mission: int,
        speed: int,
    ) -> None:
        """Everything that can be decided from the request alone."""
        self.check_ships(ships)
        try:
            mission = Mission(mission)
        except ValueError:
            raise _fail(Reason.INVALID_OBJECT_ID, f"unknown mission {mission}") from None
        if not 1 <= speed <= 10:
            raise _fail(Reason.INVALID_SPEED, str(speed))
        self.check_coordinate(destination, mission)
        if mission == Mission.RECYCLE and not any(ships.get(r, 0) > 0 for r in objs.RECYCLERS):
            raise _fail(Reason.NO_RECYCLER_AVAILABLE)
        if mission in objs.MOON_TARGET_MISSIONS and destination.type != CelestialType.MOON:
            raise _fail(Reason.NO_MOON_AVAILABLE, "destroy needs a moon as target")

    def check_jump(self, origin: Celestial, destination: Celestial, ships: Mapping[int, int]) -> None:
        self.check_ships(ships)
        if not origin.is_moon or not destination.is_moon:
            raise _fail(Reason.NO_MOON_AVAILABLE, "jump gates link moons only")
        if origin.id == destination.id:
            raise _fail(Reason.INVALID_CELESTIAL_ID, "origin and destination are the same moon")

    @staticmethod
    def check_build(obj_id: int, quantity: int = 1, kind: Optional[Mapping[int, str]] = None) -> None:
        if not objs.is_known(obj_id) or (kind is not None and obj_id not in kind):
            raise _fail(Reason.INVALID_OBJECT_ID, str(obj_id))
        if quantity < 1 or (not objs.is_countable(obj_id) and quantity != 1):
            raise _fail(Reason.INVALID_QUANTITY, str(quantity))

    # ---------- state ----------

    def check_fleet_state(
        self,
        ships: Mapping[int, int],
        mission: int,
        dispatch: FleetDispatchInfos,
        target: Optional[PlanetInfos],
        own_points: int = 0,
        own_vacation: bool = False,
        astrophysics: int = 0,
    ) -> None:
        """Checks against freshly read dispatch page and galaxy row."""
        mission = Mission(mission)
        if own_vacation:
            raise _fail(Reason.PLAYER_IN_VACATION_MODE)
        for oid, n in ships.items():
            if n > dispatch.ships.get(oid, 0):
                raise _fail(Reason.NOT_ENOUGH_SHIPS, f"{objs.name_of(oid)}: {n} > {dispatch.ships.get(oid, 0)}")
        if dispatch.free_slots <= 0:
            raise _fail(Reason.NO_FLEET_SLOT, f"{dispatch.slots_in_use}/{dispatch.slots_total}")
        if target is None:
            return

        if mission == Mission.RECYCLE:
            if not target.has_debris:
                raise _fail(Reason.NO_DEBRIS_FIELD, str(target.coordinate))
            return
        if mission == Mission.COLONIZE:
            if target.inhabited:
                raise _fail(Reason.TARGET_INHABITED, str(target.coordinate))
            if astrophysics <= 0:
                raise _fail(Reason.NO_ASTROPHYSICS)
            return
        if mission in objs.INHABITED_TARGET_MISSIONS and not target.inhabited:
            raise _fail(Reason.UNINHABITED_PLANET, str(target.coordinate))
        if mission in objs.MOON_TARGET_MISSIONS and not target.moon_id:
            raise _fail(Reason.NO_MOON_AVAILABLE, str(target.coordinate))
        if target.player is None:
            return
        if target.vacation:
            raise _fail(Reason.TARGET_IN_VACATION_MODE, target.player.name)
        if mission in objs.PROTECTED_MISSIONS:
            if target.admin:
                raise _fail(Reason.ADMIN_OR_GM, target.player.name)
            if target.noob:
                raise _fail(Reason.NOOB_PROTECTION, target.player.name)
            if target.strong or (own_points and target.player.points > self.strength_ratio * own_points):
                raise _fail(Reason.PLAYER_TOO_STRONG, target.player.name)

    # ---------- relocation book ----------

    def check_relocation(self, celestial: Celestial, destination: Coordinate) -> None:
        if celestial.is_moon:
            raise _fail(Reason.INVALID_CELESTIAL_ID, "moons cannot be relocated")
        self.check_coordinate(destination)
        if celestial.id in self._relocations:
            raise _fail(
                Reason.PLANET_ALREADY_RESERVED_FOR_RELOCATION,
                f"{celestial.name} -> {self._relocations[celestial.id]}",
            )

    def reserve(self, celestial_id: int, destination: Coordinate) -> None:
        if celestial_id in self._relocations:
            raise _fail(Reason.PLANET_ALREADY_RESERVED_FOR_RELOCATION, str(celestial_id))
        self._relocations[celestial_id] = destination
        logger.info("Relocation of %s reserved to %s", celestial_id, destination)

    def reservation(self, celestial_id: int) -> Coordinate:
        try:
            return self._relocations[celestial_id]
        except KeyError:
            raise _fail(Reason.NO_RELOCATION_RESERVED, str(celestial_id)) from None

    def release(self, celestial_id: int) -> Coordinate:
        coord = self.reservation(celestial_id)
        del self._relocations[celestial_id]
        logger.info("Relocation of %s to %s released", celestial_id, coord)
        return coord

    @property
    def reservations(self) -> Dict[int, Coordinate]:
        return dict(self._relocations)
