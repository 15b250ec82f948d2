from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Dict, List, Optional


class AuthState(str, Enum):
    LOGGED_OUT = "LoggedOut"
    AUTHENTICATING = "Authenticating"
    CAPTCHA_PENDING = "CaptchaPending"
    LOGGED_IN = "LoggedIn"
    EXPIRED = "Expired"


class CelestialType(IntEnum):
    PLANET = 1
    DEBRIS = 2
    MOON = 3


_COORD_RE = re.compile(r"\[?\s*(\d+)\s*:\s*(\d+)\s*:\s*(\d+)\s*\]?")


@dataclass(frozen=True)
class Coordinate:
    galaxy: int
    system: int
    position: int
    type: CelestialType = CelestialType.PLANET

    @classmethod
    def parse(cls, text: str, type: CelestialType = CelestialType.PLANET) -> Optional["Coordinate"]:
        m = _COORD_RE.search(text or "")
        if not m:
            return None
        g, s, p = (int(x) for x in m.groups())
        return cls(g, s, p, CelestialType(type))

    def is_moon(self) -> bool:
        return self.type == CelestialType.MOON

    def with_type(self, type: CelestialType) -> "Coordinate":
        return Coordinate(self.galaxy, self.system, self.position, CelestialType(type))

    def __str__(self) -> str:
        return f"[{self.galaxy}:{self.system}:{self.position}]"

    def to_dict(self) -> dict:
        return {
            "galaxy": self.galaxy,
            "system": self.system,
            "position": self.position,
            "type": int(self.type),
        }


@dataclass
class Account:
    """Credentials and network settings for one game account."""

    label: str
    login: str
    password: str = field(default="", repr=False)
    universe: str = ""
    lang: str = "en"
    proxy: str = ""
    totp_secret: str = field(default="", repr=False)
    user_agent: str = ""


@dataclass
class Resources:
    metal: int = 0
    crystal: int = 0
    deuterium: int = 0
    energy: int = 0
    darkmatter: int = 0

    def is_empty(self) -> bool:
        return not (self.metal or self.crystal or self.deuterium)


@dataclass
class Celestial:
    id: int
    name: str
    coordinate: Coordinate
    resources: Optional[Resources] = None
    buildings: Dict[int, int] = field(default_factory=dict)
    ships: Dict[int, int] = field(default_factory=dict)
    defenses: Dict[int, int] = field(default_factory=dict)

    @property
    def is_moon(self) -> bool:
        return self.coordinate.is_moon()


@dataclass
class Planet(Celestial):
    moon: Optional["Moon"] = None


@dataclass
class Moon(Celestial):
    pass


@dataclass
class UserInfos:
    player_id: int
    player_name: str
    points: int = 0
    rank: int = 0
    total_players: int = 0


@dataclass
class Constructions:
    building_id: int = 0
    building_countdown: int = 0
    research_id: int = 0
    research_countdown: int = 0
    shipyard_id: int = 0
    shipyard_countdown: int = 0


@dataclass
class FleetDispatchInfos:
    token: str
    ships: Dict[int, int] = field(default_factory=dict)
    slots_in_use: int = 0
    slots_total: int = 0

    @property
    def free_slots(self) -> int:
        return max(0, self.slots_total - self.slots_in_use)


@dataclass
class Fleet:
    id: int
    mission: int
    origin: Coordinate
    destination: Coordinate
    ships: Dict[int, int] = field(default_factory=dict)
    cargo: Resources = field(default_factory=Resources)
    speed: int = 10
    arrival_time: Optional[datetime] = None
    return_time: Optional[datetime] = None
    return_flight: bool = False


@dataclass
class PlayerInfos:
    id: int
    name: str
    rank: int = 0
    points: int = 0


@dataclass
class PlanetInfos:
    coordinate: Coordinate
    name: str = ""
    player: Optional[PlayerInfos] = None
    moon_id: int = 0
    debris: Resources = field(default_factory=Resources)
    inhabited: bool = False
    vacation: bool = False
    noob: bool = False
    strong: bool = False
    admin: bool = False

    @property
    def has_debris(self) -> bool:
        return not self.debris.is_empty()


@dataclass
class SystemInfos:
    galaxy: int
    system: int
    positions: Dict[int, PlanetInfos] = field(default_factory=dict)

    def position(self, pos: int) -> PlanetInfos:
        found = self.positions.get(pos)
        if found is None:
            found = PlanetInfos(Coordinate(self.galaxy, self.system, pos))
        return found


@dataclass
class MessageSummary:
    id: int
    type: str
    subject: str
    sender: str = ""
    date: Optional[datetime] = None
    coordinate: Optional[Coordinate] = None


@dataclass
class CancelInfos:
    token: str
    tech_id: int
    list_id: int


@dataclass
class CaptchaChallenge:
    id: str
    status: str = "pending"
    answer: Optional[int] = None

    @property
    def solved(self) -> bool:
        return self.status == "solved"


@dataclass
class AjaxResponse:
    ok: bool
    message: str = ""
    code: Optional[int] = None
    token: str = ""
    data: dict = field(default_factory=dict)


@dataclass
class EventFleet:
    """One row of the overview event list, own or foreign."""

    id: int
    mission: int
    origin: Coordinate
    destination: Coordinate
    arrival_time: Optional[datetime] = None
    return_flight: bool = False
    hostile: bool = False
    ship_count: int = 0
    attacker_id: int = 0
    attacker_name: str = ""


@dataclass
class EspionageReportSummary:
    id: int
    type: str  # "report" or "action"
    coordinate: Optional[Coordinate] = None
    date: Optional[datetime] = None


@dataclass
class EspionageReport:
    """A full espionage report.

    A section that the probes could not see is ``None``, which is not the
    same as an empty dict (seen, nothing there).
    """

    id: int
    coordinate: Coordinate
    player_name: str = ""
    date: Optional[datetime] = None
    resources: Resources = field(default_factory=Resources)
    buildings: Optional[Dict[int, int]] = None
    research: Optional[Dict[int, int]] = None
    ships: Optional[Dict[int, int]] = None
    defenses: Optional[Dict[int, int]] = None
    counter_espionage: int = 0
