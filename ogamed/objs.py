"""Static game rules: object ids, the page each id is built from, missions."""
from __future__ import annotations

from enum import IntEnum


class Mission(IntEnum):
    ATTACK = 1
    GROUP_ATTACK = 2
    TRANSPORT = 3
    DEPLOY = 4
    DEFEND = 5
    SPY = 6
    COLONIZE = 7
    RECYCLE = 8
    DESTROY = 9
    MISSILE_ATTACK = 10
    EXPEDITION = 15


RESOURCES_BUILDINGS = {
    1: "Metal Mine",
    2: "Crystal Mine",
    3: "Deuterium Synthesizer",
    4: "Solar Plant",
    12: "Fusion Reactor",
    22: "Metal Storage",
    23: "Crystal Storage",
    24: "Deuterium Tank",
}

FACILITIES = {
    14: "Robotics Factory",
    15: "Nanite Factory",
    21: "Shipyard",
    31: "Research Lab",
    33: "Terraformer",
    34: "Alliance Depot",
    36: "Space Dock",
    41: "Lunar Base",
    42: "Sensor Phalanx",
    43: "Jump Gate",
    44: "Missile Silo",
}

RESEARCH = {
    106: "Espionage Technology",
    108: "Computer Technology",
    109: "Weapons Technology",
    110: "Shielding Technology",
    111: "Armour Technology",
    113: "Energy Technology",
    114: "Hyperspace Technology",
    115: "Combustion Drive",
    117: "Impulse Drive",
    118: "Hyperspace Drive",
    120: "Laser Technology",
    121: "Ion Technology",
    122: "Plasma Technology",
    123: "Intergalactic Research Network",
    124: "Astrophysics",
    199: "Graviton Technology",
}

SHIPS = {
    202: "Small Cargo",
    203: "Large Cargo",
    204: "Light Fighter",
    205: "Heavy Fighter",
    206: "Cruiser",
    207: "Battleship",
    208: "Colony Ship",
    209: "Recycler",
    210: "Espionage Probe",
    211: "Bomber",
    212: "Solar Satellite",
    213: "Destroyer",
    214: "Deathstar",
    215: "Battlecruiser",
    217: "Crawler",
    218: "Reaper",
    219: "Pathfinder",
}

DEFENSES = {
    401: "Rocket Launcher",
    402: "Light Laser",
    403: "Heavy Laser",
    404: "Gauss Cannon",
    405: "Ion Cannon",
    406: "Plasma Turret",
    407: "Small Shield Dome",
    408: "Large Shield Dome",
    502: "Anti-Ballistic Missiles",
    503: "Interplanetary Missiles",
}

BUILDINGS = {**RESOURCES_BUILDINGS, **FACILITIES}

# Ships that never leave the planet.
STATIONARY_SHIPS = {212, 217}

ASTROPHYSICS = 124
COLONY_SHIP = 208
DEATHSTAR = 214
RECYCLERS = frozenset({209, 219})

# Hostile missions. Every other mission ignores noob and strength protection.
PROTECTED_MISSIONS = frozenset(
    {Mission.ATTACK, Mission.GROUP_ATTACK, Mission.SPY, Mission.DESTROY}
)
# Missions whose target must already be someone's celestial.
INHABITED_TARGET_MISSIONS = frozenset(
    {Mission.ATTACK, Mission.GROUP_ATTACK, Mission.SPY, Mission.DESTROY, Mission.TRANSPORT, Mission.DEFEND}
)
MOON_TARGET_MISSIONS = frozenset({Mission.DESTROY})
# Foreign missions that show up as an incoming attack on the event list.
ATTACK_MISSIONS = frozenset(
    {Mission.ATTACK, Mission.GROUP_ATTACK, Mission.SPY, Mission.DESTROY, Mission.MISSILE_ATTACK}
)

EXPEDITION_POSITION = 16
MAX_GALAXIES = 9
MAX_SYSTEMS = 499


def component_for(obj_id: int) -> str:
    """Ingame page component an object is built from."""
    if obj_id in RESOURCES_BUILDINGS:
        return "supplies"
    if obj_id in FACILITIES:
        return "facilities"
    if obj_id in RESEARCH:
        return "research"
    if obj_id in SHIPS:
        return "shipyard"
    if obj_id in DEFENSES:
        return "defenses"
    raise KeyError(obj_id)


def is_ship(obj_id: int) -> bool:
    return obj_id in SHIPS


def is_countable(obj_id: int) -> bool:
    """Ships and defenses are built in quantities, the rest level by level."""
    return is_ship(obj_id) or obj_id in DEFENSES


def name_of(obj_id: int) -> str:
    for table in (RESOURCES_BUILDINGS, FACILITIES, RESEARCH, SHIPS, DEFENSES):
        if obj_id in table:
            return table[obj_id]
    return str(obj_id)


def is_known(obj_id: int) -> bool:
    try:
        component_for(obj_id)
    except KeyError:
        return False
    return True
