"""Frontend 7.x and 8.x: numbers moved into data attributes, fleet page went to JSON."""
from __future__ import annotations

from typing import Dict, Iterable

from bs4 import BeautifulSoup

from . import objs
from .errors import ExtractionError
from .extract_v6 import V6, _extract_slots
from .parsing import parse_int, script_json, script_var, select_one, soup
from .types import FleetDispatchInfos, Resources


def extract_resources(content: str) -> Resources:
    doc = soup(content)
    out = Resources()
    for name in ("metal", "crystal", "deuterium", "energy", "darkmatter"):
        tag = select_one(doc, f"#resources_{name}[data-raw]", name)
        setattr(out, name, parse_int(tag["data-raw"].split(".")[0], name))
    return out


def _levels_by_data(doc: BeautifulSoup, ids: Iterable[int], value_css: str, what: str) -> Dict[int, int]:
    out: Dict[int, int] = {}
    for oid in ids:
        tag = doc.select_one(f'[data-technology="{oid}"] {value_css}[data-value]')
        if tag is not None:
            out[oid] = parse_int(tag["data-value"], f"{what} {oid}")
    if not out:
        raise ExtractionError(f"{what}: no entries found")
    return out


def extract_resources_buildings(content: str) -> Dict[int, int]:
    return _levels_by_data(soup(content), objs.RESOURCES_BUILDINGS, ".level", "resources buildings")


def extract_facilities(content: str) -> Dict[int, int]:
    return _levels_by_data(soup(content), objs.FACILITIES, ".level", "facilities")


def extract_research(content: str) -> Dict[int, int]:
    return _levels_by_data(soup(content), objs.RESEARCH, ".level", "research")


def extract_ships(content: str) -> Dict[int, int]:
    return _levels_by_data(soup(content), objs.SHIPS, ".amount", "ships")


def extract_defenses(content: str) -> Dict[int, int]:
    return _levels_by_data(soup(content), objs.DEFENSES, ".amount", "defenses")


def extract_build_token(content: str) -> str:
    token = script_var(content, "token")
    if not token:
        raise ExtractionError("build token: script variable token not found")
    return token


def extract_fleet_dispatch(content: str) -> FleetDispatchInfos:
    token = script_var(content, "fleetSendingToken")
    if not token:
        raise ExtractionError("fleet token: fleetSendingToken not found")
    ships: Dict[int, int] = {}
    for entry in script_json(content, "shipsOnPlanet"):
        oid = parse_int(entry.get("id"), "ship id")
        if objs.is_ship(oid):
            ships[oid] = parse_int(entry.get("number"), f"ship {oid}")
    used, total = _extract_slots(soup(content))
    return FleetDispatchInfos(token=token, ships=ships, slots_in_use=used, slots_total=total)


V7 = {
    **V6,
    "extract_resources": extract_resources,
    "extract_resources_buildings": extract_resources_buildings,
    "extract_facilities": extract_facilities,
    "extract_research": extract_research,
    "extract_ships": extract_ships,
    "extract_defenses": extract_defenses,
    "extract_build_token": extract_build_token,
    "extract_fleet_dispatch": extract_fleet_dispatch,
}
