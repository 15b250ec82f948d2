"""Frontend 9 and later: resource bar and galaxy view rendered from JSON."""
from __future__ import annotations

import re

from .errors import ExtractionError
from .extract_v6 import extract_server_time
from .extract_v7 import V7
from .parsing import load_json, parse_int, script_json, soup
from .types import (
    Constructions,
    Coordinate,
    PlanetInfos,
    PlayerInfos,
    Resources,
    SystemInfos,
)


def extract_resources(content: str) -> Resources:
    data = script_json(content, "resourcesBar")
    res = (data or {}).get("resources") if isinstance(data, dict) else None
    if not isinstance(res, dict):
        raise ExtractionError("resourcesBar: no resources")
    out = Resources()
    for name in ("metal", "crystal", "deuterium", "energy", "darkmatter"):
        entry = res.get(name)
        if not isinstance(entry, dict) or "amount" not in entry:
            raise ExtractionError(f"resourcesBar: {name} missing")
        setattr(out, name, parse_int(entry["amount"], f"resourcesBar {name}"))
    return out


def extract_build_token(content: str) -> str:
    m = re.search(r"var\s+upgradeEndpoint\s*=\s*[\"'][^\"']*?[?&]token=([^&\"']+)", content)
    if not m:
        raise ExtractionError("build token: upgradeEndpoint not found")
    return m.group(1)


_BOXES = (("building", "productionboxbuildingcomponent"),
          ("research", "productionboxresearchcomponent"),
          ("shipyard", "productionboxshipyardcomponent"))


def extract_constructions(content: str) -> Constructions:
    doc = soup(content)
    if doc.select_one("#productionboxbuildingcomponent") is None:
        raise ExtractionError("constructions: #productionboxbuildingcomponent not found")
    now = extract_server_time(content)
    out = Constructions()
    for slot, box_id in _BOXES:
        timer = doc.select_one(f"#{box_id} [data-end][data-technology-id]")
        if timer is None:
            continue
        setattr(out, f"{slot}_id", parse_int(timer["data-technology-id"], f"{slot} id"))
        setattr(out, f"{slot}_countdown", max(0, parse_int(timer["data-end"], f"{slot} end") - now))
    return out


def extract_galaxy_infos(content: str, galaxy: int, system: int) -> SystemInfos:
    data = load_json(content, "galaxy content")
    try:
        rows = data["system"]["galaxyContent"]
    except (KeyError, TypeError) as e:
        raise ExtractionError("galaxy content: no galaxyContent") from e
    out = SystemInfos(galaxy=galaxy, system=system)
    for row in rows:
        pos = parse_int(row.get("position"), "position")
        infos = PlanetInfos(coordinate=Coordinate(galaxy, system, pos))
        for body in row.get("planets") or []:
            kind = parse_int(body.get("planetType"), "planet type")
            if kind == 1 and not body.get("isDestroyed"):
                infos.inhabited = True
                infos.name = body.get("planetName") or ""
            elif kind == 3:
                infos.moon_id = parse_int(body.get("planetId"), "moon id")
            elif kind == 2:
                res = body.get("resources") or {}
                infos.debris = Resources(
                    metal=parse_int((res.get("metal") or {}).get("amount", 0), "debris metal"),
                    crystal=parse_int((res.get("crystal") or {}).get("amount", 0), "debris crystal"),
                    deuterium=parse_int((res.get("deuterium") or {}).get("amount", 0), "debris deuterium"),
                )
        player = row.get("player") or {}
        if player.get("playerId"):
            infos.player = PlayerInfos(
                id=parse_int(player["playerId"], "player id"),
                name=player.get("playerName") or "",
                rank=parse_int(player.get("rank") or 0, "rank"),
                points=parse_int(player.get("points") or 0, "points"),
            )
            infos.vacation = bool(player.get("isOnVacation"))
            infos.noob = bool(player.get("isNewbie"))
            infos.strong = bool(player.get("isStrong"))
            infos.admin = bool(player.get("isAdmin"))
        out.positions[pos] = infos
    return out


V9 = {
    **V7,
    "extract_resources": extract_resources,
    "extract_build_token": extract_build_token,
    "extract_constructions": extract_constructions,
    "extract_galaxy_infos": extract_galaxy_infos,
}
