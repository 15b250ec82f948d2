"""Page extraction for the oldest supported frontend (server versions < 7).

Every function takes raw page content and returns a typed value, or raises
ExtractionError when the markup it expects is missing. Nothing here touches
the network or the session.
"""
from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional

from bs4 import BeautifulSoup, Tag

from . import objs
from .errors import ExtractionError
from .parsing import (
    from_timestamp,
    last_int,
    load_json,
    meta,
    parse_game_date,
    parse_int,
    require_meta,
    script_var,
    select_one,
    soup,
)
from .types import (
    AjaxResponse,
    CancelInfos,
    CelestialType,
    Constructions,
    Coordinate,
    EspionageReport,
    EspionageReportSummary,
    EventFleet,
    Fleet,
    FleetDispatchInfos,
    MessageSummary,
    Moon,
    Planet,
    PlanetInfos,
    PlayerInfos,
    Resources,
    SystemInfos,
    UserInfos,
)

_NAME_TO_ID = {
    name.lower(): oid
    for table in (objs.SHIPS, objs.DEFENSES)
    for oid, name in table.items()
}
_CARGO_LABELS = {"metal": "metal", "crystal": "crystal", "deuterium": "deuterium"}


# ---------- page identity ----------

def extract_is_logged_in(content: str) -> bool:
    return meta(soup(content), "ogame-session") is not None


def extract_server_version(content: str) -> str:
    return require_meta(soup(content), "ogame-version")


def extract_server_time(content: str) -> int:
    return parse_int(require_meta(soup(content), "ogame-timestamp"), "ogame-timestamp")


def extract_celestial_id(content: str) -> int:
    return parse_int(require_meta(soup(content), "ogame-planet-id"), "ogame-planet-id")


def extract_player(content: str) -> UserInfos:
    doc = soup(content)
    infos = UserInfos(
        player_id=parse_int(require_meta(doc, "ogame-player-id"), "ogame-player-id"),
        player_name=require_meta(doc, "ogame-player-name"),
    )
    score = doc.select_one("#scoreContentField")
    if score is not None:
        # "1.234 (Place 56 of 2.000)"
        m = re.match(r"\s*([\d.,'\s]+?)\s*\(\D*([\d.,']+)\D+([\d.,']+)\s*\)", score.get_text(" "))
        if not m:
            raise ExtractionError(f"score: cannot parse {score.get_text(' ')!r}")
        infos.points = parse_int(m.group(1), "points")
        infos.rank = parse_int(m.group(2), "rank")
        infos.total_players = parse_int(m.group(3), "total players")
    return infos


def extract_is_in_vacation(content: str) -> bool:
    return soup(content).select_one("#advice-bar .vacation") is not None


def extract_planets(content: str) -> List[Planet]:
    doc = soup(content)
    root = select_one(doc, "#planetList", "planet list")
    planets: List[Planet] = []
    for node in root.select("div.smallplanet"):
        pid = parse_int((node.get("id") or "").replace("planet-", ""), "planet id")
        coord = Coordinate.parse(select_one(node, ".planet-koords", "planet coords").get_text())
        if coord is None:
            raise ExtractionError(f"planet {pid}: bad coordinate")
        name = select_one(node, ".planet-name", "planet name").get_text(strip=True)
        planet = Planet(id=pid, name=name, coordinate=coord)
        moon_link = node.select_one("a.moonlink")
        if moon_link is not None:
            m = re.search(r"cp=(\d+)", moon_link.get("href") or "")
            if not m:
                raise ExtractionError(f"planet {pid}: moon link without id")
            title = moon_link.get("title") or ""
            nm = re.search(r"<b>\s*(.*?)\s*\[", title)
            planet.moon = Moon(
                id=int(m.group(1)),
                name=nm.group(1) if nm else "Moon",
                coordinate=coord.with_type(CelestialType.MOON),
            )
        planets.append(planet)
    return planets


# ---------- resources and levels ----------

def extract_resources(content: str) -> Resources:
    doc = soup(content)
    out = Resources()
    for name in ("metal", "crystal", "deuterium", "energy"):
        tag = select_one(doc, f"#resources_{name}", name)
        setattr(out, name, parse_int(tag.get_text(strip=True), name))
    # servers without the premium bar have no dark matter counter; that reads as 0
    dm = doc.select_one("#resources_darkmatter")
    if dm is not None:
        out.darkmatter = parse_int(dm.get_text(strip=True), "darkmatter")
    return out


def _levels_by_class(doc: BeautifulSoup, prefixes: Iterable[str], ids: Iterable[int], what: str) -> Dict[int, int]:
    out: Dict[int, int] = {}
    for oid in ids:
        for prefix in prefixes:
            tag = doc.select_one(f".{prefix}{oid} .level")
            if tag is not None:
                out[oid] = last_int(tag.get_text(" "), f"{what} {oid}")
                break
    if not out:
        raise ExtractionError(f"{what}: no entries found")
    return out


def extract_resources_buildings(content: str) -> Dict[int, int]:
    return _levels_by_class(soup(content), ("supply",), objs.RESOURCES_BUILDINGS, "resources buildings")


def extract_facilities(content: str) -> Dict[int, int]:
    return _levels_by_class(soup(content), ("station",), objs.FACILITIES, "facilities")


def extract_research(content: str) -> Dict[int, int]:
    return _levels_by_class(soup(content), ("research",), objs.RESEARCH, "research")


def extract_ships(content: str) -> Dict[int, int]:
    return _levels_by_class(soup(content), ("military", "civil"), objs.SHIPS, "ships")


def extract_defenses(content: str) -> Dict[int, int]:
    return _levels_by_class(soup(content), ("defense",), objs.DEFENSES, "defenses")


def extract_build_token(content: str) -> str:
    tag = select_one(soup(content), "input[name=token]", "build token")
    token = tag.get("value") or ""
    if not token:
        raise ExtractionError("build token: empty")
    return token


# ---------- constructions ----------

_COUNTDOWN_RE = re.compile(
    r"(?:bauliste|ship)Countdown\(\s*getElementByIdWithCache\(\s*[\"']b_([a-z]+)(\d+)[\"']\s*\)\s*,\s*(\d+)"
)
_SLOT_BY_PREFIX = {
    "supply": "building",
    "station": "building",
    "research": "research",
    "military": "shipyard",
    "civil": "shipyard",
    "defense": "shipyard",
}


def extract_constructions(content: str) -> Constructions:
    doc = soup(content)
    select_one(doc, "#productionboxbuildingcomponent", "constructions")
    out = Constructions()
    for prefix, oid, countdown in _COUNTDOWN_RE.findall(content):
        slot = _SLOT_BY_PREFIX.get(prefix)
        if slot is None or getattr(out, f"{slot}_id"):
            continue
        setattr(out, f"{slot}_id", int(oid))
        setattr(out, f"{slot}_countdown", int(countdown))
    return out


def _cancel_section(doc: BeautifulSoup, section: str) -> Tag:
    return select_one(doc, f"#productionbox{section}component", f"{section} production box")


def extract_cancel_infos(content: str, section: str) -> CancelInfos:
    """Token and ids needed to abort the current building or research."""
    doc = soup(content)
    box = _cancel_section(doc, section)
    link = box.select_one("a.abort_link")
    if link is None:
        raise ExtractionError(f"{section}: nothing to cancel")
    m = re.search(r"cancelProduction\(\s*(\d+)\s*,\s*(\d+)", link.get("onclick") or "")
    if not m:
        raise ExtractionError(f"{section}: cancel link not understood")
    token = select_one(doc, "input[name=token]", "cancel token").get("value") or ""
    return CancelInfos(token=token, tech_id=int(m.group(1)), list_id=int(m.group(2)))


# ---------- fleets ----------

def _extract_slots(doc: BeautifulSoup) -> tuple[int, int]:
    tag = select_one(doc, "#slots", "fleet slots")
    m = re.search(r"(\d+)\s*/\s*(\d+)", tag.get_text(" "))
    if not m:
        raise ExtractionError("fleet slots: cannot parse")
    return int(m.group(1)), int(m.group(2))


def extract_fleet_dispatch(content: str) -> FleetDispatchInfos:
    doc = soup(content)
    token = select_one(doc, "input[name=token]", "fleet token").get("value") or ""
    if not token:
        raise ExtractionError("fleet token: empty")
    used, total = _extract_slots(doc)
    ships: Dict[int, int] = {}
    for li in doc.select("li[id^=button]"):
        oid = parse_int(li["id"][len("button"):], "ship id")
        level = li.select_one(".level")
        if level is None or not objs.is_ship(oid):
            continue
        ships[oid] = last_int(level.get_text(" "), f"ship {oid}")
    return FleetDispatchInfos(token=token, ships=ships, slots_in_use=used, slots_total=total)


def extract_ajax_response(content: str) -> AjaxResponse:
    """JSON answer of an ajax action (fleet send, build, relocation...)."""
    data = load_json(content, "ajax response")
    if not isinstance(data, dict):
        raise ExtractionError("ajax response: not an object")
    if "success" in data:
        ok = bool(data["success"])
    elif "status" in data:
        ok = data["status"] == "success"
    else:
        raise ExtractionError("ajax response: no status")
    errors = data.get("errors") or []
    message = str(data.get("message") or "")
    code: Optional[int] = None
    if errors:
        first = errors[0] if isinstance(errors, list) else errors
        if isinstance(first, dict):
            message = str(first.get("message") or message)
            if first.get("error") is not None:
                code = parse_int(first["error"], "error code")
        else:
            message = str(first)
        ok = False
    token = str(data.get("newAjaxToken") or data.get("token") or "")
    return AjaxResponse(ok=ok, message=message, code=code, token=token, data=data)


def _coord_in(node: Tag, css: str, field: str) -> Coordinate:
    tag = select_one(node, css, field)
    coord = Coordinate.parse(tag.get_text())
    if coord is None:
        raise ExtractionError(f"{field}: bad coordinate")
    return coord


def _fleet_side_type(node: Tag, css: str) -> CelestialType:
    icon = node.select_one(f"{css} figure.planetIcon")
    if icon is None:
        return CelestialType.PLANET
    classes = icon.get("class") or []
    if "moon" in classes:
        return CelestialType.MOON
    if "tf" in classes:
        return CelestialType.DEBRIS
    return CelestialType.PLANET


def extract_fleets(content: str) -> List[Fleet]:
    doc = soup(content)
    if doc.select_one("#movementcomponent, #movement") is None:
        raise ExtractionError("movement page not recognized")
    fleets: List[Fleet] = []
    for node in doc.select("div.fleetDetails"):
        fid = parse_int((node.get("id") or "").replace("fleet", ""), "fleet id")
        origin = _coord_in(node, ".originCoords", "origin").with_type(_fleet_side_type(node, ".originPlanet"))
        destination = _coord_in(node, ".destinationCoords", "destination").with_type(
            _fleet_side_type(node, ".destinationPlanet")
        )
        fleet = Fleet(
            id=fid,
            mission=parse_int(node.get("data-mission-type"), "mission"),
            origin=origin,
            destination=destination,
            return_flight=(node.get("data-return-flight") or "").lower() == "true",
            arrival_time=from_timestamp(node.get("data-arrival-time")),
        )
        ret = node.select_one("[data-return-time]")
        if ret is not None:
            fleet.return_time = from_timestamp(ret["data-return-time"])
        for row in node.select("table.fleetinfo tr"):
            cells = row.find_all("td")
            if len(cells) != 2:
                continue
            label = cells[0].get_text(strip=True).rstrip(":").lower()
            value = cells[1].get_text(strip=True)
            if label in _NAME_TO_ID:
                fleet.ships[_NAME_TO_ID[label]] = parse_int(value, label)
            elif label in _CARGO_LABELS:
                setattr(fleet.cargo, _CARGO_LABELS[label], parse_int(value, label))
        fleets.append(fleet)
    return fleets


def extract_cancel_fleet_token(content: str, fleet_id: int) -> str:
    node = select_one(soup(content), f"#fleet{fleet_id}", f"fleet {fleet_id}")
    link = node.select_one(".reversal a[href]")
    if link is None:
        raise ExtractionError(f"fleet {fleet_id}: no recall link")
    m = re.search(r"token=([^&\"']+)", link["href"])
    if not m:
        raise ExtractionError(f"fleet {fleet_id}: recall link without token")
    return m.group(1)


def extract_jump_gate_token(content: str) -> str:
    tag = soup(content).select_one("input[name=token]")
    token = (tag.get("value") if tag is not None else "") or script_var(content, "token")
    if not token:
        raise ExtractionError("jump gate: no token")
    return token


# ---------- galaxy ----------

def _debris_from(cell: Optional[Tag]) -> Resources:
    debris = Resources()
    if cell is None:
        return debris
    for li in cell.select(".debris-content"):
        text = li.get_text(" ", strip=True)
        label, _, value = text.partition(":")
        key = _CARGO_LABELS.get(label.strip().lower())
        if key:
            setattr(debris, key, parse_int(value, f"debris {key}"))
    return debris


def extract_galaxy_infos(content: str, galaxy: int, system: int) -> SystemInfos:
    data = load_json(content, "galaxy content")
    html = data.get("galaxy") if isinstance(data, dict) else None
    if not html:
        raise ExtractionError("galaxy content: no galaxy markup")
    doc = soup(html)
    rows = doc.select("tr.row")
    if not rows:
        raise ExtractionError("galaxy content: no rows")
    out = SystemInfos(galaxy=galaxy, system=system)
    for row in rows:
        pos = parse_int(select_one(row, "td.position", "position").get_text(strip=True), "position")
        infos = PlanetInfos(coordinate=Coordinate(galaxy, system, pos))
        planet = row.select_one("td.microplanet[data-planet-id]")
        infos.inhabited = planet is not None
        name = row.select_one("td.planetname")
        if name is not None:
            infos.name = name.get_text(strip=True)
        moon = row.select_one("td.moon[data-moon-id]")
        if moon is not None:
            infos.moon_id = parse_int(moon["data-moon-id"], "moon id")
        infos.debris = _debris_from(row.select_one("td.debris"))
        player = row.select_one("td.playername[data-playerid]")
        if player is not None:
            infos.player = PlayerInfos(
                id=parse_int(player["data-playerid"], "player id"),
                name=player.get_text(strip=True),
                rank=parse_int(player.get("data-rank") or 0, "rank"),
                points=parse_int(player.get("data-points") or 0, "points"),
            )
            infos.vacation = player.select_one(".status_abbr_vacation") is not None
            infos.noob = player.select_one(".status_abbr_noob") is not None
            infos.strong = player.select_one(".status_abbr_strong") is not None
            infos.admin = player.select_one(".status_abbr_admin") is not None
        out.positions[pos] = infos
    return out


# ---------- messages ----------

def extract_messages(content: str) -> List[MessageSummary]:
    doc = soup(content)
    out: List[MessageSummary] = []
    for li in doc.select("li.msg[data-msg-id]"):
        title = li.select_one(".msg_title")
        subject = title.get_text(" ", strip=True) if title is not None else ""
        sender = li.select_one(".msg_sender")
        date = li.select_one(".msg_date")
        out.append(
            MessageSummary(
                id=parse_int(li["data-msg-id"], "message id"),
                type=li.get("data-msg-type") or "",
                subject=subject,
                sender=sender.get_text(strip=True) if sender is not None else "",
                date=parse_game_date(date.get_text()) if date is not None else None,
                coordinate=Coordinate.parse(subject),
            )
        )
    return out

# ---------- event list ----------

def extract_event_list(content: str) -> List[EventFleet]:
    doc = soup(content)
    if doc.select_one("#eventContent, #eventListWrap") is None:
        raise ExtractionError("event list not recognized")
    out: List[EventFleet] = []
    for row in doc.select("tr.eventFleet"):
        origin = _coord_in(row, "td.coordsOrigin", "event origin").with_type(
            _fleet_side_type(row, "td.originFleet")
        )
        destination = _coord_in(row, "td.destCoords", "event destination").with_type(
            _fleet_side_type(row, "td.destFleet")
        )
        countdown = row.select_one("td.countDown")
        hostile = countdown is not None and (
            "hostile" in (countdown.get("class") or []) or countdown.select_one(".hostile") is not None
        )
        event = EventFleet(
            id=parse_int((row.get("id") or "").replace("eventRow-", ""), "event id"),
            mission=parse_int(row.get("data-mission-type"), "event mission"),
            origin=origin,
            destination=destination,
            arrival_time=from_timestamp(row["data-arrival-time"]) if row.get("data-arrival-time") else None,
            return_flight=(row.get("data-return-flight") or "").lower() == "true",
            hostile=hostile,
        )
        details = row.select_one("td.detailsFleet")
        if details is not None and details.get_text(strip=True):
            event.ship_count = last_int(details.get_text(" "), "event ships")
        sender = row.select_one("td.sendMail a[data-playerid]")
        if sender is not None:
            event.attacker_id = parse_int(sender["data-playerid"], "attacker id")
            event.attacker_name = (sender.get("title") or "").strip()
        out.append(event)
    return out


def extract_attacks(content: str) -> List[EventFleet]:
    return [e for e in extract_event_list(content) if e.hostile and e.mission in objs.ATTACK_MISSIONS]


# ---------- espionage ----------

_SECTIONS = {
    "buildings": "buildings",
    "research": "research",
    "ships": "ships",
    "defense": "defenses",
}
_ICON_ID_RE = re.compile(r"^[a-z_]*?(\d+)$")


def extract_espionage_report_list(content: str) -> List[EspionageReportSummary]:
    doc = soup(content)
    out: List[EspionageReportSummary] = []
    for li in doc.select("li.msg[data-msg-id]"):
        title = li.select_one(".msg_title")
        coord = Coordinate.parse(title.get_text(" ")) if title is not None else None
        if coord is not None:
            coord = coord.with_type(_fleet_side_type(li, ".msg_title"))
        date = li.select_one(".msg_date")
        out.append(
            EspionageReportSummary(
                id=parse_int(li["data-msg-id"], "message id"),
                type="action" if li.select_one(".espionageDefText") is not None else "report",
                coordinate=coord,
                date=parse_game_date(date.get_text()) if date is not None else None,
            )
        )
    return out


def _report_section(detail: Tag, section: str) -> Optional[Dict[int, int]]:
    ul = detail.select_one(f"ul[data-type={section}]")
    if ul is None or ul.select_one(".detail_list_fail") is not None:
        return None
    levels: Dict[int, int] = {}
    for li in ul.select("li.detail_list_el"):
        oid = 0
        for node in li.select("[class]"):
            for cls in node.get("class") or []:
                m = _ICON_ID_RE.match(cls)
                if m:
                    oid = int(m.group(1))
        if not objs.is_known(oid):
            raise ExtractionError(f"espionage {section}: unknown entry {li.get_text(' ', strip=True)!r}")
        levels[oid] = parse_int(select_one(li, "span.fright", f"espionage {section}").get_text(strip=True), section)
    return levels


def extract_espionage_report(content: str) -> EspionageReport:
    doc = soup(content)
    detail = select_one(doc, ".detail_msg[data-msg-id]", "espionage report")
    title = select_one(detail, ".msg_title", "espionage title")
    coord = Coordinate.parse(title.get_text(" "))
    if coord is None:
        raise ExtractionError("espionage report: no coordinate in title")
    report = EspionageReport(
        id=parse_int(detail["data-msg-id"], "message id"),
        coordinate=coord.with_type(_fleet_side_type(detail, ".msg_title")),
    )
    date = detail.select_one(".msg_date")
    if date is not None:
        report.date = parse_game_date(date.get_text())
    player = detail.select_one(".detail_txt [class*=status_abbr]")
    if player is not None:
        report.player_name = player.get_text(strip=True)
    for txt in detail.select(".detail_txt"):
        m = re.search(r"(\d+)\s*%", txt.get_text(" "))
        if m:
            report.counter_espionage = int(m.group(1))
    res = detail.select_one("ul[data-type=resources]")
    if res is not None:
        for li in res.select("li.resource_list_el"):
            icon = li.select_one(".resourceIcon")
            names = [c for c in (icon.get("class") or []) if c in _CARGO_LABELS or c == "energy"] if icon else []
            if names:
                value = select_one(li, ".res_value", f"espionage {names[0]}").get_text(strip=True)
                setattr(report.resources, names[0], parse_int(value, names[0]))
    for section, attr in _SECTIONS.items():
        setattr(report, attr, _report_section(detail, section))
    return report



V6 = {
    "extract_is_logged_in": extract_is_logged_in,
    "extract_server_version": extract_server_version,
    "extract_server_time": extract_server_time,
    "extract_celestial_id": extract_celestial_id,
    "extract_player": extract_player,
    "extract_is_in_vacation": extract_is_in_vacation,
    "extract_planets": extract_planets,
    "extract_resources": extract_resources,
    "extract_resources_buildings": extract_resources_buildings,
    "extract_facilities": extract_facilities,
    "extract_research": extract_research,
    "extract_ships": extract_ships,
    "extract_defenses": extract_defenses,
    "extract_build_token": extract_build_token,
    "extract_constructions": extract_constructions,
    "extract_cancel_infos": extract_cancel_infos,
    "extract_fleet_dispatch": extract_fleet_dispatch,
    "extract_ajax_response": extract_ajax_response,
    "extract_fleets": extract_fleets,
    "extract_cancel_fleet_token": extract_cancel_fleet_token,
    "extract_jump_gate_token": extract_jump_gate_token,
    "extract_galaxy_infos": extract_galaxy_infos,
    "extract_messages": extract_messages,
    "extract_event_list": extract_event_list,
    "extract_attacks": extract_attacks,
    "extract_espionage_report_list": extract_espionage_report_list,
    "extract_espionage_report": extract_espionage_report,
}
