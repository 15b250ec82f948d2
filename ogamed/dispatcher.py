"""Reads and actions against the game, one page round trip at a time.

Every action follows the same path: validate locally, read whatever state the
rules need, submit, then read the resulting page again and return what the
game reports, which can differ from what was asked for.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from . import objs
from .errors import ExtractionError, PreconditionViolation, Reason, RemoteRejection
from .interpreter import Interpreter, interpreter_for
from .objs import Mission
from .parsing import from_timestamp, parse_int_or
from .session import SessionManager
from .types import (
    AjaxResponse,
    Celestial,
    CelestialType,
    Constructions,
    Coordinate,
    EspionageReport,
    EspionageReportSummary,
    EventFleet,
    Fleet,
    MessageSummary,
    Planet,
    Resources,
    SystemInfos,
    UserInfos,
)
from .validator import Validator

logger = logging.getLogger(__name__)

# component -> construction slot it occupies
_SLOT = {
    "supplies": "building",
    "facilities": "building",
    "research": "research",
    "shipyard": "shipyard",
    "defenses": "shipyard",
}


def _check_ajax(resp: AjaxResponse, what: str) -> AjaxResponse:
    if not resp.ok:
        raise RemoteRejection(f"{what}: {resp.message or 'refused'}", code=resp.code)
    return resp


class Dispatcher:
    def __init__(self, session: SessionManager, validator: Optional[Validator] = None):
        self.session = session
        self.validator = validator or Validator()
        self._interp: Optional[Interpreter] = None
        self._interp_version: Optional[str] = None
        self._planets: Optional[List[Planet]] = None
        self._user: Optional[UserInfos] = None
        self._research: Dict[int, int] = {}

    @property
    def interp(self) -> Interpreter:
        # pinned per server version; a re-login on another version switches it
        version = self.session.server_version
        if self._interp is None or version != self._interp_version:
            self._interp = interpreter_for(version)
            self._interp_version = version
        return self._interp

    async def _ingame(self, component: str, celestial_id: Optional[int] = None, **extra: Any) -> str:
        params: Dict[str, Any] = {"page": "ingame", "component": component}
        if celestial_id:
            params["cp"] = celestial_id
        params.update(extra)
        return await self.session.get_page(params)

    # ---------- reads ----------

    async def get_page_content(self, params: Mapping[str, Any], data: Optional[Mapping[str, Any]] = None) -> str:
        if data:
            return await self.session.post_page(params, data)
        return await self.session.get_page(params)

    async def get_planets(self) -> List[Planet]:
        page = await self._ingame("overview")
        planets = self.interp.extract_planets(page)
        # keep snapshots already fetched for celestials that still exist
        old = {c.id: c for c in self.celestials()}
        for p in planets:
            for fresh in (p, p.moon):
                prev = old.get(fresh.id) if fresh is not None else None
                if prev is not None:
                    fresh.resources = prev.resources
                    fresh.buildings = prev.buildings
                    fresh.ships = prev.ships
                    fresh.defenses = prev.defenses
        self._planets = planets
        return planets

    def celestials(self) -> List[Celestial]:
        out: List[Celestial] = []
        for p in self._planets or []:
            out.append(p)
            if p.moon is not None:
                out.append(p.moon)
        return out

    async def get_celestial(self, celestial_id: int) -> Celestial:
        if self._planets is None or not any(c.id == celestial_id for c in self.celestials()):
            await self.get_planets()
        return self.validator.owned(self.celestials(), celestial_id)

    async def get_user_infos(self) -> UserInfos:
        self._user = self.interp.extract_player(await self._ingame("overview"))
        return self._user

    async def get_resources(self, celestial_id: int, stale_ok: bool = False) -> Resources:
        c = await self.get_celestial(celestial_id)
        if stale_ok and c.resources is not None:
            return c.resources
        c.resources = self.interp.extract_resources(await self._ingame("overview", celestial_id))
        return c.resources

    async def _levels(self, celestial_id: int, component: str, op: str, attr: str, stale_ok: bool) -> Dict[int, int]:
        c = await self.get_celestial(celestial_id)
        cached: Dict[int, int] = getattr(c, attr)
        table = {
            "buildings": objs.RESOURCES_BUILDINGS if component == "supplies" else objs.FACILITIES,
            "ships": objs.SHIPS,
            "defenses": objs.DEFENSES,
        }[attr]
        if stale_ok and any(k in cached for k in table):
            return {k: v for k, v in cached.items() if k in table}
        levels = getattr(self.interp, op)(await self._ingame(component, celestial_id))
        cached.update(levels)
        return levels

    async def get_resources_buildings(self, celestial_id: int, stale_ok: bool = False) -> Dict[int, int]:
        return await self._levels(celestial_id, "supplies", "extract_resources_buildings", "buildings", stale_ok)

    async def get_facilities(self, celestial_id: int, stale_ok: bool = False) -> Dict[int, int]:
        return await self._levels(celestial_id, "facilities", "extract_facilities", "buildings", stale_ok)

    async def get_research(self, celestial_id: int, stale_ok: bool = False) -> Dict[int, int]:
        # research is account-wide, the page still wants a celestial
        if stale_ok and self._research:
            return dict(self._research)
        self._research = self.interp.extract_research(await self._ingame("research", celestial_id))
        return dict(self._research)

    async def get_ships(self, celestial_id: int, stale_ok: bool = False) -> Dict[int, int]:
        return await self._levels(celestial_id, "shipyard", "extract_ships", "ships", stale_ok)

    async def get_defenses(self, celestial_id: int, stale_ok: bool = False) -> Dict[int, int]:
        return await self._levels(celestial_id, "defenses", "extract_defenses", "defenses", stale_ok)

    async def get_constructions(self, celestial_id: int) -> Constructions:
        await self.get_celestial(celestial_id)
        return self.interp.extract_constructions(await self._ingame("overview", celestial_id))

    async def get_fleets(self) -> List[Fleet]:
        return self.interp.extract_fleets(await self._ingame("movement"))

    async def get_galaxy_infos(self, galaxy: int, system: int) -> SystemInfos:
        self.validator.check_coordinate(Coordinate(galaxy, system, 1))
        content = await self.session.post_ajax(
            {"page": "ingame", "component": "galaxy", "action": "fetchGalaxyContent", "ajax": 1, "asJson": 1},
            {"galaxy": galaxy, "system": system},
        )
        return self.interp.extract_galaxy_infos(content, galaxy, system)

    async def get_messages(self, tab: int = 20) -> List[MessageSummary]:
        return self.interp.extract_messages(
            await self.session.get_ajax({"page": "messages", "tab": tab, "ajax": 1})
        )

    async def get_espionage_report_list(self) -> List[EspionageReportSummary]:
        return self.interp.extract_espionage_report_list(
            await self.session.get_ajax({"page": "messages", "tab": 20, "ajax": 1})
        )

    async def get_espionage_report(self, msg_id: int) -> EspionageReport:
        return self.interp.extract_espionage_report(
            await self.session.get_ajax({"page": "messages", "messageId": msg_id, "tabid": 20, "ajax": 1})
        )

    async def get_espionage_report_for(self, coordinate: Coordinate) -> EspionageReport:
        """Latest full report about one coordinate."""
        self.validator.check_coordinate(coordinate)
        reports = [
            r for r in await self.get_espionage_report_list()
            if r.type == "report" and r.coordinate == coordinate
        ]
        if not reports:
            raise PreconditionViolation(Reason.NO_ESPIONAGE_REPORT, str(coordinate))
        return await self.get_espionage_report(max(reports, key=lambda r: r.id).id)

    async def get_event_list(self) -> List[EventFleet]:
        return self.interp.extract_event_list(
            await self.session.get_ajax({"page": "componentOnly", "component": "eventList", "ajax": 1})
        )

    async def get_attacks(self) -> List[EventFleet]:
        return self.interp.extract_attacks(
            await self.session.get_ajax({"page": "componentOnly", "component": "eventList", "ajax": 1})
        )

    async def is_under_attack(self) -> bool:
        return bool(await self.get_attacks())

    async def get_slots(self) -> Dict[str, int]:
        dispatch = self.interp.extract_fleet_dispatch(await self._ingame("fleetdispatch"))
        return {"in_use": dispatch.slots_in_use, "total": dispatch.slots_total, "free": dispatch.free_slots}

    async def server_time(self) -> datetime:
        return from_timestamp(self.interp.extract_server_time(await self._ingame("overview")))

    async def is_vacation_mode(self) -> bool:
        return self.interp.extract_is_in_vacation(await self._ingame("overview"))

    # ---------- building ----------

    async def build(self, celestial_id: int, obj_id: int, quantity: int = 1) -> Constructions:
        """Queue a building level, a research, or a batch of ships/defenses.

        Returns the construction queues as the overview shows them afterwards.
        """
        celestial = await self.get_celestial(celestial_id)
        self.validator.check_build(obj_id, quantity)
        component = objs.component_for(obj_id)
        page = await self._ingame(component, celestial_id)
        token = self.interp.extract_build_token(page)
        data: Dict[str, Any] = {"token": token, "modus": 1, "type": obj_id}
        if objs.is_countable(obj_id):
            data["menge"] = quantity
        reply = await self.session.post_page({"page": "ingame", "component": component, "cp": celestial_id}, data)
        if reply.lstrip().startswith("{"):
            _check_ajax(self.interp.extract_ajax_response(reply), f"build {objs.name_of(obj_id)}")

        cons = await self.get_constructions(celestial_id)
        slot = _SLOT[component]
        queued = getattr(cons, f"{slot}_id")
        # a finished countdown means the slot is about to free up, not that our order runs
        if getattr(cons, f"{slot}_countdown") <= 0:
            queued = 0
        if (slot == "shipyard" and not queued) or (slot != "shipyard" and queued != obj_id):
            raise RemoteRejection(f"{objs.name_of(obj_id)} was not queued on {celestial.name}")
        logger.info("Queued %s x%d on %s (%ss)", objs.name_of(obj_id), quantity, celestial.name,
                    getattr(cons, f"{slot}_countdown"))
        return cons

    async def build_building(self, celestial_id: int, building_id: int) -> Constructions:
        self.validator.check_build(building_id, 1, objs.BUILDINGS)
        return await self.build(celestial_id, building_id)

    async def build_technology(self, celestial_id: int, tech_id: int) -> Constructions:
        self.validator.check_build(tech_id, 1, objs.RESEARCH)
        return await self.build(celestial_id, tech_id)

    async def build_ships(self, celestial_id: int, ship_id: int, quantity: int) -> Constructions:
        self.validator.check_build(ship_id, quantity, objs.SHIPS)
        return await self.build(celestial_id, ship_id, quantity)

    async def build_defense(self, celestial_id: int, defense_id: int, quantity: int) -> Constructions:
        self.validator.check_build(defense_id, quantity, objs.DEFENSES)
        return await self.build(celestial_id, defense_id, quantity)

    async def _cancel(self, celestial_id: int, section: str) -> Constructions:
        celestial = await self.get_celestial(celestial_id)
        infos = self.interp.extract_cancel_infos(await self._ingame("overview", celestial_id), section)
        await self._ingame(
            "overview", celestial_id,
            modus=2, token=infos.token, type=infos.tech_id, listid=infos.list_id, action="cancel",
        )
        cons = await self.get_constructions(celestial_id)
        if getattr(cons, f"{section}_id") == infos.tech_id:
            raise RemoteRejection(f"{objs.name_of(infos.tech_id)} is still in progress on {celestial.name}")
        logger.info("Cancelled %s on %s", objs.name_of(infos.tech_id), celestial.name)
        return cons

    async def cancel_building(self, celestial_id: int) -> Constructions:
        return await self._cancel(celestial_id, "building")

    async def cancel_research(self, celestial_id: int) -> Constructions:
        return await self._cancel(celestial_id, "research")

    # ---------- fleets ----------

    async def send_fleet(
        self,
        celestial_id: int,
        ships: Mapping[int, int],
        destination: Coordinate,
        mission: int,
        speed: int = 10,
        cargo: Optional[Resources] = None,
        holding_time: int = 0,
        union_id: int = 0,
    ) -> Fleet:
        """Send ships and return the fleet as the movement page reports it."""
        if mission == Mission.RECYCLE:
            destination = destination.with_type(CelestialType.DEBRIS)
        self.validator.check_fleet_request(ships, destination, mission, speed)
        ships = {oid: n for oid, n in ships.items() if n > 0}
        cargo = cargo or Resources()
        origin = await self.get_celestial(celestial_id)

        page = await self._ingame("fleetdispatch", celestial_id)
        dispatch = self.interp.extract_fleet_dispatch(page)
        player = self.interp.extract_player(page)
        target = None
        if mission != Mission.EXPEDITION:
            system = await self.get_galaxy_infos(destination.galaxy, destination.system)
            target = system.position(destination.position)
        astrophysics = 0
        if mission == Mission.COLONIZE:
            astrophysics = (await self.get_research(celestial_id, stale_ok=True)).get(objs.ASTROPHYSICS, 0)
        self.validator.check_fleet_state(
            ships, mission, dispatch, target,
            own_points=player.points,
            own_vacation=self.interp.extract_is_in_vacation(page),
            astrophysics=astrophysics,
        )

        data: Dict[str, Any] = {
            "token": dispatch.token,
            "galaxy": destination.galaxy,
            "system": destination.system,
            "position": destination.position,
            "type": int(destination.type),
            "metal": cargo.metal,
            "crystal": cargo.crystal,
            "deuterium": cargo.deuterium,
            "mission": int(mission),
            "speed": speed,
            "retreatAfterDefenderRetreat": 0,
            "union": union_id,
            "holdingtime": holding_time,
        }
        for oid, n in ships.items():
            data[f"am{oid}"] = n
        reply = await self.session.post_ajax(
            {"page": "ingame", "component": "fleetdispatch", "action": "sendFleet", "ajax": 1, "asJson": 1},
            data,
        )
        _check_ajax(self.interp.extract_ajax_response(reply), "send fleet")
        origin.ships = {}

        key = (destination.galaxy, destination.system, destination.position)
        sent = [
            f for f in await self.get_fleets()
            if f.mission == mission
            and not f.return_flight
            and f.origin == origin.coordinate
            and (f.destination.galaxy, f.destination.system, f.destination.position) == key
        ]
        if not sent:
            raise ExtractionError("sent fleet not found on the movement page")
        fleet = max(sent, key=lambda f: f.id)
        logger.info("Fleet %s sent from %s to %s (mission %s), arrives %s",
                    fleet.id, origin.coordinate, destination, mission, fleet.arrival_time)
        return fleet

    async def cancel_fleet(self, fleet_id: int) -> Fleet:
        page = await self._ingame("movement")
        fleet = next((f for f in self.interp.extract_fleets(page) if f.id == fleet_id), None)
        if fleet is None:
            raise PreconditionViolation(Reason.UNKNOWN_FLEET, str(fleet_id))
        if fleet.return_flight:
            raise PreconditionViolation(Reason.FLEET_NOT_RECALLABLE, str(fleet_id))
        token = self.interp.extract_cancel_fleet_token(page, fleet_id)
        await self._ingame("movement", **{"return": fleet_id, "token": token})
        recalled = next((f for f in await self.get_fleets() if f.id == fleet_id), None)
        if recalled is None:
            raise ExtractionError(f"fleet {fleet_id} vanished from the movement page")
        if not recalled.return_flight:
            raise RemoteRejection(f"fleet {fleet_id} was not recalled")
        return recalled

    async def jump_gate(self, origin_id: int, destination_id: int, ships: Mapping[int, int]) -> Dict[str, Any]:
        self.validator.check_ships(ships)
        origin = await self.get_celestial(origin_id)
        destination = await self.get_celestial(destination_id)
        self.validator.check_jump(origin, destination, ships)
        page = await self.session.get_ajax(
            {"page": "ajax", "component": "jumpgate", "overlay": 1, "ajax": 1, "cp": origin_id}
        )
        data: Dict[str, Any] = {"token": self.interp.extract_jump_gate_token(page), "targetSpaceObjectId": destination_id}
        for oid, n in ships.items():
            if n > 0:
                data[f"ship_{oid}"] = n
        reply = await self.session.post_ajax(
            {"page": "ajax", "component": "jumpgate", "action": "executeJump", "ajax": 1, "asJson": 1},
            data,
        )
        resp = _check_ajax(self.interp.extract_ajax_response(reply), "jump gate")
        origin.ships = {}
        destination.ships = {}
        return {"success": True, "recharge_countdown": parse_int_or(resp.data.get("cooldown"), 0)}

    # ---------- relocation ----------

    async def reserve_relocation(self, celestial_id: int, destination: Coordinate) -> Coordinate:
        celestial = await self.get_celestial(celestial_id)
        self.validator.check_relocation(celestial, destination)
        system = await self.get_galaxy_infos(destination.galaxy, destination.system)
        if system.position(destination.position).inhabited:
            raise PreconditionViolation(Reason.TARGET_INHABITED, str(destination))
        token = self.interp.extract_build_token(await self._ingame("galaxy", celestial_id))
        reply = await self.session.post_ajax(
            {"page": "ingame", "component": "galaxy", "action": "reservePlanetRelocation", "ajax": 1, "asJson": 1},
            {
                "token": token,
                "cp": celestial_id,
                "galaxy": destination.galaxy,
                "system": destination.system,
                "position": destination.position,
            },
        )
        _check_ajax(self.interp.extract_ajax_response(reply), "reserve relocation")
        self.validator.reserve(celestial_id, destination)
        return destination

    async def release_relocation(self, celestial_id: int) -> Coordinate:
        await self.get_celestial(celestial_id)
        destination = self.validator.reservation(celestial_id)
        token = self.interp.extract_build_token(await self._ingame("overview", celestial_id))
        reply = await self.session.post_ajax(
            {"page": "ingame", "component": "overview", "action": "cancelPlanetRelocation", "ajax": 1, "asJson": 1},
            {"token": token, "cp": celestial_id},
        )
        _check_ajax(self.interp.extract_ajax_response(reply), "release relocation")
        self.validator.release(celestial_id)
        return destination

