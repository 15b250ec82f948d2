"""One account, end to end: command descriptors in, tagged results out."""
from __future__ import annotations

import base64
import dataclasses
import inspect
import logging
import secrets
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import aiohttp

from .dispatcher import Dispatcher
from .errors import InternalError, InvalidCommand, OGameError
from .executor import CommandExecutor, ManualToken
from . import objs
from .objs import Mission
from .session import SessionManager
from .types import Account, CelestialType, Coordinate, Resources
from .validator import Validator

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class Command:
    name: str
    params: Dict[str, Any] = dataclasses.field(default_factory=dict)


class Result:
    @staticmethod
    def ok(data: Any = None) -> Dict[str, Any]:
        return {"status": "ok", "result": jsonable(data)}

    @staticmethod
    def error(exc: OGameError) -> Dict[str, Any]:
        return {"status": "error", **exc.to_dict()}


def jsonable(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Coordinate):
        return obj.to_dict()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: jsonable(getattr(obj, f.name)) for f in dataclasses.fields(obj) if f.repr}
    if isinstance(obj, Mapping):
        return {k: jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [jsonable(v) for v in obj]
    if isinstance(obj, bytes):
        return base64.b64encode(obj).decode("ascii")
    return obj


def _ships(value: Any) -> Dict[int, int]:
    # {"204": 10} from JSON, or [[204, 10], ...]
    items = value.items() if isinstance(value, Mapping) else (value or [])
    return {int(k): int(v) for k, v in items}


class OGame:
    """Session, executor, validator and dispatcher wired for one account.

    Every command that talks to the game goes through the executor, so callers
    may fire commands concurrently without ever overlapping requests.
    """

    def __init__(
        self,
        account: Account,
        *,
        http: Optional[aiohttp.ClientSession] = None,
        strength_ratio: float = 5.0,
        session: Optional[SessionManager] = None,
    ):
        self.account = account
        self.session = session or SessionManager(account, http=http)
        self.validator = Validator(strength_ratio)
        self.dispatcher = Dispatcher(self.session, self.validator)
        self.executor = CommandExecutor(before_task=self.session.ensure_logged_in)
        self._manual: Dict[str, ManualToken] = {}
        check = self.validator.check_build
        self._commands: Dict[str, Callable[..., Awaitable[Any]]] = {
            "login": self.login,
            "logout": self.logout,
            "get_state": self.get_state,
            "enter_manual": self.enter_manual,
            "leave_manual": self.leave_manual,
            "get_tasks": self.get_tasks,
            "captcha_challenge": self.captcha_challenge,
            "solve_captcha": self.solve_captcha,
            "server_infos": self.server_infos,
            "get_user_infos": self._remote(self.dispatcher.get_user_infos),
            "get_planets": self._remote(self.dispatcher.get_planets),
            "get_celestial": self._remote(self.dispatcher.get_celestial),
            "get_resources": self._remote(self.dispatcher.get_resources),
            "get_resources_buildings": self._remote(self.dispatcher.get_resources_buildings),
            "get_facilities": self._remote(self.dispatcher.get_facilities),
            "get_research": self._remote(self.dispatcher.get_research),
            "get_ships": self._remote(self.dispatcher.get_ships),
            "get_defenses": self._remote(self.dispatcher.get_defenses),
            "get_constructions": self._remote(self.dispatcher.get_constructions),
            "get_fleets": self._remote(self.dispatcher.get_fleets),
            "get_galaxy_infos": self._remote(
                self.dispatcher.get_galaxy_infos,
                lambda galaxy, system: self.validator.check_coordinate(Coordinate(int(galaxy), int(system), 1)),
            ),
            "get_messages": self._remote(self.dispatcher.get_messages),
            "get_espionage_report_list": self._remote(self.dispatcher.get_espionage_report_list),
            "get_espionage_report": self._remote(self.dispatcher.get_espionage_report),
            "get_espionage_report_for": self.get_espionage_report_for,
            "get_event_list": self._remote(self.dispatcher.get_event_list),
            "get_attacks": self._remote(self.dispatcher.get_attacks),
            "is_under_attack": self._remote(self.dispatcher.is_under_attack),
            "get_slots": self._remote(self.dispatcher.get_slots),
            "server_time": self._remote(self.dispatcher.server_time),
            "is_vacation_mode": self._remote(self.dispatcher.is_vacation_mode),
            "page_content": self._remote(self.dispatcher.get_page_content),
            "build": self._remote(
                self.dispatcher.build,
                lambda celestial_id, obj_id, quantity=1: check(int(obj_id), int(quantity)),
            ),
            "build_building": self._remote(
                self.dispatcher.build_building,
                lambda celestial_id, building_id: check(int(building_id), 1, objs.BUILDINGS),
            ),
            "build_technology": self._remote(
                self.dispatcher.build_technology,
                lambda celestial_id, tech_id: check(int(tech_id), 1, objs.RESEARCH),
            ),
            "build_ships": self._remote(
                self.dispatcher.build_ships,
                lambda celestial_id, ship_id, quantity: check(int(ship_id), int(quantity), objs.SHIPS),
            ),
            "build_defense": self._remote(
                self.dispatcher.build_defense,
                lambda celestial_id, defense_id, quantity: check(int(defense_id), int(quantity), objs.DEFENSES),
            ),
            "cancel_building": self._remote(self.dispatcher.cancel_building),
            "cancel_research": self._remote(self.dispatcher.cancel_research),
            "send_fleet": self.send_fleet,
            "cancel_fleet": self._remote(self.dispatcher.cancel_fleet),
            "jump_gate": self.jump_gate,
            "reserve_relocation": self.reserve_relocation,
            "release_relocation": self._remote(self.dispatcher.release_relocation),
        }

    @property
    def commands(self) -> list[str]:
        return sorted(self._commands)

    async def start(self) -> None:
        await self.session.start()
        self.executor.start()

    async def close(self) -> None:
        await self.executor.close()
        await self.session.close()

    # ---------- boundary ----------

    async def execute(self, command: Command) -> Dict[str, Any]:
        handler = self._commands.get(command.name)
        if handler is None:
            return Result.error(InvalidCommand(f"unknown command {command.name!r}"))
        params = dict(command.params or {})
        try:
            inspect.signature(handler).bind(**params)
        except TypeError as e:
            return Result.error(InvalidCommand(f"{command.name}: {e}"))
        try:
            data = await handler(**params)
        except OGameError as e:
            logger.info("%s -> %s: %s", command.name, e.kind, e.message)
            return Result.error(e)
        except (KeyError, ValueError) as e:
            return Result.error(InvalidCommand(f"{command.name}: bad parameter {e}"))
        except Exception as e:
            logger.exception("Command %s crashed", command.name)
            return Result.error(InternalError(f"{type(e).__name__}: {e}"))
        return Result.ok(data)

    def _remote(
        self,
        fn: Callable[..., Awaitable[Any]],
        check: Optional[Callable[..., None]] = None,
    ) -> Callable[..., Awaitable[Any]]:
        """Wrap a dispatcher call so it runs in the executor lane.

        `check` takes the same parameters and runs first, outside the lane, so
        a request that can never succeed fails without waiting or logging in.
        """

        async def run(**params: Any) -> Any:
            if check is not None:
                check(**params)
            handle = self.executor.submit(lambda: fn(**params), name=fn.__name__)
            return await handle

        run.__signature__ = inspect.signature(fn)  # type: ignore[attr-defined]
        run.__name__ = fn.__name__
        return run

    async def _in_lane(self, name: str, fn: Callable[[], Awaitable[Any]], prepare: bool = True) -> Any:
        return await self.executor.submit(fn, name=name, prepare=prepare)

    # ---------- session commands ----------

    async def login(self) -> Dict[str, Any]:
        reused = await self._in_lane("login", self.session.login_with_existing_cookies, prepare=False)
        return {"state": self.session.state.value, "reused_cookies": reused}

    async def logout(self) -> Dict[str, Any]:
        await self._in_lane("logout", self.session.logout, prepare=False)
        return {"state": self.session.state.value}

    async def get_state(self) -> Dict[str, Any]:
        return {**self.executor.state(), "auth": self.session.state.value}

    async def get_tasks(self) -> list:
        return self.executor.tasks()

    async def enter_manual(self) -> Dict[str, Any]:
        """Hold the lane until leave_manual; queued commands wait meanwhile."""
        token = await self.executor.enter_manual()
        token_id = secrets.token_hex(8)
        self._manual[token_id] = token
        logger.info("%s: manual mode held by %s", self.account.login, token_id)
        return {"token": token_id, "regime": self.executor.regime.value}

    async def leave_manual(self, token: str) -> Dict[str, Any]:
        held = self._manual.get(str(token))
        if held is None:
            raise InvalidCommand("token does not hold manual mode")
        self.executor.leave_manual(held)
        del self._manual[str(token)]
        return {"regime": self.executor.regime.value, "queue_depth": self.executor.queue_depth}

    async def captcha_challenge(self, media: bool = False) -> Optional[Dict[str, Any]]:
        async def fetch() -> Optional[Dict[str, Any]]:
            challenge = await self.session.captcha_challenge()
            if challenge is None:
                return None
            out: Dict[str, Any] = {"id": challenge.id, "status": challenge.status}
            if media:
                out["question"] = await self.session.captcha_question(challenge.id)
                out["icons"] = await self.session.captcha_icons(challenge.id)
            return out

        return await self._in_lane("captcha_challenge", fetch, prepare=False)

    async def solve_captcha(self, challenge_id: str, answer: int) -> Dict[str, Any]:
        await self._in_lane(
            "solve_captcha",
            lambda: self.session.resolve_captcha(str(challenge_id), int(answer)),
            prepare=False,
        )
        return {"state": self.session.state.value}

    async def server_infos(self) -> Dict[str, Any]:
        return {
            "url": self.session.server_url,
            "version": self.session.server_version,
            "generation": self.dispatcher.interp.generation if self.session.server_version else None,
            "universe": self.account.universe,
            "language": self.account.lang,
            "user_agent": self.session.user_agent,
            "bytes_uploaded": self.session.bytes_uploaded,
            "bytes_downloaded": self.session.bytes_downloaded,
        }

    # ---------- actions with structured parameters ----------

    async def send_fleet(self, celestial_id: int, ships: Any, galaxy: int, system: int, position: int,
                         mission: int, type: int = 1, speed: int = 10, metal: int = 0, crystal: int = 0,
                         deuterium: int = 0, holding_time: int = 0, union_id: int = 0):
        destination = Coordinate(int(galaxy), int(system), int(position), CelestialType(int(type)))
        cargo = Resources(metal=int(metal), crystal=int(crystal), deuterium=int(deuterium))
        ship_map = _ships(ships)
        chosen = Mission(int(mission))
        target = destination.with_type(CelestialType.DEBRIS) if chosen == Mission.RECYCLE else destination
        self.validator.check_fleet_request(ship_map, target, chosen, int(speed))
        return await self._in_lane(
            "send_fleet",
            lambda: self.dispatcher.send_fleet(
                int(celestial_id), ship_map, destination, chosen, int(speed),
                cargo, int(holding_time), int(union_id),
            ),
        )

    async def jump_gate(self, origin_id: int, destination_id: int, ships: Any):
        ship_map = _ships(ships)
        self.validator.check_ships(ship_map)
        return await self._in_lane(
            "jump_gate",
            lambda: self.dispatcher.jump_gate(int(origin_id), int(destination_id), ship_map),
        )

    async def get_espionage_report_for(self, galaxy: int, system: int, position: int, type: int = 1):
        coordinate = Coordinate(int(galaxy), int(system), int(position), CelestialType(int(type)))
        self.validator.check_coordinate(coordinate)
        return await self._in_lane(
            "get_espionage_report_for", lambda: self.dispatcher.get_espionage_report_for(coordinate)
        )

    async def reserve_relocation(self, celestial_id: int, galaxy: int, system: int, position: int):
        destination = Coordinate(int(galaxy), int(system), int(position))
        self.validator.check_coordinate(destination)
        return await self._in_lane(
            "reserve_relocation",
            lambda: self.dispatcher.reserve_relocation(int(celestial_id), destination),
        )
