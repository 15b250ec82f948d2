from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from http.cookies import SimpleCookie
from typing import Any, Dict, List, Mapping, Optional

import aiohttp
import pyotp
from yarl import URL

from . import captcha, persistence
from .errors import (
    AuthenticationError,
    CaptchaRequired,
    ExtractionError,
    ProxyUnavailable,
    RemoteRejection,
    RequestTimeout,
    TransientNetworkError,
)
from .extract_v6 import extract_is_logged_in, extract_server_version
from .types import Account, AuthState, CaptchaChallenge

LOBBY = URL("https://lobby.ogame.gameforge.com")
AUTH_URL = URL("https://gameforge.com/api/v1/auth/thin/sessions")
TOKEN_COOKIE = "gf-token-production"
DEFAULT_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)

logger = logging.getLogger(__name__)


@dataclass
class Reply:
    status: int
    url: URL
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except json.JSONDecodeError as e:
            raise ExtractionError(f"{self.url}: not JSON ({e})") from e


class SessionManager:
    """Owns one account's authenticated session with the game.

    All state transitions happen under a single lock, so a second login
    started while one is running waits for it instead of racing.
    """

    def __init__(
        self,
        account: Account,
        *,
        http: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        max_timeouts: int = 3,
        captcha_poll_attempts: int = 10,
        captcha_poll_interval: float = 1.0,
    ):
        self.account = account
        self.user_agent = account.user_agent or DEFAULT_UA
        self.proxy = account.proxy or None  # прокси указываем на уровне запроса
        self.http = http
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_timeouts = max_timeouts
        self.captcha_poll_attempts = captcha_poll_attempts
        self.captcha_poll_interval = captcha_poll_interval

        self.state = AuthState.LOGGED_OUT
        self.server_url = ""
        self.server_version = ""
        self.challenge: Optional[CaptchaChallenge] = None
        self.bearer = ""
        self.bytes_uploaded = 0
        self.bytes_downloaded = 0

        self._lock = asyncio.Lock()
        self._generation = 0
        self._timeouts = 0
        self._bad_credentials = False

    # ---------- lifecycle ----------

    async def start(self) -> None:
        if not self.http or self.http.closed:
            self.http = aiohttp.ClientSession(
                headers={"User-Agent": self.user_agent},
                cookie_jar=aiohttp.CookieJar(unsafe=True),
            )

    async def close(self) -> None:
        if self.http and not self.http.closed:
            await self.http.close()

    def set_user_agent(self, user_agent: str) -> None:
        self.user_agent = user_agent or DEFAULT_UA

    def _set_state(self, state: AuthState) -> None:
        if state is not self.state:
            logger.info("%s: %s -> %s", self.account.login, self.state.value, state.value)
        self.state = state

    @property
    def is_logged_in(self) -> bool:
        return self.state is AuthState.LOGGED_IN

    def totp_code(self) -> str:
        # 6 digits, 30 s step; the lobby accepts one step of clock skew either way
        return pyotp.TOTP(self.account.totp_secret, digits=6, interval=30).now()

    # ---------- cookies ----------

    def export_cookies(self) -> List[Dict[str, str]]:
        jar = getattr(self.http, "cookie_jar", None)
        if jar is None:
            return []
        return [
            {
                "name": m.key,
                "value": m.value,
                "domain": m["domain"],
                "path": m["path"] or "/",
            }
            for m in jar
        ]

    def _set_cookie(self, name: str, value: str, domain: str, path: str = "/") -> None:
        jar = getattr(self.http, "cookie_jar", None)
        if jar is None:
            return
        c: SimpleCookie = SimpleCookie()
        c[name] = value
        c[name]["domain"] = domain
        c[name]["path"] = path
        jar.update_cookies(c, response_url=URL(f"https://{domain.lstrip('.')}/"))

    def restore_cookies(self, cookies: List[Dict[str, str]]) -> None:
        for c in cookies:
            domain = c.get("domain") or ""
            if not domain:
                continue
            self._set_cookie(c["name"], c.get("value") or "", domain, c.get("path") or "/")
            if c["name"] == TOKEN_COOKIE:
                self.bearer = c.get("value") or ""

    def _persist(self) -> None:
        persistence.save_cookies(self.account.login, self.export_cookies())
        persistence.save_state(self.account.login, self.server_url, self.server_version)

    # ---------- transport ----------

    async def _request(
        self,
        method: str,
        url: URL,
        *,
        params: Optional[Mapping[str, Any]] = None,
        data: Any = None,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Reply:
        """One round trip. Network trouble is classified here and nowhere else."""
        if not self.http or self.http.closed:
            raise RuntimeError("Session not started; call start() first")
        hdrs = {"User-Agent": self.user_agent}
        hdrs.update(headers or {})
        try:
            async with self.http.request(
                method,
                url,
                params=params,
                data=data,
                json=json_body,
                headers=hdrs,
                proxy=self.proxy,
                timeout=self.timeout,
            ) as r:
                body = await r.read()
                reply = Reply(status=r.status, url=URL(str(r.url)), headers=r.headers, body=body)
        except asyncio.TimeoutError as e:
            self._note_timeout()
            raise RequestTimeout(f"{method} {url.path}: timed out") from e
        except (aiohttp.ClientProxyConnectionError, aiohttp.ClientHttpProxyError) as e:
            raise ProxyUnavailable(f"proxy error: {e}") from e
        except aiohttp.ClientError as e:
            raise TransientNetworkError(f"{method} {url.path}: {e}") from e

        self._timeouts = 0
        self.bytes_downloaded += len(reply.body)
        if isinstance(data, Mapping):
            self.bytes_uploaded += sum(len(str(k)) + len(str(v)) for k, v in data.items())
        if reply.status == 407:
            raise ProxyUnavailable("proxy authentication required")
        if reply.status == 429:
            raise TransientNetworkError(f"{url.host}: 429 Too Many Requests")
        if 500 <= reply.status < 600:
            raise TransientNetworkError(f"{url.host}: {reply.status} server error")
        return reply

    def _note_timeout(self) -> None:
        self._timeouts += 1
        if self._timeouts >= self.max_timeouts and self.state is AuthState.LOGGED_IN:
            logger.warning("%s: %d timeouts in a row, session considered expired",
                           self.account.login, self._timeouts)
            self._set_state(AuthState.EXPIRED)

    # ----------------- Вход через лобби -----------------

    async def _lobby_configuration(self) -> tuple[str, str]:
        reply = await self._request("GET", LOBBY / "config" / "configuration.js")
        env = re.search(r"gameEnvironmentId\s*[:=]\s*[\"']([^\"']+)", reply.text)
        platform = re.search(r"platformGameId\s*[:=]\s*[\"']([^\"']+)", reply.text)
        if not env or not platform:
            raise ExtractionError("lobby configuration: ids not found")
        return env.group(1), platform.group(1)

    async def _post_sessions(self, env_id: str, platform_id: str) -> str:
        payload = {
            "autoGameAccountCreation": "false",
            "gameEnvironmentId": env_id,
            "platformGameId": platform_id,
            "gfLang": self.account.lang or "en",
            "locale": f"{self.account.lang or 'en'}_GB",
            "identity": self.account.login,
            "password": self.account.password,
        }
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if self.account.totp_secret:
            headers["tnt-2fa-code"] = self.totp_code()
            headers["tnt-installation-id"] = ""
        reply = await self._request("POST", AUTH_URL, data=payload, headers=headers)
        if reply.status == 409:
            challenge_id = captcha.challenge_id_from_header(reply.headers.get(captcha.CHALLENGE_HEADER, ""))
            if not challenge_id:
                raise ExtractionError("409 without challenge id")
            self.challenge = CaptchaChallenge(id=challenge_id)
            self._set_state(AuthState.CAPTCHA_PENDING)
            logger.warning("%s: captcha required (%s)", self.account.login, challenge_id)
            raise CaptchaRequired(challenge_id)
        if reply.status in (401, 403):
            raise AuthenticationError("bad credentials")
        if reply.status not in (200, 201):
            raise RemoteRejection(f"lobby login answered {reply.status}", code=reply.status)
        token = (reply.json() or {}).get("token")
        if not token:
            raise ExtractionError("lobby login: no token in response")
        return token

    async def _lobby_json(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        reply = await self._request(
            "GET", LOBBY / path.lstrip("/"), params=params,
            headers={"Authorization": f"Bearer {self.bearer}"},
        )
        if reply.status == 401:
            raise AuthenticationError("lobby token rejected")
        if reply.status != 200:
            raise RemoteRejection(f"lobby {path} answered {reply.status}", code=reply.status)
        return reply.json()

    async def _enter_game(self) -> str:
        """Pick the game account for the configured universe and follow its login link."""
        accounts = await self._lobby_json("/api/users/me/accounts")
        servers = await self._lobby_json("/api/servers")
        lang = self.account.lang or "en"
        universe = self.account.universe.lower()
        server = next(
            (s for s in servers
             if s.get("language") == lang and (not universe or str(s.get("name", "")).lower() == universe)),
            None,
        )
        if server is None:
            raise RemoteRejection(f"universe {self.account.universe!r} ({lang}) not found")
        acc = next(
            (a for a in accounts
             if (a.get("server") or {}).get("number") == server.get("number")
             and (a.get("server") or {}).get("language") == lang),
            None,
        )
        if acc is None:
            raise RemoteRejection(f"no game account on {server.get('name')}")
        link = await self._lobby_json(
            "/api/users/me/loginLink",
            params={
                "id": acc["id"],
                "server[language]": lang,
                "server[number]": server["number"],
                "clickedButton": "account_list",
            },
        )
        if not isinstance(link, dict) or not link.get("url"):
            raise ExtractionError("login link: no url")
        reply = await self._request("GET", URL(link["url"]))
        if not extract_is_logged_in(reply.text):
            raise ExtractionError("login link did not land on an ingame page")
        self.server_url = str(reply.url.origin())
        self.server_version = extract_server_version(reply.text)
        return reply.text

    # ---------- public auth API ----------

    async def login(self) -> None:
        """Full handshake. Waits for, and reuses, a login already in flight."""
        gen = self._generation
        async with self._lock:
            if self._generation != gen and self.is_logged_in:
                return
            await self._login_locked()

    async def _login_locked(self) -> None:
        self._bad_credentials = False
        self._set_state(AuthState.AUTHENTICATING)
        try:
            env_id, platform_id = await self._lobby_configuration()
            self.bearer = await self._post_sessions(env_id, platform_id)
            self._set_cookie(TOKEN_COOKIE, self.bearer, ".gameforge.com")
            await self._enter_game()
        except CaptchaRequired:
            raise
        except AuthenticationError:
            self._bad_credentials = True
            self._set_state(AuthState.LOGGED_OUT)
            logger.error("%s: bad credentials", self.account.login)
            raise
        except Exception:
            self._set_state(AuthState.LOGGED_OUT)
            raise
        self.challenge = None
        self._generation += 1
        self._set_state(AuthState.LOGGED_IN)
        self._persist()
        logger.info("%s: logged in on %s (version %s)",
                    self.account.login, self.server_url, self.server_version)

    async def login_with_existing_cookies(self) -> bool:
        """Reuse stored cookies; falls back to login(). True if cookies were enough."""
        gen = self._generation
        async with self._lock:
            if self._generation != gen and self.is_logged_in:
                return False
            server_url, version = persistence.load_state(self.account.login)
            cookies = persistence.load_cookies(self.account.login)
            if server_url and cookies:
                self.restore_cookies(cookies)
                self._set_state(AuthState.AUTHENTICATING)
                try:
                    reply = await self._request(
                        "GET", URL(server_url) / "game" / "index.php",
                        params={"page": "ingame", "component": "overview"},
                    )
                except Exception:
                    self._set_state(AuthState.LOGGED_OUT)
                    raise
                if reply.url.host == URL(server_url).host and extract_is_logged_in(reply.text):
                    self.server_url = server_url
                    try:
                        self.server_version = extract_server_version(reply.text)
                    except ExtractionError:
                        self.server_version = version
                    self._generation += 1
                    self._set_state(AuthState.LOGGED_IN)
                    logger.info("%s: session resumed from stored cookies", self.account.login)
                    return True
                logger.info("%s: stored cookies rejected, logging in again", self.account.login)
            await self._login_locked()
            return False

    async def ensure_logged_in(self) -> None:
        if self.is_logged_in:
            return
        if self._bad_credentials:
            raise AuthenticationError("bad credentials; not retrying")
        if self.state is AuthState.CAPTCHA_PENDING and self.challenge is not None:
            raise CaptchaRequired(self.challenge.id)
        await self.login_with_existing_cookies()

    async def logout(self) -> None:
        async with self._lock:
            if self.is_logged_in and self.server_url:
                try:
                    await self._request("GET", URL(self.server_url) / "game" / "index.php",
                                        params={"page": "logout"})
                except TransientNetworkError as e:
                    logger.warning("%s: logout request failed: %s", self.account.login, e)
            jar = getattr(self.http, "cookie_jar", None)
            if jar is not None:
                jar.clear()
            persistence.clear_cookies(self.account.login)
            self.bearer = ""
            self.challenge = None
            self._set_state(AuthState.LOGGED_OUT)

    # ---------- captcha ----------

    async def captcha_challenge(self) -> Optional[CaptchaChallenge]:
        """Current challenge, provoking one with a login attempt if needed."""
        if self.challenge is None or self.challenge.solved:
            try:
                await self.login()
            except CaptchaRequired:
                pass
            if self.challenge is None:
                return None
        reply = await self._request("GET", captcha.challenge_url(self.challenge.id))
        status = captcha.parse_status(reply.json(), self.challenge.id)
        self.challenge.status = status.status
        return self.challenge

    async def captcha_question(self, challenge_id: str) -> bytes:
        return (await self._request("GET", captcha.question_url(challenge_id))).body

    async def captcha_icons(self, challenge_id: str) -> bytes:
        return (await self._request("GET", captcha.icons_url(challenge_id))).body

    async def resolve_captcha(self, challenge_id: str, answer: int) -> None:
        reply = await self._request(
            "POST", captcha.challenge_url(challenge_id), json_body={"answer": answer},
            headers={"Content-Type": "application/json"},
        )
        status = captcha.parse_status(reply.json(), challenge_id)
        attempts = 0
        while not status.solved:
            attempts += 1
            if attempts > self.captcha_poll_attempts:
                raise CaptchaRequired(challenge_id, f"captcha still {status.status}")
            await asyncio.sleep(self.captcha_poll_interval)
            reply = await self._request("GET", captcha.challenge_url(challenge_id))
            status = captcha.parse_status(reply.json(), challenge_id)
        self.challenge = CaptchaChallenge(id=challenge_id, status="solved", answer=answer)
        self._set_state(AuthState.AUTHENTICATING)
        logger.info("%s: captcha %s solved", self.account.login, challenge_id)
        await self.login()

    # ---------- ingame requests ----------

    def _looks_expired(self, reply: Reply) -> bool:
        """A bounce off the game host, or a full page without the session meta.

        JSON and markup fragments are answers to the request, whichever page
        or component was asked for.
        """
        if reply.url.host != URL(self.server_url).host:
            return True
        text = reply.text.lstrip()
        if text[:1] in ("{", "["):
            return False
        return "<html" in text[:1000].lower() and not extract_is_logged_in(text)

    async def _game_request(
        self, method: str, params: Mapping[str, Any], data: Any = None,
        ajax: bool = False, retry: bool = True,
    ) -> str:
        await self.ensure_logged_in()
        headers = {"X-Requested-With": "XMLHttpRequest"} if ajax else {}
        reply = await self._request(
            method, URL(self.server_url) / "game" / "index.php",
            params=params, data=data, headers=headers,
        )
        if self._looks_expired(reply):
            self._set_state(AuthState.EXPIRED)
            if not retry:
                raise TransientNetworkError("session expired again right after login")
            logger.warning("%s: redirected to login, session expired", self.account.login)
            await self.ensure_logged_in()
            return await self._game_request(method, params, data, ajax, retry=False)
        return reply.text

    async def get_page(self, params: Mapping[str, Any]) -> str:
        return await self._game_request("GET", params)

    async def post_page(self, params: Mapping[str, Any], data: Any) -> str:
        return await self._game_request("POST", params, data)

    async def get_ajax(self, params: Mapping[str, Any]) -> str:
        return await self._game_request("GET", params, ajax=True)

    async def post_ajax(self, params: Mapping[str, Any], data: Any) -> str:
        return await self._game_request("POST", params, data, ajax=True)
