import asyncio
import json
from typing import Any, Dict, List, Optional

import aiohttp
from yarl import URL

SERVER = "https://s180-en.ogame.gameforge.com"


def ingame_page(version="7.6.2", body="", player_id=100123, points=0):
    return (
        "<html><head>"
        '<meta name="ogame-session" content="3c442273a6de4c8f79549e78f4c3ca50">'
        f'<meta name="ogame-version" content="{version}">'
        '<meta name="ogame-timestamp" content="1700000000">'
        f'<meta name="ogame-player-id" content="{player_id}">'
        '<meta name="ogame-player-name" content="Commander">'
        f"</head><body>{body}</body></html>"
    )


class FakeResp:
    def __init__(self, status=200, body: Any = "", url=None, headers=None, delay=0.0, exc=None):
        self.status = status
        if not isinstance(body, (str, bytes)):
            body = json.dumps(body)
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        self.url = URL(url) if url else None
        self.headers = headers or {}
        self.delay = delay
        self.exc = exc
        self.window = None

    async def __aenter__(self):
        loop = asyncio.get_running_loop()
        start = loop.time()
        if self.delay:
            await asyncio.sleep(self.delay)
        self.window = (start, loop.time())
        if self.exc is not None:
            raise self.exc
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def read(self):
        return self._body


class Call:
    def __init__(self, method, url, params, data, json_body, headers, proxy):
        self.method = method
        self.url = url
        self.params = dict(params or {})
        self.data = data
        self.json = json_body
        self.headers = headers or {}
        self.proxy = proxy
        self.resp: Optional[FakeResp] = None


class FakeHTTP:
    """Stands in for aiohttp.ClientSession; build it inside a running loop.

    routes: (method, url fragment, response) where response is a FakeResp,
    a list of them consumed in order (the last one repeats) or a callable
    taking the Call.
    """

    def __init__(self, routes: List[tuple]):
        self.routes = [(m, frag, list(r) if isinstance(r, list) else r) for m, frag, r in routes]
        self.closed = False
        self.cookie_jar = aiohttp.CookieJar(unsafe=True)
        self.calls: List[Call] = []

    def request(self, method, url, *, params=None, data=None, json=None, headers=None, proxy=None, timeout=None):
        url = URL(str(url))
        if params:
            url = url.update_query({k: str(v) for k, v in params.items()})
        call = Call(method, url, params, data, json, headers, proxy)
        self.calls.append(call)
        for m, frag, answer in self.routes:
            if m != method or frag not in str(url):
                continue
            if isinstance(answer, list):
                resp = answer.pop(0) if len(answer) > 1 else answer[0]
            elif callable(answer) and not isinstance(answer, FakeResp):
                resp = answer(call)
            else:
                resp = answer
            if resp.url is None:
                resp.url = url
            call.resp = resp
            return resp
        raise AssertionError(f"unexpected request {method} {url}")

    def count(self, method, fragment):
        return sum(1 for c in self.calls if c.method == method and fragment in str(c.url))

    async def close(self):
        self.closed = True


def lobby_routes(version="7.6.2", sessions=None):
    """Every endpoint of a successful lobby login for universe Bellatrix (en)."""
    sessions = sessions or [FakeResp(201, {"token": "gf-bearer"})]
    return [
        ("GET", "/config/configuration.js", FakeResp(body=(
            'var gameEnvironmentId = "0a31d605-ffaf-43e7-aa02-d06df7116fc8";\n'
            'var platformGameId = "1dfd8e7e-6e1a-4eb1-8c64-03c3b62efd2f";\n'
        ))),
        ("POST", "/api/v1/auth/thin/sessions", sessions),
        ("GET", "/api/users/me/accounts", FakeResp(body=[{"id": 101, "server": {"number": 180, "language": "en"}}])),
        ("GET", "/api/servers", FakeResp(body=[
            {"number": 179, "language": "en", "name": "Aquarius"},
            {"number": 180, "language": "en", "name": "Bellatrix"},
        ])),
        ("GET", "/api/users/me/loginLink", FakeResp(body={"url": f"{SERVER}/game/lobbylogin.php?id=101&token=t"})),
        ("GET", "/game/lobbylogin.php", FakeResp(
            body=ingame_page(version), url=f"{SERVER}/game/index.php?page=ingame&component=overview"
        )),
    ]


class FakeSession:
    """Stands in for SessionManager at the dispatcher seam.

    pages maps "GET overview", "POST supplies", "POST fleetdispatch sendFleet",
    "AJAX messages"... to content, or to a list consumed in order.
    """

    def __init__(self, pages: Dict[str, Any], version="7.6.2"):
        self.server_version = version
        self.pages = {k: list(v) if isinstance(v, list) else v for k, v in pages.items()}
        self.calls: List[tuple] = []

    def _answer(self, method, params, data):
        self.calls.append((method, dict(params), dict(data) if data else None))
        key = f"{method} {params.get('component') or params.get('page')}"
        if params.get("action"):
            key += f" {params['action']}"
        if key not in self.pages:
            raise AssertionError(f"unexpected {key} {params}")
        answer = self.pages[key]
        if isinstance(answer, list):
            return answer.pop(0) if len(answer) > 1 else answer[0]
        return answer

    async def get_page(self, params):
        return self._answer("GET", params, None)

    async def post_page(self, params, data):
        return self._answer("POST", params, data)

    async def get_ajax(self, params):
        return self._answer("AJAX", params, None)

    async def post_ajax(self, params, data):
        return self._answer("AJAX", params, data)
