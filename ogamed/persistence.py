from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Dict, List, Tuple

# Directories for cookie jars and per-account session state
COOKIES_DIR = Path("cookies")
STATE_DIR = Path("state")
# Pinned server URL/version expire after a week; the game updates rarely
STATE_TTL = 60 * 60 * 24 * 7

logger = logging.getLogger(__name__)


def save_cookies(login: str, cookies: List[Dict[str, str]]) -> None:
    """Persist the cookie jar as a list of {name, value, domain, path}."""
    COOKIES_DIR.mkdir(parents=True, exist_ok=True)
    path = COOKIES_DIR / f"{login}.json"
    path.write_text(json.dumps(cookies, ensure_ascii=False, indent=2), encoding="utf-8")


def load_cookies(login: str) -> List[Dict[str, str]]:
    path = COOKIES_DIR / f"{login}.json"
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (FileNotFoundError, json.JSONDecodeError) as e:
        logger.error("Failed to load cookies for %s: %s", login, e)
        return []
    return [c for c in data if isinstance(c, dict) and c.get("name")]


def clear_cookies(login: str) -> None:
    path = COOKIES_DIR / f"{login}.json"
    path.unlink(missing_ok=True)


def save_state(login: str, server_url: str, server_version: str, ttl: int = STATE_TTL) -> None:
    """Remember which server and frontend generation this account lives on."""
    STATE_DIR.mkdir(parents=True, exist_ok=True)
    data = {
        "server_url": server_url,
        "server_version": server_version,
        "expires_at": time.time() + ttl,
    }
    path = STATE_DIR / f"{login}.json"
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def load_state(login: str) -> Tuple[str, str]:
    """(server_url, server_version), or empty strings if missing or expired."""
    path = STATE_DIR / f"{login}.json"
    if not path.exists():
        return "", ""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (FileNotFoundError, json.JSONDecodeError) as e:
        logger.error("Failed to load session state for %s: %s", login, e)
        return "", ""
    expires = float(data.get("expires_at") or 0)
    if expires and expires < time.time():
        return "", ""
    return str(data.get("server_url") or ""), str(data.get("server_version") or "")
