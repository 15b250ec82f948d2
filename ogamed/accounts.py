from __future__ import annotations
from pathlib import Path
import csv
import logging

from .types import Account

logger = logging.getLogger(__name__)


def _parse_txt(path: Path, universe: str = "", lang: str = "en") -> list[Account]:
    """One account per line: login:password[:totp_secret[:proxy]]."""
    res: list[Account] = []
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split(":", 3)
        if len(parts) < 2:
            logger.warning("Skipping malformed account line in %s", path)
            continue
        login = parts[0].strip()
        res.append(
            Account(
                label=login,
                login=login,
                password=parts[1],
                totp_secret=parts[2].strip() if len(parts) >= 3 else "",
                # the proxy keeps its own colons (scheme, port)
                proxy=parts[3].strip() if len(parts) >= 4 else "",
                universe=universe,
                lang=lang,
            )
        )
    return res


def _parse_csv(path: Path, universe: str = "", lang: str = "en") -> list[Account]:
    res: list[Account] = []
    with path.open("r", encoding="utf-8", newline="") as f:
        r = csv.DictReader(f)
        for row in r:
            res.append(
                Account(
                    label=(row.get("label") or row.get("login") or "").strip(),
                    login=(row.get("login") or "").strip(),
                    password=(row.get("password") or "").strip(),
                    universe=(row.get("universe") or universe).strip(),
                    lang=(row.get("lang") or row.get("language") or lang).strip(),
                    proxy=(row.get("proxy") or "").strip(),
                    totp_secret=(row.get("totp_secret") or "").strip(),
                    user_agent=(row.get("user_agent") or "").strip(),
                )
            )
    return [a for a in res if a.login]


def load_accounts(path: Path, universe: str = "", lang: str = "en") -> list[Account]:
    ext = path.suffix.lower()
    if ext == ".txt":
        accs = _parse_txt(path, universe, lang)
    else:
        accs = _parse_csv(path, universe, lang)
    logger.info("Loaded %d account(s) from %s", len(accs), path)
    return accs
