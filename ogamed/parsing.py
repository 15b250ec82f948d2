from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any, Optional

from bs4 import BeautifulSoup, Tag

from .errors import ExtractionError

_SUFFIXES = {
    "k": 1_000,
    "m": 1_000_000,
    "mn": 1_000_000,
    "mio": 1_000_000,
    "md": 1_000_000_000,
    "bn": 1_000_000_000,
    "mrd": 1_000_000_000,
}
_NUMBER_RE = re.compile(r"^([+-]?)([\d.,'\s\u00a0\u202f]+?)\s*([a-zA-Z]{0,3})\.?$")
_SEPARATORS_RE = re.compile(r"[.,'\s\u00a0\u202f]")


def parse_int(text: Any, field: str = "number") -> int:
    """Parse a number as the game prints it in any locale.

    "1.234.567", "1,234,567", "1 234 567" and "1'234'567" are all 1234567.
    With a unit suffix the last separator is a decimal mark: "1,5Mn" is 1500000.
    """
    if isinstance(text, (int, float)):
        return int(text)
    s = str(text if text is not None else "").strip()
    m = _NUMBER_RE.match(s)
    if not m or not re.search(r"\d", m.group(2)):
        raise ExtractionError(f"{field}: cannot parse {s!r}")
    sign, digits, suffix = m.groups()
    digits = digits.strip()
    suffix = suffix.lower()
    if suffix:
        mult = _SUFFIXES.get(suffix)
        if mult is None:
            raise ExtractionError(f"{field}: unknown unit in {s!r}")
        parts = re.split(r"[.,]", digits)
        if len(parts) > 1:
            whole = _SEPARATORS_RE.sub("", "".join(parts[:-1])) or "0"
            frac = parts[-1].strip()
            value = int(whole) * mult + int(frac) * mult // 10 ** len(frac)
        else:
            value = int(_SEPARATORS_RE.sub("", digits)) * mult
    else:
        value = int(_SEPARATORS_RE.sub("", digits))
    return -value if sign == "-" else value


def parse_int_or(text: Any, default: int) -> int:
    try:
        return parse_int(text)
    except ExtractionError:
        return default


def last_int(text: str, field: str = "number") -> int:
    """Last number in a label such as "Metal Mine 21"."""
    found = re.findall(r"\d[\d.,'\u00a0\u202f ]*", text or "")
    if not found:
        raise ExtractionError(f"{field}: no number in {text!r}")
    return parse_int(found[-1].rstrip(".,"), field)


def soup(content: str | bytes) -> BeautifulSoup:
    return BeautifulSoup(content, "html.parser")


def meta(doc: BeautifulSoup, name: str) -> Optional[str]:
    tag = doc.find("meta", attrs={"name": name})
    if tag is None:
        return None
    return tag.get("content")


def require_meta(doc: BeautifulSoup, name: str) -> str:
    value = meta(doc, name)
    if not value:
        raise ExtractionError(f"meta {name} not found")
    return value


def select_one(doc: BeautifulSoup | Tag, css: str, field: str) -> Tag:
    tag = doc.select_one(css)
    if tag is None:
        raise ExtractionError(f"{field}: {css} not found")
    return tag


def script_var(content: str, name: str) -> Optional[str]:
    """Value of `var name = ...;` in inline scripts, quotes stripped."""
    m = re.search(r"var\s+" + re.escape(name) + r"\s*=\s*(.+?);\s*(?:\n|var\s|$)", content, re.S)
    if not m:
        return None
    value = m.group(1).strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1]
    return value


def script_json(content: str, name: str) -> Any:
    raw = script_var(content, name)
    if raw is None:
        raise ExtractionError(f"script variable {name} not found")
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ExtractionError(f"script variable {name}: {e}") from e


def load_json(content: str | bytes, field: str = "response") -> Any:
    try:
        return json.loads(content)
    except (TypeError, json.JSONDecodeError) as e:
        raise ExtractionError(f"{field}: not JSON ({e})") from e


def from_timestamp(value: Any) -> datetime:
    return datetime.fromtimestamp(parse_int(value, "timestamp"), tz=timezone.utc)


def parse_game_date(text: str) -> Optional[datetime]:
    """Dates such as 17.10.2026 12:00:01 from message lists."""
    m = re.search(r"(\d{1,2})\.(\d{1,2})\.(\d{4})\s+(\d{1,2}):(\d{2}):(\d{2})", text or "")
    if not m:
        return None
    d, mo, y, h, mi, s = (int(x) for x in m.groups())
    return datetime(y, mo, d, h, mi, s, tzinfo=timezone.utc)
