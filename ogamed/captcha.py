"""Gameforge image-drop captcha: URLs and response handling.

The exchange is: the lobby answers a login with 409 and a challenge id header,
the caller fetches the question text and icon strip, picks an icon index and
posts it back, then polls the challenge until its status is "solved".
"""
from __future__ import annotations

from typing import Any

from yarl import URL

from .errors import ExtractionError
from .types import CaptchaChallenge

CHALLENGE_HEADER = "gf-challenge-id"
CHALLENGE_BASE = URL("https://image-drop-challenge.gameforge.com/challenge")
CHALLENGE_LOCALE = "en-GB"


def challenge_id_from_header(value: str) -> str:
    # "c434aa65-...;https://challenge.gameforge.com"
    return (value or "").split(";", 1)[0].strip()


def challenge_url(challenge_id: str, media: str = "") -> URL:
    url = CHALLENGE_BASE / challenge_id / CHALLENGE_LOCALE
    if media:
        url = url / media
    return url


def question_url(challenge_id: str) -> URL:
    return challenge_url(challenge_id, "text")


def icons_url(challenge_id: str) -> URL:
    return challenge_url(challenge_id, "drag-icons")


def parse_status(data: Any, challenge_id: str) -> CaptchaChallenge:
    if not isinstance(data, dict) or "status" not in data:
        raise ExtractionError("captcha status: unexpected response")
    return CaptchaChallenge(id=str(data.get("id") or challenge_id), status=str(data["status"]))
