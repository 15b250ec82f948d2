from __future__ import annotations

from enum import Enum
from typing import Optional


class Reason(str, Enum):
    """Locally checkable rules an action must satisfy before it is sent."""

    INVALID_CELESTIAL_ID = "invalid celestial id"
    INVALID_OBJECT_ID = "invalid object id"
    INVALID_QUANTITY = "invalid quantity"
    NO_SHIP_SELECTED = "no ship selected"
    NOT_ENOUGH_SHIPS = "not enough ships"
    INVALID_SPEED = "invalid speed"
    INVALID_COORDINATE = "invalid coordinate"
    NO_DEBRIS_FIELD = "no debris field"
    NO_RECYCLER_AVAILABLE = "no recycler available"
    TARGET_INHABITED = "target position is inhabited"
    UNINHABITED_PLANET = "uninhabited planet"
    NO_ASTROPHYSICS = "no astrophysics"
    NOOB_PROTECTION = "noob protection"
    PLAYER_TOO_STRONG = "player too strong"
    NO_MOON_AVAILABLE = "no moon available"
    PLAYER_IN_VACATION_MODE = "player in vacation mode"
    TARGET_IN_VACATION_MODE = "target in vacation mode"
    ADMIN_OR_GM = "target is an admin or game master"
    PLANET_ALREADY_RESERVED_FOR_RELOCATION = "planet already reserved for relocation"
    NO_FLEET_SLOT = "no free fleet slot"
    UNKNOWN_FLEET = "unknown fleet"
    FLEET_NOT_RECALLABLE = "fleet is already returning"
    NO_RELOCATION_RESERVED = "no relocation reserved"
    NO_ESPIONAGE_REPORT = "no espionage report for this coordinate"


class OGameError(Exception):
    """Base class: every error crossing the bot boundary carries a kind."""

    kind = "internal"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class AuthenticationError(OGameError):
    """Bad credentials. Fatal, never retried."""

    kind = "bad_credentials"


class CaptchaRequired(OGameError):
    kind = "captcha_required"

    def __init__(self, challenge_id: str, message: str = ""):
        super().__init__(message or f"captcha required: {challenge_id}")
        self.challenge_id = challenge_id

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["challenge_id"] = self.challenge_id
        return d


class TransientNetworkError(OGameError):
    kind = "network"


class ProxyUnavailable(TransientNetworkError):
    kind = "proxy"


class RequestTimeout(TransientNetworkError):
    kind = "timeout"


class PreconditionViolation(OGameError):
    kind = "precondition"

    def __init__(self, reason: Reason, message: str = ""):
        super().__init__(message or reason.value)
        self.reason = reason

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["reason"] = self.reason.name
        return d


class ExtractionError(OGameError):
    """Content matched no known frontend layout."""

    kind = "extraction"


class RemoteRejection(OGameError):
    """The game answered and declined the action."""

    kind = "rejected"

    def __init__(self, message: str = "", code: Optional[int] = None):
        super().__init__(message or "rejected by server")
        self.code = code

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["code"] = self.code
        return d


class InvalidCommand(OGameError):
    """Unknown command name, or parameters that do not fit the command."""

    kind = "invalid_command"


class InternalError(OGameError):
    kind = "internal"


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransientNetworkError)
