# digilib/domain/states.py
from enum import Enum
from typing import Dict, FrozenSet

from digilib.utils.settings import (
    OTP_ITEM_TTL_SECONDS,
    OTP_PRIVILEGED_TTL_SECONDS,
    OTP_ITEM_COOLDOWN_SECONDS,
    OTP_SESSION_COOLDOWN_SECONDS,
)


class SessionState(str, Enum):
    INITIATED = "INITIATED"
    OTP_PENDING = "OTP_PENDING"
    OTP_VERIFIED = "OTP_VERIFIED"
    TOKEN_ISSUED = "TOKEN_ISSUED"
    DELIVERED = "DELIVERED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: FrozenSet[SessionState] = frozenset(
    {SessionState.DELIVERED, SessionState.EXPIRED, SessionState.FAILED}
)

#tylko przejścia do przodu
ALLOWED_TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.INITIATED: frozenset({SessionState.OTP_PENDING, SessionState.EXPIRED, SessionState.FAILED}),
    SessionState.OTP_PENDING: frozenset({SessionState.OTP_VERIFIED, SessionState.EXPIRED, SessionState.FAILED}),
    SessionState.OTP_VERIFIED: frozenset({SessionState.TOKEN_ISSUED, SessionState.EXPIRED, SessionState.FAILED}),
    SessionState.TOKEN_ISSUED: frozenset({SessionState.DELIVERED, SessionState.EXPIRED}),
    SessionState.DELIVERED: frozenset(),
    SessionState.EXPIRED: frozenset(),
    SessionState.FAILED: frozenset(),
}


def sources_for(target: SessionState) -> FrozenSet[SessionState]:
    """Stany z których wolno przejść do target."""
    return frozenset(src for src, targets in ALLOWED_TRANSITIONS.items() if target in targets)


class OtpPurpose(str, Enum):
    ITEM_DOWNLOAD = "item_download"
    CART_DOWNLOAD = "cart_download"
    ADMIN_RECOVERY = "admin_recovery"

    @property
    def ttl_seconds(self) -> int:
        if self is OtpPurpose.ADMIN_RECOVERY:
            return OTP_PRIVILEGED_TTL_SECONDS
        return OTP_ITEM_TTL_SECONDS

    @property
    def cooldown_seconds(self) -> int:
        if self is OtpPurpose.ITEM_DOWNLOAD:
            return OTP_ITEM_COOLDOWN_SECONDS
        return OTP_SESSION_COOLDOWN_SECONDS


class VerifyOutcome(str, Enum):
    VERIFIED = "verified"
    INVALID = "invalid"
    EXPIRED = "expired"


class AddOutcome(str, Enum):
    ADDED = "added"
    ALREADY_PRESENT = "already_present"
    CART_FULL = "cart_full"
    ITEM_UNAVAILABLE = "item_unavailable"
