import enum
import math
from dataclasses import dataclass, field
from datetime import datetime


class LoginStep(str, enum.Enum):
    """Which view the client shows next. Clients switch on this, never on message text."""

    CREDENTIALS = "CREDENTIALS"
    LOCKED = "LOCKED"
    TWO_FACTOR_SETUP = "TWO_FACTOR_SETUP"
    TWO_FACTOR_VERIFY = "TWO_FACTOR_VERIFY"
    AUTHENTICATED = "AUTHENTICATED"


class ChallengeKind(str, enum.Enum):
    SETUP = "SETUP"
    VERIFY = "VERIFY"


@dataclass(frozen=True)
class Rejected:
    reason: str
    attempts_remaining: int
    step = LoginStep.CREDENTIALS


@dataclass(frozen=True)
class Locked:
    remaining_seconds: int
    # True only on the attempt that triggered the lockout
    started: bool = field(default=False, compare=False)
    step = LoginStep.LOCKED


@dataclass(frozen=True)
class NeedsSetup:
    user_id: int
    challenge_token: str
    secret: str = field(repr=False)
    provisioning_uri: str = field(repr=False)
    step = LoginStep.TWO_FACTOR_SETUP


@dataclass(frozen=True)
class NeedsVerification:
    user_id: int
    challenge_token: str
    secret: str = field(repr=False)
    step = LoginStep.TWO_FACTOR_VERIFY


@dataclass(frozen=True)
class Authenticated:
    user_id: int
    session_token: str = field(repr=False)
    profile: dict
    step = LoginStep.AUTHENTICATED


@dataclass(frozen=True)
class ResetRequested:
    user_id: int
    expires_at: datetime


@dataclass(frozen=True)
class ResetGrant:
    user_id: int
    email: str


@dataclass
class LoginAttemptState:
    failed_attempts: int = 0
    lockout_until: datetime | None = None

    def remaining_seconds(self, now: datetime) -> int:
        if self.lockout_until is None:
            return 0
        # rounded up so that 0 remaining and expired always agree
        return max(math.ceil((self.lockout_until - now).total_seconds()), 0)

    def is_locked(self, now: datetime) -> bool:
        return self.lockout_until is not None and self.lockout_until > now

    def is_expired(self, now: datetime) -> bool:
        return self.lockout_until is not None and self.lockout_until <= now


@dataclass
class UserRecord:
    """Directory view of a user. ``two_factor_secret`` is already decrypted."""

    id: int
    email: str
    name: str | None
    role: str | None
    two_factor_enabled: bool = False
    two_factor_secret: str | None = field(default=None, repr=False)
    reset_token_hash: str | None = field(default=None, repr=False)
    reset_expires: datetime | None = None

    def profile(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email, "role": self.role}


@dataclass
class Challenge:
    user_id: int
    kind: ChallengeKind
    expires_at: datetime
    pending_secret: str | None = field(default=None, repr=False)
    consumed: bool = False
    attempts: int = 0
