from models import db
from models.user import User
from security import totp
from security.outcomes import UserRecord
from utils.roles import primary_role
from utils.storage import service_call

UNSET = object()

TWO_FACTOR_FIELDS = ("enabled", "secret", "reset_token", "reset_expires")


def two_factor_changes(enabled=UNSET, secret=UNSET, reset_token=UNSET, reset_expires=UNSET) -> dict:
    """
    Collect the fields actually being written.

    The reset token and its expiry only ever move together; writing one
    without the other, or pairing a token with a missing expiry, is refused.
    """
    changes = {
        name: value
        for name, value in zip(TWO_FACTOR_FIELDS, (enabled, secret, reset_token, reset_expires))
        if value is not UNSET
    }
    if ("reset_token" in changes) != ("reset_expires" in changes):
        raise ValueError("reset_token and reset_expires must be updated together")
    if "reset_token" in changes and (changes["reset_token"] is None) != (changes["reset_expires"] is None):
        raise ValueError("reset_token and reset_expires must both be set or both be cleared")
    return changes


class UserDirectory:
    """User lookups and two-factor field updates over the users table."""

    def __init__(self, fernet):
        self.fernet = fernet

    def _record(self, user: User | None) -> UserRecord | None:
        if user is None:
            return None
        return UserRecord(
            id=user.id,
            email=user.email,
            name=user.name,
            role=primary_role(user.roles),
            two_factor_enabled=user.two_factor_enabled,
            two_factor_secret=totp.decrypt_secret(self.fernet, user.two_factor_secret),
            reset_token_hash=user.two_factor_reset_token,
            reset_expires=user.two_factor_reset_expires,
        )

    def get(self, user_id: int) -> UserRecord | None:
        with service_call("load user"):
            return self._record(db.session.get(User, user_id))

    def find_by_email(self, email: str) -> UserRecord | None:
        email = (email or "").strip().lower()
        if not email:
            return None
        with service_call("find user by email"):
            return self._record(User.query.filter_by(email=email).first())

    def find_by_reset_token(self, token_hash: str) -> UserRecord | None:
        with service_call("find user by reset token"):
            return self._record(User.query.filter_by(two_factor_reset_token=token_hash).first())

    def update_two_factor_fields(self, user_id: int, **fields) -> None:
        changes = two_factor_changes(**fields)
        with service_call("update two-factor fields"):
            user = db.session.get(User, user_id)
            if user is None:
                return
            if "enabled" in changes:
                user.two_factor_enabled = bool(changes["enabled"])
            if "secret" in changes:
                user.two_factor_secret = totp.encrypt_secret(self.fernet, changes["secret"])
            if "reset_token" in changes:
                user.two_factor_reset_token = changes["reset_token"]
                user.two_factor_reset_expires = changes["reset_expires"]
            # single commit: every field above lands together or not at all
            db.session.commit()

    def record_login(self, user_id: int, at) -> None:
        with service_call("record login"):
            user = db.session.get(User, user_id)
            if user is not None:
                user.latest_login = at
                db.session.commit()

    def record_logout(self, user_id: int, at) -> None:
        with service_call("record logout"):
            user = db.session.get(User, user_id)
            if user is not None:
                user.last_login = at
                db.session.commit()
