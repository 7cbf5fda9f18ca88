from models import db
from models.login_attempt import LoginAttempt
from security.outcomes import LoginAttemptState
from utils.clock import utcnow
from utils.storage import service_call


class LockoutStore:
    """
    Durable failed-attempt counter and lockout deadline, one row per client key.
    """

    def load(self, client_key: str) -> LoginAttemptState:
        with service_call("load lockout state"):
            row = LoginAttempt.query.filter_by(client_key=client_key).first()
        if not row:
            return LoginAttemptState()
        return LoginAttemptState(failed_attempts=row.fail_count, lockout_until=row.locked_until)

    def save(self, client_key: str, state: LoginAttemptState, email: str | None = None) -> None:
        with service_call("save lockout state"):
            row = LoginAttempt.query.filter_by(client_key=client_key).first()
            if not row:
                row = LoginAttempt(client_key=client_key, fail_count=0)
                db.session.add(row)

            row.fail_count = state.failed_attempts
            row.locked_until = state.lockout_until
            row.last_fail_at = utcnow()
            if email:
                row.last_email = email[:255]
            db.session.commit()

    def clear(self, client_key: str) -> None:
        """
        Clears failure counter after a completed login or an expired lockout.
        """
        with service_call("clear lockout state"):
            row = LoginAttempt.query.filter_by(client_key=client_key).first()
            if not row:
                return
            row.fail_count = 0
            row.last_fail_at = None
            row.locked_until = None
            db.session.commit()
