from models import db
from models.login_challenge import LoginChallenge
from security import totp
from security.outcomes import Challenge, ChallengeKind
from security.tokens import hash_token, new_token
from utils.clock import utcnow
from utils.storage import service_call


class ChallengeStore:
    """Pending second-factor challenges. Only the token hash is stored; a used challenge is deleted."""

    def __init__(self, fernet):
        self.fernet = fernet

    def _row(self, token: str):
        return LoginChallenge.query.filter_by(token_hash=hash_token(token)).first()

    def open(self, user_id: int, kind: ChallengeKind, pending_secret, expires_at) -> str:
        raw_token = new_token()
        with service_call("open login challenge"):
            # abandoned challenges are dropped once they expire
            LoginChallenge.query.filter(LoginChallenge.expires_at <= utcnow()).delete(synchronize_session=False)
            db.session.add(LoginChallenge(
                user_id=user_id,
                kind=kind.value,
                token_hash=hash_token(raw_token),
                pending_secret=totp.encrypt_secret(self.fernet, pending_secret),
                expires_at=expires_at,
            ))
            db.session.commit()
        return raw_token

    def get(self, token: str) -> Challenge | None:
        with service_call("load login challenge"):
            row = self._row(token)
        if not row:
            return None
        return Challenge(
            user_id=row.user_id,
            kind=ChallengeKind(row.kind),
            expires_at=row.expires_at,
            pending_secret=totp.decrypt_secret(self.fernet, row.pending_secret),
            attempts=row.attempts,
        )

    def record_failure(self, token: str) -> int:
        with service_call("record code failure"):
            row = self._row(token)
            if not row:
                return 0
            row.attempts += 1
            db.session.commit()
            return row.attempts

    def consume(self, token: str) -> None:
        with service_call("consume login challenge"):
            row = self._row(token)
            if not row:
                return
            db.session.delete(row)
            db.session.commit()
