from datetime import timedelta
from flask import request, current_app, has_request_context

from models import db
from models.session import Session
from security.tokens import hash_token, new_token
from utils.clock import utcnow
from utils.storage import service_call


def create_session(user_id: int) -> str:
    """
    Creates a server-side session and returns the RAW token (to set as cookie).
    Only the hash is stored in DB.
    """
    raw_token = new_token()

    lifetime = current_app.config.get("SESSION_LIFETIME_SECONDS", 28800)
    expires_at = utcnow() + timedelta(seconds=lifetime)

    ip = user_agent = None
    if has_request_context():
        ip = request.remote_addr
        user_agent = (request.headers.get("User-Agent") or "")[:255]

    row = Session(
        user_id=user_id,
        token_hash=hash_token(raw_token),
        expires_at=expires_at,
        ip=ip,
        user_agent=user_agent,
    )
    db.session.add(row)
    db.session.commit()
    return raw_token

def get_session_from_request():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "ciphers_session")
    raw_token = request.cookies.get(cookie_name)
    if not raw_token:
        return None

    now = utcnow()
    sess = (
        Session.query
        .filter_by(token_hash=hash_token(raw_token), revoked=False)
        .first()
    )
    if not sess:
        return None

    # Absolute expiry
    if sess.expires_at <= now:
        return None

    # Idle timeout
    idle_seconds = current_app.config.get("IDLE_TIMEOUT_SECONDS", 1200)
    last_seen = sess.last_seen_at or sess.created_at
    if (last_seen + timedelta(seconds=idle_seconds)) <= now:
        return None

    # Update activity timestamp (touch)
    sess.last_seen_at = now
    db.session.commit()

    return sess


def revoke_session(raw_token: str) -> bool:
    if not raw_token:
        return False
    sess = Session.query.filter_by(token_hash=hash_token(raw_token)).first()
    if not sess:
        return False
    sess.revoked = True
    sess.revoked_at = utcnow()
    db.session.commit()
    return True

def revoke_all_sessions(user_id: int) -> int:
    sessions = Session.query.filter_by(user_id=user_id, revoked=False).all()
    now = utcnow()
    for s in sessions:
        s.revoked = True
        s.revoked_at = now
    db.session.commit()
    return len(sessions)


class SessionStore:
    """Session persistence as seen by AuthSession."""

    def create(self, user_id: int) -> str:
        with service_call("create session"):
            return create_session(user_id)

    def revoke(self, raw_token: str) -> bool:
        with service_call("revoke session"):
            return revoke_session(raw_token)

    def revoke_all(self, user_id: int) -> int:
        with service_call("revoke sessions"):
            return revoke_all_sessions(user_id)
