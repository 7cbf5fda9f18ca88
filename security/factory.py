from flask import current_app

from security import totp
from security.auth_session import AuthSession
from security.bruteforce import LockoutStore
from security.challenges import ChallengeStore
from security.directory import UserDirectory
from security.session import SessionStore
from security.verifier import PasswordCredentialVerifier


def build_auth_session() -> AuthSession:
    """Wire AuthSession to the database-backed collaborators using the app config."""
    cfg = current_app.config
    fernet = totp.fernet_for(cfg.get("TWO_FACTOR_ENCRYPTION_KEY"), cfg["SECRET_KEY"])
    return AuthSession(
        verifier=PasswordCredentialVerifier(fernet),
        directory=UserDirectory(fernet),
        attempts=LockoutStore(),
        challenges=ChallengeStore(fernet),
        sessions=SessionStore(),
        max_attempts=cfg.get("MAX_LOGIN_ATTEMPTS", 3),
        lockout_seconds=cfg.get("LOCKOUT_MINUTES", 15) * 60,
        challenge_ttl_seconds=cfg.get("TWO_FACTOR_CHALLENGE_TTL_SECONDS", 300),
        max_code_attempts=cfg.get("TWO_FACTOR_MAX_CODE_ATTEMPTS", 0),
        reset_ttl_seconds=cfg.get("TWO_FACTOR_RESET_TTL_SECONDS", 7200),
        issuer=cfg.get("TWO_FACTOR_ISSUER", "CRIMS"),
        valid_window=cfg.get("TWO_FACTOR_VALID_WINDOW", 1),
    )
