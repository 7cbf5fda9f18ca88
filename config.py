import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to this file as ciphers.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "ciphers.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Session cookie name for our auth token, plus the display-safe profile cookie
    AUTH_COOKIE_NAME = "ciphers_session"
    USER_DATA_COOKIE_NAME = "user_data"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 20 minutes
    IDLE_TIMEOUT_SECONDS = 20 * 60

    # Session/cookie security defaults
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = _env_bool("SESSION_COOKIE_SECURE", "false")

    # Signed Flask session cookie holding the per-browser id the lockout counter is keyed on
    SESSION_COOKIE_NAME = "ciphers_client"
    PERMANENT_SESSION_LIFETIME = 30 * 24 * 60 * 60

    # Number of reverse proxies in front of the app whose X-Forwarded-* headers are trusted
    TRUSTED_PROXY_HOPS = int(os.getenv("TRUSTED_PROXY_HOPS", "0"))

    # Lockout: 3 bad passwords lock the client out for 15 minutes
    MAX_LOGIN_ATTEMPTS = 3
    LOCKOUT_MINUTES = 15

    # Credential verifier's own IP rate limit (independent of the lockout)
    LOGIN_RATE_WINDOW_SECONDS = 60
    LOGIN_RATE_MAX_REQUESTS = 15

    # Captcha (hCaptcha)
    CAPTCHA_ENABLED = _env_bool("CAPTCHA_ENABLED", "true")
    HCAPTCHA_SECRET = os.getenv("HCAPTCHA_SECRET")
    HCAPTCHA_VERIFY_URL = os.getenv("HCAPTCHA_VERIFY_URL", "https://api.hcaptcha.com/siteverify")

    # Upper bound for calls to external services (captcha, SMTP)
    SERVICE_TIMEOUT_SECONDS = int(os.getenv("SERVICE_TIMEOUT_SECONDS", "10"))

    # Two-factor authentication (TOTP)
    TWO_FACTOR_ISSUER = os.getenv("TWO_FACTOR_ISSUER", "CRIMS")
    TWO_FACTOR_VALID_WINDOW = int(os.getenv("TWO_FACTOR_VALID_WINDOW", "1"))
    TWO_FACTOR_CHALLENGE_TTL_SECONDS = int(os.getenv("TWO_FACTOR_CHALLENGE_TTL_SECONDS", "300"))
    TWO_FACTOR_MAX_CODE_ATTEMPTS = int(os.getenv("TWO_FACTOR_MAX_CODE_ATTEMPTS", "0"))  # 0 = no cap
    TWO_FACTOR_ENCRYPTION_KEY = os.getenv("TWO_FACTOR_ENCRYPTION_KEY")

    # Two-factor reset by email link
    TWO_FACTOR_RESET_TTL_SECONDS = 2 * 60 * 60
    TWO_FACTOR_RESET_URL = os.getenv("TWO_FACTOR_RESET_URL", "http://localhost:5173/2fa-reset")
    TWO_FACTOR_RESET_UNIFORM_RESPONSE = _env_bool("TWO_FACTOR_RESET_UNIFORM_RESPONSE", "false")

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = _env_bool("SMTP_USE_TLS", "true")

    # Password hashing cost
    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # Basic app settings
    DEBUG = False
