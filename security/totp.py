"""
TOTP helpers (RFC 6238), compatible with Google Authenticator.

Secrets are stored Fernet-encrypted; everything here works on the plaintext
base32 secret except ``encrypt_secret``/``decrypt_secret``.
"""
import base64
import hashlib
import logging
from functools import lru_cache

import pyotp
import qrcode
import qrcode.image.svg
from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

CODE_LENGTH = 6


def generate_secret() -> str:
    return pyotp.random_base32()


def provisioning_uri(secret: str, email: str, issuer: str) -> str:
    return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=issuer)


def qr_code_data_uri(uri: str) -> str:
    """Render an otpauth:// URI as an inline SVG data URI."""
    img = qrcode.make(uri, image_factory=qrcode.image.svg.SvgPathImage, box_size=10, border=4)
    svg = img.to_string()
    return "data:image/svg+xml;base64," + base64.b64encode(svg).decode("ascii")


def is_well_formed(code) -> bool:
    return isinstance(code, str) and len(code) == CODE_LENGTH and code.isdigit()


def verify_code(secret: str, code, valid_window: int = 1, for_time=None) -> bool:
    if not secret or not is_well_formed(code):
        return False
    return pyotp.TOTP(secret).verify(code, for_time=for_time, valid_window=valid_window)


@lru_cache(maxsize=8)
def fernet_for(key: str | None, fallback_secret: str) -> Fernet:
    """
    Build the cipher for secrets at rest.

    Uses the configured Fernet key when it is valid, otherwise derives one from
    the app secret key (logged, since rotating SECRET_KEY then breaks every
    enrolled secret).
    """
    if key:
        try:
            return Fernet(key.encode() if isinstance(key, str) else key)
        except ValueError:
            logger.error("TWO_FACTOR_ENCRYPTION_KEY is not a valid Fernet key; deriving one instead")

    logger.warning("TWO_FACTOR_ENCRYPTION_KEY not set; deriving it from SECRET_KEY")
    derived = hashlib.sha256(fallback_secret.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(derived))


def encrypt_secret(fernet: Fernet, secret: str | None) -> str | None:
    if secret is None:
        return None
    return fernet.encrypt(secret.encode("utf-8")).decode("ascii")


def decrypt_secret(fernet: Fernet, token: str | None) -> str | None:
    if token is None:
        return None
    try:
        return fernet.decrypt(token.encode("ascii")).decode("utf-8")
    except InvalidToken:
        logger.error("Stored two-factor secret could not be decrypted")
        return None
