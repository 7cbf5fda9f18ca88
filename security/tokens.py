import hashlib
import secrets


def new_token() -> str:
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    # SHA-256 is fine for hashing random tokens
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
