"""
Authentication error taxonomy.

Every error carries the message shown to the user and the HTTP status the
auth blueprint answers with. ``Locked`` and ``Rejected`` are not here: they
are ordinary outcomes of a credential submission (see security.outcomes).
"""


class AuthError(Exception):
    status = 400
    message = "Authentication failed"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message}


class MissingCaptcha(AuthError):
    message = "Please complete the captcha verification"


class CaptchaRejected(MissingCaptcha):
    message = "Captcha verification failed. Please try again."

    def __init__(self, error_codes=None):
        super().__init__()
        self.error_codes = list(error_codes or [])


class RateLimited(AuthError):
    status = 429
    message = "Too many login requests. Slow down."

    def __init__(self, retry_after: int):
        super().__init__()
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        return {"error": self.message, "retry_after_seconds": self.retry_after}


class ServiceError(AuthError):
    """A collaborator could not answer. Never counts as a bad credential."""

    status = 503
    message = "Authentication service is unavailable. Please try again later."

    def __init__(self, detail: str | None = None):
        # detail is for logs only; the outward message stays generic
        super().__init__()
        self.detail = detail


class NotFound(AuthError):
    status = 404
    message = "Email not found in our system."


class NotEnabled(AuthError):
    status = 409
    message = "Two-factor authentication is not enabled for this account."


class InvalidOrExpired(AuthError):
    message = "Invalid or expired link. Please request a new one."


class InvalidCode(AuthError):
    status = 401
    message = "Invalid verification code. Please try again."
