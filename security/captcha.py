import logging

import requests
from flask import current_app

from security.errors import CaptchaRejected, MissingCaptcha, ServiceError

logger = logging.getLogger(__name__)


def verify_captcha(token, remote_ip: str | None = None) -> None:
    """
    Check an hCaptcha response token with the siteverify endpoint.

    Raises MissingCaptcha when no token was sent, CaptchaRejected when hCaptcha
    says no (invalid, reused or expired token) and ServiceError when hCaptcha
    cannot be reached in time.
    """
    if not token:
        raise MissingCaptcha()

    if not current_app.config.get("CAPTCHA_ENABLED", True):
        return

    secret = current_app.config.get("HCAPTCHA_SECRET")
    if not secret:
        logger.error("CAPTCHA_ENABLED is set but HCAPTCHA_SECRET is missing")
        raise ServiceError("captcha not configured")

    data = {"secret": secret, "response": token}
    if remote_ip:
        data["remoteip"] = remote_ip

    try:
        resp = requests.post(
            current_app.config.get("HCAPTCHA_VERIFY_URL", "https://api.hcaptcha.com/siteverify"),
            data=data,
            timeout=current_app.config.get("SERVICE_TIMEOUT_SECONDS", 10),
        )
        resp.raise_for_status()
        payload = resp.json()
    except (requests.RequestException, ValueError) as exc:
        logger.warning("hCaptcha verification unavailable: %s", exc)
        raise ServiceError(str(exc)) from exc

    if not payload.get("success"):
        raise CaptchaRejected(payload.get("error-codes"))
